"""
Human-verification pages.

Both pages render the Turnstile widget and exchange the resulting proof at
``/api/token``. The redirect page hands the token back through the URL
fragment; the embeddable page posts it to the parent window.
"""

import html
import json
from typing import Any, Dict

TURNSTILE_SCRIPT = "https://challenges.cloudflare.com/turnstile/v0/api.js"

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<script src="{script}" async defer></script>
<style>
body {{ font-family: system-ui, sans-serif; display: flex; align-items: center;
       justify-content: center; min-height: 100vh; margin: 0; }}
#status {{ margin-top: 12px; color: #555; font-size: 14px; }}
</style>
</head>
<body>
<main>
<div class="cf-turnstile" data-sitekey="{site_key}" data-callback="onVerified"></div>
<p id="status"></p>
</main>
<script>
const settings = {settings};
function setStatus(text) {{ document.getElementById("status").textContent = text; }}
async function onVerified(proof) {{
  setStatus("Issuing token...");
  try {{
    const res = await fetch("/api/token", {{
      method: "POST",
      headers: {{ "Content-Type": "application/json" }},
      body: JSON.stringify({{ proof: proof }})
    }});
    const data = await res.json();
    if (!res.ok) {{ setStatus(data.message || "Verification failed"); return; }}
    deliver(data);
  }} catch (err) {{
    setStatus("Verification failed");
  }}
}}
{deliver}
</script>
</body>
</html>
"""

_REDIRECT_DELIVERY = """function deliver(data) {
  setStatus("Verified. Returning...");
  window.location.replace(settings.redirectUri + "#token=" + encodeURIComponent(data.token)
    + "&expires_at=" + encodeURIComponent(data.expires_at));
}"""

_EMBED_DELIVERY = """function deliver(data) {
  setStatus("Verified.");
  window.parent.postMessage(
    { type: "enhance-token", token: data.token, expires_at: data.expires_at },
    settings.parentOrigin
  );
}"""


def _script_json(value: Dict[str, Any]) -> str:
    return json.dumps(value).replace("</", "<\\/")


def _render(site_key: str, settings: Dict[str, Any], deliver: str) -> str:
    return _PAGE.format(
        title="Verify you are human",
        script=TURNSTILE_SCRIPT,
        site_key=html.escape(site_key, quote=True),
        settings=_script_json(settings),
        deliver=deliver,
    )


def render_verify_page(site_key: str, redirect_uri: str) -> str:
    """Page for the redirect flow; ``redirect_uri`` must already be origin-checked."""
    return _render(site_key, {"redirectUri": redirect_uri}, _REDIRECT_DELIVERY)


def render_verify_embed_page(site_key: str, parent_origin: str) -> str:
    """Page for the iframe flow; ``parent_origin`` must already be origin-checked."""
    return _render(site_key, {"parentOrigin": parent_origin}, _EMBED_DELIVERY)
