"""
Caller-supplied upstream credentials (BYOK mode).

Keys are only ever held as ``SecretStr`` and only ever logged masked.
"""

import re
from typing import Dict, Optional, Pattern

API_KEY_PATTERNS: Dict[str, Pattern[str]] = {
    "openrouter": re.compile(r"^sk-or-v1-[a-f0-9]{64}$"),
    "openai": re.compile(r"^sk-[a-zA-Z0-9]{48,}$"),
    "anthropic": re.compile(r"^sk-ant-[a-zA-Z0-9\-_]{95,}$"),
    "google": re.compile(r"^AIza[0-9A-Za-z\-_]{35}$"),
    "generic": re.compile(r"^sk-[a-zA-Z0-9\-_]{20,}$"),
}

MIN_KEY_LENGTH = 20

_CONTROL_WHITESPACE = re.compile(r"[\r\n\t]")


def sanitize_api_key(api_key: str) -> str:
    if not isinstance(api_key, str):
        return ""
    return _CONTROL_WHITESPACE.sub("", api_key.strip())


def detect_provider(api_key: str) -> Optional[str]:
    """Return the provider whose key format matches, or None."""
    if len(api_key) < MIN_KEY_LENGTH:
        return None
    for provider, pattern in API_KEY_PATTERNS.items():
        if pattern.match(api_key):
            return provider
    return None


def mask_api_key(api_key: str) -> str:
    if not api_key or len(api_key) < 8:
        return "***"
    return f"{api_key[:4]}{'*' * max(8, len(api_key) - 8)}{api_key[-4:]}"
