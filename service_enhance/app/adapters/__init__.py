"""
HTTP clients for the gateway's external collaborators.

- turnstile_client: human-verification proof checks.
- upstream_client: the chat-completion API that requests are proxied to.
"""

from .turnstile_client import TurnstileClient, VerificationResult
from .upstream_client import UpstreamClient

__all__ = [
    "TurnstileClient",
    "UpstreamClient",
    "VerificationResult",
]
