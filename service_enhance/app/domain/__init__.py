"""
Domain logic for the enhance routes: request models, caller credential
checks and the proxy pipeline.
"""

from .credentials import detect_provider, mask_api_key, sanitize_api_key
from .enhance_proxy import EnhanceProxy, ProxyMode
from .schemas import ChatMessage, EnhanceEnvelope, EnhanceRequest

__all__ = [
    "ChatMessage",
    "EnhanceEnvelope",
    "EnhanceProxy",
    "EnhanceRequest",
    "ProxyMode",
    "detect_provider",
    "mask_api_key",
    "sanitize_api_key",
]
