"""
Authentication helpers for the gateway: session tokens and the
verification flow that issues them.
"""

from .tokens import (
    Identity,
    SessionToken,
    TokenIssuer,
    TokenVerifier,
    extract_bearer_token,
    get_client_ip,
)
from .verification import VerificationService

__all__ = [
    "Identity",
    "SessionToken",
    "TokenIssuer",
    "TokenVerifier",
    "VerificationService",
    "extract_bearer_token",
    "get_client_ip",
]
