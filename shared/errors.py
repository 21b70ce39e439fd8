"""
Shared error handling for the Prompt Enhance Gateway.

Every failure the gateway reports to a caller is a ``GatewayError`` carrying a
stable ``code``, a human readable ``message``, optional ``details`` and the
HTTP status it maps to. Handlers render it as ``{code, message, details?}``.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Optional[Any] = None


class GatewayError(Exception):
    """Base exception for gateway failures surfaced to clients."""

    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Any] = None,
        *,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        self.headers = dict(headers or {})
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(code=self.code, message=self.message, details=self.details)

    def to_content(self) -> Dict[str, Any]:
        return self.to_response().model_dump(exclude_none=True)


class OriginForbiddenError(GatewayError):
    code = "CORS_ORIGIN_FORBIDDEN"
    status_code = 403
    default_message = "Origin not allowed"


class BadRequestError(GatewayError):
    code = "BAD_REQUEST"
    status_code = 400
    default_message = "Bad request"


class UnauthorizedError(GatewayError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Unauthorized"


class RateLimitExceededError(GatewayError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    default_message = "Rate limit exceeded"


class PayloadTooLargeError(GatewayError):
    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    default_message = "Request body too large"


class PromptTooLargeError(GatewayError):
    code = "PROMPT_TOO_LARGE"
    status_code = 413
    default_message = "Prompt length exceeds limit"


class InvalidJSONError(GatewayError):
    code = "INVALID_JSON"
    status_code = 400
    default_message = "Malformed JSON body"


class InvalidBodyError(GatewayError):
    code = "INVALID_BODY"
    status_code = 400
    default_message = "Invalid request body"


class ServerMisconfiguredError(GatewayError):
    code = "SERVER_MISCONFIGURED"
    status_code = 500
    default_message = "Server misconfigured"


class UpstreamTimeoutError(GatewayError):
    code = "UPSTREAM_TIMEOUT"
    status_code = 504
    default_message = "Upstream request timed out"


class UpstreamUnavailableError(GatewayError):
    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502
    default_message = "Upstream request failed"


class UpstreamError(GatewayError):
    """Upstream answered with a non-2xx status; the status is passed through."""

    code = "UPSTREAM_ERROR"
    status_code = 502
    default_message = "Upstream error"


class InternalError(GatewayError):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal Server Error"


class StorageError(InternalError):
    """Counter storage or actor failure. Never fails open."""
