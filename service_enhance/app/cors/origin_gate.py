"""
Origin gate for the gateway.

Every request is matched against the origin allow-list before routing.
Preflights are answered here and never reach a route. Protected routes
without an allowed ``Origin`` are refused before their body is read.
"""

import re
from typing import Dict, Iterable, List, Optional, Pattern

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from shared.errors import OriginForbiddenError
from shared.logging import get_logger

PUBLIC_PATHS = frozenset({
    "/api/token",
    "/api/config",
    "/verify",
    "/verify-embed",
    "/health",
    "/metrics",
})

QUOTA_HEADERS = (
    "X-Usage-Count",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
)

ALLOWED_METHODS = "GET, POST, OPTIONS"
DEFAULT_ALLOWED_HEADERS = "Authorization, Content-Type, X-User-Token"
PREFLIGHT_MAX_AGE = "86400"


def _compile_wildcard(entry: str) -> Pattern[str]:
    # "*" stands for exactly one origin segment, e.g. an extension id
    parts = [re.escape(part) for part in entry.split("*")]
    return re.compile("^" + "[^/:]+".join(parts) + "$")


class OriginGate:
    """Allow-list of exact origins plus ``*`` wildcards such as ``chrome-extension://*``."""

    def __init__(self, allowed_origins: Iterable[str], public_paths: Iterable[str] = PUBLIC_PATHS):
        self.exact = set()
        self.patterns: List[Pattern[str]] = []
        for entry in allowed_origins:
            entry = entry.strip().rstrip("/")
            if not entry:
                continue
            if "*" in entry:
                self.patterns.append(_compile_wildcard(entry))
            else:
                self.exact.add(entry)
        self.public_paths = frozenset(public_paths)

    def resolve(self, origin: Optional[str]) -> Optional[str]:
        """Return the origin to echo back, or None when it is not allowed."""
        if not origin or origin == "null":
            return None
        if origin in self.exact:
            return origin
        for pattern in self.patterns:
            if pattern.match(origin):
                return origin
        return None

    def is_public(self, path: str) -> bool:
        return path in self.public_paths

    def response_headers(self, resolved: Optional[str]) -> Dict[str, str]:
        headers = {
            "Access-Control-Expose-Headers": ", ".join(QUOTA_HEADERS),
            "Cache-Control": "no-store",
            "Vary": "Origin",
        }
        if resolved:
            headers["Access-Control-Allow-Origin"] = resolved
        return headers

    def preflight_headers(self, resolved: Optional[str], requested_headers: Optional[str]) -> Dict[str, str]:
        headers = self.response_headers(resolved)
        headers.update({
            "Access-Control-Allow-Methods": ALLOWED_METHODS,
            "Access-Control-Allow-Headers": (
                requested_headers.strip() if requested_headers and requested_headers.strip()
                else DEFAULT_ALLOWED_HEADERS
            ),
            "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
        })
        return headers


def forbidden_response() -> JSONResponse:
    error = OriginForbiddenError()
    return JSONResponse(status_code=error.status_code, content=error.to_content())


class OriginGateMiddleware(BaseHTTPMiddleware):
    """Applies the origin gate and stamps CORS headers on every response."""

    def __init__(self, app, gate: OriginGate):
        super().__init__(app)
        self.gate = gate
        self.logger = get_logger("gateway.origin_gate")

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("Origin")
        resolved = self.gate.resolve(origin)
        # read back by the error handlers
        request.state.cors_origin = resolved

        if request.method == "OPTIONS":
            if resolved is None:
                self.logger.info("Preflight refused", origin=origin, path=request.url.path)
                response = forbidden_response()
            else:
                response = Response(status_code=204)
            headers = self.gate.preflight_headers(
                resolved, request.headers.get("Access-Control-Request-Headers")
            )
        else:
            if resolved is None and not self.gate.is_public(request.url.path):
                self.logger.info("Origin refused", origin=origin, path=request.url.path)
                response = forbidden_response()
            else:
                response = await call_next(request)
            headers = self.gate.response_headers(resolved)

        for name, value in headers.items():
            response.headers[name] = value
        return response
