"""
Session token issuance and verification.

Tokens are stateless HS256 JWTs carrying only an opaque subject, ``iat`` and
``exp``. Validity is a function of signature and expiry; nothing is stored
server side.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from fastapi import Request
from jose import JWTError, jwt

from shared.config import DEFAULT_CLIENT_IP_HEADER, SEVEN_DAYS_SECONDS
from shared.errors import ServerMisconfiguredError, UnauthorizedError
from shared.logging import get_logger

Clock = Callable[[], float]


@dataclass(frozen=True)
class Identity:
    """Rate limiting partition key: who, and from where."""

    subject: str
    client_ip: str


@dataclass(frozen=True)
class SessionToken:
    """A signed bearer token bound to a freshly minted subject."""

    subject: str
    issued_at: int
    expires_at: int
    token: str

    def to_response(self, now: float) -> Dict[str, Any]:
        return {
            "token": self.token,
            "token_type": "Bearer",
            "expires_at": self.expires_at,
            "expires_in": max(0, self.expires_at - int(now)),
        }


def get_client_ip(request: Request, trusted_header: str = DEFAULT_CLIENT_IP_HEADER) -> str:
    """Caller IP from the one header the edge proxy overwrites, else the socket peer.

    Forwarding headers such as X-Forwarded-For are never read: the caller sets
    them, and the IP is part of the quota key.
    """
    if trusted_header:
        edge_ip = request.headers.get(trusted_header, "").strip()
        if edge_ip:
            return edge_ip
    if request.client:
        return request.client.host
    return "unknown"


def extract_bearer_token(request: Request) -> Optional[str]:
    """Read the session token from Authorization, falling back to X-User-Token."""
    authorization = request.headers.get("Authorization")
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() != "bearer" or not credentials.strip():
            raise UnauthorizedError("Invalid authorization header format")
        return credentials.strip()

    legacy = request.headers.get("X-User-Token")
    if legacy and legacy.strip():
        return legacy.strip()
    return None


class TokenIssuer:
    """Mints subjects and signs session tokens."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        ttl_seconds: int = SEVEN_DAYS_SECONDS,
        clock: Clock = time.time,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.logger = get_logger("gateway.auth.issuer")

    def issue(self) -> SessionToken:
        if not self.secret:
            self.logger.error("Token signing secret is not configured")
            raise ServerMisconfiguredError()

        # A fresh random subject per issuance: no linkage to earlier tokens.
        subject = str(uuid.uuid4())
        issued_at = int(self.clock())
        expires_at = issued_at + self.ttl_seconds
        token = jwt.encode(
            {"sub": subject, "iat": issued_at, "exp": expires_at},
            self.secret,
            algorithm=self.algorithm,
        )
        return SessionToken(subject=subject, issued_at=issued_at, expires_at=expires_at, token=token)


class TokenVerifier:
    """Validates signature and expiry of session tokens. Never refreshes."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        revoked_subjects: Iterable[str] = (),
        client_ip_header: str = DEFAULT_CLIENT_IP_HEADER,
        clock: Clock = time.time,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.revoked_subjects = frozenset(revoked_subjects)
        self.client_ip_header = client_ip_header
        self.clock = clock
        self.logger = get_logger("gateway.auth.verifier")

    def verify(self, token: str) -> SessionToken:
        if not self.secret:
            self.logger.error("Token signing secret is not configured")
            raise ServerMisconfiguredError()

        try:
            # expiry is checked below with a strict comparison
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "verify_aud": False},
            )
        except JWTError as exc:
            self.logger.info("Session token rejected", reason="invalid_signature")
            raise UnauthorizedError("Invalid or expired token") from exc

        subject = claims.get("sub")
        expires_at = claims.get("exp")
        issued_at = claims.get("iat")
        if not isinstance(subject, str) or not subject or not isinstance(expires_at, int):
            raise UnauthorizedError("Invalid or expired token")

        if expires_at <= self.clock():
            self.logger.info("Session token rejected", reason="expired")
            raise UnauthorizedError("Invalid or expired token")

        if subject in self.revoked_subjects:
            self.logger.warning("Revoked subject presented a token", revoked_subject=subject)
            raise UnauthorizedError("Invalid or expired token")

        return SessionToken(
            subject=subject,
            issued_at=issued_at if isinstance(issued_at, int) else 0,
            expires_at=expires_at,
            token=token,
        )

    def authenticate(self, request: Request) -> Identity:
        """Resolve the caller identity of a protected request."""
        token = extract_bearer_token(request)
        if not token:
            raise UnauthorizedError("Missing session token")

        session = self.verify(token)
        identity = Identity(subject=session.subject, client_ip=get_client_ip(request, self.client_ip_header))
        request.state.identity = identity
        return identity
