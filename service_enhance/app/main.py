"""
Prompt Enhance Gateway service.

Admission pipeline for the completion routes:
origin gate -> token verifier -> daily quota consume -> enhance proxy ->
usage accounting (detached).
"""

import json
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

import httpx
from fastapi import Query, Request
from fastapi.responses import HTMLResponse, JSONResponse

from shared.base_service import BaseService
from shared.config import GatewayConfig
from shared.errors import (
    BadRequestError,
    GatewayError,
    InvalidJSONError,
    OriginForbiddenError,
    RateLimitExceededError,
    ServerMisconfiguredError,
)
from shared.logging import set_subject_context

from .adapters import TurnstileClient, UpstreamClient
from .auth import Identity, TokenIssuer, TokenVerifier, VerificationService, get_client_ip
from .cors import OriginGate, OriginGateMiddleware
from .domain import EnhanceProxy, ProxyMode
from .pages import render_verify_embed_page, render_verify_page
from .ratelimit import DailyRateLimiter
from .storage import CounterStore, create_counter_store
from .usage import UsageAggregator, UsageRecorder

Clock = Callable[[], float]


class EnhanceGatewayService(BaseService):
    """Prompt Enhance Gateway service implementation."""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        *,
        clock: Clock = time.time,
        store: Optional[CounterStore] = None,
        upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
        verification_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.clock = clock
        super().__init__(config)

        self.store = store or create_counter_store(self.config.storage_backend, self.config.redis_url)
        self.issuer = TokenIssuer(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            ttl_seconds=self.config.token_ttl_seconds,
            clock=clock,
        )
        self.verifier = TokenVerifier(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            revoked_subjects=self.config.revoked_subjects,
            client_ip_header=self.config.client_ip_header,
            clock=clock,
        )
        self.turnstile_client = TurnstileClient(
            self.config.turnstile_secret_key,
            self.config.turnstile_verify_url,
            timeout=self.config.verification_timeout_seconds,
            transport=verification_transport,
        )
        self.verification = VerificationService(self.turnstile_client, self.issuer, self.metrics)
        self.rate_limiter = DailyRateLimiter(
            self.store,
            self.config.rate_limit_per_day,
            bypass_subjects=self.config.rate_limit_bypass_subjects,
            clock=clock,
            max_live_actors=self.config.max_live_actors,
            metrics=self.metrics,
        )
        self.usage = UsageAggregator(self.store, clock=clock, max_live_actors=self.config.max_live_actors)
        self.usage_recorder = UsageRecorder(self.usage, self.metrics)
        self.upstream_client = UpstreamClient(
            self.config.upstream_url,
            timeout=self.config.request_timeout_seconds,
            referer=self.config.app_http_referer,
            title=self.config.app_title,
            transport=upstream_transport,
        )
        self.proxy = EnhanceProxy(self.config, self.upstream_client, self.usage_recorder, self.metrics)

        if self.config.rate_limit_bypass_subjects:
            self.logger.warning(
                "Rate limit bypass list is active",
                bypass_count=len(self.config.rate_limit_bypass_subjects),
            )

        self._setup_gateway_routes()

    def _setup_middleware(self):
        """Origin gate inside, request context outside."""
        self.origin_gate = OriginGate(self.config.allowed_origins)
        self.app.add_middleware(OriginGateMiddleware, gate=self.origin_gate)
        super()._setup_middleware()

    def _cors_headers(self, request: Request) -> Dict[str, str]:
        return self.origin_gate.response_headers(getattr(request.state, "cors_origin", None))

    def _authenticate(self, request: Request) -> Identity:
        identity = self.verifier.authenticate(request)
        set_subject_context(identity.subject)
        return identity

    def _require_allowed_origin(self, url: str, parameter: str) -> str:
        """Return the origin of ``url`` if the gate allows it."""
        if not url:
            raise BadRequestError(f"Missing {parameter}")
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            raise BadRequestError(f"Invalid {parameter}")
        origin = f"{parts.scheme}://{parts.netloc}"
        if self.origin_gate.resolve(origin) is None:
            self.logger.info("Verification page origin refused", parameter=parameter, origin=origin)
            raise OriginForbiddenError()
        return origin

    def _require_site_key(self) -> str:
        if not self.config.turnstile_site_key:
            self.logger.error("Verification site key is not configured")
            raise ServerMisconfiguredError()
        return self.config.turnstile_site_key

    async def _enhance(self, request: Request, mode: ProxyMode):
        identity = self._authenticate(request)
        decision = await self.rate_limiter.consume(identity)
        if not decision.success:
            raise RateLimitExceededError(details=decision.to_dict(), headers=decision.headers())

        try:
            return await self.proxy.forward(request, identity, decision, mode)
        except GatewayError as exc:
            exc.headers.update(decision.headers())
            raise

    def _setup_gateway_routes(self):
        """Set up gateway routes."""

        @self.app.post("/api/token")
        async def issue_token(request: Request):
            """Exchange a verification proof for a session token."""
            raw = await self.proxy.read_body(request)
            try:
                data: Any = json.loads(raw) if raw.strip() else {}
            except ValueError as e:
                raise InvalidJSONError() from e

            proof = None
            if isinstance(data, dict):
                proof = data.get("proof") or data.get("cf-turnstile-response")

            session = await self.verification.exchange(proof, get_client_ip(request, self.config.client_ip_header))
            return session.to_response(self.clock())

        @self.app.post("/api/enhance")
        async def enhance(request: Request):
            """Completion with the operator credential."""
            return await self._enhance(request, ProxyMode.PROXY)

        @self.app.post("/api/enhance/byok")
        async def enhance_byok(request: Request):
            """Completion with the caller's own upstream credential."""
            return await self._enhance(request, ProxyMode.BYOK)

        @self.app.get("/api/ratelimit")
        async def rate_limit_status(request: Request):
            identity = self._authenticate(request)
            decision = await self.rate_limiter.peek(identity)
            return JSONResponse(content=decision.to_dict(), headers=decision.headers())

        @self.app.get("/api/usage")
        async def usage_snapshot(request: Request):
            identity = self._authenticate(request)
            snapshot = await self.usage.snapshot(identity.subject)
            return {"subject": identity.subject, **snapshot}

        @self.app.get("/api/config")
        async def public_config():
            """Tunables the client needs before it has a token."""
            return {
                "rate_limit_per_day": self.config.rate_limit_per_day,
                "max_prompt_chars": self.config.max_prompt_chars,
                "allowed_hosts": self.config.allowed_hosts,
                "min_request_interval_ms": self.config.min_request_interval_ms,
                "default_model": self.config.default_model,
                "turnstile_site_key": self.config.turnstile_site_key,
                "token_ttl_seconds": self.config.token_ttl_seconds,
            }

        @self.app.get("/verify", response_class=HTMLResponse)
        async def verify_page(redirect_uri: str = Query(default="")):
            self._require_allowed_origin(redirect_uri, "redirect_uri")
            site_key = self._require_site_key()
            return HTMLResponse(
                content=render_verify_page(site_key, redirect_uri),
                headers={"Content-Security-Policy": "frame-ancestors 'none'"},
            )

        @self.app.get("/verify-embed", response_class=HTMLResponse)
        async def verify_embed_page(parent_origin: str = Query(default="")):
            origin = self._require_allowed_origin(parent_origin, "parent_origin")
            site_key = self._require_site_key()
            return HTMLResponse(
                content=render_verify_embed_page(site_key, origin),
                headers={"Content-Security-Policy": f"frame-ancestors {origin}"},
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check gateway dependencies."""
        return {"storage": "ok" if await self.store.ping() else "error"}

    async def _on_shutdown(self) -> None:
        await self.usage_recorder.drain()
        await self.upstream_client.close()
        await self.turnstile_client.close()
        await self.store.close()


def create_app(config: Optional[GatewayConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = EnhanceGatewayService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = EnhanceGatewayService()
    service.run()
