"""
FastAPI scaffold shared by gateway services: request context, health,
Prometheus exposition and error rendering.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from shared.config import GatewayConfig, get_config
from shared.errors import GatewayError, InternalError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

SERVICE_VERSION = "1.0.0"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request id for the duration of a request and records its outcome."""

    def __init__(self, app, service: "BaseService"):
        super().__init__(app)
        self.service = service

    async def dispatch(self, request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID") or None)
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            self.service.logger.error("Request crashed", method=request.method, path=request.url.path, error=str(e))
            raise
        finally:
            elapsed = time.perf_counter() - started
            self.service.metrics.record_http_request(request.method, request.url.path, status_code, elapsed)
            self.service.logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round(elapsed * 1000, 2),
            )
            clear_context()


class BaseService:
    """Owns the FastAPI app plus the config, logger and metrics every route shares.

    Subclasses extend `_setup_middleware`, add their own routes after
    construction and override `_check_dependencies` / `_on_shutdown`.
    """

    def __init__(self, config: Optional[GatewayConfig] = None):
        self.config = config or get_config()
        self.service_name = self.config.service_name

        configure_logging(self.service_name, self.config.log_level)
        self.logger = get_logger(self.service_name)
        self.metrics = get_metrics_collector(self.service_name)
        self._booted_at = time.time()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        local = self.config.env == "local"

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            self.logger.info("Gateway starting", port=self.config.port, env=self.config.env)
            yield
            await self._on_shutdown()
            self.logger.info("Gateway stopped")

        return FastAPI(
            title="Prompt Enhance Gateway",
            description="Edge gateway for prompt enhancement completions",
            version=SERVICE_VERSION,
            docs_url="/docs" if local else None,
            redoc_url="/redoc" if local else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        # add_middleware prepends, so whatever is added last runs first.
        self.app.add_middleware(RequestContextMiddleware, service=self)

    def _cors_headers(self, request: Request) -> Dict[str, str]:
        """CORS headers for responses rendered outside the user middleware stack."""
        return {}

    def _setup_routes(self):
        @self.app.get("/health")
        async def health():
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Dependency probe failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)},
                )

            healthy = all(state == "ok" for state in dependencies.values())
            status = "ok" if healthy else "degraded"
            self.metrics.record_health_check(status)
            return {
                "service": self.service_name,
                "status": status,
                "dependencies": dependencies,
                "uptime_seconds": round(time.time() - self._booted_at, 3),
                "version": SERVICE_VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown"),
            }

        @self.app.get("/metrics")
        async def metrics():
            return Response(generate_latest(self.metrics.registry), media_type=CONTENT_TYPE_LATEST)

        @self.app.exception_handler(GatewayError)
        async def handle_gateway_error(request: Request, exc: GatewayError):
            level = "error" if exc.status_code >= 500 else "info"
            getattr(self.logger, level)(
                "Request rejected", code=exc.code, status_code=exc.status_code, path=request.url.path
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(exc.to_content(), status_code=exc.status_code, headers=exc.headers)

        @self.app.exception_handler(Exception)
        async def handle_unexpected(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
            error = InternalError()
            self.metrics.record_error(error.code)
            return JSONResponse(error.to_content(), status_code=error.status_code, headers=self._cors_headers(request))

    async def _check_dependencies(self) -> Dict[str, str]:
        """Map of dependency name to "ok" or "error"."""
        return {}

    async def _on_shutdown(self) -> None:
        """Release service resources."""

    def run(self):
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
        )
