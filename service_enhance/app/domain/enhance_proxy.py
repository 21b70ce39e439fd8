"""
Enhance proxy: validates a completion request, injects the operator system
prompt, forwards it upstream and relays the answer.

Callers reach this only after the origin gate, the token verifier and a
successful quota ``consume``.
"""

import json
from contextlib import nullcontext
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from shared.config import GatewayConfig
from shared.errors import (
    GatewayError,
    InvalidBodyError,
    InvalidJSONError,
    PayloadTooLargeError,
    PromptTooLargeError,
    ServerMisconfiguredError,
    UpstreamError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..adapters.upstream_client import UpstreamClient
from ..auth.tokens import Identity
from ..ratelimit import QuotaDecision
from ..usage import UsageRecorder
from .credentials import detect_provider, mask_api_key
from .schemas import EnhanceEnvelope, EnhanceRequest, field_errors

UPSTREAM_ERROR_BODY_CHARS = 2000
USAGE_CAPTURE_BYTES = 256 * 1024


class ProxyMode(str, Enum):
    PROXY = "proxy"
    BYOK = "byok"


def upstream_error_payload(body: bytes, content_type: str) -> Union[Any, str]:
    """Decode an upstream error body, truncating anything that is not JSON."""
    text = body.decode("utf-8", errors="replace")
    if "json" in content_type.lower():
        try:
            return json.loads(text)
        except ValueError:
            pass
    return text[:UPSTREAM_ERROR_BODY_CHARS]


def total_tokens(body: bytes) -> Optional[int]:
    """Read ``usage.total_tokens`` from a JSON completion, if reported."""
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("usage"), dict):
        return None
    tokens = payload["usage"].get("total_tokens")
    if isinstance(tokens, int) and not isinstance(tokens, bool) and tokens >= 0:
        return tokens
    return None


class EnhanceProxy:
    """Request-proxying pipeline for the enhance routes."""

    def __init__(
        self,
        config: GatewayConfig,
        upstream_client: UpstreamClient,
        usage_recorder: UsageRecorder,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.upstream_client = upstream_client
        self.usage_recorder = usage_recorder
        self.metrics = metrics
        self.logger = get_logger("gateway.enhance_proxy")

    async def read_body(self, request: Request) -> bytes:
        """Read the request body, refusing anything over ``max_body_bytes``."""
        limit = self.config.max_body_bytes
        declared = request.headers.get("content-length")
        if declared is not None and declared.strip().isdigit() and int(declared) > limit:
            raise PayloadTooLargeError(details={"max_body_bytes": limit})

        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise PayloadTooLargeError(details={"max_body_bytes": limit})
        return bytes(body)

    def parse(self, raw: bytes, mode: ProxyMode) -> EnhanceRequest:
        """Decode and validate a request body for ``mode``."""
        if raw.strip():
            try:
                data = json.loads(raw)
            except ValueError as e:
                raise InvalidJSONError() from e
        else:
            data = {}

        limit = self.config.max_prompt_chars
        model = EnhanceEnvelope if mode is ProxyMode.BYOK else EnhanceRequest
        try:
            enhance_request = model.model_validate(data, context={"max_prompt_chars": limit})
        except ValidationError as e:
            raise InvalidBodyError(details={"errors": field_errors(e)}) from e

        if not self._conversation(enhance_request):
            raise InvalidBodyError(details={"errors": [{
                "field": "messages",
                "message": "At least one non-system message is required",
                "type": "value_error",
            }]})

        if enhance_request.prompt_chars > limit:
            raise PromptTooLargeError(details={
                "max_prompt_chars": limit,
                "prompt_chars": enhance_request.prompt_chars,
            })
        return enhance_request

    @staticmethod
    def _conversation(enhance_request: EnhanceRequest) -> List[Dict[str, str]]:
        return [
            {"role": message.role, "content": message.content}
            for message in enhance_request.messages
            if message.role.lower() != "system"
        ]

    def build_payload(self, enhance_request: EnhanceRequest) -> Dict[str, Any]:
        """Upstream body: operator system prompt first, caller system messages dropped."""
        messages = [{"role": "system", "content": self.config.system_prompt}]
        messages.extend(self._conversation(enhance_request))

        payload: Dict[str, Any] = {
            "model": enhance_request.model or self.config.default_model,
            "messages": messages,
            "max_tokens": (
                enhance_request.max_tokens
                if enhance_request.max_tokens is not None
                else self.config.default_max_tokens
            ),
            "temperature": (
                enhance_request.temperature
                if enhance_request.temperature is not None
                else self.config.default_temperature
            ),
        }
        if enhance_request.stream is not None:
            payload["stream"] = enhance_request.stream
        return payload

    def resolve_api_key(self, enhance_request: EnhanceRequest, mode: ProxyMode) -> str:
        if isinstance(enhance_request, EnhanceEnvelope):
            api_key = enhance_request.api_key.get_secret_value()
            self.logger.info(
                "Forwarding with caller credential",
                provider=detect_provider(api_key),
                key_hint=mask_api_key(api_key),
            )
            return api_key

        if not self.config.openrouter_api_key:
            self.logger.error("Upstream API key is not configured", mode=mode.value)
            raise ServerMisconfiguredError()
        return self.config.openrouter_api_key

    def _record_outcome(self, mode: ProxyMode, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_upstream(mode.value, outcome)

    async def forward(
        self,
        request: Request,
        identity: Identity,
        decision: QuotaDecision,
        mode: ProxyMode,
    ) -> StreamingResponse:
        """Validate, forward and relay one completion request."""
        raw = await self.read_body(request)
        enhance_request = self.parse(raw, mode)
        api_key = self.resolve_api_key(enhance_request, mode)
        payload = self.build_payload(enhance_request)

        timer = (
            self.metrics.time_operation("upstream_request_duration_seconds", mode=mode.value)
            if self.metrics
            else nullcontext()
        )
        try:
            with timer:
                response = await self.upstream_client.open(payload, api_key)
        except GatewayError as e:
            self._record_outcome(mode, e.code.lower())
            raise

        if not 200 <= response.status_code < 300:
            body = await self.upstream_client.read_error_body(response)
            upstream = upstream_error_payload(body, response.headers.get("content-type", ""))
            self._record_outcome(mode, "upstream_error")
            self.logger.warning(
                "Upstream returned an error",
                status_code=response.status_code,
                mode=mode.value,
            )
            raise UpstreamError(
                details={"status": response.status_code, "upstream": upstream},
                status_code=response.status_code if response.status_code >= 400 else 502,
            )

        self._record_outcome(mode, "success")
        self.usage_recorder.record(identity.subject, "calls", 1)

        headers = self.upstream_client.relay_headers(response)
        headers.update(decision.headers())
        account_tokens = "json" in response.headers.get("content-type", "").lower()
        return StreamingResponse(
            self._relay(response, identity.subject, mode, account_tokens),
            status_code=response.status_code,
            headers=headers,
        )

    async def _relay(
        self,
        response: httpx.Response,
        subject: str,
        mode: ProxyMode,
        account_tokens: bool,
    ) -> AsyncIterator[bytes]:
        captured: Optional[bytearray] = bytearray() if account_tokens else None
        try:
            async for chunk in response.aiter_bytes():
                if captured is not None:
                    if len(captured) + len(chunk) <= USAGE_CAPTURE_BYTES:
                        captured.extend(chunk)
                    else:
                        captured = None
                yield chunk
        except httpx.HTTPError as e:
            # status line is already sent; the caller sees a truncated body
            self.logger.warning("Upstream stream interrupted", mode=mode.value, error=str(e))
            self._record_outcome(mode, "interrupted")
            return
        finally:
            await response.aclose()

        if captured:
            tokens = total_tokens(bytes(captured))
            if tokens:
                self.usage_recorder.record(subject, "tokens", tokens)
