"""
Cloudflare Turnstile client used to verify human-verification proofs.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from shared.errors import ServerMisconfiguredError, UpstreamUnavailableError
from shared.logging import get_logger


@dataclass(frozen=True)
class VerificationResult:
    """Outcome reported by the verification provider."""

    success: bool
    error_codes: List[str] = field(default_factory=list)
    hostname: Optional[str] = None


class TurnstileClient:
    """Client for the Turnstile siteverify endpoint."""

    def __init__(
        self,
        secret_key: str,
        verify_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.verify_url = verify_url
        self.logger = get_logger("gateway.turnstile_client")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def verify(self, proof: str, remote_ip: Optional[str] = None) -> VerificationResult:
        """Check a challenge proof with the provider."""
        if not self.secret_key:
            self.logger.error("Verification secret is not configured")
            raise ServerMisconfiguredError()

        form = {"secret": self.secret_key, "response": proof}
        if remote_ip and remote_ip != "unknown":
            form["remoteip"] = remote_ip

        try:
            response = await self._client.post(self.verify_url, data=form)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            self.logger.error("Verification provider HTTP error", error=str(e))
            raise UpstreamUnavailableError("Verification provider unavailable") from e
        except ValueError as e:
            self.logger.error("Verification provider returned invalid JSON", error=str(e))
            raise UpstreamUnavailableError("Verification provider unavailable") from e

        error_codes = payload.get("error-codes") or []
        result = VerificationResult(
            success=payload.get("success") is True,
            error_codes=[str(code) for code in error_codes],
            hostname=payload.get("hostname"),
        )
        if not result.success:
            self.logger.info("Verification proof rejected", error_codes=result.error_codes)
        return result
