"""
Client for the upstream chat completion API.
"""

import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from shared.errors import UpstreamTimeoutError, UpstreamUnavailableError
from shared.logging import get_logger

# Hop-by-hop or re-encoded by the relay; never copied to the caller.
DROPPED_RESPONSE_HEADERS = frozenset({
    "connection",
    "content-encoding",
    "content-length",
    "keep-alive",
    "set-cookie",
    "transfer-encoding",
})


class UpstreamClient:
    """Sends completion requests upstream and hands back streaming responses."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 15.0,
        referer: str = "",
        title: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.referer = referer
        self.title = title
        self.logger = get_logger("gateway.upstream_client")
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _headers(self, api_key: str) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        if self.title:
            headers["X-Title"] = self.title
        return headers

    async def open(self, payload: Dict[str, Any], api_key: str) -> httpx.Response:
        """Send ``payload`` and return once response headers arrive.

        The body is left unread; the caller must consume or close the response.
        Raises UpstreamTimeoutError when the deadline passes before headers
        arrive and UpstreamUnavailableError on transport failures.
        """
        request = self._client.build_request("POST", self.url, json=payload, headers=self._headers(api_key))
        start_time = time.time()
        try:
            response = await asyncio.wait_for(self._client.send(request, stream=True), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            self.logger.warning("Upstream request timed out", timeout_seconds=self.timeout)
            raise UpstreamTimeoutError() from e
        except httpx.HTTPError as e:
            self.logger.error("Upstream transport error", error=str(e))
            raise UpstreamUnavailableError() from e

        self.logger.debug(
            "Upstream responded",
            status_code=response.status_code,
            elapsed_seconds=round(time.time() - start_time, 3),
        )
        return response

    async def read_error_body(self, response: httpx.Response) -> bytes:
        """Read a non-2xx body within the request deadline, then release the connection."""
        try:
            return await asyncio.wait_for(response.aread(), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.HTTPError) as e:
            self.logger.warning("Failed to read upstream error body", error=str(e))
            return b""
        finally:
            await response.aclose()

    @staticmethod
    def relay_headers(response: httpx.Response) -> Dict[str, str]:
        return {
            name: value
            for name, value in response.headers.items()
            if name.lower() not in DROPPED_RESPONSE_HEADERS
            and not name.lower().startswith("access-control-")
        }
