"""
Unit tests for the upstream completion client.
"""

import asyncio
import json

import httpx
import pytest

from service_enhance.app.adapters import UpstreamClient
from shared.errors import UpstreamTimeoutError, UpstreamUnavailableError
from shared.test_helpers import TEST_UPSTREAM_URL, RecordingUpstream


class TestUpstreamClient:
    """Test cases for UpstreamClient."""

    def make_client(self, handler, timeout=5.0):
        return UpstreamClient(
            TEST_UPSTREAM_URL,
            timeout=timeout,
            referer="https://enhance.test",
            title="Enhance Prompt",
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_open_sends_identifying_headers(self):
        upstream = RecordingUpstream()
        client = self.make_client(upstream)

        response = await client.open({"model": "m", "messages": []}, "sk-operator")
        body = await response.aread()
        await response.aclose()
        await client.close()

        sent = upstream.requests[0]
        assert sent.headers["Authorization"] == "Bearer sk-operator"
        assert sent.headers["HTTP-Referer"] == "https://enhance.test"
        assert sent.headers["X-Title"] == "Enhance Prompt"
        assert json.loads(sent.content) == {"model": "m", "messages": []}
        assert json.loads(body)["usage"]["total_tokens"] == 42

    @pytest.mark.asyncio
    async def test_timeout(self):
        upstream = RecordingUpstream(raise_error=lambda request: httpx.ReadTimeout("slow", request=request))
        client = self.make_client(upstream)

        with pytest.raises(UpstreamTimeoutError):
            await client.open({}, "sk-operator")
        await client.close()

    @pytest.mark.asyncio
    async def test_deadline_aborts_slow_upstream(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        client = self.make_client(handler, timeout=0.05)

        with pytest.raises(UpstreamTimeoutError):
            await client.open({}, "sk-operator")
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        upstream = RecordingUpstream(raise_error=lambda request: httpx.ConnectError("refused", request=request))
        client = self.make_client(upstream)

        with pytest.raises(UpstreamUnavailableError):
            await client.open({}, "sk-operator")
        await client.close()

    @pytest.mark.asyncio
    async def test_read_error_body(self):
        client = self.make_client(RecordingUpstream(status_code=429, body={"error": "slow down"}))

        response = await client.open({}, "sk-operator")
        body = await client.read_error_body(response)
        await client.close()

        assert response.status_code == 429
        assert json.loads(body) == {"error": "slow down"}
        assert response.is_closed

    def test_relay_headers_drop_hop_by_hop_and_cors(self):
        response = httpx.Response(200, headers={
            "content-type": "application/json",
            "content-length": "10",
            "content-encoding": "gzip",
            "set-cookie": "a=b",
            "access-control-allow-origin": "*",
            "x-upstream-id": "gen-1",
        })

        assert UpstreamClient.relay_headers(response) == {
            "content-type": "application/json",
            "x-upstream-id": "gen-1",
        }
