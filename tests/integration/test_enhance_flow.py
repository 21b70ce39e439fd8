"""
End-to-end integration tests for the verify -> token -> enhance flow.
"""

import time

import pytest
from fastapi.testclient import TestClient

from service_enhance.app.main import EnhanceGatewayService
from shared.config import SEVEN_DAYS_SECONDS
from shared.test_helpers import (
    TEST_ORIGIN,
    FakeClock,
    RecordingUpstream,
    enhance_body,
    make_config,
    turnstile_transport,
)


class TestEnhanceFlow:
    """Complete client journey against one gateway instance."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def upstream(self):
        return RecordingUpstream()

    @pytest.fixture
    def client(self, clock, upstream):
        service = EnhanceGatewayService(
            make_config(rate_limit_per_day=3),
            clock=clock,
            upstream_transport=upstream.transport(),
            verification_transport=turnstile_transport(),
        )
        with TestClient(service.app) as client:
            yield client

    def obtain_token(self, client):
        response = client.post("/api/token", json={"proof": "human-proof"}, headers={"Origin": TEST_ORIGIN})
        assert response.status_code == 200
        return response.json()["token"]

    def test_quota_of_three(self, client, upstream):
        token = self.obtain_token(client)
        headers = {"Origin": TEST_ORIGIN, "Authorization": f"Bearer {token}"}

        responses = [client.post("/api/enhance", json=enhance_body("hello"), headers=headers) for _ in range(4)]

        assert [r.status_code for r in responses] == [200, 200, 200, 429]
        assert [r.headers["x-ratelimit-remaining"] for r in responses] == ["2", "1", "0", "0"]
        assert responses[3].headers["x-ratelimit-reset"] == responses[2].headers["x-ratelimit-reset"]
        assert responses[3].json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert len(upstream.requests) == 3

    def test_new_day_restores_quota(self, client, clock):
        token = self.obtain_token(client)
        headers = {"Origin": TEST_ORIGIN, "Authorization": f"Bearer {token}"}
        for _ in range(4):
            client.post("/api/enhance", json=enhance_body("hello"), headers=headers)

        clock.advance(86400)
        response = client.post("/api/enhance", json=enhance_body("hello"), headers=headers)

        assert response.status_code == 200
        assert response.headers["x-usage-count"] == "1"
        assert response.headers["x-ratelimit-remaining"] == "2"

    def test_each_verification_is_a_new_identity(self, client):
        first = {"Origin": TEST_ORIGIN, "Authorization": f"Bearer {self.obtain_token(client)}"}
        for _ in range(3):
            client.post("/api/enhance", json=enhance_body("hello"), headers=first)

        second = {"Origin": TEST_ORIGIN, "Authorization": f"Bearer {self.obtain_token(client)}"}
        response = client.post("/api/enhance", json=enhance_body("hello"), headers=second)

        assert response.status_code == 200
        assert response.headers["x-ratelimit-remaining"] == "2"

    def test_token_expires_after_seven_days(self, client, clock):
        token = self.obtain_token(client)
        headers = {"Origin": TEST_ORIGIN, "Authorization": f"Bearer {token}"}

        clock.advance(SEVEN_DAYS_SECONDS - 1)
        assert client.get("/api/ratelimit", headers=headers).status_code == 200

        clock.advance(1)
        response = client.get("/api/ratelimit", headers=headers)
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_usage_tracks_successful_calls(self, client):
        token = self.obtain_token(client)
        headers = {"Origin": TEST_ORIGIN, "Authorization": f"Bearer {token}"}
        for _ in range(2):
            client.post("/api/enhance", json=enhance_body("hello"), headers=headers)

        usage = None
        for _ in range(50):
            usage = client.get("/api/usage", headers=headers).json()
            if usage["calls"]["total"] == 2 and usage["tokens"]["total"] == 84:
                break
            time.sleep(0.01)

        assert usage["calls"] == {"daily": 2, "monthly": 2, "total": 2}
        assert usage["tokens"]["total"] == 84

    def test_rotating_forwarded_for_does_not_reset_quota(self, client, upstream):
        token = self.obtain_token(client)

        statuses = []
        for i in range(5):
            headers = {
                "Origin": TEST_ORIGIN,
                "Authorization": f"Bearer {token}",
                "X-Forwarded-For": f"203.0.113.{i}",
                "X-Real-IP": f"198.51.100.{i}",
            }
            statuses.append(client.post("/api/enhance", json=enhance_body("hello"), headers=headers).status_code)

        assert statuses == [200, 200, 200, 429, 429]
        assert len(upstream.requests) == 3
