"""
Unit tests for counter storage backends.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from service_enhance.app.storage import (
    MemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)
from shared.errors import StorageError


class TestMemoryCounterStore:
    """Test cases for MemoryCounterStore."""

    @pytest.fixture
    def store(self):
        return MemoryCounterStore()

    @pytest.mark.asyncio
    async def test_json_documents(self, store):
        assert await store.get_json("ratelimit:s:ip") is None

        await store.set_json("ratelimit:s:ip", {"day_key": "2024-03-10", "count": 2})

        assert await store.get_json("ratelimit:s:ip") == {"day_key": "2024-03-10", "count": 2}

    @pytest.mark.asyncio
    async def test_counters(self, store):
        assert await store.incr_by("usage:s:calls:total", 3) == 3
        assert await store.incr_by("usage:s:calls:total", 2) == 5
        assert await store.get_ints(["usage:s:calls:total", "usage:s:tokens:total"]) == [5, 0]

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True


class TestRedisCounterStore:
    """Test cases for RedisCounterStore."""

    @pytest.fixture
    def mock_redis(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, mock_redis):
        store = RedisCounterStore("redis://localhost:6379/0")
        store._redis = mock_redis
        return store

    @pytest.mark.asyncio
    async def test_get_json(self, store, mock_redis):
        mock_redis.get.return_value = json.dumps({"day_key": "2024-03-10", "count": 1})

        assert await store.get_json("k") == {"day_key": "2024-03-10", "count": 1}
        mock_redis.get.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    async def test_get_json_missing(self, store, mock_redis):
        mock_redis.get.return_value = None

        assert await store.get_json("k") is None

    @pytest.mark.asyncio
    async def test_get_json_corrupt(self, store, mock_redis):
        mock_redis.get.return_value = "{not json"

        with pytest.raises(StorageError):
            await store.get_json("k")

    @pytest.mark.asyncio
    async def test_set_json(self, store, mock_redis):
        await store.set_json("k", {"day_key": "2024-03-10", "count": 4})

        mock_redis.set.assert_awaited_once_with("k", json.dumps({"day_key": "2024-03-10", "count": 4}))

    @pytest.mark.asyncio
    async def test_incr_by(self, store, mock_redis):
        mock_redis.incrby.return_value = 7

        assert await store.incr_by("k", 2) == 7
        mock_redis.incrby.assert_awaited_once_with("k", 2)

    @pytest.mark.asyncio
    async def test_get_ints(self, store, mock_redis):
        mock_redis.mget.return_value = ["4", None]

        assert await store.get_ints(["a", "b"]) == [4, 0]

    @pytest.mark.asyncio
    async def test_connection_failure_is_wrapped(self, store, mock_redis):
        mock_redis.get.side_effect = ConnectionError("refused")
        mock_redis.incrby.side_effect = ConnectionError("refused")

        with pytest.raises(StorageError):
            await store.get_json("k")
        with pytest.raises(StorageError):
            await store.incr_by("k", 1)

    @pytest.mark.asyncio
    async def test_ping_failure(self, store, mock_redis):
        mock_redis.ping.side_effect = ConnectionError("refused")

        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_close(self, store, mock_redis):
        await store.close()

        mock_redis.aclose.assert_awaited_once()
        assert store._redis is None

    @pytest.mark.asyncio
    async def test_client_created_from_url(self):
        store = RedisCounterStore("redis://cache:6379/1")
        client = AsyncMock()

        with patch("service_enhance.app.storage.counter_store.redis.from_url", return_value=client) as from_url:
            assert await store._get_redis() is client
            assert await store._get_redis() is client

        from_url.assert_called_once()
        assert from_url.call_args.args[0] == "redis://cache:6379/1"


class TestCreateCounterStore:
    """Test cases for backend selection."""

    def test_memory(self):
        assert isinstance(create_counter_store("memory", ""), MemoryCounterStore)

    def test_redis(self):
        assert isinstance(create_counter_store("REDIS", "redis://localhost:6379/0"), RedisCounterStore)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_counter_store("sqlite", "")
