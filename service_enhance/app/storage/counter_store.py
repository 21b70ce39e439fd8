"""
Counter storage backends for the rate limiter and usage aggregator actors.

Stores are dumb key/value holders: they provide no cross-key atomicity and
no locking. Serialization of read-modify-write sequences is the job of the
actor that owns the key.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import redis.asyncio as redis

from shared.errors import StorageError
from shared.logging import get_logger


class CounterStore(ABC):
    """Minimal async key/value interface used by the actors."""

    @abstractmethod
    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the decoded JSON document stored under ``key`` or None."""

    @abstractmethod
    async def set_json(self, key: str, value: Dict[str, Any]) -> None:
        """Replace the JSON document stored under ``key``."""

    @abstractmethod
    async def incr_by(self, key: str, amount: int) -> int:
        """Add ``amount`` to the integer under ``key`` and return the new value."""

    @abstractmethod
    async def get_ints(self, keys: Sequence[str]) -> List[int]:
        """Return integer values for ``keys``, treating missing keys as 0."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCounterStore(CounterStore):
    """Process-local store used for development and tests."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set_json(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = json.dumps(value)

    async def incr_by(self, key: str, amount: int) -> int:
        value = int(self._data.get(key, 0)) + amount
        self._data[key] = value
        return value

    async def get_ints(self, keys: Sequence[str]) -> List[int]:
        return [int(self._data.get(key, 0)) for key in keys]


class RedisCounterStore(CounterStore):
    """Redis-backed store using the asyncio client."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("gateway.storage.redis")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        return self._redis

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            client = await self._get_redis()
            raw = await client.get(key)
        except Exception as e:
            self.logger.error("Redis read failed", key=key, error=str(e))
            raise StorageError("Counter storage unavailable") from e

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            self.logger.error("Corrupt counter document", key=key, error=str(e))
            raise StorageError("Counter storage returned corrupt data") from e

    async def set_json(self, key: str, value: Dict[str, Any]) -> None:
        try:
            client = await self._get_redis()
            await client.set(key, json.dumps(value))
        except Exception as e:
            self.logger.error("Redis write failed", key=key, error=str(e))
            raise StorageError("Counter storage unavailable") from e

    async def incr_by(self, key: str, amount: int) -> int:
        try:
            client = await self._get_redis()
            return int(await client.incrby(key, amount))
        except Exception as e:
            self.logger.error("Redis increment failed", key=key, error=str(e))
            raise StorageError("Counter storage unavailable") from e

    async def get_ints(self, keys: Sequence[str]) -> List[int]:
        if not keys:
            return []
        try:
            client = await self._get_redis()
            values = await client.mget(list(keys))
        except Exception as e:
            self.logger.error("Redis multi-read failed", error=str(e))
            raise StorageError("Counter storage unavailable") from e
        return [int(value) if value is not None else 0 for value in values]

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except Exception as e:
            self.logger.error("Redis ping failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_counter_store(backend: str, redis_url: str) -> CounterStore:
    """Build the configured store backend."""
    backend = (backend or "memory").lower()
    if backend == "memory":
        return MemoryCounterStore()
    if backend == "redis":
        return RedisCounterStore(redis_url)
    raise ValueError(f"Unknown storage backend '{backend}'")
