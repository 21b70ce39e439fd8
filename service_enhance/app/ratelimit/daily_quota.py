"""
Fixed daily quota enforced by one serialized actor per (subject, client IP).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

from shared.errors import GatewayError, StorageError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..actors import Actor, ActorRegistry
from ..auth.tokens import Identity
from ..storage import CounterStore

Clock = Callable[[], float]


class CheckMode(str, Enum):
    PEEK = "peek"
    CONSUME = "consume"


def utc_day_key(now: float) -> str:
    return datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d")


def next_utc_midnight(now: float) -> int:
    """Epoch seconds of the next UTC midnight strictly after ``now``."""
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    midnight = datetime(current.year, current.month, current.day, tzinfo=timezone.utc)
    return int((midnight + timedelta(days=1)).timestamp())


@dataclass
class RateWindow:
    """Requests counted for one identity on one UTC day."""

    day_key: str
    count: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> Optional["RateWindow"]:
        if not data:
            return None
        return cls(day_key=str(data.get("day_key", "")), count=max(0, int(data.get("count", 0))))

    def to_dict(self) -> Dict:
        return {"day_key": self.day_key, "count": self.count}


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a quota check."""

    limit: int
    remaining: int
    reset: int
    success: bool
    count: int
    bypassed: bool = False

    def headers(self) -> Dict[str, str]:
        return {
            "X-Usage-Count": str(self.count),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }

    def to_dict(self) -> Dict:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset": self.reset,
            "success": self.success,
            "count": self.count,
        }


class RateLimiterActor(Actor):
    """Owns the RateWindow of a single identity key."""

    def __init__(self, key: str, store: CounterStore, limit: int, clock: Clock = time.time):
        super().__init__(key)
        self.store = store
        self.limit = limit
        self.clock = clock

    async def check(self, mode: CheckMode) -> QuotaDecision:
        return await self.ask(self._check, mode)

    async def _check(self, mode: CheckMode) -> QuotaDecision:
        now = self.clock()
        today = utc_day_key(now)
        reset = next_utc_midnight(now)

        window = RateWindow.from_dict(await self.store.get_json(self.key))
        if window is None or window.day_key != today:
            window = RateWindow(day_key=today, count=0)
            if mode is CheckMode.CONSUME:
                await self.store.set_json(self.key, window.to_dict())

        if mode is CheckMode.PEEK:
            return QuotaDecision(
                limit=self.limit,
                remaining=max(0, self.limit - window.count),
                reset=reset,
                success=True,
                count=window.count,
            )

        if window.count >= self.limit:
            return QuotaDecision(
                limit=self.limit,
                remaining=0,
                reset=reset,
                success=False,
                count=window.count,
            )

        window.count += 1
        await self.store.set_json(self.key, window.to_dict())
        return QuotaDecision(
            limit=self.limit,
            remaining=self.limit - window.count,
            reset=reset,
            success=True,
            count=window.count,
        )


class DailyRateLimiter:
    """Routes identities to their rate limiter actors."""

    def __init__(
        self,
        store: CounterStore,
        limit: int = 100,
        *,
        bypass_subjects: Iterable[str] = (),
        clock: Clock = time.time,
        max_live_actors: int = 10000,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.limit = limit
        self.bypass_subjects = frozenset(bypass_subjects)
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("gateway.rate_limiter")
        self._actors: ActorRegistry[RateLimiterActor] = ActorRegistry(
            lambda key: RateLimiterActor(key, self.store, self.limit, self.clock),
            max_live=max_live_actors,
        )

    def _make_key(self, identity: Identity) -> str:
        """Generate rate limit key."""
        return f"ratelimit:{identity.subject}:{identity.client_ip}"

    async def check(self, identity: Identity, mode: CheckMode) -> QuotaDecision:
        bypassed = mode is CheckMode.CONSUME and identity.subject in self.bypass_subjects
        effective_mode = CheckMode.PEEK if bypassed else mode

        try:
            decision = await self._actors.get(self._make_key(identity)).check(effective_mode)
        except GatewayError:
            raise
        except Exception as e:
            self.logger.error("Rate limiter actor failed", error=str(e), exc_info=True)
            raise StorageError("Rate limiter unavailable") from e

        if bypassed:
            self.logger.info("Rate limit bypassed", bypass_subject=identity.subject, count=decision.count)
            decision = QuotaDecision(
                limit=decision.limit,
                remaining=decision.remaining,
                reset=decision.reset,
                success=True,
                count=decision.count,
                bypassed=True,
            )
        elif not decision.success:
            self.logger.warning(
                "Rate limit exceeded",
                client_ip=identity.client_ip,
                count=decision.count,
                limit=decision.limit,
            )

        if self.metrics:
            self.metrics.record_rate_limit("bypass" if bypassed else effective_mode.value, decision.success)
        return decision

    async def consume(self, identity: Identity) -> QuotaDecision:
        return await self.check(identity, CheckMode.CONSUME)

    async def peek(self, identity: Identity) -> QuotaDecision:
        return await self.check(identity, CheckMode.PEEK)
