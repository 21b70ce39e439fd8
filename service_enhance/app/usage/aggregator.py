"""
Per-subject usage accounting.

Counters are bucketed by UTC day, UTC month and all-time. Period rollover is
implicit: a new day or month simply addresses a new key.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..actors import Actor, ActorRegistry
from ..storage import CounterStore

Clock = Callable[[], float]

METRICS = ("calls", "tokens")
PERIODS = ("daily", "monthly", "total")


def _period_suffixes(now: float) -> Dict[str, str]:
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    return {
        "daily": f"day:{current.strftime('%Y-%m-%d')}",
        "monthly": f"month:{current.strftime('%Y-%m')}",
        "total": "total",
    }


class UsageAggregatorActor(Actor):
    """Owns the usage counters of one subject."""

    def __init__(self, subject: str, store: CounterStore, clock: Clock = time.time):
        super().__init__(subject)
        self.subject = subject
        self.store = store
        self.clock = clock

    def _keys(self, metric: str, now: float) -> Dict[str, str]:
        return {
            period: f"usage:{self.subject}:{metric}:{suffix}"
            for period, suffix in _period_suffixes(now).items()
        }

    async def increment(self, metric: str, amount: int) -> None:
        if metric not in METRICS:
            raise ValueError(f"Unknown usage metric '{metric}'")
        if amount < 0:
            raise ValueError("Usage increments must be non-negative")
        await self.ask(self._increment, metric, amount)

    async def snapshot(self) -> Dict[str, Dict[str, int]]:
        return await self.ask(self._snapshot)

    async def _increment(self, metric: str, amount: int) -> None:
        if amount == 0:
            return
        for key in self._keys(metric, self.clock()).values():
            await self.store.incr_by(key, amount)

    async def _snapshot(self) -> Dict[str, Dict[str, int]]:
        now = self.clock()
        result: Dict[str, Dict[str, int]] = {}
        for metric in METRICS:
            keys = self._keys(metric, now)
            values = await self.store.get_ints([keys[period] for period in PERIODS])
            result[metric] = dict(zip(PERIODS, values))
        return result


class UsageAggregator:
    """Routes subjects to their usage actors."""

    def __init__(self, store: CounterStore, *, clock: Clock = time.time, max_live_actors: int = 10000):
        self.store = store
        self.clock = clock
        self._actors: ActorRegistry[UsageAggregatorActor] = ActorRegistry(
            lambda subject: UsageAggregatorActor(subject, self.store, self.clock),
            max_live=max_live_actors,
        )

    async def increment(self, subject: str, metric: str, amount: int = 1) -> None:
        await self._actors.get(subject).increment(metric, amount)

    async def snapshot(self, subject: str) -> Dict[str, Dict[str, int]]:
        return await self._actors.get(subject).snapshot()


class UsageRecorder:
    """Fire-and-forget front for the aggregator.

    Increments run as detached tasks with their own error boundary. A failure
    is logged and counted, never raised to the request that triggered it.
    """

    def __init__(self, aggregator: UsageAggregator, metrics: Optional[MetricsCollector] = None):
        self.aggregator = aggregator
        self.metrics = metrics
        self.logger = get_logger("gateway.usage")
        self._pending: Set[asyncio.Task] = set()

    def record(self, subject: str, metric: str, amount: int = 1) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._record(subject, metric, amount))
        # hold a reference until done, the loop only keeps weak ones
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _record(self, subject: str, metric: str, amount: int) -> None:
        try:
            await self.aggregator.increment(subject, metric, amount)
        except Exception as e:
            self.logger.warning(
                "Usage accounting failed",
                metric=metric,
                amount=amount,
                error=str(e),
            )
            if self.metrics:
                self.metrics.record_usage_failure(metric)

    async def drain(self) -> None:
        """Wait for in-flight increments; used on shutdown."""
        pending: List[asyncio.Task] = [task for task in self._pending if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
