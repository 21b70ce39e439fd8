"""
Per-key actor runtime.

An ``Actor`` owns one key. Every operation sent to it is placed on its mailbox
and executed by a single worker task, one at a time, in arrival order. The
worker is started on demand and exits as soon as the mailbox is empty, so an
idle actor holds no task.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, TypeVar

from shared.errors import StorageError
from shared.logging import get_logger

T = TypeVar("T")
ActorT = TypeVar("ActorT", bound="Actor")

Operation = Callable[..., Awaitable[Any]]


class Actor:
    """Single-threaded owner of one key's state."""

    def __init__(self, key: str):
        self.key = key
        self._mailbox: "asyncio.Queue[Tuple[Operation, tuple, asyncio.Future]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self.logger = get_logger("gateway.actors")

    @property
    def idle(self) -> bool:
        return self._mailbox.empty() and (self._worker is None or self._worker.done())

    async def ask(self, operation: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Enqueue ``operation(*args)`` and wait for its result."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._mailbox.put_nowait((operation, args, future))
        self._ensure_worker(loop)
        return await future

    def _ensure_worker(self, loop: asyncio.AbstractEventLoop) -> None:
        worker = self._worker
        if worker is not None and not worker.done() and worker.get_loop() is loop:
            return
        self._worker = loop.create_task(self._drain(), name=f"actor:{self.key}")

    async def _drain(self) -> None:
        current: Optional[asyncio.Future] = None
        try:
            while True:
                try:
                    operation, args, current = self._mailbox.get_nowait()
                except asyncio.QueueEmpty:
                    return

                if current.done():
                    # caller went away before the operation started
                    continue

                try:
                    result = await operation(*args)
                except Exception as exc:
                    if not current.done():
                        current.set_exception(exc)
                else:
                    if not current.done():
                        current.set_result(result)
        finally:
            self._fail_pending(current)

    def _fail_pending(self, current: Optional[asyncio.Future]) -> None:
        """Resolve the in-flight and queued operations of a worker that stopped early."""
        pending = [current] if current is not None else []
        while not self._mailbox.empty():
            pending.append(self._mailbox.get_nowait()[2])
        stranded = [future for future in pending if not future.done()]
        for future in stranded:
            future.set_exception(StorageError("Actor worker stopped"))
        if stranded:
            self.logger.warning("Actor worker stopped with pending operations", actor=self.key, pending=len(stranded))


class ActorRegistry(Generic[ActorT]):
    """Lazily creates actors per key and evicts idle ones past a size bound."""

    def __init__(self, factory: Callable[[str], ActorT], max_live: int = 10000):
        self._factory = factory
        self._max_live = max_live
        self._actors: "OrderedDict[str, ActorT]" = OrderedDict()
        self.logger = get_logger("gateway.actors")

    def __len__(self) -> int:
        return len(self._actors)

    def get(self, key: str) -> ActorT:
        """Return the single live actor for ``key``.

        Callers must enqueue on the returned actor without awaiting in between
        (``await registry.get(key).ask(...)``) so it cannot be evicted first.
        """
        actor = self._actors.get(key)
        if actor is not None:
            self._actors.move_to_end(key)
            return actor

        actor = self._factory(key)
        self._actors[key] = actor
        self._evict_idle(keep=key)
        return actor

    def _evict_idle(self, keep: str) -> None:
        if len(self._actors) <= self._max_live:
            return

        # Only idle actors may go: dropping a busy one would let a second
        # actor for the same key run concurrently.
        for key in list(self._actors.keys()):
            if len(self._actors) <= self._max_live:
                break
            if key != keep and self._actors[key].idle:
                del self._actors[key]

        if len(self._actors) > self._max_live:
            self.logger.warning(
                "Actor registry above bound, all actors busy",
                live=len(self._actors),
                max_live=self._max_live,
            )
