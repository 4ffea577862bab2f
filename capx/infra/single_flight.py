"""Single-flight coalescing of concurrent async work keyed by a request signature."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, Generic, Hashable, TypeVar

import structlog

LOGGER = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SingleFlight(Generic[K, V]):
    """Run at most one unit of work per key; concurrent callers share its outcome.

    The work runs in its own task and callers await it through
    ``asyncio.shield``: a caller that is cancelled stops waiting, but the
    work itself runs to completion for everyone else. The key is released
    as soon as the work finishes, so a later call starts fresh work.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._tasks: dict[K, asyncio.Task[V]] = {}

    async def do(self, key: K, work: Callable[[], Coroutine[Any, Any, V]]) -> V:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.create_task(work(), name=f"{self._name}:{key!r}")
            self._tasks[key] = task
            task.add_done_callback(lambda done, k=key: self._release(k, done))
            LOGGER.debug("single_flight.started", flight=self._name, key=repr(key))
        else:
            LOGGER.debug("single_flight.joined", flight=self._name, key=repr(key))
        return await asyncio.shield(task)

    def in_flight(self, key: K) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def keys(self) -> list[K]:
        return [key for key, task in self._tasks.items() if not task.done()]

    def __len__(self) -> int:
        return len(self.keys())

    def _release(self, key: K, task: asyncio.Task[V]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        # Mark the exception as retrieved; every waiter re-raises it on its own.
        exc = task.exception()
        if exc is not None:
            LOGGER.debug(
                "single_flight.failed",
                flight=self._name,
                key=repr(key),
                error_type=type(exc).__name__,
            )


__all__ = ["SingleFlight"]
