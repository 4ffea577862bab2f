from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

import structlog

LOGGER = structlog.get_logger(__name__)

TreeEventKind = Literal[
    "committed",
    "restored",
    "children_merged",
    "cleared",
    "failed",
]


@dataclass(frozen=True, slots=True)
class TreeEvent:
    kind: TreeEventKind
    language: str
    node_count: int = 0
    parent_code: int | None = None


Subscriber = Callable[[TreeEvent], Awaitable[None]]
UnsubscribeCallback = Callable[[], Awaitable[None]]


class TreeEventBus:
    """Publish tree lifecycle events to the subscribers of one store."""

    def __init__(self) -> None:
        self._subscribers: set[Subscriber] = set()
        self._lock = asyncio.Lock()

    async def subscribe(self, callback: Subscriber) -> UnsubscribeCallback:
        """Register a subscriber and return an unsubscribe coroutine."""
        async with self._lock:
            self._subscribers.add(callback)
            listener_count = len(self._subscribers)
        LOGGER.debug("tree.events.subscribe", listeners=listener_count)

        async def _unsubscribe() -> None:
            async with self._lock:
                self._subscribers.discard(callback)
                remaining = len(self._subscribers)
            LOGGER.debug("tree.events.unsubscribe", listeners=remaining)

        return _unsubscribe

    async def publish(self, event: TreeEvent) -> None:
        """Deliver an event to every subscriber; a failing subscriber does not stop the rest."""
        async with self._lock:
            listeners = list(self._subscribers)
        if not listeners:
            return

        LOGGER.debug(
            "tree.events.publish",
            kind=event.kind,
            language=event.language,
            node_count=event.node_count,
        )
        for callback in listeners:
            try:
                await callback(event)
            except Exception:
                LOGGER.exception(
                    "tree.events.listener_error",
                    kind=event.kind,
                    language=event.language,
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


__all__ = ["TreeEvent", "TreeEventBus", "TreeEventKind", "Subscriber", "UnsubscribeCallback"]
