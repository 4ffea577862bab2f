"""Unit tests for the tree event bus."""

from __future__ import annotations

import pytest

from capx.infra.events.tree_events import TreeEvent, TreeEventBus


@pytest.mark.unit
@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber() -> None:
    bus = TreeEventBus()
    first: list[TreeEvent] = []
    second: list[TreeEvent] = []

    async def on_first(event: TreeEvent) -> None:
        first.append(event)

    async def on_second(event: TreeEvent) -> None:
        second.append(event)

    await bus.subscribe(on_first)
    await bus.subscribe(on_second)

    event = TreeEvent(kind="committed", language="pt", node_count=12)
    await bus.publish(event)

    assert first == [event]
    assert second == [event]
    assert bus.subscriber_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery() -> None:
    bus = TreeEventBus()
    received: list[TreeEvent] = []

    async def listener(event: TreeEvent) -> None:
        received.append(event)

    unsubscribe = await bus.subscribe(listener)
    await unsubscribe()
    await bus.publish(TreeEvent(kind="cleared", language="en"))

    assert received == []
    assert bus.subscriber_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others() -> None:
    bus = TreeEventBus()
    received: list[str] = []

    async def broken(event: TreeEvent) -> None:
        raise RuntimeError("listener bug")

    async def healthy(event: TreeEvent) -> None:
        received.append(event.kind)

    await bus.subscribe(broken)
    await bus.subscribe(healthy)
    await bus.publish(TreeEvent(kind="children_merged", language="en", parent_code=36))

    assert received == ["children_merged"]
