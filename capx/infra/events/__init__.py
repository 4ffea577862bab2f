"""In-process event bus for capacity tree lifecycle events."""

from capx.infra.events.tree_events import TreeEvent, TreeEventBus

__all__ = ["TreeEvent", "TreeEventBus"]
