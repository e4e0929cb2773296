"""Run-scoped runtime services: shared state and lifecycle events."""

from flowgraph.runtime.event_bus import EventBus, EventType, RunEvent
from flowgraph.runtime.shared_state import SharedState, SharedStateMode

__all__ = ["EventBus", "EventType", "RunEvent", "SharedState", "SharedStateMode"]
