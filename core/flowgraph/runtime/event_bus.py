"""
Event Bus - Pub/sub for run and node lifecycle events.

Lets callers follow a run while it executes (progress UIs, tracing,
tests) without the scheduler knowing who is listening.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    NODE_SKIPPED = "node_skipped"

    # Control flow
    LOOP_ITERATION = "loop_iteration"
    LOOP_COMPLETED = "loop_completed"
    PARALLEL_COMPLETED = "parallel_completed"


@dataclass
class RunEvent:
    """An event emitted during a run."""

    type: EventType
    run_id: str
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Type for event handlers
EventHandler = Callable[[RunEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_run: str | None = None  # Only receive events from this run
    filter_node: str | None = None  # Only receive events from this node


class EventBus:
    """
    Pub/sub event bus for run observability.

    Example:
        bus = EventBus()

        async def on_node_failed(event: RunEvent):
            print(f"{event.node_id} failed: {event.data['error']}")

        bus.subscribe(event_types=[EventType.NODE_FAILED], handler=on_node_failed)

        executor = WorkflowExecutor(registry=registry, event_bus=bus)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[RunEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: RunEvent) -> None:
        """Publish an event to all matching subscribers."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]

        handlers = [s.handler for s in self._subscriptions.values() if self._matches(s, event)]
        if handlers:
            await self._execute_handlers(event, handlers)

    def _matches(self, subscription: Subscription, event: RunEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _execute_handlers(self, event: RunEvent, handlers: list[EventHandler]) -> None:
        """Execute handlers concurrently; a failing handler never breaks the run."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_run_started(self, run_id: str, node_count: int, mode: str) -> None:
        await self.publish(
            RunEvent(
                type=EventType.RUN_STARTED,
                run_id=run_id,
                data={"node_count": node_count, "mode": mode},
            )
        )

    async def emit_run_finished(
        self,
        run_id: str,
        success: bool,
        error: str | None = None,
        total_cost: float = 0.0,
        total_latency_ms: int = 0,
    ) -> None:
        await self.publish(
            RunEvent(
                type=EventType.RUN_COMPLETED if success else EventType.RUN_FAILED,
                run_id=run_id,
                data={
                    "error": error,
                    "total_cost": total_cost,
                    "total_latency_ms": total_latency_ms,
                },
            )
        )

    async def emit_node_started(self, run_id: str, node_id: str, kind: str) -> None:
        await self.publish(
            RunEvent(
                type=EventType.NODE_STARTED, run_id=run_id, node_id=node_id, data={"kind": kind}
            )
        )

    async def emit_node_completed(self, run_id: str, node_id: str, latency_ms: int) -> None:
        await self.publish(
            RunEvent(
                type=EventType.NODE_COMPLETED,
                run_id=run_id,
                node_id=node_id,
                data={"latency_ms": latency_ms},
            )
        )

    async def emit_node_failed(self, run_id: str, node_id: str, error: str) -> None:
        await self.publish(
            RunEvent(
                type=EventType.NODE_FAILED, run_id=run_id, node_id=node_id, data={"error": error}
            )
        )

    async def emit_node_skipped(self, run_id: str, node_id: str, reason: str) -> None:
        await self.publish(
            RunEvent(
                type=EventType.NODE_SKIPPED,
                run_id=run_id,
                node_id=node_id,
                data={"reason": reason},
            )
        )

    async def emit_loop_iteration(
        self, run_id: str, node_id: str, iteration: int, total: int
    ) -> None:
        await self.publish(
            RunEvent(
                type=EventType.LOOP_ITERATION,
                run_id=run_id,
                node_id=node_id,
                data={"iteration": iteration, "total": total},
            )
        )

    async def emit_loop_completed(
        self, run_id: str, node_id: str, iterations: int, timed_out: bool
    ) -> None:
        await self.publish(
            RunEvent(
                type=EventType.LOOP_COMPLETED,
                run_id=run_id,
                node_id=node_id,
                data={"iterations": iterations, "timed_out": timed_out},
            )
        )

    async def emit_parallel_completed(
        self, run_id: str, node_id: str, succeeded: int, total: int
    ) -> None:
        await self.publish(
            RunEvent(
                type=EventType.PARALLEL_COMPLETED,
                run_id=run_id,
                node_id=node_id,
                data={"succeeded": succeeded, "total": total},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[RunEvent]:
        """Event history, most recent first."""
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        return events[:limit]

    def get_stats(self) -> dict:
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1
        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }
