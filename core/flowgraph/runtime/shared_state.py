"""
Shared State - The run-wide key/value bag used by state and script nodes.

One SharedState instance lives on the run context and is handed to every
executor. Two modes:

- UNSYNCHRONIZED: plain dict, last write wins. Executors that touch the
  same key from concurrent parallel branches race; this is accepted
  behaviour and matches how the bag has always worked.
- SYNCHRONIZED: writes go through a single asyncio.Lock, and
  ``transaction()`` / ``modify()`` hold that lock across a
  read-modify-write so concurrent branches cannot lose each other's
  updates.

The scheduler itself never reads or writes the bag.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class SharedStateMode(StrEnum):
    """Concurrency mode for the shared state bag."""

    UNSYNCHRONIZED = "unsynchronized"  # Last write wins, no locking
    SYNCHRONIZED = "synchronized"  # Single write lock


@dataclass
class StateChange:
    """Record of a state change."""

    key: str
    old_value: Any
    new_value: Any
    node_id: str | None = None
    timestamp: float = field(default_factory=time.time)


class SharedState:
    """
    Key/value bag shared by every node in a run.

    Example:
        state = SharedState()
        await state.write("counter", 1, node_id="init")
        value = state.read("counter")
    """

    def __init__(
        self,
        mode: SharedStateMode = SharedStateMode.UNSYNCHRONIZED,
        max_history: int = 1000,
    ):
        self.mode = SharedStateMode(mode)
        self._data: dict[str, Any] = {}
        self._lock = asyncio.Lock()
        # Task holding the lock through transaction(), if any
        self._owner: asyncio.Task | None = None
        self._change_history: list[StateChange] = []
        self._max_history = max_history

    def read(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def read_all(self) -> dict[str, Any]:
        """Snapshot of every key."""
        return dict(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def _needs_lock(self) -> bool:
        return (
            self.mode == SharedStateMode.SYNCHRONIZED
            and self._owner is not asyncio.current_task()
        )

    async def write(self, key: str, value: Any, node_id: str | None = None) -> None:
        """Write a value, respecting the configured mode."""
        if self._needs_lock():
            async with self._lock:
                self._apply(key, value, node_id)
        else:
            self._apply(key, value, node_id)

    async def update(self, values: dict[str, Any], node_id: str | None = None) -> None:
        """Write several keys as one step (atomic in SYNCHRONIZED mode)."""
        if self._needs_lock():
            async with self._lock:
                for key, value in values.items():
                    self._apply(key, value, node_id)
        else:
            for key, value in values.items():
                self._apply(key, value, node_id)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SharedState"]:
        """
        Hold the write lock for a read-modify-write sequence.

        In SYNCHRONIZED mode no other task can write until the block exits;
        writes made inside the block by the same task do not re-lock. In
        UNSYNCHRONIZED mode this is a no-op and updates may be lost.

        Example:
            async with state.transaction():
                count = state.read("count", 0)
                await state.write("count", count + 1)
        """
        if self.mode != SharedStateMode.SYNCHRONIZED:
            yield self
            return
        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                yield self
            finally:
                self._owner = None

    async def modify(
        self,
        key: str,
        fn: Callable[[Any], Any],
        default: Any = None,
        node_id: str | None = None,
    ) -> Any:
        """Replace ``key`` with ``fn(current)`` inside a transaction. ``fn`` may be async."""
        async with self.transaction():
            value = fn(self.read(key, default))
            if inspect.isawaitable(value):
                value = await value
            await self.write(key, value, node_id=node_id)
            return value

    def _apply(self, key: str, value: Any, node_id: str | None) -> None:
        old_value = self._data.get(key)
        self._data[key] = value
        self._record_change(StateChange(key, old_value, value, node_id))

    def _record_change(self, change: StateChange) -> None:
        self._change_history.append(change)
        if len(self._change_history) > self._max_history:
            self._change_history = self._change_history[-self._max_history :]
        logger.debug(f"State '{change.key}' written by {change.node_id or 'unknown'}")

    def get_recent_changes(self, limit: int = 10) -> list[StateChange]:
        """Most recent changes, oldest first."""
        return self._change_history[-limit:]

    def get_stats(self) -> dict:
        return {
            "mode": self.mode.value,
            "keys": len(self._data),
            "history_size": len(self._change_history),
        }
