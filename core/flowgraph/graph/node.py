"""
Node Protocol - The boundary between the engine and node business logic.

The engine never knows how an "llm" node calls a model or how an "api"
node formats a request. It only knows:

1. Which executor handles a node ``kind`` (ExecutorRegistry)
2. The resolved input string for the node (NodeContext.input)
3. What came back (ExecutorOutput) or that it failed (ExecutorError)

Executors are registered per kind, so adding a node kind is a
registration rather than an edit to the scheduler:

    registry = ExecutorRegistry()
    registry.register("llm", MyLLMExecutor())
    registry.register_function("upper", lambda ctx: ctx.input.upper())
"""

import asyncio
import inspect
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field, computed_field

from flowgraph.graph.errors import ExecutorError
from flowgraph.graph.model import Node
from flowgraph.runtime.shared_state import SharedState


def now_ms() -> int:
    """Wall-clock epoch milliseconds, the unit of every NodeResult timestamp."""
    return int(time.time() * 1000)


class NodeStatus(StrEnum):
    """Lifecycle status of a single node execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"  # Loop stopped by its wall-clock guard


class Usage(BaseModel):
    """Token-like usage units reported by an executor."""

    prompt_units: int = Field(default=0, alias="promptUnits")
    completion_units: int = Field(default=0, alias="completionUnits")
    total_units: int = Field(default=0, alias="totalUnits")

    model_config = {"populate_by_name": True}


class NodeResult(BaseModel):
    """
    Outcome of one node execution.

    Finalized exactly once. Loop and parallel merging never rewrite a
    finalized result; they store a new one (the parent's merged result)
    and keep per-iteration/per-branch records under derived keys.
    """

    node_id: str = Field(alias="nodeId")
    status: NodeStatus = NodeStatus.PENDING
    output: str | None = None
    error: str | None = None
    start_time: int = Field(default_factory=now_ms, alias="startTime")
    end_time: int | None = Field(default=None, alias="endTime")
    usage: Usage | None = None
    cost: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @computed_field(alias="latencyMs")
    @property
    def latency_ms(self) -> int:
        if self.end_time is None:
            return 0
        return self.end_time - self.start_time

    @property
    def success(self) -> bool:
        return self.status == NodeStatus.SUCCESS


@dataclass
class ExecutorOutput:
    """What a node executor hands back to the engine."""

    output: str = ""
    usage: Usage | None = None
    cost: float | None = None
    # Explicit boolean for condition executors; otherwise the output text is parsed
    branch: bool | None = None
    # A returned (rather than raised) failure
    error: str | None = None


@dataclass
class NodeContext:
    """Everything an executor may look at for one dispatch."""

    node: Node
    input: str
    run_id: str = ""
    shared_state: SharedState = field(default_factory=SharedState)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    iteration_index: int | None = None
    iteration_count: int | None = None
    parent_loop_id: str | None = None
    branch_index: int | None = None

    @property
    def config(self) -> dict[str, Any]:
        return self.node.config

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@runtime_checkable
class NodeExecutor(Protocol):
    """Interface every node executor implements."""

    async def execute(self, ctx: NodeContext) -> ExecutorOutput: ...


class FunctionExecutor:
    """
    Adapt a plain function into a NodeExecutor.

    The function receives the NodeContext and may be sync or async. It may
    return an ExecutorOutput, a string, or a dict with ExecutorOutput
    fields.
    """

    def __init__(self, func: Callable[[NodeContext], Any]):
        self.func = func

    async def execute(self, ctx: NodeContext) -> ExecutorOutput:
        result = self.func(ctx)
        if inspect.isawaitable(result):
            result = await result
        return coerce_output(result)


def coerce_output(result: Any) -> ExecutorOutput:
    """Normalise whatever an executor returned into an ExecutorOutput."""
    if isinstance(result, ExecutorOutput):
        return result
    if result is None:
        return ExecutorOutput()
    if isinstance(result, str):
        return ExecutorOutput(output=result)
    if isinstance(result, dict):
        usage = result.get("usage")
        if isinstance(usage, dict):
            usage = Usage.model_validate(usage)
        return ExecutorOutput(
            output=str(result.get("output", "")),
            usage=usage,
            cost=result.get("cost"),
            branch=result.get("branch"),
            error=result.get("error"),
        )
    return ExecutorOutput(output=str(result))


class ExecutorRegistry:
    """Lookup table from node kind to executor."""

    def __init__(self, executors: dict[str, NodeExecutor] | None = None):
        self._executors: dict[str, NodeExecutor] = dict(executors or {})

    def register(self, kind: str, executor: NodeExecutor) -> None:
        """Register an executor for a node kind, replacing any previous one."""
        self._executors[kind] = executor

    def register_function(self, kind: str, func: Callable[[NodeContext], Any]) -> None:
        """Register a function as the executor for a node kind."""
        self._executors[kind] = FunctionExecutor(func)

    def get(self, kind: str) -> NodeExecutor:
        executor = self._executors.get(kind)
        if executor is None:
            raise ExecutorError(f"No executor registered for node kind '{kind}'")
        return executor

    def __contains__(self, kind: str) -> bool:
        return kind in self._executors

    def kinds(self) -> list[str]:
        return sorted(self._executors)
