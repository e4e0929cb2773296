"""
Run Schema - The request and response shapes of one workflow run.

The response is the only thing callers observe, so its field names
(camelCase on the wire) are kept stable:

    {runId, status, nodeResults, totalCost, totalUsageUnits,
     totalLatencyMs, startTime, endTime}

Additional fields (error, aborted, cancelled, skippedNodeIds,
unscheduledNodeIds, executionCount, mode) are additive.
"""

from enum import StrEnum

from pydantic import BaseModel, Field

from flowgraph.graph.model import Edge, Graph, Node
from flowgraph.graph.node import NodeResult


class RunStatus(StrEnum):
    """Overall status of a run."""

    SUCCESS = "success"
    ERROR = "error"


class ExecutionMode(StrEnum):
    """Which scheduler drove the run."""

    STATIC = "static"  # Topological order, no loop/parallel nodes
    DYNAMIC = "dynamic"  # Task queue


class RunRequest(BaseModel):
    """A graph submitted for execution."""

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    def to_graph(self) -> Graph:
        return Graph(nodes=self.nodes, edges=self.edges)


class RunResponse(BaseModel):
    """Everything a caller needs to render the trace of a run."""

    run_id: str = Field(alias="runId")
    status: RunStatus
    node_results: dict[str, NodeResult] = Field(default_factory=dict, alias="nodeResults")
    total_cost: float = Field(default=0.0, alias="totalCost")
    total_usage_units: int = Field(default=0, alias="totalUsageUnits")
    total_latency_ms: int = Field(default=0, alias="totalLatencyMs")
    start_time: int = Field(alias="startTime")
    end_time: int = Field(alias="endTime")

    error: str | None = None
    aborted: bool = False  # Circuit breaker tripped
    cancelled: bool = False
    skipped_node_ids: list[str] = Field(default_factory=list, alias="skippedNodeIds")
    unscheduled_node_ids: list[str] = Field(default_factory=list, alias="unscheduledNodeIds")
    execution_count: int = Field(default=0, alias="executionCount")
    mode: ExecutionMode = ExecutionMode.STATIC

    model_config = {"populate_by_name": True}

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCESS

    def to_wire(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
