"""Run Accumulator - Totals and the final response for one run."""

import uuid
from dataclasses import dataclass, field

from flowgraph.graph.node import NodeResult, now_ms
from flowgraph.schemas.run import ExecutionMode, RunResponse, RunStatus


@dataclass
class RunAccumulator:
    """
    Aggregates node results, cost, usage and timing.

    Every executor call is counted, including loop iterations and
    parallel branches, so totals reflect what was actually spent.
    """

    run_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")
    start_time: int = field(default_factory=now_ms)
    node_results: dict[str, NodeResult] = field(default_factory=dict)
    total_cost: float = 0.0
    total_usage_units: int = 0

    def record(self, key: str, result: NodeResult, count_usage: bool = True) -> None:
        """Store ``result`` under ``key`` (a node ID or a derived iter/branch key)."""
        self.node_results[key] = result
        if not count_usage:
            return
        if result.usage is not None:
            self.total_usage_units += result.usage.total_units
        if result.cost:
            self.total_cost += result.cost

    def finish(
        self,
        error: str | None = None,
        aborted: bool = False,
        cancelled: bool = False,
        skipped_node_ids: list[str] | None = None,
        unscheduled_node_ids: list[str] | None = None,
        execution_count: int = 0,
        mode: ExecutionMode = ExecutionMode.STATIC,
    ) -> RunResponse:
        end_time = now_ms()
        failed = error is not None or aborted or cancelled or bool(unscheduled_node_ids)
        return RunResponse(
            run_id=self.run_id,
            status=RunStatus.ERROR if failed else RunStatus.SUCCESS,
            node_results=dict(self.node_results),
            total_cost=self.total_cost,
            total_usage_units=self.total_usage_units,
            total_latency_ms=end_time - self.start_time,
            start_time=self.start_time,
            end_time=end_time,
            error=error,
            aborted=aborted,
            cancelled=cancelled,
            skipped_node_ids=skipped_node_ids or [],
            unscheduled_node_ids=unscheduled_node_ids or [],
            execution_count=execution_count,
            mode=mode,
        )
