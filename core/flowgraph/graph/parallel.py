"""
Parallel Fan-out/Merge - Scatter one input across branches, gather, merge.

A parallel node selects up to ``branchCount`` of its outgoing (non-"done")
edges as branches, runs every branch target concurrently with the same
input, and waits for all of them to settle. A failed branch never fails
the fan-out: it contributes an empty string to the merge and keeps its
own error result.

Merge strategies:
- all:   every branch output, in declared order
- first: branch 0's output, whatever the others did
- any:   the first non-empty output, in declared order
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from flowgraph.config import EngineConfig
from flowgraph.graph.model import HANDLE_DONE, Edge
from flowgraph.graph.node import NodeResult, NodeStatus, now_ms

logger = logging.getLogger(__name__)

BRANCH_SEPARATOR = "\n\n"


class MergeStrategy(StrEnum):
    ALL = "all"
    FIRST = "first"
    ANY = "any"


@dataclass
class ParallelSpec:
    """A parallel node's config, normalised and capped."""

    branch_count: int = 2
    merge_strategy: MergeStrategy = MergeStrategy.ALL

    @classmethod
    def from_config(cls, config: dict[str, Any], engine_config: EngineConfig) -> "ParallelSpec":
        requested = config.get("branchCount", config.get("branches"))
        try:
            branch_count = (
                int(requested) if requested is not None else engine_config.default_parallel_branches
            )
        except (TypeError, ValueError):
            branch_count = engine_config.default_parallel_branches
        branch_count = max(0, min(branch_count, engine_config.max_parallel_branches))

        raw_strategy = config.get("mergeStrategy") or MergeStrategy.ALL
        try:
            strategy = MergeStrategy(str(raw_strategy).lower())
        except ValueError:
            logger.warning(f"Unknown merge strategy '{raw_strategy}', falling back to all")
            strategy = MergeStrategy.ALL
        return cls(branch_count=branch_count, merge_strategy=strategy)


@dataclass
class ParallelBranch:
    """Tracks a single branch in a fan-out."""

    index: int
    node_id: str
    edge: Edge
    result: NodeResult | None = None
    output: str = ""

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.status == NodeStatus.SUCCESS


def split_parallel_edges(
    edges: Sequence[Edge], parallel_node_id: str, branch_count: int
) -> tuple[list[Edge], list[Edge], list[str]]:
    """
    Partition a parallel node's outgoing edges.

    Returns:
        (selected branch edges, unselected candidate edges, done target IDs)
    """
    candidates: list[Edge] = []
    done: list[str] = []
    for edge in edges:
        if edge.source != parallel_node_id:
            continue
        if edge.source_handle == HANDLE_DONE:
            if edge.target not in done:
                done.append(edge.target)
        else:
            candidates.append(edge)
    return candidates[:branch_count], candidates[branch_count:], done


async def scatter_gather(
    branches: Sequence[ParallelBranch],
    run_branch: Callable[[ParallelBranch], Awaitable[NodeResult]],
) -> list[ParallelBranch]:
    """
    Run every branch concurrently and wait for all of them to settle.

    ``run_branch`` returns the branch's NodeResult; an exception escaping
    it is converted into an error result for that branch only. Branches
    are returned in declared order regardless of completion order.
    """

    async def execute_single_branch(branch: ParallelBranch) -> ParallelBranch:
        started = now_ms()
        try:
            result = await run_branch(branch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"      ✗ Branch {branch.index} ({branch.node_id}): exception - {e}")
            result = NodeResult(
                node_id=branch.node_id,
                status=NodeStatus.ERROR,
                error=str(e),
                start_time=started,
                end_time=now_ms(),
            )
        branch.result = result
        branch.output = (result.output or "") if branch.succeeded else ""
        return branch

    return list(await asyncio.gather(*[execute_single_branch(b) for b in branches]))


def merge_branch_outputs(outputs: Sequence[str], strategy: MergeStrategy) -> str:
    """Combine per-branch outputs (declared order) according to ``strategy``."""
    if strategy == MergeStrategy.FIRST:
        return outputs[0] if outputs else ""
    if strategy == MergeStrategy.ANY:
        for output in outputs:
            if output and output.strip():
                return output
        return ""
    return BRANCH_SEPARATOR.join(outputs)
