"""
Loop Expander - One loop node becomes N dispatches of its body.

Modes:
- foreach: split the input by ``delimiter`` (trimmed, empties dropped);
  each item is one iteration's input
- count:   the same input ``maxIterations`` times
- while:   the same input up to ``maxIterations`` times, re-checking
  ``condition`` before every iteration; a false condition ends the loop
  early without error

The body is the set of targets on the loop's non-"done" edges. Every
iteration dispatches each body target once. When the loop finishes
(exhausted, stopped by its condition, or timed out) the iteration
outputs are joined into the loop's own output and the "done" targets
receive it.
"""

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from flowgraph.config import EngineConfig
from flowgraph.graph.model import HANDLE_DONE, Edge
from flowgraph.graph.safe_eval import safe_eval

logger = logging.getLogger(__name__)

ITERATION_SEPARATOR = "\n\n---\n\n"
BODY_OUTPUT_SEPARATOR = "\n"


class LoopMode(StrEnum):
    COUNT = "count"
    FOREACH = "foreach"
    WHILE = "while"


@dataclass
class LoopSpec:
    """A loop node's config, normalised and capped."""

    mode: LoopMode = LoopMode.COUNT
    max_iterations: int = 10
    delimiter: str = "\n"
    condition: str | None = None

    @classmethod
    def from_config(cls, config: dict[str, Any], engine_config: EngineConfig) -> "LoopSpec":
        raw_mode = config.get("mode") or config.get("loopType") or LoopMode.COUNT
        try:
            mode = LoopMode(str(raw_mode).lower())
        except ValueError:
            logger.warning(f"Unknown loop mode '{raw_mode}', falling back to count")
            mode = LoopMode.COUNT

        requested = config.get("maxIterations", config.get("max_iterations"))
        try:
            max_iterations = (
                int(requested) if requested is not None else engine_config.default_loop_iterations
            )
        except (TypeError, ValueError):
            max_iterations = engine_config.default_loop_iterations
        max_iterations = max(0, min(max_iterations, engine_config.max_loop_iterations))

        delimiter = config.get("delimiter") or "\n"
        # Editors often store escape sequences literally
        delimiter = delimiter.replace("\\n", "\n").replace("\\t", "\t")

        condition = config.get("condition")
        return cls(
            mode=mode,
            max_iterations=max_iterations,
            delimiter=delimiter,
            condition=condition or None,
        )


def expand_items(spec: LoopSpec, input_text: str) -> list[str]:
    """Per-iteration inputs for a loop, already capped to ``max_iterations``."""
    if spec.mode == LoopMode.FOREACH:
        items = [part.strip() for part in input_text.split(spec.delimiter)]
        return [item for item in items if item][: spec.max_iterations]
    return [input_text] * spec.max_iterations


def split_loop_edges(edges: Sequence[Edge], loop_node_id: str) -> tuple[list[str], list[str]]:
    """Return (body target IDs, done target IDs) for a loop node, in declaration order."""
    body: list[str] = []
    done: list[str] = []
    for edge in edges:
        if edge.source != loop_node_id:
            continue
        bucket = done if edge.source_handle == HANDLE_DONE else body
        if edge.target not in bucket:
            bucket.append(edge.target)
    return body, done


def evaluate_while_condition(
    condition: str | None,
    index: int,
    item: str,
    previous: str | None,
    results: list[str],
    max_iterations: int,
) -> bool:
    """
    Decide whether a while loop runs iteration ``index``.

    The expression sees a small read-only context: ``index``/``iteration``
    (0-based), ``input``/``item``, ``previous`` (last iteration output or
    ""), ``results``, ``is_empty``, ``length`` and ``max_iterations``.
    A missing condition always continues; an invalid one stops the loop.
    """
    if not condition:
        return True
    context = {
        "index": index,
        "iteration": index,
        "input": item,
        "item": item,
        "previous": previous or "",
        "results": list(results),
        "is_empty": not item.strip(),
        "length": len(item),
        "max_iterations": max_iterations,
        "true": True,
        "false": False,
    }
    try:
        return bool(safe_eval(condition, context))
    except Exception as e:
        logger.warning(f"      ⚠ Loop condition evaluation failed: {condition} ({e})")
        return False


@dataclass
class LoopState:
    """Bookkeeping for one loop node instance inside a run."""

    loop_id: str
    spec: LoopSpec
    items: list[str]
    body_targets: list[str]
    done_targets: list[str]
    timeout_seconds: float
    started_at: float = field(default_factory=time.monotonic)
    # iteration index -> {body node id: output}
    outputs: dict[int, dict[str, str]] = field(default_factory=dict)
    checked_iterations: set[int] = field(default_factory=set)
    finished: bool = False
    stopped_early: bool = False
    timed_out: bool = False

    @property
    def iteration_count(self) -> int:
        return len(self.items)

    def remaining_seconds(self) -> float:
        return self.timeout_seconds - (time.monotonic() - self.started_at)

    def is_expired(self) -> bool:
        return self.remaining_seconds() <= 0

    def record(self, iteration: int, body_id: str, output: str) -> None:
        self.outputs.setdefault(iteration, {})[body_id] = output

    def is_iteration_complete(self, iteration: int) -> bool:
        return len(self.outputs.get(iteration, {})) == len(self.body_targets)

    def completed_iterations(self) -> list[int]:
        return [i for i in sorted(self.outputs) if self.is_iteration_complete(i)]

    def all_done(self) -> bool:
        return len(self.completed_iterations()) == self.iteration_count

    def iteration_output(self, iteration: int) -> str:
        if not self.body_targets:
            return self.items[iteration]
        per_body = self.outputs.get(iteration, {})
        return BODY_OUTPUT_SEPARATOR.join(
            per_body[body_id] for body_id in self.body_targets if body_id in per_body
        )

    def results(self) -> list[str]:
        """Outputs of every completed iteration, in iteration order."""
        if not self.body_targets:
            return list(self.items)
        return [self.iteration_output(i) for i in self.completed_iterations()]

    def previous_output(self, iteration: int) -> str | None:
        if iteration == 0:
            return None
        if not self.body_targets or self.is_iteration_complete(iteration - 1):
            return self.iteration_output(iteration - 1)
        return None

    def should_run(self, iteration: int) -> bool:
        """Check the while condition once per iteration."""
        if self.spec.mode != LoopMode.WHILE or iteration in self.checked_iterations:
            return True
        self.checked_iterations.add(iteration)
        return evaluate_while_condition(
            self.spec.condition,
            index=iteration,
            item=self.items[iteration],
            previous=self.previous_output(iteration),
            results=self.results(),
            max_iterations=self.spec.max_iterations,
        )


def merge_loop_results(results: Sequence[str]) -> str:
    """Join iteration outputs into the loop node's final output."""
    return ITERATION_SEPARATOR.join(results)
