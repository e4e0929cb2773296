"""
Workflow Executor - Runs workflow graphs.

The executor:
1. Validates the graph and picks a scheduling mode
2. Resolves every node's input through the Input Merger
3. Dispatches nodes to their executors by kind
4. Handles condition, loop and parallel nodes itself
5. Returns a RunResponse built by the Run Accumulator

Graphs without loop or parallel nodes run in static mode (topological
order). Anything else runs in dynamic mode: a FIFO task queue seeded with
the entry nodes, where a node is enqueued once all of its predecessors
are finalized or skipped.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from flowgraph.config import EngineConfig
from flowgraph.graph.accumulator import RunAccumulator
from flowgraph.graph.branching import interpret_condition, prune_not_taken, skip_exclusive
from flowgraph.graph.errors import ExecutionLimitError, ExecutorError, RunCancelledError
from flowgraph.graph.input_merger import merge_inputs
from flowgraph.graph.loop import (
    LoopSpec,
    LoopState,
    expand_items,
    merge_loop_results,
    split_loop_edges,
)
from flowgraph.graph.model import (
    CONDITION_KIND,
    CONTROL_FLOW_KINDS,
    LOOP_KIND,
    PARALLEL_KIND,
    Graph,
    Node,
)
from flowgraph.graph.node import (
    ExecutorOutput,
    ExecutorRegistry,
    NodeContext,
    NodeExecutor,
    NodeResult,
    NodeStatus,
    now_ms,
)
from flowgraph.graph.ordering import find_unscheduled, topological_order
from flowgraph.graph.parallel import (
    ParallelBranch,
    ParallelSpec,
    merge_branch_outputs,
    scatter_gather,
    split_parallel_edges,
)
from flowgraph.observability import set_trace_context
from flowgraph.runtime.event_bus import EventBus
from flowgraph.runtime.shared_state import SharedState
from flowgraph.schemas.run import ExecutionMode, RunRequest, RunResponse


@dataclass
class ExecutionTask:
    """One queued dispatch. ``input=None`` means resolve through the Input Merger."""

    node_id: str
    input: str | None = None
    iteration_index: int | None = None
    iteration_count: int | None = None
    parent_loop_id: str | None = None
    branch_index: int | None = None

    @property
    def is_loop_iteration(self) -> bool:
        return self.parent_loop_id is not None


@dataclass
class RunState:
    """Mutable state owned by a single run."""

    graph: Graph
    nodes: dict[str, Node]
    accumulator: RunAccumulator
    shared_state: SharedState
    cancel_event: asyncio.Event
    queue: deque[ExecutionTask] = field(default_factory=deque)
    # Value each finalized node passes downstream
    outputs: dict[str, str] = field(default_factory=dict)
    skipped: set[str] = field(default_factory=set)
    finalized: set[str] = field(default_factory=set)
    loops: dict[str, LoopState] = field(default_factory=dict)
    parallel_results: dict[str, list[ParallelBranch]] = field(default_factory=dict)
    execution_count: int = 0
    limit_exceeded: bool = False

    @property
    def run_id(self) -> str:
        return self.accumulator.run_id


class WorkflowExecutor:
    """
    Executes workflow graphs.

    Example:
        registry = ExecutorRegistry()
        registry.register_function("upper", lambda ctx: ctx.input.upper())

        executor = WorkflowExecutor(registry=registry)
        response = await executor.execute(graph)
    """

    def __init__(
        self,
        registry: ExecutorRegistry | None = None,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self.registry = registry or ExecutorRegistry()
        self.config = config or EngineConfig()
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        # run_id -> cancel event for every run in progress
        self._active_runs: dict[str, asyncio.Event] = {}

    def register(self, kind: str, executor: NodeExecutor) -> None:
        """Register an executor for a node kind."""
        self.registry.register(kind, executor)

    def register_function(self, kind: str, func: Callable[[NodeContext], Any]) -> None:
        """Register a function as the executor for a node kind."""
        self.registry.register_function(kind, func)

    @property
    def active_runs(self) -> list[str]:
        """IDs of the runs currently executing on this executor."""
        return list(self._active_runs)

    def cancel(self, run_id: str | None = None) -> bool:
        """
        Cancel a run in progress, or every run in progress when ``run_id`` is
        None. The in-flight node of a cancelled run is recorded as an error.

        Returns True if at least one run was signalled.
        """
        if run_id is None:
            targets = list(self._active_runs.values())
        else:
            event = self._active_runs.get(run_id)
            targets = [event] if event is not None else []
        for event in targets:
            event.set()
        if targets:
            self.logger.info(f"⏹ Cancellation requested ({run_id or 'all runs'})")
        return bool(targets)

    async def execute(
        self,
        graph: Graph | RunRequest | dict[str, Any],
        shared_state: SharedState | None = None,
        run_id: str | None = None,
    ) -> RunResponse:
        """
        Run a graph end to end.

        Never raises for node or graph problems: failures, cycles, aborts
        and cancellation are reported through the response status. Pass
        ``run_id`` to know the ID up front, e.g. to ``cancel(run_id)`` a run
        started as a task.
        """
        if isinstance(graph, dict):
            graph = RunRequest.model_validate(graph)
        if isinstance(graph, RunRequest):
            graph = graph.to_graph()

        accumulator = RunAccumulator(run_id=run_id) if run_id else RunAccumulator()
        if accumulator.run_id in self._active_runs:
            raise ValueError(f"Run '{accumulator.run_id}' is already in progress")
        cancel_event = asyncio.Event()
        self._active_runs[accumulator.run_id] = cancel_event
        state = RunState(
            graph=graph,
            nodes=graph.node_map(),
            accumulator=accumulator,
            shared_state=shared_state or SharedState(mode=self.config.shared_state_mode),
            cancel_event=cancel_event,
        )
        mode = ExecutionMode.DYNAMIC if graph.has_dynamic_nodes() else ExecutionMode.STATIC
        set_trace_context(run_id=state.run_id)

        errors = graph.validate()
        if errors:
            self.logger.error("❌ Graph validation failed:")
            for err in errors:
                self.logger.error(f"   • {err}")
            return await self._finish(
                state, mode, error=f"Invalid graph: {'; '.join(errors)}", include_results=False
            )

        unscheduled = find_unscheduled(graph.nodes, graph.edges)

        self.logger.info(f"🚀 Starting run: {state.run_id}")
        self.logger.info(f"   Nodes: {len(graph.nodes)}, edges: {len(graph.edges)}")
        self.logger.info(f"   Mode: {mode.value}")
        if self.event_bus:
            await self.event_bus.emit_run_started(state.run_id, len(graph.nodes), mode.value)

        error: str | None = None
        aborted = False
        cancelled = False
        try:
            if mode == ExecutionMode.STATIC:
                await self._run_static(state)
            else:
                await self._run_dynamic(state)
        except ExecutorError as e:
            error = f"Node '{e.node_id}' failed: {e.message}" if e.node_id else e.message
            self.logger.error(f"❌ Run halted: {error}")
        except ExecutionLimitError as e:
            error = str(e)
            aborted = True
            self.logger.error(f"❌ Run aborted: {error}")
        except RunCancelledError:
            error = "Run cancelled"
            cancelled = True
            self.logger.info("⏹ Run cancelled")
        except Exception:
            self._active_runs.pop(state.run_id, None)
            raise

        self._close_unfinished_loops(state, error or "Loop did not complete")

        unscheduled = [node_id for node_id in unscheduled if node_id not in state.skipped]
        if unscheduled and error is None:
            error = f"Cycle detected; unschedulable nodes: {unscheduled}"
            self.logger.error(f"❌ {error}")

        return await self._finish(
            state,
            mode,
            error=error,
            aborted=aborted,
            cancelled=cancelled,
            unscheduled=unscheduled,
        )

    async def _finish(
        self,
        state: RunState,
        mode: ExecutionMode,
        error: str | None = None,
        aborted: bool = False,
        cancelled: bool = False,
        unscheduled: list[str] | None = None,
        include_results: bool = True,
    ) -> RunResponse:
        if not include_results:
            state.accumulator.node_results.clear()
        response = state.accumulator.finish(
            error=error,
            aborted=aborted,
            cancelled=cancelled,
            skipped_node_ids=[n.id for n in state.graph.nodes if n.id in state.skipped],
            unscheduled_node_ids=unscheduled,
            execution_count=state.execution_count,
            mode=mode,
        )
        self._active_runs.pop(state.run_id, None)

        if response.success:
            self.logger.info("\n✓ Run complete!")
        else:
            self.logger.info("\n✗ Run finished with errors")
        self.logger.info(f"   Executions: {response.execution_count}")
        self.logger.info(f"   Total usage units: {response.total_usage_units}")
        self.logger.info(f"   Total latency: {response.total_latency_ms}ms")

        if self.event_bus:
            await self.event_bus.emit_run_finished(
                state.run_id,
                success=response.success,
                error=response.error,
                total_cost=response.total_cost,
                total_latency_ms=response.total_latency_ms,
            )
        return response

    # === SCHEDULING ===

    async def _run_static(self, state: RunState) -> None:
        """Run every node once in topological order."""
        for node_id in topological_order(state.graph.nodes, state.graph.edges):
            self._check_cancelled(state)
            if node_id in state.skipped:
                continue
            node = state.nodes[node_id]
            node_input = self._resolve_input(state, node_id)
            if node.kind == CONDITION_KIND:
                await self._run_condition(state, node, node_input)
            else:
                await self._run_node(state, node, node_input)

    async def _run_dynamic(self, state: RunState) -> None:
        """Drain the task queue, dispatching by node kind."""
        state.queue.extend(ExecutionTask(node_id) for node_id in state.graph.entry_nodes())

        while state.queue:
            self._check_cancelled(state)
            task = state.queue.popleft()
            node = state.nodes.get(task.node_id)
            if node is None or task.node_id in state.skipped:
                continue

            if task.is_loop_iteration:
                await self._run_loop_iteration(state, node, task)
                continue

            if task.node_id in state.finalized:
                continue

            node_input = (
                task.input if task.input is not None else self._resolve_input(state, node.id)
            )

            if node.kind == CONDITION_KIND:
                await self._run_condition(state, node, node_input)
                self._enqueue_ready_successors(state, node.id)
            elif node.kind == LOOP_KIND:
                await self._start_loop(state, node, node_input)
            elif node.kind == PARALLEL_KIND:
                await self._run_parallel(state, node, node_input)
            else:
                await self._run_node(state, node, node_input)
                self._enqueue_ready_successors(state, node.id)

        for loop in state.loops.values():
            if not loop.finished:
                raise ExecutorError("Loop did not complete", node_id=loop.loop_id)

    def _close_unfinished_loops(self, state: RunState, error: str) -> None:
        """Replace the RUNNING placeholder of loops cut short by a halt."""
        for loop in state.loops.values():
            if loop.finished:
                continue
            loop.finished = True
            previous = state.accumulator.node_results.get(loop.loop_id)
            state.accumulator.record(
                loop.loop_id,
                NodeResult(
                    node_id=loop.loop_id,
                    status=NodeStatus.ERROR,
                    error=error,
                    start_time=previous.start_time if previous else now_ms(),
                    end_time=now_ms(),
                    metadata={
                        "mode": loop.spec.mode.value,
                        "iterations": loop.iteration_count,
                        "completed": len(loop.completed_iterations()),
                    },
                ),
                count_usage=False,
            )

    def _resolve_input(self, state: RunState, node_id: str) -> str:
        return merge_inputs(
            state.graph.get_predecessors(node_id),
            state.nodes,
            state.outputs,
            max_length=self.config.max_input_length,
        )

    def _is_ready(self, state: RunState, node_id: str) -> bool:
        return all(
            pred in state.finalized or pred in state.skipped
            for pred in state.graph.get_predecessors(node_id)
        )

    def _enqueue_ready_successors(
        self, state: RunState, node_id: str, only: list[str] | None = None
    ) -> None:
        targets = state.graph.get_successors(node_id) if only is None else only
        for target in targets:
            if target in state.skipped or target in state.finalized:
                continue
            if self._is_ready(state, target):
                state.queue.append(ExecutionTask(target))

    def _check_cancelled(self, state: RunState) -> None:
        if state.cancel_event.is_set():
            raise RunCancelledError("Run cancelled")

    def _count_dispatch(self, state: RunState) -> None:
        """Circuit breaker over every dispatch in the run."""
        if state.execution_count >= self.config.max_executions:
            state.limit_exceeded = True
            raise ExecutionLimitError(self.config.max_executions)
        state.execution_count += 1

    # === NODE DISPATCH ===

    async def _invoke(
        self,
        state: RunState,
        node: Node,
        node_input: str,
        **context: Any,
    ) -> tuple[NodeResult, ExecutorOutput | None]:
        """
        Call a node's executor once.

        Executor failures come back as an error NodeResult. Cancellation
        and the circuit breaker raise.
        """
        self._count_dispatch(state)
        set_trace_context(node_id=node.id)
        if self.event_bus:
            await self.event_bus.emit_node_started(state.run_id, node.id, node.kind)

        result = NodeResult(node_id=node.id, status=NodeStatus.RUNNING)
        ctx = NodeContext(
            node=node,
            input=node_input,
            run_id=state.run_id,
            shared_state=state.shared_state,
            cancel_event=state.cancel_event,
            **context,
        )

        try:
            executor = self.registry.get(node.kind)
            output = await self._race_cancel(state, executor.execute(ctx))
            if output.error:
                raise ExecutorError(output.error, node_id=node.id)
        except RunCancelledError:
            result.status = NodeStatus.ERROR
            result.error = "cancelled"
            result.end_time = now_ms()
            state.accumulator.record(node.id, result)
            raise
        except Exception as e:
            result.status = NodeStatus.ERROR
            result.error = str(e)
            result.end_time = now_ms()
            self.logger.error(f"   ✗ Failed: {node.id} ({node.kind}): {e}")
            if self.event_bus:
                await self.event_bus.emit_node_failed(state.run_id, node.id, str(e))
            return result, None

        result.status = NodeStatus.SUCCESS
        result.output = output.output
        result.usage = output.usage
        result.cost = output.cost
        result.end_time = now_ms()
        if self.event_bus:
            await self.event_bus.emit_node_completed(state.run_id, node.id, result.latency_ms)
        return result, output

    async def _race_cancel(self, state: RunState, call: Any) -> ExecutorOutput:
        """Await an executor call, abandoning it if the run is cancelled first."""
        exec_task = asyncio.ensure_future(call)
        cancel_task = asyncio.ensure_future(state.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {exec_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for pending in (exec_task, cancel_task):
                if not pending.done():
                    pending.cancel()
        if exec_task not in done:
            raise RunCancelledError("Run cancelled")
        return exec_task.result()

    async def _run_node(self, state: RunState, node: Node, node_input: str) -> NodeResult:
        """Run a plain node. A failure halts the run."""
        self.logger.info(f"\n▶ Node: {node.display_label} ({node.kind})")
        result, _ = await self._invoke(state, node, node_input)
        state.accumulator.record(node.id, result)
        if not result.success:
            raise ExecutorError(result.error or "Node failed", node_id=node.id)

        state.outputs[node.id] = result.output or ""
        state.finalized.add(node.id)
        self.logger.info(f"   ✓ Success ({result.latency_ms}ms)")
        return result

    async def _run_condition(self, state: RunState, node: Node, node_input: str) -> bool:
        """Evaluate a condition and prune the branch that was not taken."""
        self.logger.info(f"\n▶ Condition: {node.display_label}")
        result, output = await self._invoke(state, node, node_input)
        if not result.success or output is None:
            state.accumulator.record(node.id, result)
            raise ExecutorError(result.error or "Condition failed", node_id=node.id)

        taken = interpret_condition(output.output, output.branch)
        result.output = "true" if taken else "false"
        state.accumulator.record(node.id, result)
        # Downstream nodes see the routed data, not the boolean
        state.outputs[node.id] = node_input
        state.finalized.add(node.id)

        pruned = prune_not_taken(node.id, taken, state.graph.edges, state.skipped)
        self.logger.info(f"   → Branch: {result.output}")
        if pruned:
            self.logger.info(f"   ⊘ Skipped: {', '.join(pruned)}")
        await self._emit_skipped(state, pruned, reason=f"condition '{node.id}' not taken")
        return taken

    async def _emit_skipped(self, state: RunState, node_ids: list[str], reason: str) -> None:
        if not self.event_bus:
            return
        for node_id in node_ids:
            await self.event_bus.emit_node_skipped(state.run_id, node_id, reason)

    # === LOOPS ===

    async def _start_loop(self, state: RunState, node: Node, node_input: str) -> None:
        self._count_dispatch(state)
        set_trace_context(node_id=node.id)
        spec = LoopSpec.from_config(node.config, self.config)
        body, done = split_loop_edges(state.graph.edges, node.id)
        loop = LoopState(
            loop_id=node.id,
            spec=spec,
            items=expand_items(spec, node_input),
            body_targets=[b for b in body if b not in state.skipped],
            done_targets=done,
            timeout_seconds=self.config.loop_timeout_seconds,
        )
        state.loops[node.id] = loop
        state.accumulator.record(
            node.id, NodeResult(node_id=node.id, status=NodeStatus.RUNNING), count_usage=False
        )

        nested = [b for b in loop.body_targets if state.nodes[b].kind in CONTROL_FLOW_KINDS]
        if nested:
            raise ExecutorError(
                f"Control-flow nodes cannot be loop bodies: {nested}", node_id=node.id
            )

        self.logger.info(f"\n🔁 Loop: {node.display_label} ({spec.mode.value})")
        self.logger.info(f"   Iterations: {loop.iteration_count}, body: {loop.body_targets}")
        if self.event_bus:
            await self.event_bus.emit_node_started(state.run_id, node.id, node.kind)

        if not loop.body_targets:
            # No body: each item is its own iteration output
            for index in range(loop.iteration_count):
                if not loop.should_run(index):
                    loop.items = loop.items[:index]
                    loop.stopped_early = True
                    break
            await self._finish_loop(state, loop)
            return

        await self._advance_loop(state, loop, 0)

    async def _advance_loop(self, state: RunState, loop: LoopState, index: int) -> None:
        """Queue iteration ``index`` or finish the loop."""
        if index >= loop.iteration_count:
            await self._finish_loop(state, loop)
            return
        if loop.is_expired():
            await self._finish_loop(state, loop, timed_out=True)
            return
        if not loop.should_run(index):
            self.logger.info(f"   ⏹ Loop condition false before iteration {index}")
            loop.stopped_early = True
            await self._finish_loop(state, loop)
            return

        for body_id in loop.body_targets:
            state.queue.append(
                ExecutionTask(
                    body_id,
                    input=loop.items[index],
                    iteration_index=index,
                    iteration_count=loop.iteration_count,
                    parent_loop_id=loop.loop_id,
                )
            )

    async def _run_loop_iteration(self, state: RunState, node: Node, task: ExecutionTask) -> None:
        loop = state.loops.get(task.parent_loop_id or "")
        if loop is None or loop.finished:
            return
        index = task.iteration_index or 0
        if loop.is_expired():
            await self._finish_loop(state, loop, timed_out=True)
            return

        key = f"{node.id}-iter-{index}"
        self.logger.info(f"   ↻ Iteration {index + 1}/{loop.iteration_count}: {node.id}")
        try:
            result, _ = await asyncio.wait_for(
                self._invoke(
                    state,
                    node,
                    task.input or "",
                    iteration_index=index,
                    iteration_count=task.iteration_count,
                    parent_loop_id=loop.loop_id,
                ),
                timeout=loop.remaining_seconds(),
            )
        except TimeoutError:
            self.logger.warning(
                f"   ⏱ Loop {loop.loop_id} timed out after {loop.timeout_seconds}s"
            )
            state.accumulator.record(
                key,
                NodeResult(
                    node_id=node.id,
                    status=NodeStatus.TIMEOUT,
                    error="Loop timed out",
                    end_time=now_ms(),
                ),
                count_usage=False,
            )
            await self._finish_loop(state, loop, timed_out=True)
            return

        state.accumulator.record(key, result)
        if not result.success:
            raise ExecutorError(
                f"Loop iteration {index} failed: {result.error}", node_id=node.id
            )

        loop.record(index, node.id, result.output or "")
        if loop.is_iteration_complete(index):
            if self.event_bus:
                await self.event_bus.emit_loop_iteration(
                    state.run_id, loop.loop_id, index, loop.iteration_count
                )
            await self._advance_loop(state, loop, index + 1)

    async def _finish_loop(self, state: RunState, loop: LoopState, timed_out: bool = False) -> None:
        """Merge completed iterations and hand the result to the done targets."""
        loop.finished = True
        loop.timed_out = timed_out
        results = loop.results()
        merged = merge_loop_results(results)

        previous = state.accumulator.node_results.get(loop.loop_id)
        state.accumulator.record(
            loop.loop_id,
            NodeResult(
                node_id=loop.loop_id,
                status=NodeStatus.TIMEOUT if timed_out else NodeStatus.SUCCESS,
                output=merged,
                error=f"Loop timed out after {loop.timeout_seconds}s" if timed_out else None,
                start_time=previous.start_time if previous else now_ms(),
                end_time=now_ms(),
                metadata={
                    "mode": loop.spec.mode.value,
                    "iterations": loop.iteration_count,
                    "completed": len(results),
                    "stopped_early": loop.stopped_early,
                    "timed_out": timed_out,
                },
            ),
            count_usage=False,
        )
        state.outputs[loop.loop_id] = merged
        state.finalized.add(loop.loop_id)
        state.finalized.update(loop.body_targets)

        self.logger.info(f"   ✓ Loop {loop.loop_id} done: {len(results)} iteration(s)")
        if self.event_bus:
            await self.event_bus.emit_loop_completed(
                state.run_id, loop.loop_id, len(results), timed_out
            )

        # Done targets go through the readiness check so a merge point
        # also fed by other producers waits for them
        self._enqueue_ready_successors(state, loop.loop_id, only=loop.done_targets)

    # === PARALLEL ===

    async def _route_condition_branch(
        self, state: RunState, branch: ParallelBranch, node_input: str
    ) -> None:
        """A condition used as a branch routes the fan-out input like any condition."""
        taken = branch.output == "true"
        state.outputs[branch.node_id] = node_input
        pruned = prune_not_taken(branch.node_id, taken, state.graph.edges, state.skipped)
        self.logger.info(f"   → Branch {branch.node_id}: {branch.output}")
        if pruned:
            self.logger.info(f"   ⊘ Skipped: {', '.join(pruned)}")
        await self._emit_skipped(state, pruned, reason=f"condition '{branch.node_id}' not taken")

    async def _run_parallel(self, state: RunState, node: Node, node_input: str) -> None:
        """Fan one input out to the selected branches, then merge."""
        self._count_dispatch(state)
        set_trace_context(node_id=node.id)
        started = now_ms()
        spec = ParallelSpec.from_config(node.config, self.config)
        selected, unselected, done = split_parallel_edges(
            state.graph.edges, node.id, spec.branch_count
        )

        for edge in unselected:
            skipped = skip_exclusive(edge.target, state.graph.edges, state.skipped)
            await self._emit_skipped(state, skipped, reason=f"not selected by '{node.id}'")

        branches = [
            ParallelBranch(index=i, node_id=edge.target, edge=edge)
            for i, edge in enumerate(selected)
            if edge.target in state.nodes and edge.target not in state.skipped
        ]
        self.logger.info(f"\n⑂ Fan-out: {node.display_label} ({len(branches)} branches)")
        for branch in branches:
            self.logger.info(f"      • {branch.node_id}")

        async def run_branch(branch: ParallelBranch) -> NodeResult:
            branch_node = state.nodes[branch.node_id]
            if branch_node.kind in (LOOP_KIND, PARALLEL_KIND):
                raise ExecutorError(
                    f"A {branch_node.kind} node cannot run as a parallel branch",
                    node_id=branch_node.id,
                )
            result, output = await self._invoke(
                state, branch_node, node_input, branch_index=branch.index
            )
            if branch_node.kind == CONDITION_KIND and output is not None and result.success:
                taken = interpret_condition(output.output, output.branch)
                result.output = "true" if taken else "false"
            return result

        branches = await scatter_gather(branches, run_branch)
        self._check_cancelled(state)
        if state.limit_exceeded:
            raise ExecutionLimitError(self.config.max_executions)

        for branch in branches:
            if branch.result is None:
                continue
            state.accumulator.record(f"{node.id}-branch-{branch.index}", branch.result)
            if branch.succeeded:
                state.accumulator.record(branch.node_id, branch.result, count_usage=False)
                state.outputs[branch.node_id] = branch.output
            state.finalized.add(branch.node_id)
            if branch.succeeded and state.nodes[branch.node_id].kind == CONDITION_KIND:
                await self._route_condition_branch(state, branch, node_input)
        state.parallel_results[node.id] = branches

        succeeded = sum(1 for b in branches if b.succeeded)
        merged = merge_branch_outputs([b.output for b in branches], spec.merge_strategy)
        state.accumulator.record(
            node.id,
            NodeResult(
                node_id=node.id,
                status=NodeStatus.SUCCESS,
                output=merged,
                start_time=started,
                end_time=now_ms(),
                metadata={
                    "merge_strategy": spec.merge_strategy.value,
                    "branches": len(branches),
                    "succeeded": succeeded,
                },
            ),
            count_usage=False,
        )
        state.outputs[node.id] = merged
        state.finalized.add(node.id)

        self.logger.info(
            f"   ⑃ Merged {succeeded}/{len(branches)} branches ({spec.merge_strategy.value})"
        )
        if self.event_bus:
            await self.event_bus.emit_parallel_completed(
                state.run_id, node.id, succeeded, len(branches)
            )

        self._enqueue_ready_successors(state, node.id, only=done)
        for branch in branches:
            self._enqueue_ready_successors(state, branch.node_id)
