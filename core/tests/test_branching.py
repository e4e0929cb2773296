"""Tests for condition routing and branch skipping."""

import pytest

from flowgraph.graph.branching import (
    interpret_condition,
    mark_skipped,
    prune_not_taken,
    skip_exclusive,
)
from flowgraph.graph.executor import WorkflowExecutor
from flowgraph.graph.model import Edge, Graph, Node
from flowgraph.graph.node import ExecutorOutput, ExecutorRegistry, NodeStatus


def build_graph(nodes, edges) -> Graph:
    """nodes: (id, kind, config); edges: (source, target[, handle])."""
    return Graph(
        nodes=[Node(id=n[0], kind=n[1], config=n[2] if len(n) > 2 else {}) for n in nodes],
        edges=[
            Edge(
                id=f"e{i}",
                source=e[0],
                target=e[1],
                source_handle=e[2] if len(e) > 2 else None,
            )
            for i, e in enumerate(edges)
        ],
    )


def make_registry() -> ExecutorRegistry:
    registry = ExecutorRegistry()
    registry.register_function("text", lambda ctx: str(ctx.config.get("value", "")))
    registry.register_function("echo", lambda ctx: ctx.input)
    registry.register_function("upper", lambda ctx: ctx.input.upper())
    # Answers whatever its config says
    registry.register_function("condition", lambda ctx: ctx.config.get("answer", "true"))
    return registry


class TestMarkSkipped:
    def test_walks_everything_reachable(self):
        graph = build_graph(
            [("a", "echo"), ("b", "echo"), ("c", "echo"), ("d", "echo")],
            [("a", "b"), ("b", "c"), ("a", "d")],
        )
        skipped: set[str] = set()

        assert mark_skipped("b", graph.edges, skipped) == ["b", "c"]
        assert skipped == {"b", "c"}

    def test_idempotent(self):
        graph = build_graph([("a", "echo"), ("b", "echo")], [("a", "b")])
        skipped: set[str] = set()
        mark_skipped("a", graph.edges, skipped)

        assert mark_skipped("a", graph.edges, skipped) == []
        assert skipped == {"a", "b"}

    def test_skip_exclusive_keeps_shared_descendants(self):
        graph = build_graph(
            [("x", "echo"), ("y", "echo"), ("m", "echo"), ("z", "echo")],
            [("x", "m"), ("y", "m"), ("y", "z")],
        )
        skipped: set[str] = set()

        assert skip_exclusive("y", graph.edges, skipped) == ["y", "z"]
        assert "m" not in skipped


class TestInterpretCondition:
    @pytest.mark.parametrize("output", ["true", "TRUE", " yes ", "1", "y"])
    def test_truthy_outputs(self, output):
        assert interpret_condition(output) is True

    @pytest.mark.parametrize("output", ["false", "no", "0", "", "maybe"])
    def test_everything_else_is_false(self, output):
        assert interpret_condition(output) is False

    def test_explicit_branch_wins(self):
        assert interpret_condition("true", branch=False) is False
        assert interpret_condition("nonsense", branch=True) is True

    def test_prune_not_taken(self):
        graph = build_graph(
            [("c", "condition"), ("t", "echo"), ("f", "echo"), ("g", "echo")],
            [("c", "t", "true"), ("c", "f", "false"), ("f", "g")],
        )
        skipped: set[str] = set()

        assert prune_not_taken("c", True, graph.edges, skipped) == ["f", "g"]
        assert skipped == {"f", "g"}


class TestConditionRouting:
    @pytest.mark.asyncio
    async def test_true_branch_runs_false_branch_skipped(self):
        graph = build_graph(
            [
                ("src", "text", {"value": "hello"}),
                ("cond", "condition", {"answer": "true"}),
                ("yes", "upper"),
                ("no", "echo"),
                ("after", "echo"),
            ],
            [
                ("src", "cond"),
                ("cond", "yes", "true"),
                ("cond", "no", "false"),
                ("yes", "after"),
            ],
        )

        response = await WorkflowExecutor(registry=make_registry()).execute(graph)

        assert response.success
        assert response.node_results["cond"].output == "true"
        # The taken branch receives the routed data, not the boolean
        assert response.node_results["yes"].output == "HELLO"
        assert response.node_results["after"].output == "HELLO"
        assert "no" not in response.node_results
        assert response.skipped_node_ids == ["no"]

    @pytest.mark.asyncio
    async def test_false_branch(self):
        graph = build_graph(
            [
                ("src", "text", {"value": "data"}),
                ("cond", "condition", {"answer": "no"}),
                ("yes", "upper"),
                ("no", "echo"),
            ],
            [("src", "cond"), ("cond", "yes", "true"), ("cond", "no", "false")],
        )

        response = await WorkflowExecutor(registry=make_registry()).execute(graph)

        assert response.node_results["cond"].output == "false"
        assert response.node_results["no"].output == "data"
        assert response.skipped_node_ids == ["yes"]

    @pytest.mark.asyncio
    async def test_explicit_branch_flag(self):
        registry = make_registry()
        registry.register_function(
            "condition", lambda ctx: ExecutorOutput(output="irrelevant", branch=False)
        )
        graph = build_graph(
            [("cond", "condition"), ("yes", "echo"), ("no", "echo")],
            [("cond", "yes", "true"), ("cond", "no", "false")],
        )

        response = await WorkflowExecutor(registry=registry).execute(graph)

        assert response.node_results["cond"].output == "false"
        assert response.node_results["no"].status == NodeStatus.SUCCESS
        assert "yes" not in response.node_results

    @pytest.mark.asyncio
    async def test_skip_reaches_through_fan_in(self):
        """A node reachable from the not-taken branch is skipped even if another path feeds it."""
        graph = build_graph(
            [
                ("cond", "condition", {"answer": "false"}),
                ("yes", "echo"),
                ("no", "echo"),
                ("join", "echo"),
            ],
            [
                ("cond", "yes", "true"),
                ("cond", "no", "false"),
                ("yes", "join"),
                ("no", "join"),
            ],
        )

        response = await WorkflowExecutor(registry=make_registry()).execute(graph)

        assert response.success
        assert response.skipped_node_ids == ["yes", "join"]
        assert "join" not in response.node_results

    @pytest.mark.asyncio
    async def test_condition_in_dynamic_mode(self):
        """Routing behaves the same when a loop forces the task queue."""
        graph = build_graph(
            [
                ("src", "text", {"value": "x"}),
                ("cond", "condition", {"answer": "true"}),
                ("yes", "upper"),
                ("no", "echo"),
                ("loop", "loop", {"mode": "count", "maxIterations": 2}),
                ("body", "echo"),
            ],
            [
                ("src", "cond"),
                ("cond", "yes", "true"),
                ("cond", "no", "false"),
                ("yes", "loop"),
                ("loop", "body", "iterate"),
            ],
        )

        response = await WorkflowExecutor(registry=make_registry()).execute(graph)

        assert response.success
        assert response.mode == "dynamic"
        assert response.node_results["loop"].output == "X\n\n---\n\nX"
        assert response.skipped_node_ids == ["no"]
