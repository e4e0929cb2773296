"""Tests for deterministic topological ordering and cycle reporting."""

import pytest

from flowgraph.graph.errors import CycleDetectedError, GraphValidationError
from flowgraph.graph.model import Edge, Graph, Node
from flowgraph.graph.ordering import find_unscheduled, topological_order


def nodes(*ids: str) -> list[Node]:
    return [Node(id=node_id, kind="echo") for node_id in ids]


def edges(*pairs: tuple[str, str]) -> list[Edge]:
    return [Edge(id=f"e{i}", source=src, target=dst) for i, (src, dst) in enumerate(pairs)]


class TestTopologicalOrder:
    def test_linear_chain(self):
        order = topological_order(nodes("a", "b", "c"), edges(("a", "b"), ("b", "c")))
        assert order == ["a", "b", "c"]

    def test_ties_follow_declaration_order(self):
        """Independent nodes come out in the order they were declared."""
        assert topological_order(nodes("c", "a", "b"), []) == ["c", "a", "b"]

    def test_diamond(self):
        order = topological_order(
            nodes("a", "b", "c", "d"),
            edges(("a", "c"), ("a", "b"), ("b", "d"), ("c", "d")),
        )
        assert order == ["a", "b", "c", "d"]

    def test_every_edge_respected(self):
        graph_nodes = nodes("x", "y", "z", "w")
        graph_edges = edges(("z", "x"), ("w", "y"), ("x", "y"))
        order = topological_order(graph_nodes, graph_edges)

        position = {node_id: i for i, node_id in enumerate(order)}
        for edge in graph_edges:
            assert position[edge.source] < position[edge.target]

    def test_same_graph_same_order(self):
        graph_nodes = nodes("a", "b", "c", "d", "e")
        graph_edges = edges(("a", "d"), ("b", "d"), ("c", "e"))
        first = topological_order(graph_nodes, graph_edges)
        for _ in range(5):
            assert topological_order(graph_nodes, graph_edges) == first

    def test_edges_to_unknown_nodes_are_ignored(self):
        order = topological_order(nodes("a", "b"), edges(("a", "ghost"), ("a", "b")))
        assert order == ["a", "b"]


class TestCycles:
    def test_cycle_members_are_left_out(self):
        graph_nodes = nodes("a", "b", "c")
        graph_edges = edges(("a", "b"), ("b", "c"), ("c", "b"))

        assert topological_order(graph_nodes, graph_edges) == ["a"]
        assert find_unscheduled(graph_nodes, graph_edges) == ["b", "c"]

    def test_downstream_of_cycle_is_unscheduled(self):
        graph_nodes = nodes("a", "b", "c", "d")
        graph_edges = edges(("a", "b"), ("b", "a"), ("b", "c"), ("d", "c"))

        assert topological_order(graph_nodes, graph_edges) == ["d"]
        assert find_unscheduled(graph_nodes, graph_edges) == ["a", "b", "c"]

    def test_strict_mode_raises(self):
        with pytest.raises(CycleDetectedError) as exc_info:
            topological_order(nodes("a", "b"), edges(("a", "b"), ("b", "a")), strict=True)
        assert exc_info.value.node_ids == ["a", "b"]

    def test_acyclic_graph_has_nothing_unscheduled(self):
        assert find_unscheduled(nodes("a", "b"), edges(("a", "b"))) == []


class TestGraphValidation:
    def test_valid_graph(self):
        graph = Graph(nodes=nodes("a", "b"), edges=edges(("a", "b")))
        assert graph.validate() == []
        graph.ensure_valid()

    def test_reports_duplicates_and_dangling_edges(self):
        graph = Graph(
            nodes=nodes("a", "a"),
            edges=[*edges(("a", "ghost")), Edge(id="e0", source="nobody", target="a")],
        )

        errors = graph.validate()

        assert "Duplicate node ID: 'a'" in errors
        assert "Duplicate edge ID: 'e0'" in errors
        assert "Edge 'e0' references missing target 'ghost'" in errors
        assert "Edge 'e0' references missing source 'nobody'" in errors

    def test_ensure_valid_raises(self):
        graph = Graph(nodes=nodes("a"), edges=edges(("a", "b")))

        with pytest.raises(GraphValidationError) as exc_info:
            graph.ensure_valid()
        assert exc_info.value.errors == ["Edge 'e0' references missing target 'b'"]
