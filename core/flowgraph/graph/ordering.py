"""
Topological ordering for straight-line and branch-only graphs.

Uses Kahn's algorithm. When several nodes become ready at the same time
they are emitted in node declaration order, so the same graph always
produces the same sequence.

Nodes that never reach zero in-degree (members of a true cycle, and
everything downstream of one) are left out of the order. Callers that
need to know about them use ``find_unscheduled`` or ``strict=True``.
"""

import heapq
from collections.abc import Sequence

from flowgraph.graph.errors import CycleDetectedError
from flowgraph.graph.model import Edge, Node


def topological_order(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    strict: bool = False,
) -> list[str]:
    """
    Compute a deterministic execution order.

    Args:
        nodes: Graph nodes in declaration order
        edges: Graph edges
        strict: Raise CycleDetectedError instead of silently omitting
            unschedulable nodes

    Returns:
        Node IDs, each appearing after all of its predecessors
    """
    position = {node.id: i for i, node in enumerate(nodes)}
    in_degree = {node.id: 0 for node in nodes}
    adjacency: dict[str, list[str]] = {node.id: [] for node in nodes}

    for edge in edges:
        if edge.source not in position or edge.target not in position:
            continue
        in_degree[edge.target] += 1
        adjacency[edge.source].append(edge.target)

    # Min-heap keyed on declaration position keeps ties stable
    ready = [position[node_id] for node_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        node_id = nodes[heapq.heappop(ready)].id
        order.append(node_id)
        for target in adjacency[node_id]:
            in_degree[target] -= 1
            if in_degree[target] == 0:
                heapq.heappush(ready, position[target])

    if strict and len(order) < len(nodes):
        scheduled = set(order)
        raise CycleDetectedError([n.id for n in nodes if n.id not in scheduled])

    return order


def find_unscheduled(nodes: Sequence[Node], edges: Sequence[Edge]) -> list[str]:
    """Return the IDs that Kahn's algorithm can never schedule, in declaration order."""
    scheduled = set(topological_order(nodes, edges))
    return [n.id for n in nodes if n.id not in scheduled]
