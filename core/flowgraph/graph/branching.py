"""
Branch pruning for condition nodes.

When a condition evaluates, the targets of the not-taken handle and
everything reachable from them are marked skipped. The scheduler drops
tasks for skipped nodes, so they never receive a NodeResult.
"""

from collections.abc import Sequence

from flowgraph.graph.model import HANDLE_FALSE, HANDLE_TRUE, Edge

TRUTHY_OUTPUTS = frozenset({"true", "1", "yes", "y"})


def mark_skipped(start_node_id: str, edges: Sequence[Edge], skipped: set[str]) -> list[str]:
    """
    Mark ``start_node_id`` and every node reachable from it as skipped.

    Idempotent: nodes already in ``skipped`` are not walked again.

    Returns:
        The node IDs newly added to ``skipped``, in visit order
    """
    newly_marked: list[str] = []
    stack = [start_node_id]
    while stack:
        node_id = stack.pop()
        if node_id in skipped:
            continue
        skipped.add(node_id)
        newly_marked.append(node_id)
        # Reverse so the walk visits edges in declaration order
        for edge in reversed([e for e in edges if e.source == node_id]):
            if edge.target not in skipped:
                stack.append(edge.target)
    return newly_marked


def interpret_condition(output: str, branch: bool | None = None) -> bool:
    """Read a condition executor's boolean result."""
    if branch is not None:
        return branch
    return output.strip().lower() in TRUTHY_OUTPUTS


def not_taken_handle(result: bool) -> str:
    return HANDLE_FALSE if result else HANDLE_TRUE


def prune_not_taken(
    condition_node_id: str,
    result: bool,
    edges: Sequence[Edge],
    skipped: set[str],
) -> list[str]:
    """
    Skip every subtree hanging off the not-taken handle of a condition node.

    Unlabelled edges are always followed.
    """
    handle = not_taken_handle(result)
    marked: list[str] = []
    for edge in edges:
        if edge.source == condition_node_id and edge.source_handle == handle:
            marked.extend(mark_skipped(edge.target, edges, skipped))
    return marked


def skip_exclusive(start_node_id: str, edges: Sequence[Edge], skipped: set[str]) -> list[str]:
    """
    Skip ``start_node_id`` and the descendants fed only by skipped nodes.

    Used for parallel candidates that were not selected as branches: a
    merge node that also hangs off a live branch keeps running.
    """
    newly_marked: list[str] = []
    stack = [start_node_id]
    while stack:
        node_id = stack.pop()
        if node_id in skipped:
            continue
        skipped.add(node_id)
        newly_marked.append(node_id)
        for edge in reversed([e for e in edges if e.source == node_id]):
            target = edge.target
            if target in skipped:
                continue
            if all(e.source in skipped for e in edges if e.target == target):
                stack.append(target)
    return newly_marked
