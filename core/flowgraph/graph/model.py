"""
Graph Model - The nodes and edges of one workflow run.

A graph is supplied by the caller (usually the visual editor) as a plain
``{nodes, edges}`` document. The engine treats it as immutable for the
duration of a run:

- Nodes carry a ``kind`` that selects the node executor and an opaque
  ``config`` that only the executor interprets.
- Edges are directed. ``source_handle`` disambiguates named outputs of a
  single node (condition "true"/"false", loop "iterate"/"done",
  parallel "done", approval "approved"/"rejected").

The editor's JSON uses ``sourceNodeId``/``targetNodeId`` (or React Flow's
``source``/``target``) and ``sourceHandle``; both spellings are accepted.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from flowgraph.graph.errors import GraphValidationError

# Node kinds the scheduler special-cases for control flow.
CONDITION_KIND = "condition"
LOOP_KIND = "loop"
PARALLEL_KIND = "parallel"

CONTROL_FLOW_KINDS = frozenset({CONDITION_KIND, LOOP_KIND, PARALLEL_KIND})

# Named handles
HANDLE_TRUE = "true"
HANDLE_FALSE = "false"
HANDLE_ITERATE = "iterate"
HANDLE_DONE = "done"


class Node(BaseModel):
    """
    A single processing step.

    Example:
        Node(id="llm-1", kind="llm", config={"model": "gpt-4o-mini", "userPrompt": "..."})
    """

    id: str
    kind: str = Field(
        validation_alias=AliasChoices("kind", "type"),
        description="Selects the node executor (llm, api, condition, loop, ...)",
    )
    config: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("config", "data"),
        description="Opaque executor configuration; never mutated by the engine",
    )
    label: str | None = None

    model_config = {"extra": "allow", "populate_by_name": True, "frozen": True}

    @property
    def display_label(self) -> str:
        """Human-readable label used in merged input headers."""
        if self.label:
            return self.label
        label = self.config.get("label")
        if isinstance(label, str) and label:
            return label
        return self.id


class Edge(BaseModel):
    """
    A directed connection between two nodes.

    Examples:
        # Plain data flow
        Edge(id="e1", source="input", target="llm")

        # Condition branch
        Edge(id="e2", source="check", target="notify", source_handle="true")

        # Loop completion
        Edge(id="e3", source="each-line", target="summary", source_handle="done")
    """

    id: str
    source: str = Field(
        validation_alias=AliasChoices("source", "sourceNodeId", "source_node_id"),
        serialization_alias="sourceNodeId",
        description="Source node ID",
    )
    target: str = Field(
        validation_alias=AliasChoices("target", "targetNodeId", "target_node_id"),
        serialization_alias="targetNodeId",
        description="Target node ID",
    )
    source_handle: str | None = Field(
        default=None,
        validation_alias=AliasChoices("source_handle", "sourceHandle"),
        serialization_alias="sourceHandle",
        description="Named output of the source node",
    )

    model_config = {"extra": "allow", "populate_by_name": True, "frozen": True}


class Graph(BaseModel):
    """
    Complete workflow graph for one run.

    Lookups preserve declaration order everywhere: it is the tie-breaker
    for topological ordering and the provenance order for merged inputs.
    """

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    def get_node(self, node_id: str) -> Node | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_map(self) -> dict[str, Node]:
        return {node.id: node for node in self.nodes}

    def get_outgoing_edges(self, node_id: str) -> list[Edge]:
        """Get all edges leaving a node, in declaration order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[Edge]:
        """Get all edges entering a node, in declaration order."""
        return [e for e in self.edges if e.target == node_id]

    def get_predecessors(self, node_id: str) -> list[str]:
        """Distinct source node IDs feeding ``node_id``, in edge-declaration order."""
        seen: list[str] = []
        for edge in self.get_incoming_edges(node_id):
            if edge.source not in seen:
                seen.append(edge.source)
        return seen

    def get_successors(self, node_id: str) -> list[str]:
        """Distinct target node IDs fed by ``node_id``, in edge-declaration order."""
        seen: list[str] = []
        for edge in self.get_outgoing_edges(node_id):
            if edge.target not in seen:
                seen.append(edge.target)
        return seen

    def entry_nodes(self) -> list[str]:
        """Nodes with no incoming edges, in declaration order."""
        targets = {e.target for e in self.edges}
        return [n.id for n in self.nodes if n.id not in targets]

    def has_dynamic_nodes(self) -> bool:
        """True if any node needs the dynamic scheduler (loop or parallel)."""
        return any(n.kind in (LOOP_KIND, PARALLEL_KIND) for n in self.nodes)

    def validate(self) -> list[str]:
        """Validate the graph structure."""
        errors = []

        seen_nodes: set[str] = set()
        for node in self.nodes:
            if node.id in seen_nodes:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_nodes.add(node.id)

        seen_edges: set[str] = set()
        for edge in self.edges:
            if edge.id in seen_edges:
                errors.append(f"Duplicate edge ID: '{edge.id}'")
            seen_edges.add(edge.id)

            if edge.source not in seen_nodes:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if edge.target not in seen_nodes:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")

        return errors

    def ensure_valid(self) -> None:
        """Raise GraphValidationError if validate() reports any problem."""
        errors = self.validate()
        if errors:
            raise GraphValidationError(errors)
