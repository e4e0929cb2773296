"""Graph structures and the workflow executor."""

from flowgraph.graph.errors import (
    CycleDetectedError,
    ExecutionLimitError,
    ExecutorError,
    FlowgraphError,
    GraphValidationError,
    RunCancelledError,
)
from flowgraph.graph.model import Edge, Graph, Node
from flowgraph.graph.node import (
    ExecutorOutput,
    ExecutorRegistry,
    FunctionExecutor,
    NodeContext,
    NodeExecutor,
    NodeResult,
    NodeStatus,
    Usage,
)
from flowgraph.graph.ordering import find_unscheduled, topological_order
from flowgraph.graph.input_merger import InputEnvelope, InputMetadata, merge_inputs
from flowgraph.graph.executor import ExecutionTask, WorkflowExecutor

__all__ = [
    # Errors
    "FlowgraphError",
    "ExecutorError",
    "CycleDetectedError",
    "GraphValidationError",
    "ExecutionLimitError",
    "RunCancelledError",
    # Model
    "Node",
    "Edge",
    "Graph",
    # Node contract
    "NodeContext",
    "NodeExecutor",
    "NodeResult",
    "NodeStatus",
    "Usage",
    "ExecutorOutput",
    "ExecutorRegistry",
    "FunctionExecutor",
    # Ordering
    "topological_order",
    "find_unscheduled",
    # Input merging
    "merge_inputs",
    "InputEnvelope",
    "InputMetadata",
    # Executor
    "WorkflowExecutor",
    "ExecutionTask",
]
