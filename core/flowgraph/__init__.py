"""
flowgraph - Execute workflow graphs of typed processing nodes.

Quick start:
    from flowgraph import WorkflowExecutor
    from flowgraph.executors import default_registry

    executor = WorkflowExecutor(registry=default_registry())
    response = await executor.execute({"nodes": [...], "edges": [...]})
"""

from flowgraph.config import ConfigError, EngineConfig
from flowgraph.graph import (
    Edge,
    ExecutorError,
    ExecutorOutput,
    ExecutorRegistry,
    FlowgraphError,
    Graph,
    Node,
    NodeContext,
    NodeResult,
    NodeStatus,
    WorkflowExecutor,
)
from flowgraph.runtime import EventBus, EventType, SharedState
from flowgraph.schemas import RunRequest, RunResponse, RunStatus

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "EngineConfig",
    "Edge",
    "ExecutorError",
    "ExecutorOutput",
    "ExecutorRegistry",
    "FlowgraphError",
    "Graph",
    "Node",
    "NodeContext",
    "NodeResult",
    "NodeStatus",
    "WorkflowExecutor",
    "EventBus",
    "EventType",
    "SharedState",
    "RunRequest",
    "RunResponse",
    "RunStatus",
]
