"""
Reference node executors.

These cover the node kinds needed to run graphs from the CLI and in
tests. Model-calling kinds ("llm" and friends) are registered by the
embedding application.
"""

from flowgraph.executors.api import ApiExecutor
from flowgraph.executors.basic import (
    ConditionExecutor,
    DelayExecutor,
    InputExecutor,
    MathExecutor,
    PassThroughExecutor,
    TemplateExecutor,
    evaluate_condition,
)
from flowgraph.executors.state import StateExecutor
from flowgraph.graph.node import ExecutorRegistry


def default_registry() -> ExecutorRegistry:
    """Registry with every reference executor."""
    registry = ExecutorRegistry()
    registry.register("input", InputExecutor())
    registry.register("output", PassThroughExecutor())
    registry.register("note", PassThroughExecutor())
    registry.register("condition", ConditionExecutor())
    registry.register("delay", DelayExecutor())
    registry.register("wait", DelayExecutor())
    registry.register("state", StateExecutor())
    registry.register("template", TemplateExecutor())
    registry.register("math", MathExecutor())
    registry.register("api", ApiExecutor())
    return registry


__all__ = [
    "ApiExecutor",
    "ConditionExecutor",
    "DelayExecutor",
    "InputExecutor",
    "MathExecutor",
    "PassThroughExecutor",
    "StateExecutor",
    "TemplateExecutor",
    "default_registry",
    "evaluate_condition",
]
