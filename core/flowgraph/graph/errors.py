"""Exceptions raised by the workflow engine."""


class FlowgraphError(Exception):
    """Base class for engine errors."""


class ExecutorError(FlowgraphError):
    """A node executor call failed (network failure, invalid config, upstream rejection)."""

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id

    def __str__(self) -> str:
        return self.message


class CycleDetectedError(FlowgraphError):
    """Raised by strict topological ordering when nodes can never be scheduled."""

    def __init__(self, node_ids: list[str]):
        super().__init__(f"Cycle detected; unschedulable nodes: {node_ids}")
        self.node_ids = node_ids


class GraphValidationError(FlowgraphError):
    """The supplied graph is structurally invalid."""

    def __init__(self, errors: list[str]):
        super().__init__(f"Invalid graph: {errors}")
        self.errors = errors


class ExecutionLimitError(FlowgraphError):
    """The run dispatched more tasks than ``max_executions`` allows."""

    def __init__(self, limit: int):
        super().__init__(f"Maximum execution count reached ({limit}); possible infinite loop")
        self.limit = limit


class RunCancelledError(FlowgraphError):
    """The run was cancelled while in progress."""
