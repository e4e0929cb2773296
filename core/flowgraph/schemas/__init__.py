from flowgraph.schemas.run import ExecutionMode, RunRequest, RunResponse, RunStatus

__all__ = ["ExecutionMode", "RunRequest", "RunResponse", "RunStatus"]
