"""
State executor - Reads and writes the run's shared state.

Config:
    operation: init | get | set | update
    variables: [{"key": ..., "value": ..., "type": "string|number|boolean|json"}]

A value of ``{{input}}`` is replaced with the node input. ``update``
appends to lists, concatenates strings and overwrites anything else.
"""

import json
from typing import Any

from flowgraph.graph.errors import ExecutorError
from flowgraph.graph.node import ExecutorOutput, NodeContext

INPUT_VALUE = "{{input}}"


def _typed_value(variable: dict[str, Any]) -> Any:
    raw = variable.get("value", "")
    kind = variable.get("type", "string")
    if kind == "number":
        try:
            return float(raw)
        except (TypeError, ValueError):
            return 0
    if kind == "boolean":
        return str(raw).lower() == "true"
    if kind == "json":
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return {}
    return raw


class StateExecutor:
    async def execute(self, ctx: NodeContext) -> ExecutorOutput:
        operation = ctx.config.get("operation", "init")
        variables = [v for v in ctx.config.get("variables") or [] if v.get("key")]
        state = ctx.shared_state
        node_id = ctx.node.id

        if operation == "init":
            await state.update({v["key"]: _typed_value(v) for v in variables}, node_id=node_id)
            payload = {"__state__": "initialized", "variables": sorted(state.read_all())}
        elif operation == "get":
            payload = {v["key"]: state.read(v["key"]) for v in variables}
        elif operation == "set":
            await state.update(
                {v["key"]: self._resolve(v, ctx.input) for v in variables}, node_id=node_id
            )
            payload = {"__state__": "updated", "state": state.read_all()}
        elif operation == "update":
            # Read and write under one lock in synchronized mode
            async with state.transaction():
                updates = {}
                for variable in variables:
                    current = state.read(variable["key"])
                    value = self._resolve(variable, ctx.input)
                    if isinstance(current, list):
                        updates[variable["key"]] = [*current, value]
                    elif isinstance(current, str):
                        updates[variable["key"]] = current + str(value)
                    else:
                        updates[variable["key"]] = value
                await state.update(updates, node_id=node_id)
                payload = {"__state__": "updated", "state": state.read_all()}
        else:
            raise ExecutorError(f"Unknown state operation '{operation}'", node_id=node_id)

        return ExecutorOutput(output=json.dumps(payload, ensure_ascii=False, default=str))

    @staticmethod
    def _resolve(variable: dict[str, Any], node_input: str) -> Any:
        if variable.get("value") == INPUT_VALUE:
            return node_input
        return _typed_value(variable)
