"""
Basic executors: input, pass-through, condition, delay, template, math.

Each one reads only its node's config and resolved input.
"""

import asyncio
import json
import logging
import math
import re
from typing import Any

from flowgraph.graph.errors import ExecutorError
from flowgraph.graph.node import ExecutorOutput, NodeContext
from flowgraph.graph.safe_eval import safe_eval

logger = logging.getLogger(__name__)

_INPUT_PLACEHOLDER = re.compile(r"\{\{\s*input\s*\}\}", re.IGNORECASE)
_STATE_PLACEHOLDER = re.compile(r"\{\{\s*state\.(\w+)\s*\}\}")
_VARIABLE_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def substitute_input(text: str, node_input: str) -> str:
    """Replace ``{{input}}`` (any case) with the node input."""
    return _INPUT_PLACEHOLDER.sub(lambda _: node_input, text)


class InputExecutor:
    """Emits the configured ``value`` (or the resolved input when no value is set)."""

    async def execute(self, ctx: NodeContext) -> ExecutorOutput:
        value = ctx.config.get("value")
        if value is None:
            value = ctx.config.get("text")
        return ExecutorOutput(output=str(value) if value is not None else ctx.input)


class PassThroughExecutor:
    """Output and note nodes: hand the input on unchanged."""

    async def execute(self, ctx: NodeContext) -> ExecutorOutput:
        return ExecutorOutput(output=ctx.input)


def evaluate_condition(config: dict[str, Any], node_input: str) -> bool:
    """
    Evaluate a condition node's test against its input.

    ``conditionType`` is one of contains, equals, greater, less, regex,
    empty, not-empty. Text comparisons ignore case unless
    ``caseSensitive`` is set. Unknown types are false.
    """
    condition_type = config.get("conditionType", "contains")
    value = str(config.get("conditionValue") or "")
    case_sensitive = bool(config.get("caseSensitive", False))

    compare_input = node_input if case_sensitive else node_input.lower()
    compare_value = value if case_sensitive else value.lower()

    if condition_type == "contains":
        return compare_value in compare_input
    if condition_type == "equals":
        return compare_input == compare_value
    if condition_type in ("greater", "less"):
        try:
            left = float(node_input.strip())
            right = float(value.strip())
        except ValueError:
            return False
        return left > right if condition_type == "greater" else left < right
    if condition_type == "regex":
        try:
            return re.search(value, node_input) is not None
        except re.error as e:
            logger.warning(f"Invalid condition regex '{value}': {e}")
            return False
    if condition_type == "empty":
        return not node_input.strip()
    if condition_type == "not-empty":
        return bool(node_input.strip())

    logger.warning(f"Unknown condition type '{condition_type}'")
    return False


class ConditionExecutor:
    async def execute(self, ctx: NodeContext) -> ExecutorOutput:
        result = evaluate_condition(ctx.config, ctx.input)
        return ExecutorOutput(output="true" if result else "false", branch=result)


class DelayExecutor:
    """Sleeps ``delayMs`` milliseconds on the event loop, then passes the input on."""

    async def execute(self, ctx: NodeContext) -> ExecutorOutput:
        raw = ctx.config.get("delayMs", ctx.config.get("delay", 1000))
        try:
            delay_ms = max(0, int(raw))
        except (TypeError, ValueError) as e:
            raise ExecutorError(f"Invalid delayMs: {raw!r}", node_id=ctx.node.id) from e
        await asyncio.sleep(delay_ms / 1000)
        return ExecutorOutput(output=ctx.input)


class TemplateExecutor:
    """
    Fill ``template`` with ``{{input}}``, ``{{state.key}}`` and, when the
    input is a JSON object, ``{{field}}`` placeholders. Unknown
    placeholders are left as they are.
    """

    async def execute(self, ctx: NodeContext) -> ExecutorOutput:
        template = str(ctx.config.get("template") or "")
        text = substitute_input(template, ctx.input)
        text = _STATE_PLACEHOLDER.sub(
            lambda m: _to_text(ctx.shared_state.read(m.group(1), m.group(0))), text
        )

        fields = _json_object(ctx.input)
        for variable in ctx.config.get("variables") or []:
            key = variable.get("key")
            if key and key not in fields:
                fields[key] = variable.get("value", "")
        if fields:
            text = _VARIABLE_PLACEHOLDER.sub(
                lambda m: _to_text(fields[m.group(1)]) if m.group(1) in fields else m.group(0),
                text,
            )
        return ExecutorOutput(output=text)


class MathExecutor:
    """
    Arithmetic over the input.

    Either ``expression`` (evaluated safely, ``input`` bound to the input as
    a number) or ``operation`` with ``value1``/``value2`` operands, both of
    which may contain ``{{input}}``. Results are rounded to ``decimals``.
    """

    async def execute(self, ctx: NodeContext) -> ExecutorOutput:
        config = ctx.config
        decimals = int(config.get("decimals", 2))
        expression = config.get("expression")

        if expression:
            number = _parse_number(ctx.input)
            try:
                result = safe_eval(
                    substitute_input(expression, str(number)), {"input": number, "x": number}
                )
            except (ValueError, TypeError, ZeroDivisionError) as e:
                raise ExecutorError(f"Invalid expression: {e}", node_id=ctx.node.id) from e
            if not isinstance(result, int | float):
                raise ExecutorError(
                    f"Expression did not produce a number: {result!r}", node_id=ctx.node.id
                )
            return ExecutorOutput(output=_format_number(float(result), decimals))

        operation = config.get("operation", "add")
        value1 = _parse_number(substitute_input(str(config.get("value1") or ""), ctx.input))
        value2 = _parse_number(substitute_input(str(config.get("value2") or ""), ctx.input))
        scale = 10**decimals

        if operation == "add":
            result = value1 + value2
        elif operation == "subtract":
            result = value1 - value2
        elif operation == "multiply":
            result = value1 * value2
        elif operation == "divide":
            if value2 == 0:
                raise ExecutorError("Division by zero", node_id=ctx.node.id)
            result = value1 / value2
        elif operation == "percent":
            result = value1 * (value2 / 100)
        elif operation == "round":
            result = round(value1 * scale) / scale
        elif operation == "floor":
            result = math.floor(value1 * scale) / scale
        elif operation == "ceil":
            result = math.ceil(value1 * scale) / scale
        elif operation == "abs":
            result = abs(value1)
        else:
            result = value1
        return ExecutorOutput(output=_format_number(result, decimals))


def _parse_number(text: str) -> float:
    try:
        return float(text.strip())
    except ValueError:
        return 0.0


def _format_number(value: float, decimals: int) -> str:
    rounded = round(value, decimals)
    if rounded == int(rounded):
        return str(int(rounded))
    return str(rounded)


def _json_object(text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
