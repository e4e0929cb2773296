"""Tests for log formatting and trace context propagation."""

import asyncio
import json
import logging

import pytest

from flowgraph.observability import clear_trace_context, get_trace_context, set_trace_context
from flowgraph.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    strip_ansi_codes,
)


@pytest.fixture(autouse=True)
def fresh_context():
    clear_trace_context()
    yield
    clear_trace_context()


def make_record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("flowgraph.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_structured_includes_context_and_extras(self):
        set_trace_context(run_id="exec_abc123", node_id="n1")

        entry = json.loads(
            StructuredFormatter().format(make_record("\033[32mdone\033[0m", latency_ms=12))
        )

        assert entry["message"] == "done"
        assert entry["level"] == "info"
        assert entry["run_id"] == "exec_abc123"
        assert entry["node_id"] == "n1"
        assert entry["latency_ms"] == 12

    def test_human_prefix(self):
        set_trace_context(run_id="exec_0123456789ab", node_id="n1")

        line = strip_ansi_codes(HumanReadableFormatter().format(make_record("hello", event="x")))

        assert line == "[INFO    ] [run:456789ab | node:n1] hello [x]"

    def test_human_without_context(self):
        line = strip_ansi_codes(HumanReadableFormatter().format(make_record("plain")))
        assert line == "[INFO    ] plain"


class TestTraceContext:
    def test_set_merges_fields(self):
        set_trace_context(run_id="r1")
        set_trace_context(node_id="n1")

        assert get_trace_context() == {"run_id": "r1", "node_id": "n1"}

    @pytest.mark.asyncio
    async def test_gathered_tasks_get_their_own_copy(self):
        set_trace_context(run_id="r1")

        async def branch(node_id: str) -> dict:
            set_trace_context(node_id=node_id)
            await asyncio.sleep(0)
            return get_trace_context()

        seen = await asyncio.gather(branch("a"), branch("b"))

        assert seen == [{"run_id": "r1", "node_id": "a"}, {"run_id": "r1", "node_id": "b"}]
        assert get_trace_context() == {"run_id": "r1"}
