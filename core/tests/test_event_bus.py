"""Tests for the run lifecycle event bus."""

import pytest

from flowgraph.graph.executor import WorkflowExecutor
from flowgraph.graph.model import Graph
from flowgraph.graph.node import ExecutorRegistry
from flowgraph.runtime.event_bus import EventBus, EventType, RunEvent


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_filters(self):
        bus = EventBus()
        by_type, by_run, by_node = [], [], []

        def collect(target):
            async def handler(event):
                target.append(event)

            return handler

        bus.subscribe([EventType.NODE_FAILED], collect(by_type))
        bus.subscribe(list(EventType), collect(by_run), filter_run="r1")
        bus.subscribe(list(EventType), collect(by_node), filter_node="n1")

        await bus.emit_node_failed("r1", "n1", "boom")
        await bus.emit_node_completed("r2", "n1", 5)
        await bus.emit_node_started("r1", "n2", "echo")

        assert [e.type for e in by_type] == [EventType.NODE_FAILED]
        assert [e.node_id for e in by_run] == ["n1", "n2"]
        assert [e.run_id for e in by_node] == ["r1", "r2"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []

        async def handler(event):
            received.append(event)

        sub_id = bus.subscribe([EventType.RUN_STARTED], handler)
        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False

        await bus.emit_run_started("r1", 3, "static")
        assert received == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_publish(self):
        bus = EventBus()
        received = []

        async def broken(event):
            raise RuntimeError("handler bug")

        async def healthy(event):
            received.append(event)

        bus.subscribe([EventType.RUN_STARTED], broken)
        bus.subscribe([EventType.RUN_STARTED], healthy)

        await bus.emit_run_started("r1", 1, "static")

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_history_and_stats(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            await bus.emit_node_started("r1", f"n{i}", "echo")

        history = bus.get_history()
        assert [e.node_id for e in history] == ["n4", "n3", "n2"]
        assert bus.get_stats()["events_by_type"] == {"node_started": 3}

    def test_event_serialization(self):
        event = RunEvent(type=EventType.NODE_SKIPPED, run_id="r1", node_id="n1")
        data = event.to_dict()
        assert data["type"] == "node_skipped"
        assert data["node_id"] == "n1"
        assert "timestamp" in data


class TestControlFlowEvents:
    @pytest.mark.asyncio
    async def test_loop_and_parallel_events(self):
        registry = ExecutorRegistry()
        registry.register_function("echo", lambda ctx: ctx.input or "x")
        graph = Graph.model_validate(
            {
                "nodes": [
                    {"id": "loop", "type": "loop", "data": {"mode": "count", "maxIterations": 2}},
                    {"id": "body", "type": "echo"},
                    {"id": "par", "type": "parallel", "data": {"branchCount": 1}},
                    {"id": "b0", "type": "echo"},
                    {"id": "b1", "type": "echo"},
                ],
                "edges": [
                    {"id": "e1", "source": "loop", "target": "body"},
                    {"id": "e2", "source": "loop", "target": "par", "sourceHandle": "done"},
                    {"id": "e3", "source": "par", "target": "b0"},
                    {"id": "e4", "source": "par", "target": "b1"},
                ],
            }
        )
        bus = EventBus()

        response = await WorkflowExecutor(registry=registry, event_bus=bus).execute(graph)

        assert response.success
        iterations = bus.get_history(event_type=EventType.LOOP_ITERATION)
        assert sorted(e.data["iteration"] for e in iterations) == [0, 1]
        completed = bus.get_history(event_type=EventType.LOOP_COMPLETED)[0]
        assert completed.data == {"iterations": 2, "timed_out": False}
        parallel = bus.get_history(event_type=EventType.PARALLEL_COMPLETED)[0]
        assert parallel.data == {"succeeded": 1, "total": 1}
        skipped = bus.get_history(event_type=EventType.NODE_SKIPPED)
        assert [e.node_id for e in skipped] == ["b1"]
