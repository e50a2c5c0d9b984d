"""Tests for EventPublisher - async event distribution."""

import asyncio
from typing import List

import pytest

from taskpilot.core.events import AgentEvent, DoneEvent, EventType, MessageEvent, ToolStartEvent
from taskpilot.core.streaming import EventPublisher


def _message(run_id: str, text: str) -> MessageEvent:
    return MessageEvent(run_id=run_id, text=text)


class TestEventPublisher:
    """Tests for EventPublisher class."""

    @pytest.mark.asyncio
    async def test_events_reach_subscriber_in_order(self):
        publisher = EventPublisher()
        stream = publisher.subscribe("run-1")

        for i in range(3):
            publisher.publish("run-1", _message("run-1", f"m{i}"))
        publisher.complete_run("run-1")

        received = [event.text async for event in stream]
        assert received == ["m0", "m1", "m2"]

    @pytest.mark.asyncio
    async def test_multiple_subscribers_each_get_every_event(self):
        publisher = EventPublisher()
        first = publisher.subscribe("run-1")
        second = publisher.subscribe("run-1")
        assert publisher.subscriber_count("run-1") == 2

        publisher.publish("run-1", _message("run-1", "hello"))
        publisher.complete_run("run-1")

        assert [e.text async for e in first] == ["hello"]
        assert [e.text async for e in second] == ["hello"]

    @pytest.mark.asyncio
    async def test_runs_are_isolated(self):
        publisher = EventPublisher()
        stream = publisher.subscribe("run-a")

        publisher.publish("run-b", _message("run-b", "other"))
        publisher.publish("run-a", _message("run-a", "mine"))
        publisher.complete_run("run-a")

        assert [e.text async for e in stream] == ["mine"]

    def test_publish_without_subscribers_is_noop(self):
        publisher = EventPublisher()
        publisher.publish("nobody", _message("nobody", "x"))
        assert publisher.subscriber_count("nobody") == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_events_but_delivers_end(self):
        """A slow subscriber loses events instead of blocking the publisher."""
        publisher = EventPublisher(max_queue_size=2)
        stream = publisher.subscribe("run-1")

        for i in range(5):
            publisher.publish("run-1", _message("run-1", f"m{i}"))
        publisher.complete_run("run-1")

        received = [e.text async for e in stream]
        # The oldest buffered event made room for the end marker
        assert received == ["m1"]

    @pytest.mark.asyncio
    async def test_live_consumer(self):
        publisher = EventPublisher()
        received: List[AgentEvent] = []

        async def consume():
            async for event in publisher.subscribe("run-1"):
                received.append(event)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        publisher.publish(
            "run-1", ToolStartEvent(run_id="run-1", tool="read_file", tool_call_id="c", input_summary="a")
        )
        publisher.publish("run-1", DoneEvent(run_id="run-1", terminal_reason="completed"))
        publisher.complete_run("run-1")
        await asyncio.wait_for(consumer, timeout=1)

        assert [e.type for e in received] == [EventType.TOOL_START, EventType.DONE]
        assert publisher.subscriber_count("run-1") == 0


class TestEventWireFormat:
    def test_camel_case(self):
        event = ToolStartEvent(run_id="r", tool="read_file", tool_call_id="c1", input_summary="a.txt")
        wire = event.to_wire()
        assert wire["type"] == "tool_start"
        assert wire["runId"] == "r"
        assert wire["toolCallId"] == "c1"
        assert wire["inputSummary"] == "a.txt"
        assert isinstance(wire["timestamp"], str)
