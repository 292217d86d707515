"""Tests for server-sent event framing and the event stream."""

import asyncio
import json

import pytest
from fakes import FakeCompletionClient, FakeModelClient, ScriptedTurn, text_turn, tool_turn
from pydantic import BaseModel

from copilot.models.agent import AgentConfig, ToolContext, ToolResult
from copilot.models.events import DoneEvent, TextEvent, ToolResultEvent, ToolResultPayload
from copilot.services.agent import AgentLoop, AgentLoopConfig
from copilot.services.store import InMemorySupportStore
from copilot.services.stream import SSEEventEmitter, encode_event, stream_agent_events
from copilot.tools.base import ToolDefinition
from copilot.tools.registry import ToolsRegistry


class NoInput(BaseModel):
    """Input schema for test tools without parameters."""


@pytest.fixture
def context():
    """Create a tool context over fresh demo data."""
    return ToolContext(store=InMemorySupportStore(), operator_id="agent-7")


def make_loop(client: FakeModelClient) -> AgentLoop:
    config = AgentLoopConfig(max_iterations=5, stream_timeout=5.0, tool_timeout=5.0)
    return AgentLoop(client, ToolsRegistry(FakeCompletionClient()), config)


def decode(frames: list[bytes]) -> list[dict]:
    events = []
    for frame in frames:
        text = frame.decode()
        assert text.startswith("data: ")
        assert text.endswith("\n\n")
        events.append(json.loads(text[len("data: ") : -2]))
    return events


async def collect(agen) -> list[bytes]:
    return [frame async for frame in agen]


class TestEncoding:
    """Tests for SSE framing."""

    def test_text_event_frame(self):
        """Test the data line and blank line terminator."""
        assert encode_event(TextEvent(content="Hi")) == b'data: {"type":"text","content":"Hi"}\n\n'

    def test_done_event_frame(self):
        """Test that done carries only its type."""
        assert encode_event(DoneEvent()) == b'data: {"type":"done"}\n\n'

    def test_tool_result_omits_absent_fields(self):
        """Test that successful results carry no error field."""
        event = ToolResultEvent(tool=ToolResultPayload(name="lookup_customer", result=ToolResult.ok({"id": "CUS_001"})))

        payload = json.loads(encode_event(event).decode()[len("data: ") :])

        assert payload == {
            "type": "tool_result",
            "tool": {"name": "lookup_customer", "result": {"success": True, "data": {"id": "CUS_001"}}},
        }


class TestEmitter:
    """Tests for the callback-to-queue emitter."""

    @pytest.mark.asyncio
    async def test_events_queued_in_order(self):
        """Test that callbacks enqueue typed events."""
        emitter = SSEEventEmitter()

        await emitter.on_tool_start("search_tickets", {"status": "open"})
        await emitter.on_tool_result("search_tickets", ToolResult.fail("boom"))
        await emitter.on_error("Max iterations reached")
        await emitter.on_done()

        types = [emitter.queue.get_nowait().type for _ in range(emitter.queue.qsize())]
        assert types == ["tool_start", "tool_result", "error", "done"]

    @pytest.mark.asyncio
    async def test_events_after_done_are_dropped(self):
        """Test that done is always the last event."""
        emitter = SSEEventEmitter()

        await emitter.on_done()
        await emitter.on_text("late")
        await emitter.on_done()

        assert emitter.closed
        assert emitter.queue.qsize() == 1
        assert isinstance(emitter.queue.get_nowait(), DoneEvent)


class TestStreamAgentEvents:
    """Tests for running the loop behind an event stream."""

    @pytest.mark.asyncio
    async def test_text_run(self, context):
        """Test that a plain answer streams text then done."""
        loop = make_loop(FakeModelClient([text_turn("All set.")]))

        events = decode(await collect(stream_agent_events(loop, "Hi", None, context, AgentConfig())))

        assert events == [{"type": "text", "content": "All set."}, {"type": "done"}]

    @pytest.mark.asyncio
    async def test_tool_run(self, context):
        """Test that tool events precede the final answer."""
        client = FakeModelClient(
            [tool_turn(("toolu_1", "lookup_customer", {"customer_id": "CUS_001"})), text_turn("Maria is on Business.")]
        )

        events = decode(await collect(stream_agent_events(make_loop(client), "Who?", None, context, AgentConfig())))

        assert [e["type"] for e in events] == ["tool_start", "tool_result", "text", "done"]
        assert events[0]["tool"] == {"name": "lookup_customer", "input": {"customer_id": "CUS_001"}}
        assert events[1]["tool"]["result"]["data"]["name"] == "Maria Garcia"

    @pytest.mark.asyncio
    async def test_unserializable_tool_result_keeps_stream_going(self, context):
        """Test that a tool returning data JSON cannot encode is reported as a failed result."""

        async def opaque(params, ctx):
            return ToolResult.ok({"blob": object()})

        loop = make_loop(FakeModelClient([tool_turn(("toolu_1", "opaque", {})), text_turn("Done.")]))
        loop.registry.register_tool(
            ToolDefinition(name="opaque", description="", input_schema_class=NoInput, handler=opaque)
        )

        events = decode(await collect(stream_agent_events(loop, "Go", None, context, AgentConfig())))

        assert [e["type"] for e in events] == ["tool_start", "tool_result", "text", "done"]
        assert events[1]["tool"]["result"] == {
            "success": False,
            "error": "Tool opaque returned data that could not be serialized",
        }

    @pytest.mark.asyncio
    async def test_failed_run_ends_with_error_then_done(self, context):
        """Test that loop faults surface as error followed by done."""
        client = FakeModelClient([ScriptedTurn(open_error=ConnectionError("upstream reset"))])

        events = decode(await collect(stream_agent_events(make_loop(client), "Hi", None, context, AgentConfig())))

        assert events == [{"type": "error", "error": "upstream reset"}, {"type": "done"}]

    @pytest.mark.asyncio
    async def test_callback_failure_still_ends_with_done(self, context):
        """Test that an exception escaping the run is reported before done."""

        class ExplodingLoop:
            async def run(self, *args, **kwargs):
                raise RuntimeError("emitter exploded")

        events = decode(await collect(stream_agent_events(ExplodingLoop(), "Hi", None, context, AgentConfig())))

        assert events == [{"type": "error", "error": "emitter exploded"}, {"type": "done"}]

    @pytest.mark.asyncio
    async def test_closing_stream_cancels_run(self, context):
        """Test that a disconnecting consumer cancels the in-flight model turn."""
        client = FakeModelClient(
            [
                tool_turn(("toolu_1", "search_tickets", {})),
                ScriptedTurn(events=[], delay=5.0),
            ]
        )
        agen = stream_agent_events(make_loop(client), "Hi", None, context, AgentConfig())

        first = await agen.__anext__()
        for _ in range(100):
            if client.call_count == 2:
                break
            await asyncio.sleep(0.01)
        await agen.aclose()
        await asyncio.sleep(0.05)

        assert decode([first])[0]["type"] == "tool_start"
        assert client.call_count == 2
        assert client.opened[1].exited
