"""Turns agent loop callbacks into a server-sent event byte stream."""

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

from pydantic import BaseModel

from copilot.models.agent import AgentConfig, ToolContext, ToolResult
from copilot.models.events import (
    DoneEvent,
    ErrorEvent,
    TextEvent,
    ToolResultEvent,
    ToolResultPayload,
    ToolStartEvent,
    ToolStartPayload,
)
from copilot.services.agent import AgentLoop
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def encode_event(event: BaseModel) -> bytes:
    """Frame one event as ``data: <json>`` followed by a blank line."""
    return f"data: {event.model_dump_json()}\n\n".encode()


class SSEEventEmitter:
    """Agent callbacks that queue events for a single consumer.

    Everything after ``done`` is discarded, so ``done`` is always the last event.
    """

    def __init__(self):
        self.queue: asyncio.Queue[BaseModel] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _emit(self, event: BaseModel) -> None:
        if self._closed:
            logger.debug(f"Dropping {event.type} event emitted after done")
            return
        self.queue.put_nowait(event)

    async def on_text(self, text: str) -> None:
        self._emit(TextEvent(content=text))

    async def on_tool_start(self, name: str, tool_input: dict[str, Any]) -> None:
        self._emit(ToolStartEvent(tool=ToolStartPayload(name=name, input=tool_input)))

    async def on_tool_result(self, name: str, result: ToolResult) -> None:
        self._emit(ToolResultEvent(tool=ToolResultPayload(name=name, result=result)))

    async def on_error(self, error: str) -> None:
        self._emit(ErrorEvent(error=error))

    async def on_done(self) -> None:
        self._emit(DoneEvent())
        self._closed = True


async def _run_until_done(
    loop: AgentLoop,
    emitter: SSEEventEmitter,
    user_message: str,
    history: Sequence[Any] | None,
    context: ToolContext,
    agent_config: AgentConfig,
) -> None:
    try:
        await loop.run(user_message, history, context, agent_config, emitter)
    except Exception as e:
        # Only reachable if a callback itself failed; the stream still has to end with done.
        logger.error(f"Copilot run aborted: {e}", exc_info=True)
        await emitter.on_error(str(e) or "Copilot run failed")
        await emitter.on_done()


async def stream_agent_events(
    loop: AgentLoop,
    user_message: str,
    history: Sequence[Any] | None,
    context: ToolContext,
    agent_config: AgentConfig,
) -> AsyncIterator[bytes]:
    """Run the loop in its own task and yield its events as SSE frames.

    Closing the generator before ``done`` cancels the run.
    """
    emitter = SSEEventEmitter()
    task = asyncio.create_task(_run_until_done(loop, emitter, user_message, history, context, agent_config))
    try:
        while True:
            event = await emitter.queue.get()
            yield encode_event(event)
            if isinstance(event, DoneEvent):
                break
        await task
    finally:
        if not task.done():
            logger.info("Event stream closed before done, cancelling copilot run")
            task.cancel()
