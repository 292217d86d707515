"""Agent loop: streams model turns, runs requested tools, and reports progress through callbacks."""

import asyncio
import os
from collections.abc import AsyncIterator, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Protocol

from copilot.clients.anthropic import get_anthropic_client
from copilot.errors import MaxIterationsExceededError, ModelStreamTimeoutError, ProtocolError
from copilot.models.agent import AgentConfig, ToolContext, ToolResult
from copilot.models.llm import (
    AgentLoopResult,
    ContentBlock,
    LLMMessage,
    LLMResponse,
    LLMToolDefinition,
    LLMUsage,
    LoopOutcome,
    StopReasonDelta,
    StreamEvent,
    TextBlock,
    TextDelta,
    ToolResultBlock,
    ToolUseBlock,
    ToolUseStart,
)
from copilot.services.normalizer import normalize_history
from copilot.services.prompts import build_system_prompt
from copilot.tools.registry import ToolsRegistry, get_tools_registry
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

COMPLETED_STOP_REASONS = ("end_turn", "stop_sequence")


def _env_timeout(name: str, default: float) -> float | None:
    value = os.getenv(name)
    if not value:
        return default
    seconds = float(value)
    # Zero or negative disables the bound.
    return seconds if seconds > 0 else None


@dataclass
class AgentLoopConfig:
    """Limits applied to a single copilot run."""

    max_iterations: int = field(default_factory=lambda: int(os.getenv("COPILOT_MAX_ITERATIONS") or 10))
    # Seconds per model turn / per tool call; None disables the bound.
    stream_timeout: float | None = field(default_factory=lambda: _env_timeout("COPILOT_STREAM_TIMEOUT", 120.0))
    tool_timeout: float | None = field(default_factory=lambda: _env_timeout("COPILOT_TOOL_TIMEOUT", 30.0))
    max_tokens: int = 4096


class AgentCallbacks(Protocol):
    """Receives run progress as it happens."""

    async def on_text(self, text: str) -> None: ...

    async def on_tool_start(self, name: str, tool_input: dict[str, Any]) -> None: ...

    async def on_tool_result(self, name: str, result: ToolResult) -> None: ...

    async def on_error(self, error: str) -> None: ...

    async def on_done(self) -> None: ...


class ModelTurn(Protocol):
    """An open streaming turn: iterate for live events, then read the final message."""

    def __aiter__(self) -> AsyncIterator[StreamEvent]: ...

    async def get_final_message(self) -> LLMResponse: ...


class ModelClient(Protocol):
    """Backend able to stream one model turn."""

    def stream_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition] | None = None,
        **kwargs,
    ) -> AbstractAsyncContextManager[ModelTurn]: ...

    def validate_message_tokens(self, message: str) -> None:
        """Raise ValueError when a single message is too long to send."""
        ...


@dataclass
class _RunState:
    messages: list[LLMMessage]
    usage: LLMUsage = field(default_factory=LLMUsage)
    turns: int = 0
    stop_reason: str | None = None


class AgentLoop:
    """Drives the model/tool cycle for one operator message at a time.

    A loop instance holds no per-run state and may serve concurrent runs.
    """

    def __init__(self, client: ModelClient, registry: ToolsRegistry, config: AgentLoopConfig | None = None):
        self.client = client
        self.registry = registry
        self.config = config or AgentLoopConfig()
        self._detached_tools: set[asyncio.Task] = set()

    async def run(
        self,
        user_message: str,
        history: Sequence[Any] | None,
        context: ToolContext,
        agent_config: AgentConfig,
        callbacks: AgentCallbacks,
    ) -> AgentLoopResult:
        """Run the loop until the model stops, a fault occurs, or the iteration ceiling is hit.

        Args:
            user_message: The operator's new message
            history: Prior conversation in any shape; malformed entries are dropped
            context: Capabilities handed to every tool call
            agent_config: Values substituted into the system prompt
            callbacks: Progress sink; ``on_done`` is called exactly once unless the run is cancelled

        Returns:
            Outcome, working history, turn count and token usage for the run
        """
        state = _RunState(messages=[*normalize_history(history), LLMMessage(role="user", content=user_message)])
        system_prompt = build_system_prompt(agent_config)
        tools = self.registry.get_tool_declarations()

        logger.info(
            f"Starting agent loop with {len(state.messages)} messages, {len(tools)} tools, "
            f"max_iterations: {self.config.max_iterations}"
        )

        outcome: LoopOutcome = "completed"
        error: str | None = None
        try:
            await self._iterate(state, system_prompt, tools, context, callbacks)
        except ModelStreamTimeoutError as e:
            logger.warning(str(e))
            outcome, error = "timeout", str(e)
        except ProtocolError as e:
            logger.error(f"Protocol fault on turn {state.turns}: {e}")
            outcome, error = "protocol_error", str(e)
        except MaxIterationsExceededError as e:
            logger.warning(f"Agent loop reached max iterations ({self.config.max_iterations})")
            outcome, error = "max_iterations", str(e)
        except Exception as e:
            logger.error(f"Agent loop failed on turn {state.turns}: {e}", exc_info=True)
            outcome, error = "error", _describe(e)

        if error is not None:
            await callbacks.on_error(error)
        await callbacks.on_done()

        logger.info(
            f"Agent loop finished ({outcome}) in {state.turns} turns - "
            f"input tokens: {state.usage.input_tokens}, output tokens: {state.usage.output_tokens}"
        )
        return AgentLoopResult(
            outcome=outcome,
            stop_reason=state.stop_reason,
            messages=state.messages,
            turns=state.turns,
            usage=state.usage,
            error=error,
        )

    async def _iterate(
        self,
        state: _RunState,
        system_prompt: str,
        tools: list[LLMToolDefinition],
        context: ToolContext,
        callbacks: AgentCallbacks,
    ) -> None:
        while state.turns < self.config.max_iterations:
            state.turns += 1
            logger.debug(f"Agent loop turn {state.turns}/{self.config.max_iterations}")

            text, response, stop_reason = await self._stream_turn(state.messages, system_prompt, tools, callbacks)
            state.usage.add(response.usage)
            state.stop_reason = stop_reason

            tool_uses = response.tool_uses
            content: list[ContentBlock] = []
            if text:
                content.append(TextBlock(text=text))
            content.extend(tool_uses)
            if content:
                state.messages.append(LLMMessage(role="assistant", content=content))

            if stop_reason in COMPLETED_STOP_REASONS:
                return
            if stop_reason is None:
                raise ProtocolError()
            if stop_reason != "tool_use" or not tool_uses:
                logger.info(f"Turn ended with stop reason {stop_reason}, finishing run")
                return

            logger.info(f"Model requested {len(tool_uses)} tool(s): {', '.join(t.name for t in tool_uses)}")
            results = await self._execute_tools(tool_uses, context, callbacks)
            state.messages.append(LLMMessage(role="user", content=results))

        raise MaxIterationsExceededError(self.config.max_iterations)

    async def _stream_turn(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition],
        callbacks: AgentCallbacks,
    ) -> tuple[str, LLMResponse, str | None]:
        """Stream one turn, forwarding text as it arrives.

        Returns the buffered text, the final message, and the stop reason.
        """
        chunks: list[str] = []
        streamed_stop_reason: str | None = None

        # Opening the turn may wait on the rate limiter; the deadline starts once it is open.
        async with self.client.stream_message(
            messages, system_prompt, tools, max_tokens=self.config.max_tokens
        ) as turn:
            try:
                async with asyncio.timeout(self.config.stream_timeout) as deadline:
                    async for event in turn:
                        if isinstance(event, TextDelta):
                            chunks.append(event.text)
                            await callbacks.on_text(event.text)
                        elif isinstance(event, ToolUseStart):
                            logger.debug(f"Tool use started: {event.name} ({event.id})")
                        elif isinstance(event, StopReasonDelta):
                            streamed_stop_reason = event.stop_reason

                    response = await turn.get_final_message()
            except TimeoutError as e:
                if not deadline.expired():
                    raise
                raise ModelStreamTimeoutError(self.config.stream_timeout) from e

        return "".join(chunks), response, streamed_stop_reason or response.stop_reason

    async def _execute_tools(
        self, tool_uses: list[ToolUseBlock], context: ToolContext, callbacks: AgentCallbacks
    ) -> list[ContentBlock]:
        """Run tool calls one at a time, in the order the model emitted them."""
        results: list[ContentBlock] = []
        for tool_use in tool_uses:
            logger.debug(f"Executing tool: {tool_use.name} with input: {tool_use.input}")
            await callbacks.on_tool_start(tool_use.name, tool_use.input)

            result = await self._dispatch(tool_use, context)

            await callbacks.on_tool_result(tool_use.name, result)
            results.append(
                ToolResultBlock(
                    tool_use_id=tool_use.id,
                    content=result.model_dump_json(),
                    is_error=not result.success,
                )
            )
        return results

    async def _dispatch(self, tool_use: ToolUseBlock, context: ToolContext) -> ToolResult:
        # A tool that has started always runs to completion, even if the run is cancelled.
        task = asyncio.create_task(
            self.registry.dispatch(tool_use.name, tool_use.input, context, timeout=self.config.tool_timeout)
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                logger.info(f"Run cancelled while {tool_use.name} was running; letting it finish")
                self._detached_tools.add(task)
                task.add_done_callback(self._detached_tool_finished(tool_use.name))
            raise

    def _detached_tool_finished(self, name: str):
        def callback(task: asyncio.Task) -> None:
            self._detached_tools.discard(task)
            if task.cancelled():
                logger.warning(f"Detached tool {name} was cancelled")
            elif task.exception() is not None:
                logger.error(f"Detached tool {name} failed: {task.exception()}")
            else:
                logger.info(f"Detached tool {name} finished: success={task.result().success}")

        return callback


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


_agent_loop: AgentLoop | None = None


def get_agent_loop() -> AgentLoop:
    """Get or create the agent loop wired to the Anthropic client and default tools."""
    global _agent_loop
    if _agent_loop is None:
        client = get_anthropic_client()
        _agent_loop = AgentLoop(client, get_tools_registry(client))
    return _agent_loop
