"""Anthropic API client with streaming, rate limiting and error handling."""

import asyncio
import json
import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import tiktoken
from anthropic import APIError, APIStatusError, AsyncAnthropic
from anthropic.lib.streaming import AsyncMessageStream, AsyncMessageStreamManager
from anthropic.types import Message
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from copilot.errors import ModelStreamError
from copilot.models.llm import (
    LLMMessage,
    LLMResponse,
    LLMToolDefinition,
    LLMUsage,
    StopReasonDelta,
    StreamEvent,
    TextBlock,
    TextDelta,
    ToolUseBlock,
    ToolUseStart,
)
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

# Anthropic returns 529 when overloaded; treat it like a rate limit.
_RATE_LIMIT_STATUSES = (429, 529)


class CacheControl(BaseModel):
    """Cache control configuration for prompt caching."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] = "5m"


class AnthropicTool(BaseModel):
    """Tool definition for Anthropic API."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = field(default_factory=lambda: os.getenv("COPILOT_MODEL", "claude-sonnet-4-20250514"))
    max_tokens: int = 4096
    temperature: float = 0.2
    max_retries: int = 3
    retry_delay: float = 1.0

    # Token limits for validation and truncation
    max_message_tokens: int = 2000  # Maximum tokens per operator message
    max_conversation_tokens: int = 200000
    token_headroom: int = 4096  # Reserve tokens for response


class AnthropicRateLimiter:
    """Moving-window rate limiter shared by every client in the process."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within the request and token windows."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=max(1, estimated_tokens)):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")

    async def _wait_for_window(self, limit, identifier: str, kind: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            # reset_time is epoch seconds
            wait_time = max(0.0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{kind} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)


class AnthropicStreamTurn:
    """One streaming model turn.

    Iterating yields text deltas, tool use starts and the stop reason as they
    arrive. Tool input is only complete in ``get_final_message()``.
    """

    def __init__(self, manager: AsyncMessageStreamManager):
        self._manager = manager
        self._stream: AsyncMessageStream | None = None

    async def __aenter__(self) -> "AnthropicStreamTurn":
        self._stream = await self._manager.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._manager.__aexit__(exc_type, exc, tb)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[StreamEvent]:
        if self._stream is None:
            raise ModelStreamError("Stream consumed before it was opened")

        async for event in self._stream:
            if event.type == "content_block_delta" and event.delta.type == "text_delta":
                yield TextDelta(text=event.delta.text)
            elif event.type == "content_block_start" and event.content_block.type == "tool_use":
                yield ToolUseStart(id=event.content_block.id, name=event.content_block.name)
            elif event.type == "message_delta" and event.delta.stop_reason:
                yield StopReasonDelta(stop_reason=event.delta.stop_reason)

    async def get_final_message(self) -> LLMResponse:
        """Return the fully accumulated message for this turn."""
        if self._stream is None:
            raise ModelStreamError("Stream consumed before it was opened")
        message = await self._stream.get_final_message()
        return convert_message(message)


class AnthropicClient:
    """Low-level Anthropic API client with rate limiting and error handling."""

    tokenizer: tiktoken.Encoding | None = None
    client: AsyncAnthropic
    fallback_client: AsyncAnthropic | None = None
    config: AnthropicConfig
    rate_limiter: AnthropicRateLimiter = AnthropicRateLimiter()

    def __init__(
        self,
        api_key: str | None = None,
        config: AnthropicConfig | None = None,
        fallback_api_key: str | None = None,
    ):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
            fallback_api_key: Secondary key used when the primary is rate limited
                (defaults to ANTHROPIC_API_KEY_FALLBACK env var)
        """
        anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.client = AsyncAnthropic(api_key=anthropic_api_key)

        secondary_key = fallback_api_key or os.getenv("ANTHROPIC_API_KEY_FALLBACK")
        self.fallback_client = AsyncAnthropic(api_key=secondary_key) if secondary_key else None

        self.config = config or AnthropicConfig()

        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception:
            self.tokenizer = None

    def stream_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition] | None = None,
        **kwargs,
    ) -> "_RateLimitedStreamTurn":
        """Open a streaming turn.

        Use as ``async with client.stream_message(...) as turn``. Streams are
        never retried: a failure mid-turn surfaces to the caller.
        """
        truncated_messages = self.truncate_conversation(messages, system_prompt, tools)
        request_params = self._build_request(truncated_messages, system_prompt, tools, **kwargs)
        estimated_tokens = self._estimate_tokens(truncated_messages, system_prompt)

        logger.debug(
            f"Opening stream with {len(truncated_messages)} messages, {len(tools) if tools else 0} tools, "
            f"model: {request_params['model']}"
        )
        return _RateLimitedStreamTurn(self, request_params, estimated_tokens)

    async def create_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str | None = None,
        tools: list[LLMToolDefinition] | None = None,
        **kwargs,
    ) -> LLMResponse:
        """Create a message with Claude API.

        Args:
            messages: Conversation history
            system_prompt: System prompt for Claude
            tools: Available tools for Claude
            **kwargs: Additional parameters for Claude API

        Returns:
            Provider-agnostic response
        """
        truncated_messages = self.truncate_conversation(messages, system_prompt or "", tools)

        estimated_tokens = self._estimate_tokens(truncated_messages, system_prompt or "")
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        request_params = self._build_request(truncated_messages, system_prompt, tools, **kwargs)

        logger.debug(f"Making Anthropic API call with model: {request_params['model']}")
        response: Message = await self._request_with_retries(
            lambda client: client.messages.create(**request_params)
        )

        logger.debug(
            f"Response received - Stop reason: {response.stop_reason}, Content blocks: {len(response.content)}"
        )
        return convert_message(response)

    async def complete(self, prompt: str, max_tokens: int = 500) -> str:
        """Run a single-prompt completion and return its text."""
        response = await self.create_message(
            [LLMMessage(role="user", content=prompt)],
            max_tokens=max_tokens,
        )
        return response.text

    def _build_request(
        self,
        messages: list[LLMMessage],
        system_prompt: str | None,
        tools: list[LLMToolDefinition] | None,
        **kwargs,
    ) -> dict[str, Any]:
        request_params: dict[str, Any] = {
            "model": kwargs.get("model", self.config.model),
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
            "temperature": kwargs.get("temperature", self.config.temperature),
            "messages": [msg.model_dump() for msg in messages],
        }
        if system_prompt:
            request_params["system"] = system_prompt
        if tools:
            request_params["tools"] = [tool.model_dump(exclude_none=True) for tool in self._with_cache_control(tools)]
        return request_params

    def _with_cache_control(self, tools: list[LLMToolDefinition]) -> list[AnthropicTool]:
        """Mark the last tool so the whole catalog is prompt-cached."""
        last = len(tools) - 1
        return [
            AnthropicTool(
                name=tool.name,
                description=tool.description,
                input_schema=tool.input_schema,
                cache_control=CacheControl() if i == last else None,
            )
            for i, tool in enumerate(tools)
        ]

    async def _request_with_retries[T](self, call: Callable[[AsyncAnthropic], Awaitable[T]]) -> T:
        """Execute Anthropic API request with retry and key fallback."""
        client = self.client
        for attempt in range(self.config.max_retries):
            try:
                return await call(client)

            except APIStatusError as e:
                last_attempt = attempt >= self.config.max_retries - 1

                can_fall_back = self.fallback_client is not None and client is not self.fallback_client
                if e.status_code in _RATE_LIMIT_STATUSES and can_fall_back:
                    logger.warning(f"Primary key rejected with {e.status_code}, switching to fallback key")
                    client = self.fallback_client
                    continue

                if e.status_code == 429 and not last_attempt:
                    retry_after = int(e.response.headers.get("retry-after", 60))
                    if retry_after < 120:
                        await asyncio.sleep(retry_after)
                        continue

                elif e.status_code >= 500 and not last_attempt:
                    # Server error, retry with exponential backoff
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue

                raise

            except APIError:
                # Connection failures and timeouts carry no status code
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue
                raise

        raise ModelStreamError(f"Failed to complete request after {self.config.max_retries} attempts", retriable=True)

    def _estimate_tokens(self, messages: list[LLMMessage], system_prompt: str) -> int:
        """Estimate token count for rate limiting.

        Args:
            messages: Conversation messages
            system_prompt: System prompt

        Returns:
            Estimated token count
        """
        text_content = system_prompt + "".join(message_text(message) for message in messages)
        return self.estimate_message_tokens(text_content)

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a single message.

        Args:
            message: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Args:
            message: Message content

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )

    def truncate_conversation(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition] | None = None,
    ) -> list[LLMMessage]:
        """Truncate conversation from the beginning to fit within token limits.

        The kept window never starts with an assistant message or with tool
        results whose tool use was cut off.

        Args:
            messages: Conversation messages
            system_prompt: System prompt
            tools: Available tools

        Returns:
            Truncated message list that fits within limits
        """
        if not messages:
            return messages

        available_tokens = self.config.max_conversation_tokens - self.config.token_headroom

        system_tokens = self.estimate_message_tokens(system_prompt)

        tool_tokens = 0
        if tools:
            tool_content = "".join(tool.name + tool.description + json.dumps(tool.input_schema) for tool in tools)
            tool_tokens = self.estimate_message_tokens(tool_content)

        available_tokens -= system_tokens + tool_tokens

        truncated_messages: list[LLMMessage] = []
        current_tokens = 0

        for message in reversed(messages):
            message_tokens = self.estimate_message_tokens(message_text(message))

            if current_tokens + message_tokens <= available_tokens:
                truncated_messages.insert(0, message)
                current_tokens += message_tokens
            else:
                break

        if len(truncated_messages) < len(messages):
            while truncated_messages and (
                truncated_messages[0].role != "user" or truncated_messages[0].tool_results()
            ):
                truncated_messages.pop(0)

            logger.warning(
                f"Truncated conversation from {len(messages)} to {len(truncated_messages)} messages "
                f"to fit within {available_tokens} token limit"
            )

        return truncated_messages


class _RateLimitedStreamTurn:
    """Async context manager that applies rate limiting before opening a stream."""

    def __init__(self, owner: AnthropicClient, request_params: dict[str, Any], estimated_tokens: int):
        self._owner = owner
        self._request_params = request_params
        self._estimated_tokens = estimated_tokens
        self._turn: AnthropicStreamTurn | None = None

    async def __aenter__(self) -> AnthropicStreamTurn:
        await self._owner.rate_limiter.check_rate_limit(self._estimated_tokens)
        self._turn = AnthropicStreamTurn(self._owner.client.messages.stream(**self._request_params))
        return await self._turn.__aenter__()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._turn is not None:
            await self._turn.__aexit__(exc_type, exc, tb)


def message_text(message: LLMMessage) -> str:
    """Flatten a message into the text that counts against the context window."""
    if isinstance(message.content, str):
        return message.content

    parts = []
    for block in message.content:
        if isinstance(block, TextBlock):
            parts.append(block.text)
        elif isinstance(block, ToolUseBlock):
            parts.append(block.name + json.dumps(block.input, default=str))
        else:
            parts.append(block.content)
    return "".join(parts)


def convert_message(message: Message) -> LLMResponse:
    """Convert an Anthropic message to the provider-agnostic response."""
    content: list[TextBlock | ToolUseBlock] = []
    for block in message.content:
        if block.type == "text":
            content.append(TextBlock(text=block.text))
        elif block.type == "tool_use":
            tool_input = block.input if isinstance(block.input, dict) else {}
            content.append(ToolUseBlock(id=block.id, name=block.name, input=tool_input))
        else:
            logger.warning(f"Unknown content block type: {block.type}")

    usage = None
    if message.usage:
        usage = LLMUsage(
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
            total_tokens=message.usage.input_tokens + message.usage.output_tokens,
            cache_creation_input_tokens=message.usage.cache_creation_input_tokens or 0,
            cache_read_input_tokens=message.usage.cache_read_input_tokens or 0,
        )

    return LLMResponse(content=content, stop_reason=message.stop_reason, usage=usage, model=message.model)


_anthropic_client: AnthropicClient | None = None


def get_anthropic_client() -> AnthropicClient:
    """Get or create Anthropic client instance."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = AnthropicClient()
    return _anthropic_client
