"""Tools registry: declarations for the model and the dispatch fault boundary."""

import asyncio
from typing import Any

from pydantic import ValidationError

from copilot.errors import ToolTimeoutError
from copilot.models.agent import ToolContext, ToolResult
from copilot.models.llm import LLMToolDefinition
from copilot.tools.analysis import create_analyze_sentiment_tool
from copilot.tools.base import CompletionClient, ToolDefinition
from copilot.tools.customer import create_lookup_customer_tool, create_update_customer_tool
from copilot.tools.knowledge import create_browse_kb_article_tool, create_search_knowledge_base_tool
from copilot.tools.refund import create_process_refund_tool
from copilot.tools.response import create_generate_response_tool
from copilot.tools.tickets import (
    create_escalate_ticket_tool,
    create_get_ticket_summary_tool,
    create_search_tickets_tool,
    create_update_ticket_tool,
)
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT = 30.0


def format_validation_error(tool_name: str, error: ValidationError) -> str:
    details = "; ".join(
        f"{'.'.join(str(part) for part in e['loc']) or 'input'}: {e['msg']}" for e in error.errors()
    )
    return f"Invalid input for {tool_name}: {details}"


class ToolsRegistry:
    """Registry for the copilot's tools."""

    def __init__(self, completion_client: CompletionClient):
        """Initialize tools registry with the client used by LLM-backed tools."""
        self.completion_client = completion_client
        self._tools: dict[str, ToolDefinition] = {}
        self._register_default_tools()

    def _register_default_tools(self) -> None:
        """Register the default set of support desk tools."""
        tools = [
            create_lookup_customer_tool(),
            create_update_customer_tool(),
            create_search_tickets_tool(),
            create_update_ticket_tool(),
            create_escalate_ticket_tool(),
            create_get_ticket_summary_tool(self.completion_client),
            create_analyze_sentiment_tool(self.completion_client),
            create_search_knowledge_base_tool(),
            create_browse_kb_article_tool(),
            create_generate_response_tool(self.completion_client),
            create_process_refund_tool(),
        ]

        for tool in tools:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool, replacing any tool with the same name."""
        self._tools[tool.name] = tool

    def get_tool_declarations(self) -> list[LLMToolDefinition]:
        """Declarations in registration order, as sent to the model."""
        return [tool.declaration() for tool in self._tools.values()]

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    async def dispatch(
        self, name: str, raw_input: Any, context: ToolContext, timeout: float | None = DEFAULT_TOOL_TIMEOUT
    ) -> ToolResult:
        """Run one tool call and always come back with a ToolResult.

        Unknown names, invalid input, timeouts, handler exceptions and results
        that cannot be sent back as JSON all become failed results; nothing
        raised by a handler reaches the caller.
        """
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"Model requested unknown tool: {name}")
            return ToolResult.fail(f"Unknown tool: {name}")

        try:
            params = tool.parse_input(raw_input if isinstance(raw_input, dict) else {})
        except ValidationError as e:
            logger.info(f"Rejected input for {name}: {e.error_count()} error(s)")
            return ToolResult.fail(format_validation_error(name, e))

        try:
            async with asyncio.timeout(timeout) as deadline:
                result = await tool.handler(params, context)
        except Exception as e:
            if isinstance(e, TimeoutError) and deadline.expired():
                error = ToolTimeoutError(name, timeout)
                logger.warning(str(error))
                return ToolResult.fail(str(error))
            logger.error(f"Tool {name} failed: {e}", exc_info=True)
            return ToolResult.fail(str(e) or "Tool execution failed")

        if not isinstance(result, ToolResult):
            logger.error(f"Tool {name} returned {type(result).__name__} instead of a ToolResult")
            return ToolResult.fail(f"Tool {name} returned an invalid result")

        # The result is sent back to the model as JSON.
        try:
            result.model_dump_json()
        except Exception as e:
            logger.error(f"Tool {name} returned data that could not be serialized: {e}")
            return ToolResult.fail(f"Tool {name} returned data that could not be serialized")

        if not result.success:
            logger.info(f"Tool {name} returned failure: {result.error}")
        return result


_tools_registry: ToolsRegistry | None = None


def get_tools_registry(completion_client: CompletionClient | None = None) -> ToolsRegistry:
    """Get or create tools registry instance."""
    global _tools_registry

    if _tools_registry is None:
        if completion_client is None:
            raise ValueError("Must provide a completion client for initial registry creation")

        _tools_registry = ToolsRegistry(completion_client)

    return _tools_registry
