"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel

from copilot.models.agent import ToolContext, ToolResult
from copilot.models.llm import LLMToolDefinition

ToolHandler = Callable[[Any, ToolContext], Awaitable[ToolResult]]


class CompletionClient(Protocol):
    """Single-prompt completions used by LLM-backed tools."""

    async def complete(self, prompt: str, max_tokens: int = 500) -> str:
        """Return the model's text answer to one prompt."""
        ...


@dataclass
class ToolDefinition:
    """Definition of a tool available to the copilot."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        schema = self.input_schema_class.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("required", [])
        return schema

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)

    def declaration(self) -> LLMToolDefinition:
        """Declaration sent to the model backend."""
        return LLMToolDefinition(name=self.name, description=self.description, input_schema=self.get_json_schema())
