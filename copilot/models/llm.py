"""LLM-related data models and types (provider-agnostic)."""

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]


# Content block types
class TextBlock(BaseModel):
    """Text content block."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """Tool use content block."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """Tool result content block."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Annotated[TextBlock | ToolUseBlock | ToolResultBlock, Field(discriminator="type")]


class LLMMessage(BaseModel):
    """A message in the working conversation sent to the model."""

    role: Role
    content: str | list[ContentBlock]

    def tool_uses(self) -> list[ToolUseBlock]:
        """Return the tool use blocks carried by this message, in order."""
        if isinstance(self.content, str):
            return []
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    def tool_results(self) -> list[ToolResultBlock]:
        """Return the tool result blocks carried by this message, in order."""
        if isinstance(self.content, str):
            return []
        return [block for block in self.content if isinstance(block, ToolResultBlock)]


class LLMToolDefinition(BaseModel):
    """Tool declaration sent to the model backend."""

    name: str
    description: str
    input_schema: dict[str, Any]


# Streaming events yielded by a model turn
@dataclass
class TextDelta:
    """Incremental text fragment."""

    text: str


@dataclass
class ToolUseStart:
    """A tool use block has opened; its input arrives with the final message."""

    id: str
    name: str


@dataclass
class StopReasonDelta:
    """The backend reported why the turn ended."""

    stop_reason: str | None


StreamEvent = TextDelta | ToolUseStart | StopReasonDelta


@dataclass
class LLMUsage:
    """Token/resource usage information from LLM provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    def add(self, other: "LLMUsage | None") -> None:
        """Accumulate usage from another turn."""
        if other is None:
            return
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.total_tokens += other.total_tokens
        self.cache_creation_input_tokens += other.cache_creation_input_tokens
        self.cache_read_input_tokens += other.cache_read_input_tokens

    @property
    def cache_hit_rate(self) -> float:
        """Calculate cache hit rate as percentage."""
        total_input = self.input_tokens + self.cache_read_input_tokens + self.cache_creation_input_tokens
        if total_input == 0:
            return 0.0
        return (self.cache_read_input_tokens / total_input) * 100


@dataclass
class LLMResponse:
    """Provider-agnostic final message of a model turn."""

    content: list[TextBlock | ToolUseBlock]
    stop_reason: str | None
    usage: LLMUsage | None = None
    model: str = ""
    provider: str = "anthropic"

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        """Tool use blocks in emission order."""
        return [block for block in self.content if isinstance(block, ToolUseBlock)]


LoopOutcome = Literal["completed", "error", "timeout", "protocol_error", "max_iterations"]


@dataclass
class AgentLoopResult:
    """Result from executing an agent loop."""

    outcome: LoopOutcome
    stop_reason: str | None
    messages: list[LLMMessage]
    turns: int
    usage: LLMUsage = field(default_factory=LLMUsage)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the run ended without an error event."""
        return self.error is None
