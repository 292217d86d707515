"""Server-sent event payloads emitted by a copilot run."""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from copilot.models.agent import ToolResult


class ToolStartPayload(BaseModel):
    """Tool invocation announced to the caller."""

    name: str
    input: Any


class ToolResultPayload(BaseModel):
    """Tool outcome announced to the caller."""

    name: str
    result: ToolResult


class TextEvent(BaseModel):
    """A fragment of assistant text."""

    type: Literal["text"] = "text"
    content: str


class ToolStartEvent(BaseModel):
    type: Literal["tool_start"] = "tool_start"
    tool: ToolStartPayload


class ToolResultEvent(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool: ToolResultPayload


class ErrorEvent(BaseModel):
    """Run-level failure. At most one per run, always before done."""

    type: Literal["error"] = "error"
    error: str


class DoneEvent(BaseModel):
    """Terminal event. Exactly one per run."""

    type: Literal["done"] = "done"


SSEEvent = Annotated[
    TextEvent | ToolStartEvent | ToolResultEvent | ErrorEvent | DoneEvent,
    Field(discriminator="type"),
]
