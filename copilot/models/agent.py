"""Per-run agent models: tool context, prompt configuration and result envelope."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, SerializerFunctionWrapHandler, model_serializer

if TYPE_CHECKING:
    from copilot.services.store import SupportStore


class ToolResult(BaseModel):
    """Uniform envelope returned by every tool handler and by the dispatcher."""

    success: bool
    data: Any = None
    error: str | None = None

    @model_serializer(mode="wrap")
    def omit_absent_fields(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        payload = handler(self)
        return {key: value for key, value in payload.items() if key == "success" or value is not None}

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        """Build a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        """Build a failed result."""
        return cls(success=False, error=error)


@dataclass(frozen=True)
class ToolContext:
    """Capabilities shared read-only by every tool call in one run."""

    store: "SupportStore"
    operator_id: str | None = None
    ticket_id: str | None = None
    customer_id: str | None = None


@dataclass(frozen=True)
class AgentConfig:
    """Per-run substitutions for the system prompt."""

    operator_name: str | None = None
    ticket_id: str | None = None
    ticket_subject: str | None = None
    customer_id: str | None = None
    customer_name: str | None = None
