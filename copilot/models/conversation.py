"""Request and response models for the copilot HTTP surface."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CopilotRequest(BaseModel):
    """Request model for the copilot endpoint.

    History entries are kept untyped here; the normalizer decides what survives.
    """

    message: str
    ticket_id: str | None = None
    customer_id: str | None = None
    conversation_history: list[Any] | None = None


class CapabilitiesResponse(BaseModel):
    """Response model for the copilot status endpoint."""

    status: str
    service: str
    version: str
    capabilities: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
