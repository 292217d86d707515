"""Support desk business models backing the copilot tools."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

TicketStatus = Literal["open", "pending", "resolved", "escalated"]
TicketPriority = Literal["low", "normal", "high", "urgent"]
SenderType = Literal["customer", "agent", "ai"]


@dataclass
class Customer:
    """Customer business model."""

    id: str
    name: str | None
    email: str | None
    created_at: datetime
    preferred_language: str = "en"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Ticket:
    """Support ticket business model."""

    id: str
    customer_id: str
    subject: str
    status: TicketStatus
    priority: TicketPriority
    created_at: datetime
    updated_at: datetime
    tags: list[str] = field(default_factory=list)


@dataclass
class TicketMessage:
    """A single message exchanged on a ticket."""

    id: str
    ticket_id: str
    sender_type: SenderType
    content: str
    created_at: datetime


@dataclass
class TicketEvent:
    """Audit trail entry for a ticket change."""

    ticket_id: str
    event_type: str
    old_value: str | None
    new_value: str | None
    agent_id: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class KnowledgeArticle:
    """A knowledge base article chunk."""

    id: str
    title: str
    content: str
    source_file: str
    category: str | None = None
    section: str | None = None


@dataclass
class KnowledgeHit:
    """A knowledge base search match with its relevance score."""

    article: KnowledgeArticle
    similarity: float
