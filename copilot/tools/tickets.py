"""Ticket search, update, escalation and summary tools."""

import re
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from copilot.models.agent import ToolContext, ToolResult
from copilot.models.support import Ticket, TicketEvent, TicketMessage, TicketPriority, TicketStatus
from copilot.services.prompts import TICKET_SUMMARY_PROMPT, render_prompt
from copilot.tools.base import CompletionClient, ToolDefinition
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

Sentiment = Literal["frustrated", "neutral", "happy"]

_SENDER_LABELS = {"customer": "Customer", "agent": "Agent"}


class SearchTicketsInput(BaseModel):
    """Input schema for ticket search."""

    query: str | None = Field(default=None, description="Search query for ticket content")
    customer_id: str | None = Field(default=None, description="Filter by customer ID")
    status: TicketStatus | None = Field(default=None, description="Filter by ticket status")
    limit: int | None = Field(default=None, ge=1, le=50, description="Maximum number of results (default: 10)")


class UpdateTicketInput(BaseModel):
    """Input schema for ticket updates."""

    ticket_id: str = Field(..., description="The ticket ID to update")
    status: TicketStatus | None = Field(default=None, description="New status for the ticket")
    priority: TicketPriority | None = Field(default=None, description="New priority level")
    tags: list[str] | None = Field(default=None, description="Tags to add to the ticket")


class EscalateTicketInput(BaseModel):
    """Input schema for ticket escalation."""

    ticket_id: str = Field(..., description="The ticket ID to escalate")
    reason: str = Field(..., description="Reason for escalation")
    notes: str | None = Field(default=None, description="Additional notes for the supervisor")


class TicketIdInput(BaseModel):
    """Input schema for tools that only need a ticket."""

    ticket_id: str = Field(..., description="The ticket ID to analyze")


async def search_tickets(params: SearchTicketsInput, context: ToolContext) -> ToolResult:
    """Search tickets newest first with optional filters."""
    tickets = await context.store.list_tickets(
        customer_id=params.customer_id,
        status=params.status,
        query=params.query,
        limit=params.limit or 10,
    )

    results = []
    for ticket in tickets:
        customer = await context.store.get_customer(ticket.customer_id)
        results.append(
            {
                "id": ticket.id,
                "subject": ticket.subject,
                "status": ticket.status,
                "priority": ticket.priority,
                "created_at": ticket.created_at.isoformat(),
                "customer_name": customer.name if customer else None,
                "customer_email": customer.email if customer else None,
                "tags": ticket.tags,
            }
        )

    return ToolResult.ok(
        {
            "tickets": results,
            "count": len(results),
            "filters_applied": {
                "query": params.query,
                "customer_id": params.customer_id,
                "status": params.status,
            },
        }
    )


async def update_ticket(params: UpdateTicketInput, context: ToolContext) -> ToolResult:
    """Apply status, priority and tag changes and log one event per change."""
    if not params.ticket_id:
        return ToolResult.fail("ticket_id is required")

    store = context.store
    current = await store.get_ticket(params.ticket_id)
    if current is None:
        return ToolResult.fail(f"Ticket not found: {params.ticket_id}")

    updates: dict[str, Any] = {}
    events: list[TicketEvent] = []

    def change(event_type: str, old_value: str | None, new_value: str) -> None:
        events.append(
            TicketEvent(
                ticket_id=current.id,
                event_type=event_type,
                old_value=old_value,
                new_value=new_value,
                agent_id=context.operator_id,
            )
        )

    if params.status and params.status != current.status:
        updates["status"] = params.status
        change("status_changed", current.status, params.status)

    if params.priority and params.priority != current.priority:
        updates["priority"] = params.priority
        change("priority_changed", current.priority, params.priority)

    if params.tags:
        # Requested tags are always written; only new ones are logged.
        added = [tag for tag in dict.fromkeys(params.tags) if tag not in current.tags]
        updates["tags"] = [*current.tags, *added]
        for tag in added:
            change("tagged", None, tag)

    if not updates:
        return ToolResult.fail("No changes to apply. Provide status, priority, or tags to update.")

    updates["updated_at"] = datetime.now(UTC)
    ticket = await store.update_ticket(current.id, updates)
    if ticket is None:
        return ToolResult.fail(f"Failed to update ticket: {params.ticket_id}")

    for event in events:
        await store.record_ticket_event(event)

    return ToolResult.ok(
        {
            "id": ticket.id,
            "subject": ticket.subject,
            "status": ticket.status,
            "priority": ticket.priority,
            "tags": ticket.tags,
            "changes": [f"{e.event_type}: {e.old_value or 'none'} → {e.new_value}" for e in events],
        }
    )


async def escalate_ticket(params: EscalateTicketInput, context: ToolContext) -> ToolResult:
    """Mark a ticket escalated and record the reason for the supervisor."""
    if not params.ticket_id or not params.reason:
        return ToolResult.fail("ticket_id and reason are required")

    store = context.store
    ticket = await store.update_ticket(params.ticket_id, {"status": "escalated", "updated_at": datetime.now(UTC)})
    if ticket is None:
        return ToolResult.fail(f"Failed to escalate ticket: ticket {params.ticket_id} not found")

    await store.record_ticket_event(
        TicketEvent(
            ticket_id=ticket.id,
            event_type="escalated",
            old_value=None,
            new_value=params.reason,
            agent_id=context.operator_id,
            metadata={"notes": params.notes} if params.notes else None,
        )
    )

    logger.info(f"Escalated ticket {ticket.id}: {params.reason}")

    customer = await store.get_customer(ticket.customer_id)
    return ToolResult.ok(
        {
            "id": ticket.id,
            "subject": ticket.subject,
            "status": ticket.status,
            "priority": ticket.priority,
            "customer_name": customer.name if customer else None,
            "escalation_reason": params.reason,
            "escalation_notes": params.notes,
            "message": "Ticket has been escalated successfully",
        }
    )


def format_transcript(messages: list[TicketMessage]) -> str:
    """Render ticket messages as a labelled transcript for prompting."""
    return "\n\n".join(f"[{_SENDER_LABELS.get(m.sender_type, 'AI')}]: {m.content}" for m in messages)


def create_get_ticket_summary_tool(llm: CompletionClient) -> ToolDefinition:
    async def get_ticket_summary(params: TicketIdInput, context: ToolContext) -> ToolResult:
        """Summarize a ticket conversation with the model."""
        if not params.ticket_id:
            return ToolResult.fail("ticket_id is required")

        ticket = await context.store.get_ticket(params.ticket_id)
        if ticket is None:
            return ToolResult.fail(f"Ticket not found: {params.ticket_id}")

        messages = await context.store.list_messages(ticket.id)
        if not messages:
            return ToolResult.ok(_empty_summary(ticket))

        response_text = await llm.complete(
            render_prompt(TICKET_SUMMARY_PROMPT, messages=format_transcript(messages)),
            max_tokens=500,
        )

        return ToolResult.ok(
            {
                "issue": extract_section(response_text, "Main issue", "The ticket details a customer issue"),
                "key_points": extract_list_section(response_text, "Key points"),
                "current_status": ticket.status,
                "customer_sentiment": extract_sentiment(response_text),
                "recommended_action": extract_section(response_text, "Recommended", "Follow up with the customer"),
                "message_count": len(messages),
            }
        )

    return ToolDefinition(
        name="get_ticket_summary",
        description=(
            "Get an AI-generated summary of a ticket conversation including key points and customer sentiment."
        ),
        input_schema_class=TicketIdInput,
        handler=get_ticket_summary,
    )


def _empty_summary(ticket: Ticket) -> dict[str, Any]:
    return {
        "issue": "No messages in this ticket yet",
        "key_points": [],
        "current_status": ticket.status,
        "customer_sentiment": "neutral",
        "recommended_action": "Review the ticket subject and reach out to the customer",
        "message_count": 0,
    }


def extract_section(text: str, section_name: str, default: str) -> str:
    """Pull the single-line value following ``section_name`` in a summary."""
    match = re.search(rf"{re.escape(section_name)}[^:\n]*:[ \t]*(.+)", text, re.IGNORECASE)
    return match.group(1).strip() if match else default


def extract_list_section(text: str, section_name: str) -> list[str]:
    """Pull the bullet list that follows ``section_name`` in a summary."""
    match = re.search(rf"{re.escape(section_name)}[^\n]*\n((?:[ \t]*[-•*][^\n]*\n?)+)", text, re.IGNORECASE)
    if not match:
        return []

    items = (re.sub(r"^[ \t]*[-•*]\s*", "", line).strip() for line in match.group(1).splitlines())
    return [item for item in items if item]


def extract_sentiment(text: str) -> Sentiment:
    lowered = text.lower()
    if any(word in lowered for word in ("frustrated", "angry", "upset")):
        return "frustrated"
    if any(word in lowered for word in ("happy", "satisfied", "pleased")):
        return "happy"
    return "neutral"


def create_search_tickets_tool() -> ToolDefinition:
    return ToolDefinition(
        name="search_tickets",
        description=(
            "Search through support tickets by customer, status, or keywords. "
            "Returns matching tickets with customer details."
        ),
        input_schema_class=SearchTicketsInput,
        handler=search_tickets,
    )


def create_update_ticket_tool() -> ToolDefinition:
    return ToolDefinition(
        name="update_ticket",
        description=(
            "Update a ticket's status, priority, or tags. Use this to resolve or modify ticket properties. "
            "Tags are added to the existing ones."
        ),
        input_schema_class=UpdateTicketInput,
        handler=update_ticket,
    )


def create_escalate_ticket_tool() -> ToolDefinition:
    return ToolDefinition(
        name="escalate_ticket",
        description=(
            "Escalate a ticket to a supervisor with notes. Use for complex issues requiring higher-level attention."
        ),
        input_schema_class=EscalateTicketInput,
        handler=escalate_ticket,
    )
