"""Customer lookup and profile update tools."""

from typing import Any

from pydantic import BaseModel, Field

from copilot.models.agent import ToolContext, ToolResult
from copilot.tools.base import ToolDefinition


class LookupCustomerInput(BaseModel):
    """Input schema for customer lookup."""

    customer_id: str | None = Field(default=None, description="The unique customer ID")
    email: str | None = Field(default=None, description="The customer email address")


class UpdateCustomerInput(BaseModel):
    """Input schema for customer profile updates."""

    customer_id: str = Field(..., description="The customer ID to update")
    name: str | None = Field(default=None, description="New display name")
    preferred_language: str | None = Field(default=None, description="Preferred language code (en, es, tl, hi)")
    metadata: dict[str, Any] | None = Field(default=None, description="Additional metadata to update")


async def lookup_customer(params: LookupCustomerInput, context: ToolContext) -> ToolResult:
    """Look up a customer profile along with their most recent tickets."""
    if not params.customer_id and not params.email:
        return ToolResult.fail("Please provide either a customer_id or email to look up")

    store = context.store
    if params.customer_id:
        customer = await store.get_customer(params.customer_id)
    else:
        customer = await store.find_customer_by_email(params.email)

    if customer is None:
        searched = f" with ID: {params.customer_id}" if params.customer_id else f" with email: {params.email}"
        return ToolResult.fail(f"Customer not found{searched}")

    recent_tickets = await store.list_tickets(customer_id=customer.id, limit=5)
    total_tickets = await store.count_tickets(customer.id)

    return ToolResult.ok(
        {
            "id": customer.id,
            "name": customer.name,
            "email": customer.email,
            "preferred_language": customer.preferred_language,
            "created_at": customer.created_at.isoformat(),
            "metadata": customer.metadata,
            "recent_tickets": [
                {
                    "id": t.id,
                    "subject": t.subject,
                    "status": t.status,
                    "created_at": t.created_at.isoformat(),
                }
                for t in recent_tickets
            ],
            "total_tickets": total_tickets,
        }
    )


async def update_customer(params: UpdateCustomerInput, context: ToolContext) -> ToolResult:
    """Update name, language or metadata; metadata is merged, not replaced."""
    if not params.customer_id:
        return ToolResult.fail("customer_id is required")

    store = context.store
    existing = await store.get_customer(params.customer_id)
    if existing is None:
        return ToolResult.fail(f"Customer not found with ID: {params.customer_id}")

    updates: dict[str, Any] = {}
    if params.name is not None:
        updates["name"] = params.name
    if params.preferred_language is not None:
        updates["preferred_language"] = params.preferred_language
    if params.metadata is not None:
        updates["metadata"] = {**existing.metadata, **params.metadata}

    if not updates:
        return ToolResult.fail("No fields to update. Provide name, preferred_language, or metadata.")

    customer = await store.update_customer(params.customer_id, updates)
    if customer is None:
        return ToolResult.fail(f"Failed to update customer: {params.customer_id}")

    return ToolResult.ok(
        {
            "id": customer.id,
            "name": customer.name,
            "email": customer.email,
            "preferred_language": customer.preferred_language,
            "metadata": customer.metadata,
            "updated_fields": list(updates),
        }
    )


def create_lookup_customer_tool() -> ToolDefinition:
    return ToolDefinition(
        name="lookup_customer",
        description=(
            "Look up customer information by email or customer ID. "
            "Returns customer profile, preferences, and recent ticket activity."
        ),
        input_schema_class=LookupCustomerInput,
        handler=lookup_customer,
    )


def create_update_customer_tool() -> ToolDefinition:
    return ToolDefinition(
        name="update_customer",
        description="Update customer profile settings like name, language preference, or metadata.",
        input_schema_class=UpdateCustomerInput,
        handler=update_customer,
    )
