"""Refund processing tool.

Refunds are simulated: nothing is sent to a payment provider.
"""

import asyncio
from datetime import UTC, datetime

from cuid2 import cuid_wrapper
from pydantic import BaseModel, Field

from copilot.models.agent import ToolContext, ToolResult
from copilot.tools.base import ToolDefinition
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

MAX_REFUND_AMOUNT = 10_000
PROCESSING_DELAY = 0.5


class ProcessRefundInput(BaseModel):
    """Input schema for refunds."""

    order_id: str = Field(..., description="The order ID to refund")
    amount: float = Field(..., description="Refund amount in dollars")
    reason: str = Field(..., description="Reason for the refund")


async def process_refund(params: ProcessRefundInput, context: ToolContext) -> ToolResult:
    """Validate and record a simulated refund for an order."""
    if not params.order_id or not params.amount or not params.reason:
        return ToolResult.fail("order_id, amount, and reason are all required")

    if params.amount <= 0:
        return ToolResult.fail("Refund amount must be greater than 0")

    if params.amount > MAX_REFUND_AMOUNT:
        return ToolResult.fail("Refund amount exceeds maximum limit of $10,000. Please escalate for manual review.")

    logger.info(
        f"[MOCK] Processing refund: order {params.order_id}, amount ${params.amount:.2f}, "
        f"reason: {params.reason}, operator: {context.operator_id}"
    )
    await asyncio.sleep(PROCESSING_DELAY)

    return ToolResult.ok(
        {
            "refund_id": f"rf_mock_{cuid()}",
            "order_id": params.order_id,
            "amount": params.amount,
            "currency": "USD",
            "reason": params.reason,
            "status": "processed",
            "processed_at": datetime.now(UTC).isoformat(),
            "message": f"[MOCK] Refund of ${params.amount:.2f} has been processed for order {params.order_id}",
            "note": "This is a mock implementation. No actual payment was processed.",
        }
    )


def create_process_refund_tool() -> ToolDefinition:
    return ToolDefinition(
        name="process_refund",
        description=(
            "Process a refund for a customer order. Use when the customer is entitled to money back. "
            "Amounts above $10,000 must be escalated instead."
        ),
        input_schema_class=ProcessRefundInput,
        handler=process_refund,
    )
