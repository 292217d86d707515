"""API endpoints for the Nova copilot service."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import StreamingResponse

from copilot import __version__
from copilot.models.agent import AgentConfig, ToolContext
from copilot.models.conversation import CapabilitiesResponse, CopilotRequest, HealthResponse
from copilot.services.agent import AgentLoop, get_agent_loop
from copilot.services.store import SupportStore, get_support_store
from copilot.services.stream import SSE_HEADERS, stream_agent_events
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def build_agent_config(
    store: SupportStore,
    operator_name: str | None,
    ticket_id: str | None,
    customer_id: str | None,
) -> AgentConfig:
    """Resolve the ticket subject and customer name shown in the system prompt."""
    ticket_subject = None
    if ticket_id:
        ticket = await store.get_ticket(ticket_id)
        if ticket is not None:
            ticket_subject = ticket.subject
            customer_id = customer_id or ticket.customer_id

    customer_name = None
    if customer_id:
        customer = await store.get_customer(customer_id)
        if customer is not None:
            customer_name = customer.name

    return AgentConfig(
        operator_name=operator_name,
        ticket_id=ticket_id,
        ticket_subject=ticket_subject,
        customer_id=customer_id,
        customer_name=customer_name,
    )


@router.post("/copilot", tags=["Copilot"])
async def handle_copilot(
    request: CopilotRequest,
    x_operator_id: str | None = Header(default=None),
    x_operator_name: str | None = Header(default=None),
    loop: AgentLoop = Depends(get_agent_loop),
    store: SupportStore = Depends(get_support_store),
) -> StreamingResponse:
    """Run the copilot for one operator message and stream its events."""
    if not request.message or not request.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    try:
        loop.client.validate_message_tokens(request.message)
    except ValueError as e:
        logger.warning(f"Message validation error: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    agent_config = await build_agent_config(store, x_operator_name, request.ticket_id, request.customer_id)
    context = ToolContext(
        store=store,
        operator_id=x_operator_id,
        ticket_id=request.ticket_id,
        customer_id=agent_config.customer_id,
    )

    logger.info(
        f"Copilot request from operator {x_operator_id or 'anonymous'} "
        f"(ticket: {request.ticket_id or 'none'}): {request.message[:50]}..."
    )
    return StreamingResponse(
        stream_agent_events(loop, request.message, request.conversation_history, context, agent_config),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/copilot", response_model=CapabilitiesResponse, tags=["Copilot"])
async def copilot_capabilities(loop: AgentLoop = Depends(get_agent_loop)) -> CapabilitiesResponse:
    """Report service status and the tools the copilot can use."""
    return CapabilitiesResponse(
        status="ok",
        service="Nova Copilot",
        version=__version__,
        capabilities=loop.registry.get_tool_names(),
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
