"""Draft reply generation for the current ticket."""

import json
import re
from typing import Any, Literal

from pydantic import BaseModel, Field

from copilot.models.agent import ToolContext, ToolResult
from copilot.services.prompts import RESPONSE_GENERATION_PROMPT, render_prompt
from copilot.tools.base import CompletionClient, ToolDefinition
from copilot.tools.knowledge import find_articles, snippet
from copilot.tools.tickets import format_transcript
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

Tone = Literal["formal", "friendly", "apologetic", "technical"]

_RESPONSES_JSON = re.compile(r'\{[\s\S]*"responses"[\s\S]*\}')


class GenerateResponseInput(BaseModel):
    """Input schema for draft response generation."""

    ticket_id: str = Field(..., description="The ticket ID to generate response for")
    tone: Tone | None = Field(default=None, description="Tone of the response")
    include_kb: bool | None = Field(
        default=None, description="Whether to search knowledge base for relevant info (default: true)"
    )


def parse_responses(response_text: str, tone: str) -> list[dict[str, Any]]:
    """Read the ``responses`` list out of a model answer.

    Malformed JSON yields the raw text as a single draft; no JSON at all yields
    an empty list.
    """
    match = _RESPONSES_JSON.search(response_text)
    if not match:
        return []

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return [{"type": tone, "content": response_text, "confidence": 70}]

    responses = parsed.get("responses") if isinstance(parsed, dict) else None
    if not isinstance(responses, list):
        return []
    return [r for r in responses if isinstance(r, dict) and r.get("content")]


def template_response(customer_name: str | None, subject: str) -> dict[str, Any]:
    return {
        "type": "friendly",
        "content": (
            f"Hi {customer_name or 'there'},\n\n"
            f'Thank you for reaching out about "{subject}". I\'d be happy to help you with this.\n\n'
            "[Agent to complete response based on context]\n\n"
            "Please let me know if you have any questions.\n\n"
            "Best regards"
        ),
        "confidence": 50,
    }


def create_generate_response_tool(llm: CompletionClient) -> ToolDefinition:
    async def generate_response(params: GenerateResponseInput, context: ToolContext) -> ToolResult:
        """Draft reply options grounded in recent messages and the knowledge base."""
        if not params.ticket_id:
            return ToolResult.fail("ticket_id is required")

        tone = params.tone or "friendly"
        include_kb = params.include_kb is not False

        store = context.store
        ticket = await store.get_ticket(params.ticket_id)
        if ticket is None:
            return ToolResult.fail(f"Ticket not found: {params.ticket_id}")

        customer = await store.get_customer(ticket.customer_id)
        customer_name = customer.name if customer else None

        messages = await store.list_messages(ticket.id, limit=10)
        recent_messages = format_transcript(messages) if messages else "No previous messages."

        kb_articles = "No knowledge base articles searched."
        if include_kb and ticket.subject:
            hits = await find_articles(store, ticket.subject, limit=3)
            if hits:
                kb_articles = "\n\n---\n\n".join(
                    f"**{hit.article.title}**\n{snippet(hit.article.content)}" for hit in hits
                )

        prompt = render_prompt(
            RESPONSE_GENERATION_PROMPT,
            customerName=customer_name or "Customer",
            ticketSubject=ticket.subject,
            recentMessages=recent_messages,
            kbArticles=kb_articles,
            tone=tone,
        )
        response_text = await llm.complete(prompt, max_tokens=1500)

        responses = parse_responses(response_text, tone)
        if not responses:
            logger.debug(f"No usable drafts for ticket {ticket.id}, using template")
            responses = [template_response(customer_name, ticket.subject)]

        return ToolResult.ok(
            {
                "ticket_id": ticket.id,
                "ticket_subject": ticket.subject,
                "customer_name": customer_name,
                "requested_tone": tone,
                "responses": responses,
                "kb_articles_used": include_kb,
            }
        )

    return ToolDefinition(
        name="generate_response",
        description=(
            "Generate a draft response for the current ticket based on context and knowledge base. "
            "Returns 2-3 response options."
        ),
        input_schema_class=GenerateResponseInput,
        handler=generate_response,
    )
