"""Customer sentiment analysis tool."""

import json
import re
from typing import Any

from copilot.models.agent import ToolContext, ToolResult
from copilot.models.support import TicketMessage
from copilot.services.prompts import SENTIMENT_ANALYSIS_PROMPT, render_prompt
from copilot.tools.base import CompletionClient, ToolDefinition
from copilot.tools.tickets import TicketIdInput
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

TRENDS = ("improving", "declining", "stable")
RISK_LEVELS = ("low", "medium", "high")

INDICATOR_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"exclamation marks?",
        r"all caps",
        r"repeat(?:ing|ed)? complaints?",
        r"thank(?:s|ing)?",
        r"apprec(?:iate|iation)",
        r"frustrat(?:ed|ion|ing)",
        r"urgent",
        r"help(?:ful)?",
    )
]


def _contains(text: str, *phrases: str) -> bool:
    return any(phrase in text for phrase in phrases)


def infer_sentiment_from_text(text: str) -> dict[str, Any]:
    """Keyword-based reading of a free-form sentiment answer."""
    lowered = text.lower()

    score = 3
    if _contains(lowered, "very frustrated", "angry", "furious"):
        score = 1
    elif _contains(lowered, "frustrated", "upset", "disappointed"):
        score = 2
    elif _contains(lowered, "very happy", "delighted", "excellent"):
        score = 5
    elif _contains(lowered, "happy", "pleased", "satisfied"):
        score = 4

    trend = "stable"
    if _contains(lowered, "improving", "better", "calming"):
        trend = "improving"
    elif _contains(lowered, "declining", "worse", "escalating"):
        trend = "declining"

    risk_level = "medium"
    if score <= 2 or _contains(lowered, "high risk", "churn"):
        risk_level = "high"
    elif score >= 4 or "low risk" in lowered:
        risk_level = "low"

    indicators = [m.group(0) for pattern in INDICATOR_PATTERNS if (m := pattern.search(text))]

    return {
        "score": score,
        "indicators": indicators or ["General tone assessment"],
        "trend": trend,
        "riskLevel": risk_level,
        "summary": text[:200] + "..." if len(text) > 200 else text,
    }


def parse_sentiment(response_text: str) -> dict[str, Any]:
    """Parse the model's JSON answer, falling back to keyword inference."""
    match = _JSON_OBJECT.search(response_text)
    if not match:
        return infer_sentiment_from_text(response_text)

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return infer_sentiment_from_text(response_text)
    if not isinstance(parsed, dict):
        return infer_sentiment_from_text(response_text)

    return {
        "score": parsed.get("score") or 3,
        "indicators": parsed.get("indicators") or [],
        "trend": parsed.get("trend") or "stable",
        "riskLevel": parsed.get("riskLevel") or "medium",
        "summary": parsed.get("summary") or "Sentiment analysis complete",
    }


def clamp_analysis(analysis: dict[str, Any]) -> dict[str, Any]:
    score = analysis["score"]
    if isinstance(score, bool) or not isinstance(score, int | float):
        score = 3
    analysis["score"] = max(1, min(5, score))
    if analysis["trend"] not in TRENDS:
        analysis["trend"] = "stable"
    if analysis["riskLevel"] not in RISK_LEVELS:
        analysis["riskLevel"] = "medium"
    return analysis


def _number_messages(messages: list[TicketMessage]) -> str:
    return "\n\n".join(f"Message {i}: {m.content}" for i, m in enumerate(messages, start=1))


def create_analyze_sentiment_tool(llm: CompletionClient) -> ToolDefinition:
    async def analyze_sentiment(params: TicketIdInput, context: ToolContext) -> ToolResult:
        """Score customer sentiment on a ticket from the customer's own messages."""
        if not params.ticket_id:
            return ToolResult.fail("ticket_id is required")

        messages = await context.store.list_messages(params.ticket_id, sender_type="customer")
        if not messages:
            return ToolResult.ok(
                {
                    "score": 3,
                    "indicators": ["No customer messages to analyze"],
                    "trend": "stable",
                    "riskLevel": "low",
                    "summary": "Unable to determine sentiment - no customer messages found",
                    "message_count": 0,
                }
            )

        response_text = await llm.complete(
            render_prompt(SENTIMENT_ANALYSIS_PROMPT, messages=_number_messages(messages)),
            max_tokens=500,
        )
        analysis = clamp_analysis(parse_sentiment(response_text))
        logger.debug(f"Sentiment for {params.ticket_id}: {analysis['score']} ({analysis['riskLevel']} risk)")

        return ToolResult.ok({**analysis, "message_count": len(messages), "ticket_id": params.ticket_id})

    return ToolDefinition(
        name="analyze_sentiment",
        description=(
            "Analyze customer sentiment from ticket messages. Returns sentiment score, indicators, "
            "and risk assessment."
        ),
        input_schema_class=TicketIdInput,
        handler=analyze_sentiment,
    )
