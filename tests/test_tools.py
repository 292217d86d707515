"""Tests for the support desk tool handlers."""

import pytest
from fakes import FakeCompletionClient

from copilot.models.agent import ToolContext
from copilot.models.support import KnowledgeArticle
from copilot.services.store import InMemorySupportStore
from copilot.tools import refund
from copilot.tools.analysis import create_analyze_sentiment_tool, infer_sentiment_from_text
from copilot.tools.customer import LookupCustomerInput, UpdateCustomerInput, lookup_customer, update_customer
from copilot.tools.knowledge import (
    BrowseKbArticleInput,
    SearchKnowledgeBaseInput,
    browse_kb_article,
    search_knowledge_base,
)
from copilot.tools.refund import ProcessRefundInput, process_refund
from copilot.tools.response import create_generate_response_tool
from copilot.tools.tickets import (
    EscalateTicketInput,
    SearchTicketsInput,
    UpdateTicketInput,
    create_get_ticket_summary_tool,
    escalate_ticket,
    extract_list_section,
    extract_section,
    search_tickets,
    update_ticket,
)


@pytest.fixture
def store():
    """Create a store with fresh demo data."""
    return InMemorySupportStore()


@pytest.fixture
def context(store):
    """Create a tool context for operator agent-7."""
    return ToolContext(store=store, operator_id="agent-7")


async def run_tool(tool, raw_input, context):
    return await tool.handler(tool.parse_input(raw_input), context)


class TestCustomerTools:
    """Tests for customer lookup and update."""

    @pytest.mark.asyncio
    async def test_lookup_by_id(self, context):
        """Test lookup by customer ID includes recent tickets and a total."""
        result = await lookup_customer(LookupCustomerInput(customer_id="CUS_001"), context)

        assert result.success
        assert result.data["name"] == "Maria Garcia"
        assert result.data["preferred_language"] == "es"
        assert [t["id"] for t in result.data["recent_tickets"]] == ["TKT_001", "TKT_002"]
        assert result.data["total_tickets"] == 2

    @pytest.mark.asyncio
    async def test_lookup_by_email_is_case_insensitive(self, context):
        """Test lookup by email address."""
        result = await lookup_customer(LookupCustomerInput(email="MARIA@example.com"), context)

        assert result.data["id"] == "CUS_001"

    @pytest.mark.asyncio
    async def test_lookup_requires_identifier(self, context):
        """Test that lookup without ID or email fails."""
        result = await lookup_customer(LookupCustomerInput(), context)

        assert result.error == "Please provide either a customer_id or email to look up"

    @pytest.mark.asyncio
    async def test_lookup_not_found(self, context):
        """Test that unknown customers produce a descriptive failure."""
        by_id = await lookup_customer(LookupCustomerInput(customer_id="CUS_404"), context)
        by_email = await lookup_customer(LookupCustomerInput(email="ghost@example.com"), context)

        assert by_id.error == "Customer not found with ID: CUS_404"
        assert by_email.error == "Customer not found with email: ghost@example.com"

    @pytest.mark.asyncio
    async def test_update_merges_metadata(self, context, store):
        """Test that metadata updates merge with existing metadata."""
        result = await update_customer(
            UpdateCustomerInput(customer_id="CUS_001", metadata={"vip": True}, preferred_language="en"), context
        )

        assert result.success
        assert result.data["metadata"] == {"plan": "Business", "vip": True}
        assert result.data["updated_fields"] == ["preferred_language", "metadata"]
        assert (await store.get_customer("CUS_001")).preferred_language == "en"

    @pytest.mark.asyncio
    async def test_update_requires_fields(self, context):
        """Test that an update with nothing to change fails."""
        result = await update_customer(UpdateCustomerInput(customer_id="CUS_001"), context)

        assert result.error == "No fields to update. Provide name, preferred_language, or metadata."

    @pytest.mark.asyncio
    async def test_update_unknown_customer(self, context):
        """Test that updating an unknown customer fails."""
        result = await update_customer(UpdateCustomerInput(customer_id="CUS_404", name="X"), context)

        assert result.error == "Customer not found with ID: CUS_404"


class TestTicketTools:
    """Tests for ticket search, update and escalation."""

    @pytest.mark.asyncio
    async def test_search_by_query(self, context):
        """Test that queries match ticket subjects."""
        result = await search_tickets(SearchTicketsInput(query="charged"), context)

        assert [t["id"] for t in result.data["tickets"]] == ["TKT_002"]
        assert result.data["tickets"][0]["customer_name"] == "Maria Garcia"
        assert result.data["filters_applied"] == {"query": "charged", "customer_id": None, "status": None}

    @pytest.mark.asyncio
    async def test_search_filters_and_limit(self, context):
        """Test customer filter and result limit."""
        by_customer = await search_tickets(SearchTicketsInput(customer_id="CUS_002"), context)
        limited = await search_tickets(SearchTicketsInput(limit=1), context)

        assert [t["id"] for t in by_customer.data["tickets"]] == ["TKT_003"]
        assert limited.data["count"] == 1
        assert limited.data["tickets"][0]["id"] == "TKT_001"

    @pytest.mark.asyncio
    async def test_update_records_one_event_per_change(self, context, store):
        """Test status, priority and tag changes with their events."""
        result = await update_ticket(
            UpdateTicketInput(ticket_id="TKT_001", status="resolved", priority="urgent", tags=["studio", "camera"]),
            context,
        )

        assert result.success
        assert result.data["status"] == "resolved"
        assert result.data["priority"] == "urgent"
        assert result.data["tags"] == ["studio", "camera"]
        assert result.data["changes"] == [
            "status_changed: open → resolved",
            "priority_changed: high → urgent",
            "tagged: none → camera",
        ]
        assert [(e.event_type, e.agent_id) for e in store.events] == [
            ("status_changed", "agent-7"),
            ("priority_changed", "agent-7"),
            ("tagged", "agent-7"),
        ]

    @pytest.mark.asyncio
    async def test_update_without_changes(self, context, store):
        """Test that re-applying current values is rejected."""
        result = await update_ticket(UpdateTicketInput(ticket_id="TKT_001", status="open", priority="high"), context)

        assert result.error == "No changes to apply. Provide status, priority, or tags to update."
        assert store.events == []

    @pytest.mark.asyncio
    async def test_update_with_existing_tags_succeeds(self, context, store):
        """Test that re-sending existing tags is accepted without logging events."""
        result = await update_ticket(UpdateTicketInput(ticket_id="TKT_001", tags=["studio"]), context)

        assert result.success
        assert result.data["tags"] == ["studio"]
        assert result.data["changes"] == []
        assert store.events == []

    @pytest.mark.asyncio
    async def test_update_unknown_ticket(self, context):
        """Test that updating a missing ticket fails."""
        result = await update_ticket(UpdateTicketInput(ticket_id="TKT_404", status="resolved"), context)

        assert result.error == "Ticket not found: TKT_404"

    @pytest.mark.asyncio
    async def test_escalate(self, context, store):
        """Test that escalation sets status and records the reason and notes."""
        result = await escalate_ticket(
            EscalateTicketInput(ticket_id="TKT_002", reason="Billing dispute", notes="Charged twice"), context
        )

        assert result.success
        assert result.data["status"] == "escalated"
        assert result.data["customer_name"] == "Maria Garcia"
        assert result.data["message"] == "Ticket has been escalated successfully"
        event = store.events[-1]
        assert event.event_type == "escalated"
        assert event.new_value == "Billing dispute"
        assert event.metadata == {"notes": "Charged twice"}
        assert (await store.get_ticket("TKT_002")).status == "escalated"

    @pytest.mark.asyncio
    async def test_escalate_unknown_ticket(self, context):
        """Test that escalating a missing ticket fails."""
        result = await escalate_ticket(EscalateTicketInput(ticket_id="TKT_404", reason="x"), context)

        assert result.success is False
        assert "TKT_404" in result.error


SUMMARY_TEXT = """Main issue: Customer's camera is not detected in the studio before a webinar.
Key points:
- Using Chrome
- Restarted the browser twice
Current status: open
Customer sentiment: frustrated
Recommended next action: Walk the customer through browser camera permissions."""


class TestTicketSummary:
    """Tests for the LLM-backed ticket summary."""

    @pytest.mark.asyncio
    async def test_summary_parses_sections(self, context):
        """Test that summary sections are extracted from the model answer."""
        llm = FakeCompletionClient(SUMMARY_TEXT)
        tool = create_get_ticket_summary_tool(llm)

        result = await run_tool(tool, {"ticket_id": "TKT_001"}, context)

        assert result.data == {
            "issue": "Customer's camera is not detected in the studio before a webinar.",
            "key_points": ["Using Chrome", "Restarted the browser twice"],
            "current_status": "open",
            "customer_sentiment": "frustrated",
            "recommended_action": "Walk the customer through browser camera permissions.",
            "message_count": 3,
        }
        assert "[Customer]: My camera isn't showing up" in llm.prompts[0]
        assert "[Agent]: Sorry about that!" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_summary_without_messages(self, context):
        """Test that tickets without messages skip the model call."""
        llm = FakeCompletionClient(SUMMARY_TEXT)

        result = await run_tool(create_get_ticket_summary_tool(llm), {"ticket_id": "TKT_003"}, context)

        assert result.data["issue"] == "No messages in this ticket yet"
        assert result.data["message_count"] == 0
        assert llm.prompts == []

    def test_section_defaults(self):
        """Test extraction fallbacks when sections are missing."""
        assert extract_section("nothing useful", "Main issue", "default") == "default"
        assert extract_list_section("nothing useful", "Key points") == []


class TestSentimentAnalysis:
    """Tests for sentiment analysis parsing and clamping."""

    @pytest.mark.asyncio
    async def test_json_answer(self, context):
        """Test that a JSON answer is used and only customer messages are sent."""
        llm = FakeCompletionClient(
            'Here is the analysis:\n{"score": 2, "indicators": ["really frustrating"], '
            '"trend": "declining", "riskLevel": "high", "summary": "Customer is upset"}'
        )

        result = await run_tool(create_analyze_sentiment_tool(llm), {"ticket_id": "TKT_001"}, context)

        assert result.data == {
            "score": 2,
            "indicators": ["really frustrating"],
            "trend": "declining",
            "riskLevel": "high",
            "summary": "Customer is upset",
            "message_count": 2,
            "ticket_id": "TKT_001",
        }
        assert "Message 1: My camera isn't showing up" in llm.prompts[0]
        assert "Which browser" not in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_out_of_range_values_are_clamped(self, context):
        """Test that invalid score, trend and risk are corrected."""
        llm = FakeCompletionClient('{"score": 9, "trend": "sideways", "riskLevel": "extreme"}')

        result = await run_tool(create_analyze_sentiment_tool(llm), {"ticket_id": "TKT_001"}, context)

        assert result.data["score"] == 5
        assert result.data["trend"] == "stable"
        assert result.data["riskLevel"] == "medium"
        assert result.data["summary"] == "Sentiment analysis complete"

    @pytest.mark.asyncio
    async def test_free_text_answer_is_inferred(self, context):
        """Test that a non-JSON answer falls back to keyword inference."""
        llm = FakeCompletionClient("The customer is very frustrated and may churn. Thanks for the help")

        result = await run_tool(create_analyze_sentiment_tool(llm), {"ticket_id": "TKT_001"}, context)

        assert result.data["score"] == 1
        assert result.data["riskLevel"] == "high"
        assert result.data["indicators"] == ["Thanks", "frustrated", "help"]

    @pytest.mark.asyncio
    async def test_no_customer_messages(self, context):
        """Test the neutral default when there is nothing to analyze."""
        llm = FakeCompletionClient("unused")

        result = await run_tool(create_analyze_sentiment_tool(llm), {"ticket_id": "TKT_003"}, context)

        assert result.data["score"] == 3
        assert result.data["riskLevel"] == "low"
        assert result.data["message_count"] == 0
        assert llm.prompts == []

    def test_inference_scores(self):
        """Test keyword inference across the score range."""
        assert infer_sentiment_from_text("They seem delighted")["score"] == 5
        assert infer_sentiment_from_text("Customer is satisfied, low risk")["score"] == 4
        assert infer_sentiment_from_text("Neutral tone")["score"] == 3
        assert infer_sentiment_from_text("Neutral tone")["indicators"] == ["General tone assessment"]
        assert infer_sentiment_from_text("Getting better now")["trend"] == "improving"
        assert infer_sentiment_from_text("x" * 250)["summary"] == "x" * 200 + "..."


class TestKnowledgeTools:
    """Tests for knowledge base search and browse."""

    @pytest.mark.asyncio
    async def test_search_ranks_and_cites_sources(self, context):
        """Test that results are ranked and carry source file and section."""
        result = await search_knowledge_base(SearchKnowledgeBaseInput(query="camera not detected"), context)

        articles = result.data["articles"]
        assert [a["id"] for a in articles] == ["KB_001", "KB_002"]
        assert articles[0]["similarity"] == 1.0
        assert articles[1]["similarity"] == 0.33
        assert articles[0]["source_file"] == "09-studio-media-controls.md"
        assert articles[0]["section"] == "Troubleshooting"
        assert result.data["category_filter"] is None

    @pytest.mark.asyncio
    async def test_search_category_filter(self, context):
        """Test that the category filter narrows results."""
        billing = await search_knowledge_base(SearchKnowledgeBaseInput(query="plans", category="Foundation"), context)
        admin = await search_knowledge_base(SearchKnowledgeBaseInput(query="plans", category="Admin"), context)

        assert [a["id"] for a in billing.data["articles"]] == ["KB_003"]
        assert admin.data["count"] == 0
        assert admin.data["category_filter"] == "Admin"

    @pytest.mark.asyncio
    async def test_search_truncates_long_content(self, context, store):
        """Test that article content is cut to a snippet."""
        store.articles.append(
            KnowledgeArticle(id="KB_LONG", title="Webcam guide", content="webcam " * 100, source_file="99-long.md")
        )

        result = await search_knowledge_base(SearchKnowledgeBaseInput(query="webcam"), context)

        content = result.data["articles"][0]["content"]
        assert len(content) == 503
        assert content.endswith("...")

    @pytest.mark.asyncio
    async def test_browse_whole_article(self, context):
        """Test that browsing returns every section of a source file."""
        result = await browse_kb_article(BrowseKbArticleInput(source_file="09-studio-media-controls.md"), context)

        assert [s["section"] for s in result.data["sections"]] == ["Troubleshooting", "Device selection"]
        assert result.data["category"] == "Studio Core"

    @pytest.mark.asyncio
    async def test_browse_section(self, context):
        """Test that a section filter narrows the article."""
        result = await browse_kb_article(
            BrowseKbArticleInput(source_file="09-studio-media-controls.md", section="trouble"), context
        )

        assert [s["section"] for s in result.data["sections"]] == ["Troubleshooting"]
        assert result.data["content"].startswith("If your camera is not detected")

    @pytest.mark.asyncio
    async def test_browse_missing(self, context):
        """Test failures for unknown files and sections."""
        missing_file = await browse_kb_article(BrowseKbArticleInput(source_file="nope.md"), context)
        missing_section = await browse_kb_article(
            BrowseKbArticleInput(source_file="02-plans-and-pricing.md", section="Security"), context
        )

        assert missing_file.error == "Knowledge base article not found: nope.md"
        assert missing_section.error == "Section 'Security' not found in 02-plans-and-pricing.md"


class TestGenerateResponse:
    """Tests for draft response generation."""

    @pytest.mark.asyncio
    async def test_parsed_responses(self, context):
        """Test that JSON drafts are returned with ticket context in the prompt."""
        llm = FakeCompletionClient(
            'Options:\n{"responses": [{"type": "apologetic", "content": "Sorry Maria, let\'s fix this.", '
            '"confidence": 85}]}'
        )

        result = await run_tool(
            create_generate_response_tool(llm), {"ticket_id": "TKT_001", "tone": "apologetic"}, context
        )

        assert result.data["responses"] == [
            {"type": "apologetic", "content": "Sorry Maria, let's fix this.", "confidence": 85}
        ]
        assert result.data["requested_tone"] == "apologetic"
        assert result.data["kb_articles_used"] is True
        prompt = llm.prompts[0]
        assert "Customer: Maria Garcia" in prompt
        assert "**Camera and microphone troubleshooting**" in prompt
        assert "[Customer]: Chrome. I already restarted it twice." in prompt
        assert "Requested tone: apologetic" in prompt
        assert llm.max_tokens == [1500]

    @pytest.mark.asyncio
    async def test_malformed_json_uses_raw_text(self, context):
        """Test that unparseable JSON becomes a single draft at confidence 70."""
        llm = FakeCompletionClient('{"responses": [oops]}')

        result = await run_tool(create_generate_response_tool(llm), {"ticket_id": "TKT_001", "tone": "formal"}, context)

        assert result.data["responses"] == [{"type": "formal", "content": '{"responses": [oops]}', "confidence": 70}]

    @pytest.mark.asyncio
    async def test_no_json_uses_template(self, context):
        """Test the template fallback when the model returns no drafts."""
        llm = FakeCompletionClient("I can't help with that.")

        result = await run_tool(create_generate_response_tool(llm), {"ticket_id": "TKT_001"}, context)

        (draft,) = result.data["responses"]
        assert draft["confidence"] == 50
        assert draft["type"] == "friendly"
        assert draft["content"].startswith("Hi Maria Garcia,")
        assert result.data["requested_tone"] == "friendly"

    @pytest.mark.asyncio
    async def test_without_knowledge_base(self, context):
        """Test that include_kb false skips the knowledge search."""
        llm = FakeCompletionClient('{"responses": []}')

        result = await run_tool(
            create_generate_response_tool(llm), {"ticket_id": "TKT_002", "include_kb": False}, context
        )

        assert "No knowledge base articles searched." in llm.prompts[0]
        assert result.data["kb_articles_used"] is False

    @pytest.mark.asyncio
    async def test_unknown_ticket(self, context):
        """Test that a missing ticket fails before calling the model."""
        llm = FakeCompletionClient("unused")

        result = await run_tool(create_generate_response_tool(llm), {"ticket_id": "TKT_404"}, context)

        assert result.error == "Ticket not found: TKT_404"
        assert llm.prompts == []


class TestProcessRefund:
    """Tests for the simulated refund tool."""

    @pytest.fixture(autouse=True)
    def no_delay(self, monkeypatch):
        """Skip the simulated processing delay."""
        monkeypatch.setattr(refund, "PROCESSING_DELAY", 0)

    @pytest.mark.asyncio
    async def test_refund_processed(self, context):
        """Test a refund within limits."""
        result = await process_refund(
            ProcessRefundInput(order_id="ORD_1", amount=49.99, reason="Duplicate charge"), context
        )

        assert result.success
        assert result.data["refund_id"].startswith("rf_mock_")
        assert result.data["status"] == "processed"
        assert result.data["currency"] == "USD"
        assert result.data["message"] == "[MOCK] Refund of $49.99 has been processed for order ORD_1"

    @pytest.mark.asyncio
    async def test_refund_ids_are_unique(self, context):
        """Test that each refund gets its own ID."""
        params = ProcessRefundInput(order_id="ORD_1", amount=10, reason="x")

        first = await process_refund(params, context)
        second = await process_refund(params, context)

        assert first.data["refund_id"] != second.data["refund_id"]

    @pytest.mark.asyncio
    async def test_refund_at_limit(self, context):
        """Test that the maximum amount is allowed."""
        result = await process_refund(ProcessRefundInput(order_id="ORD_1", amount=10000, reason="x"), context)

        assert result.success

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("amount", "error"),
        [
            (0, "order_id, amount, and reason are all required"),
            (-5, "Refund amount must be greater than 0"),
            (10000.01, "Refund amount exceeds maximum limit of $10,000. Please escalate for manual review."),
        ],
    )
    async def test_refund_amount_bounds(self, context, amount, error):
        """Test rejected amounts."""
        result = await process_refund(ProcessRefundInput(order_id="ORD_1", amount=amount, reason="x"), context)

        assert result.error == error
