"""Support desk store interface and implementations."""

import re
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from copilot.models.support import (
    Customer,
    KnowledgeArticle,
    KnowledgeHit,
    SenderType,
    Ticket,
    TicketEvent,
    TicketMessage,
    TicketStatus,
)
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

_WORD = re.compile(r"[a-z0-9]+")


class SupportStore(Protocol):
    """Interface for the support desk backing store.

    Implementations must tolerate concurrent use from independent copilot runs;
    the agent loop performs no locking of its own.
    """

    async def get_customer(self, customer_id: str) -> Customer | None:
        """Fetch a customer by ID."""
        ...

    async def find_customer_by_email(self, email: str) -> Customer | None:
        """Fetch a customer by email, case-insensitively."""
        ...

    async def update_customer(self, customer_id: str, updates: dict[str, Any]) -> Customer | None:
        """Apply field updates to a customer and return the stored record."""
        ...

    async def list_tickets(
        self,
        customer_id: str | None = None,
        status: TicketStatus | None = None,
        query: str | None = None,
        limit: int = 10,
    ) -> list[Ticket]:
        """List tickets newest first, filtered by customer, status and subject text."""
        ...

    async def count_tickets(self, customer_id: str) -> int:
        """Count all tickets belonging to a customer."""
        ...

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        """Fetch a ticket by ID."""
        ...

    async def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> Ticket | None:
        """Apply field updates to a ticket and return the stored record."""
        ...

    async def record_ticket_event(self, event: TicketEvent) -> None:
        """Append an entry to a ticket's audit trail."""
        ...

    async def list_messages(
        self, ticket_id: str, sender_type: SenderType | None = None, limit: int | None = None
    ) -> list[TicketMessage]:
        """List ticket messages oldest first; with a limit, the most recent ones."""
        ...

    async def search_knowledge(self, query: str, limit: int = 5) -> list[KnowledgeHit]:
        """Rank knowledge base articles against a query."""
        ...

    async def get_articles_by_source(self, source_file: str) -> list[KnowledgeArticle]:
        """Fetch every article chunk ingested from one source file."""
        ...


class InMemorySupportStore:
    """In-memory support store seeded with demo data.

    Every method completes without yielding to the event loop, so individual
    operations are atomic with respect to other tasks.
    """

    def __init__(self):
        """Initialize the store with mock customers, tickets and articles."""
        self.customers: dict[str, Customer] = {c.id: c for c in self._create_mock_customers()}
        self.tickets: dict[str, Ticket] = {t.id: t for t in self._create_mock_tickets()}
        self.messages: list[TicketMessage] = self._create_mock_messages()
        self.events: list[TicketEvent] = []
        self.articles: list[KnowledgeArticle] = self._create_mock_articles()

    async def get_customer(self, customer_id: str) -> Customer | None:
        return self.customers.get(customer_id)

    async def find_customer_by_email(self, email: str) -> Customer | None:
        wanted = email.strip().lower()
        for customer in self.customers.values():
            if customer.email and customer.email.lower() == wanted:
                return customer
        return None

    async def update_customer(self, customer_id: str, updates: dict[str, Any]) -> Customer | None:
        customer = self.customers.get(customer_id)
        if customer is None:
            return None
        updated = replace(customer, **updates)
        self.customers[customer_id] = updated
        return updated

    async def list_tickets(
        self,
        customer_id: str | None = None,
        status: TicketStatus | None = None,
        query: str | None = None,
        limit: int = 10,
    ) -> list[Ticket]:
        matches = []
        for ticket in self.tickets.values():
            if customer_id and ticket.customer_id != customer_id:
                continue
            if status and ticket.status != status:
                continue
            if query and query.lower() not in ticket.subject.lower() and query.lower() != ticket.id.lower():
                continue
            matches.append(ticket)

        matches.sort(key=lambda t: t.created_at, reverse=True)
        return matches[:limit]

    async def count_tickets(self, customer_id: str) -> int:
        return sum(1 for ticket in self.tickets.values() if ticket.customer_id == customer_id)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        return self.tickets.get(ticket_id)

    async def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> Ticket | None:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            return None
        updated = replace(ticket, **updates)
        self.tickets[ticket_id] = updated
        return updated

    async def record_ticket_event(self, event: TicketEvent) -> None:
        logger.debug(f"Ticket {event.ticket_id} event: {event.event_type} -> {event.new_value}")
        self.events.append(event)

    async def list_messages(
        self, ticket_id: str, sender_type: SenderType | None = None, limit: int | None = None
    ) -> list[TicketMessage]:
        messages = [
            m
            for m in self.messages
            if m.ticket_id == ticket_id and (sender_type is None or m.sender_type == sender_type)
        ]
        messages.sort(key=lambda m: m.created_at)
        if limit is not None:
            messages = messages[-limit:]
        return messages

    async def search_knowledge(self, query: str, limit: int = 5) -> list[KnowledgeHit]:
        # Stand-in for the hybrid retrieval service: plain term overlap.
        terms = set(_WORD.findall(query.lower()))
        if not terms:
            return []

        hits = []
        for article in self.articles:
            words = set(_WORD.findall(f"{article.title} {article.content}".lower()))
            overlap = len(terms & words)
            if overlap:
                hits.append(KnowledgeHit(article=article, similarity=overlap / len(terms)))

        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:limit]

    async def get_articles_by_source(self, source_file: str) -> list[KnowledgeArticle]:
        return [a for a in self.articles if a.source_file == source_file]

    def _create_mock_customers(self) -> list[Customer]:
        """Create mock customer data for development."""
        now = datetime.now(UTC)
        return [
            Customer(
                id="CUS_001",
                name="Maria Garcia",
                email="maria@example.com",
                created_at=now - timedelta(days=240),
                preferred_language="es",
                metadata={"plan": "Business"},
            ),
            Customer(
                id="CUS_002",
                name="Dev Patel",
                email="dev.patel@example.com",
                created_at=now - timedelta(days=45),
                preferred_language="en",
                metadata={"plan": "Basic"},
            ),
        ]

    def _create_mock_tickets(self) -> list[Ticket]:
        """Create mock ticket data for development."""
        now = datetime.now(UTC)
        return [
            Ticket(
                id="TKT_001",
                customer_id="CUS_001",
                subject="Camera not detected in studio",
                status="open",
                priority="high",
                created_at=now - timedelta(hours=3),
                updated_at=now - timedelta(hours=1),
                tags=["studio"],
            ),
            Ticket(
                id="TKT_002",
                customer_id="CUS_001",
                subject="Charged twice for Business plan",
                status="pending",
                priority="normal",
                created_at=now - timedelta(days=2),
                updated_at=now - timedelta(days=1),
                tags=["billing"],
            ),
            Ticket(
                id="TKT_003",
                customer_id="CUS_002",
                subject="How do I start a breakout room?",
                status="resolved",
                priority="low",
                created_at=now - timedelta(days=10),
                updated_at=now - timedelta(days=9),
            ),
        ]

    def _create_mock_messages(self) -> list[TicketMessage]:
        """Create mock ticket conversations for development."""
        now = datetime.now(UTC)
        return [
            TicketMessage(
                id="MSG_001",
                ticket_id="TKT_001",
                sender_type="customer",
                content="My camera isn't showing up in the studio and my webinar starts in an hour!",
                created_at=now - timedelta(hours=3),
            ),
            TicketMessage(
                id="MSG_002",
                ticket_id="TKT_001",
                sender_type="agent",
                content="Sorry about that! Which browser are you using?",
                created_at=now - timedelta(hours=2, minutes=50),
            ),
            TicketMessage(
                id="MSG_003",
                ticket_id="TKT_001",
                sender_type="customer",
                content="Chrome. I already restarted it twice. This is really frustrating.",
                created_at=now - timedelta(hours=2, minutes=40),
            ),
            TicketMessage(
                id="MSG_004",
                ticket_id="TKT_002",
                sender_type="customer",
                content="I was billed twice this month for the Business plan. Please refund one charge.",
                created_at=now - timedelta(days=2),
            ),
        ]

    def _create_mock_articles(self) -> list[KnowledgeArticle]:
        """Create mock knowledge base chunks for development."""
        return [
            KnowledgeArticle(
                id="KB_001",
                title="Camera and microphone troubleshooting",
                content=(
                    "If your camera is not detected, check browser permissions, close other apps using "
                    "the camera, and reload the studio. Chrome and Edge are fully supported."
                ),
                source_file="09-studio-media-controls.md",
                category="Studio Core",
                section="Troubleshooting",
            ),
            KnowledgeArticle(
                id="KB_002",
                title="Selecting media devices",
                content="Open the media controls panel and pick your camera and microphone from the device list.",
                source_file="09-studio-media-controls.md",
                category="Studio Core",
                section="Device selection",
            ),
            KnowledgeArticle(
                id="KB_003",
                title="Plans and pricing",
                content=(
                    "The Basic plan includes 1 room and 50 meeting participants. The Business plan includes "
                    "5 rooms, breakout rooms, whiteboard and RTMP streaming. Duplicate charges are refunded "
                    "within 5 business days."
                ),
                source_file="02-plans-and-pricing.md",
                category="Foundation",
                section="Billing",
            ),
            KnowledgeArticle(
                id="KB_004",
                title="Breakout rooms",
                content="Breakout rooms are available on the Business plan. Hosts can open them from the studio.",
                source_file="18-studio-collaboration.md",
                category="Studio Features",
            ),
        ]


_support_store: SupportStore | None = None


def get_support_store() -> SupportStore:
    """Get or create the support store instance."""
    global _support_store
    if _support_store is None:
        _support_store = InMemorySupportStore()
    return _support_store
