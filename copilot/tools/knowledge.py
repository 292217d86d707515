"""Knowledge base search and browse tools."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from copilot.models.agent import ToolContext, ToolResult
from copilot.models.support import KnowledgeHit
from copilot.services.store import SupportStore
from copilot.tools.base import ToolDefinition

KnowledgeCategory = Literal["Foundation", "Studio Core", "Studio Features", "Admin", "General"]

SNIPPET_LENGTH = 500


class SearchKnowledgeBaseInput(BaseModel):
    """Input schema for knowledge base search."""

    query: str = Field(..., description="The search query to find relevant articles")
    category: KnowledgeCategory | None = Field(default=None, description="Filter by KB category")
    limit: int | None = Field(default=None, ge=1, le=20, description="Maximum number of articles (default: 5)")


class BrowseKbArticleInput(BaseModel):
    """Input schema for reading a full knowledge base article."""

    source_file: str = Field(
        ...,
        description='The KB source file name (e.g., "02-plans-and-pricing.md", "09-studio-media-controls.md")',
    )
    section: str | None = Field(
        default=None, description="Optional section name to filter to a specific part of the article"
    )


async def find_articles(
    store: SupportStore, query: str, limit: int, category: str | None = None
) -> list[KnowledgeHit]:
    """Ranked knowledge hits, optionally narrowed to one category."""
    if category is None:
        return await store.search_knowledge(query, limit=limit)

    # Over-fetch so filtering still leaves up to ``limit`` hits.
    hits = await store.search_knowledge(query, limit=limit * 4)
    wanted = category.lower()
    return [h for h in hits if (h.article.category or "").lower() == wanted][:limit]


def snippet(content: str) -> str:
    if len(content) > SNIPPET_LENGTH:
        return content[:SNIPPET_LENGTH] + "..."
    return content


async def search_knowledge_base(params: SearchKnowledgeBaseInput, context: ToolContext) -> ToolResult:
    """Search the knowledge base and return ranked snippets with their sources."""
    if not params.query:
        return ToolResult.fail("query is required")

    hits = await find_articles(context.store, params.query, params.limit or 5, params.category)
    articles = [
        {
            "id": hit.article.id,
            "title": hit.article.title,
            "content": snippet(hit.article.content),
            "category": hit.article.category,
            "source_file": hit.article.source_file,
            "section": hit.article.section,
            "similarity": round(hit.similarity, 2),
        }
        for hit in hits
    ]

    return ToolResult.ok(
        {
            "articles": articles,
            "count": len(articles),
            "query": params.query,
            "category_filter": params.category,
        }
    )


async def browse_kb_article(params: BrowseKbArticleInput, context: ToolContext) -> ToolResult:
    """Return the full text of a knowledge base source file, optionally one section."""
    if not params.source_file:
        return ToolResult.fail("source_file is required")

    chunks = await context.store.get_articles_by_source(params.source_file)
    if not chunks:
        return ToolResult.fail(f"Knowledge base article not found: {params.source_file}")

    if params.section:
        wanted = params.section.lower()
        chunks = [c for c in chunks if c.section and wanted in c.section.lower()]
        if not chunks:
            return ToolResult.fail(f"Section '{params.section}' not found in {params.source_file}")

    sections: list[dict[str, Any]] = [
        {"section": c.section, "title": c.title, "content": c.content} for c in chunks
    ]
    return ToolResult.ok(
        {
            "source_file": params.source_file,
            "category": chunks[0].category,
            "section_filter": params.section,
            "sections": sections,
            "content": "\n\n".join(c.content for c in chunks),
        }
    )


def create_search_knowledge_base_tool() -> ToolDefinition:
    return ToolDefinition(
        name="search_knowledge_base",
        description=(
            "Search the R-Link knowledge base for articles about platform features, plans, troubleshooting "
            "and setup. Results include the source file and section to cite."
        ),
        input_schema_class=SearchKnowledgeBaseInput,
        handler=search_knowledge_base,
    )


def create_browse_kb_article_tool() -> ToolDefinition:
    return ToolDefinition(
        name="browse_kb_article",
        description=(
            "Read the full content of a specific R-Link knowledge base article by its source file name. "
            "Use this when you found a relevant article via search and need the complete context, not just "
            'a snippet. Files are named like "02-plans-and-pricing.md", "31-troubleshooting.md", etc.'
        ),
        input_schema_class=BrowseKbArticleInput,
        handler=browse_kb_article,
    )
