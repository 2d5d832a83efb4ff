"""
Hierarchical memory retrieval.

Memories are searched level by level, coarsest first, so that monthly and
weekly summaries anchor a prompt before daily summaries and raw events.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional

from journal_engine.core.logging import logger
from journal_engine.db.models import (
    FragmentMetadata,
    HierarchyLevel,
    MemoryFragment,
    MemoryRetrievalResult,
)


NO_MEMORIES = "No relevant memories found."
TRUNCATION_MARKER = "...\n"

# Rough token estimate
CHARS_PER_TOKEN = 4

LEVEL_ORDER = [
    HierarchyLevel.MONTHLY,
    HierarchyLevel.WEEKLY,
    HierarchyLevel.DAILY,
    HierarchyLevel.RAW,
]

LEVEL_LABELS = {
    HierarchyLevel.MONTHLY: "Monthly Insights",
    HierarchyLevel.WEEKLY: "Weekly Patterns",
    HierarchyLevel.DAILY: "Daily Summaries",
    HierarchyLevel.RAW: "Raw Events",
}

EmbedFn = Callable[[str], Awaitable[List[float]]]
# (embedding, user_id, threshold, count, match_type) -> rows
SearchFn = Callable[..., Awaitable[List[Dict[str, Any]]]]


def _to_fragment(row: Dict[str, Any]) -> MemoryFragment:
    metadata = row.get("metadata") or {}
    return MemoryFragment(
        content=row.get("content", ""),
        metadata=FragmentMetadata(
            source_id=metadata.get("source_id"),
            date=metadata.get("date"),
            type=metadata.get("type"),
        ),
        similarity=min(max(float(row.get("similarity", 0.0)), 0.0), 1.0),
    )


class MemoryRetriever:
    """Multi-level similarity search over a user's memories."""

    def __init__(self, embed: EmbedFn, search: SearchFn):
        self.embed = embed
        self.search = search

    async def retrieve(
        self,
        query: str,
        user_id: str,
        threshold: float = 0.5,
        limit_per_level: int = 5,
    ) -> List[MemoryRetrievalResult]:
        """
        Retrieve fragments for a query from every hierarchy level.

        The query is embedded once. Within a level fragments are ordered by
        descending similarity; levels with no fragment at or above the
        threshold are left out.

        Args:
            query: Text to search for
            user_id: Owner of the memories
            threshold: Minimum similarity to keep a fragment
            limit_per_level: Maximum fragments per level

        Returns:
            Results ordered monthly, weekly, daily, raw
        """
        embedding = await self.embed(query)

        results: List[MemoryRetrievalResult] = []
        for level in LEVEL_ORDER:
            rows = await self.search(
                embedding,
                user_id,
                threshold,
                limit_per_level,
                level.match_type,
            )
            fragments = [_to_fragment(row) for row in rows]
            fragments = [f for f in fragments if f.similarity >= threshold]
            fragments.sort(key=lambda f: f.similarity, reverse=True)
            fragments = fragments[:limit_per_level]

            if fragments:
                results.append(MemoryRetrievalResult(hierarchy_level=level, fragments=fragments))

        total = sum(r.total_found for r in results)
        logger.info(f"Retrieved {total} memory fragments across {len(results)} levels for user {user_id}")
        return results


def _section_header(level: HierarchyLevel) -> str:
    return f"\n## {LEVEL_LABELS[level]}\n\n"


def format_memory_for_prompt(results: List[MemoryRetrievalResult]) -> str:
    """Render retrieval results as markdown sections, one per level."""
    if not results:
        return NO_MEMORIES

    formatted = ""
    for result in results:
        formatted += _section_header(result.hierarchy_level)
        for fragment in result.fragments:
            formatted += f"- {fragment.content}\n"
            if fragment.metadata.date:
                formatted += f"  (Date: {fragment.metadata.date})\n"
    return formatted


def get_memory_context(
    results: List[MemoryRetrievalResult],
    max_tokens: int = 2000,
) -> str:
    """
    Render retrieval results within a character budget of max_tokens * 4.

    Whole section headers and fragments are emitted in retrieval order. The
    first unit that does not fit ends the output and a truncation marker is
    appended after it.
    """
    if not results:
        return NO_MEMORIES

    max_chars = max_tokens * CHARS_PER_TOKEN
    context = ""

    for result in results:
        units = [_section_header(result.hierarchy_level)]
        units.extend(f"- {fragment.content}\n" for fragment in result.fragments)

        for unit in units:
            if len(context) + len(unit) > max_chars:
                return context + TRUNCATION_MARKER
            context += unit

    return context or NO_MEMORIES


def merge_results(batches: List[List[MemoryRetrievalResult]]) -> List[MemoryRetrievalResult]:
    """
    Merge several retrievals into one, keeping level order and dropping
    duplicate fragments (same content), highest similarity first.
    """
    by_level: Dict[HierarchyLevel, Dict[str, MemoryFragment]] = {}
    for batch in batches:
        for result in batch:
            fragments = by_level.setdefault(result.hierarchy_level, {})
            for fragment in result.fragments:
                current: Optional[MemoryFragment] = fragments.get(fragment.content)
                if current is None or fragment.similarity > current.similarity:
                    fragments[fragment.content] = fragment

    merged: List[MemoryRetrievalResult] = []
    for level in LEVEL_ORDER:
        fragments = list(by_level.get(level, {}).values())
        if fragments:
            fragments.sort(key=lambda f: f.similarity, reverse=True)
            merged.append(MemoryRetrievalResult(hierarchy_level=level, fragments=fragments))
    return merged
