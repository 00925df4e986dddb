"""
Context Formatter

Renders ranked chunks as a markdown block for prompt injection, grouped by
knowledge tier in a fixed order.
"""

from typing import Dict, List, Optional, Sequence

from tiered_rag.models.knowledge import TIER_ORDER, KnowledgeTier, RankedChunk

CONTEXT_HEADER = "# Relevant Context\n\n"
NO_CONTEXT_PLACEHOLDER = "# No Relevant Context Found\n\nNo documents matched the query."

TIER_HEADINGS: Dict[KnowledgeTier, str] = {
    KnowledgeTier.GLOBAL: "Company Knowledge (Mission, Values, Brand Guide)",
    KnowledgeTier.SCOPED: "Agent-Specific Documents",
    KnowledgeTier.SHARED: "Shared Playbooks",
}


def relevance_percent(score: float) -> float:
    return round(score * 100, 1)


class ContextFormatter:
    """Markdown renderer for ranked chunks."""

    def __init__(self, headings: Optional[Dict[KnowledgeTier, str]] = None):
        self.headings = headings or TIER_HEADINGS

    def format(self, ranked_chunks: Sequence[RankedChunk]) -> str:
        """
        Render chunks grouped by tier.

        Within a tier chunks keep their ranked order and are numbered from 1.
        Empty input yields a placeholder, never an empty string.
        """
        if not ranked_chunks:
            return NO_CONTEXT_PLACEHOLDER

        groups: Dict[KnowledgeTier, List[RankedChunk]] = {tier: [] for tier in TIER_ORDER}
        for chunk in ranked_chunks:
            groups[chunk.knowledge_tier].append(chunk)

        parts = [CONTEXT_HEADER]
        for tier in TIER_ORDER:
            chunks = groups[tier]
            if not chunks:
                continue
            parts.append(f"## {self.headings[tier]}\n\n")
            for index, chunk in enumerate(chunks, start=1):
                parts.append(
                    f"### {chunk.source_label} - Excerpt {index} "
                    f"(Relevance: {relevance_percent(chunk.combined_score):.1f}%)\n"
                    f"{chunk.content}\n\n---\n\n"
                )

        return "".join(parts)
