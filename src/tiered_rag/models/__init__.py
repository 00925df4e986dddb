"""
Data models for the Tiered RAG core.
"""

from tiered_rag.models.knowledge import (
    TIER_ORDER,
    TIER_SOURCE_LABELS,
    Chunk,
    ContextResult,
    DocumentStats,
    KnowledgeTier,
    ProcessDocumentResult,
    RankedChunk,
    RetrievalConfig,
    ScopeFilter,
    ScopeKey,
    ScoredChunk,
    TextStats,
    TierStats,
)

__all__ = [
    "TIER_ORDER",
    "TIER_SOURCE_LABELS",
    "Chunk",
    "ContextResult",
    "DocumentStats",
    "KnowledgeTier",
    "ProcessDocumentResult",
    "RankedChunk",
    "RetrievalConfig",
    "ScopeFilter",
    "ScopeKey",
    "ScoredChunk",
    "TextStats",
    "TierStats",
]
