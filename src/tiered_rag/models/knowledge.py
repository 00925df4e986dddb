"""
Knowledge models for the Tiered RAG core.

This module defines the chunk record persisted by document stores, the
per-consumer retrieval configuration, and the ephemeral results produced by
retrieval and ingestion.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeTier(str, Enum):
    """Knowledge tier of a chunk; determines which consumers can see it."""

    GLOBAL = "global"
    SCOPED = "scoped"
    SHARED = "shared"


# Fixed rendering and reporting order
TIER_ORDER: List[KnowledgeTier] = [KnowledgeTier.GLOBAL, KnowledgeTier.SCOPED, KnowledgeTier.SHARED]

TIER_SOURCE_LABELS: Dict[KnowledgeTier, str] = {
    KnowledgeTier.GLOBAL: "Company Knowledge",
    KnowledgeTier.SCOPED: "Agent Document",
    KnowledgeTier.SHARED: "Playbook",
}


class Chunk(BaseModel):
    """A bounded slice of a source document with its vector and scope."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique, stable chunk identifier")
    tenant_id: str = Field(..., min_length=1, description="Owning tenant")
    knowledge_tier: KnowledgeTier = Field(..., description="Knowledge tier")
    scope_owner_id: Optional[str] = Field(None, description="Scoped entity, e.g. an agent")
    content: str = Field(..., description="Chunk text")
    vector: Optional[List[float]] = Field(None, description="Embedding vector")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Open key-value metadata")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("content must not be empty")
        return v

    @field_validator("created_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def validate_scope(self) -> "Chunk":
        if self.knowledge_tier == KnowledgeTier.SCOPED and not self.scope_owner_id:
            raise ValueError("scoped chunks require a scope_owner_id")
        return self

    @property
    def scope_key(self) -> "ScopeKey":
        return ScopeKey(
            tenant_id=self.tenant_id,
            knowledge_tier=self.knowledge_tier,
            scope_owner_id=self.scope_owner_id,
        )

    @property
    def chunk_index(self) -> int:
        return int(self.metadata.get("chunk_index", 0))

    def sort_key(self):
        """Creation order: earlier chunk first, then position in its document."""
        return (self.created_at, self.chunk_index, self.id)


class ScopeKey(BaseModel):
    """The (tenant, tier, scope owner) triple an ingestion run replaces."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    knowledge_tier: KnowledgeTier
    scope_owner_id: Optional[str] = None

    def as_string(self) -> str:
        return f"{self.tenant_id}:{self.knowledge_tier.value}:{self.scope_owner_id or ''}"


class ScopeFilter(BaseModel):
    """Visibility rules applied identically by every store query."""

    model_config = ConfigDict(frozen=True)

    scope_owner_id: Optional[str] = None
    include_global: bool = True
    include_shared: bool = True

    @property
    def is_empty(self) -> bool:
        return not (self.include_global or self.include_shared or self.scope_owner_id)

    def allows(self, chunk: Chunk) -> bool:
        if chunk.knowledge_tier == KnowledgeTier.GLOBAL:
            return self.include_global
        if chunk.knowledge_tier == KnowledgeTier.SHARED:
            return self.include_shared
        return self.scope_owner_id is not None and chunk.scope_owner_id == self.scope_owner_id


class RetrievalConfig(BaseModel):
    """Retrieval settings of one consumer, e.g. an agent."""

    include_global_tier: bool = Field(True, description="Include company-wide knowledge")
    include_shared_tier: bool = Field(True, description="Include shared playbooks")
    max_results: int = Field(10, ge=1, description="Maximum chunks returned")
    semantic_weight: float = Field(0.7, ge=0.0, le=1.0, description="Weight of vector similarity")
    keyword_scale: float = Field(10.0, gt=0.0, description="Lexical rank normalisation factor")
    similarity_threshold: float = Field(0.6, ge=0.0, le=1.0, description="Minimum cosine similarity")

    def scope_filter(self, scope_owner_id: Optional[str]) -> ScopeFilter:
        return ScopeFilter(
            scope_owner_id=scope_owner_id,
            include_global=self.include_global_tier,
            include_shared=self.include_shared_tier,
        )


class ScoredChunk(BaseModel):
    """A chunk returned by a store query together with its raw score."""

    chunk: Chunk
    score: float


class RankedChunk(BaseModel):
    """A retrieval result after hybrid scoring."""

    chunk_id: str
    content: str
    knowledge_tier: KnowledgeTier
    scope_owner_id: Optional[str] = None
    source_label: str
    semantic_score: float = 0.0
    keyword_score: float = 0.0
    combined_score: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class TierStats(BaseModel):
    """Chunk statistics for one knowledge tier."""

    knowledge_tier: KnowledgeTier
    chunk_count: int = 0
    total_characters: int = 0
    average_chunk_size: float = 0.0


class DocumentStats(BaseModel):
    """Per-tier chunk statistics for a tenant."""

    tenant_id: str
    tiers: List[TierStats] = Field(default_factory=list)

    @computed_field
    @property
    def total_chunks(self) -> int:
        return sum(t.chunk_count for t in self.tiers)

    @computed_field
    @property
    def total_characters(self) -> int:
        return sum(t.total_characters for t in self.tiers)


class TextStats(BaseModel):
    """Statistics about a cleaned document text."""

    characters: int = 0
    words: int = 0
    lines: int = 0
    paragraphs: int = 0
    estimated_tokens: int = 0


class ProcessDocumentResult(BaseModel):
    """Outcome of one ingestion run."""

    chunks_created: int
    tenant_id: str
    knowledge_tier: KnowledgeTier
    scope_owner_id: Optional[str] = None
    total_characters: int = 0
    text_stats: TextStats = Field(default_factory=TextStats)
    processing_time: float = 0.0


class ContextResult(BaseModel):
    """Ranked chunks and their rendering for prompt injection."""

    chunks: List[RankedChunk] = Field(default_factory=list)
    total_found: int = 0
    context_formatted: str
