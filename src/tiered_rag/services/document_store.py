"""
Document Store

This module defines the storage contract used by ingestion and retrieval and
an in-memory implementation of it. Every backend shares the same scope
filter semantics, the same batch validation and the same ranking helpers, so
results only differ in where the chunks live.

Replacing a scope is serialised per (tenant, tier, scope owner) key; writes
to different keys and all reads run concurrently.
"""

import asyncio
import weakref
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from tiered_rag.exceptions import IntegrityError, ValidationError
from tiered_rag.models.knowledge import (
    TIER_ORDER,
    Chunk,
    DocumentStats,
    KnowledgeTier,
    ScopeFilter,
    ScopeKey,
    ScoredChunk,
    TierStats,
)
from tiered_rag.services.keyword_ranking import LexicalAnalyzer, TermPositions, cover_density_rank

logger = structlog.get_logger(__name__)


class ScopeLockRegistry:
    """One asyncio.Lock per scope key, dropped once nobody holds it."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, key: ScopeKey) -> asyncio.Lock:
        name = key.as_string()
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock


def has_valid_vector(chunk: Chunk, dimension: int) -> bool:
    return chunk.vector is not None and len(chunk.vector) == dimension


def rank_by_similarity(
    chunks: Iterable[Chunk],
    vector: Sequence[float],
    k: int,
    dimension: int,
) -> List[ScoredChunk]:
    """
    Exact cosine nearest neighbours.

    Chunks without a vector of the right dimension, or with a zero vector,
    are skipped. Equal similarities keep creation order.
    """
    if k <= 0 or len(vector) != dimension:
        return []

    candidates = [c for c in chunks if has_valid_vector(c, dimension)]
    if not candidates:
        return []

    matrix = np.asarray([c.vector for c in candidates], dtype=np.float64)
    query = np.asarray(vector, dtype=np.float64)

    norms = np.linalg.norm(matrix, axis=1)
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return []

    valid = norms > 0
    similarities = np.zeros(len(candidates))
    similarities[valid] = (matrix[valid] @ query) / (norms[valid] * query_norm)

    scored = [
        (float(np.clip(similarities[i], -1.0, 1.0)), candidates[i])
        for i in range(len(candidates))
        if valid[i]
    ]
    scored.sort(key=lambda item: (-item[0], item[1].sort_key()))
    return [ScoredChunk(chunk=chunk, score=score) for score, chunk in scored[:k]]


def rank_by_keywords(
    entries: Iterable[Tuple[Chunk, TermPositions]],
    query_terms: List[str],
    k: int,
) -> List[ScoredChunk]:
    """Rank pre-analysed chunks by cover density; non-matching chunks are dropped."""
    if k <= 0 or not query_terms:
        return []

    scored = []
    for chunk, positions in entries:
        rank = cover_density_rank(positions, query_terms)
        if rank > 0:
            scored.append((rank, chunk))

    scored.sort(key=lambda item: (-item[0], item[1].sort_key()))
    return [ScoredChunk(chunk=chunk, score=score) for score, chunk in scored[:k]]


def build_document_stats(tenant_id: str, totals: Dict[KnowledgeTier, Tuple[int, int]]) -> DocumentStats:
    """Assemble stats for all tiers from (chunk count, character total) pairs."""
    tiers = []
    for tier in TIER_ORDER:
        count, characters = totals.get(tier, (0, 0))
        tiers.append(
            TierStats(
                knowledge_tier=tier,
                chunk_count=count,
                total_characters=characters,
                average_chunk_size=round(characters / count, 2) if count else 0.0,
            )
        )
    return DocumentStats(tenant_id=tenant_id, tiers=tiers)


class DocumentStore(ABC):
    """Durable collection of chunks with vector and keyword search."""

    def __init__(self, dimension: int, analyzer: Optional[LexicalAnalyzer] = None):
        self.dimension = dimension
        self.analyzer = analyzer or LexicalAnalyzer()
        self._locks = ScopeLockRegistry()

        self._operation_stats = {
            "upsert_operations": 0,
            "vector_queries": 0,
            "keyword_queries": 0,
            "errors": 0,
        }

    async def upsert_scope(
        self,
        tenant_id: str,
        knowledge_tier: Union[KnowledgeTier, str],
        scope_owner_id: Optional[str],
        chunks: Sequence[Chunk],
    ) -> int:
        """
        Replace every chunk stored for one scope key.

        The batch is validated before anything is written, so a rejected
        batch leaves the previous chunks in place.

        Args:
            tenant_id: Owning tenant
            knowledge_tier: Tier of the scope
            scope_owner_id: Scope owner; required for the scoped tier
            chunks: New chunks; an empty batch clears the scope

        Returns:
            Number of chunks stored for the scope

        Raises:
            ValidationError: Malformed scope key, foreign or duplicate chunks
            IntegrityError: A vector does not have the store dimension
        """
        key = self.validate_batch(tenant_id, knowledge_tier, scope_owner_id, chunks)

        async with self._locks.get(key):
            await self._replace_scope(key, list(chunks))

        self._operation_stats["upsert_operations"] += 1
        logger.info(
            "scope_replaced",
            tenant_id=key.tenant_id,
            knowledge_tier=key.knowledge_tier.value,
            scope_owner_id=key.scope_owner_id,
            chunk_count=len(chunks),
        )
        return len(chunks)

    def validate_batch(
        self,
        tenant_id: str,
        knowledge_tier: Union[KnowledgeTier, str],
        scope_owner_id: Optional[str],
        chunks: Sequence[Chunk],
    ) -> ScopeKey:
        if not tenant_id or not str(tenant_id).strip():
            raise ValidationError("tenant_id is required")

        try:
            tier = KnowledgeTier(knowledge_tier)
        except ValueError as e:
            raise ValidationError(
                "Unknown knowledge tier",
                details={"knowledge_tier": str(knowledge_tier)},
            ) from e

        if tier == KnowledgeTier.SCOPED and not scope_owner_id:
            raise ValidationError("scope_owner_id is required for the scoped tier")

        key = ScopeKey(tenant_id=tenant_id, knowledge_tier=tier, scope_owner_id=scope_owner_id)

        seen_ids = set()
        for chunk in chunks:
            if chunk.scope_key != key:
                raise ValidationError(
                    "Chunk does not belong to the scope being replaced",
                    details={"chunk_id": chunk.id, "scope": key.as_string()},
                )
            if chunk.id in seen_ids:
                raise ValidationError("Duplicate chunk id in batch", details={"chunk_id": chunk.id})
            seen_ids.add(chunk.id)

            if chunk.vector is not None and len(chunk.vector) != self.dimension:
                raise IntegrityError(
                    "Chunk vector dimension does not match the store dimension",
                    details={
                        "chunk_id": chunk.id,
                        "expected": self.dimension,
                        "received": len(chunk.vector),
                    },
                )

        return key

    @abstractmethod
    async def _replace_scope(self, key: ScopeKey, chunks: List[Chunk]) -> None:
        """Delete the old chunks of the scope and insert the new ones as one unit."""

    @abstractmethod
    async def query(
        self,
        tenant_id: str,
        scope_filter: ScopeFilter,
        vector: Sequence[float],
        k: int,
    ) -> List[ScoredChunk]:
        """Nearest chunks by cosine similarity within the visible scope."""

    @abstractmethod
    async def keyword_query(
        self,
        tenant_id: str,
        scope_filter: ScopeFilter,
        text: str,
        k: int,
    ) -> List[ScoredChunk]:
        """Chunks containing every query term, ranked by cover density."""

    @abstractmethod
    async def get_stats(self, tenant_id: str) -> DocumentStats:
        """Per-tier chunk counts and character totals for a tenant."""

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "backend": self.backend_name,
            "dimension": self.dimension,
            "operations": dict(self._operation_stats),
        }

    async def close(self) -> None:
        return None

    @property
    def backend_name(self) -> str:
        return type(self).__name__


class InMemoryDocumentStore(DocumentStore):
    """Process-local store with exact cosine search and a positional term index."""

    def __init__(self, dimension: int, analyzer: Optional[LexicalAnalyzer] = None):
        super().__init__(dimension, analyzer)
        self._scopes: Dict[str, Dict[ScopeKey, List[Tuple[Chunk, TermPositions]]]] = {}

    @property
    def backend_name(self) -> str:
        return "memory"

    async def _replace_scope(self, key: ScopeKey, chunks: List[Chunk]) -> None:
        entries = [(chunk, self.analyzer.analyze(chunk.content)) for chunk in chunks]

        tenant_scopes = self._scopes.setdefault(key.tenant_id, {})
        if entries:
            tenant_scopes[key] = entries
        else:
            tenant_scopes.pop(key, None)

    def _visible(self, tenant_id: str, scope_filter: ScopeFilter) -> List[Tuple[Chunk, TermPositions]]:
        visible = []
        for entries in self._scopes.get(tenant_id, {}).values():
            visible.extend(entry for entry in entries if scope_filter.allows(entry[0]))
        return visible

    async def query(self, tenant_id, scope_filter, vector, k):
        self._operation_stats["vector_queries"] += 1
        chunks = [chunk for chunk, _ in self._visible(tenant_id, scope_filter)]
        return rank_by_similarity(chunks, vector, k, self.dimension)

    async def keyword_query(self, tenant_id, scope_filter, text, k):
        self._operation_stats["keyword_queries"] += 1
        terms = self.analyzer.parse_query(text)
        if not terms:
            return []
        return rank_by_keywords(self._visible(tenant_id, scope_filter), terms, k)

    async def get_stats(self, tenant_id: str) -> DocumentStats:
        totals: Dict[KnowledgeTier, Tuple[int, int]] = {}
        for key, entries in self._scopes.get(tenant_id, {}).items():
            count, characters = totals.get(key.knowledge_tier, (0, 0))
            totals[key.knowledge_tier] = (
                count + len(entries),
                characters + sum(len(chunk.content) for chunk, _ in entries),
            )
        return build_document_stats(tenant_id, totals)

    async def get_scope(self, key: ScopeKey) -> List[Chunk]:
        """Chunks currently stored for a scope, in document order."""
        entries = self._scopes.get(key.tenant_id, {}).get(key, [])
        return [chunk for chunk, _ in entries]

    async def close(self) -> None:
        self._scopes.clear()
