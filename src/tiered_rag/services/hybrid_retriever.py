"""
Hybrid Retriever

This module combines vector similarity and keyword rank into one score:

    combined = semantic * w + min(keyword * keyword_scale, 1.0) * (1 - w)

Candidates come from two independent store queries over the same visible
scope and are merged by chunk id; a chunk found by only one side scores zero
on the other. Candidates below the similarity threshold are dropped unless
they matched the keywords. Ordering is fully deterministic: combined score,
then semantic score, then creation order.
"""

import time
from typing import Dict, List, Optional, Tuple

import structlog

from tiered_rag.exceptions import DocumentStoreError, ValidationError
from tiered_rag.models.knowledge import (
    TIER_SOURCE_LABELS,
    Chunk,
    RankedChunk,
    RetrievalConfig,
    ScopeFilter,
)
from tiered_rag.services.document_store import DocumentStore
from tiered_rag.services.embedding_gateway import EmbeddingGateway

logger = structlog.get_logger(__name__)


def source_label_for(chunk: Chunk) -> str:
    """File name when the chunk has one, else the tier's label."""
    file_name = chunk.metadata.get("file_name")
    if file_name:
        return str(file_name)
    return TIER_SOURCE_LABELS[chunk.knowledge_tier]


def combine_scores(semantic: float, keyword: float, config: RetrievalConfig) -> float:
    normalized_keyword = min(keyword * config.keyword_scale, 1.0)
    weight = config.semantic_weight
    return semantic * weight + normalized_keyword * (1 - weight)


class HybridRetriever:
    """Semantic + keyword retrieval over a document store."""

    def __init__(
        self,
        gateway: EmbeddingGateway,
        store: DocumentStore,
        candidate_multiplier: int = 3,
        query_timeout: Optional[float] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.candidate_multiplier = candidate_multiplier
        self.query_timeout = query_timeout

        self._stats = {
            "total_queries": 0,
            "keyword_degradations": 0,
            "empty_results": 0,
        }

    async def retrieve(
        self,
        query_text: str,
        tenant_id: str,
        scope_owner_id: Optional[str],
        config: RetrievalConfig,
    ) -> List[RankedChunk]:
        """
        Retrieve ranked chunks for a query.

        Args:
            query_text: Natural-language query
            tenant_id: Tenant whose knowledge is searched
            scope_owner_id: Consumer whose scoped chunks are visible, if any
            config: Consumer retrieval settings

        Returns:
            At most config.max_results chunks, best first; empty when nothing matches

        Raises:
            ValidationError: Blank query or tenant
            ServiceUnavailable: The query could not be embedded in time
        """
        query = (query_text or "").strip()
        if not query:
            raise ValidationError("Query text must not be empty")
        if not tenant_id or not str(tenant_id).strip():
            raise ValidationError("tenant_id is required")

        start_time = time.time()
        self._stats["total_queries"] += 1

        scope_filter = config.scope_filter(scope_owner_id)
        if scope_filter.is_empty:
            self._stats["empty_results"] += 1
            return []

        budget = self.candidate_multiplier * config.max_results

        query_vector = await self.gateway.embed_one(query, timeout=self.query_timeout)
        semantic_hits = await self.store.query(tenant_id, scope_filter, query_vector, budget)
        keyword_hits = await self._keyword_candidates(tenant_id, scope_filter, query, budget)

        candidates: Dict[str, Tuple[Chunk, float, float]] = {}
        for hit in semantic_hits:
            candidates[hit.chunk.id] = (hit.chunk, hit.score, 0.0)
        for hit in keyword_hits:
            chunk, semantic, _ = candidates.get(hit.chunk.id, (hit.chunk, 0.0, 0.0))
            candidates[hit.chunk.id] = (chunk, semantic, hit.score)

        ranked = []
        for chunk, semantic, keyword in candidates.values():
            if semantic < config.similarity_threshold and keyword <= 0:
                continue
            if not scope_filter.allows(chunk):
                continue
            ranked.append(
                RankedChunk(
                    chunk_id=chunk.id,
                    content=chunk.content,
                    knowledge_tier=chunk.knowledge_tier,
                    scope_owner_id=chunk.scope_owner_id,
                    source_label=source_label_for(chunk),
                    semantic_score=semantic,
                    keyword_score=keyword,
                    combined_score=combine_scores(semantic, keyword, config),
                    metadata=dict(chunk.metadata),
                    created_at=chunk.created_at,
                )
            )

        ranked.sort(
            key=lambda r: (
                -r.combined_score,
                -r.semantic_score,
                r.created_at,
                int(r.metadata.get("chunk_index", 0)),
                r.chunk_id,
            )
        )
        results = ranked[:config.max_results]

        if not results:
            self._stats["empty_results"] += 1

        logger.info(
            "context_retrieved",
            tenant_id=tenant_id,
            scope_owner_id=scope_owner_id,
            semantic_candidates=len(semantic_hits),
            keyword_candidates=len(keyword_hits),
            returned=len(results),
            duration=round(time.time() - start_time, 3),
        )
        return results

    async def _keyword_candidates(self, tenant_id: str, scope_filter: ScopeFilter, query: str, budget: int):
        try:
            return await self.store.keyword_query(tenant_id, scope_filter, query, budget)
        except DocumentStoreError as e:
            self._stats["keyword_degradations"] += 1
            logger.warning("keyword_search_unavailable", tenant_id=tenant_id, error=e.message)
            return []

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
