"""
ChromaDB Document Store

This module stores knowledge chunks in a single ChromaDB collection using the
cosine HNSW space. Scope filtering is expressed as a metadata ``where``
clause, so every query only sees the tenant's visible tiers. Chunks without a
vector are stored with a placeholder vector and flagged so they stay out of vector
search while remaining available to keyword search.
"""

import json
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from chromadb.api.models.Collection import Collection

from tiered_rag.exceptions import DocumentStoreError
from tiered_rag.models.knowledge import Chunk, DocumentStats, KnowledgeTier, ScopeFilter, ScopeKey
from tiered_rag.services.document_store import (
    DocumentStore,
    build_document_stats,
    rank_by_keywords,
    rank_by_similarity,
)
from tiered_rag.services.keyword_ranking import LexicalAnalyzer

logger = structlog.get_logger(__name__)


def new_generation() -> str:
    """Sortable write generation: zero-padded nanosecond clock plus a random suffix."""
    return f"{time.time_ns():020d}-{uuid.uuid4().hex[:8]}"


class ChromaDocumentStore(DocumentStore):
    """Document store backed by a ChromaDB collection."""

    def __init__(
        self,
        client: Any,
        dimension: int,
        collection_name: str = "knowledge_chunks",
        analyzer: Optional[LexicalAnalyzer] = None,
        batch_size: int = 100,
    ):
        super().__init__(dimension, analyzer)
        self._client = client
        self.collection_name = collection_name
        self._batch_size = batch_size
        self._collection: Collection = client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine", "description": "Tiered knowledge chunks"},
            embedding_function=None,
        )
        logger.info("chroma_collection_ready", collection=collection_name)

    @property
    def backend_name(self) -> str:
        return "chroma"

    # Metadata mapping

    def _to_metadata(self, chunk: Chunk) -> Dict[str, Any]:
        return {
            "tenant_id": chunk.tenant_id,
            "knowledge_tier": chunk.knowledge_tier.value,
            "scope_owner_id": chunk.scope_owner_id or "",
            "created_at": chunk.created_at.isoformat(),
            "chunk_index": chunk.chunk_index,
            "has_vector": chunk.vector is not None,
            "metadata_json": json.dumps(chunk.metadata, default=str),
        }

    @staticmethod
    def _to_chunk(chunk_id: str, document: str, metadata: Dict[str, Any], embedding=None) -> Chunk:
        vector = None
        if metadata.get("has_vector") and embedding is not None:
            vector = [float(v) for v in embedding]
        return Chunk(
            id=chunk_id,
            tenant_id=metadata["tenant_id"],
            knowledge_tier=KnowledgeTier(metadata["knowledge_tier"]),
            scope_owner_id=metadata.get("scope_owner_id") or None,
            content=document,
            vector=vector,
            metadata=json.loads(metadata.get("metadata_json") or "{}"),
            created_at=datetime.fromisoformat(metadata["created_at"]),
        )

    @staticmethod
    def _scope_key_where(key: ScopeKey) -> Dict[str, Any]:
        return {
            "$and": [
                {"tenant_id": key.tenant_id},
                {"knowledge_tier": key.knowledge_tier.value},
                {"scope_owner_id": key.scope_owner_id or ""},
            ]
        }

    @staticmethod
    def _scope_filter_where(tenant_id: str, scope_filter: ScopeFilter) -> Optional[Dict[str, Any]]:
        clauses: List[Dict[str, Any]] = []
        if scope_filter.include_global:
            clauses.append({"knowledge_tier": KnowledgeTier.GLOBAL.value})
        if scope_filter.include_shared:
            clauses.append({"knowledge_tier": KnowledgeTier.SHARED.value})
        if scope_filter.scope_owner_id:
            clauses.append(
                {
                    "$and": [
                        {"knowledge_tier": KnowledgeTier.SCOPED.value},
                        {"scope_owner_id": scope_filter.scope_owner_id},
                    ]
                }
            )

        if not clauses:
            return None
        visibility = clauses[0] if len(clauses) == 1 else {"$or": clauses}
        return {"$and": [{"tenant_id": tenant_id}, visibility]}

    # Writes

    async def _replace_scope(self, key: ScopeKey, chunks: List[Chunk]) -> None:
        """
        Replace a scope with upsert-then-reconcile.

        Every replacement tags its chunks with a time-ordered generation.
        After the upsert the scope is read again: chunks of older generations
        that are not part of this batch are deleted, and if a newer generation
        is already present this batch removes itself. Writers in other
        processes sharing the collection therefore converge on the newest
        batch instead of accumulating both.
        """
        start_time = time.time()
        generation = new_generation()
        try:
            previous = self._collection.get(
                where=self._scope_key_where(key),
                include=["documents", "metadatas", "embeddings"],
            )
        except Exception as e:
            self._operation_stats["errors"] += 1
            raise DocumentStoreError("Failed to read scope from ChromaDB") from e

        new_ids = {chunk.id for chunk in chunks}

        try:
            self._upsert_chunks(chunks, generation)
            deleted, superseded = self._reconcile(key, new_ids, generation)
        except Exception as e:
            self._operation_stats["errors"] += 1
            logger.error("chroma_scope_replace_failed", scope=key.as_string(), error=str(e))
            self._restore(previous, new_ids)
            raise DocumentStoreError("Failed to replace scope in ChromaDB") from e

        if superseded:
            logger.info("chroma_scope_superseded", scope=key.as_string(), generation=generation)

        logger.debug(
            "chroma_scope_replaced",
            scope=key.as_string(),
            upserted=len(chunks),
            deleted=deleted,
            duration=round(time.time() - start_time, 3),
        )

    def _reconcile(self, key: ScopeKey, new_ids: set, generation: str) -> Tuple[int, bool]:
        """Delete what this generation replaces; returns (deleted, superseded)."""
        current = self._collection.get(where=self._scope_key_where(key), include=["metadatas"])

        stale_ids = []
        own_ids = []
        superseded = False
        for chunk_id, metadata in zip(current["ids"], current["metadatas"]):
            chunk_generation = (metadata or {}).get("generation") or ""
            if chunk_generation > generation:
                superseded = True
            elif chunk_generation == generation:
                own_ids.append(chunk_id)
            elif chunk_id not in new_ids:
                stale_ids.append(chunk_id)

        doomed = stale_ids + own_ids if superseded else stale_ids
        if doomed:
            self._collection.delete(ids=doomed)
        return len(doomed), superseded

    def _upsert_chunks(self, chunks: List[Chunk], generation: str) -> None:
        for i in range(0, len(chunks), self._batch_size):
            batch = chunks[i:i + self._batch_size]
            self._collection.upsert(
                ids=[c.id for c in batch],
                embeddings=[c.vector if c.vector is not None else self._placeholder_vector() for c in batch],
                documents=[c.content for c in batch],
                metadatas=[{**self._to_metadata(c), "generation": generation} for c in batch],
            )

    def _placeholder_vector(self) -> List[float]:
        # Zero vectors have no cosine direction; has_vector=False keeps this out of search
        return [1.0] + [0.0] * (self.dimension - 1)

    def _restore(self, previous: Dict[str, Any], new_ids: set) -> None:
        """Best-effort rollback of a failed scope replacement."""
        try:
            previous_ids = set(previous["ids"])
            added = [chunk_id for chunk_id in new_ids if chunk_id not in previous_ids]
            if added:
                self._collection.delete(ids=added)
            if previous["ids"]:
                self._collection.upsert(
                    ids=previous["ids"],
                    embeddings=previous["embeddings"],
                    documents=previous["documents"],
                    metadatas=previous["metadatas"],
                )
        except Exception as e:
            logger.error("chroma_scope_restore_failed", error=str(e))

    # Reads

    def _get_visible(self, tenant_id: str, scope_filter: ScopeFilter, include: List[str]) -> Dict[str, Any]:
        where = self._scope_filter_where(tenant_id, scope_filter)
        if where is None:
            return {"ids": [], "documents": [], "metadatas": [], "embeddings": []}
        try:
            return self._collection.get(where=where, include=include)
        except Exception as e:
            self._operation_stats["errors"] += 1
            raise DocumentStoreError("Failed to read chunks from ChromaDB") from e

    async def query(self, tenant_id, scope_filter, vector, k):
        self._operation_stats["vector_queries"] += 1
        if k <= 0 or len(vector) != self.dimension:
            return []

        where = self._scope_filter_where(tenant_id, scope_filter)
        if where is None:
            return []
        where = {"$and": where["$and"] + [{"has_vector": True}]}

        try:
            available = len(self._collection.get(where=where, include=["metadatas"])["ids"])
            if available == 0:
                return []
            results = self._collection.query(
                query_embeddings=[list(vector)],
                n_results=min(k, available),
                where=where,
                include=["documents", "metadatas", "embeddings"],
            )
        except Exception as e:
            self._operation_stats["errors"] += 1
            raise DocumentStoreError("ChromaDB vector query failed") from e

        chunks = [
            self._to_chunk(chunk_id, document, metadata, embedding)
            for chunk_id, document, metadata, embedding in zip(
                results["ids"][0],
                results["documents"][0],
                results["metadatas"][0],
                results["embeddings"][0],
            )
        ]
        # Exact re-scoring keeps ties and scores identical across backends
        return rank_by_similarity(chunks, vector, k, self.dimension)

    async def keyword_query(self, tenant_id, scope_filter, text, k):
        self._operation_stats["keyword_queries"] += 1
        terms = self.analyzer.parse_query(text)
        if not terms or k <= 0:
            return []

        results = self._get_visible(tenant_id, scope_filter, include=["documents", "metadatas"])
        entries = []
        for chunk_id, document, metadata in zip(results["ids"], results["documents"], results["metadatas"]):
            chunk = self._to_chunk(chunk_id, document, metadata)
            entries.append((chunk, self.analyzer.analyze(document)))
        return rank_by_keywords(entries, terms, k)

    async def get_stats(self, tenant_id: str) -> DocumentStats:
        try:
            results = self._collection.get(where={"tenant_id": tenant_id}, include=["documents", "metadatas"])
        except Exception as e:
            raise DocumentStoreError("Failed to read chunk statistics from ChromaDB") from e

        totals = {}
        for document, metadata in zip(results["documents"], results["metadatas"]):
            tier = KnowledgeTier(metadata["knowledge_tier"])
            count, characters = totals.get(tier, (0, 0))
            totals[tier] = (count + 1, characters + len(document))
        return build_document_stats(tenant_id, totals)

    async def health_check(self):
        status = await super().health_check()
        try:
            self._client.heartbeat()
            status["collection"] = self.collection_name
            status["count"] = self._collection.count()
        except Exception as e:
            status["status"] = "unhealthy"
            status["error"] = str(e)
        return status
