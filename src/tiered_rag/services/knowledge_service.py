"""
Knowledge Service

This module is the entry point used by the chat and document orchestration
layer. It wires the chunker, the embedding gateway, the document store, the
hybrid retriever and the context formatter together and exposes the three
operations of the core:

- process_document: clean, chunk, embed and replace a scope's chunks
- retrieve_context / search_context: rank chunks and render them
- get_stats: per-tier chunk counts for a tenant
"""

import hashlib
import time
import uuid
from typing import Any, Dict, List, Optional, Union

import structlog

from tiered_rag.config import Settings
from tiered_rag.exceptions import ConfigurationError, IntegrityError, TieredRAGError, ValidationError
from tiered_rag.models.knowledge import (
    Chunk,
    ContextResult,
    DocumentStats,
    KnowledgeTier,
    ProcessDocumentResult,
    RetrievalConfig,
    utc_now,
)
from tiered_rag.services.chunking import ChunkingConfig, SemanticChunker, clean_text, estimate_tokens, get_text_stats
from tiered_rag.services.context_formatter import ContextFormatter
from tiered_rag.services.document_store import DocumentStore
from tiered_rag.services.embedding_gateway import EmbeddingGateway
from tiered_rag.services.hybrid_retriever import HybridRetriever
from tiered_rag.services.openai_client import OpenAIEmbeddingProvider
from tiered_rag.services.store_factory import create_document_store

logger = structlog.get_logger(__name__)

# Namespace for chunk ids derived from scope, position and content
CHUNK_ID_NAMESPACE = uuid.UUID("6f1c0b7e-2d4a-5e8b-9c3f-1a2b3c4d5e6f")


def chunk_id_for(tenant_id: str, tier: KnowledgeTier, scope_owner_id: Optional[str], index: int, content: str) -> str:
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    name = f"{tenant_id}:{tier.value}:{scope_owner_id or ''}:{index}:{digest}"
    return str(uuid.uuid5(CHUNK_ID_NAMESPACE, name))


class KnowledgeService:
    """Facade over ingestion and retrieval."""

    def __init__(
        self,
        gateway: EmbeddingGateway,
        store: DocumentStore,
        chunker: Optional[SemanticChunker] = None,
        formatter: Optional[ContextFormatter] = None,
        retrieval_defaults: Optional[RetrievalConfig] = None,
        candidate_multiplier: int = 3,
        min_document_characters: int = 10,
    ):
        if gateway.dimension != store.dimension:
            raise ConfigurationError(
                "Embedding dimension and document store dimension differ",
                details={"embedding": gateway.dimension, "store": store.dimension},
            )

        self.gateway = gateway
        self.store = store
        self.chunker = chunker or SemanticChunker()
        self.formatter = formatter or ContextFormatter()
        self.retrieval_defaults = retrieval_defaults or RetrievalConfig()
        self.min_document_characters = min_document_characters
        self.retriever = HybridRetriever(
            gateway,
            store,
            candidate_multiplier=candidate_multiplier,
            query_timeout=gateway.config.query_timeout,
        )

        logger.info(
            "knowledge_service_initialized",
            store=store.backend_name,
            dimension=store.dimension,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "KnowledgeService":
        """Build the service and its collaborators from application settings."""
        provider = OpenAIEmbeddingProvider(settings.embedding)
        gateway = EmbeddingGateway(provider, settings.embedding)
        store = create_document_store(settings.store, settings.embedding.dimension)

        retrieval = settings.retrieval
        return cls(
            gateway,
            store,
            chunker=SemanticChunker(ChunkingConfig.from_settings(settings.chunking)),
            retrieval_defaults=RetrievalConfig(
                include_global_tier=retrieval.include_global_tier,
                include_shared_tier=retrieval.include_shared_tier,
                max_results=retrieval.max_results,
                semantic_weight=retrieval.semantic_weight,
                keyword_scale=retrieval.keyword_scale,
                similarity_threshold=retrieval.similarity_threshold,
            ),
            candidate_multiplier=retrieval.candidate_multiplier,
            min_document_characters=settings.chunking.min_document_characters,
        )

    def default_retrieval_config(self) -> RetrievalConfig:
        return self.retrieval_defaults.model_copy()

    async def process_document(
        self,
        text: str,
        tenant_id: str,
        knowledge_tier: Union[KnowledgeTier, str],
        scope_owner_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        file_name: Optional[str] = None,
    ) -> ProcessDocumentResult:
        """
        Ingest a document into a scope, replacing the scope's previous chunks.

        Args:
            text: Extracted plain text of the document
            tenant_id: Owning tenant
            knowledge_tier: Tier the document belongs to
            scope_owner_id: Scope owner; required for the scoped tier
            metadata: Caller metadata copied onto every chunk
            file_name: Source file name, used as the chunk's source label

        Returns:
            ProcessDocumentResult with the number of chunks stored

        Raises:
            ValidationError: Bad scope key or text without readable content
            ServiceUnavailable: Embedding failed transiently or timed out
            IntegrityError: Embeddings do not line up with the chunks
        """
        start_time = time.time()

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

        cleaned = clean_text(text)
        if len(cleaned) < self.min_document_characters:
            raise ValidationError(
                "Document contains no readable text",
                details={"characters": len(cleaned), "minimum": self.min_document_characters},
            )

        texts = self.chunker.chunk(cleaned)
        logger.info(
            "document_chunked",
            tenant_id=tenant_id,
            knowledge_tier=tier.value,
            scope_owner_id=scope_owner_id,
            chunk_count=len(texts),
        )

        vectors = await self.gateway.embed(texts, timeout=self.gateway.config.ingestion_timeout)
        chunks = self._build_chunks(texts, vectors, tenant_id, tier, scope_owner_id, metadata, file_name)

        try:
            stored = await self.store.upsert_scope(tenant_id, tier, scope_owner_id, chunks)
        except TieredRAGError:
            logger.error("document_store_failed", tenant_id=tenant_id, knowledge_tier=tier.value)
            raise

        processing_time = time.time() - start_time
        logger.info(
            "document_processed",
            tenant_id=tenant_id,
            knowledge_tier=tier.value,
            scope_owner_id=scope_owner_id,
            chunks_created=stored,
            processing_time=round(processing_time, 3),
        )

        return ProcessDocumentResult(
            chunks_created=stored,
            tenant_id=tenant_id,
            knowledge_tier=tier,
            scope_owner_id=scope_owner_id,
            total_characters=len(cleaned),
            text_stats=get_text_stats(cleaned),
            processing_time=processing_time,
        )

    def _build_chunks(
        self,
        texts: List[str],
        vectors: List[List[float]],
        tenant_id: str,
        tier: KnowledgeTier,
        scope_owner_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
        file_name: Optional[str],
    ) -> List[Chunk]:
        if len(vectors) != len(texts):
            raise IntegrityError(
                "Embedding count does not match chunk count",
                details={"chunks": len(texts), "embeddings": len(vectors)},
            )

        created_at = utc_now()
        chunks = []
        for index, (content, vector) in enumerate(zip(texts, vectors)):
            chunk_metadata = dict(metadata or {})
            chunk_metadata.update(
                {
                    "chunk_index": index,
                    "total_chunks": len(texts),
                    "source": tier.value,
                    "characters": len(content),
                    "estimated_tokens": estimate_tokens(content),
                }
            )
            if file_name:
                chunk_metadata["file_name"] = file_name

            chunks.append(
                Chunk(
                    id=chunk_id_for(tenant_id, tier, scope_owner_id, index, content),
                    tenant_id=tenant_id,
                    knowledge_tier=tier,
                    scope_owner_id=scope_owner_id,
                    content=content,
                    vector=vector,
                    metadata=chunk_metadata,
                    created_at=created_at,
                )
            )
        return chunks

    async def search_context(
        self,
        query_text: str,
        tenant_id: str,
        scope_owner_id: Optional[str] = None,
        config: Optional[RetrievalConfig] = None,
    ) -> ContextResult:
        """Rank chunks for a query and render them."""
        config = config or self.retrieval_defaults
        chunks = await self.retriever.retrieve(query_text, tenant_id, scope_owner_id, config)
        return ContextResult(
            chunks=chunks,
            total_found=len(chunks),
            context_formatted=self.formatter.format(chunks),
        )

    async def retrieve_context(
        self,
        query_text: str,
        tenant_id: str,
        scope_owner_id: Optional[str] = None,
        config: Optional[RetrievalConfig] = None,
    ) -> str:
        result = await self.search_context(query_text, tenant_id, scope_owner_id, config)
        return result.context_formatted

    async def get_stats(self, tenant_id: str) -> DocumentStats:
        if not tenant_id or not str(tenant_id).strip():
            raise ValidationError("tenant_id is required")
        return await self.store.get_stats(tenant_id)

    async def health_check(self) -> Dict[str, Any]:
        store_health = await self.store.health_check()
        gateway_health = await self.gateway.health_check()
        healthy = store_health.get("status") == "healthy" and gateway_health.get("status") == "healthy"
        return {
            "status": "healthy" if healthy else "unhealthy",
            "document_store": store_health,
            "embedding_gateway": gateway_health,
            "retriever": self.retriever.get_stats(),
        }

    async def close(self) -> None:
        await self.gateway.close()
        await self.store.close()
        logger.info("knowledge_service_closed")
