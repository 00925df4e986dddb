"""
SQL Document Store

Relational backend for the document store built on SQLAlchemy. PostgreSQL is
the production target and SQLite is used in tests. Vectors are stored as JSON
arrays and similarity and lexical rank are computed in the application after
the scope filter has been applied in SQL.

A scope replacement runs as one transaction (delete, then insert). On
PostgreSQL the transaction also takes an advisory lock derived from the scope
key so that writers in other processes are serialised as well.
"""

import hashlib
import math
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional, Tuple

import structlog
from sqlalchemy import and_, create_engine, delete, func, or_, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tiered_rag.config import DocumentStoreConfig
from tiered_rag.exceptions import DocumentStoreError
from tiered_rag.models.database import Base, KnowledgeChunkRecord
from tiered_rag.models.knowledge import Chunk, DocumentStats, KnowledgeTier, ScopeFilter, ScopeKey
from tiered_rag.services.document_store import (
    DocumentStore,
    build_document_stats,
    rank_by_keywords,
    rank_by_similarity,
)
from tiered_rag.services.keyword_ranking import LexicalAnalyzer

logger = structlog.get_logger(__name__)


def create_store_engine(config: DocumentStoreConfig) -> Engine:
    """Create an engine with pool settings suited to the database dialect."""
    url = config.database_url
    if url.startswith("sqlite"):
        in_memory = url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url
        return create_engine(
            url,
            echo=config.echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else None,
        )

    return create_engine(
        url,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        pool_recycle=config.pool_recycle,
        pool_pre_ping=True,
        echo=config.echo,
    )


def advisory_lock_key(key: ScopeKey) -> int:
    """Signed 64-bit lock id for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(key.as_string().encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class SqlDocumentStore(DocumentStore):
    """Document store backed by a relational database."""

    def __init__(
        self,
        dimension: int,
        engine: Optional[Engine] = None,
        config: Optional[DocumentStoreConfig] = None,
        analyzer: Optional[LexicalAnalyzer] = None,
        create_schema: bool = True,
    ):
        super().__init__(dimension, analyzer)
        if engine is None:
            engine = create_store_engine(config or DocumentStoreConfig())
        self.engine = engine
        self.session_factory = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

        if create_schema:
            self.create_tables()

    @property
    def backend_name(self) -> str:
        return "sql"

    @property
    def is_postgresql(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    def create_tables(self) -> None:
        """Create the chunk table if it does not exist."""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on any error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self._operation_stats["errors"] += 1
            logger.error("document_store_error", error=str(e))
            raise DocumentStoreError("Document store operation failed") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def _replace_scope(self, key: ScopeKey, chunks: List[Chunk]) -> None:
        with self.get_session() as session:
            if self.is_postgresql:
                session.execute(
                    text("SELECT pg_advisory_xact_lock(:lock_key)"),
                    {"lock_key": advisory_lock_key(key)},
                )

            owner_clause = (
                KnowledgeChunkRecord.scope_owner_id.is_(None)
                if key.scope_owner_id is None
                else KnowledgeChunkRecord.scope_owner_id == key.scope_owner_id
            )
            session.execute(
                delete(KnowledgeChunkRecord).where(
                    KnowledgeChunkRecord.tenant_id == key.tenant_id,
                    KnowledgeChunkRecord.knowledge_tier == key.knowledge_tier.value,
                    owner_clause,
                )
            )
            session.add_all([self._to_record(chunk) for chunk in chunks])

    @staticmethod
    def _to_record(chunk: Chunk) -> KnowledgeChunkRecord:
        return KnowledgeChunkRecord(
            id=chunk.id,
            tenant_id=chunk.tenant_id,
            knowledge_tier=chunk.knowledge_tier.value,
            scope_owner_id=chunk.scope_owner_id,
            content=chunk.content,
            embedding=chunk.vector,
            chunk_metadata=dict(chunk.metadata),
            created_at=chunk.created_at,
        )

    @staticmethod
    def _stored_vector(chunk_id: str, embedding: Any) -> Optional[List[float]]:
        """Decoded vector, or None when the stored value is not a list of finite numbers."""
        if embedding is None:
            return None
        if isinstance(embedding, list) and embedding and all(
            isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
            for v in embedding
        ):
            return [float(v) for v in embedding]

        # The chunk stays visible to keyword search
        logger.warning("corrupt_vector_ignored", chunk_id=chunk_id)
        return None

    @classmethod
    def _to_chunk(cls, record: KnowledgeChunkRecord) -> Chunk:
        return Chunk(
            id=record.id,
            tenant_id=record.tenant_id,
            knowledge_tier=KnowledgeTier(record.knowledge_tier),
            scope_owner_id=record.scope_owner_id,
            content=record.content,
            vector=cls._stored_vector(record.id, record.embedding),
            metadata=record.chunk_metadata or {},
            created_at=record.created_at,
        )

    @staticmethod
    def _scope_clause(scope_filter: ScopeFilter):
        tier = KnowledgeChunkRecord.knowledge_tier
        clauses = []
        if scope_filter.include_global:
            clauses.append(tier == KnowledgeTier.GLOBAL.value)
        if scope_filter.include_shared:
            clauses.append(tier == KnowledgeTier.SHARED.value)
        if scope_filter.scope_owner_id:
            clauses.append(
                and_(
                    tier == KnowledgeTier.SCOPED.value,
                    KnowledgeChunkRecord.scope_owner_id == scope_filter.scope_owner_id,
                )
            )
        return or_(*clauses) if clauses else None

    def _load(self, tenant_id: str, scope_filter: ScopeFilter, with_vectors: bool) -> List[Chunk]:
        clause = self._scope_clause(scope_filter)
        if clause is None:
            return []

        stmt = select(KnowledgeChunkRecord).where(KnowledgeChunkRecord.tenant_id == tenant_id, clause)
        if with_vectors:
            stmt = stmt.where(KnowledgeChunkRecord.embedding.is_not(None))

        with self.get_session() as session:
            records = session.execute(stmt).scalars().all()
            return [self._to_chunk(record) for record in records]

    async def query(self, tenant_id, scope_filter, vector, k):
        self._operation_stats["vector_queries"] += 1
        chunks = self._load(tenant_id, scope_filter, with_vectors=True)
        return rank_by_similarity(chunks, vector, k, self.dimension)

    async def keyword_query(self, tenant_id, scope_filter, text, k):
        self._operation_stats["keyword_queries"] += 1
        terms = self.analyzer.parse_query(text)
        if not terms:
            return []

        chunks = self._load(tenant_id, scope_filter, with_vectors=False)
        entries = [(chunk, self.analyzer.analyze(chunk.content)) for chunk in chunks]
        return rank_by_keywords(entries, terms, k)

    async def get_stats(self, tenant_id: str) -> DocumentStats:
        stmt = (
            select(
                KnowledgeChunkRecord.knowledge_tier,
                func.count(KnowledgeChunkRecord.id),
                func.coalesce(func.sum(func.length(KnowledgeChunkRecord.content)), 0),
            )
            .where(KnowledgeChunkRecord.tenant_id == tenant_id)
            .group_by(KnowledgeChunkRecord.knowledge_tier)
        )

        with self.get_session() as session:
            rows = session.execute(stmt).all()

        totals: Dict[KnowledgeTier, Tuple[int, int]] = {
            KnowledgeTier(tier): (int(count), int(characters)) for tier, count, characters in rows
        }
        return build_document_stats(tenant_id, totals)

    async def health_check(self):
        status = await super().health_check()
        try:
            with self.get_session() as session:
                session.execute(text("SELECT 1"))
            status["dialect"] = self.engine.dialect.name
        except DocumentStoreError as e:
            status["status"] = "unhealthy"
            status["error"] = e.message
        return status

    async def close(self) -> None:
        self.engine.dispose()
        logger.info("sql_document_store_closed")
