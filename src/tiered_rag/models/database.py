"""
Database models for the Tiered RAG core.

This module contains the SQLAlchemy table backing the SQL document store.
Vectors are stored as JSON arrays so the same schema works on PostgreSQL and
SQLite; similarity is computed in the application.
"""

from datetime import timezone

from sqlalchemy import Column, DateTime, Index, JSON, String, Text, TypeDecorator
from sqlalchemy.orm import declarative_base


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime type.

    SQLite drops tzinfo on the way back; values are normalised to UTC so that
    rows compare equal to the chunks that produced them.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


Base = declarative_base()


class KnowledgeChunkRecord(Base):
    """Persisted knowledge chunk."""

    __tablename__ = "knowledge_chunk"

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False)
    knowledge_tier = Column(String(16), nullable=False)
    scope_owner_id = Column(String(64), nullable=True)
    content = Column(Text, nullable=False)
    embedding = Column(JSON(none_as_null=True), nullable=True)
    chunk_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("idx_knowledge_chunk_scope", "tenant_id", "knowledge_tier", "scope_owner_id"),
    )

    def __repr__(self):
        return f"<KnowledgeChunkRecord(id={self.id}, tenant_id={self.tenant_id}, tier={self.knowledge_tier})>"
