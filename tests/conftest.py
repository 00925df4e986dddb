"""
Global pytest configuration and fixtures for Tiered RAG tests.

This module provides deterministic embedding providers, document stores for
every backend and a fully wired knowledge service, so that no test needs
network access or credentials.
"""

import hashlib
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import uuid4

import numpy as np
import pytest
from fastapi.testclient import TestClient

from tiered_rag.api import create_app
from tiered_rag.config import DocumentStoreConfig, EmbeddingGatewayConfig, Settings
from tiered_rag.models.knowledge import Chunk, KnowledgeTier
from tiered_rag.services.document_store import InMemoryDocumentStore
from tiered_rag.services.embedding_gateway import EmbeddingGateway, ProviderEmbeddings
from tiered_rag.services.knowledge_service import KnowledgeService
from tiered_rag.services.sql_document_store import SqlDocumentStore
from tiered_rag.services.store_factory import create_chroma_client
from tiered_rag.services.vector_store import ChromaDocumentStore

TEST_DIMENSION = 64
BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class HashingEmbeddingProvider:
    """Deterministic bag-of-words embeddings: each word hashes to one bucket."""

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.calls: List[List[str]] = []
        self.closed = False

    def vector_for(self, text: str) -> List[float]:
        vector = np.zeros(self.dimension)
        for token in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        norm = np.linalg.norm(vector)
        if norm == 0:
            vector[0] = 1.0
            norm = 1.0
        return (vector / norm).tolist()

    async def embed_batch(self, texts: List[str]) -> ProviderEmbeddings:
        self.calls.append(list(texts))
        return ProviderEmbeddings(
            embeddings=[self.vector_for(t) for t in texts],
            total_tokens=sum(len(t.split()) for t in texts),
            model="hashing-test",
        )

    async def close(self) -> None:
        self.closed = True


class FixedVectorProvider:
    """Returns preconfigured vectors per text, or a default vector."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, default: Optional[List[float]] = None):
        self.vectors = vectors or {}
        self.default = default or unit_vector(0)
        self.calls: List[List[str]] = []

    async def embed_batch(self, texts: List[str]) -> ProviderEmbeddings:
        self.calls.append(list(texts))
        return ProviderEmbeddings(embeddings=[self.vectors.get(t, self.default) for t in texts])

    async def close(self) -> None:
        return None


def unit_vector(index: int, dimension: int = TEST_DIMENSION) -> List[float]:
    vector = [0.0] * dimension
    vector[index] = 1.0
    return vector


def make_chunk(
    content: str,
    tenant_id: str = "tenant-1",
    knowledge_tier: KnowledgeTier = KnowledgeTier.GLOBAL,
    scope_owner_id: Optional[str] = None,
    vector: Optional[List[float]] = None,
    chunk_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    chunk_index: int = 0,
    **metadata,
) -> Chunk:
    return Chunk(
        id=chunk_id or str(uuid4()),
        tenant_id=tenant_id,
        knowledge_tier=knowledge_tier,
        scope_owner_id=scope_owner_id,
        content=content,
        vector=vector,
        metadata={"chunk_index": chunk_index, **metadata},
        created_at=created_at or BASE_TIME,
    )


@pytest.fixture
def gateway_config() -> EmbeddingGatewayConfig:
    """Gateway settings with instant retries."""
    return EmbeddingGatewayConfig(
        api_key="test-key",
        dimension=TEST_DIMENSION,
        max_attempts=3,
        backoff_multiplier=0,
        backoff_min=0,
        backoff_max=0,
        ingestion_timeout=5,
        query_timeout=5,
    )


@pytest.fixture
def hashing_provider() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture
def gateway(hashing_provider, gateway_config) -> EmbeddingGateway:
    return EmbeddingGateway(hashing_provider, gateway_config)


@pytest.fixture
def memory_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(TEST_DIMENSION)


@pytest.fixture
def sql_store():
    store = SqlDocumentStore(TEST_DIMENSION, config=DocumentStoreConfig(database_url="sqlite://"))
    yield store
    store.engine.dispose()


@pytest.fixture(scope="session")
def chroma_client():
    return create_chroma_client(DocumentStoreConfig())


@pytest.fixture
def chroma_store(chroma_client):
    name = f"test_{uuid4().hex[:12]}"
    yield ChromaDocumentStore(chroma_client, TEST_DIMENSION, collection_name=name)
    chroma_client.delete_collection(name)


@pytest.fixture(params=["memory", "sql", "chroma"])
def document_store(request):
    """Every store backend, for contract tests."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def knowledge_service(gateway, memory_store) -> KnowledgeService:
    return KnowledgeService(gateway, memory_store)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="testing",
        log_level="DEBUG",
        log_json=False,
        _env_file=None,
    )


@pytest.fixture
def later():
    """Timestamp a number of seconds after BASE_TIME."""
    return lambda seconds: BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture
def chunk_factory():
    return make_chunk


@pytest.fixture
def unit_vec():
    return unit_vector


@pytest.fixture
def make_gateway(gateway_config):
    """Build a gateway around any provider with the test settings."""
    return lambda provider: EmbeddingGateway(provider, gateway_config)


@pytest.fixture
def fixed_provider():
    return FixedVectorProvider


@pytest.fixture
def test_client(test_settings, knowledge_service):
    """API client around the shared knowledge service."""
    app = create_app(test_settings, service=knowledge_service)
    with TestClient(app) as client:
        yield client
