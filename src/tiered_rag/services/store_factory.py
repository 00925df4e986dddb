"""
Document store construction from configuration.
"""

import chromadb
import structlog
from chromadb.config import Settings as ChromaSettings

from tiered_rag.config import DocumentStoreConfig, StoreBackend
from tiered_rag.exceptions import ConfigurationError
from tiered_rag.services.document_store import DocumentStore, InMemoryDocumentStore
from tiered_rag.services.sql_document_store import SqlDocumentStore
from tiered_rag.services.vector_store import ChromaDocumentStore

logger = structlog.get_logger(__name__)


def create_chroma_client(config: DocumentStoreConfig):
    """Remote client when a host is configured, else persistent or ephemeral local client."""
    chroma_settings = ChromaSettings(anonymized_telemetry=False, allow_reset=False)

    if config.chroma_host:
        return chromadb.HttpClient(host=config.chroma_host, port=config.chroma_port, settings=chroma_settings)
    if config.chroma_persist_path:
        return chromadb.PersistentClient(path=config.chroma_persist_path, settings=chroma_settings)
    return chromadb.EphemeralClient(settings=chroma_settings)


def create_document_store(config: DocumentStoreConfig, dimension: int) -> DocumentStore:
    """
    Build the configured document store backend.

    Args:
        config: Store connection parameters
        dimension: Vector dimension of the deployment

    Returns:
        Ready-to-use document store
    """
    backend = config.backend
    logger.info("creating_document_store", backend=backend.value, dimension=dimension)

    if backend == StoreBackend.MEMORY:
        return InMemoryDocumentStore(dimension)
    if backend == StoreBackend.SQL:
        return SqlDocumentStore(dimension, config=config)
    if backend == StoreBackend.CHROMA:
        return ChromaDocumentStore(
            create_chroma_client(config),
            dimension,
            collection_name=config.chroma_collection,
        )

    raise ConfigurationError("Unknown document store backend", details={"backend": str(backend)})
