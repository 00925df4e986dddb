"""
Configuration management for the Tiered RAG core.

This module provides configuration objects built on Pydantic Settings. A
single Settings instance is loaded once at process startup with
load_settings() and handed to the components that need it; nothing in the
package reads configuration from module-level state.
"""

from enum import Enum
from typing import Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StoreBackend(str, Enum):
    """Document store implementations."""

    MEMORY = "memory"
    SQL = "sql"
    CHROMA = "chroma"


class EmbeddingGatewayConfig(BaseSettings):
    """Embedding provider credentials, model and retry settings."""

    model_config = SettingsConfigDict(
        env_prefix="EMBEDDING_",
        populate_by_name=True,
        extra="ignore",
    )

    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("EMBEDDING_API_KEY", "OPENAI_API_KEY"),
    )
    organization: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("EMBEDDING_ORGANIZATION", "OPENAI_ORGANIZATION"),
    )
    base_url: Optional[str] = Field(default=None, description="Override for the provider endpoint")
    model: str = Field(default="text-embedding-3-small", description="Embedding model name")
    dimension: int = Field(default=1536, ge=1, description="Vector dimension D of the deployment")

    # Retry policy for transient provider failures
    max_attempts: int = Field(default=3, ge=1)
    backoff_multiplier: float = Field(default=1.0, ge=0.0)
    backoff_min: float = Field(default=1.0, ge=0.0)
    backoff_max: float = Field(default=10.0, ge=0.0)

    # Timeouts in seconds
    request_timeout: float = Field(default=60.0, gt=0.0)
    ingestion_timeout: float = Field(default=30.0, gt=0.0)
    query_timeout: float = Field(default=10.0, gt=0.0)


class DocumentStoreConfig(BaseSettings):
    """Document store connection parameters."""

    model_config = SettingsConfigDict(env_prefix="STORE_", extra="ignore")

    backend: StoreBackend = Field(default=StoreBackend.MEMORY)

    # SQL backend
    database_url: str = Field(default="sqlite:///./tiered_rag.db")
    pool_size: int = Field(default=10, ge=1)
    max_overflow: int = Field(default=20, ge=0)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=3600)
    echo: bool = Field(default=False)

    # ChromaDB backend
    chroma_host: Optional[str] = Field(default=None)
    chroma_port: int = Field(default=8000)
    chroma_persist_path: Optional[str] = Field(default=None)
    chroma_collection: str = Field(default="knowledge_chunks")

    @field_validator("backend", mode="before")
    @classmethod
    def validate_backend(cls, v):
        """Accept backend names in any case."""
        if isinstance(v, str):
            return StoreBackend(v.lower())
        return v


class ChunkingSettings(BaseSettings):
    """Chunking configuration settings."""

    model_config = SettingsConfigDict(env_prefix="CHUNKING_", extra="ignore")

    target_size: int = Field(default=1000, ge=1)
    overlap: int = Field(default=100, ge=0)
    min_average_ratio: float = Field(default=0.5, gt=0.0)
    max_average_ratio: float = Field(default=2.0, gt=0.0)
    min_document_characters: int = Field(default=10, ge=1)


class RetrievalSettings(BaseSettings):
    """Deployment defaults for hybrid retrieval."""

    model_config = SettingsConfigDict(env_prefix="RETRIEVAL_", extra="ignore")

    include_global_tier: bool = Field(default=True)
    include_shared_tier: bool = Field(default=True)
    max_results: int = Field(default=10, ge=1)
    semantic_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    keyword_scale: float = Field(default=10.0, gt=0.0)
    similarity_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    candidate_multiplier: int = Field(default=3, ge=1)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)
    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_json: Optional[bool] = Field(default=None, description="Force JSON log output")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # Component settings
    embedding: EmbeddingGatewayConfig = Field(default_factory=EmbeddingGatewayConfig)
    store: DocumentStoreConfig = Field(default_factory=DocumentStoreConfig)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level value."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @model_validator(mode="after")
    def validate_chunking_ratios(self) -> "Settings":
        if self.chunking.max_average_ratio < self.chunking.min_average_ratio:
            raise ValueError("chunking.max_average_ratio must be >= chunking.min_average_ratio")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION


def load_settings(**overrides) -> Settings:
    """Load settings from the environment, applying keyword overrides."""
    return Settings(**overrides)
