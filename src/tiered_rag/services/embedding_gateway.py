"""
Embedding Gateway

This module batches texts to an embedding provider and returns one vector
per text, in input order. Transient provider failures are retried with
exponential backoff; once the budget is spent, or the overall timeout
expires, the caller gets a retryable ServiceUnavailable. Returned vectors are
validated against the deployment dimension and are never padded or
truncated.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tiered_rag.config import EmbeddingGatewayConfig
from tiered_rag.exceptions import IntegrityError, ServiceUnavailable, ValidationError

logger = logging.getLogger(__name__)


class TransientEmbeddingError(Exception):
    """Provider failure worth retrying: rate limit, timeout, connection or 5xx."""


class ProviderEmbeddings(BaseModel):
    """Raw provider response for one batch."""

    embeddings: List[List[float]] = Field(..., description="One vector per input text, in input order")
    total_tokens: int = Field(default=0, description="Tokens billed for the batch")
    model: Optional[str] = Field(None, description="Model that produced the vectors")


class EmbeddingProvider(Protocol):
    """Remote text-embedding service contract."""

    async def embed_batch(self, texts: List[str]) -> ProviderEmbeddings:
        ...

    async def close(self) -> None:
        ...


class EmbeddingUsage(BaseModel):
    """Usage tracking for embeddings."""

    total_tokens: int = Field(default=0, description="Total tokens processed")
    total_requests: int = Field(default=0, description="Total successful provider calls")
    total_embeddings: int = Field(default=0, description="Total embeddings generated")
    failed_requests: int = Field(default=0, description="Calls that ended in an error")
    last_request_time: Optional[datetime] = Field(None, description="Last request timestamp")


class EmbeddingGateway:
    """Validating, retrying front door to an embedding provider."""

    def __init__(self, provider: EmbeddingProvider, config: EmbeddingGatewayConfig):
        self.provider = provider
        self.config = config
        self.dimension = config.dimension
        self._usage = EmbeddingUsage()

    async def embed(self, texts: Sequence[str], timeout: Optional[float] = None) -> List[List[float]]:
        """
        Embed a batch of texts.

        Callers are expected to pass non-empty strings; blank entries are
        dropped before the provider call and receive no vector.

        Args:
            texts: Texts to embed
            timeout: Overall deadline in seconds, retries included; defaults
                to the ingestion timeout

        Returns:
            One vector of the configured dimension per non-blank text, in order

        Raises:
            ServiceUnavailable: Transient failures exhausted the retry budget
                or the deadline expired
            ConfigurationError: Credentials or model are invalid
            ValidationError: The provider rejected the input
            IntegrityError: Vector count or dimension does not match
        """
        batch = [t for t in texts if t and t.strip()]
        if not batch:
            return []

        deadline = timeout if timeout is not None else self.config.ingestion_timeout
        start_time = time.time()

        try:
            response = await asyncio.wait_for(self._embed_with_retry(batch), timeout=deadline)
        except asyncio.TimeoutError as e:
            self._usage.failed_requests += 1
            logger.warning(f"Embedding request for {len(batch)} texts timed out after {deadline}s")
            raise ServiceUnavailable(
                "Embedding service did not respond in time, please retry later",
                details={"timeout": deadline},
            ) from e
        except Exception:
            self._usage.failed_requests += 1
            raise

        vectors = self._validate(batch, response)

        self._usage.total_tokens += response.total_tokens
        self._usage.total_requests += 1
        self._usage.total_embeddings += len(vectors)
        self._usage.last_request_time = datetime.now(timezone.utc)

        logger.info(f"Generated {len(vectors)} embeddings in {time.time() - start_time:.2f}s")
        return vectors

    async def embed_one(self, text: str, timeout: Optional[float] = None) -> List[float]:
        """Embed a single query text with the query timeout."""
        if not text or not text.strip():
            raise ValidationError("Cannot embed a blank text")

        deadline = timeout if timeout is not None else self.config.query_timeout
        vectors = await self.embed([text], timeout=deadline)
        return vectors[0]

    async def _embed_with_retry(self, batch: List[str]) -> ProviderEmbeddings:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.backoff_multiplier,
                min=self.config.backoff_min,
                max=self.config.backoff_max,
            ),
            retry=retry_if_exception_type(TransientEmbeddingError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self.provider.embed_batch(batch)
        except TransientEmbeddingError as e:
            logger.error(f"Embedding provider still failing after {self.config.max_attempts} attempts: {e}")
            raise ServiceUnavailable(details={"attempts": self.config.max_attempts}) from e

    def _validate(self, batch: List[str], response: ProviderEmbeddings) -> List[List[float]]:
        vectors = response.embeddings
        if len(vectors) != len(batch):
            raise IntegrityError(
                "Embedding count does not match input count",
                details={"expected": len(batch), "received": len(vectors)},
            )

        for index, vector in enumerate(vectors):
            if len(vector) != self.dimension:
                raise IntegrityError(
                    "Embedding dimension does not match the configured dimension",
                    details={"index": index, "expected": self.dimension, "received": len(vector)},
                )

        return [list(v) for v in vectors]

    def get_usage_stats(self) -> EmbeddingUsage:
        """Get current usage statistics."""
        return self._usage.model_copy()

    def reset_usage_stats(self) -> None:
        self._usage = EmbeddingUsage()

    async def health_check(self) -> Dict[str, Any]:
        """Report provider configuration and usage without calling the provider."""
        return {
            "status": "healthy",
            "model": self.config.model,
            "dimension": self.dimension,
            "usage": self._usage.model_dump(mode="json"),
        }

    async def close(self) -> None:
        await self.provider.close()
