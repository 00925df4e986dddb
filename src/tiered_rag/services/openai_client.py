"""
OpenAI Embeddings Provider

This module implements the embedding provider contract on top of the async
OpenAI SDK. The SDK's own retries are disabled; the gateway owns retry
policy, so this client only translates SDK exceptions into the transient,
configuration and validation categories the gateway understands.
"""

import logging
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from tiered_rag.config import EmbeddingGatewayConfig
from tiered_rag.exceptions import ConfigurationError, ValidationError
from tiered_rag.services.embedding_gateway import ProviderEmbeddings, TransientEmbeddingError

logger = logging.getLogger(__name__)

# Models that accept a reduced output dimension
_DIMENSION_AWARE_PREFIX = "text-embedding-3"


class OpenAIEmbeddingProvider:
    """Async OpenAI embeddings client."""

    def __init__(self, config: EmbeddingGatewayConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        self.model = config.model
        self.dimension = config.dimension
        self._client = client

        logger.info(f"OpenAI embeddings provider initialized with model: {self.model}")

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.config.api_key:
                logger.error("OpenAI API key not configured")
                raise ConfigurationError(
                    "Embedding provider API key is not configured",
                    details={"setting": "EMBEDDING_API_KEY"},
                )

            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                organization=self.config.organization,
                base_url=self.config.base_url,
                max_retries=0,
                timeout=self.config.request_timeout,
            )
        return self._client

    async def embed_batch(self, texts: List[str]) -> ProviderEmbeddings:
        """
        Call the embeddings endpoint once for the whole batch.

        Args:
            texts: Non-blank texts

        Returns:
            Vectors ordered like the input, with token usage
        """
        client = self._get_client()

        request: Dict[str, Any] = {
            "input": texts,
            "model": self.model,
            "encoding_format": "float",
        }
        if self.model.startswith(_DIMENSION_AWARE_PREFIX):
            request["dimensions"] = self.dimension

        try:
            response = await client.embeddings.create(**request)
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            logger.warning(f"OpenAI connection problem: {e}")
            raise TransientEmbeddingError(str(e)) from e
        except openai.RateLimitError as e:
            logger.warning(f"Rate limit exceeded: {e}")
            raise TransientEmbeddingError(str(e)) from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            logger.error(f"Authentication failed: {e}")
            raise ConfigurationError(
                "Embedding provider rejected the configured credentials",
                details={"status_code": e.status_code},
            ) from e
        except openai.NotFoundError as e:
            logger.error(f"Embedding model not found: {self.model}")
            raise ConfigurationError(
                "Embedding model is not available",
                details={"model": self.model},
            ) from e
        except openai.APIStatusError as e:
            if e.status_code >= 500:
                logger.warning(f"OpenAI server error {e.status_code}: {e}")
                raise TransientEmbeddingError(str(e)) from e
            logger.error(f"OpenAI rejected the embedding request: {e}")
            raise ValidationError(
                "Embedding provider rejected the input",
                details={"status_code": e.status_code},
            ) from e

        data = sorted(response.data, key=lambda item: item.index)
        usage = getattr(response, "usage", None)

        return ProviderEmbeddings(
            embeddings=[item.embedding for item in data],
            total_tokens=usage.total_tokens if usage else 0,
            model=getattr(response, "model", self.model),
        )

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "dimensions": self.dimension,
            "max_input_tokens": 8191,
            "max_batch_size": 2048,
        }

    async def close(self) -> None:
        """Release the HTTP client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("OpenAI embeddings provider closed")
