"""
Unit tests for the OpenAI embeddings provider.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from tiered_rag.config import EmbeddingGatewayConfig
from tiered_rag.exceptions import ConfigurationError, ValidationError
from tiered_rag.services.embedding_gateway import TransientEmbeddingError
from tiered_rag.services.openai_client import OpenAIEmbeddingProvider

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def status_error(cls, status_code):
    response = httpx.Response(status_code, request=_REQUEST)
    return cls("error", response=response, body=None)


@pytest.fixture
def config():
    return EmbeddingGatewayConfig(api_key="test-key", dimension=3, model="text-embedding-3-small")


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.embeddings.create = AsyncMock()
    client.close = AsyncMock()
    return client


class TestOpenAIEmbeddingProvider:
    """Test suite for OpenAIEmbeddingProvider."""

    @pytest.mark.asyncio
    async def test_results_sorted_by_index(self, config, mock_client):
        mock_client.embeddings.create.return_value = SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.0, 1.0, 0.0]),
                SimpleNamespace(index=0, embedding=[1.0, 0.0, 0.0]),
            ],
            usage=SimpleNamespace(total_tokens=7),
            model="text-embedding-3-small",
        )
        provider = OpenAIEmbeddingProvider(config, client=mock_client)

        result = await provider.embed_batch(["first", "second"])

        assert result.embeddings == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
        assert result.total_tokens == 7
        kwargs = mock_client.embeddings.create.call_args.kwargs
        assert kwargs["input"] == ["first", "second"]
        assert kwargs["dimensions"] == 3

    @pytest.mark.asyncio
    async def test_legacy_model_omits_dimensions(self, mock_client):
        config = EmbeddingGatewayConfig(api_key="k", dimension=1536, model="text-embedding-ada-002")
        mock_client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(index=0, embedding=[0.0] * 1536)],
            usage=None,
        )
        provider = OpenAIEmbeddingProvider(config, client=mock_client)

        await provider.embed_batch(["text"])

        assert "dimensions" not in mock_client.embeddings.create.call_args.kwargs

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            openai.APITimeoutError(request=_REQUEST),
            openai.APIConnectionError(request=_REQUEST),
            status_error(openai.RateLimitError, 429),
            status_error(openai.InternalServerError, 503),
        ],
    )
    async def test_transient_errors(self, config, mock_client, error):
        mock_client.embeddings.create.side_effect = error
        provider = OpenAIEmbeddingProvider(config, client=mock_client)

        with pytest.raises(TransientEmbeddingError):
            await provider.embed_batch(["text"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            status_error(openai.AuthenticationError, 401),
            status_error(openai.PermissionDeniedError, 403),
            status_error(openai.NotFoundError, 404),
        ],
    )
    async def test_configuration_errors(self, config, mock_client, error):
        mock_client.embeddings.create.side_effect = error
        provider = OpenAIEmbeddingProvider(config, client=mock_client)

        with pytest.raises(ConfigurationError):
            await provider.embed_batch(["text"])

    @pytest.mark.asyncio
    async def test_bad_request_is_validation_error(self, config, mock_client):
        mock_client.embeddings.create.side_effect = status_error(openai.BadRequestError, 400)
        provider = OpenAIEmbeddingProvider(config, client=mock_client)

        with pytest.raises(ValidationError):
            await provider.embed_batch(["text"])

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        provider = OpenAIEmbeddingProvider(EmbeddingGatewayConfig(api_key=None))

        with pytest.raises(ConfigurationError):
            await provider.embed_batch(["text"])

    @pytest.mark.asyncio
    async def test_close(self, config, mock_client):
        provider = OpenAIEmbeddingProvider(config, client=mock_client)

        await provider.close()

        mock_client.close.assert_awaited_once()
