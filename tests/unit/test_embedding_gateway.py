"""
Unit tests for the embedding gateway.
"""

import asyncio
from typing import List

import pytest

from tiered_rag.exceptions import ConfigurationError, IntegrityError, ServiceUnavailable, ValidationError
from tiered_rag.services.embedding_gateway import ProviderEmbeddings, TransientEmbeddingError


class ScriptedProvider:
    """Provider that replays a script of failures before answering."""

    def __init__(self, dimension: int, failures: List[Exception] = None, delay: float = 0.0):
        self.dimension = dimension
        self.failures = list(failures or [])
        self.delay = delay
        self.calls = 0
        self.closed = False

    async def embed_batch(self, texts):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        return ProviderEmbeddings(
            embeddings=[[float(i + 1)] * self.dimension for i in range(len(texts))],
            total_tokens=len(texts) * 3,
        )

    async def close(self):
        self.closed = True


class MisshapenProvider:
    """Provider returning a fixed, possibly wrong, payload."""

    def __init__(self, embeddings):
        self.embeddings = embeddings

    async def embed_batch(self, texts):
        return ProviderEmbeddings(embeddings=self.embeddings)

    async def close(self):
        return None


class TestEmbeddingGateway:
    """Test suite for EmbeddingGateway."""

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_provider_call(self, make_gateway, gateway_config):
        provider = ScriptedProvider(gateway_config.dimension)
        gateway = make_gateway(provider)

        assert await gateway.embed([]) == []
        assert await gateway.embed(["", "   "]) == []
        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_vectors_in_input_order(self, make_gateway, gateway_config):
        gateway = make_gateway(ScriptedProvider(gateway_config.dimension))

        vectors = await gateway.embed(["first", "second", "third"])

        assert [v[0] for v in vectors] == [1.0, 2.0, 3.0]
        assert all(len(v) == gateway_config.dimension for v in vectors)

    @pytest.mark.asyncio
    async def test_usage_is_tracked(self, make_gateway, gateway_config):
        gateway = make_gateway(ScriptedProvider(gateway_config.dimension))

        await gateway.embed(["a", "b"])
        usage = gateway.get_usage_stats()

        assert usage.total_requests == 1
        assert usage.total_embeddings == 2
        assert usage.total_tokens == 6
        assert usage.last_request_time is not None

        gateway.reset_usage_stats()
        assert gateway.get_usage_stats().total_requests == 0

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, make_gateway, gateway_config):
        provider = ScriptedProvider(
            gateway_config.dimension,
            failures=[TransientEmbeddingError("rate limited"), TransientEmbeddingError("timeout")],
        )
        gateway = make_gateway(provider)

        vectors = await gateway.embed(["text"])

        assert len(vectors) == 1
        assert provider.calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_service_unavailable(self, make_gateway, gateway_config):
        provider = ScriptedProvider(
            gateway_config.dimension,
            failures=[TransientEmbeddingError("503")] * 5,
        )
        gateway = make_gateway(provider)

        with pytest.raises(ServiceUnavailable) as exc_info:
            await gateway.embed(["text"])

        assert exc_info.value.retryable is True
        assert provider.calls == gateway_config.max_attempts
        assert gateway.get_usage_stats().failed_requests == 1

    @pytest.mark.asyncio
    async def test_configuration_error_is_not_retried(self, make_gateway, gateway_config):
        provider = ScriptedProvider(
            gateway_config.dimension,
            failures=[ConfigurationError("invalid api key")],
        )
        gateway = make_gateway(provider)

        with pytest.raises(ConfigurationError):
            await gateway.embed(["text"])

        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_deadline_raises_service_unavailable(self, make_gateway, gateway_config):
        gateway = make_gateway(ScriptedProvider(gateway_config.dimension, delay=1.0))

        with pytest.raises(ServiceUnavailable):
            await gateway.embed(["slow"], timeout=0.05)

    @pytest.mark.asyncio
    async def test_wrong_dimension_is_integrity_error(self, make_gateway, gateway_config):
        gateway = make_gateway(MisshapenProvider([[0.1] * (gateway_config.dimension - 1)]))

        with pytest.raises(IntegrityError):
            await gateway.embed(["text"])

    @pytest.mark.asyncio
    async def test_wrong_count_is_integrity_error(self, make_gateway, gateway_config):
        gateway = make_gateway(MisshapenProvider([[0.1] * gateway_config.dimension]))

        with pytest.raises(IntegrityError):
            await gateway.embed(["one", "two"])

    @pytest.mark.asyncio
    async def test_embed_one(self, make_gateway, gateway_config):
        gateway = make_gateway(ScriptedProvider(gateway_config.dimension))

        vector = await gateway.embed_one("query")

        assert len(vector) == gateway_config.dimension

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   \n "])
    async def test_embed_one_rejects_blank_text(self, make_gateway, gateway_config, text):
        provider = ScriptedProvider(gateway_config.dimension)
        gateway = make_gateway(provider)

        with pytest.raises(ValidationError):
            await gateway.embed_one(text)

        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_health_check_does_not_call_provider(self, make_gateway, gateway_config):
        provider = ScriptedProvider(gateway_config.dimension)
        gateway = make_gateway(provider)

        health = await gateway.health_check()

        assert health["status"] == "healthy"
        assert health["dimension"] == gateway_config.dimension
        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_close_closes_provider(self, make_gateway, gateway_config):
        provider = ScriptedProvider(gateway_config.dimension)
        await make_gateway(provider).close()
        assert provider.closed
