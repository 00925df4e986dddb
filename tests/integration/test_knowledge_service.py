"""
Integration tests for ingestion and retrieval through the knowledge service.

These tests run the real chunker, gateway, store, retriever and formatter
with deterministic hashing embeddings.
"""

import pytest

from tiered_rag.exceptions import ConfigurationError, ServiceUnavailable, ValidationError
from tiered_rag.models.knowledge import KnowledgeTier, RetrievalConfig
from tiered_rag.services.chunking import ChunkingConfig, SemanticChunker
from tiered_rag.services.document_store import InMemoryDocumentStore
from tiered_rag.services.embedding_gateway import TransientEmbeddingError
from tiered_rag.services.knowledge_service import KnowledgeService, chunk_id_for

TENANT = "3f0c6a52-8d1e-4c1b-9a57-2b8f1e6d4c10"
AGENT_A = "agent-a"
AGENT_B = "agent-b"

COMPANY_PROFILE = (
    "Mission: We help independent bakeries reach customers online.\n\n"
    "Values: Honesty, craftsmanship and fast delivery guide every decision."
)


def handbook_document(label: str, paragraphs: int = 50) -> str:
    return "\n\n".join(
        f"Section {i:02d} of the {label} handbook covers topic {i:02d}."
        for i in range(paragraphs)
    )


class SwitchableProvider:
    """Wraps a provider and fails transiently while switched off."""

    def __init__(self, inner):
        self.inner = inner
        self.available = True

    async def embed_batch(self, texts):
        if not self.available:
            raise TransientEmbeddingError("provider unavailable")
        return await self.inner.embed_batch(texts)

    async def close(self):
        await self.inner.close()


@pytest.fixture
def small_chunk_service(gateway, memory_store):
    """Service whose chunker closes a chunk after two short paragraphs."""
    chunker = SemanticChunker(ChunkingConfig(target_size=120, overlap=0))
    return KnowledgeService(gateway, memory_store, chunker=chunker)


class TestProcessDocument:
    """Ingestion through the knowledge service."""

    @pytest.mark.asyncio
    async def test_process_document(self, knowledge_service, hashing_provider):
        result = await knowledge_service.process_document(
            COMPANY_PROFILE, TENANT, KnowledgeTier.GLOBAL, file_name="profile.md",
        )

        assert result.chunks_created == 1
        assert result.knowledge_tier == KnowledgeTier.GLOBAL
        assert result.total_characters == len(COMPANY_PROFILE)
        assert result.text_stats.paragraphs == 2
        assert len(hashing_provider.calls) == 1

    @pytest.mark.asyncio
    async def test_chunk_metadata(self, small_chunk_service, memory_store):
        await small_chunk_service.process_document(
            handbook_document("employee", paragraphs=6), TENANT, "global",
            metadata={"department": "hr"}, file_name="handbook.pdf",
        )

        stats = await memory_store.get_stats(TENANT)
        assert stats.total_chunks == 3

        chunks = [r.chunk for r in await memory_store.keyword_query(
            TENANT, RetrievalConfig().scope_filter(None), "handbook", 10,
        )]
        chunks.sort(key=lambda c: c.chunk_index)
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert len({c.created_at for c in chunks}) == 1
        first = chunks[0].metadata
        assert first["department"] == "hr"
        assert first["file_name"] == "handbook.pdf"
        assert first["total_chunks"] == 3
        assert first["source"] == "global"
        assert first["characters"] == len(chunks[0].content)
        assert chunks[0].id == chunk_id_for(TENANT, KnowledgeTier.GLOBAL, None, 0, chunks[0].content)

    @pytest.mark.asyncio
    async def test_reprocessing_replaces_scope(self, small_chunk_service, memory_store):
        await small_chunk_service.process_document(handbook_document("employee"), TENANT, "global")
        await small_chunk_service.process_document(handbook_document("employee"), TENANT, "global")

        stats = await memory_store.get_stats(TENANT)
        assert stats.total_chunks == 25

        await small_chunk_service.process_document(COMPANY_PROFILE, TENANT, "global")
        assert (await memory_store.get_stats(TENANT)).total_chunks == 2

    @pytest.mark.asyncio
    async def test_scopes_replaced_independently(self, knowledge_service, memory_store):
        await knowledge_service.process_document("Agent A pricing notes.", TENANT, "scoped", AGENT_A)
        await knowledge_service.process_document("Agent B pricing notes.", TENANT, "scoped", AGENT_B)
        await knowledge_service.process_document("Agent A revised pricing notes.", TENANT, "scoped", AGENT_A)

        stats = await memory_store.get_stats(TENANT)
        scoped = next(t for t in stats.tiers if t.knowledge_tier == KnowledgeTier.SCOPED)
        assert scoped.chunk_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   \n\n  ", "tiny"])
    async def test_unreadable_document_rejected(self, knowledge_service, hashing_provider, text):
        with pytest.raises(ValidationError):
            await knowledge_service.process_document(text, TENANT, "global")

        assert hashing_provider.calls == []

    @pytest.mark.asyncio
    async def test_scoped_document_requires_owner(self, knowledge_service):
        with pytest.raises(ValidationError):
            await knowledge_service.process_document(COMPANY_PROFILE, TENANT, "scoped")

    @pytest.mark.asyncio
    async def test_unknown_tier_rejected(self, knowledge_service):
        with pytest.raises(ValidationError):
            await knowledge_service.process_document(COMPANY_PROFILE, TENANT, "archive")

    @pytest.mark.asyncio
    async def test_embedding_outage_keeps_previous_chunks(self, hashing_provider, make_gateway):
        provider = SwitchableProvider(hashing_provider)
        gateway = make_gateway(provider)
        store = InMemoryDocumentStore(gateway.dimension)
        service = KnowledgeService(gateway, store)

        await service.process_document(COMPANY_PROFILE, TENANT, "global")
        provider.available = False

        with pytest.raises(ServiceUnavailable):
            await service.process_document("A brand new company profile text.", TENANT, "global")

        assert (await store.get_stats(TENANT)).total_chunks == 1
        provider.available = True
        context = await service.retrieve_context("mission", TENANT)
        assert "independent bakeries" in context

    def test_dimension_mismatch_rejected(self, gateway):
        with pytest.raises(ConfigurationError):
            KnowledgeService(gateway, InMemoryDocumentStore(gateway.dimension + 1))


class TestRetrieveContext:
    """Retrieval scenarios across tiers."""

    @pytest.mark.asyncio
    async def test_company_profile_found_for_agent(self, knowledge_service):
        await knowledge_service.process_document(COMPANY_PROFILE, TENANT, "global")
        await knowledge_service.process_document(
            "Wholesale price list for partner cafes.", TENANT, "scoped", AGENT_A, file_name="prices.pdf",
        )

        context = await knowledge_service.retrieve_context("What is our mission?", TENANT, AGENT_A)

        assert context.startswith("# Relevant Context\n\n")
        assert "## Company Knowledge (Mission, Values, Brand Guide)" in context
        assert "### Company Knowledge - Excerpt 1" in context
        assert "independent bakeries" in context

    @pytest.mark.asyncio
    async def test_global_tier_can_be_excluded(self, knowledge_service):
        await knowledge_service.process_document(COMPANY_PROFILE, TENANT, "global")
        config = RetrievalConfig(include_global_tier=False)

        result = await knowledge_service.search_context("mission", TENANT, AGENT_A, config)

        assert result.chunks == []
        assert result.total_found == 0
        assert result.context_formatted.startswith("# No Relevant Context Found")

    @pytest.mark.asyncio
    async def test_scoped_knowledge_not_shared_between_agents(self, knowledge_service):
        await knowledge_service.process_document(
            "Confidential discount ladder for agent A customers.", TENANT, "scoped", AGENT_A,
        )
        await knowledge_service.process_document(
            "Holiday opening hours for agent B customers.", TENANT, "scoped", AGENT_B,
        )

        for_b = await knowledge_service.search_context("customers discount ladder", TENANT, AGENT_B)

        assert all(c.scope_owner_id != AGENT_A for c in for_b.chunks)
        assert "Confidential" not in for_b.context_formatted

    @pytest.mark.asyncio
    async def test_other_tenants_see_nothing(self, knowledge_service):
        await knowledge_service.process_document(COMPANY_PROFILE, TENANT, "global")

        result = await knowledge_service.search_context("mission", "another-tenant", AGENT_A)

        assert result.chunks == []

    @pytest.mark.asyncio
    async def test_handbook_term_across_two_large_documents(self, small_chunk_service):
        await small_chunk_service.process_document(handbook_document("employee"), TENANT, "global")
        await small_chunk_service.process_document(handbook_document("sales"), TENANT, "shared")
        config = RetrievalConfig(max_results=20)

        first = await small_chunk_service.search_context("handbook", TENANT, None, config)
        second = await small_chunk_service.search_context("handbook", TENANT, None, config)

        assert first.total_found == 20
        assert all("handbook" in c.content for c in first.chunks)
        scores = [c.combined_score for c in first.chunks]
        assert scores == sorted(scores, reverse=True)
        assert [c.chunk_id for c in first.chunks] == [c.chunk_id for c in second.chunks]

    @pytest.mark.asyncio
    async def test_scoped_handbook_visible_only_to_its_agent(self, small_chunk_service):
        await small_chunk_service.process_document(handbook_document("employee"), TENANT, "global")
        await small_chunk_service.process_document(handbook_document("sales"), TENANT, "scoped", AGENT_A)
        config = RetrievalConfig(max_results=60)

        for_a = await small_chunk_service.search_context("handbook", TENANT, AGENT_A, config)
        for_b = await small_chunk_service.search_context("handbook", TENANT, AGENT_B, config)

        assert {c.knowledge_tier for c in for_a.chunks} == {KnowledgeTier.GLOBAL, KnowledgeTier.SCOPED}
        assert for_a.total_found == 50
        assert {c.knowledge_tier for c in for_b.chunks} == {KnowledgeTier.GLOBAL}
        assert for_b.total_found == 25

    @pytest.mark.asyncio
    async def test_values_question_matches_by_keyword(self, knowledge_service):
        await knowledge_service.process_document(
            "Mission: grow sustainably.\n\nValues: honesty, speed.", TENANT, "global",
        )

        result = await knowledge_service.search_context("What are our values?", TENANT, AGENT_A)

        assert result.total_found == 1
        assert result.chunks[0].keyword_score > 0
        assert "honesty, speed" in result.context_formatted

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, knowledge_service):
        with pytest.raises(ValidationError):
            await knowledge_service.retrieve_context("  ", TENANT, AGENT_A)

    @pytest.mark.asyncio
    async def test_health_and_close(self, knowledge_service, hashing_provider):
        health = await knowledge_service.health_check()

        assert health["status"] == "healthy"
        assert health["document_store"]["backend"] == "memory"

        await knowledge_service.close()
        assert hashing_provider.closed
