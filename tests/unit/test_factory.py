"""
Unit Tests - Component Factory

Tests for provider selection and wiring.
"""

import pytest

from lectern.config import EmbeddingSettings, LLMSettings, Settings, VectorStoreSettings
from lectern.knowledge import HashEmbeddings, InMemoryKnowledgeRepository, InMemoryVectorStore
from lectern.observability import LogLevel
from lectern.reasoning import StubLLMAdapter
from lectern.runtime import create_components, create_embeddings, create_llm_adapter


class TestProviderSelection:
    """Tests for create_llm_adapter and create_embeddings."""

    def test_offline_mode_uses_stub(self):
        adapter = create_llm_adapter(Settings(llm=LLMSettings(offline_mode=True)))
        assert isinstance(adapter, StubLLMAdapter)

    def test_missing_api_key_degrades_to_stub(self, log_buffer):
        settings = Settings(
            llm=LLMSettings(default_provider="anthropic", anthropic_api_key=None, offline_mode=False)
        )

        adapter = create_llm_adapter(settings)

        assert isinstance(adapter, StubLLMAdapter)
        assert log_buffer.messages(LogLevel.WARNING)

    def test_hash_embeddings(self):
        service = create_embeddings(Settings(embedding=EmbeddingSettings(provider="hash", dimension=32)))

        assert isinstance(service, HashEmbeddings)
        assert service.dimension == 32


class TestCreateComponents:
    """Tests for create_components."""

    @pytest.mark.asyncio
    async def test_offline_graph(self, embeddings, tenant):
        settings = Settings(
            llm=LLMSettings(offline_mode=True),
            vector_store=VectorStoreSettings(provider="memory"),
        )

        components = create_components(settings, embeddings=embeddings)

        assert components.embeddings is embeddings
        assert isinstance(components.vector_store, InMemoryVectorStore)
        assert isinstance(components.repository, InMemoryKnowledgeRepository)
        assert components.vector_store.dimension == embeddings.dimension

        await components.ingester.ingest_text(
            tenant, title="Algebra", content="Algebra uses variables.", source_id="n1"
        )
        result = await components.pipeline.query(tenant, "What is algebra?")

        assert result.confidence == 100
        await components.close()

    def test_answer_timeout_covers_retries(self, embeddings):
        settings = Settings(
            llm=LLMSettings(offline_mode=True, request_timeout=10.0, max_retries=2, retry_delay=1.0)
        )

        components = create_components(settings, embeddings=embeddings)

        # three attempts of 10s plus 1s and 2s of backoff
        assert settings.llm.total_timeout == 33.0
        assert components.synthesizer.config.llm_timeout == 33.0
