"""
Unit Tests - RAG Pipeline

Tests for the query state machine, blocking and streamed.
"""

import pytest
import pytest_asyncio

from lectern.core.exceptions import EmbeddingError
from lectern.core.types import KnowledgeSource, QueryState, RetrievalMode, StreamEventType, TenantKey
from lectern.knowledge import ContextAssembler
from lectern.memory import ConversationMemory
from lectern.reasoning import AnswerSynthesizer, StubLLMAdapter
from lectern.runtime import QueryTrace, RAGPipeline

PHOTOSYNTHESIS = (
    "Photosynthesis converts light energy into chemical energy. "
    "Chloroplasts capture sunlight and produce glucose and oxygen."
)


class FailingEmbeddings:
    """Embedding service whose provider is unreachable."""

    dimension = 5

    async def embed(self, text: str) -> list[float]:
        raise EmbeddingError("embedding provider unreachable")


@pytest_asyncio.fixture
async def seeded(ingester, tenant):
    await ingester.ingest_text(
        tenant,
        title="Photosynthesis notes",
        content=PHOTOSYNTHESIS,
        source=KnowledgeSource.NOTEBOOK,
        source_id="note-1",
    )
    return tenant


class TestBlockingQuery:
    """Tests for RAGPipeline.query."""

    @pytest.mark.asyncio
    async def test_off_topic_question_answers_from_general_knowledge(self, pipeline, seeded):
        """Nothing relevant is stored: confidence 30, mode none, still an answer."""
        result = await pipeline.query(seeded, "Explain quantum gluons")

        assert result.confidence == 30
        assert result.mode == RetrievalMode.NONE
        assert result.sources == []
        assert result.answer.strip()
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_semantic_hit(self, pipeline, seeded):
        trace = QueryTrace()

        result = await pipeline.query(seeded, "How does photosynthesis work?", trace=trace)

        assert result.mode == RetrievalMode.SEMANTIC
        assert result.confidence == 100
        assert [s.title for s in result.sources] == ["Photosynthesis notes"]
        assert trace.states == [
            QueryState.EMBEDDING,
            QueryState.SEARCHING,
            QueryState.SEMANTIC_HIT,
            QueryState.SYNTHESIZING,
            QueryState.DONE,
        ]

    @pytest.mark.asyncio
    async def test_context_reaches_the_llm(self, pipeline, stub_llm, seeded):
        await pipeline.query(seeded, "How does photosynthesis work?")

        user_message = stub_llm.last_messages[-1].content
        assert "## SOURCE: Photosynthesis notes" in user_message
        assert "Chloroplasts capture sunlight" in user_message

    @pytest.mark.asyncio
    async def test_other_tenants_knowledge_is_invisible(self, pipeline, seeded):
        result = await pipeline.query(TenantKey.of("learner-2"), "How does photosynthesis work?")

        assert result.mode == RetrievalMode.NONE
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_embedding_failure_falls_back_to_keyword_search(
        self, retriever, stub_llm, seeded
    ):
        pipeline = RAGPipeline(
            FailingEmbeddings(), retriever, ContextAssembler(), AnswerSynthesizer(stub_llm)
        )

        result = await pipeline.query(seeded, "chloroplasts sunlight")

        assert result.mode == RetrievalMode.KEYWORD
        assert result.confidence == 50
        assert [s.title for s in result.sources] == ["Photosynthesis notes"]

    @pytest.mark.asyncio
    async def test_memory_is_updated(self, pipeline, seeded):
        memory = ConversationMemory()

        result = await pipeline.query(seeded, "How does photosynthesis work?", memory)

        [turn] = memory.recent()
        assert turn.question == "How does photosynthesis work?"
        assert turn.answer == result.answer
        assert turn.confidence == result.confidence

    @pytest.mark.asyncio
    async def test_llm_failure_is_degraded_not_raised(self, make_pipeline, seeded):
        pipeline = make_pipeline(StubLLMAdapter(fail_on_complete=RuntimeError("down")))
        trace = QueryTrace()

        result = await pipeline.query(seeded, "How does photosynthesis work?", trace=trace)

        assert result.degraded
        assert result.confidence == 0
        assert result.answer.startswith("I couldn't put together")
        assert QueryState.ERROR_FALLBACK in trace.states
        assert trace.states[-1] == QueryState.DONE


class TestStreamedQuery:
    """Tests for RAGPipeline.query_stream."""

    @pytest.mark.asyncio
    async def test_stream_events(self, pipeline, seeded):
        trace = QueryTrace()

        events = [
            e async for e in pipeline.query_stream(seeded, "How does photosynthesis work?", trace=trace)
        ]

        assert events[0].type == StreamEventType.METADATA
        assert events[0].mode == RetrievalMode.SEMANTIC
        assert events[-1].type == StreamEventType.DONE
        text = "".join(e.text for e in events if e.type == StreamEventType.DELTA)
        assert text == events[-1].result.answer
        assert QueryState.STREAMING in trace.states
        assert trace.states[-1] == QueryState.DONE

    @pytest.mark.asyncio
    async def test_stream_matches_blocking(self, pipeline, seeded):
        blocking = await pipeline.query(seeded, "How does photosynthesis work?")
        events = [e async for e in pipeline.query_stream(seeded, "How does photosynthesis work?")]

        assert events[-1].result == blocking

    @pytest.mark.asyncio
    async def test_mid_stream_failure_completes_with_templated_answer(self, make_pipeline, seeded):
        """Failure after two chunks still ends in DONE with confidence 0."""
        llm = StubLLMAdapter(default_response="Plants turn light into sugar.", fail_after_chunks=2)
        pipeline = make_pipeline(llm)
        memory = ConversationMemory()

        events = [
            e async for e in pipeline.query_stream(seeded, "How does photosynthesis work?", memory)
        ]

        done = events[-1]
        assert done.type == StreamEventType.DONE
        assert done.result.confidence == 0
        assert done.result.degraded
        assert 'Based on "Photosynthesis notes"' in done.result.answer
        assert sum(e.type == StreamEventType.DELTA for e in events) == 2
        assert memory.recent()[0].answer == done.result.answer

    @pytest.mark.asyncio
    async def test_consumer_abort_closes_llm_stream_and_skips_memory(self, make_pipeline, seeded):
        llm = StubLLMAdapter(default_response="Plants turn light into sugar.")
        pipeline = make_pipeline(llm)
        memory = ConversationMemory()

        stream = pipeline.query_stream(seeded, "How does photosynthesis work?", memory)
        async for event in stream:
            if event.type == StreamEventType.DELTA:
                break
        await stream.aclose()

        assert llm.streams_opened == 1
        assert llm.streams_closed == 1
        assert memory.recent() == []


class TestSearch:
    """Tests for RAGPipeline.search."""

    @pytest.mark.asyncio
    async def test_search_returns_hits_without_llm_call(self, pipeline, stub_llm, seeded):
        hits = await pipeline.search(seeded, "photosynthesis")

        assert [h.title for h in hits] == ["Photosynthesis notes"]
        assert hits[0].similarity == pytest.approx(1.0)
        assert stub_llm.call_count == 0

    @pytest.mark.asyncio
    async def test_search_by_source(self, pipeline, seeded):
        assert await pipeline.search(seeded, "photosynthesis", source=KnowledgeSource.QUIZ) == []

    @pytest.mark.asyncio
    async def test_embedding_failure_raises(self, retriever, stub_llm, seeded):
        pipeline = RAGPipeline(
            FailingEmbeddings(), retriever, ContextAssembler(), AnswerSynthesizer(stub_llm)
        )

        with pytest.raises(EmbeddingError):
            await pipeline.search(seeded, "photosynthesis")
