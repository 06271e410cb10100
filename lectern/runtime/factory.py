"""
Runtime Factory

Wires settings into a complete set of RAG components.

Design decisions:
- Every backend has an offline counterpart (stub LLM, hash embeddings,
  in-memory store and repository), so the service always starts
- A misconfigured LLM provider degrades to the stub adapter with a warning
  instead of failing startup
- Components can be overridden individually, which is how tests inject
  fakes
"""

from dataclasses import dataclass

from lectern.config.settings import Settings, get_settings
from lectern.knowledge.chunking import TextChunker
from lectern.knowledge.context import ContextAssembler
from lectern.knowledge.embeddings import (
    EmbeddingService,
    HashEmbeddings,
    LocalEmbeddings,
    OpenAIEmbeddings,
)
from lectern.knowledge.ingestion import KnowledgeIngester
from lectern.knowledge.ranking import RelevanceRanker
from lectern.knowledge.repository import (
    InMemoryKnowledgeRepository,
    KnowledgeRepository,
    RedisKnowledgeRepository,
)
from lectern.knowledge.retriever import RetrievalConfig, Retriever
from lectern.knowledge.vector_store import (
    InMemoryVectorStore,
    MilvusVectorStore,
    VectorStore,
)
from lectern.memory.session import SessionMemoryStore
from lectern.observability.logging import get_logger
from lectern.reasoning.llm.base import BaseLLMAdapter
from lectern.reasoning.llm.stub_adapter import StubLLMAdapter
from lectern.reasoning.synthesizer import AnswerSynthesizer, SynthesisConfig
from lectern.runtime.pipeline import PipelineConfig, RAGPipeline

logger = get_logger(__name__)


def create_llm_adapter(settings: Settings) -> BaseLLMAdapter:
    """
    Create the LLM adapter selected by settings.

    Priority order:
    1. offline_mode or provider "stub": StubLLMAdapter
    2. provider "openai" with an API key: OpenAIAdapter
    3. provider "anthropic" with an API key: AnthropicAdapter
    4. Anything else: StubLLMAdapter, so the service still answers
    """
    llm = settings.llm
    provider = llm.effective_provider

    if provider == "stub":
        logger.info("Using stub LLM adapter", reason="offline mode")
        return StubLLMAdapter(llm, stream_delay_ms=llm.stub_stream_delay_ms)

    try:
        if provider == "openai" and llm.openai_api_key:
            from lectern.reasoning.llm.openai_adapter import OpenAIAdapter

            logger.info("Using OpenAI LLM adapter", model=llm.openai_default_model)
            return OpenAIAdapter(settings=llm)

        if provider == "anthropic" and llm.anthropic_api_key:
            from lectern.reasoning.llm.anthropic_adapter import AnthropicAdapter

            logger.info("Using Anthropic LLM adapter", model=llm.anthropic_default_model)
            return AnthropicAdapter(settings=llm)

        logger.warning("No LLM API key configured, falling back to stub adapter", provider=provider)
    except Exception as e:
        logger.warning("Failed to create LLM adapter, using stub adapter", error=e, provider=provider)

    return StubLLMAdapter(llm, stream_delay_ms=llm.stub_stream_delay_ms)


def create_embeddings(settings: Settings) -> EmbeddingService:
    cfg = settings.embedding

    if cfg.provider == "hash":
        return HashEmbeddings(dimension=cfg.dimension)
    if cfg.provider == "local":
        return LocalEmbeddings(model_name=cfg.model)

    return OpenAIEmbeddings(
        api_key=cfg.api_key.get_secret_value() if cfg.api_key else None,
        model=cfg.model,
        dimension=cfg.dimension,
        base_url=cfg.base_url,
        batch_size=cfg.batch_size,
        cache_enabled=cfg.cache_enabled,
    )


def create_vector_store(settings: Settings, dimension: int) -> VectorStore:
    cfg = settings.vector_store

    if cfg.provider == "milvus":
        return MilvusVectorStore(
            dimension=dimension,
            uri=cfg.milvus_uri,
            token=cfg.milvus_token.get_secret_value() if cfg.milvus_token else None,
            metric=cfg.metric,
            collection_prefix=cfg.collection_prefix,
        )
    return InMemoryVectorStore(
        dimension=dimension,
        metric=cfg.metric,
        collection_prefix=cfg.collection_prefix,
    )


def create_repository(settings: Settings) -> KnowledgeRepository:
    cfg = settings.knowledge_base

    if cfg.backend == "redis":
        return RedisKnowledgeRepository(settings.redis.url, key_prefix=cfg.key_prefix)
    return InMemoryKnowledgeRepository()


@dataclass
class RAGComponents:
    """Everything the API needs, built once per process."""

    settings: Settings
    llm: BaseLLMAdapter
    embeddings: EmbeddingService
    vector_store: VectorStore
    repository: KnowledgeRepository
    retriever: Retriever
    assembler: ContextAssembler
    synthesizer: AnswerSynthesizer
    pipeline: RAGPipeline
    ingester: KnowledgeIngester
    sessions: SessionMemoryStore

    async def close(self) -> None:
        await self.llm.close()
        if isinstance(self.repository, RedisKnowledgeRepository):
            await self.repository.close()


def create_components(
    settings: Settings | None = None,
    *,
    llm: BaseLLMAdapter | None = None,
    embeddings: EmbeddingService | None = None,
    vector_store: VectorStore | None = None,
    repository: KnowledgeRepository | None = None,
) -> RAGComponents:
    """
    Build the full component graph.

    Args:
        settings: Settings to use (defaults to get_settings())
        llm: Override the LLM adapter
        embeddings: Override the embedding service
        vector_store: Override the vector store
        repository: Override the knowledge repository
    """
    settings = settings or get_settings()
    rag = settings.rag

    llm = llm or create_llm_adapter(settings)
    embeddings = embeddings or create_embeddings(settings)
    vector_store = vector_store or create_vector_store(settings, embeddings.dimension)
    repository = repository or create_repository(settings)

    retriever = Retriever(
        vector_store,
        repository,
        RelevanceRanker(),
        RetrievalConfig(
            top_k=settings.vector_store.default_top_k,
            score_threshold=settings.vector_store.similarity_threshold,
            search_timeout=settings.vector_store.search_timeout,
            recent_days=settings.knowledge_base.recent_days,
        ),
    )
    assembler = ContextAssembler(chars_per_token=rag.chars_per_token)
    synthesizer = AnswerSynthesizer(
        llm,
        SynthesisConfig(
            persona=rag.persona,
            timezone=rag.timezone,
            keyword_confidence=rag.keyword_confidence,
            no_context_confidence=rag.no_context_confidence,
            snippet_chars=rag.source_snippet_chars,
            memory_prompt_turns=rag.memory_prompt_turns,
            llm_timeout=settings.llm.total_timeout,
            stream_idle_timeout=settings.llm.stream_idle_timeout,
            temperature=settings.llm.default_temperature,
            max_tokens=settings.llm.default_max_tokens,
        ),
    )
    pipeline = RAGPipeline(
        embeddings,
        retriever,
        assembler,
        synthesizer,
        PipelineConfig(
            top_k=settings.vector_store.default_top_k,
            score_threshold=settings.vector_store.similarity_threshold,
            context_token_budget=rag.context_token_budget,
            embed_timeout=rag.embed_timeout,
        ),
    )
    ingester = KnowledgeIngester(
        TextChunker(rag.chunk_size, rag.chunk_overlap),
        embeddings,
        vector_store,
        repository,
        embed_timeout=settings.embedding.timeout,
    )
    sessions = SessionMemoryStore(
        capacity=rag.memory_capacity,
        preview_chars=rag.memory_preview_chars,
        ttl_seconds=rag.memory_ttl_seconds,
        idle_seconds=rag.session_idle_seconds,
    )

    logger.info(
        "Components initialized",
        llm=llm.provider_name,
        embeddings=type(embeddings).__name__,
        vector_store=type(vector_store).__name__,
        repository=type(repository).__name__,
    )

    return RAGComponents(
        settings=settings,
        llm=llm,
        embeddings=embeddings,
        vector_store=vector_store,
        repository=repository,
        retriever=retriever,
        assembler=assembler,
        synthesizer=synthesizer,
        pipeline=pipeline,
        ingester=ingester,
        sessions=sessions,
    )
