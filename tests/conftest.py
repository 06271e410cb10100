"""
Test Configuration

Shared fixtures and test utilities.
"""

import math
from datetime import datetime, timedelta, timezone

import pytest
import redis

from lectern.config import LLMSettings
from lectern.core.types import KnowledgeSource, RankedCandidate, TenantKey
from lectern.knowledge import (
    ContextAssembler,
    InMemoryKnowledgeRepository,
    InMemoryVectorStore,
    KnowledgeIngester,
    RedisKnowledgeRepository,
    RelevanceRanker,
    Retriever,
    TextChunker,
)
from lectern.knowledge.embeddings import EmbeddingService
from lectern.observability import BufferHandler, configure_logging
from lectern.reasoning import AnswerSynthesizer, StubLLMAdapter
from lectern.runtime import RAGPipeline

TOPICS = ["photosynthesis", "mitochondria", "algebra", "revolution"]


class TopicEmbeddings(EmbeddingService):
    """
    One axis per known topic word; texts without a known topic share a
    separate axis. Similarities are exact, which keeps thresholds
    predictable in tests.
    """

    def __init__(self, topics: list[str] | None = None):
        self._topics = list(topics or TOPICS)
        self.calls = 0

    @property
    def dimension(self) -> int:
        return len(self._topics) + 1

    def _vectorize(self, text: str) -> list[float]:
        lowered = text.lower()
        vector = [1.0 if topic in lowered else 0.0 for topic in self._topics]
        vector.append(0.0 if any(vector) else 1.0)
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector]

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        return self._vectorize(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [self._vectorize(t) for t in texts]


class FakeRedis:
    """The part of redis.asyncio.Redis that RedisKnowledgeRepository uses."""

    def __init__(self, fail_reads: bool = False, fail_writes: bool = False):
        self.strings: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.closed = False

    def _refuse(self, failing: bool) -> None:
        if failing:
            raise redis.exceptions.ConnectionError("Error 111 connecting to localhost:6379")

    async def get(self, key):
        self._refuse(self.fail_reads)
        return self.strings.get(key)

    async def hget(self, key, field):
        self._refuse(self.fail_reads)
        return self.hashes.get(key, {}).get(field)

    async def smembers(self, key):
        self._refuse(self.fail_reads)
        return set(self.sets.get(key, set()))

    async def mget(self, keys):
        self._refuse(self.fail_reads)
        return [self.strings.get(k) for k in keys]

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


class FakePipeline:
    """Buffers writes until execute(), like a MULTI/EXEC pipeline."""

    def __init__(self, client: FakeRedis):
        self._client = client
        self._ops: list = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self._ops.clear()

    def set(self, key, value):
        self._ops.append(lambda: self._client.strings.__setitem__(key, value))
        return self

    def sadd(self, key, member):
        self._ops.append(lambda: self._client.sets.setdefault(key, set()).add(member))
        return self

    def hset(self, key, field, value):
        self._ops.append(lambda: self._client.hashes.setdefault(key, {}).__setitem__(field, value))
        return self

    async def execute(self):
        self._client._refuse(self._client.fail_writes)
        for op in self._ops:
            op()
        return [True] * len(self._ops)


def make_candidate(
    id: str,
    title: str,
    content: str = "",
    *,
    source: KnowledgeSource = KnowledgeSource.TEXT,
    subject: str | None = None,
    tags: list[str] | None = None,
    score: float | None = None,
    age_days: float = 0.0,
    similarity: float = 0.0,
    now: datetime | None = None,
) -> RankedCandidate:
    now = now or datetime.now(timezone.utc)
    return RankedCandidate(
        id=id,
        title=title,
        content=content or title,
        source=source,
        subject=subject,
        tags=tags or [],
        score=score,
        last_updated=now - timedelta(days=age_days),
        similarity=similarity,
    )


@pytest.fixture(autouse=True)
def log_buffer() -> BufferHandler:
    """Capture all log records of a test."""
    buffer = BufferHandler()
    configure_logging(level="DEBUG", handlers=[buffer])
    return buffer


@pytest.fixture
def tenant() -> TenantKey:
    return TenantKey.of("learner-1")


@pytest.fixture
def embeddings() -> TopicEmbeddings:
    return TopicEmbeddings()


@pytest.fixture
def vector_store(embeddings) -> InMemoryVectorStore:
    return InMemoryVectorStore(dimension=embeddings.dimension)


@pytest.fixture
def repository() -> InMemoryKnowledgeRepository:
    return InMemoryKnowledgeRepository()


@pytest.fixture
def ingester(embeddings, vector_store, repository) -> KnowledgeIngester:
    return KnowledgeIngester(
        TextChunker(chunk_size=500, chunk_overlap=50),
        embeddings,
        vector_store,
        repository,
    )


@pytest.fixture
def retriever(vector_store, repository) -> Retriever:
    return Retriever(vector_store, repository, RelevanceRanker())


@pytest.fixture
def stub_llm() -> StubLLMAdapter:
    return StubLLMAdapter(LLMSettings(max_retries=0))


@pytest.fixture
def make_pipeline(embeddings, retriever):
    """Build a pipeline around a given LLM adapter."""

    def _make(llm: StubLLMAdapter) -> RAGPipeline:
        return RAGPipeline(
            embeddings,
            retriever,
            ContextAssembler(),
            AnswerSynthesizer(llm),
        )

    return _make


@pytest.fixture
def pipeline(make_pipeline, stub_llm) -> RAGPipeline:
    return make_pipeline(stub_llm)


@pytest.fixture
def candidate():
    """Factory for ranked candidates (see make_candidate)."""
    return make_candidate


@pytest.fixture
def redis_repository():
    """Build a RedisKnowledgeRepository over a FakeRedis client."""

    def _make(**failures) -> RedisKnowledgeRepository:
        repository = RedisKnowledgeRepository("redis://localhost:6379/0")
        repository._client = FakeRedis(**failures)
        return repository

    return _make
