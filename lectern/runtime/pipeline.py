"""
RAG Pipeline

The single orchestration point for answering a question.

State machine per query:

    EMBEDDING -> SEARCHING -> SEMANTIC_HIT | KEYWORD_HIT | NO_CONTEXT
              -> SYNTHESIZING -> [STREAMING] -> DONE

ERROR_FALLBACK is entered when retrieval or generation fails unexpectedly;
every path ends in DONE with a populated RAGResult.

Design decisions:
- Embedding, search and generation have independent timeouts
- An embedding failure is not fatal: retrieval continues keyword-only
- Conversation memory is passed in per call and only updated once an
  answer is complete; an aborted stream leaves memory untouched
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field

from lectern.core.exceptions import EmbeddingError, EmbeddingValidationError
from lectern.core.types import (
    ConversationTurn,
    KeywordHit,
    KnowledgeSource,
    QueryState,
    RAGResult,
    RankedCandidate,
    RetrievalMode,
    SemanticHit,
    StreamEvent,
    StreamEventType,
    TenantKey,
)
from lectern.knowledge.context import AssembledContext, ContextAssembler
from lectern.knowledge.embeddings import EmbeddingService, validate_embedding
from lectern.knowledge.retriever import Retriever
from lectern.memory.conversation import ConversationMemory
from lectern.observability.logging import get_logger
from lectern.reasoning.synthesizer import AnswerSynthesizer

logger = get_logger(__name__)


@dataclass
class PipelineConfig:
    """Per-query limits."""

    top_k: int = 5
    score_threshold: float = 0.3
    context_token_budget: int = 3000
    embed_timeout: float = 20.0


@dataclass
class QueryTrace:
    """States visited by one query, in order."""

    states: list[QueryState] = field(default_factory=list)

    def enter(self, state: QueryState) -> None:
        self.states.append(state)

    @property
    def current(self) -> QueryState | None:
        return self.states[-1] if self.states else None


@dataclass
class _Prepared:
    mode: RetrievalMode
    candidates: list[RankedCandidate]
    context: AssembledContext


_OUTCOME_STATE = {
    RetrievalMode.SEMANTIC: QueryState.SEMANTIC_HIT,
    RetrievalMode.KEYWORD: QueryState.KEYWORD_HIT,
    RetrievalMode.NONE: QueryState.NO_CONTEXT,
}


class RAGPipeline:
    """
    Question answering over a tenant's knowledge.

    Example:
        memory = await sessions.get(tenant, session_id)
        result = await pipeline.query(tenant, "What is osmosis?", memory)

        async for event in pipeline.query_stream(tenant, question, memory):
            ...
    """

    def __init__(
        self,
        embeddings: EmbeddingService,
        retriever: Retriever,
        assembler: ContextAssembler,
        synthesizer: AnswerSynthesizer,
        config: PipelineConfig | None = None,
    ):
        self._embeddings = embeddings
        self._retriever = retriever
        self._assembler = assembler
        self._synthesizer = synthesizer
        self._config = config or PipelineConfig()

    async def _embed_query(self, question: str) -> list[float] | None:
        try:
            vector = await asyncio.wait_for(
                self._embeddings.embed(question), self._config.embed_timeout
            )
            return validate_embedding(vector, self._embeddings.dimension)
        except asyncio.TimeoutError as e:
            logger.warning(
                "Query embedding timed out, using keyword search",
                error=e,
                timeout=self._config.embed_timeout,
            )
        except (EmbeddingError, EmbeddingValidationError) as e:
            logger.warning("Query embedding failed, using keyword search", error=e)
        return None

    async def _prepare(
        self,
        tenant: TenantKey,
        question: str,
        trace: QueryTrace,
    ) -> _Prepared:
        trace.enter(QueryState.EMBEDDING)
        vector = await self._embed_query(question)

        trace.enter(QueryState.SEARCHING)
        outcome = await self._retriever.retrieve(
            tenant,
            vector,
            question,
            limit=self._config.top_k,
            score_threshold=self._config.score_threshold,
        )

        if isinstance(outcome, SemanticHit):
            mode = RetrievalMode.SEMANTIC
        elif isinstance(outcome, KeywordHit):
            mode = RetrievalMode.KEYWORD
        else:
            mode = RetrievalMode.NONE
        trace.enter(_OUTCOME_STATE[mode])

        context = self._assembler.assemble_detailed(
            outcome.candidates, self._config.context_token_budget
        )
        logger.debug(
            "Retrieved context",
            mode=mode.value,
            candidates=len(outcome.candidates),
            used=len(context.used),
            estimated_tokens=context.estimated_tokens,
        )
        return _Prepared(mode=mode, candidates=outcome.candidates, context=context)

    async def _safe_prepare(
        self,
        tenant: TenantKey,
        question: str,
        trace: QueryTrace,
    ) -> _Prepared | None:
        try:
            return await self._prepare(tenant, question, trace)
        except Exception as e:
            logger.error(
                "Retrieval failed, answering with templated response",
                error=e,
                state=trace.current.value if trace.current else None,
            )
            trace.enter(QueryState.ERROR_FALLBACK)
            return None

    def _retrieval_failure(self) -> RAGResult:
        return RAGResult(
            answer=self._synthesizer.fallback_answer([]),
            confidence=0,
            mode=RetrievalMode.FALLBACK,
            degraded=True,
        )

    @staticmethod
    async def _remember(
        memory: ConversationMemory | None,
        question: str,
        result: RAGResult,
    ) -> None:
        if memory is None:
            return
        await memory.push(
            ConversationTurn(
                question=question,
                answer=result.answer,
                sources=result.sources,
                confidence=result.confidence,
            )
        )

    async def query(
        self,
        tenant: TenantKey,
        question: str,
        memory: ConversationMemory | None = None,
        trace: QueryTrace | None = None,
    ) -> RAGResult:
        """Answer a question. Never raises for provider failures."""
        trace = trace or QueryTrace()

        with logger.context(tenant=str(tenant)):
            prepared = await self._safe_prepare(tenant, question, trace)
            if prepared is None:
                result = self._retrieval_failure()
            else:
                trace.enter(QueryState.SYNTHESIZING)
                result = await self._synthesizer.answer(
                    question,
                    prepared.candidates,
                    prepared.context,
                    prepared.mode,
                    memory,
                )
                if result.degraded:
                    trace.enter(QueryState.ERROR_FALLBACK)

            await self._remember(memory, question, result)
            trace.enter(QueryState.DONE)

            logger.info(
                "Answered query",
                mode=result.mode.value,
                confidence=result.confidence,
                sources=len(result.sources),
                degraded=result.degraded,
            )
            return result

    async def query_stream(
        self,
        tenant: TenantKey,
        question: str,
        memory: ConversationMemory | None = None,
        trace: QueryTrace | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Answer a question as a stream of events.

        The final event is always DONE carrying the RAGResult. Memory is
        written just before DONE is emitted, so a consumer that stops early
        leaves no partial turn behind.
        """
        trace = trace or QueryTrace()

        prepared = await self._safe_prepare(tenant, question, trace)
        if prepared is None:
            result = self._retrieval_failure()
            yield StreamEvent(
                type=StreamEventType.METADATA,
                sources=[],
                confidence=0,
                mode=RetrievalMode.FALLBACK,
            )
            yield StreamEvent(type=StreamEventType.FALLBACK, text=result.answer)
            await self._remember(memory, question, result)
            trace.enter(QueryState.DONE)
            yield StreamEvent(type=StreamEventType.DONE, result=result)
            return

        trace.enter(QueryState.SYNTHESIZING)
        events = self._synthesizer.stream(
            question,
            prepared.candidates,
            prepared.context,
            prepared.mode,
            memory,
        )

        async with aclosing(events):
            async for event in events:
                if event.type == StreamEventType.DELTA and trace.current != QueryState.STREAMING:
                    trace.enter(QueryState.STREAMING)
                elif event.type == StreamEventType.FALLBACK:
                    trace.enter(QueryState.ERROR_FALLBACK)
                elif event.type == StreamEventType.DONE and event.result is not None:
                    await self._remember(memory, question, event.result)
                    trace.enter(QueryState.DONE)
                    logger.info(
                        "Streamed query answer",
                        tenant=str(tenant),
                        mode=event.result.mode.value,
                        confidence=event.result.confidence,
                        degraded=event.result.degraded,
                    )
                yield event

    async def search(
        self,
        tenant: TenantKey,
        query: str,
        limit: int | None = None,
        score_threshold: float | None = None,
        source: KnowledgeSource | None = None,
    ) -> list[RankedCandidate]:
        """
        Semantic search without answer generation.

        Raises:
            EmbeddingError: the query could not be embedded
            VectorStoreError: the search failed
        """
        with logger.context(tenant=str(tenant)):
            try:
                vector = await asyncio.wait_for(
                    self._embeddings.embed(query), self._config.embed_timeout
                )
            except asyncio.TimeoutError as e:
                raise EmbeddingError(
                    f"Query embedding timed out after {self._config.embed_timeout}s",
                    cause=e,
                )
            vector = validate_embedding(vector, self._embeddings.dimension)

            hits = await self._retriever.search(
                tenant,
                vector,
                limit=limit or self._config.top_k,
                score_threshold=score_threshold,
                source=source,
            )
            logger.info("Searched knowledge", hits=len(hits), source=source.value if source else None)
            return hits
