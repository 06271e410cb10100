"""
Answer Synthesizer

Turns assembled context into a RAGResult, blocking or streamed.

Design decisions:
- Confidence reflects the evidence path, not the LLM output:
  semantic hits map mean similarity onto (keyword, 100], keyword hits get
  a fixed lower value, general-knowledge answers a lower one still, and a
  failed generation gets 0
- Any LLM failure (error, timeout, empty output, mid-stream error) yields
  a deterministic templated answer; it is logged, never raised
- A streamed answer and a blocking answer over a deterministic LLM are
  the same text
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lectern.core.exceptions import ConfigurationError, LLMResponseError
from lectern.core.types import (
    Message,
    MessageRole,
    RAGResult,
    RankedCandidate,
    RetrievalMode,
    Source,
    StreamEvent,
    StreamEventType,
    utcnow,
)
from lectern.knowledge.context import AssembledContext
from lectern.memory.conversation import ConversationMemory
from lectern.observability.logging import get_logger
from lectern.reasoning.llm.base import BaseLLMAdapter
from lectern.reasoning.prompts.template import PromptRegistry, get_prompt_registry

logger = get_logger(__name__)


@dataclass
class SynthesisConfig:
    """Answer synthesis behaviour."""

    persona: str = "You are a friendly, encouraging study assistant."
    timezone: str = "UTC"
    keyword_confidence: int = 50
    no_context_confidence: int = 30
    snippet_chars: int = 200
    fallback_excerpt_chars: int = 400
    memory_prompt_turns: int = 3
    llm_timeout: float | None = None  # whole complete() call, retries included
    stream_idle_timeout: float = 30.0
    temperature: float | None = None
    max_tokens: int | None = None


class AnswerSynthesizer:
    """
    Generates grounded answers.

    Example:
        synthesizer = AnswerSynthesizer(llm)
        result = await synthesizer.answer(question, ranked, assembled, mode, memory)
    """

    def __init__(
        self,
        llm: BaseLLMAdapter,
        config: SynthesisConfig | None = None,
        registry: PromptRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._llm = llm
        self._config = config or SynthesisConfig()
        self._registry = registry or get_prompt_registry()
        self._clock = clock

        try:
            self._tz = ZoneInfo(self._config.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown time zone: {self._config.timezone}", cause=e
            )

    @property
    def config(self) -> SynthesisConfig:
        return self._config

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def confidence(self, mode: RetrievalMode, candidates: list[RankedCandidate]) -> int:
        """
        Evidence confidence in [0, 100].

        Semantic confidence is non-decreasing in the mean similarity and
        always above the keyword constant.
        """
        if mode == RetrievalMode.SEMANTIC and candidates:
            mean = sum(c.similarity for c in candidates) / len(candidates)
            value = round(mean * 100)
            return max(self._config.keyword_confidence + 1, min(100, value))
        if mode == RetrievalMode.KEYWORD and candidates:
            return self._config.keyword_confidence
        if mode == RetrievalMode.FALLBACK:
            return 0
        return self._config.no_context_confidence

    def sources(self, candidates: list[RankedCandidate]) -> list[Source]:
        limit = self._config.snippet_chars
        return [
            Source(
                title=c.title,
                snippet=c.content[:limit] + "..." if len(c.content) > limit else c.content,
                category=c.subject or c.source.value,
                similarity=round(c.similarity, 4),
            )
            for c in candidates
        ]

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def build_messages(
        self,
        question: str,
        context: AssembledContext,
        mode: RetrievalMode,
        memory: ConversationMemory | None = None,
    ) -> list[Message]:
        now = self._clock().astimezone(self._tz)
        history = (
            memory.format_recent(self._config.memory_prompt_turns)
            if memory is not None and self._config.memory_prompt_turns
            else ""
        )

        system = self._registry.require("rag_system").render(
            persona=self._config.persona,
            now=now.strftime("%A, %B %d, %Y %H:%M"),
            timezone=self._config.timezone,
            history=history,
            document_count=len(context.used),
            mode=mode.value,
        )
        user = self._registry.require("rag_user").render(
            question=question,
            context=context.text,
        )
        return [
            Message(role=MessageRole.SYSTEM, content=system),
            Message(role=MessageRole.USER, content=user),
        ]

    def fallback_answer(self, candidates: list[RankedCandidate]) -> str:
        """Deterministic answer used when generation fails."""
        if not candidates:
            return self._registry.require("fallback_no_context").render()

        top = candidates[0]
        limit = self._config.fallback_excerpt_chars
        excerpt = top.content[:limit] + "..." if len(top.content) > limit else top.content
        return self._registry.require("fallback_with_context").render(
            title=top.title,
            excerpt=excerpt,
        )

    def _evidence(
        self,
        candidates: list[RankedCandidate],
        context: AssembledContext,
    ) -> list[RankedCandidate]:
        return context.used or candidates

    def _fallback_result(
        self,
        candidates: list[RankedCandidate],
        sources: list[Source],
    ) -> RAGResult:
        return RAGResult(
            answer=self.fallback_answer(candidates),
            sources=sources,
            confidence=self.confidence(RetrievalMode.FALLBACK, candidates),
            mode=RetrievalMode.FALLBACK,
            degraded=True,
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def answer(
        self,
        question: str,
        candidates: list[RankedCandidate],
        context: AssembledContext,
        mode: RetrievalMode,
        memory: ConversationMemory | None = None,
    ) -> RAGResult:
        """Blocking answer. Never raises for LLM failures."""
        evidence = self._evidence(candidates, context)
        sources = self.sources(evidence)
        messages = self.build_messages(question, context, mode, memory)

        try:
            completion = self._llm.complete(
                messages,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            )
            if self._config.llm_timeout:
                response = await asyncio.wait_for(completion, self._config.llm_timeout)
            else:
                response = await completion

            text = response.content or ""
            if not text.strip():
                raise LLMResponseError("LLM returned an empty answer")
        except Exception as e:
            logger.error(
                "Answer generation failed, using templated answer",
                error=e,
                mode=mode.value,
            )
            return self._fallback_result(evidence, sources)

        return RAGResult(
            answer=text,
            sources=sources,
            confidence=self.confidence(mode, evidence),
            mode=mode,
        )

    async def stream(
        self,
        question: str,
        candidates: list[RankedCandidate],
        context: AssembledContext,
        mode: RetrievalMode,
        memory: ConversationMemory | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Streamed answer.

        Emits METADATA, then DELTA events, then DONE with the final result.
        After a failure a FALLBACK event carries the replacement answer
        before DONE. Closing this iterator closes the LLM stream.
        """
        evidence = self._evidence(candidates, context)
        sources = self.sources(evidence)
        confidence = self.confidence(mode, evidence)
        messages = self.build_messages(question, context, mode, memory)

        yield StreamEvent(
            type=StreamEventType.METADATA,
            sources=sources,
            confidence=confidence,
            mode=mode,
        )

        parts: list[str] = []
        upstream = self._llm.stream(
            messages,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )

        try:
            async with aclosing(upstream):
                while True:
                    try:
                        chunk = await asyncio.wait_for(
                            upstream.__anext__(), self._config.stream_idle_timeout
                        )
                    except StopAsyncIteration:
                        break
                    parts.append(chunk)
                    yield StreamEvent(type=StreamEventType.DELTA, text=chunk)

            text = "".join(parts)
            if not text.strip():
                raise LLMResponseError("LLM streamed an empty answer")
        except Exception as e:
            logger.error(
                "Answer stream failed, using templated answer",
                error=e,
                mode=mode.value,
                chunks_received=len(parts),
            )
            result = self._fallback_result(evidence, sources)
            yield StreamEvent(type=StreamEventType.FALLBACK, text=result.answer)
            yield StreamEvent(type=StreamEventType.DONE, result=result)
            return

        yield StreamEvent(
            type=StreamEventType.DONE,
            result=RAGResult(answer=text, sources=sources, confidence=confidence, mode=mode),
        )
