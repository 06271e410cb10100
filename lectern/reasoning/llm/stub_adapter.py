"""
Stub LLM Adapter

A deterministic, offline-capable LLM adapter for testing and CI.

Design decisions:
- Implements the full BaseLLMAdapter interface, so timeouts and retries
  of the base class apply unchanged
- Returns scripted, deterministic responses chosen by pattern
- Streams word by word; the chunks concatenate exactly to the text
  complete() returns for the same messages
- Failure injection (fail_on_complete, fail_after_chunks) for exercising
  degradation paths
- NEVER makes external network calls

Usage:
    adapter = StubLLMAdapter()

    # Via environment
    LLM_OFFLINE_MODE=true  # Uses stub adapter automatically
"""

import asyncio
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from lectern.config.settings import LLMSettings
from lectern.core.exceptions import LLMResponseError
from lectern.core.types import LLMResponse, Message, MessageRole
from lectern.reasoning.llm.base import BaseLLMAdapter

_CHUNK = re.compile(r"\S+\s*|\s+")


@dataclass
class StubResponse:
    """A scripted response for the stub adapter."""

    pattern: str | None = None  # Regex to match the last user message
    content: str = ""

    def matches(self, message: str) -> bool:
        if self.pattern is None:
            return True
        return bool(re.search(self.pattern, message, re.IGNORECASE))


DEFAULT_RESPONSE = StubResponse(
    pattern=None,
    content=(
        "This answer was produced in offline mode. In production a language "
        "model would explain the topic in its own words, drawing on your notes "
        "where they are relevant."
    ),
)


def split_stream_chunks(text: str) -> list[str]:
    """Word-sized chunks that concatenate back to ``text``."""
    return _CHUNK.findall(text)


class StubLLMAdapter(BaseLLMAdapter):
    """
    A deterministic LLM adapter for offline testing.

    Args:
        settings: LLM settings (timeouts/retries); defaults are used if None
        responses: Pattern responses, tried in order before the default
        default_response: Content used when no pattern matches
        stream_delay_ms: Delay between streamed chunks
        complete_delay_s: Delay before complete() returns
        fail_on_complete: Raise this error from every completion
        fail_after_chunks: Raise after streaming this many chunks
    """

    def __init__(
        self,
        settings: LLMSettings | None = None,
        responses: list[StubResponse] | None = None,
        default_response: str | None = None,
        stream_delay_ms: int = 0,
        complete_delay_s: float = 0.0,
        fail_on_complete: Exception | None = None,
        fail_after_chunks: int | None = None,
    ):
        settings = settings or LLMSettings(max_retries=0)
        super().__init__(settings)

        self._model = settings.stub_model_name
        self._responses = list(responses or [])
        self._default = (
            StubResponse(content=default_response) if default_response else DEFAULT_RESPONSE
        )
        self._stream_delay = stream_delay_ms / 1000.0
        self._complete_delay = complete_delay_s
        self._fail_on_complete = fail_on_complete
        self._fail_after_chunks = fail_after_chunks

        self.call_count = 0
        self.streams_opened = 0
        self.streams_closed = 0
        self.last_messages: list[Message] = []

    @property
    def provider_name(self) -> str:
        return "stub"

    @property
    def model(self) -> str:
        return self._model

    def add_response(self, response: StubResponse) -> None:
        """Add a response pattern with highest priority."""
        self._responses.insert(0, response)

    def _find_response(self, messages: list[Message]) -> StubResponse:
        user_message = next(
            (m.content for m in reversed(messages) if m.role == MessageRole.USER),
            "",
        )
        for response in self._responses:
            if response.matches(user_message):
                return response
        return self._default

    async def _do_complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        self.call_count += 1
        self.last_messages = list(messages)

        if self._complete_delay:
            await asyncio.sleep(self._complete_delay)
        if self._fail_on_complete is not None:
            raise self._fail_on_complete

        content = self._find_response(messages).content
        return LLMResponse(
            content=content,
            model=self._model,
            finish_reason="stop",
            input_tokens=sum(len(m.content.split()) for m in messages),
            output_tokens=len(content.split()),
        )

    async def _do_stream(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        self.call_count += 1
        self.streams_opened += 1
        self.last_messages = list(messages)

        try:
            chunks = split_stream_chunks(self._find_response(messages).content)
            for emitted, chunk in enumerate(chunks):
                if self._fail_after_chunks is not None and emitted >= self._fail_after_chunks:
                    raise LLMResponseError(
                        "Simulated stream failure",
                        context={"chunks_emitted": emitted},
                    )
                yield chunk
                if self._stream_delay:
                    await asyncio.sleep(self._stream_delay)
        finally:
            self.streams_closed += 1

    async def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"StubLLMAdapter(model={self._model!r}, calls={self.call_count})"
