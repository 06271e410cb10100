"""
Base LLM Adapter

Common surface of every language-model provider used for answer synthesis.

Design decisions:
- Two calls only: complete() for blocking answers and stream() for text
  deltas; answer synthesis needs nothing else
- Transient failures of complete() (rate limit, timeout, connection) are
  retried with exponential backoff; every other error surfaces at once so
  the synthesizer can fall back
- stream() is never retried; closing it closes the provider stream, which
  is how an abandoned HTTP response stops token generation
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from lectern.config.settings import LLMSettings
from lectern.core.exceptions import (
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from lectern.core.types import LLMResponse, Message
from lectern.observability.logging import get_logger

logger = get_logger(__name__)


class BaseLLMAdapter(ABC):
    """
    Abstract base class for LLM providers.

    Subclasses implement _do_complete() and _do_stream(); callers use
    complete() and stream().
    """

    def __init__(self, settings: LLMSettings):
        self.settings = settings
        self._max_retries = settings.max_retries
        self._retry_delay = settings.retry_delay
        self._timeout = settings.request_timeout

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier, reported by the health endpoint."""
        pass

    @abstractmethod
    async def _do_complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """One provider call, without retries."""
        pass

    @abstractmethod
    def _do_stream(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Provider stream of text deltas."""
        pass

    def _backoff(self, attempt: int, error: LLMError) -> float:
        if isinstance(error, LLMRateLimitError) and error.retry_after:
            return error.retry_after
        return self._retry_delay * (2**attempt)

    async def _attempt(self, messages: list[Message], **params: Any) -> LLMResponse:
        try:
            return await asyncio.wait_for(
                self._do_complete(messages, **params), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise LLMTimeoutError(
                f"Request timed out after {self._timeout}s",
                context={"provider": self.provider_name},
                cause=e,
            )

    async def complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Blocking completion with retries for transient errors.

        Raises:
            LLMConnectionError: Cannot reach provider
            LLMRateLimitError: Rate limit exceeded (after retries)
            LLMTimeoutError: Request timed out (after retries)
        """
        params = {
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            **kwargs,
        }

        attempt = 0
        while True:
            try:
                return await self._attempt(messages, **params)
            except (LLMRateLimitError, LLMTimeoutError, LLMConnectionError) as e:
                if attempt >= self._max_retries:
                    raise
                delay = self._backoff(attempt, e)
                logger.warning(
                    "LLM call failed, retrying",
                    error=e,
                    provider=self.provider_name,
                    attempt=attempt + 1,
                    delay=delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def stream(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """
        Stream non-empty text deltas.

        A mid-stream failure propagates to the consumer.
        """
        upstream = self._do_stream(
            messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        async with aclosing(upstream):
            async for chunk in upstream:
                if chunk:
                    yield chunk

    @abstractmethod
    async def close(self) -> None:
        """Release provider clients."""
        pass

    async def __aenter__(self) -> "BaseLLMAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def convert_messages_to_dicts(messages: list[Message]) -> list[dict[str, Any]]:
    """Provider-neutral role/content dicts."""
    return [{"role": msg.role.value, "content": msg.content} for msg in messages]
