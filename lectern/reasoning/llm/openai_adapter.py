"""
OpenAI LLM Adapter

Implementation for the OpenAI chat completions API.
Also works with OpenAI-compatible hosts (DeepInfra, vLLM, local servers)
through ``LLM_OPENAI_BASE_URL``.

Design decisions:
- Uses official openai library for stability
- SDK retries disabled; BaseLLMAdapter owns retry policy
- Provider exceptions are mapped onto the LLMError family
"""

import time
from collections.abc import AsyncIterator
from typing import Any

from lectern.config.settings import LLMSettings
from lectern.core.exceptions import (
    LLMConnectionError,
    LLMRateLimitError,
    LLMResponseError,
)
from lectern.core.types import LLMResponse, Message
from lectern.reasoning.llm.base import BaseLLMAdapter, convert_messages_to_dicts

# Lazy import to avoid requiring openai if not used
_openai_module = None


def _get_openai():
    global _openai_module
    if _openai_module is None:
        try:
            import openai

            _openai_module = openai
        except ImportError:
            raise ImportError("openai package required. Install with: pip install openai")
    return _openai_module


def _retry_after(error: Any) -> float | None:
    response = getattr(error, "response", None)
    if response is None:
        return None
    try:
        return float(response.headers.get("retry-after"))
    except (TypeError, ValueError):
        return None


class OpenAIAdapter(BaseLLMAdapter):
    """OpenAI-compatible chat adapter."""

    def __init__(self, settings: LLMSettings):
        super().__init__(settings)

        openai = _get_openai()

        client_kwargs: dict[str, Any] = {
            "timeout": settings.request_timeout,
            "max_retries": 0,  # We handle retries ourselves
        }

        if settings.openai_api_key:
            client_kwargs["api_key"] = settings.openai_api_key.get_secret_value()

        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._default_model = settings.openai_default_model

    @property
    def provider_name(self) -> str:
        return "openai"

    def _request_kwargs(
        self,
        messages: list[Message],
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
        extra: dict[str, Any],
    ) -> dict[str, Any]:
        request_kwargs: dict[str, Any] = {
            "model": model or self._default_model,
            "messages": convert_messages_to_dicts(messages),
            "temperature": (
                temperature if temperature is not None else self.settings.default_temperature
            ),
            "max_tokens": max_tokens or self.settings.default_max_tokens,
        }
        request_kwargs.update(extra)
        return request_kwargs

    async def _create(self, request_kwargs: dict[str, Any]) -> Any:
        openai = _get_openai()
        try:
            return await self._client.chat.completions.create(**request_kwargs)
        except openai.RateLimitError as e:
            raise LLMRateLimitError(str(e), retry_after=_retry_after(e), cause=e)
        except openai.APIConnectionError as e:
            raise LLMConnectionError(str(e), cause=e)
        except openai.APIError as e:
            raise LLMResponseError(str(e), cause=e)

    async def _do_complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        start_time = time.perf_counter()
        response = await self._create(
            self._request_kwargs(messages, model, temperature, max_tokens, kwargs)
        )
        latency_ms = (time.perf_counter() - start_time) * 1000

        if not response.choices:
            raise LLMResponseError("Completion returned no choices")

        choice = response.choices[0]
        return LLMResponse(
            content=choice.message.content,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            model=response.model,
            finish_reason=choice.finish_reason,
            latency_ms=latency_ms,
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
        openai = _get_openai()
        request_kwargs = self._request_kwargs(messages, model, temperature, max_tokens, kwargs)
        request_kwargs["stream"] = True

        stream = await self._create(request_kwargs)
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield delta.content
        except openai.APIError as e:
            raise LLMResponseError(f"Stream failed: {e}", cause=e)
        finally:
            await stream.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.close()
