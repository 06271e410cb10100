"""
Anthropic LLM Adapter

Implementation for Anthropic's Claude API.

Design decisions:
- Uses official anthropic library
- System prompt travels as the separate ``system`` parameter
- Consecutive same-role messages are merged, as the API requires
  alternating user/assistant turns
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
from lectern.core.types import LLMResponse, Message, MessageRole
from lectern.reasoning.llm.base import BaseLLMAdapter

# Lazy import
_anthropic_module = None


def _get_anthropic():
    global _anthropic_module
    if _anthropic_module is None:
        try:
            import anthropic

            _anthropic_module = anthropic
        except ImportError:
            raise ImportError("anthropic package required. Install with: pip install anthropic")
    return _anthropic_module


class AnthropicAdapter(BaseLLMAdapter):
    """Anthropic Claude API adapter."""

    def __init__(self, settings: LLMSettings):
        super().__init__(settings)

        anthropic = _get_anthropic()

        client_kwargs: dict[str, Any] = {
            "timeout": settings.request_timeout,
            "max_retries": 0,
        }

        if settings.anthropic_api_key:
            client_kwargs["api_key"] = settings.anthropic_api_key.get_secret_value()

        self._client = anthropic.AsyncAnthropic(**client_kwargs)
        self._default_model = settings.anthropic_default_model

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(
        self,
        messages: list[Message],
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """
        Convert messages to Anthropic format.

        Returns (system_prompt, messages).
        """
        system_parts = []
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
                continue

            role = "assistant" if msg.role == MessageRole.ASSISTANT else "user"
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"] += "\n\n" + msg.content
            else:
                converted.append({"role": role, "content": msg.content})

        system_prompt = "\n\n".join(system_parts) if system_parts else None
        return system_prompt, converted

    def _request_kwargs(
        self,
        messages: list[Message],
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        system_prompt, converted_messages = self._convert_messages(messages)

        request_kwargs: dict[str, Any] = {
            "model": model or self._default_model,
            "messages": converted_messages,
            "max_tokens": max_tokens or self.settings.default_max_tokens,
            "temperature": (
                temperature if temperature is not None else self.settings.default_temperature
            ),
        }
        if system_prompt:
            request_kwargs["system"] = system_prompt
        return request_kwargs

    def _map_error(self, error: Exception) -> Exception:
        anthropic = _get_anthropic()
        if isinstance(error, anthropic.RateLimitError):
            return LLMRateLimitError(str(error), cause=error)
        if isinstance(error, anthropic.APIConnectionError):
            return LLMConnectionError(str(error), cause=error)
        return LLMResponseError(str(error), cause=error)

    async def _do_complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        anthropic = _get_anthropic()
        request_kwargs = self._request_kwargs(messages, model, temperature, max_tokens)

        start_time = time.perf_counter()
        try:
            response = await self._client.messages.create(**request_kwargs)
        except anthropic.APIError as e:
            raise self._map_error(e)

        latency_ms = (time.perf_counter() - start_time) * 1000

        text = "".join(block.text for block in response.content if block.type == "text")
        return LLMResponse(
            content=text or None,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            finish_reason=response.stop_reason,
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
        anthropic = _get_anthropic()
        request_kwargs = self._request_kwargs(messages, model, temperature, max_tokens)

        try:
            async with self._client.messages.stream(**request_kwargs) as stream:
                async for text in stream.text_stream:
                    yield text
        except anthropic.APIError as e:
            raise self._map_error(e)

    async def close(self) -> None:
        await self._client.close()
