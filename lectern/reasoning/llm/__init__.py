"""
LLM Module

Contains all LLM provider adapters.
"""

from lectern.reasoning.llm.anthropic_adapter import AnthropicAdapter
from lectern.reasoning.llm.base import BaseLLMAdapter
from lectern.reasoning.llm.openai_adapter import OpenAIAdapter
from lectern.reasoning.llm.stub_adapter import StubLLMAdapter, StubResponse

__all__ = [
    "AnthropicAdapter",
    "BaseLLMAdapter",
    "OpenAIAdapter",
    "StubLLMAdapter",
    "StubResponse",
]
