"""
Reasoning Module

LLM adapters, prompt management, and answer synthesis.
"""

from lectern.reasoning.llm.base import BaseLLMAdapter
from lectern.reasoning.llm.stub_adapter import StubLLMAdapter, StubResponse
from lectern.reasoning.prompts.template import PromptRegistry, PromptTemplate
from lectern.reasoning.synthesizer import AnswerSynthesizer, SynthesisConfig

__all__ = [
    # LLM Adapters
    "BaseLLMAdapter",
    "StubLLMAdapter",
    "StubResponse",
    # Prompts
    "PromptTemplate",
    "PromptRegistry",
    # Synthesis
    "AnswerSynthesizer",
    "SynthesisConfig",
]
