"""
Runtime Module

The RAGPipeline is the SINGLE orchestration point for answering questions.
All query operations flow through here.
"""

from lectern.runtime.factory import (
    RAGComponents,
    create_components,
    create_embeddings,
    create_llm_adapter,
    create_repository,
    create_vector_store,
)
from lectern.runtime.pipeline import PipelineConfig, QueryTrace, RAGPipeline

__all__ = [
    # Pipeline
    "PipelineConfig",
    "QueryTrace",
    "RAGPipeline",
    # Factory
    "RAGComponents",
    "create_components",
    "create_embeddings",
    "create_llm_adapter",
    "create_repository",
    "create_vector_store",
]
