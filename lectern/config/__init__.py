"""
Configuration Module

Centralized configuration management for Lectern.
"""

from lectern.config.settings import (
    EmbeddingSettings,
    KnowledgeBaseSettings,
    LLMSettings,
    ObservabilitySettings,
    RAGSettings,
    RedisSettings,
    Settings,
    VectorStoreSettings,
    get_settings,
)

__all__ = [
    "EmbeddingSettings",
    "KnowledgeBaseSettings",
    "LLMSettings",
    "ObservabilitySettings",
    "RAGSettings",
    "RedisSettings",
    "Settings",
    "VectorStoreSettings",
    "get_settings",
]
