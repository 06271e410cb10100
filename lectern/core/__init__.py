"""
Core Module

Contains fundamental types and exceptions used across all other modules
in Lectern.
"""

from lectern.core.types import (
    ChunkMetadata,
    ConversationTurn,
    KeywordHit,
    KnowledgeEntry,
    KnowledgeMetadata,
    KnowledgeSource,
    LLMResponse,
    Message,
    MessageRole,
    NoContext,
    PointPayload,
    QueryState,
    RAGResult,
    RankedCandidate,
    RetrievalMode,
    RetrievalOutcome,
    ScoredPoint,
    SemanticHit,
    Source,
    StreamEvent,
    StreamEventType,
    TenantKey,
    VectorPoint,
    utcnow,
)
from lectern.core.exceptions import (
    CollectionNotFoundError,
    ConfigurationError,
    DocumentIngestionError,
    EmbeddingError,
    EmbeddingValidationError,
    KnowledgeError,
    KnowledgeRepositoryError,
    LecternError,
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
    LLMResponseError,
    LLMTimeoutError,
    SourceScopeConflictError,
    TenantKeyError,
    ValidationError,
    VectorStoreError,
)

__all__ = [
    # Types
    "ChunkMetadata",
    "ConversationTurn",
    "KeywordHit",
    "KnowledgeEntry",
    "KnowledgeMetadata",
    "KnowledgeSource",
    "LLMResponse",
    "Message",
    "MessageRole",
    "NoContext",
    "PointPayload",
    "QueryState",
    "RAGResult",
    "RankedCandidate",
    "RetrievalMode",
    "RetrievalOutcome",
    "ScoredPoint",
    "SemanticHit",
    "Source",
    "StreamEvent",
    "StreamEventType",
    "TenantKey",
    "VectorPoint",
    "utcnow",
    # Exceptions
    "CollectionNotFoundError",
    "ConfigurationError",
    "DocumentIngestionError",
    "EmbeddingError",
    "EmbeddingValidationError",
    "KnowledgeError",
    "KnowledgeRepositoryError",
    "LecternError",
    "LLMConnectionError",
    "LLMError",
    "LLMRateLimitError",
    "LLMResponseError",
    "LLMTimeoutError",
    "SourceScopeConflictError",
    "TenantKeyError",
    "ValidationError",
    "VectorStoreError",
]
