"""
Exception Hierarchy

Defines all exceptions used by Lectern.
Exceptions are organized by domain and include context for debugging.

Design decisions:
- All exceptions inherit from LecternError for easy catching
- Exceptions carry structured context, not just messages
- Error codes enable programmatic handling
- Query-time degradation is modeled as data (RetrievalOutcome, RAGResult),
  so these are raised at component boundaries and caught by the pipeline
"""

from typing import Any


class LecternError(Exception):
    """
    Base exception for all Lectern errors.

    Provides structured error information including:
    - Human-readable message
    - Machine-readable error code
    - Additional context for debugging
    """

    error_code: str = "LECTERN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.error_code
        self.context = context or {}
        self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "context": self.context,
        }


# ============================================================
# Configuration Errors
# ============================================================

class ConfigurationError(LecternError):
    """Error in configuration or settings."""

    error_code = "CONFIGURATION_ERROR"


# ============================================================
# Validation Errors
# ============================================================

class ValidationError(LecternError):
    """A value was rejected at a write or construction boundary."""

    error_code = "VALIDATION_ERROR"


class TenantKeyError(ValidationError):
    """Owner or scope identifier cannot form a tenant key."""

    error_code = "INVALID_TENANT_KEY"


class EmbeddingValidationError(ValidationError):
    """Embedding vector has the wrong dimension or non-finite values."""

    error_code = "INVALID_EMBEDDING"

    def __init__(
        self,
        message: str,
        *,
        expected_dimension: int,
        actual_dimension: int,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.expected_dimension = expected_dimension
        self.actual_dimension = actual_dimension


# ============================================================
# LLM / Reasoning Errors
# ============================================================

class LLMError(LecternError):
    """Base error for LLM-related issues."""

    error_code = "LLM_ERROR"


class LLMConnectionError(LLMError):
    """Failed to connect to LLM provider."""

    error_code = "LLM_CONNECTION_ERROR"


class LLMRateLimitError(LLMError):
    """Rate limit exceeded for LLM provider."""

    error_code = "LLM_RATE_LIMIT"

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class LLMTimeoutError(LLMError):
    """LLM request timed out."""

    error_code = "LLM_TIMEOUT"


class LLMResponseError(LLMError):
    """Invalid or unexpected response from LLM."""

    error_code = "LLM_RESPONSE_ERROR"


# ============================================================
# Knowledge Errors
# ============================================================

class KnowledgeError(LecternError):
    """Base error for knowledge storage and retrieval."""

    error_code = "KNOWLEDGE_ERROR"


class DocumentIngestionError(KnowledgeError):
    """A document could not be chunked, embedded or stored."""

    error_code = "DOCUMENT_INGESTION_ERROR"


class SourceScopeConflictError(DocumentIngestionError):
    """The source is already active under a different scope."""

    error_code = "SOURCE_SCOPE_CONFLICT"


class EmbeddingError(KnowledgeError):
    """The embedding provider failed or returned an unusable response."""

    error_code = "EMBEDDING_ERROR"


class VectorStoreError(KnowledgeError):
    """The vector store rejected or failed an operation."""

    error_code = "VECTOR_STORE_ERROR"


class CollectionNotFoundError(VectorStoreError):
    """Tenant collection does not exist."""

    error_code = "COLLECTION_NOT_FOUND"


class KnowledgeRepositoryError(KnowledgeError):
    """The knowledge repository failed a read or write."""

    error_code = "KNOWLEDGE_REPOSITORY_ERROR"
