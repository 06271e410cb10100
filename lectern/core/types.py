"""
Core Types and Data Structures

Defines the fundamental types used throughout Lectern.
These are intentionally simple, immutable where possible, and serializable.
"""

import hashlib
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lectern.core.exceptions import TenantKeyError


def utcnow() -> datetime:
    """Timezone-aware current time; every stored timestamp uses UTC."""
    return datetime.now(timezone.utc)


# ============================================================
# Conversation / LLM
# ============================================================

class MessageRole(str, Enum):
    """Role of a message in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """
    A single message sent to an LLM provider.

    Immutable by design. Create new messages rather than modifying.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    role: MessageRole
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class LLMResponse(BaseModel):
    """
    Response from an LLM call.

    Normalized across different providers.
    """

    content: str | None = None

    # Token usage
    input_tokens: int = 0
    output_tokens: int = 0

    # Metadata
    model: str
    finish_reason: str | None = None
    latency_ms: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


# ============================================================
# Tenancy
# ============================================================

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_NON_SLUG = re.compile(r"[^a-z0-9]+")
_MAX_SLUG = 32


def _slug(value: str) -> str:
    slug = _NON_SLUG.sub("_", value.lower()).strip("_")
    return slug[:_MAX_SLUG] or "x"


class TenantKey(BaseModel):
    """
    Identity of an isolated knowledge collection.

    An owner alone addresses the owner's whole knowledge base; an owner plus
    a scope (e.g. a notebook) addresses a sub-collection. Collection names are
    derived only through collection_name(), never by string concatenation at
    call sites.
    """

    model_config = ConfigDict(frozen=True)

    owner_id: str = Field(max_length=256)
    scope_id: str | None = Field(default=None, max_length=256)

    @field_validator("owner_id", "scope_id")
    @classmethod
    def _check_identifier(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if not value.strip():
            raise ValueError("identifier must not be blank")
        if _CONTROL_CHARS.search(value):
            raise ValueError("identifier must not contain control characters")
        return value

    @classmethod
    def of(cls, owner_id: str, scope_id: str | None = None) -> "TenantKey":
        """Build a key, raising TenantKeyError for invalid identifiers."""
        try:
            return cls(owner_id=owner_id, scope_id=scope_id)
        except ValueError as e:
            raise TenantKeyError(
                f"Invalid tenant key: {e}",
                context={"owner_id": owner_id, "scope_id": scope_id},
                cause=e,
            )

    def collection_name(self, prefix: str = "kb") -> str:
        """
        Canonical collection name for this tenant.

        Slugs keep the name readable; the digest over the raw identifiers
        keeps distinct keys distinct even when their slugs coincide.
        """
        raw = f"{self.owner_id}\x00{self.scope_id if self.scope_id is not None else ''}"
        digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:10]
        parts = [prefix, _slug(self.owner_id)]
        if self.scope_id is not None:
            parts.append(_slug(self.scope_id))
        parts.append(digest)
        return "_".join(parts)

    def __str__(self) -> str:
        if self.scope_id is None:
            return self.owner_id
        return f"{self.owner_id}/{self.scope_id}"


# ============================================================
# Knowledge
# ============================================================

class KnowledgeSource(str, Enum):
    """Where a piece of knowledge came from."""

    QUIZ = "quiz"
    NOTEBOOK = "notebook"
    PDF = "pdf"
    MANUAL = "manual"
    TEXT = "text"


class KnowledgeMetadata(BaseModel):
    """Descriptive and performance metadata of a knowledge entry."""

    subject: str | None = None
    difficulty: str | None = None
    tags: list[str] = Field(default_factory=list)
    score: float | None = Field(default=None, ge=0.0, le=100.0)
    questions_count: int | None = Field(default=None, ge=0)
    file_name: str | None = None
    chunk_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    extra: dict[str, Any] = Field(default_factory=dict)


class KnowledgeEntry(BaseModel):
    """
    A logical unit of user knowledge.

    There is at most one entry per (source_id, source, owner_id); re-ingesting
    the same triple updates the entry in place.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    title: str
    content: str
    source: KnowledgeSource
    source_id: str
    owner_id: str
    scope_id: str | None = None
    metadata: KnowledgeMetadata = Field(default_factory=KnowledgeMetadata)
    is_active: bool = True

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.owner_id, self.source.value, self.source_id)


class ChunkMetadata(BaseModel):
    """Metadata stored alongside every vector point."""

    model_config = ConfigDict(frozen=True)

    entry_id: str
    source_id: str
    source: KnowledgeSource
    title: str
    subject: str | None = None
    tags: list[str] = Field(default_factory=list)
    score: float | None = None
    file_name: str | None = None
    total_chunks: int = Field(ge=1)
    last_updated: datetime = Field(default_factory=utcnow)


class PointPayload(BaseModel):
    """Schema of a vector point payload, validated at the ingestion boundary."""

    model_config = ConfigDict(frozen=True)

    content: str = Field(min_length=1)
    chunk_index: int = Field(ge=0)
    tenant: str
    metadata: ChunkMetadata


class VectorPoint(BaseModel):
    """A chunk embedding ready to be upserted."""

    id: str
    vector: list[float]
    payload: PointPayload


class ScoredPoint(BaseModel):
    """A vector search hit."""

    id: str
    score: float
    payload: PointPayload


# ============================================================
# Retrieval
# ============================================================

class RetrievalMode(str, Enum):
    """Evidence path that produced an answer."""

    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    NONE = "none"
    FALLBACK = "fallback"


class RankedCandidate(BaseModel):
    """A retrieved piece of knowledge with its composite relevance."""

    id: str
    title: str
    content: str
    source: KnowledgeSource
    subject: str | None = None
    tags: list[str] = Field(default_factory=list)
    score: float | None = None  # Performance score (0..100)
    last_updated: datetime = Field(default_factory=utcnow)

    similarity: float = 0.0
    relevance: float = 0.0
    signals: dict[str, float] = Field(default_factory=dict)


class SemanticHit(BaseModel):
    kind: Literal["semantic"] = "semantic"
    candidates: list[RankedCandidate]


class KeywordHit(BaseModel):
    kind: Literal["keyword"] = "keyword"
    candidates: list[RankedCandidate]


class NoContext(BaseModel):
    kind: Literal["none"] = "none"
    candidates: list[RankedCandidate] = Field(default_factory=list)


RetrievalOutcome = Annotated[
    Union[SemanticHit, KeywordHit, NoContext],
    Field(discriminator="kind"),
]


# ============================================================
# Answers
# ============================================================

class Source(BaseModel):
    """Citation returned with an answer."""

    title: str
    snippet: str
    category: str
    similarity: float


class ConversationTurn(BaseModel):
    """One completed question/answer exchange."""

    model_config = ConfigDict(frozen=True)

    question: str
    answer: str
    timestamp: datetime = Field(default_factory=utcnow)
    sources: list[Source] = Field(default_factory=list)
    confidence: int = Field(default=0, ge=0, le=100)


class RAGResult(BaseModel):
    """
    Final answer of a query.

    Always fully populated, including on failure paths.
    """

    answer: str
    sources: list[Source] = Field(default_factory=list)
    confidence: int = Field(ge=0, le=100)
    mode: RetrievalMode = RetrievalMode.NONE
    degraded: bool = False


class QueryState(str, Enum):
    """States a query passes through."""

    EMBEDDING = "embedding"
    SEARCHING = "searching"
    SEMANTIC_HIT = "semantic_hit"
    KEYWORD_HIT = "keyword_hit"
    NO_CONTEXT = "no_context"
    SYNTHESIZING = "synthesizing"
    STREAMING = "streaming"
    ERROR_FALLBACK = "error_fallback"
    DONE = "done"


class StreamEventType(str, Enum):
    METADATA = "metadata"
    DELTA = "delta"
    FALLBACK = "fallback"
    DONE = "done"


class StreamEvent(BaseModel):
    """
    A single event of a streamed answer.

    METADATA carries sources/confidence/mode, DELTA and FALLBACK carry text,
    DONE carries the final RAGResult.
    """

    type: StreamEventType
    text: str | None = None
    sources: list[Source] | None = None
    confidence: int | None = None
    mode: RetrievalMode | None = None
    result: RAGResult | None = None
