"""
Settings Management

Provides centralized, type-safe configuration using Pydantic.
Supports environment variables, .env files, and hierarchical config.

Design decisions:
- Using pydantic-settings for validation and type coercion
- Immutable settings after initialization (frozen model)
- One sub-settings class per concern, each with its own env prefix
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Redis connection configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis server hostname")
    port: int = Field(default=6379, ge=1, le=65535)
    db: int = Field(default=0, ge=0, le=15)
    password: SecretStr | None = Field(default=None)
    ssl: bool = Field(default=False)
    socket_timeout: float = Field(default=5.0, gt=0)

    @property
    def url(self) -> str:
        """Construct Redis URL for connection."""
        protocol = "rediss" if self.ssl else "redis"
        auth = f":{self.password.get_secret_value()}@" if self.password else ""
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    model_config = SettingsConfigDict(env_prefix="LLM_")

    # Provider selection (stub = offline mode, no API key required)
    default_provider: Literal["openai", "anthropic", "stub"] = "openai"

    # Offline mode - forces stub adapter regardless of provider setting
    offline_mode: bool = Field(
        default=False,
        description="Force offline mode using stub adapter (no API calls)",
    )

    # OpenAI-compatible settings (OpenAI, DeepInfra, vLLM, ...)
    openai_api_key: SecretStr | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)
    openai_default_model: str = Field(default="gpt-4o-mini")

    # Anthropic settings
    anthropic_api_key: SecretStr | None = Field(default=None)
    anthropic_default_model: str = Field(default="claude-sonnet-4-20250514")

    # Stub adapter settings
    stub_model_name: str = Field(default="stub-model-v1")
    stub_stream_delay_ms: int = Field(default=0, ge=0)

    # Shared settings
    default_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    default_max_tokens: int = Field(default=800, ge=1)
    request_timeout: float = Field(default=60.0, gt=0)
    stream_idle_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Maximum wait between two streamed deltas",
    )
    max_retries: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)

    @property
    def total_timeout(self) -> float:
        """Budget for one completion: every attempt plus the backoff between them."""
        backoff = sum(self.retry_delay * 2**attempt for attempt in range(self.max_retries))
        return self.request_timeout * (self.max_retries + 1) + backoff

    @property
    def default_model(self) -> str:
        """Get default model based on provider."""
        if self.effective_provider == "stub":
            return self.stub_model_name
        elif self.default_provider == "openai":
            return self.openai_default_model
        return self.anthropic_default_model

    @property
    def effective_provider(self) -> str:
        """Get effective provider (stub if offline)."""
        if self.offline_mode:
            return "stub"
        return self.default_provider


class EmbeddingSettings(BaseSettings):
    """Embedding provider configuration."""

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")

    provider: Literal["openai", "local", "hash"] = "openai"
    model: str = Field(default="Qwen/Qwen3-Embedding-8B")
    dimension: int = Field(default=4096, ge=1)
    api_key: SecretStr | None = Field(default=None)
    base_url: str | None = Field(default="https://api.deepinfra.com/v1/openai")
    timeout: float = Field(default=20.0, gt=0)
    batch_size: int = Field(default=32, ge=1)
    cache_enabled: bool = Field(default=True)


class VectorStoreSettings(BaseSettings):
    """Vector store configuration."""

    model_config = SettingsConfigDict(env_prefix="VECTOR_")

    provider: Literal["milvus", "memory"] = "memory"

    # Milvus settings
    milvus_uri: str = Field(default="http://localhost:19530")
    milvus_token: SecretStr | None = Field(default=None)
    collection_prefix: str = Field(default="kb", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    metric: Literal["COSINE", "IP", "L2"] = "COSINE"

    # Retrieval settings
    search_timeout: float = Field(default=10.0, gt=0)
    default_top_k: int = Field(default=5, ge=1)
    similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)


class KnowledgeBaseSettings(BaseSettings):
    """Knowledge repository configuration."""

    model_config = SettingsConfigDict(env_prefix="KB_")

    backend: Literal["memory", "redis"] = "memory"
    key_prefix: str = Field(default="lectern:kb:")
    keyword_limit: int = Field(default=5, ge=1)
    recent_days: int = Field(default=7, ge=1)


class RAGSettings(BaseSettings):
    """Chunking, context assembly, memory and answer behaviour."""

    model_config = SettingsConfigDict(env_prefix="RAG_")

    # Chunking
    chunk_size: int = Field(default=8000, ge=1)
    chunk_overlap: int = Field(default=200, ge=0)

    # Context assembly
    context_token_budget: int = Field(default=3000, ge=1)
    chars_per_token: int = Field(default=4, ge=1)

    # Conversation memory
    memory_capacity: int = Field(default=10, ge=1)
    memory_prompt_turns: int = Field(default=3, ge=0)
    memory_preview_chars: int = Field(default=300, ge=1)
    memory_ttl_seconds: float | None = Field(default=None, gt=0)
    session_idle_seconds: float = Field(default=3600.0, gt=0)

    # Answer synthesis
    persona: str = Field(
        default=(
            "You are a friendly, encouraging study assistant. You help learners "
            "understand their own material and build on what they already know."
        )
    )
    timezone: str = Field(default="UTC")
    keyword_confidence: int = Field(default=50, ge=0, le=99)
    no_context_confidence: int = Field(default=30, ge=0, le=100)
    source_snippet_chars: int = Field(default=200, ge=1)
    embed_timeout: float = Field(default=20.0, gt=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "RAGSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class ObservabilitySettings(BaseSettings):
    """Observability configuration."""

    model_config = SettingsConfigDict(env_prefix="OBS_")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: str | None = Field(default=None)


class Settings(BaseSettings):
    """
    Master settings aggregator.

    This is the single source of truth for all configuration.
    Sub-settings are composed here to maintain clear boundaries.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,  # Immutable after creation
    )

    # Application metadata
    app_name: str = Field(default="Lectern")
    app_version: str = Field(default="0.1.0")
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = Field(default=False)

    # API settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_prefix: str = Field(default="/api/v1")
    cors_origins: list[str] = Field(default=["*"])

    # Component settings (composed)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    vector_store: VectorStoreSettings = Field(default_factory=VectorStoreSettings)
    knowledge_base: KnowledgeBaseSettings = Field(default_factory=KnowledgeBaseSettings)
    rag: RAGSettings = Field(default_factory=RAGSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure only one settings instance exists.
    This is safe because settings are frozen/immutable.
    """
    return Settings()
