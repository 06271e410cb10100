"""
Knowledge / RAG Module

Chunking, embedding, storage, ranking and retrieval of a tenant's
knowledge, plus context assembly for prompts.
"""

from lectern.knowledge.chunking import ChunkingStrategy, TextChunker
from lectern.knowledge.context import AssembledContext, ContextAssembler
from lectern.knowledge.embeddings import (
    EmbeddingService,
    HashEmbeddings,
    LocalEmbeddings,
    OpenAIEmbeddings,
    validate_embedding,
)
from lectern.knowledge.ingestion import (
    BatchIngestionReport,
    IngestDocument,
    IngestionReport,
    KnowledgeIngester,
    TenantStats,
)
from lectern.knowledge.ranking import RankingWeights, RelevanceRanker
from lectern.knowledge.repository import (
    InMemoryKnowledgeRepository,
    KnowledgeRepository,
    KnowledgeStats,
    RedisKnowledgeRepository,
)
from lectern.knowledge.retriever import RetrievalConfig, Retriever
from lectern.knowledge.vector_store import InMemoryVectorStore, MilvusVectorStore, VectorStore

__all__ = [
    # Chunking
    "ChunkingStrategy",
    "TextChunker",
    # Embeddings
    "EmbeddingService",
    "HashEmbeddings",
    "LocalEmbeddings",
    "OpenAIEmbeddings",
    "validate_embedding",
    # Vector Store
    "InMemoryVectorStore",
    "MilvusVectorStore",
    "VectorStore",
    # Repository
    "InMemoryKnowledgeRepository",
    "KnowledgeRepository",
    "KnowledgeStats",
    "RedisKnowledgeRepository",
    # Ranking & Retrieval
    "RankingWeights",
    "RelevanceRanker",
    "RetrievalConfig",
    "Retriever",
    # Context
    "AssembledContext",
    "ContextAssembler",
    # Ingestion
    "BatchIngestionReport",
    "IngestDocument",
    "IngestionReport",
    "KnowledgeIngester",
    "TenantStats",
]
