"""
Retriever

Hybrid retrieval: semantic search first, keyword search as fallback.

Design decisions:
- The result is a tagged outcome (SemanticHit | KeywordHit | NoContext),
  so callers branch on data instead of catching exceptions
- A missing query vector, a missing collection, a store error or a search
  timeout all skip the semantic pass; none of them fail the query
- Keyword candidates carry a fixed base similarity, below any semantic
  hit that passed the threshold
"""

import asyncio
from dataclasses import dataclass

from lectern.core.exceptions import (
    CollectionNotFoundError,
    KnowledgeRepositoryError,
    VectorStoreError,
)
from lectern.core.types import (
    KeywordHit,
    KnowledgeEntry,
    KnowledgeSource,
    NoContext,
    RankedCandidate,
    RetrievalOutcome,
    ScoredPoint,
    SemanticHit,
    TenantKey,
)
from lectern.knowledge.ranking import RelevanceRanker
from lectern.knowledge.repository import KnowledgeRepository
from lectern.knowledge.vector_store import VectorStore
from lectern.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RetrievalConfig:
    """Configuration for retrieval."""

    top_k: int = 5
    score_threshold: float = 0.3
    keyword_similarity: float = 0.5
    search_timeout: float = 10.0
    recent_days: int = 7


def candidate_from_point(point: ScoredPoint) -> RankedCandidate:
    meta = point.payload.metadata
    return RankedCandidate(
        id=point.id,
        title=meta.title,
        content=point.payload.content,
        source=meta.source,
        subject=meta.subject,
        tags=list(meta.tags),
        score=meta.score,
        last_updated=meta.last_updated,
        similarity=point.score,
    )


def candidate_from_entry(entry: KnowledgeEntry, similarity: float = 0.0) -> RankedCandidate:
    return RankedCandidate(
        id=entry.id,
        title=entry.title,
        content=entry.content,
        source=entry.source,
        subject=entry.metadata.subject,
        tags=list(entry.metadata.tags),
        score=entry.metadata.score,
        last_updated=entry.metadata.last_updated,
        similarity=similarity,
    )


class Retriever:
    """
    Knowledge retriever.

    Example:
        retriever = Retriever(vector_store, repository)
        outcome = await retriever.retrieve(tenant, vector, "what is osmosis?")
        if isinstance(outcome, NoContext):
            ...
    """

    def __init__(
        self,
        vector_store: VectorStore,
        repository: KnowledgeRepository,
        ranker: RelevanceRanker | None = None,
        config: RetrievalConfig | None = None,
    ):
        self._store = vector_store
        self._repository = repository
        self._ranker = ranker or RelevanceRanker()
        self._config = config or RetrievalConfig()

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    async def retrieve(
        self,
        tenant: TenantKey,
        query_vector: list[float] | None,
        query_text: str,
        limit: int | None = None,
        score_threshold: float | None = None,
    ) -> RetrievalOutcome:
        """
        Retrieve ranked candidates for a query.

        Args:
            tenant: Collection to search
            query_vector: Query embedding, or None when embedding failed
            query_text: Literal question, used for keyword search and ranking
            limit: Maximum candidates (defaults to top_k)
            score_threshold: Minimum similarity for semantic hits

        Returns:
            SemanticHit, KeywordHit or NoContext
        """
        limit = limit or self._config.top_k
        threshold = (
            self._config.score_threshold if score_threshold is None else score_threshold
        )

        if query_vector is not None:
            semantic = await self._semantic_pass(tenant, query_vector, limit, threshold)
            if semantic:
                return SemanticHit(candidates=self._ranker.rank(semantic, query_text))

        keyword = await self._keyword_pass(tenant, query_text, limit)
        if keyword:
            return KeywordHit(candidates=self._ranker.rank(keyword, query_text))

        return NoContext()

    async def _semantic_pass(
        self,
        tenant: TenantKey,
        query_vector: list[float],
        limit: int,
        threshold: float,
    ) -> list[RankedCandidate]:
        try:
            points = await asyncio.wait_for(
                self._store.search(tenant, query_vector, limit, threshold),
                timeout=self._config.search_timeout,
            )
        except CollectionNotFoundError:
            logger.debug("No vector collection for tenant, skipping semantic search")
            return []
        except asyncio.TimeoutError as e:
            logger.warning(
                "Vector search timed out, falling back to keyword search",
                error=e,
                timeout=self._config.search_timeout,
            )
            return []
        except VectorStoreError as e:
            logger.warning("Vector search failed, falling back to keyword search", error=e)
            return []

        return [candidate_from_point(p) for p in points]

    async def _keyword_pass(
        self,
        tenant: TenantKey,
        query_text: str,
        limit: int,
    ) -> list[RankedCandidate]:
        if not query_text.strip():
            return []

        try:
            entries = await self._repository.keyword_search(
                tenant.owner_id,
                query_text,
                scope_id=tenant.scope_id,
                limit=limit,
            )
        except KnowledgeRepositoryError as e:
            logger.warning("Keyword search failed", error=e)
            return []

        return [candidate_from_entry(e, self._config.keyword_similarity) for e in entries]

    async def search(
        self,
        tenant: TenantKey,
        query_vector: list[float],
        limit: int | None = None,
        score_threshold: float | None = None,
        source: KnowledgeSource | None = None,
    ) -> list[RankedCandidate]:
        """
        Plain semantic search, most similar first.

        Unlike retrieve() there is no keyword fallback and store errors
        propagate. A tenant without a collection has no hits.
        """
        threshold = (
            self._config.score_threshold if score_threshold is None else score_threshold
        )
        try:
            points = await asyncio.wait_for(
                self._store.search(
                    tenant,
                    query_vector,
                    limit or self._config.top_k,
                    threshold,
                    filter={"source": source.value} if source else None,
                ),
                timeout=self._config.search_timeout,
            )
        except CollectionNotFoundError:
            return []
        except asyncio.TimeoutError as e:
            raise VectorStoreError(
                f"Vector search timed out after {self._config.search_timeout}s",
                context={"collection": tenant.collection_name()},
                cause=e,
            )

        return [candidate_from_point(p) for p in points]

    async def recent_context(
        self,
        tenant: TenantKey,
        query: str | None = None,
        limit: int = 5,
    ) -> list[RankedCandidate]:
        """
        Rank an owner's entries directly, without vector search.

        Recently updated entries come first; when fewer than three exist,
        older entries top up the pool. Without a query the priority ranking
        (recency, performance, source) applies.
        """
        pool = await self._repository.list_entries(
            tenant.owner_id,
            scope_id=tenant.scope_id,
            days=self._config.recent_days,
            limit=limit * 2,
        )
        if len(pool) < 3:
            seen = {e.id for e in pool}
            older = await self._repository.list_entries(
                tenant.owner_id,
                scope_id=tenant.scope_id,
                limit=limit * 2,
            )
            pool.extend(e for e in older if e.id not in seen)

        ranked = self._ranker.rank([candidate_from_entry(e) for e in pool], query)
        return ranked[:limit]
