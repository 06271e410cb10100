"""
Knowledge Repository

Durable store of knowledge entries, independent of their vectors.

Design decisions:
- One logical entry per (owner_id, source, source_id); upserts update in place
  and keep the original id and creation time
- Soft delete only (is_active=False)
- Keyword search is the fallback evidence path when semantic search finds
  nothing; matching rules are shared by all backends
- Redis backend stores entries as JSON with per-owner index sets
"""

import re
from abc import ABC, abstractmethod
from collections import Counter
from datetime import timedelta

from pydantic import BaseModel, Field

from lectern.core.exceptions import KnowledgeRepositoryError
from lectern.core.types import KnowledgeEntry, KnowledgeSource, utcnow
from lectern.observability.logging import get_logger

logger = get_logger(__name__)

_TERM = re.compile(r"\w+")


def query_terms(query: str) -> list[str]:
    """Lowercased query words longer than two characters, in order, deduplicated."""
    seen: dict[str, None] = {}
    for word in _TERM.findall(query.lower()):
        if len(word) > 2:
            seen.setdefault(word, None)
    return list(seen)


def keyword_match_count(entry: KnowledgeEntry, query: str) -> int:
    """
    How strongly an entry matches a query by plain text.

    The whole phrase counts twice, each distinct term once, over title and
    content. Zero means no match.
    """
    phrase = " ".join(query.lower().split())
    haystack = f"{entry.title}\n{entry.content}".lower()

    count = 0
    if phrase and phrase in haystack:
        count += 2
    for term in query_terms(query):
        if term in haystack:
            count += 1
    return count


class KnowledgeStats(BaseModel):
    """Aggregate view of an owner's knowledge base."""

    total_entries: int = 0
    by_source: dict[str, int] = Field(default_factory=dict)
    by_subject: dict[str, int] = Field(default_factory=dict)
    average_score: float | None = None
    recent_count: int = 0


def compute_stats(entries: list[KnowledgeEntry], recent_days: int = 7) -> KnowledgeStats:
    cutoff = utcnow() - timedelta(days=recent_days)
    scores = [e.metadata.score for e in entries if e.metadata.score is not None]

    return KnowledgeStats(
        total_entries=len(entries),
        by_source=dict(Counter(e.source.value for e in entries)),
        by_subject=dict(Counter(e.metadata.subject for e in entries if e.metadata.subject)),
        average_score=round(sum(scores) / len(scores), 2) if scores else None,
        recent_count=sum(1 for e in entries if e.metadata.last_updated >= cutoff),
    )


def filter_entries(
    entries: list[KnowledgeEntry],
    *,
    scope_id: str | None = None,
    source: KnowledgeSource | None = None,
    subject: str | None = None,
    tags: list[str] | None = None,
    days: int | None = None,
    include_inactive: bool = False,
) -> list[KnowledgeEntry]:
    """Apply listing filters and sort newest first."""
    cutoff = utcnow() - timedelta(days=days) if days is not None else None
    wanted_tags = {t.lower() for t in tags or []}

    result = []
    for entry in entries:
        if not include_inactive and not entry.is_active:
            continue
        if scope_id is not None and entry.scope_id != scope_id:
            continue
        if source is not None and entry.source != source:
            continue
        if subject is not None and (entry.metadata.subject or "").lower() != subject.lower():
            continue
        if wanted_tags and not wanted_tags & {t.lower() for t in entry.metadata.tags}:
            continue
        if cutoff is not None and entry.metadata.last_updated < cutoff:
            continue
        result.append(entry)

    result.sort(key=lambda e: e.metadata.last_updated, reverse=True)
    return result


def rank_keyword_matches(
    entries: list[KnowledgeEntry],
    query: str,
    limit: int,
) -> list[KnowledgeEntry]:
    scored = [(keyword_match_count(e, query), e) for e in entries]
    scored = [(count, e) for count, e in scored if count > 0]
    scored.sort(key=lambda item: (item[0], item[1].metadata.last_updated), reverse=True)
    return [e for _, e in scored[:limit]]


class KnowledgeRepository(ABC):
    """Abstract knowledge entry store."""

    @abstractmethod
    async def upsert_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        """
        Insert or update by (owner_id, source, source_id).

        Returns the stored entry, which keeps the id and created_at of an
        existing entry with the same identity.
        """
        pass

    @abstractmethod
    async def get(self, entry_id: str) -> KnowledgeEntry | None:
        pass

    @abstractmethod
    async def find_by_source(
        self,
        owner_id: str,
        source: KnowledgeSource,
        source_id: str,
    ) -> KnowledgeEntry | None:
        pass

    @abstractmethod
    async def _owner_entries(self, owner_id: str) -> list[KnowledgeEntry]:
        pass

    async def list_entries(
        self,
        owner_id: str,
        *,
        scope_id: str | None = None,
        source: KnowledgeSource | None = None,
        subject: str | None = None,
        tags: list[str] | None = None,
        days: int | None = None,
        search: str | None = None,
        limit: int = 50,
        include_inactive: bool = False,
    ) -> list[KnowledgeEntry]:
        """Filtered entries of one owner, most recently updated first."""
        entries = filter_entries(
            await self._owner_entries(owner_id),
            scope_id=scope_id,
            source=source,
            subject=subject,
            tags=tags,
            days=days,
            include_inactive=include_inactive,
        )
        if search:
            entries = [e for e in entries if keyword_match_count(e, search) > 0]
        return entries[:limit]

    async def keyword_search(
        self,
        owner_id: str,
        query: str,
        *,
        scope_id: str | None = None,
        limit: int = 5,
    ) -> list[KnowledgeEntry]:
        """Active entries matching the query, best match first."""
        entries = filter_entries(await self._owner_entries(owner_id), scope_id=scope_id)
        return rank_keyword_matches(entries, query, limit)

    async def deactivate(
        self,
        owner_id: str,
        source: KnowledgeSource,
        source_id: str,
    ) -> bool:
        """Soft-delete an entry. Returns False when there was nothing active."""
        entry = await self.find_by_source(owner_id, source, source_id)
        if entry is None or not entry.is_active:
            return False

        await self._save(entry.model_copy(update={"is_active": False}))
        return True

    async def stats(self, owner_id: str, recent_days: int = 7) -> KnowledgeStats:
        entries = filter_entries(await self._owner_entries(owner_id))
        return compute_stats(entries, recent_days)

    @abstractmethod
    async def _save(self, entry: KnowledgeEntry) -> None:
        pass

    def _merge(self, existing: KnowledgeEntry | None, entry: KnowledgeEntry) -> KnowledgeEntry:
        if existing is None:
            return entry
        metadata = entry.metadata.model_copy(
            update={"created_at": existing.metadata.created_at}
        )
        return entry.model_copy(
            update={"id": existing.id, "metadata": metadata, "is_active": True}
        )


class InMemoryKnowledgeRepository(KnowledgeRepository):
    """In-memory repository for development/testing."""

    def __init__(self):
        self._entries: dict[str, KnowledgeEntry] = {}
        self._identity: dict[tuple[str, str, str], str] = {}

    async def upsert_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        existing_id = self._identity.get(entry.identity)
        existing = self._entries.get(existing_id) if existing_id else None
        stored = self._merge(existing, entry)
        await self._save(stored)
        return stored

    async def _save(self, entry: KnowledgeEntry) -> None:
        self._entries[entry.id] = entry
        self._identity[entry.identity] = entry.id

    async def get(self, entry_id: str) -> KnowledgeEntry | None:
        return self._entries.get(entry_id)

    async def find_by_source(
        self,
        owner_id: str,
        source: KnowledgeSource,
        source_id: str,
    ) -> KnowledgeEntry | None:
        entry_id = self._identity.get((owner_id, source.value, source_id))
        return self._entries.get(entry_id) if entry_id else None

    async def _owner_entries(self, owner_id: str) -> list[KnowledgeEntry]:
        return [e for e in self._entries.values() if e.owner_id == owner_id]


class RedisKnowledgeRepository(KnowledgeRepository):
    """
    Redis-based repository.

    Layout:
    - ``{prefix}entry:{id}``: entry JSON
    - ``{prefix}owner:{owner_id}``: set of the owner's entry ids
    - ``{prefix}identity:{owner_id}``: hash of ``source/source_id`` to entry id
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "lectern:kb:",
    ):
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._client = None

    async def _get_client(self):
        """Lazy initialization of Redis client."""
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    def _entry_key(self, entry_id: str) -> str:
        return f"{self._key_prefix}entry:{entry_id}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self._key_prefix}owner:{owner_id}"

    def _identity_key(self, owner_id: str) -> str:
        return f"{self._key_prefix}identity:{owner_id}"

    @staticmethod
    def _identity_field(source: KnowledgeSource, source_id: str) -> str:
        return f"{source.value}/{source_id}"

    async def upsert_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        existing = await self.find_by_source(entry.owner_id, entry.source, entry.source_id)
        stored = self._merge(existing, entry)
        await self._save(stored)
        return stored

    async def _save(self, entry: KnowledgeEntry) -> None:
        try:
            client = await self._get_client()
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self._entry_key(entry.id), entry.model_dump_json())
                pipe.sadd(self._owner_key(entry.owner_id), entry.id)
                pipe.hset(
                    self._identity_key(entry.owner_id),
                    self._identity_field(entry.source, entry.source_id),
                    entry.id,
                )
                await pipe.execute()
        except Exception as e:
            raise KnowledgeRepositoryError(
                f"Failed to save knowledge entry: {e}",
                context={"entry_id": entry.id},
                cause=e,
            )

    async def get(self, entry_id: str) -> KnowledgeEntry | None:
        try:
            client = await self._get_client()
            data = await client.get(self._entry_key(entry_id))
        except Exception as e:
            raise KnowledgeRepositoryError(
                f"Failed to load knowledge entry: {e}",
                context={"entry_id": entry_id},
                cause=e,
            )
        if data is None:
            return None
        return KnowledgeEntry.model_validate_json(data)

    async def find_by_source(
        self,
        owner_id: str,
        source: KnowledgeSource,
        source_id: str,
    ) -> KnowledgeEntry | None:
        try:
            client = await self._get_client()
            entry_id = await client.hget(
                self._identity_key(owner_id), self._identity_field(source, source_id)
            )
        except Exception as e:
            raise KnowledgeRepositoryError(
                f"Failed to look up knowledge entry: {e}",
                context={"owner_id": owner_id, "source_id": source_id},
                cause=e,
            )
        if entry_id is None:
            return None
        return await self.get(entry_id)

    async def _owner_entries(self, owner_id: str) -> list[KnowledgeEntry]:
        try:
            client = await self._get_client()
            ids = sorted(await client.smembers(self._owner_key(owner_id)))
            if not ids:
                return []
            rows = await client.mget([self._entry_key(i) for i in ids])
        except Exception as e:
            raise KnowledgeRepositoryError(
                f"Failed to load knowledge entries: {e}",
                context={"owner_id": owner_id},
                cause=e,
            )
        return [KnowledgeEntry.model_validate_json(row) for row in rows if row]

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
