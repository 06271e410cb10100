"""
Unit Tests - Knowledge Repository

Tests for entry identity, listing, keyword search and statistics, over
the in-memory backend and the Redis backend with a fake client.
"""

from datetime import timedelta

import pytest

from lectern.core.exceptions import KnowledgeRepositoryError
from lectern.core.types import KnowledgeEntry, KnowledgeMetadata, KnowledgeSource, utcnow
from lectern.knowledge.repository import (
    InMemoryKnowledgeRepository,
    keyword_match_count,
    query_terms,
)


def _entry(
    source_id: str,
    title: str,
    content: str,
    *,
    owner_id: str = "learner-1",
    scope_id: str | None = None,
    source: KnowledgeSource = KnowledgeSource.NOTEBOOK,
    subject: str | None = None,
    score: float | None = None,
    age_days: float = 0.0,
) -> KnowledgeEntry:
    return KnowledgeEntry(
        title=title,
        content=content,
        source=source,
        source_id=source_id,
        owner_id=owner_id,
        scope_id=scope_id,
        metadata=KnowledgeMetadata(
            subject=subject,
            score=score,
            last_updated=utcnow() - timedelta(days=age_days),
        ),
    )


class TestKeywordMatching:
    """Tests for the keyword helpers."""

    def test_query_terms_drop_short_words(self):
        assert query_terms("What is an ATP molecule? ATP!") == ["what", "atp", "molecule"]

    def test_phrase_counts_double(self):
        entry = _entry("n1", "Cell energy", "Mitochondria make ATP from glucose.")
        assert keyword_match_count(entry, "make ATP") == 2 + 1 + 1
        assert keyword_match_count(entry, "glucose oxygen") == 1
        assert keyword_match_count(entry, "volcano") == 0


class TestInMemoryKnowledgeRepository:
    """Tests for InMemoryKnowledgeRepository."""

    @pytest.mark.asyncio
    async def test_upsert_same_identity_updates_in_place(self):
        repo = InMemoryKnowledgeRepository()
        first = await repo.upsert_entry(_entry("n1", "Cells v1", "Old text"))
        second = await repo.upsert_entry(_entry("n1", "Cells v2", "New text"))

        assert second.id == first.id
        assert second.metadata.created_at == first.metadata.created_at
        assert len(await repo.list_entries("learner-1")) == 1
        assert (await repo.get(first.id)).title == "Cells v2"

    @pytest.mark.asyncio
    async def test_identity_includes_source_and_owner(self):
        repo = InMemoryKnowledgeRepository()
        a = await repo.upsert_entry(_entry("1", "A", "a", source=KnowledgeSource.QUIZ))
        b = await repo.upsert_entry(_entry("1", "B", "b", source=KnowledgeSource.NOTEBOOK))
        c = await repo.upsert_entry(_entry("1", "C", "c", owner_id="learner-2"))

        assert len({a.id, b.id, c.id}) == 3

    @pytest.mark.asyncio
    async def test_list_entries_filters_and_orders(self):
        repo = InMemoryKnowledgeRepository()
        await repo.upsert_entry(_entry("old", "Old", "x", subject="Biology", age_days=30))
        await repo.upsert_entry(_entry("new", "New", "x", subject="Biology", age_days=1))
        await repo.upsert_entry(_entry("math", "Algebra", "x", subject="Math"))
        await repo.upsert_entry(_entry("scoped", "Scoped", "x", scope_id="nb-1"))

        biology = await repo.list_entries("learner-1", subject="biology")
        recent = await repo.list_entries("learner-1", days=7)
        scoped = await repo.list_entries("learner-1", scope_id="nb-1")

        assert [e.title for e in biology] == ["New", "Old"]
        assert {e.title for e in recent} == {"New", "Algebra", "Scoped"}
        assert [e.title for e in scoped] == ["Scoped"]

    @pytest.mark.asyncio
    async def test_keyword_search_ranks_by_match_strength(self):
        repo = InMemoryKnowledgeRepository()
        await repo.upsert_entry(_entry("a", "Glucose", "Cells burn glucose."))
        await repo.upsert_entry(_entry("b", "Cell respiration", "Cellular respiration burns glucose in cells."))
        await repo.upsert_entry(_entry("c", "Volcanoes", "Magma and ash."))

        hits = await repo.keyword_search("learner-1", "cellular respiration")

        assert [e.source_id for e in hits] == ["b"]

    @pytest.mark.asyncio
    async def test_keyword_search_is_owner_scoped(self):
        repo = InMemoryKnowledgeRepository()
        await repo.upsert_entry(_entry("a", "Osmosis", "Water moves.", owner_id="someone-else"))

        assert await repo.keyword_search("learner-1", "osmosis") == []

    @pytest.mark.asyncio
    async def test_deactivate_hides_entry(self):
        repo = InMemoryKnowledgeRepository()
        await repo.upsert_entry(_entry("n1", "Osmosis", "Water moves."))

        assert await repo.deactivate("learner-1", KnowledgeSource.NOTEBOOK, "n1") is True
        assert await repo.deactivate("learner-1", KnowledgeSource.NOTEBOOK, "n1") is False
        assert await repo.list_entries("learner-1") == []
        assert await repo.keyword_search("learner-1", "osmosis") == []
        assert len(await repo.list_entries("learner-1", include_inactive=True)) == 1

    @pytest.mark.asyncio
    async def test_reingest_reactivates(self):
        repo = InMemoryKnowledgeRepository()
        await repo.upsert_entry(_entry("n1", "Osmosis", "Water moves."))
        await repo.deactivate("learner-1", KnowledgeSource.NOTEBOOK, "n1")

        await repo.upsert_entry(_entry("n1", "Osmosis", "Water moves across membranes."))

        assert len(await repo.list_entries("learner-1")) == 1

    @pytest.mark.asyncio
    async def test_stats(self):
        repo = InMemoryKnowledgeRepository()
        await repo.upsert_entry(_entry("q1", "Quiz 1", "x", source=KnowledgeSource.QUIZ, subject="Biology", score=80))
        await repo.upsert_entry(_entry("q2", "Quiz 2", "x", source=KnowledgeSource.QUIZ, subject="Biology", score=60, age_days=20))
        await repo.upsert_entry(_entry("n1", "Notes", "x", subject="Math"))

        stats = await repo.stats("learner-1", recent_days=7)

        assert stats.total_entries == 3
        assert stats.by_source == {"quiz": 2, "notebook": 1}
        assert stats.by_subject == {"Biology": 2, "Math": 1}
        assert stats.average_score == 70.0
        assert stats.recent_count == 2


class TestRedisKnowledgeRepository:
    """Tests for RedisKnowledgeRepository against a fake client."""

    @pytest.mark.asyncio
    async def test_upsert_same_identity_updates_in_place(self, redis_repository):
        repo = redis_repository()
        first = await repo.upsert_entry(_entry("n1", "Cells v1", "Old text"))
        second = await repo.upsert_entry(_entry("n1", "Cells v2", "New text"))

        assert second.id == first.id
        assert second.metadata.created_at == first.metadata.created_at
        assert [e.title for e in await repo.list_entries("learner-1")] == ["Cells v2"]
        assert repo._client.sets["lectern:kb:owner:learner-1"] == {first.id}
        assert repo._client.hashes["lectern:kb:identity:learner-1"] == {"notebook/n1": first.id}

    @pytest.mark.asyncio
    async def test_find_by_source_and_get(self, redis_repository):
        repo = redis_repository()
        stored = await repo.upsert_entry(_entry("q1", "Quiz", "Algebra", source=KnowledgeSource.QUIZ))

        found = await repo.find_by_source("learner-1", KnowledgeSource.QUIZ, "q1")

        assert found == stored
        assert await repo.get(stored.id) == stored
        assert await repo.find_by_source("learner-1", KnowledgeSource.NOTEBOOK, "q1") is None
        assert await repo.get("missing") is None

    @pytest.mark.asyncio
    async def test_keyword_search(self, redis_repository):
        repo = redis_repository()
        await repo.upsert_entry(_entry("a", "Glucose", "Cells burn glucose."))
        await repo.upsert_entry(_entry("b", "Cell respiration", "Cellular respiration burns glucose in cells."))
        await repo.upsert_entry(_entry("c", "Osmosis", "Water moves.", owner_id="learner-2"))

        hits = await repo.keyword_search("learner-1", "cellular respiration")

        assert [e.source_id for e in hits] == ["b"]
        assert await repo.keyword_search("learner-1", "osmosis") == []

    @pytest.mark.asyncio
    async def test_deactivate(self, redis_repository):
        repo = redis_repository()
        await repo.upsert_entry(_entry("n1", "Osmosis", "Water moves."))

        assert await repo.deactivate("learner-1", KnowledgeSource.NOTEBOOK, "n1") is True
        assert await repo.deactivate("learner-1", KnowledgeSource.NOTEBOOK, "n1") is False
        assert await repo.list_entries("learner-1") == []
        [inactive] = await repo.list_entries("learner-1", include_inactive=True)
        assert inactive.is_active is False

    @pytest.mark.asyncio
    async def test_read_errors_are_wrapped(self, redis_repository):
        repo = redis_repository(fail_reads=True)

        with pytest.raises(KnowledgeRepositoryError):
            await repo.find_by_source("learner-1", KnowledgeSource.NOTEBOOK, "n1")
        with pytest.raises(KnowledgeRepositoryError):
            await repo.get("e1")
        with pytest.raises(KnowledgeRepositoryError):
            await repo.upsert_entry(_entry("n1", "Osmosis", "Water moves."))
        with pytest.raises(KnowledgeRepositoryError):
            await repo.keyword_search("learner-1", "osmosis")

    @pytest.mark.asyncio
    async def test_write_errors_are_wrapped(self, redis_repository):
        repo = redis_repository(fail_writes=True)

        with pytest.raises(KnowledgeRepositoryError):
            await repo.upsert_entry(_entry("n1", "Osmosis", "Water moves."))
        assert repo._client.strings == {}

    @pytest.mark.asyncio
    async def test_close(self, redis_repository):
        repo = redis_repository()
        client = repo._client

        await repo.close()

        assert client.closed
        assert repo._client is None
