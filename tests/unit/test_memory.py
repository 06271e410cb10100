"""
Unit Tests - Conversation Memory

Tests for the per-session ring buffer and the session store.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from lectern.core.types import ConversationTurn, TenantKey
from lectern.memory import ConversationMemory, SessionMemoryStore


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _turn(i: int, timestamp: datetime | None = None) -> ConversationTurn:
    kwargs = {"timestamp": timestamp} if timestamp else {}
    return ConversationTurn(question=f"question {i}", answer=f"answer {i}", **kwargs)


class TestConversationMemory:
    """Tests for ConversationMemory."""

    @pytest.mark.asyncio
    async def test_capacity_evicts_oldest(self):
        """Eleven pushes into capacity ten drop turn 1 and keep 2..11 newest first."""
        memory = ConversationMemory(capacity=10)

        for i in range(1, 12):
            await memory.push(_turn(i))

        recent = memory.recent(10)
        assert [t.question for t in recent] == [f"question {i}" for i in range(11, 1, -1)]
        assert all(t.question != "question 1" for t in memory.recent())

    @pytest.mark.asyncio
    async def test_recent_limits_count(self):
        memory = ConversationMemory(capacity=5)
        for i in range(3):
            await memory.push(_turn(i))

        assert [t.question for t in memory.recent(2)] == ["question 2", "question 1"]
        assert memory.recent(0) == []
        assert len(memory) == 3

    @pytest.mark.asyncio
    async def test_format_recent_is_oldest_first_and_truncated(self):
        memory = ConversationMemory(capacity=5, preview_chars=10)
        await memory.push(ConversationTurn(question="What is ATP?", answer="Adenosine triphosphate"))
        await memory.push(ConversationTurn(question="Where is it made?", answer="Mitochondria"))

        text = memory.format_recent(3)

        assert text == (
            "Q: What is ATP?\nA: Adenosine ...\n\n"
            "Q: Where is it made?\nA: Mitochondr..."
        )

    @pytest.mark.asyncio
    async def test_ttl_hides_expired_turns(self):
        clock = FakeClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        memory = ConversationMemory(capacity=10, ttl_seconds=60, clock=clock)

        await memory.push(_turn(1, timestamp=clock()))
        clock.advance(seconds=90)
        await memory.push(_turn(2, timestamp=clock()))

        assert [t.question for t in memory.recent()] == ["question 2"]

    @pytest.mark.asyncio
    async def test_concurrent_pushes_are_all_recorded(self):
        memory = ConversationMemory(capacity=100)

        await asyncio.gather(*(memory.push(_turn(i)) for i in range(50)))

        assert len(memory.recent()) == 50

    @pytest.mark.asyncio
    async def test_clear(self):
        memory = ConversationMemory()
        await memory.push(_turn(1))
        await memory.clear()
        assert memory.recent() == []

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ConversationMemory(capacity=0)


class TestSessionMemoryStore:
    """Tests for SessionMemoryStore."""

    @pytest.mark.asyncio
    async def test_same_session_returns_same_memory(self):
        store = SessionMemoryStore()
        tenant = TenantKey.of("learner-1")

        assert await store.get(tenant, "s1") is await store.get(tenant, "s1")

    @pytest.mark.asyncio
    async def test_sessions_and_tenants_are_isolated(self):
        store = SessionMemoryStore()
        alice = TenantKey.of("alice")
        bob = TenantKey.of("bob")

        await (await store.get(alice, "s1")).push(_turn(1))

        assert (await store.get(alice, "s2")).recent() == []
        assert (await store.get(bob, "s1")).recent() == []
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_idle_sessions_are_evicted(self):
        clock = FakeClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        store = SessionMemoryStore(idle_seconds=600, clock=clock)
        tenant = TenantKey.of("learner-1")

        await store.get(tenant, "idle")
        clock.advance(seconds=300)
        await store.get(tenant, "active")
        clock.advance(seconds=400)

        assert await store.prune_idle() == 1
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_drop(self):
        store = SessionMemoryStore()
        tenant = TenantKey.of("learner-1")
        await store.get(tenant, "s1")

        assert await store.drop(tenant, "s1") is True
        assert await store.drop(tenant, "s1") is False

    @pytest.mark.asyncio
    async def test_settings_are_applied(self):
        store = SessionMemoryStore(capacity=3)
        memory = await store.get(TenantKey.of("learner-1"), "s1")
        assert memory.capacity == 3
