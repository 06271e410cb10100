"""
Session Memory Store

Hands out one ConversationMemory per (tenant, session).

Sessions of different tenants never share memory, even with equal session
ids. Sessions idle for longer than ``idle_seconds`` are evicted.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable

from lectern.core.types import TenantKey, utcnow
from lectern.memory.conversation import ConversationMemory
from lectern.observability.logging import get_logger

logger = get_logger(__name__)


class SessionMemoryStore:
    """In-process registry of conversation memories."""

    def __init__(
        self,
        capacity: int = 10,
        preview_chars: int = 300,
        ttl_seconds: float | None = None,
        idle_seconds: float = 3600.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._capacity = capacity
        self._preview_chars = preview_chars
        self._ttl_seconds = ttl_seconds
        self._idle = timedelta(seconds=idle_seconds)
        self._clock = clock
        self._sessions: dict[str, ConversationMemory] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def session_key(tenant: TenantKey, session_id: str) -> str:
        return f"{tenant.collection_name()}:{session_id}"

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, tenant: TenantKey, session_id: str) -> ConversationMemory:
        """Memory for a session, created on first use."""
        key = self.session_key(tenant, session_id)
        async with self._lock:
            self._prune_locked()
            memory = self._sessions.get(key)
            if memory is None:
                memory = ConversationMemory(
                    capacity=self._capacity,
                    preview_chars=self._preview_chars,
                    ttl_seconds=self._ttl_seconds,
                    clock=self._clock,
                )
                self._sessions[key] = memory
            memory.last_active = self._clock()
            return memory

    async def drop(self, tenant: TenantKey, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(self.session_key(tenant, session_id), None) is not None

    async def prune_idle(self) -> int:
        async with self._lock:
            return self._prune_locked()

    def _prune_locked(self) -> int:
        cutoff = self._clock() - self._idle
        idle = [key for key, memory in self._sessions.items() if memory.last_active < cutoff]
        for key in idle:
            del self._sessions[key]
        if idle:
            logger.debug("Evicted idle sessions", count=len(idle))
        return len(idle)
