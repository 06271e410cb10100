"""
Conversation Memory

Bounded, session-scoped history of question/answer turns.

Design decisions:
- Fixed-capacity ring buffer: O(1) push at the front, FIFO eviction at
  the back, newest turn first on read
- One instance per session, passed explicitly into the query pipeline;
  there is no process-wide history
- Writes are guarded by an asyncio.Lock
- Optional age limit (ttl_seconds) on top of the capacity limit
"""

import asyncio
from collections import deque
from datetime import datetime, timedelta
from typing import Callable

from lectern.core.types import ConversationTurn, utcnow


class ConversationMemory:
    """
    Ring buffer of recent turns.

    Example:
        memory = ConversationMemory(capacity=10)
        await memory.push(ConversationTurn(question="...", answer="..."))
        memory.recent(3)  # newest first
    """

    def __init__(
        self,
        capacity: int = 10,
        preview_chars: int = 300,
        ttl_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")

        self._turns: deque[ConversationTurn] = deque(maxlen=capacity)
        self._preview_chars = preview_chars
        self._ttl = timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self._clock = clock
        self._lock = asyncio.Lock()
        self.last_active: datetime = clock()

    @property
    def capacity(self) -> int:
        return self._turns.maxlen or 0

    def __len__(self) -> int:
        return len(self.recent())

    async def push(self, turn: ConversationTurn) -> None:
        """Add a turn; the oldest one is evicted when full."""
        async with self._lock:
            self._turns.appendleft(turn)
            self.last_active = self._clock()

    def recent(self, n: int | None = None) -> list[ConversationTurn]:
        """Up to n most recent unexpired turns, newest first."""
        turns = list(self._turns)
        if self._ttl is not None:
            cutoff = self._clock() - self._ttl
            turns = [t for t in turns if t.timestamp >= cutoff]
        if n is not None:
            turns = turns[: max(n, 0)]
        return turns

    def format_recent(self, n: int = 3) -> str:
        """
        Prompt-ready rendering of the last n turns, oldest first.

        Answers are cut to the preview length.
        """
        lines = []
        for turn in reversed(self.recent(n)):
            answer = turn.answer
            if len(answer) > self._preview_chars:
                answer = answer[: self._preview_chars] + "..."
            lines.append(f"Q: {turn.question}\nA: {answer}")
        return "\n\n".join(lines)

    async def clear(self) -> None:
        async with self._lock:
            self._turns.clear()
