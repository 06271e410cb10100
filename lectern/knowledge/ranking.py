"""
Relevance Ranking

Composite, additive relevance over retrieved candidates.

Design decisions:
- Every signal is recorded per candidate, so a ranking can be explained
- Query mode rewards textual matches; without a query (priority mode) the
  ranking favours recent, well-performed, quiz-derived knowledge
- Deterministic ordering: score, then most recent, then id
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from lectern.core.types import KnowledgeSource, RankedCandidate, utcnow
from lectern.knowledge.repository import query_terms


@dataclass(frozen=True)
class RankingWeights:
    """Weights of the composite relevance score."""

    # Query mode
    title_phrase: float = 20.0
    content_phrase: float = 15.0
    content_word: float = 2.0  # per occurrence of each query word
    tag: float = 10.0  # per matching tag
    subject: float = 12.0
    recency_tiers: tuple[tuple[float, float], ...] = (
        (1, 8.0),
        (3, 6.0),
        (7, 4.0),
        (14, 2.0),
    )
    performance_divisor: float = 10.0
    similarity: float = 10.0

    # Priority mode (no query)
    priority_recency_tiers: tuple[tuple[float, float], ...] = (
        (1, 20.0),
        (3, 15.0),
        (7, 10.0),
        (14, 5.0),
    )
    priority_performance_divisor: float = 5.0
    source_priority: dict[KnowledgeSource, float] = field(
        default_factory=lambda: {
            KnowledgeSource.QUIZ: 15.0,
            KnowledgeSource.NOTEBOOK: 10.0,
            KnowledgeSource.MANUAL: 5.0,
            KnowledgeSource.PDF: 3.0,
            KnowledgeSource.TEXT: 0.0,
        }
    )


def _tier_bonus(age_days: float, tiers: tuple[tuple[float, float], ...]) -> float:
    for max_days, bonus in tiers:
        if age_days <= max_days:
            return bonus
    return 0.0


class RelevanceRanker:
    """
    Scores and orders candidates.

    Example:
        ranker = RelevanceRanker()
        ranked = ranker.rank(candidates, "photosynthesis light reactions")
    """

    def __init__(
        self,
        weights: RankingWeights | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._weights = weights or RankingWeights()
        self._clock = clock

    @property
    def weights(self) -> RankingWeights:
        return self._weights

    def signals(
        self,
        candidate: RankedCandidate,
        query: str | None,
        now: datetime | None = None,
    ) -> dict[str, float]:
        """Non-zero signal contributions for one candidate."""
        now = now or self._clock()
        age_days = max((now - candidate.last_updated).total_seconds() / 86400, 0.0)

        if query and query.strip():
            result = self._query_signals(candidate, query, age_days)
        else:
            result = self._priority_signals(candidate, age_days)

        return {name: value for name, value in result.items() if value}

    def _query_signals(
        self,
        candidate: RankedCandidate,
        query: str,
        age_days: float,
    ) -> dict[str, float]:
        w = self._weights
        phrase = " ".join(query.lower().split())
        words = query_terms(query)
        title = candidate.title.lower()
        content = candidate.content.lower()
        subject = (candidate.subject or "").lower()

        matching_tags = [
            tag for tag in candidate.tags if any(word in tag.lower() for word in words)
        ]

        return {
            "title_phrase": w.title_phrase if phrase in title else 0.0,
            "content_phrase": w.content_phrase if phrase in content else 0.0,
            "content_words": w.content_word * sum(content.count(word) for word in words),
            "tags": w.tag * len(matching_tags),
            "subject": w.subject if any(word in subject for word in words) else 0.0,
            "recency": _tier_bonus(age_days, w.recency_tiers),
            "performance": (candidate.score or 0.0) / w.performance_divisor,
            "similarity": candidate.similarity * w.similarity,
        }

    def _priority_signals(
        self,
        candidate: RankedCandidate,
        age_days: float,
    ) -> dict[str, float]:
        w = self._weights
        return {
            "recency": _tier_bonus(age_days, w.priority_recency_tiers),
            "performance": (candidate.score or 0.0) / w.priority_performance_divisor,
            "source": w.source_priority.get(candidate.source, 0.0),
        }

    def rank(
        self,
        candidates: list[RankedCandidate],
        query: str | None = None,
    ) -> list[RankedCandidate]:
        """Return scored copies, best first."""
        now = self._clock()
        scored = []
        for candidate in candidates:
            signals = self.signals(candidate, query, now)
            scored.append(
                candidate.model_copy(
                    update={"signals": signals, "relevance": round(sum(signals.values()), 6)}
                )
            )

        scored.sort(
            key=lambda c: (-c.relevance, -c.last_updated.timestamp(), c.id)
        )
        return scored
