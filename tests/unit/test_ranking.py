"""
Unit Tests - Ranking

Tests for the composite relevance score.
"""

from datetime import datetime, timezone

from lectern.core.types import KnowledgeSource
from lectern.knowledge.ranking import RankingWeights, RelevanceRanker

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _ranker() -> RelevanceRanker:
    return RelevanceRanker(clock=lambda: NOW)


class TestRelevanceRanker:
    """Tests for RelevanceRanker."""

    def test_exact_title_phrase_beats_word_overlap(self, candidate):
        """A title containing the phrase outranks content sharing two of its words."""
        query = "cell membrane transport"
        a = candidate("a", "Cell membrane transport basics", "Overview of the topic.", now=NOW)
        b = candidate("b", "Biology notes", "The cell wall and active transport.", now=NOW)

        ranked = _ranker().rank([b, a], query)

        assert [c.id for c in ranked] == ["a", "b"]
        assert ranked[0].relevance > ranked[1].relevance
        assert "title_phrase" in ranked[0].signals
        assert "title_phrase" not in ranked[1].signals

    def test_more_recent_wins_when_otherwise_equal(self, candidate):
        older = candidate("older", "Osmosis", "Water crosses membranes.", age_days=10, now=NOW)
        newer = candidate("newer", "Osmosis", "Water crosses membranes.", age_days=0.5, now=NOW)

        ranked = _ranker().rank([older, newer], "osmosis")

        assert [c.id for c in ranked] == ["newer", "older"]
        assert ranked[0].relevance > ranked[1].relevance

    def test_equal_relevance_breaks_ties_by_recency_then_id(self, candidate):
        a = candidate("a", "Osmosis", "Water.", age_days=0.5, now=NOW)
        b = candidate("b", "Osmosis", "Water.", age_days=0.2, now=NOW)
        c = candidate("c", "Osmosis", "Water.", age_days=0.2, now=NOW)

        ranked = _ranker().rank([a, c, b], "osmosis")

        assert ranked[0].relevance == ranked[1].relevance == ranked[2].relevance
        assert [x.id for x in ranked] == ["b", "c", "a"]

    def test_ranking_is_deterministic(self, candidate):
        pool = [
            candidate(str(i), f"Topic {i}", f"photosynthesis step {i}", score=i * 10, age_days=i, now=NOW)
            for i in range(8)
        ]

        first = _ranker().rank(pool, "photosynthesis step")
        second = _ranker().rank(list(reversed(pool)), "photosynthesis step")

        assert [c.id for c in first] == [c.id for c in second]

    def test_signal_components(self, candidate):
        c = candidate(
            "x",
            "Light reactions",
            "Light reactions happen in the thylakoid.",
            subject="Photosynthesis",
            tags=["light", "chloroplast"],
            score=80,
            age_days=2,
            similarity=0.6,
            now=NOW,
        )

        signals = _ranker().signals(c, "light reactions", NOW)

        assert signals["title_phrase"] == 20.0
        assert signals["content_phrase"] == 15.0
        assert signals["content_words"] == 2.0 * 2
        assert signals["tags"] == 10.0
        assert signals["recency"] == 6.0
        assert signals["performance"] == 8.0
        assert signals["similarity"] == 6.0
        assert "subject" not in signals

    def test_priority_mode_without_query(self, candidate):
        quiz = candidate("quiz", "Quiz", source=KnowledgeSource.QUIZ, now=NOW)
        text = candidate("text", "Text", source=KnowledgeSource.TEXT, now=NOW)

        ranked = _ranker().rank([text, quiz])

        assert [c.id for c in ranked] == ["quiz", "text"]
        assert ranked[0].signals["source"] == 15.0
        assert ranked[0].signals["recency"] == 20.0

    def test_custom_weights(self, candidate):
        weights = RankingWeights(title_phrase=0.0, content_word=50.0)
        a = candidate("a", "cell membrane", "nothing here", now=NOW)
        b = candidate("b", "notes", "cell cell cell", now=NOW)

        ranked = RelevanceRanker(weights, clock=lambda: NOW).rank([a, b], "cell membrane")

        assert ranked[0].id == "b"
