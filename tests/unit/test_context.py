"""
Unit Tests - Context Assembly

Tests for budgeted context assembly.
"""

import pytest

from lectern.knowledge.context import ContextAssembler


class TestContextAssembler:
    """Tests for ContextAssembler."""

    def test_empty_input_gives_empty_context(self):
        assembler = ContextAssembler()
        assert assembler.assemble([], 3000) == ""

    def test_zero_budget_gives_empty_context(self, candidate):
        assembler = ContextAssembler()
        assert assembler.assemble([candidate("a", "Osmosis", "Water moves.")], 0) == ""

    def test_item_format(self, candidate):
        assembler = ContextAssembler()
        item = candidate("a", "Cell Quiz", "Mitochondria make ATP.", subject="Biology", score=85)

        text = assembler.assemble([item], 3000)

        assert text == (
            "## SOURCE: Cell Quiz\n"
            "Score: 85% | Subject: Biology\n"
            "Mitochondria make ATP.\n\n---\n\n"
        )

    def test_subject_falls_back_to_source(self, candidate):
        text = ContextAssembler().assemble([candidate("a", "Note", "Body")], 3000)
        assert "Subject: text" in text
        assert "Score:" not in text

    @pytest.mark.parametrize("budget", [10, 50, 120, 400, 1000])
    def test_never_exceeds_budget(self, candidate, budget):
        assembler = ContextAssembler(chars_per_token=4)
        items = [
            candidate(str(i), f"Item {i}", "\n".join(f"line {j} of item {i}" for j in range(30)))
            for i in range(10)
        ]

        assembled = assembler.assemble_detailed(items, budget)

        assert assembler.estimate_tokens(assembled.text) <= budget
        assert assembled.estimated_tokens <= budget

    def test_oversized_item_is_summarized(self, candidate):
        assembler = ContextAssembler(chars_per_token=4)
        long_body = "\n".join(f"Fact number {i} about enzymes." for i in range(200))
        item = candidate("big", "Enzymes", long_body)

        assembled = assembler.assemble_detailed([item], 100)

        assert assembled.summarized == ["big"]
        assert "Fact number 0" in assembled.text
        assert "Fact number 3" not in assembled.text
        assert assembled.text.count("\n...") == 1

    def test_stops_at_first_item_that_cannot_fit(self, candidate):
        assembler = ContextAssembler(chars_per_token=1)
        small = candidate("small", "A", "short")
        large = candidate("large", "B", "x" * 500)
        later = candidate("later", "C", "tiny")

        assembled = assembler.assemble_detailed([small, large, later], 60)

        assert [c.id for c in assembled.used] == ["small"]

    def test_duplicate_content_is_included_once(self, candidate):
        assembler = ContextAssembler()
        a = candidate("a", "Chunk", "Same text")
        b = candidate("b", "Chunk copy", "Same text")

        assembled = assembler.assemble_detailed([a, b], 3000)

        assert [c.id for c in assembled.used] == ["a"]

    def test_estimate_tokens_rounds_up(self):
        assembler = ContextAssembler(chars_per_token=4)
        assert assembler.estimate_tokens("") == 0
        assert assembler.estimate_tokens("abc") == 1
        assert assembler.estimate_tokens("abcde") == 2
