"""
Context Assembler

Packs ranked candidates into a prompt context under a token budget.

Design decisions:
- Greedy in rank order; a candidate that does not fit is retried in its
  summary form before assembly stops
- Token cost is estimated per piece as ceil(chars / chars_per_token); the
  sum of piece estimates bounds the estimate of the whole string
"""

import math
from dataclasses import dataclass, field

from lectern.core.types import RankedCandidate

SEPARATOR = "\n\n---\n\n"
SUMMARY_LINES = 3


@dataclass
class AssembledContext:
    """Assembled context plus what went into it."""

    text: str = ""
    used: list[RankedCandidate] = field(default_factory=list)
    summarized: list[str] = field(default_factory=list)  # ids included as summaries
    estimated_tokens: int = 0


class ContextAssembler:
    """
    Assembles ranked candidates into LLM context.

    Each candidate renders as::

        ## SOURCE: <title>
        Score: 85% | Subject: Biology
        <content>

        ---
    """

    def __init__(self, chars_per_token: int = 4):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self._chars_per_token = chars_per_token

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text) / self._chars_per_token)

    @staticmethod
    def summarize(content: str) -> str:
        lines = [line for line in content.splitlines() if line.strip()]
        return "\n".join(lines[:SUMMARY_LINES]) + "\n..."

    @staticmethod
    def _meta_line(candidate: RankedCandidate) -> str:
        parts = []
        if candidate.score is not None:
            parts.append(f"Score: {round(candidate.score)}%")
        parts.append(f"Subject: {candidate.subject or candidate.source.value}")
        return " | ".join(parts)

    def format_item(self, candidate: RankedCandidate, body: str) -> str:
        return (
            f"## SOURCE: {candidate.title}\n"
            f"{self._meta_line(candidate)}\n"
            f"{body}{SEPARATOR}"
        )

    def assemble_detailed(
        self,
        candidates: list[RankedCandidate],
        token_budget: int,
    ) -> AssembledContext:
        result = AssembledContext()
        if not candidates or token_budget <= 0:
            return result

        pieces: list[str] = []
        seen_content: set[str] = set()

        for candidate in candidates:
            if candidate.content in seen_content:
                continue

            piece = self.format_item(candidate, candidate.content)
            cost = self.estimate_tokens(piece)

            if result.estimated_tokens + cost > token_budget:
                piece = self.format_item(candidate, self.summarize(candidate.content))
                cost = self.estimate_tokens(piece)
                if result.estimated_tokens + cost > token_budget:
                    break
                result.summarized.append(candidate.id)

            seen_content.add(candidate.content)
            pieces.append(piece)
            result.used.append(candidate)
            result.estimated_tokens += cost

        result.text = "".join(pieces)
        return result

    def assemble(self, candidates: list[RankedCandidate], token_budget: int) -> str:
        """Context string whose estimated token cost never exceeds the budget."""
        return self.assemble_detailed(candidates, token_budget).text
