"""
Chunking Strategies

Split source text into retrievable chunks.

Design decisions:
- Strategy pattern for flexibility
- Fixed character windows with an exact overlap, so re-ingesting the
  same text always yields the same chunks (and the same point ids)
- Window ends snap back to the nearest paragraph, line, sentence or word
  boundary when one lies in the second half of the window
"""

from abc import ABC, abstractmethod


class ChunkingStrategy(ABC):
    """
    Abstract chunking strategy.

    Implementations must be deterministic: identical input and parameters
    produce an identical chunk list.
    """

    @abstractmethod
    def split(self, text: str) -> list[str]:
        """Split text into ordered chunks."""
        pass


class TextChunker(ChunkingStrategy):
    """
    Sliding-window character chunker.

    Every chunk is at most ``chunk_size`` characters and each chunk starts
    with exactly the last ``chunk_overlap`` characters of its predecessor.
    Empty or whitespace-only text yields no chunks.

    Example:
        chunker = TextChunker(chunk_size=8000, chunk_overlap=200)
        chunks = chunker.split(document_text)
    """

    DEFAULT_SEPARATORS = ("\n\n", "\n", ". ", " ")

    def __init__(
        self,
        chunk_size: int = 8000,
        chunk_overlap: int = 200,
        separators: tuple[str, ...] | None = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")

        self._chunk_size = chunk_size
        self._overlap = chunk_overlap
        self._separators = separators or self.DEFAULT_SEPARATORS

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def chunk_overlap(self) -> int:
        return self._overlap

    def split(self, text: str) -> list[str]:
        if not text or not text.strip():
            return []

        length = len(text)
        if length <= self._chunk_size:
            return [text]

        chunks: list[str] = []
        start = 0

        while True:
            end = min(start + self._chunk_size, length)
            if end < length:
                end = self._find_boundary(text, start, end)

            chunks.append(text[start:end])

            if end >= length:
                break
            start = end - self._overlap

        return chunks

    def _find_boundary(self, text: str, start: int, end: int) -> int:
        """
        Latest separator end within the second half of the window.

        The floor keeps every window longer than the overlap, so the next
        start always moves forward.
        """
        floor = start + max(self._overlap + 1, self._chunk_size // 2)
        if floor >= end:
            return end

        for sep in self._separators:
            idx = text.rfind(sep, floor, end)
            if idx != -1:
                return idx + len(sep)

        return end
