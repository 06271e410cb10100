"""
Embedding Service

Generate vector embeddings for text.
Abstracts different embedding providers.

Design decisions:
- Provider-agnostic interface with a fixed, declared dimension
- Batch embedding for efficiency
- Caching for repeated texts
- Provider failures surface as EmbeddingError; vectors that cannot be
  stored surface as EmbeddingValidationError (see validate_embedding)
"""

import asyncio
import hashlib
import math
import re
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Sequence

from lectern.core.exceptions import EmbeddingError, EmbeddingValidationError


def validate_embedding(vector: Sequence[float], dimension: int) -> list[float]:
    """
    Check a vector before it is written anywhere.

    Returns the vector as a list of floats. Raises EmbeddingValidationError
    on a length mismatch or on NaN/infinite components.
    """
    actual = len(vector)
    if actual != dimension:
        raise EmbeddingValidationError(
            f"Embedding has dimension {actual}, expected {dimension}",
            expected_dimension=dimension,
            actual_dimension=actual,
        )

    values = [float(v) for v in vector]
    for i, value in enumerate(values):
        if not math.isfinite(value):
            raise EmbeddingValidationError(
                f"Embedding component {i} is not finite ({value})",
                expected_dimension=dimension,
                actual_dimension=actual,
                context={"index": i},
            )
    return values


class EmbeddingService(ABC):
    """
    Abstract embedding service.

    Generates dense vector representations of text
    for semantic similarity search.
    """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Embedding dimension."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate embedding for single text."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts, in input order."""
        pass


class _LRUCache:
    """Small bounded cache keyed by text digest."""

    def __init__(self, max_entries: int = 2048):
        self._data: OrderedDict[str, list[float]] = OrderedDict()
        self._max_entries = max_entries

    @staticmethod
    def key(text: str) -> str:
        return hashlib.md5(text.encode("utf-8")).hexdigest()

    def get(self, key: str) -> list[float] | None:
        value = self._data.get(key)
        if value is not None:
            self._data.move_to_end(key)
        return value

    def put(self, key: str, value: list[float]) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self._max_entries:
            self._data.popitem(last=False)


class OpenAIEmbeddings(EmbeddingService):
    """
    Embeddings from any OpenAI-compatible endpoint.

    Works with OpenAI itself and with compatible hosts such as DeepInfra
    (set ``base_url``). The declared dimension is authoritative: responses
    of another size are rejected by validation before storage.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "Qwen/Qwen3-Embedding-8B",
        dimension: int = 4096,
        base_url: str | None = None,
        batch_size: int = 32,
        cache_enabled: bool = True,
        send_dimensions: bool = False,
    ):
        self._model = model
        self._dimension = dimension
        self._api_key = api_key
        self._base_url = base_url
        self._batch_size = batch_size
        self._send_dimensions = send_dimensions
        self._client = None

        self._cache = _LRUCache() if cache_enabled else None

    async def _get_client(self):
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError("openai package required. Install with: pip install openai")

            kwargs: dict[str, Any] = {}
            if self._api_key:
                kwargs["api_key"] = self._api_key
            if self._base_url:
                kwargs["base_url"] = self._base_url

            self._client = AsyncOpenAI(**kwargs)
        return self._client

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        results: list[list[float] | None] = [None] * len(texts)
        pending: list[int] = []

        for i, text in enumerate(texts):
            cached = self._cache.get(self._cache.key(text)) if self._cache else None
            if cached is not None:
                results[i] = cached
            else:
                pending.append(i)

        for offset in range(0, len(pending), self._batch_size):
            indices = pending[offset : offset + self._batch_size]
            vectors = await self._request([texts[i] for i in indices])

            for i, vector in zip(indices, vectors):
                results[i] = vector
                if self._cache:
                    self._cache.put(self._cache.key(texts[i]), vector)

        return [r for r in results if r is not None]

    async def _request(self, inputs: list[str]) -> list[list[float]]:
        client = await self._get_client()

        kwargs: dict[str, Any] = {
            "model": self._model,
            "input": inputs,
            "encoding_format": "float",
        }
        if self._send_dimensions:
            kwargs["dimensions"] = self._dimension

        try:
            response = await client.embeddings.create(**kwargs)
        except Exception as e:
            raise EmbeddingError(
                f"Embedding request failed: {e}",
                context={"model": self._model, "inputs": len(inputs)},
                cause=e,
            )

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(inputs):
            raise EmbeddingError(
                f"Embedding response has {len(data)} vectors for {len(inputs)} inputs",
                context={"model": self._model},
            )
        return [list(item.embedding) for item in data]


class LocalEmbeddings(EmbeddingService):
    """
    Local embedding service using sentence-transformers.

    Runs on CPU/GPU locally, no API calls needed.
    Encoding runs in a worker thread so the event loop stays responsive.
    """

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        device: str = "cpu",
    ):
        self._model_name = model_name
        self._device = device
        self._model = None

    def _get_model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "sentence-transformers required. Install with: "
                    "pip install sentence-transformers"
                )

            self._model = SentenceTransformer(self._model_name, device=self._device)
        return self._model

    @property
    def dimension(self) -> int:
        model = self._get_model()
        return model.get_sentence_embedding_dimension()

    async def embed(self, text: str) -> list[float]:
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        model = self._get_model()
        try:
            embeddings = await asyncio.to_thread(
                model.encode, texts, convert_to_numpy=True
            )
        except Exception as e:
            raise EmbeddingError(f"Local embedding failed: {e}", cause=e)
        return embeddings.tolist()


_WORD = re.compile(r"\w+")


class HashEmbeddings(EmbeddingService):
    """
    Deterministic offline embeddings (feature hashing over words).

    Texts sharing words get similar vectors, which is enough for offline
    mode and tests. Not a semantic model.
    """

    def __init__(self, dimension: int = 256):
        self._dimension = dimension
        self.calls = 0

    @property
    def dimension(self) -> int:
        return self._dimension

    def _vectorize(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for word in _WORD.findall(text.lower()):
            digest = hashlib.md5(word.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        return self._vectorize(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [self._vectorize(t) for t in texts]
