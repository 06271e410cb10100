"""
Vector Store Abstraction

Per-tenant collections of chunk embeddings.
Supports multiple backends (in-memory, Milvus).

Design decisions:
- Abstract interface for backend independence
- One collection per TenantKey, named only via TenantKey.collection_name()
- Collections are created lazily on first write (create-if-absent)
- Every vector is validated against the collection dimension before any
  point of a batch is written
- Payloads follow the PointPayload schema, never free-form dicts
"""

import asyncio
import json
import math
from abc import ABC, abstractmethod
from typing import Any, Literal

from lectern.core.exceptions import CollectionNotFoundError, VectorStoreError
from lectern.core.types import PointPayload, ScoredPoint, TenantKey, VectorPoint
from lectern.knowledge.embeddings import validate_embedding
from lectern.observability.logging import get_logger

logger = get_logger(__name__)

Metric = Literal["COSINE", "IP", "L2"]

# Payload metadata fields usable in equality filters
FILTER_FIELDS = frozenset({"entry_id", "source", "source_id", "file_name"})


def _check_filter(filter: dict[str, str] | None) -> dict[str, str]:
    filter = filter or {}
    unknown = set(filter) - FILTER_FIELDS
    if unknown:
        raise ValueError(f"Unsupported filter fields: {sorted(unknown)}")
    return filter


def _payload_matches(payload: PointPayload, filter: dict[str, str]) -> bool:
    meta = payload.metadata
    for field, expected in filter.items():
        value = getattr(meta, field)
        if hasattr(value, "value"):
            value = value.value
        if value != expected:
            return False
    return True


class VectorStore(ABC):
    """
    Abstract vector store interface.

    Public write methods validate and then delegate to the backend's
    ``_upsert``; search returns hits sorted by descending score with
    ``score >= score_threshold``.
    """

    def __init__(
        self,
        dimension: int,
        metric: Metric = "COSINE",
        collection_prefix: str = "kb",
    ):
        self._dimension = dimension
        self._metric = metric
        self._prefix = collection_prefix

    @property
    def dimension(self) -> int:
        return self._dimension

    def collection_name(self, tenant: TenantKey) -> str:
        return tenant.collection_name(self._prefix)

    @abstractmethod
    async def collection_exists(self, tenant: TenantKey) -> bool:
        pass

    @abstractmethod
    async def create_collection(
        self,
        tenant: TenantKey,
        dimension: int,
        metric: Metric = "COSINE",
    ) -> None:
        """Create the tenant collection. No-op when it already exists."""
        pass

    async def ensure_collection(self, tenant: TenantKey) -> None:
        if not await self.collection_exists(tenant):
            await self.create_collection(tenant, self._dimension, self._metric)
            logger.info(
                "Created vector collection",
                collection=self.collection_name(tenant),
                dimension=self._dimension,
            )

    async def upsert(self, tenant: TenantKey, points: list[VectorPoint]) -> int:
        """
        Validate and write points, replacing existing ids.

        Raises EmbeddingValidationError before anything is written if any
        vector is malformed.
        """
        if not points:
            return 0

        validated = [
            point.model_copy(
                update={"vector": validate_embedding(point.vector, self._dimension)}
            )
            for point in points
        ]

        await self.ensure_collection(tenant)
        await self._upsert(tenant, validated)
        return len(validated)

    @abstractmethod
    async def _upsert(self, tenant: TenantKey, points: list[VectorPoint]) -> None:
        pass

    @abstractmethod
    async def search(
        self,
        tenant: TenantKey,
        vector: list[float],
        limit: int = 5,
        score_threshold: float = 0.0,
        filter: dict[str, str] | None = None,
    ) -> list[ScoredPoint]:
        """
        Similarity search within one tenant collection.

        Raises CollectionNotFoundError when the tenant has no collection.
        """
        pass

    @abstractmethod
    async def delete(
        self,
        tenant: TenantKey,
        ids: list[str] | None = None,
        filter: dict[str, str] | None = None,
    ) -> None:
        """Delete points by id and/or by payload filter."""
        pass

    @abstractmethod
    async def scroll(
        self,
        tenant: TenantKey,
        limit: int = 10_000,
        filter: dict[str, str] | None = None,
    ) -> list[tuple[str, PointPayload]]:
        """List stored point ids and payloads without ranking."""
        pass

    @abstractmethod
    async def delete_collection(self, tenant: TenantKey) -> bool:
        pass


class InMemoryVectorStore(VectorStore):
    """
    Simple in-memory vector store for testing and offline mode.

    Uses brute-force cosine search. Not suitable for production.
    """

    def __init__(self, dimension: int, metric: Metric = "COSINE", collection_prefix: str = "kb"):
        super().__init__(dimension, metric, collection_prefix)
        self._collections: dict[str, dict[str, VectorPoint]] = {}
        self.search_calls = 0

    @staticmethod
    def _cosine_similarity(a: list[float], b: list[float]) -> float:
        dot = sum(x * y for x, y in zip(a, b))
        norm_a = math.sqrt(sum(x * x for x in a))
        norm_b = math.sqrt(sum(x * x for x in b))
        if norm_a == 0 or norm_b == 0:
            return 0.0
        return dot / (norm_a * norm_b)

    def _score(self, a: list[float], b: list[float]) -> float:
        if self._metric == "IP":
            return sum(x * y for x, y in zip(a, b))
        if self._metric == "L2":
            return -math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))
        return self._cosine_similarity(a, b)

    def _points(self, tenant: TenantKey) -> dict[str, VectorPoint]:
        name = self.collection_name(tenant)
        if name not in self._collections:
            raise CollectionNotFoundError(
                f"Collection {name} does not exist",
                context={"collection": name},
            )
        return self._collections[name]

    async def collection_exists(self, tenant: TenantKey) -> bool:
        return self.collection_name(tenant) in self._collections

    async def create_collection(
        self,
        tenant: TenantKey,
        dimension: int,
        metric: Metric = "COSINE",
    ) -> None:
        if dimension != self._dimension:
            raise VectorStoreError(
                f"Store dimension is {self._dimension}, cannot create {dimension}"
            )
        self._collections.setdefault(self.collection_name(tenant), {})

    async def _upsert(self, tenant: TenantKey, points: list[VectorPoint]) -> None:
        collection = self._points(tenant)
        for point in points:
            collection[point.id] = point

    async def search(
        self,
        tenant: TenantKey,
        vector: list[float],
        limit: int = 5,
        score_threshold: float = 0.0,
        filter: dict[str, str] | None = None,
    ) -> list[ScoredPoint]:
        self.search_calls += 1
        filter = _check_filter(filter)
        collection = self._points(tenant)

        hits = []
        for point in collection.values():
            if filter and not _payload_matches(point.payload, filter):
                continue
            score = self._score(vector, point.vector)
            if score >= score_threshold:
                hits.append(ScoredPoint(id=point.id, score=score, payload=point.payload))

        hits.sort(key=lambda h: (-h.score, h.id))
        return hits[:limit]

    async def delete(
        self,
        tenant: TenantKey,
        ids: list[str] | None = None,
        filter: dict[str, str] | None = None,
    ) -> None:
        filter = _check_filter(filter)
        name = self.collection_name(tenant)
        collection = self._collections.get(name)
        if collection is None:
            return

        for point_id in ids or []:
            collection.pop(point_id, None)

        if filter:
            for point_id in [
                pid for pid, p in collection.items() if _payload_matches(p.payload, filter)
            ]:
                del collection[point_id]

    async def scroll(
        self,
        tenant: TenantKey,
        limit: int = 10_000,
        filter: dict[str, str] | None = None,
    ) -> list[tuple[str, PointPayload]]:
        filter = _check_filter(filter)
        collection = self._points(tenant)
        rows = [
            (pid, p.payload)
            for pid, p in sorted(collection.items())
            if not filter or _payload_matches(p.payload, filter)
        ]
        return rows[:limit]

    async def delete_collection(self, tenant: TenantKey) -> bool:
        return self._collections.pop(self.collection_name(tenant), None) is not None


class MilvusVectorStore(VectorStore):
    """
    Milvus-based vector store.

    Production-grade distributed vector database. Each tenant gets its own
    collection (quick-setup schema: string primary key, one vector field,
    dynamic fields). The validated payload is stored as JSON alongside a few
    flattened fields used for filtering.

    pymilvus' MilvusClient is synchronous, so calls run in worker threads.
    """

    _ID_MAX_LENGTH = 64

    def __init__(
        self,
        dimension: int,
        uri: str = "http://localhost:19530",
        token: str | None = None,
        metric: Metric = "COSINE",
        collection_prefix: str = "kb",
    ):
        super().__init__(dimension, metric, collection_prefix)
        self._uri = uri
        self._token = token
        self._client = None

    def _get_client(self):
        """Lazy initialization of Milvus client."""
        if self._client is None:
            try:
                from pymilvus import MilvusClient
            except ImportError:
                raise ImportError(
                    "pymilvus required. Install with: pip install pymilvus"
                )

            kwargs: dict[str, Any] = {"uri": self._uri}
            if self._token:
                kwargs["token"] = self._token
            self._client = MilvusClient(**kwargs)

        return self._client

    async def _call(self, method: str, **kwargs: Any) -> Any:
        client = self._get_client()
        try:
            return await asyncio.to_thread(getattr(client, method), **kwargs)
        except Exception as e:
            raise VectorStoreError(
                f"Milvus {method} failed: {e}",
                context={"collection": kwargs.get("collection_name")},
                cause=e,
            )

    @staticmethod
    def _filter_expression(filter: dict[str, str]) -> str:
        # JSON string literals are valid Milvus string literals
        return " and ".join(
            f"{field} == {json.dumps(value)}" for field, value in sorted(filter.items())
        )

    async def collection_exists(self, tenant: TenantKey) -> bool:
        return bool(
            await self._call("has_collection", collection_name=self.collection_name(tenant))
        )

    async def create_collection(
        self,
        tenant: TenantKey,
        dimension: int,
        metric: Metric = "COSINE",
    ) -> None:
        name = self.collection_name(tenant)
        if await self._call("has_collection", collection_name=name):
            return

        await self._call(
            "create_collection",
            collection_name=name,
            dimension=dimension,
            metric_type=metric,
            id_type="string",
            max_length=self._ID_MAX_LENGTH,
            auto_id=False,
            enable_dynamic_field=True,
        )

    async def _require(self, tenant: TenantKey) -> str:
        name = self.collection_name(tenant)
        if not await self._call("has_collection", collection_name=name):
            raise CollectionNotFoundError(
                f"Collection {name} does not exist",
                context={"collection": name},
            )
        return name

    async def _upsert(self, tenant: TenantKey, points: list[VectorPoint]) -> None:
        data = [
            {
                "id": point.id,
                "vector": point.vector,
                "payload": point.payload.model_dump_json(),
                "entry_id": point.payload.metadata.entry_id,
                "source": point.payload.metadata.source.value,
                "source_id": point.payload.metadata.source_id,
                "file_name": point.payload.metadata.file_name or "",
            }
            for point in points
        ]
        await self._call(
            "upsert", collection_name=self.collection_name(tenant), data=data
        )

    async def search(
        self,
        tenant: TenantKey,
        vector: list[float],
        limit: int = 5,
        score_threshold: float = 0.0,
        filter: dict[str, str] | None = None,
    ) -> list[ScoredPoint]:
        filter = _check_filter(filter)
        name = await self._require(tenant)

        kwargs: dict[str, Any] = {
            "collection_name": name,
            "data": [vector],
            "limit": limit,
            "output_fields": ["payload"],
        }
        if filter:
            kwargs["filter"] = self._filter_expression(filter)

        results = await self._call("search", **kwargs)

        hits = []
        for hit in results[0] if results else []:
            score = float(hit.get("distance", 0.0))
            if self._metric == "L2":
                score = -score
            if score < score_threshold:
                continue
            payload = PointPayload.model_validate_json(hit.get("entity", {}).get("payload"))
            hits.append(ScoredPoint(id=str(hit.get("id")), score=score, payload=payload))

        hits.sort(key=lambda h: (-h.score, h.id))
        return hits

    async def delete(
        self,
        tenant: TenantKey,
        ids: list[str] | None = None,
        filter: dict[str, str] | None = None,
    ) -> None:
        filter = _check_filter(filter)
        name = self.collection_name(tenant)
        if not await self._call("has_collection", collection_name=name):
            return

        if ids:
            await self._call("delete", collection_name=name, ids=ids)
        if filter:
            await self._call(
                "delete", collection_name=name, filter=self._filter_expression(filter)
            )

    async def scroll(
        self,
        tenant: TenantKey,
        limit: int = 10_000,
        filter: dict[str, str] | None = None,
    ) -> list[tuple[str, PointPayload]]:
        filter = _check_filter(filter)
        name = await self._require(tenant)

        rows = await self._call(
            "query",
            collection_name=name,
            filter=self._filter_expression(filter) if filter else "",
            limit=limit,
            output_fields=["payload"],
        )
        result = [
            (str(row["id"]), PointPayload.model_validate_json(row["payload"]))
            for row in rows
        ]
        result.sort(key=lambda item: item[0])
        return result

    async def delete_collection(self, tenant: TenantKey) -> bool:
        name = self.collection_name(tenant)
        if not await self._call("has_collection", collection_name=name):
            return False
        await self._call("drop_collection", collection_name=name)
        return True
