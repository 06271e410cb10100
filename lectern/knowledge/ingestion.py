"""
Knowledge Ingestion

Turns source text into stored, searchable knowledge.

Pipeline per document:
    normalize -> chunk -> embed (batched) -> validate -> upsert points
    -> delete stale points -> upsert repository entry

Design decisions:
- Point ids are derived from (tenant, source, source_id, chunk index), so
  re-ingesting a document overwrites its points instead of duplicating them
- When a document shrinks, points beyond the new chunk count are deleted
- Points and entries move together: when the entry cannot be recorded,
  the points just written are deleted again
- An active source belongs to one scope; re-ingesting it under another
  scope is rejected until it is removed from the first
- Writes to one tenant are serialized; different tenants ingest concurrently
- In a batch, one failing document never aborts the others
"""

import asyncio
import uuid
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from pydantic import BaseModel, Field

from lectern.core.exceptions import (
    DocumentIngestionError,
    EmbeddingError,
    EmbeddingValidationError,
    KnowledgeRepositoryError,
    LecternError,
    SourceScopeConflictError,
    VectorStoreError,
)
from lectern.core.types import (
    ChunkMetadata,
    KnowledgeEntry,
    KnowledgeMetadata,
    KnowledgeSource,
    PointPayload,
    TenantKey,
    VectorPoint,
    utcnow,
)
from lectern.knowledge.chunking import ChunkingStrategy
from lectern.knowledge.embeddings import EmbeddingService
from lectern.knowledge.repository import KnowledgeRepository
from lectern.knowledge.vector_store import VectorStore
from lectern.observability.logging import get_logger

logger = get_logger(__name__)

_POINT_NAMESPACE = uuid.UUID("9a3f1f64-54a4-4f7e-9d8c-3b0f4f2f6c21")


class IngestDocument(BaseModel):
    """A document submitted for ingestion."""

    title: str = Field(min_length=1)
    content: str
    source: KnowledgeSource = KnowledgeSource.TEXT
    source_id: str = Field(min_length=1)
    metadata: KnowledgeMetadata = Field(default_factory=KnowledgeMetadata)


class IngestionReport(BaseModel):
    entry_id: str
    source: KnowledgeSource
    source_id: str
    chunks: int
    removed_chunks: int = 0


class BatchIngestionReport(BaseModel):
    succeeded: int = 0
    failed: int = 0
    chunks: int = 0
    reports: list[IngestionReport] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)  # source_id -> message


class TenantStats(BaseModel):
    """What a tenant collection currently holds."""

    collection: str
    exists: bool
    total_chunks: int = 0
    documents: int = 0
    by_source: dict[str, int] = Field(default_factory=dict)
    files: list[str] = Field(default_factory=list)


def point_id(tenant: TenantKey, source: KnowledgeSource, source_id: str, index: int) -> str:
    name = "\x00".join([tenant.collection_name(), source.value, source_id, str(index)])
    return str(uuid.uuid5(_POINT_NAMESPACE, name))


def normalize_text(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")


class KnowledgeIngester:
    """
    Ingestion orchestrator.

    Example:
        ingester = KnowledgeIngester(chunker, embeddings, store, repository)
        report = await ingester.ingest_text(
            TenantKey.of("user-1", "notebook-7"),
            title="Cell biology notes",
            content=text,
            source=KnowledgeSource.NOTEBOOK,
            source_id="note-42",
        )
    """

    def __init__(
        self,
        chunker: ChunkingStrategy,
        embeddings: EmbeddingService,
        vector_store: VectorStore,
        repository: KnowledgeRepository,
        embed_timeout: float | None = None,
    ):
        self._chunker = chunker
        self._embeddings = embeddings
        self._store = vector_store
        self._repository = repository
        self._embed_timeout = embed_timeout
        # collection name -> (lock, number of holders and waiters)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _tenant_lock(self, tenant: TenantKey) -> AsyncIterator[None]:
        """Serialize writes to one collection; the lock is dropped once unused."""
        name = tenant.collection_name()
        lock, users = self._locks.get(name, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[name] = (lock, users + 1)

        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[name]
            if users > 1:
                self._locks[name] = (lock, users - 1)
            else:
                del self._locks[name]

    async def ingest_text(
        self,
        tenant: TenantKey,
        title: str,
        content: str,
        source: KnowledgeSource = KnowledgeSource.TEXT,
        source_id: str | None = None,
        metadata: KnowledgeMetadata | dict[str, Any] | None = None,
    ) -> IngestionReport:
        """Ingest raw text. ``source_id`` defaults to a fresh id."""
        if isinstance(metadata, dict):
            metadata = KnowledgeMetadata(**metadata)

        document = IngestDocument(
            title=title,
            content=content,
            source=source,
            source_id=source_id or uuid.uuid4().hex,
            metadata=metadata or KnowledgeMetadata(),
        )
        return await self.ingest(tenant, document)

    async def ingest(self, tenant: TenantKey, document: IngestDocument) -> IngestionReport:
        """
        Ingest one document.

        Raises:
            EmbeddingValidationError: a vector was malformed; nothing was written
            DocumentIngestionError: chunking, embedding or storage failed
            SourceScopeConflictError: the source is active under another scope
        """
        content = normalize_text(document.content)
        chunks = self._chunker.split(content)
        if not chunks:
            raise DocumentIngestionError(
                "Document has no content to ingest",
                context={"source_id": document.source_id},
            )

        async with self._tenant_lock(tenant):
            with logger.context(tenant=str(tenant)):
                return await self._ingest_locked(tenant, document, content, chunks)

    async def _find_entry(
        self,
        tenant: TenantKey,
        source: KnowledgeSource,
        source_id: str,
    ) -> KnowledgeEntry | None:
        try:
            return await self._repository.find_by_source(tenant.owner_id, source, source_id)
        except KnowledgeRepositoryError as e:
            raise DocumentIngestionError(
                f"Failed to look up knowledge entry: {e}",
                context={"source_id": source_id},
                cause=e,
            )

    async def _ingest_locked(
        self,
        tenant: TenantKey,
        document: IngestDocument,
        content: str,
        chunks: list[str],
    ) -> IngestionReport:
        existing = await self._find_entry(tenant, document.source, document.source_id)
        if existing is not None and existing.is_active and existing.scope_id != tenant.scope_id:
            raise SourceScopeConflictError(
                "Source is already ingested under another scope; remove it there first",
                context={
                    "source_id": document.source_id,
                    "scope_id": existing.scope_id,
                },
            )
        entry_id = existing.id if existing else uuid.uuid4().hex
        # a removed entry may move to another scope; its old points are gone
        same_scope = existing is not None and existing.scope_id == tenant.scope_id
        previous_chunks = existing.metadata.chunk_count if same_scope else 0
        now = utcnow()

        vectors = await self._embed(chunks, document.source_id)

        chunk_meta = ChunkMetadata(
            entry_id=entry_id,
            source_id=document.source_id,
            source=document.source,
            title=document.title,
            subject=document.metadata.subject,
            tags=document.metadata.tags,
            score=document.metadata.score,
            file_name=document.metadata.file_name,
            total_chunks=len(chunks),
            last_updated=now,
        )
        points = [
            VectorPoint(
                id=point_id(tenant, document.source, document.source_id, i),
                vector=vector,
                payload=PointPayload(
                    content=chunk,
                    chunk_index=i,
                    tenant=str(tenant),
                    metadata=chunk_meta,
                ),
            )
            for i, (chunk, vector) in enumerate(zip(chunks, vectors))
        ]

        stale = [
            point_id(tenant, document.source, document.source_id, i)
            for i in range(len(chunks), previous_chunks)
        ]

        try:
            await self._store.upsert(tenant, points)
            if stale:
                await self._store.delete(tenant, ids=stale)
        except VectorStoreError as e:
            raise DocumentIngestionError(
                f"Failed to store chunks: {e}",
                context={"source_id": document.source_id},
                cause=e,
            )

        entry = KnowledgeEntry(
            id=entry_id,
            title=document.title,
            content=content,
            source=document.source,
            source_id=document.source_id,
            owner_id=tenant.owner_id,
            scope_id=tenant.scope_id,
            metadata=document.metadata.model_copy(
                update={"chunk_count": len(chunks), "last_updated": now}
            ),
        )
        try:
            stored = await self._repository.upsert_entry(entry)
        except KnowledgeRepositoryError as e:
            await self._discard_points(tenant, [p.id for p in points])
            raise DocumentIngestionError(
                f"Failed to record knowledge entry: {e}",
                context={"source_id": document.source_id},
                cause=e,
            )

        logger.info(
            "Ingested document",
            source=document.source.value,
            source_id=document.source_id,
            chunks=len(chunks),
            removed_chunks=len(stale),
        )
        return IngestionReport(
            entry_id=stored.id,
            source=document.source,
            source_id=document.source_id,
            chunks=len(chunks),
            removed_chunks=len(stale),
        )

    async def _discard_points(self, tenant: TenantKey, ids: list[str]) -> None:
        """Undo a point upsert whose entry could not be recorded."""
        try:
            await self._store.delete(tenant, ids=ids)
        except VectorStoreError as e:
            logger.error("Failed to discard unrecorded chunks", error=e, points=len(ids))

    async def _embed(self, chunks: list[str], source_id: str) -> list[list[float]]:
        try:
            if self._embed_timeout:
                vectors = await asyncio.wait_for(
                    self._embeddings.embed_batch(chunks), timeout=self._embed_timeout
                )
            else:
                vectors = await self._embeddings.embed_batch(chunks)
        except EmbeddingValidationError:
            raise
        except (EmbeddingError, asyncio.TimeoutError) as e:
            raise DocumentIngestionError(
                f"Failed to embed chunks: {str(e) or 'timeout'}",
                context={"source_id": source_id},
                cause=e,
            )

        if len(vectors) != len(chunks):
            raise DocumentIngestionError(
                f"Embedding provider returned {len(vectors)} vectors for {len(chunks)} chunks",
                context={"source_id": source_id},
            )
        return vectors

    async def ingest_batch(
        self,
        tenant: TenantKey,
        documents: list[IngestDocument],
    ) -> BatchIngestionReport:
        """Ingest documents one by one, recording failures instead of raising."""
        report = BatchIngestionReport()

        for document in documents:
            try:
                result = await self.ingest(tenant, document)
            except LecternError as e:
                report.failed += 1
                report.errors[document.source_id] = e.message
                logger.warning(
                    "Skipping document that failed to ingest",
                    error=e,
                    source_id=document.source_id,
                )
                continue

            report.succeeded += 1
            report.chunks += result.chunks
            report.reports.append(result)

        return report

    async def remove_source(
        self,
        tenant: TenantKey,
        source: KnowledgeSource,
        source_id: str,
    ) -> bool:
        """
        Remove a document's vectors, then soft-delete its entry.

        Returns False when no active entry existed in this tenant's scope;
        an entry that lives under another scope is left alone.
        """
        async with self._tenant_lock(tenant):
            await self._store.delete(
                tenant, filter={"source": source.value, "source_id": source_id}
            )
            entry = await self._repository.find_by_source(tenant.owner_id, source, source_id)
            removed = False
            if entry is not None and entry.scope_id == tenant.scope_id:
                removed = await self._repository.deactivate(tenant.owner_id, source, source_id)

        logger.info(
            "Removed knowledge source",
            source=source.value,
            source_id=source_id,
            removed=removed,
        )
        return removed

    async def drop_tenant(self, tenant: TenantKey) -> bool:
        """Delete a tenant's whole vector collection."""
        async with self._tenant_lock(tenant):
            return await self._store.delete_collection(tenant)

    async def tenant_stats(self, tenant: TenantKey) -> TenantStats:
        name = self._store.collection_name(tenant)
        if not await self._store.collection_exists(tenant):
            return TenantStats(collection=name, exists=False)

        rows = await self._store.scroll(tenant)
        documents = {(p.metadata.source.value, p.metadata.source_id) for _, p in rows}
        files = {p.metadata.file_name for _, p in rows if p.metadata.file_name}

        return TenantStats(
            collection=name,
            exists=True,
            total_chunks=len(rows),
            documents=len(documents),
            by_source=dict(Counter(source for source, _ in documents)),
            files=sorted(files),
        )
