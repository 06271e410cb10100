"""
Knowledge API Routes

Ingestion, removal, listing, search and statistics of a tenant's knowledge.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from lectern.api.dependencies import (
    get_components,
    get_ingester,
    get_pipeline,
    get_repository,
    get_retriever,
)
from lectern.core.types import KnowledgeEntry, KnowledgeMetadata, KnowledgeSource, TenantKey
from lectern.knowledge.ingestion import (
    BatchIngestionReport,
    IngestDocument,
    IngestionReport,
    KnowledgeIngester,
    TenantStats,
)
from lectern.knowledge.repository import KnowledgeRepository, KnowledgeStats
from lectern.knowledge.retriever import Retriever
from lectern.runtime.factory import RAGComponents
from lectern.runtime.pipeline import RAGPipeline

router = APIRouter()


class TenantRequest(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=256)
    scope_id: str | None = Field(default=None, max_length=256)

    def tenant(self) -> TenantKey:
        return TenantKey.of(self.owner_id, self.scope_id)


class IngestRequest(TenantRequest):
    """A single document to add or replace."""

    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    source: KnowledgeSource = KnowledgeSource.TEXT
    source_id: str | None = Field(
        default=None,
        max_length=256,
        description="Stable id; re-ingesting the same id replaces the document",
    )
    metadata: KnowledgeMetadata = Field(default_factory=KnowledgeMetadata)


class BatchIngestRequest(TenantRequest):
    documents: list[IngestDocument] = Field(..., min_length=1, max_length=500)


class ContextRequest(TenantRequest):
    """Request for a context block built from recent knowledge."""

    query: str | None = Field(default=None, max_length=10000)
    limit: int = Field(default=5, ge=1, le=50)
    token_budget: int | None = Field(default=None, ge=1)


class ContextResponse(BaseModel):
    context: str
    titles: list[str]
    summarized: list[str]
    estimated_tokens: int


class SearchRequest(TenantRequest):
    """Semantic search over the tenant's collection, without an answer."""

    query: str = Field(..., min_length=1, max_length=10000)
    limit: int = Field(default=5, ge=1, le=50)
    score_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    source: KnowledgeSource | None = None


class SearchHit(BaseModel):
    id: str
    title: str
    content: str
    source: KnowledgeSource
    subject: str | None = None
    similarity: float


class SearchResponse(BaseModel):
    query: str
    results: list[SearchHit]
    total_results: int


class KnowledgeStatsResponse(BaseModel):
    knowledge: KnowledgeStats
    collection: TenantStats


@router.post("/knowledge", response_model=IngestionReport, status_code=201)
async def ingest(
    request: IngestRequest,
    ingester: KnowledgeIngester = Depends(get_ingester),
):
    """Ingest one document into the tenant's knowledge base."""
    if not request.content.strip():
        raise HTTPException(status_code=422, detail="Document content is empty")

    return await ingester.ingest_text(
        request.tenant(),
        title=request.title,
        content=request.content,
        source=request.source,
        source_id=request.source_id,
        metadata=request.metadata,
    )


@router.post("/knowledge/batch", response_model=BatchIngestionReport)
async def ingest_batch(
    request: BatchIngestRequest,
    ingester: KnowledgeIngester = Depends(get_ingester),
):
    """Ingest several documents; failures are reported per document."""
    return await ingester.ingest_batch(request.tenant(), request.documents)


@router.get("/knowledge", response_model=list[KnowledgeEntry])
async def list_knowledge(
    owner_id: str = Query(..., min_length=1, max_length=256),
    scope_id: str | None = Query(default=None, max_length=256),
    source: KnowledgeSource | None = None,
    subject: str | None = None,
    days: int | None = Query(default=None, ge=1),
    search: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    repository: KnowledgeRepository = Depends(get_repository),
):
    """List active entries, most recently updated first."""
    TenantKey.of(owner_id, scope_id)
    return await repository.list_entries(
        owner_id,
        scope_id=scope_id,
        source=source,
        subject=subject,
        days=days,
        search=search,
        limit=limit,
    )


@router.get("/knowledge/stats", response_model=KnowledgeStatsResponse)
async def knowledge_stats(
    owner_id: str = Query(..., min_length=1, max_length=256),
    scope_id: str | None = Query(default=None, max_length=256),
    components: RAGComponents = Depends(get_components),
):
    """Entry statistics for the owner plus the tenant collection's contents."""
    tenant = TenantKey.of(owner_id, scope_id)
    knowledge = await components.repository.stats(
        owner_id, recent_days=components.settings.knowledge_base.recent_days
    )
    collection = await components.ingester.tenant_stats(tenant)
    return KnowledgeStatsResponse(knowledge=knowledge, collection=collection)


@router.post("/knowledge/context", response_model=ContextResponse)
async def recent_context(
    request: ContextRequest,
    retriever: Retriever = Depends(get_retriever),
    components: RAGComponents = Depends(get_components),
):
    """Context block built from the tenant's recent knowledge, without vector search."""
    candidates = await retriever.recent_context(
        request.tenant(), query=request.query, limit=request.limit
    )
    budget = request.token_budget or components.settings.rag.context_token_budget
    assembled = components.assembler.assemble_detailed(candidates, budget)

    return ContextResponse(
        context=assembled.text,
        titles=[c.title for c in assembled.used],
        summarized=[c.title for c in assembled.used if c.id in assembled.summarized],
        estimated_tokens=assembled.estimated_tokens,
    )


@router.delete("/knowledge/{source}/{source_id}")
async def remove_knowledge(
    source: KnowledgeSource,
    source_id: str,
    owner_id: str = Query(..., min_length=1, max_length=256),
    scope_id: str | None = Query(default=None, max_length=256),
    ingester: KnowledgeIngester = Depends(get_ingester),
) -> dict[str, Any]:
    """Remove a document's chunks and deactivate its entry."""
    removed = await ingester.remove_source(TenantKey.of(owner_id, scope_id), source, source_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Knowledge entry not found")

    return {"status": "deleted", "source": source.value, "source_id": source_id}


@router.post("/knowledge/search", response_model=SearchResponse)
async def search_knowledge(
    request: SearchRequest,
    pipeline: RAGPipeline = Depends(get_pipeline),
):
    """Chunks most similar to the query, optionally limited to one source type."""
    hits = await pipeline.search(
        request.tenant(),
        request.query,
        limit=request.limit,
        score_threshold=request.score_threshold,
        source=request.source,
    )
    return SearchResponse(
        query=request.query,
        results=[
            SearchHit(
                id=h.id,
                title=h.title,
                content=h.content,
                source=h.source,
                subject=h.subject,
                similarity=round(h.similarity, 4),
            )
            for h in hits
        ],
        total_results=len(hits),
    )
