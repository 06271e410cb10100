"""
FastAPI Dependencies

Dependency injection for API routes.

All components are built once in the application lifespan and provided
through these dependencies, so routes never construct backends.
"""

from fastapi import Depends, HTTPException, Request

from lectern.knowledge.ingestion import KnowledgeIngester
from lectern.knowledge.repository import KnowledgeRepository
from lectern.knowledge.retriever import Retriever
from lectern.memory.session import SessionMemoryStore
from lectern.runtime.factory import RAGComponents
from lectern.runtime.pipeline import RAGPipeline


async def get_components(request: Request) -> RAGComponents:
    """Get application components from state."""
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return components


async def get_pipeline(
    components: RAGComponents = Depends(get_components),
) -> RAGPipeline:
    return components.pipeline


async def get_ingester(
    components: RAGComponents = Depends(get_components),
) -> KnowledgeIngester:
    return components.ingester


async def get_retriever(
    components: RAGComponents = Depends(get_components),
) -> Retriever:
    return components.retriever


async def get_repository(
    components: RAGComponents = Depends(get_components),
) -> KnowledgeRepository:
    return components.repository


async def get_sessions(
    components: RAGComponents = Depends(get_components),
) -> SessionMemoryStore:
    return components.sessions

