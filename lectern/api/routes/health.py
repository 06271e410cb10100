"""
Health Check Routes
"""

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Basic health check."""
    components = getattr(request.app.state, "components", None)
    if components is None:
        return {"status": "starting"}

    return {
        "status": "healthy",
        "llm": components.llm.provider_name,
        "embedding_dimension": components.embeddings.dimension,
        "vector_store": type(components.vector_store).__name__,
    }


@router.get("/health/ready")
async def readiness_check(request: Request) -> dict[str, Any]:
    """Readiness check for Kubernetes."""
    ready = getattr(request.app.state, "components", None) is not None
    return {"status": "ready" if ready else "not_ready"}


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """Liveness check for Kubernetes."""
    return {"status": "alive"}
