"""
Query API Routes

Question answering over a tenant's knowledge, blocking or streamed.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.responses import StreamingResponse as StarletteStreamingResponse

from lectern.api.dependencies import get_pipeline, get_sessions
from lectern.api.streaming import StreamingResponse, stream_events
from lectern.core.types import RAGResult, TenantKey
from lectern.memory.session import SessionMemoryStore
from lectern.observability.logging import get_logger
from lectern.runtime.pipeline import RAGPipeline

router = APIRouter()
logger = get_logger(__name__)


class QueryRequest(BaseModel):
    """Request body for the query endpoint."""

    owner_id: str = Field(..., min_length=1, max_length=256)
    scope_id: str | None = Field(default=None, max_length=256)
    session_id: str | None = Field(
        default=None,
        max_length=128,
        description="Conversation to continue; omit for a one-off question",
    )
    question: str = Field(..., min_length=1, max_length=10000)
    stream: bool = False


@router.post("/query", response_model=None)
async def query(
    request: QueryRequest,
    pipeline: RAGPipeline = Depends(get_pipeline),
    sessions: SessionMemoryStore = Depends(get_sessions),
) -> RAGResult | StarletteStreamingResponse:
    """
    Answer a question.

    With ``stream`` set, the answer is sent as SSE events named
    ``metadata``, ``delta``, ``fallback`` and ``done``; the ``done`` event
    carries the final result.
    """
    tenant = TenantKey.of(request.owner_id, request.scope_id)
    memory = (
        await sessions.get(tenant, request.session_id)
        if request.session_id
        else None
    )

    if request.stream:
        return StreamingResponse(
            stream_events(pipeline.query_stream(tenant, request.question, memory))
        )

    with logger.context(session_id=request.session_id):
        return await pipeline.query(tenant, request.question, memory)
