"""
Session Management Routes
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from lectern.api.dependencies import get_sessions
from lectern.core.types import TenantKey
from lectern.memory.session import SessionMemoryStore

router = APIRouter()


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    owner_id: str = Query(..., min_length=1, max_length=256),
    scope_id: str | None = Query(default=None, max_length=256),
    sessions: SessionMemoryStore = Depends(get_sessions),
) -> dict[str, Any]:
    """Forget a conversation."""
    dropped = await sessions.drop(TenantKey.of(owner_id, scope_id), session_id)
    if not dropped:
        raise HTTPException(status_code=404, detail="Session not found")

    return {"status": "deleted", "session_id": session_id}
