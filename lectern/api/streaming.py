"""
Streaming Response Utilities

Server-Sent Events support for streamed answers.
"""

import json
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from starlette.responses import StreamingResponse as StarletteStreamingResponse

from lectern.core.types import StreamEvent


def format_sse(data: Any, event: str | None = None, id: str | None = None) -> str:
    """Format one event according to the SSE wire format."""
    lines = []

    if event:
        lines.append(f"event: {event}")
    if id:
        lines.append(f"id: {id}")

    if isinstance(data, (dict, list)):
        data = json.dumps(data)

    for line in str(data).split("\n"):
        lines.append(f"data: {line}")

    lines.append("")  # Empty line to end event
    return "\n".join(lines) + "\n"


async def stream_events(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """
    Serialize pipeline events as SSE.

    The event name is the event type; the payload is the event without
    its empty fields. The upstream iterator is closed when the client
    goes away.
    """
    event_id = 0

    async with aclosing(events):
        async for event in events:
            event_id += 1
            payload = event.model_dump(mode="json", exclude_none=True, exclude={"type"})
            yield format_sse(payload, event=event.type.value, id=str(event_id))


def StreamingResponse(
    content: AsyncIterator[str],
    media_type: str = "text/event-stream",
    **kwargs: Any,
) -> StarletteStreamingResponse:
    """
    Create a streaming response for SSE.
    """
    return StarletteStreamingResponse(
        content,
        media_type=media_type,
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
        **kwargs,
    )
