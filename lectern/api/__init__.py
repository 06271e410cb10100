"""
Interface & Serving Layer

FastAPI-based API endpoints and streaming.
"""

from lectern.api.app import create_app, get_app
from lectern.api.middleware import ErrorHandlingMiddleware, TracingMiddleware
from lectern.api.streaming import StreamingResponse, format_sse, stream_events

__all__ = [
    # App
    "create_app",
    "get_app",
    # Middleware
    "ErrorHandlingMiddleware",
    "TracingMiddleware",
    # Streaming
    "StreamingResponse",
    "format_sse",
    "stream_events",
]
