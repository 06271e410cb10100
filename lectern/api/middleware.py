"""
API Middleware

Custom middleware for cross-cutting concerns.
"""

import time
from collections.abc import Callable
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from lectern.core.exceptions import (
    CollectionNotFoundError,
    KnowledgeError,
    LecternError,
    LLMError,
    SourceScopeConflictError,
    ValidationError,
)
from lectern.observability.logging import get_logger

logger = get_logger(__name__)


def status_for(error: LecternError) -> int:
    """HTTP status for a Lectern error."""
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, SourceScopeConflictError):
        return 409
    if isinstance(error, CollectionNotFoundError):
        return 404
    if isinstance(error, (KnowledgeError, LLMError)):
        return 502
    return 500


class TracingMiddleware(BaseHTTPMiddleware):
    """
    Adds request ids and timing to requests and binds the request id to
    the log context.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        request_id = request.headers.get("X-Request-Id", str(uuid4()))
        request.state.request_id = request_id

        start_time = time.perf_counter()

        with logger.context(request_id=request_id):
            response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    Lectern errors become structured JSON bodies; anything else is a 500
    without internal details.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        try:
            return await call_next(request)
        except LecternError as e:
            status = status_for(e)
            if status >= 500:
                logger.error("Request failed", error=e, path=request.url.path)
            else:
                logger.warning("Request rejected", error=e, path=request.url.path)
            return JSONResponse(e.to_dict(), status_code=status)
        except Exception as e:
            logger.exception("Unhandled error", error=e, path=request.url.path)
            return JSONResponse(
                {"error": "INTERNAL_ERROR", "message": "Internal server error"},
                status_code=500,
            )
