"""
FastAPI Application Factory

Creates and configures the main application.

Design decisions:
- Factory pattern for testability
- Middleware composition
- Lifespan management for component lifecycle
- RAGPipeline as the single query orchestration point
- CORS configuration
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lectern.api.middleware import ErrorHandlingMiddleware, TracingMiddleware
from lectern.api.routes import health, knowledge, query, sessions
from lectern.config import Settings, get_settings
from lectern.observability.logging import configure_logging, get_logger
from lectern.runtime.factory import RAGComponents, create_components

logger = get_logger(__name__)


def _lifespan(
    settings: Settings,
    components: RAGComponents | None,
    setup_logging: bool,
):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        Application lifespan manager.

        Builds every component on startup (unless some were injected) and
        stores them in app.state.components for DI; closes provider
        clients on shutdown.
        """
        if setup_logging:
            obs = settings.observability
            configure_logging(
                level=obs.log_level,
                json_output=obs.log_format == "json",
                log_file=obs.log_file,
            )

        state = components or create_components(settings)
        app.state.components = state
        logger.info(
            "Application started",
            app=settings.app_name,
            version=settings.app_version,
            environment=settings.environment,
        )

        yield

        await state.close()
        logger.info("Application stopped")

    return lifespan


def create_app(
    settings: Settings | None = None,
    components: RAGComponents | None = None,
    setup_logging: bool = True,
    **kwargs: Any,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to get_settings())
        components: Prebuilt components; built from settings when omitted
        setup_logging: Install log handlers from settings on startup
        **kwargs: Additional FastAPI arguments
    """
    settings = settings or (components.settings if components else get_settings())

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Retrieval-augmented question answering over personal knowledge",
        debug=settings.debug,
        lifespan=_lifespan(settings, components, setup_logging),
        **kwargs,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(TracingMiddleware)

    app.include_router(health.router, tags=["health"])
    app.include_router(query.router, prefix=settings.api_prefix, tags=["query"])
    app.include_router(knowledge.router, prefix=settings.api_prefix, tags=["knowledge"])
    app.include_router(sessions.router, prefix=settings.api_prefix, tags=["sessions"])

    return app


_app: FastAPI | None = None


def get_app() -> FastAPI:
    """Get or create the application instance (``uvicorn lectern.api.app:get_app --factory``)."""
    global _app
    if _app is None:
        _app = create_app()
    return _app
