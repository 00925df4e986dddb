"""
FastAPI application factory for the Tiered RAG API.

This module creates the application, wires logging, request ids and error
handlers, and owns the lifecycle of the knowledge service.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request

from tiered_rag import __version__
from tiered_rag.config import Settings, load_settings
from tiered_rag.log_config import configure_logging
from tiered_rag.services.knowledge_service import KnowledgeService

from .exceptions import setup_exception_handlers
from .routes import health, knowledge

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None, service: Optional[KnowledgeService] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings; loaded from the environment when omitted
        service: Pre-built knowledge service; built from settings at startup
            when omitted and closed at shutdown
    """
    settings = settings or load_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting Tiered RAG API", version=app.version, environment=settings.environment.value)

        owns_service = app.state.knowledge_service is None
        if owns_service:
            app.state.knowledge_service = KnowledgeService.from_settings(settings)

        yield

        logger.info("Shutting down Tiered RAG API")
        if owns_service:
            await app.state.knowledge_service.close()
            app.state.knowledge_service = None

    app = FastAPI(
        title="Tiered RAG API",
        description="Multi-tenant hybrid retrieval over tiered company knowledge.",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.knowledge_service = service

    @app.middleware("http")
    async def add_request_id_and_logging(request: Request, call_next):
        """Add request ID and structured logging."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        logger_ctx = logger.bind(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        logger_ctx.info("Request started")

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger_ctx.info(
            "Request completed",
            status_code=response.status_code,
            process_time=round(time.time() - start_time, 4),
        )
        return response

    setup_exception_handlers(app)

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(knowledge.router, prefix="/api/v1", tags=["Knowledge"])

    return app
