"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database initialization and the knowledge pipeline,
and the v1 API router.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.app.config import get_settings
from src.app.core.database import close_db, init_db
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.app.core.redis import close_redis, get_redis_pool
from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.router import router as v1_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and the pipeline on startup, close on shutdown."""
    import structlog

    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Knowledge Pipeline ───────────────────────────────────────────────
    # A failure here leaves the API up; knowledge endpoints answer 503.

    app.state.status_consumer_task = None
    try:
        from src.app.core.pipeline import build_pipeline
        from src.knowledge.config import get_processing_config

        components = build_pipeline(get_redis_pool(), get_processing_config())
        app.state.knowledge_service = components.service
        app.state.long_poll = components.long_poll
        app.state.index_writer = components.index_writer
        app.state.status_consumer = components.consumer
        app.state.dead_letter_queue = components.dlq
        log.info("knowledge.pipeline_initialized")
    except Exception:
        log.warning("knowledge.pipeline_init_failed", exc_info=True)
        app.state.knowledge_service = None
        app.state.long_poll = None
        app.state.index_writer = None
        app.state.status_consumer = None
        app.state.dead_letter_queue = None

    # Start the status consumer background task
    consumer = app.state.status_consumer
    if consumer is not None and settings.CONSUMER_ENABLED:
        app.state.status_consumer_task = asyncio.create_task(
            consumer.run(),
            name="knowledge_status_consumer",
        )
        log.info("knowledge.status_consumer_started")

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    consumer_task = app.state.status_consumer_task
    if consumer_task and not consumer_task.done():
        consumer.stop()
        consumer_task.cancel()
        try:
            await consumer_task
        except asyncio.CancelledError:
            pass
        log.info("knowledge.status_consumer_stopped")

    index_writer = app.state.index_writer
    if index_writer is not None:
        try:
            index_writer.close()
        except Exception:
            log.warning("knowledge.index_writer_close_failed", exc_info=True)

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Kontext Knowledge API",
        version="0.1.0",
        description="Knowledge ingestion with asynchronous extraction and status long-polling",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    # Include v1 API router (health, knowledge)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
