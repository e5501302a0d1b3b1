"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Pipeline counters for processing events, publishes, dead-letters and long-polls
- track_stage(): Context manager timing a consumer pipeline stage
- init_sentry(): Initialize Sentry for the API and consumer
- get_metrics_response(): FastAPI route handler for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# ── Pipeline Metrics ─────────────────────────────────────────────────────────

knowledge_events_total = Counter(
    "knowledge_events_total",
    "Inbound processing events by type and handling outcome",
    ["event_type", "outcome"],
)

knowledge_publish_attempts_total = Counter(
    "knowledge_publish_attempts_total",
    "Outbound processing request publish attempts",
    ["outcome"],
)

knowledge_dead_lettered_total = Counter(
    "knowledge_dead_lettered_total",
    "Messages moved to a dead-letter stream",
    ["stream"],
)

knowledge_stage_duration_seconds = Histogram(
    "knowledge_stage_duration_seconds",
    "Duration of status consumer pipeline stages",
    ["stage", "status"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

knowledge_long_poll_duration_seconds = Histogram(
    "knowledge_long_poll_duration_seconds",
    "Time spent waiting in status long-polls",
    ["outcome"],
    buckets=(0.05, 0.5, 1.0, 5.0, 10.0, 20.0, 30.0, 60.0),
)

knowledge_messages_in_flight = Gauge(
    "knowledge_messages_in_flight",
    "Status messages currently being handled",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Records request count and duration per method/endpoint. Skips the
    /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        # Route pattern keeps cardinality bounded; raw path as fallback
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Stage Timing Helper ─────────────────────────────────────────────────────


@asynccontextmanager
async def track_stage(stage: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that times one consumer pipeline stage.

    Usage:
        async with track_stage("index_write") as tracker:
            await writer.write(record, chunks)
            tracker["chunks"] = len(chunks)

    Records duration under status "success" or "error" depending on whether
    the block raised.
    """
    tracker: dict[str, Any] = {}
    start_time = time.perf_counter()
    status = "success"

    try:
        yield tracker
    except Exception:
        status = "error"
        raise
    finally:
        knowledge_stage_duration_seconds.labels(
            stage=stage,
            status=status,
        ).observe(time.perf_counter() - start_time)


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
