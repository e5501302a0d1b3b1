"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Readiness
verifies the record store, the queue transport and the vector index.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.app.config import get_settings
from src.app.core.database import ping_db
from src.app.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database, Redis, and Qdrant connectivity. Returns check results dict."""
    checks: dict = {"database": "ok", "redis": "ok", "qdrant": "ok"}

    # Check database
    try:
        await ping_db()
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    # Check Redis
    try:
        redis = get_redis_pool()
        pong = await redis.ping()
        if not pong:
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except Exception as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    # Check Qdrant through the running index writer
    index_writer = getattr(request.app.state, "index_writer", None)
    if index_writer is None:
        checks["qdrant"] = "not_initialized"
    else:
        try:
            await index_writer.ping()
        except Exception as e:
            checks["qdrant"] = "error"
            checks["qdrant_error"] = str(e)

    consumer = getattr(request.app.state, "status_consumer", None)
    checks["consumer"] = "running" if consumer is not None and consumer.running else "stopped"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies DB, Redis, and Qdrant connectivity.

    Returns 200 if all pass, 503 if any critical dependency fails.
    """
    checks = await _check_dependencies(request)
    all_healthy = (
        checks.get("database") == "ok"
        and checks.get("redis") == "ok"
        and checks.get("qdrant") == "ok"
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
