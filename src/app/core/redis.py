"""Shared async Redis connection pool.

Redis backs the processing queues (Streams) between this service and the
extraction worker. Queue-specific commands live in
src.knowledge.processing.queue; this module only owns the pool lifecycle.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.app.config import get_settings

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None
