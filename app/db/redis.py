"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured we create a real
connection pool; when it is None (local dev, tests) every Redis-backed
service falls back to an in-process implementation.

The engine uses Redis for three things, none of them durable state:
  - the leaderboard standings cache (short TTL, eventual consistency is fine)
  - per-user locks that serialize streak updates across worker processes
  - the progress_events task queue feeding the worker
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # str instead of bytes
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis() -> AsyncIterator[None]:
    """Startup/shutdown hook for Redis, mirroring lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, using in-process fallbacks")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        # Not fatal at startup; later Redis calls fail per operation.
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
