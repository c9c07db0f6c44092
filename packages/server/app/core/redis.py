"""
Shared Redis client for rate-limit counters and the Redis exchange-code store.

The client is created lazily so the service starts (and the in-memory code
store keeps working) while Redis is unreachable; callers handle RedisError.
"""

from __future__ import annotations

import redis.asyncio as redis
import structlog

from app.core.config import get_settings

log = structlog.get_logger()
settings = get_settings()

_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout_seconds,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
        )
        log.info("redis.client_created")
    return _client


async def close_redis() -> None:
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
    log.info("redis.client_closed")
