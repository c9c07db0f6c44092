"""
Fixed-window rate limiting backed by Redis counters.
"""

from __future__ import annotations

import time

import structlog
from fastapi import Request
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.errors import RateLimited
from app.core.redis import get_redis

log = structlog.get_logger()
settings = get_settings()

WINDOW_SECONDS = 60


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def hit(key: str, limit: int, window: int = WINDOW_SECONDS) -> bool:
    """Count one request against ``key``. Returns False once the limit is exceeded."""
    bucket = int(time.time()) // window
    redis_key = f"ratelimit:{key}:{bucket}"
    redis = await get_redis()
    count = await redis.incr(redis_key)
    if count == 1:
        await redis.expire(redis_key, window)
    return count <= limit


async def auth_rate_limit(request: Request) -> None:
    """Dependency guarding the credential endpoints (login, register, forgot-password)."""
    if not settings.rate_limit_enabled:
        return
    ip = client_ip(request)
    try:
        allowed = await hit(f"auth:{ip}", settings.auth_rate_limit_per_minute)
    except RedisError as exc:
        # Counters unavailable: let the request through rather than lock everyone out.
        log.warning("rate_limit.unavailable", error=str(exc))
        return
    if not allowed:
        log.warning("rate_limit.exceeded", ip=ip, path=request.url.path)
        raise RateLimited("Too many requests, please try again later")
