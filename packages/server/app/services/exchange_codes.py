"""
One-time SSO exchange codes.

After a platform login the issued token pair is parked under a random code;
the browser is redirected with only the code and trades it for the tokens
once. Entries are removed *before* their expiry is checked, so a code can be
redeemed at most once even under concurrent attempts.

InMemoryExchangeCodeStore is per-process: the redemption must reach the
instance that issued the code. Run RedisExchangeCodeStore
(KS_EXCHANGE_CODE_BACKEND=redis) when more than one instance serves traffic.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import secrets
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import redis.asyncio as redis
import structlog

from app.core.redis import get_redis

log = structlog.get_logger()


def new_code() -> str:
    return secrets.token_hex(32)


class ExchangeCodeStore(Protocol):
    async def issue(self, payload: dict[str, Any]) -> str: ...

    async def redeem(self, code: str) -> Optional[dict[str, Any]]: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


@dataclass
class _Entry:
    payload: dict[str, Any]
    expires_at: float


class InMemoryExchangeCodeStore:
    def __init__(
        self,
        ttl_seconds: int = 60,
        sweep_interval_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    async def issue(self, payload: dict[str, Any]) -> str:
        code = new_code()
        async with self._lock:
            self._entries[code] = _Entry(payload=payload, expires_at=self._clock() + self.ttl_seconds)
        return code

    async def redeem(self, code: str) -> Optional[dict[str, Any]]:
        async with self._lock:
            entry = self._entries.pop(code, None)
        if entry is None or entry.expires_at < self._clock():
            return None
        return entry.payload

    async def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        async with self._lock:
            expired = [code for code, entry in self._entries.items() if entry.expires_at < now]
            for code in expired:
                del self._entries[code]
        if expired:
            log.debug("sso.exchange_codes_swept", removed=len(expired))
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            await self.sweep()

    async def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None


class RedisExchangeCodeStore:
    """Shared store for multi-instance deployments. Redis handles expiry; GETDEL gives single use."""

    KEY_PREFIX = "sso:code:"

    def __init__(
        self,
        ttl_seconds: int = 60,
        redis_factory: Callable[[], Awaitable[redis.Redis]] = get_redis,
    ):
        self.ttl_seconds = ttl_seconds
        self._redis_factory = redis_factory

    async def issue(self, payload: dict[str, Any]) -> str:
        code = new_code()
        client = await self._redis_factory()
        await client.set(f"{self.KEY_PREFIX}{code}", json.dumps(payload), ex=self.ttl_seconds)
        return code

    async def redeem(self, code: str) -> Optional[dict[str, Any]]:
        client = await self._redis_factory()
        raw = await client.getdel(f"{self.KEY_PREFIX}{code}")
        if raw is None:
            return None
        return json.loads(raw)

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None
