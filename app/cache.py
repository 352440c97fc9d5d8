"""Redis backed fast cache for the short-link service.

This module wraps a ``redis.asyncio`` client behind the small capability set
the core needs (get, set with TTL, delete, atomic increment with expiry) and
converts every Redis failure or timeout into ``CacheError``. Callers decide
what a failure means: the resolution pipeline treats it as a miss, the rate
governor fails open.

Flow Diagram — increment_with_expiry()
======================================
::
    ┌─────────────┐
    │  Governor   │
    │  admit()    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ EVAL script │
    │ INCR key    │
    └──────┬──────┘
    COUNT == 1?  │
    ┌─────┴─────┐
    │ YES        │ NO
    ▼            ▼
┌─────────┐  ┌─────────┐
│ EXPIRE  │  │ keep    │
│ window  │  │ expiry  │
└────┬────┘  └────┬────┘
     └─────┬──────┘
           ▼
    ┌─────────────┐
    │ return count│
    └─────────────┘

How to Use
===========
**Step 1 — Connect on startup**::
    cache = RedisFastCache(settings.REDIS_URL, timeout=settings.CACHE_TIMEOUT_SECONDS)
    await cache.connect()

**Step 2 — Inject into components**::
    pipeline = ResolutionPipeline(store, cache, tracker, settings)
    governor = RateGovernor(cache, settings)

**Step 3 — Close on shutdown**::
    await cache.close()

Key Behaviours
===============
- The client is created by connect() and owned by the process entry point.
- Every call is bounded by ``timeout`` seconds (asyncio.wait_for plus socket timeouts).
- The first INCR on a fresh key arms its expiry inside the same Lua script.
- A failed ping at connect() is logged, not raised: Redis is optional.

Classes:
    FastCache:  Protocol describing the capability set.
    RedisFastCache:  redis.asyncio implementation.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Protocol, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.exceptions import CacheError

__all__ = ["FastCache", "RedisFastCache"]

logger = logging.getLogger("urlshortener.cache")

T = TypeVar("T")

INCREMENT_WITH_EXPIRY_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""


class FastCache(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> int: ...

    async def ping(self) -> bool: ...


class RedisFastCache:
    def __init__(self, url: str, timeout: float = 0.25, client: redis.Redis | None = None):
        self._url = url
        self._timeout = timeout
        self._client = client

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self._timeout,
                socket_connect_timeout=self._timeout,
            )
        try:
            await self.ping()
            logger.info("Connected to Redis")
        except CacheError as exc:
            logger.warning(f"Redis unavailable at startup, continuing without cache: {exc}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str) -> str | None:
        return await self._call("GET", self._require_client().get(key))

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._call("SETEX", self._require_client().setex(key, ttl_seconds, value))

    async def delete(self, key: str) -> None:
        await self._call("DEL", self._require_client().delete(key))

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> int:
        count = await self._call(
            "INCR",
            self._require_client().eval(INCREMENT_WITH_EXPIRY_SCRIPT, 1, key, ttl_seconds),
        )
        return int(count)

    async def ping(self) -> bool:
        return bool(await self._call("PING", self._require_client().ping()))

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise CacheError("Redis client is not connected")
        return self._client

    async def _call(self, command: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except TimeoutError as exc:
            raise CacheError(f"Redis {command} timed out after {self._timeout}s") from exc
        except (RedisError, OSError) as exc:
            raise CacheError(f"Redis {command} failed: {exc}") from exc
