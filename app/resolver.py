"""Cache-aside resolution of short codes with detached click accounting.

Flow Diagram — resolve()
========================
::
    ┌─────────────┐
    │  GET /:code │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Fast cache  │
    │ GET url:code│
    └──────┬──────┘
    HIT?  │   (cache error == miss)
    ┌─────┴──────────────┐
    │ NO                  │ YES
    ▼                     ▼
┌──────────┐        ┌───────────┐
│ Store    │        │ expired?  ├─YES─► DEL url:code, LinkExpiredError
│ get(code)│        └─────┬─────┘
└────┬─────┘              │ NO
     │ absent ─► LinkNotFoundError
     │ expired ─► DEL url:code, LinkExpiredError
     ▼                    │
┌──────────┐              │
│ SETEX    │              │
│ url:code │              │
│ 24h TTL  │              │
└────┬─────┘              │
     └─────────┬──────────┘
               ▼
    ┌─────────────────────┐
    │ ClickTracker.track()│  (detached task, not awaited)
    └──────────┬──────────┘
               ▼
    ┌─────────────┐
    │ return      │
    │ Resolution  │
    └─────────────┘

Key Behaviours
===============
- The fast cache is best-effort: every cache failure is logged and treated
  as a miss (reads) or a no-op (writes, deletes).
- Store errors are never swallowed; they propagate to the caller.
- The cache TTL is fixed and independent of the link's own expiry. The cached
  payload carries ``expires_at`` so an expired link is caught on a hit too.
- Click accounting runs in background tasks with their own store sessions. Its
  failures are logged and counted, never surfaced to the redirect.
- Concurrent accounting writes are capped so they cannot starve the store's
  connection pool; past the backlog limit clicks are dropped, not queued.

Classes:
    Resolution:  Successful outcome of resolve().
    ClickTracker:  Owner of the detached click-accounting tasks.
    ResolutionPipeline:  The cache-aside resolver.
"""

import asyncio
import logging
from dataclasses import dataclass

from prometheus_client import Counter
from pydantic import ValidationError

from app.cache import FastCache
from app.config import Settings
from app.enums import CacheStatus, RequestStatus
from app.exceptions import CacheError, LinkExpiredError, LinkNotFoundError
from app.models import ShortLink, as_utc, utcnow
from app.schemas import CachedLinkPayload
from app.store import LinkStore, VisitMetadata

__all__ = ["ClickTracker", "Resolution", "ResolutionPipeline", "cache_key"]

logger = logging.getLogger("urlshortener.resolver")

RESOLVE_REQUESTS_TOTAL = Counter(
    "url_shortener_resolve_requests_total",
    "Short code resolutions by outcome",
    ["status", "cache_hit"],
)
CACHE_ERRORS_TOTAL = Counter(
    "url_shortener_cache_errors_total",
    "Fast cache operations that failed and were degraded",
    ["operation"],
)
CLICK_ACCOUNTING_FAILURES_TOTAL = Counter(
    "url_shortener_click_accounting_failures_total",
    "Background click accounting tasks that failed",
)
CLICKS_DROPPED_TOTAL = Counter(
    "url_shortener_clicks_dropped_total",
    "Clicks not accounted because the accounting backlog was full",
)


def cache_key(code: str, prefix: str = "url") -> str:
    return f"{prefix}:{code}"


@dataclass(frozen=True)
class Resolution:
    code: str
    target_url: str
    cache_status: CacheStatus


class ClickTracker:
    """Fire-and-forget click accounting.

    Each call to ``track`` spawns a task that increments the link's counter and,
    when visit metadata is given, appends a click event. Tasks are kept in a
    set until they finish so they are not garbage collected mid-flight;
    ``drain`` waits for the in-flight ones (used on shutdown and in tests).

    At most ``max_concurrency`` tasks hold a store session at once, leaving
    the rest of the connection pool to redirects. Once ``max_pending`` tasks
    are queued, further clicks are dropped and counted.
    """

    def __init__(self, store: LinkStore, max_concurrency: int = 10, max_pending: int = 1000):
        if max_concurrency <= 0 or max_pending <= 0:
            raise ValueError(
                f"click accounting limits must be positive: "
                f"max_concurrency={max_concurrency!r} max_pending={max_pending!r}"
            )
        self._store = store
        self._max_pending = max_pending
        self._slots = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def track(self, code: str, visit: VisitMetadata | None = None) -> asyncio.Task | None:
        if len(self._tasks) >= self._max_pending:
            CLICKS_DROPPED_TOTAL.inc()
            logger.warning(f"Click accounting backlog full ({self._max_pending}), dropping click for {code}")
            return None
        task = asyncio.create_task(self._account(code, visit), name=f"click-accounting:{code}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _account(self, code: str, visit: VisitMetadata | None) -> None:
        async with self._slots:
            try:
                await self._store.increment_clicks(code)
                if visit is not None:
                    await self._store.record_click_event(code, visit)
            except Exception as exc:
                CLICK_ACCOUNTING_FAILURES_TOTAL.inc()
                logger.error(f"Click accounting failed for {code}: {exc!r}")


class ResolutionPipeline:
    def __init__(self, store: LinkStore, cache: FastCache, tracker: ClickTracker, settings: Settings):
        self._store = store
        self._cache = cache
        self._tracker = tracker
        self._ttl = settings.CACHE_TTL_SECONDS
        self._prefix = settings.CACHE_KEY_PREFIX

    async def resolve(self, code: str, visit: VisitMetadata | None = None) -> Resolution:
        key = cache_key(code, self._prefix)

        cached = await self._read_cache(key)
        if cached is not None:
            if cached.expires_at is not None and as_utc(cached.expires_at) <= utcnow():
                await self._invalidate(key)
                RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.EXPIRED, cache_hit=CacheStatus.HIT).inc()
                raise LinkExpiredError(code)
            self._tracker.track(code, visit)
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.HIT).inc()
            logger.debug(f"Cache HIT for {code}")
            return Resolution(code=code, target_url=cached.target_url, cache_status=CacheStatus.HIT)

        logger.debug(f"Cache MISS for {code}")
        link = await self._store.get(code)
        if link is None:
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=CacheStatus.MISS).inc()
            raise LinkNotFoundError(code)
        if link.is_expired():
            await self._invalidate(key)
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.EXPIRED, cache_hit=CacheStatus.MISS).inc()
            raise LinkExpiredError(code)

        await self.populate(link)
        self._tracker.track(code, visit)
        RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.MISS).inc()
        return Resolution(code=code, target_url=link.target_url, cache_status=CacheStatus.MISS)

    async def populate(self, link: ShortLink) -> None:
        payload = CachedLinkPayload(target_url=link.target_url, expires_at=link.expires_at)
        try:
            await self._cache.set_with_ttl(cache_key(link.code, self._prefix), payload.model_dump_json(), self._ttl)
        except CacheError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            logger.warning(f"Cache populate failed for {link.code}: {exc}")

    async def _read_cache(self, key: str) -> CachedLinkPayload | None:
        try:
            raw = await self._cache.get(key)
        except CacheError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            logger.warning(f"Cache read failed for {key}, falling back to store: {exc}")
            return None
        if raw is None:
            return None
        try:
            return CachedLinkPayload.model_validate_json(raw)
        except ValidationError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="decode").inc()
            logger.error(f"Cache deserialization error for {key}: {exc}")
            return None

    async def _invalidate(self, key: str) -> None:
        try:
            await self._cache.delete(key)
        except CacheError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="delete").inc()
            logger.warning(f"Cache invalidation failed for {key}: {exc}")
