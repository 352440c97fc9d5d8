"""Short link creation service.

Flow Diagram — create_short_link()
==================================
::
    ┌─────────────┐
    │ POST /api/  │
    │ shorten     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ custom code?│
    └──────┬──────┘
    ┌──────┴──────────────┐
    │ YES                  │ NO
    ▼                      ▼
┌───────────────┐   ┌──────────────────┐
│ reserve_custom│   │ allocate_unique  │◄─┐
│ (exists check)│   └────────┬─────────┘  │
└───────┬───────┘            │            │ conflict on insert
        ▼                    ▼            │ (bounded)
┌───────────────┐   ┌──────────────────┐  │
│ insert_unique │   │ insert_unique    ├──┘
│ conflict ─►   │   └────────┬─────────┘
│ AlreadyTaken  │            │
└───────┬───────┘            │
        └─────────┬──────────┘
                  ▼
    ┌─────────────────────┐
    │ populate fast cache │ (best effort)
    └──────────┬──────────┘
               ▼
    ┌─────────────┐
    │ ShortLink   │
    └─────────────┘

Key Behaviours
===============
- The store's atomic unique insert is the final word on code ownership.
- A concurrent insert of the same custom code surfaces as CodeAlreadyTakenError.
- A concurrent insert of the same generated code triggers a fresh allocation
  with a shrinking attempt budget, so a creation request always terminates.
- ``expiration_days`` of 0 or None means the link never expires.
- Store errors propagate; cache errors never do.
"""

import datetime
import logging
import time

from prometheus_client import Counter, Histogram

from app.allocator import CodeAllocator
from app.config import Settings
from app.enums import RequestStatus
from app.exceptions import AllocationExhaustedError, CodeAlreadyTakenError, CodeConflictError
from app.models import ShortLink, utcnow
from app.resolver import ResolutionPipeline
from app.store import LinkStore

__all__ = ["LinkService"]

logger = logging.getLogger("urlshortener.service")

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "url_shortener_creation_requests_total",
    "Total short link creation requests",
    ["status"],
)
LINK_CREATION_DURATION = Histogram(
    "url_shortener_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


class LinkService:
    def __init__(
        self,
        store: LinkStore,
        allocator: CodeAllocator,
        pipeline: ResolutionPipeline,
        settings: Settings,
    ):
        self._store = store
        self._allocator = allocator
        self._pipeline = pipeline
        self._max_attempts = settings.CODE_ALLOCATION_MAX_ATTEMPTS

    async def create_short_link(
        self,
        target_url: str,
        custom_code: str | None = None,
        ttl_days: int | None = None,
        creator_key: str | None = None,
    ) -> ShortLink:
        start_time = time.perf_counter()
        expires_at = utcnow() + datetime.timedelta(days=ttl_days) if ttl_days else None

        try:
            if custom_code:
                link = await self._create_custom(target_url, custom_code, expires_at, creator_key)
            else:
                link = await self._create_generated(target_url, expires_at, creator_key)
        except CodeAlreadyTakenError:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            logger.warning(f"Custom code already taken: {custom_code}")
            raise
        except AllocationExhaustedError as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.EXHAUSTED).inc()
            logger.error(f"Short code allocation exhausted: {exc}")
            raise
        except Exception as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            logger.error(f"Short link creation error: {exc!r}")
            raise
        finally:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)

        await self._pipeline.populate(link)
        LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        logger.info(f"Short link created: {link.code} -> {link.target_url}")
        return link

    async def get_link(self, code: str) -> ShortLink | None:
        return await self._store.get(code)

    async def links_for_client(self, creator_key: str, limit: int = 20) -> list[ShortLink]:
        return await self._store.find_by_client(creator_key, limit)

    async def _create_custom(
        self,
        target_url: str,
        code: str,
        expires_at: datetime.datetime | None,
        creator_key: str | None,
    ) -> ShortLink:
        await self._allocator.reserve_custom(code)
        try:
            return await self._store.insert_unique(
                ShortLink(
                    code=code,
                    target_url=target_url,
                    expires_at=expires_at,
                    is_custom=True,
                    creator_key=creator_key,
                )
            )
        except CodeConflictError as exc:
            raise CodeAlreadyTakenError(code) from exc

    async def _create_generated(
        self,
        target_url: str,
        expires_at: datetime.datetime | None,
        creator_key: str | None,
    ) -> ShortLink:
        attempts_left = self._max_attempts
        while attempts_left > 0:
            code = await self._allocator.allocate_unique(max_attempts=attempts_left)
            try:
                return await self._store.insert_unique(
                    ShortLink(
                        code=code,
                        target_url=target_url,
                        expires_at=expires_at,
                        is_custom=False,
                        creator_key=creator_key,
                    )
                )
            except CodeConflictError:
                logger.warning(f"Insert conflict for generated code {code}, reallocating")
                attempts_left -= 1
        raise AllocationExhaustedError(self._max_attempts)
