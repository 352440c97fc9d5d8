"""Fixed-window request rate governor backed by the fast cache.

Flow Diagram — admit()
======================
::
    ┌──────────────────────┐
    │ admit(client, op,    │
    │       limit, window) │
    └──────────┬───────────┘
               ▼
    ┌──────────────────────┐   CacheError
    │ increment_with_expiry├──────────────► ALLOW (fail open, logged)
    │ ratelimit:op:client  │
    └──────────┬───────────┘
               ▼
        count > limit?
        ┌──────┴──────┐
        │ NO           │ YES
        ▼              ▼
    ┌────────┐   ┌──────────────────────┐
    │ ALLOW  │   │ DENY                 │
    └────────┘   │ retry_after = window │
                 └──────────────────────┘

Key Behaviours
===============
- Counting is atomic in Redis (INCR and first-hit EXPIRE in one script), so
  the limit holds across process instances without in-process locks.
- Fixed window, not sliding: up to ``2 * limit`` requests can pass across a
  window boundary. This imprecision is accepted.
- Fail open: when the cache is unavailable requests are admitted. Redirect
  availability outranks strict abuse prevention; the resolution pipeline's
  store path, in contrast, fails closed.
- Each named operation (create, resolve, analytics) has its own policy and
  its own counter per client.

Classes:
    RateDecision:  Outcome of one admission check.
    RateGovernor:  The fixed-window limiter.
"""

import logging
from dataclasses import dataclass

from prometheus_client import Counter

from app.cache import FastCache
from app.config import Settings
from app.enums import RateLimitOperation
from app.exceptions import CacheError

__all__ = ["RateDecision", "RateGovernor"]

logger = logging.getLogger("urlshortener.ratelimit")

RATE_LIMIT_HITS_TOTAL = Counter(
    "url_shortener_rate_limit_hits_total",
    "Requests denied by the rate governor",
    ["operation"],
)
RATE_LIMIT_FAIL_OPEN_TOTAL = Counter(
    "url_shortener_rate_limit_fail_open_total",
    "Requests admitted because the rate counter store was unavailable",
    ["operation"],
)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int | None = None
    count: int | None = None
    degraded: bool = False


class RateGovernor:
    def __init__(self, cache: FastCache, settings: Settings):
        self._cache = cache
        self._settings = settings
        self._prefix = settings.RATE_LIMIT_KEY_PREFIX

    async def admit(self, client_key: str, operation_key: str, limit: int, window_seconds: int) -> RateDecision:
        if limit < 0 or window_seconds <= 0:
            raise ValueError(f"invalid rate limit policy: limit={limit!r} window_seconds={window_seconds!r}")

        key = f"{self._prefix}:{operation_key}:{client_key}"
        try:
            count = await self._cache.increment_with_expiry(key, window_seconds)
        except CacheError as exc:
            RATE_LIMIT_FAIL_OPEN_TOTAL.labels(operation=operation_key).inc()
            logger.warning(f"Rate limiter unavailable for {operation_key}, admitting {client_key}: {exc}")
            return RateDecision(allowed=True, limit=limit, remaining=limit, degraded=True)

        if count > limit:
            RATE_LIMIT_HITS_TOTAL.labels(operation=operation_key).inc()
            logger.info(f"Rate limit exceeded for {client_key} on {operation_key} ({count}/{limit})")
            return RateDecision(
                allowed=False,
                limit=limit,
                remaining=0,
                retry_after_seconds=window_seconds,
                count=count,
            )
        return RateDecision(allowed=True, limit=limit, remaining=limit - count, count=count)

    async def check_rate_limit(self, client_key: str, operation: RateLimitOperation) -> RateDecision:
        policy = self._settings.rate_limit_policy(operation)
        return await self.admit(client_key, operation.value, policy.limit, policy.window_seconds)
