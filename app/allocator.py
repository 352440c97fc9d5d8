"""Short code allocation against the durable store.

Flow Diagram — allocate_unique()
================================
::
    ┌─────────────┐
    │ attempt < N │◄──────────┐
    └──────┬──────┘           │
           ▼                  │
    ┌─────────────┐           │
    │ generate    │           │
    │ candidate   │           │
    └──────┬──────┘           │
           ▼                  │
    ┌─────────────┐  EXISTS   │
    │ store.      ├───────────┘
    │ exists()?   │
    └──────┬──────┘
      FREE │
           ▼
    ┌─────────────┐
    │ return code │
    └─────────────┘

Key Behaviours
===============
- Each attempt is independent and stateless; nothing is reserved.
- After ``max_attempts`` collisions AllocationExhaustedError is raised.
- The existence check is advisory. The store's unique insert is the real
  guard, and LinkService handles a conflict on insert.
- Store errors propagate unchanged.
"""

import logging
from collections.abc import Callable

from prometheus_client import Counter

from app.codes import DEFAULT_CODE_LENGTH, generate_short_code
from app.exceptions import AllocationExhaustedError, CodeAlreadyTakenError
from app.store import LinkStore

__all__ = ["CodeAllocator"]

logger = logging.getLogger("urlshortener.allocator")

CODE_COLLISIONS_TOTAL = Counter(
    "url_shortener_code_collisions_total",
    "Generated short codes rejected because they already exist",
)


class CodeAllocator:
    def __init__(
        self,
        store: LinkStore,
        code_length: int = DEFAULT_CODE_LENGTH,
        generator: Callable[[int], str] = generate_short_code,
    ):
        self._store = store
        self._code_length = code_length
        self._generator = generator

    async def allocate_unique(self, max_attempts: int = 5) -> str:
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts!r}")
        for attempt in range(1, max_attempts + 1):
            code = self._generator(self._code_length)
            if not await self._store.exists(code):
                return code
            CODE_COLLISIONS_TOTAL.inc()
            logger.warning(f"Collision detected for {code} (attempt {attempt}/{max_attempts}), retrying")
        raise AllocationExhaustedError(max_attempts)

    async def reserve_custom(self, code: str) -> str:
        if await self._store.exists(code):
            raise CodeAlreadyTakenError(code)
        return code
