"""Exception hierarchy for the short-link core.

Resolution and allocation outcomes that the HTTP layer maps to distinct status
codes are raised as dedicated exceptions. Cache failures are wrapped in
``CacheError`` so callers can apply their degrade policy without knowing about
Redis. Store failures are deliberately *not* wrapped: SQLAlchemy errors and
timeouts propagate to the boundary unchanged.
"""

__all__ = [
    "ShortenerError",
    "AllocationExhaustedError",
    "CodeAlreadyTakenError",
    "CodeConflictError",
    "LinkNotFoundError",
    "LinkExpiredError",
    "CacheError",
]


class ShortenerError(Exception):
    """Base class for all short-link errors."""


class AllocationExhaustedError(ShortenerError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Failed to allocate a unique short code after {attempts} attempts")


class CodeAlreadyTakenError(ShortenerError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Custom short code '{code}' is already taken")


class CodeConflictError(ShortenerError):
    """Raised by the store when an insert violates the unique code constraint."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Short code '{code}' already exists")


class LinkNotFoundError(ShortenerError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Short URL '{code}' not found")


class LinkExpiredError(ShortenerError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Short URL '{code}' has expired")


class CacheError(ShortenerError):
    """Fast cache call failed or timed out."""
