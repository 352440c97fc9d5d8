"""Configuration management for the short-link service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from app.config import get_settings

**Step 2 — Read a value**::
    settings = get_settings()
    ttl = settings.CACHE_TTL_SECONDS

**Step 3 — Resolve a rate limit policy**::
    policy = settings.rate_limit_policy(RateLimitOperation.CREATE)
    print(policy.limit, policy.window_seconds)

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Each rate limited operation has an independent (limit, window) pair.
- Timeouts are expressed in seconds and apply per cache / store call.

Classes:
    Settings:  Pydantic model for all configuration values.
    RateLimitPolicy:  Immutable (limit, window_seconds) pair.
"""

__all__ = ["RateLimitPolicy", "Settings", "get_settings"]

from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.enums import RateLimitOperation


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: int


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    STORE_TIMEOUT_SECONDS: float = 2.0

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_TIMEOUT_SECONDS: float = 0.25
    CACHE_KEY_PREFIX: str = "url"
    CACHE_TTL_SECONDS: int = 86400  # 24 hours, independent of link expiry

    # Click accounting (detached writes after each redirect)
    CLICK_ACCOUNTING_MAX_CONCURRENCY: int = 10
    CLICK_ACCOUNTING_MAX_PENDING: int = 1000

    # Short code config
    SHORT_CODE_LENGTH: int = 7
    CODE_ALLOCATION_MAX_ATTEMPTS: int = 5
    CUSTOM_CODE_MIN_LENGTH: int = 4
    CUSTOM_CODE_MAX_LENGTH: int = 10
    MAX_URL_LENGTH: int = 2048
    MAX_EXPIRATION_DAYS: int = 3650

    # Rate limiting (fixed window, per client per operation)
    RATE_LIMIT_KEY_PREFIX: str = "ratelimit"
    RATE_LIMIT_CREATE_MAX: int = 10
    RATE_LIMIT_CREATE_WINDOW_SECONDS: int = 60
    RATE_LIMIT_RESOLVE_MAX: int = 100
    RATE_LIMIT_RESOLVE_WINDOW_SECONDS: int = 60
    RATE_LIMIT_ANALYTICS_MAX: int = 30
    RATE_LIMIT_ANALYTICS_WINDOW_SECONDS: int = 60

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    def rate_limit_policy(self, operation: RateLimitOperation) -> RateLimitPolicy:
        if operation is RateLimitOperation.CREATE:
            return RateLimitPolicy(self.RATE_LIMIT_CREATE_MAX, self.RATE_LIMIT_CREATE_WINDOW_SECONDS)
        if operation is RateLimitOperation.RESOLVE:
            return RateLimitPolicy(self.RATE_LIMIT_RESOLVE_MAX, self.RATE_LIMIT_RESOLVE_WINDOW_SECONDS)
        return RateLimitPolicy(self.RATE_LIMIT_ANALYTICS_MAX, self.RATE_LIMIT_ANALYTICS_WINDOW_SECONDS)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
