"""Pydantic schemas for request/response validation in the short-link service.

This module defines Pydantic models for API input validation and output serialization,
plus the JSON payload stored in the fast cache.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str (http/https, ≤ 2048, no private hosts)
    ├─ custom_code: str | None (sanitized, 4-10 alphanumerics)
    └─ expiration_days: int | None (0-3650)

    LinkResponse (Output)
    ├─ short_url / short_code / original_url
    ├─ created_at
    └─ expires_at

    LinkDetails (Output)
    └─ LinkResponse + click_count, last_accessed_at, is_custom

    LinkAnalytics / DetailedAnalytics / TopLink / SystemStats (Output)

    CachedLinkPayload (Redis value)
    ├─ target_url: str
    └─ expires_at: datetime | None

    HealthResponse (Output)
    ├─ status / database / cache

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/shorten")
    async def shorten_url(payload: LinkCreate): ...

**Step 2 — Cache payload round trip**::
    raw = CachedLinkPayload(target_url=url, expires_at=None).model_dump_json()
    payload = CachedLinkPayload.model_validate_json(raw)

Key Behaviours
===============
- URL validation uses the validators library for RFC compliance.
- Localhost and private network hosts are rejected.
- An empty custom code means none was requested.
- Custom codes are sanitized before the length/charset check.
- All datetime fields are timezone-aware.

Classes:
    LinkCreate:  Input schema for shortening requests.
    LinkResponse:  Output schema for created links.
    LinkDetails:  Output schema for the details endpoint.
    LinkAnalytics:  Per-link statistics.
    DetailedAnalytics:  Click history aggregates.
    TopLink:  Row of the top links report.
    SystemStats:  System wide totals.
    CachedLinkPayload:  Fast cache value.
    HealthResponse:  Output schema for health checks.
"""

import datetime
from urllib.parse import urlsplit

import validators
from pydantic import BaseModel, Field, field_validator

from app.codes import sanitize_custom_code
from app.config import get_settings
from app.enums import HealthStatus

__all__ = [
    "LinkCreate",
    "LinkResponse",
    "LinkDetails",
    "LinkAnalytics",
    "LinkStatistics",
    "LinkDates",
    "LinkStatus",
    "DetailedAnalytics",
    "RecentClick",
    "TopLink",
    "SystemStats",
    "CachedLinkPayload",
    "HealthResponse",
    "ErrorResponse",
]

BLOCKED_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0"}
BLOCKED_HOST_PREFIXES = ("192.168.", "10.")


class LinkCreate(BaseModel):
    url: str
    custom_code: str | None = None
    expiration_days: int | None = Field(None, ge=0, le=get_settings().MAX_EXPIRATION_DAYS)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("URL cannot be empty")
        if len(v) > get_settings().MAX_URL_LENGTH:
            raise ValueError(f"URL is too long (max {get_settings().MAX_URL_LENGTH} characters)")
        if not v.lower().startswith(("http://", "https://")) or not validators.url(v):
            raise ValueError("Invalid URL format. URL must start with http:// or https://")
        hostname = (urlsplit(v).hostname or "").lower()
        if hostname in BLOCKED_HOSTS or hostname.startswith(BLOCKED_HOST_PREFIXES):
            raise ValueError("Cannot shorten localhost or private IP addresses")
        return v

    @field_validator("custom_code")
    @classmethod
    def validate_custom_code(cls, v: str | None) -> str | None:
        if not v:
            return None
        settings = get_settings()
        sanitized = sanitize_custom_code(v, settings.CUSTOM_CODE_MIN_LENGTH, settings.CUSTOM_CODE_MAX_LENGTH)
        if sanitized is None:
            raise ValueError(
                f"Custom code must be {settings.CUSTOM_CODE_MIN_LENGTH}-{settings.CUSTOM_CODE_MAX_LENGTH} "
                "letters and numbers"
            )
        return sanitized


class LinkResponse(BaseModel):
    short_url: str
    short_code: str
    original_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None


class LinkDetails(LinkResponse):
    click_count: int
    last_accessed_at: datetime.datetime | None = None
    is_custom: bool


class LinkStatistics(BaseModel):
    total_clicks: int
    avg_clicks_per_day: float
    days_since_creation: int
    days_until_expiration: int | None = None


class LinkDates(BaseModel):
    created_at: datetime.datetime
    last_accessed_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None


class LinkStatus(BaseModel):
    is_expired: bool
    is_custom: bool


class LinkAnalytics(BaseModel):
    short_code: str
    original_url: str
    statistics: LinkStatistics
    dates: LinkDates
    status: LinkStatus


class RecentClick(BaseModel):
    accessed_at: datetime.datetime
    client_ip: str | None = None
    referrer: str


class DetailedAnalytics(BaseModel):
    short_code: str
    total_records: int
    clicks_by_date: dict[str, int]
    clicks_by_referrer: dict[str, int]
    recent_clicks: list[RecentClick]


class TopLink(BaseModel):
    rank: int
    short_url: str
    short_code: str
    original_url: str
    clicks: int
    created_at: datetime.datetime
    is_custom: bool


class SystemStats(BaseModel):
    total_urls: int
    active_urls: int
    expired_urls: int
    total_clicks: int
    avg_clicks_per_url: float
    custom_urls: int
    urls_created_today: int


class CachedLinkPayload(BaseModel):
    """Redis cache payload for a short link. Carries expiry so stale hits are detectable."""

    target_url: str
    expires_at: datetime.datetime | None = None


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ErrorResponse(BaseModel):
    detail: str
    retry_after: int | None = None
