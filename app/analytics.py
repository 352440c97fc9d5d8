"""Reporting over the durable store.

These reports read straight from the store; they never touch the fast cache
and are not on the redirect path. Aggregation is done in Python over small,
bounded result sets.

Functions of note:
    link_analytics():  Totals and derived rates for one link.
    detailed_analytics():  Click history grouped by day and referrer.
    top_links():  Live links ordered by clicks.
    system_stats():  System wide totals.
"""

import datetime
import logging
import math
from collections import Counter

from app.config import Settings
from app.exceptions import LinkNotFoundError
from app.models import as_utc, utcnow
from app.schemas import (
    DetailedAnalytics,
    LinkAnalytics,
    LinkDates,
    LinkStatistics,
    LinkStatus,
    RecentClick,
    SystemStats,
    TopLink,
)
from app.store import LinkStore

__all__ = ["AnalyticsService"]

logger = logging.getLogger("urlshortener.analytics")

SECONDS_PER_DAY = 86400
RECENT_CLICKS_SHOWN = 20


class AnalyticsService:
    def __init__(self, store: LinkStore, settings: Settings):
        self._store = store
        self._base_url = settings.BASE_URL

    async def link_analytics(self, code: str, now: datetime.datetime | None = None) -> LinkAnalytics:
        now = now or utcnow()
        link = await self._store.get(code)
        if link is None:
            raise LinkNotFoundError(code)

        created_at = as_utc(link.created_at)
        days_since_creation = max(0, int((now - created_at).total_seconds() // SECONDS_PER_DAY))
        if days_since_creation > 0:
            avg_clicks_per_day = round(link.click_count / days_since_creation, 2)
        else:
            avg_clicks_per_day = float(link.click_count)

        is_expired = link.is_expired(now)
        days_until_expiration = None
        if link.expires_at is not None and not is_expired:
            remaining = (as_utc(link.expires_at) - now).total_seconds()
            days_until_expiration = math.ceil(remaining / SECONDS_PER_DAY)

        return LinkAnalytics(
            short_code=link.code,
            original_url=link.target_url,
            statistics=LinkStatistics(
                total_clicks=link.click_count,
                avg_clicks_per_day=avg_clicks_per_day,
                days_since_creation=days_since_creation,
                days_until_expiration=days_until_expiration,
            ),
            dates=LinkDates(
                created_at=created_at,
                last_accessed_at=link.last_accessed_at,
                expires_at=link.expires_at,
            ),
            status=LinkStatus(is_expired=is_expired, is_custom=link.is_custom),
        )

    async def detailed_analytics(self, code: str, limit: int = 100) -> DetailedAnalytics:
        if not await self._store.exists(code):
            raise LinkNotFoundError(code)

        events = await self._store.recent_click_events(code, limit)
        by_date = Counter(as_utc(event.accessed_at).date().isoformat() for event in events)
        by_referrer = Counter(event.referrer or "Direct" for event in events)

        return DetailedAnalytics(
            short_code=code,
            total_records=len(events),
            clicks_by_date=dict(by_date),
            clicks_by_referrer=dict(by_referrer),
            recent_clicks=[
                RecentClick(
                    accessed_at=as_utc(event.accessed_at),
                    client_ip=event.client_ip,
                    referrer=event.referrer or "Direct",
                )
                for event in events[:RECENT_CLICKS_SHOWN]
            ],
        )

    async def top_links(self, limit: int = 10) -> list[TopLink]:
        links = await self._store.top_links(limit)
        return [
            TopLink(
                rank=rank,
                short_url=f"{self._base_url}/{link.code}",
                short_code=link.code,
                original_url=link.target_url,
                clicks=link.click_count,
                created_at=as_utc(link.created_at),
                is_custom=link.is_custom,
            )
            for rank, link in enumerate(links, start=1)
        ]

    async def system_stats(self) -> SystemStats:
        totals = await self._store.system_stats()
        avg = round(totals.total_clicks / totals.total_links, 2) if totals.total_links else 0.0
        return SystemStats(
            total_urls=totals.total_links,
            active_urls=totals.active_links,
            expired_urls=totals.total_links - totals.active_links,
            total_clicks=totals.total_clicks,
            avg_clicks_per_url=avg,
            custom_urls=totals.custom_links,
            urls_created_today=totals.links_created_today,
        )
