"""Durable record store for short links.

``LinkStore`` is the authoritative source of truth. It opens one session per
operation from an injected session factory, so detached background work (click
accounting) never shares a session with the request that scheduled it. Every
operation is bounded by ``timeout`` seconds.

Failure policy: nothing here is swallowed. SQLAlchemy errors and timeouts
propagate; the only translated error is the unique constraint violation on
insert, which surfaces as ``CodeConflictError``.

Functions of note:
    get():  Fetch a record by code (None when absent).
    exists():  Cheap existence probe used by the allocator.
    insert_unique():  Atomic insert, CodeConflictError on duplicate code.
    increment_clicks():  Single UPDATE, click_count + 1 and last_accessed_at.
    record_click_event():  Append one ClickEvent row.
"""

import asyncio
import datetime
import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.exceptions import CodeConflictError
from app.models import ClickEvent, ShortLink, utcnow

__all__ = ["LinkStore", "SystemTotals", "VisitMetadata"]

logger = logging.getLogger("urlshortener.store")


@dataclass(frozen=True)
class VisitMetadata:
    client_ip: str | None = None
    user_agent: str | None = None
    referrer: str | None = None


@dataclass(frozen=True)
class SystemTotals:
    total_links: int
    active_links: int
    total_clicks: int
    custom_links: int
    links_created_today: int


class LinkStore:
    def __init__(self, sessions: async_sessionmaker[AsyncSession], timeout: float = 2.0):
        self._sessions = sessions
        self._timeout = timeout

    async def get(self, code: str) -> ShortLink | None:
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            result = await session.execute(select(ShortLink).where(ShortLink.code == code))
            return result.scalar_one_or_none()

    async def exists(self, code: str) -> bool:
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            result = await session.execute(select(ShortLink.id).where(ShortLink.code == code).limit(1))
            return result.scalar_one_or_none() is not None

    async def insert_unique(self, link: ShortLink) -> ShortLink:
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            session.add(link)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise CodeConflictError(link.code) from exc
            await session.refresh(link)
            return link

    async def increment_clicks(self, code: str, accessed_at: datetime.datetime | None = None) -> None:
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            await session.execute(
                update(ShortLink)
                .where(ShortLink.code == code)
                .values(click_count=ShortLink.click_count + 1, last_accessed_at=accessed_at or utcnow())
            )
            await session.commit()

    async def record_click_event(self, code: str, visit: VisitMetadata) -> None:
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            session.add(
                ClickEvent(
                    code=code,
                    client_ip=visit.client_ip,
                    user_agent=visit.user_agent,
                    referrer=visit.referrer,
                )
            )
            await session.commit()

    # Reporting queries, used outside the redirect hot path.

    async def find_by_target(self, target_url: str, now: datetime.datetime | None = None) -> ShortLink | None:
        now = now or utcnow()
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            result = await session.execute(
                select(ShortLink)
                .where(ShortLink.target_url == target_url, _is_live(now))
                .order_by(ShortLink.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_by_client(self, creator_key: str, limit: int = 20) -> list[ShortLink]:
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            result = await session.execute(
                select(ShortLink)
                .where(ShortLink.creator_key == creator_key)
                .order_by(ShortLink.created_at.desc(), ShortLink.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def recent_click_events(self, code: str, limit: int = 100) -> list[ClickEvent]:
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            result = await session.execute(
                select(ClickEvent)
                .where(ClickEvent.code == code)
                .order_by(ClickEvent.accessed_at.desc(), ClickEvent.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def top_links(self, limit: int = 10, now: datetime.datetime | None = None) -> list[ShortLink]:
        now = now or utcnow()
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            result = await session.execute(
                select(ShortLink)
                .where(_is_live(now))
                .order_by(ShortLink.click_count.desc(), ShortLink.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def system_stats(self, now: datetime.datetime | None = None) -> SystemTotals:
        now = now or utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            total = await session.scalar(select(func.count(ShortLink.id)))
            active = await session.scalar(select(func.count(ShortLink.id)).where(_is_live(now)))
            clicks = await session.scalar(select(func.coalesce(func.sum(ShortLink.click_count), 0)))
            custom = await session.scalar(select(func.count(ShortLink.id)).where(ShortLink.is_custom.is_(True)))
            today = await session.scalar(select(func.count(ShortLink.id)).where(ShortLink.created_at >= start_of_day))
        return SystemTotals(
            total_links=int(total or 0),
            active_links=int(active or 0),
            total_clicks=int(clicks or 0),
            custom_links=int(custom or 0),
            links_created_today=int(today or 0),
        )

    async def delete_expired(self, now: datetime.datetime | None = None) -> int:
        now = now or utcnow()
        async with asyncio.timeout(self._timeout), self._sessions() as session:
            result = await session.execute(
                delete(ShortLink).where(ShortLink.expires_at.is_not(None), ShortLink.expires_at < now)
            )
            await session.commit()
        logger.info(f"Purged {result.rowcount} expired short links")
        return int(result.rowcount or 0)


def _is_live(now: datetime.datetime):
    return or_(ShortLink.expires_at.is_(None), ShortLink.expires_at > now)
