"""SQLAlchemy ORM models for the short-link service.

This module defines the durable schema: one row per short link plus an
append-only table of click events used by the detailed analytics report.

Data Model Layout
=================
::
    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ target_url (VARCHAR(2048) NOT NULL)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW(), INDEXED)
    ├─ expires_at (TIMESTAMPTZ NULL, INDEXED)
    ├─ click_count (INTEGER DEFAULT 0)
    ├─ last_accessed_at (TIMESTAMPTZ NULL)
    ├─ is_custom (BOOLEAN DEFAULT FALSE)
    └─ creator_key (VARCHAR(64) NULL, INDEXED)

    click_events table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (FK short_links.code ON DELETE CASCADE, INDEXED)
    ├─ accessed_at (TIMESTAMPTZ, DEFAULT NOW(), INDEXED)
    ├─ client_ip (VARCHAR(45) NULL)
    ├─ user_agent (TEXT NULL)
    └─ referrer (TEXT NULL)

How to Use
===========
**Step 1 — Build a record**::
    link = ShortLink(code="abc1234", target_url="https://example.com")

**Step 2 — Check expiry at read time**::
    if link.is_expired():
        raise LinkExpiredError(link.code)

Key Behaviours
===============
- code uniqueness is enforced by the database, not by application checks.
- Expiry is advisory: rows are never deleted on the read path.
- click_count only ever grows while the row exists.
- Timestamps read back from SQLite are naive; they are treated as UTC.

Classes:
    ShortLink:  A short code mapped to its target URL with click accounting.
    ClickEvent:  One recorded visit of a short link.
"""

import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

__all__ = ["ShortLink", "ClickEvent", "as_utc", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    target_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True, nullable=False
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_accessed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    creator_key: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) <= (now or utcnow())

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, code='{self.code}', click_count={self.click_count})>"


class ClickEvent(Base):
    __tablename__ = "click_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(
        String(20), ForeignKey("short_links.code", ondelete="CASCADE"), index=True, nullable=False
    )
    accessed_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True, nullable=False
    )
    client_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<ClickEvent(id={self.id}, code='{self.code}')>"
