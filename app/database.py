"""Database configuration and session management for the short-link service.

This module provides SQLAlchemy async engine setup, session factories,
and database lifecycle operations using PostgreSQL as the backend.

Flow Diagram — Database Lifecycle
=================================
::
    ┌─────────────┐
    │  lifespan   │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ create_     │
    │ engine()    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init_db()   │
    │ (tables)    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ LinkStore   │
    │ opens one   │
    │ session per │
    │ operation   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ close_db()  │
    │ (dispose)   │
    └─────────────┘

How to Use
===========
**Step 1 — Build the engine on startup**::
    engine = create_engine(settings)
    sessions = create_session_factory(engine)
    await init_db(engine)

**Step 2 — Hand the factory to the store**::
    store = LinkStore(sessions, timeout=settings.STORE_TIMEOUT_SECONDS)

**Step 3 — Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- No module level engine: the process entry point owns the lifecycle.
- Connection pooling is configured for production workloads.
- SQLite URLs (tests, local runs) skip the pool sizing arguments.
- Tables are created automatically on application startup.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine():  Build the async engine from settings.
    create_session_factory():  Build the session factory for an engine.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import Settings

__all__ = ["Base", "create_engine", "create_session_factory", "init_db", "close_db"]


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    if settings.DATABASE_URL.startswith("sqlite"):
        return create_async_engine(settings.DATABASE_URL, echo=False)
    return create_async_engine(
        settings.DATABASE_URL,
        echo=(settings.APP_ENV == "development"),
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Models must be registered on Base.metadata before create_all.
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
