"""Shared pytest fixtures: SQLite-backed store, in-memory fast cache, API client."""

import datetime
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import Settings
from app.database import create_engine, create_session_factory, init_db
from app.dependencies import ServiceManager
from app.exceptions import CacheError
from app.main import app
from app.models import ShortLink, utcnow
from app.resolver import ClickTracker, ResolutionPipeline
from app.store import LinkStore


class InMemoryFastCache:
    """Fast cache double with a manual clock, honouring TTLs like Redis would."""

    def __init__(self) -> None:
        self.now = 0.0
        self.data: dict[str, tuple[str, float | None]] = {}

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self.data.get(key)
        if entry is None:
            return None
        _, expires = entry
        if expires is not None and expires <= self.now:
            del self.data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self.data[key] = (value, self.now + ttl_seconds)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> int:
        entry = self._live(key)
        if entry is None:
            self.data[key] = ("1", self.now + ttl_seconds)
            return 1
        value, expires = entry
        count = int(value) + 1
        self.data[key] = (str(count), expires)
        return count

    async def ping(self) -> bool:
        return True


class FailingFastCache:
    """Fast cache double where every operation fails."""

    def __init__(self) -> None:
        self.calls = 0

    async def _fail(self, *args, **kwargs):
        self.calls += 1
        raise CacheError("cache unavailable")

    get = _fail
    set_with_ttl = _fail
    delete = _fail
    increment_with_expiry = _fail
    ping = _fail


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'links.db'}",
        REDIS_URL="redis://localhost:6379/15",
        BASE_URL="http://sho.rt",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def cache() -> InMemoryFastCache:
    return InMemoryFastCache()


@pytest.fixture
def failing_cache() -> FailingFastCache:
    return FailingFastCache()


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine: AsyncEngine, settings: Settings) -> LinkStore:
    return LinkStore(create_session_factory(engine), timeout=settings.STORE_TIMEOUT_SECONDS)


@pytest_asyncio.fixture
async def tracker(store: LinkStore) -> AsyncGenerator[ClickTracker, None]:
    tracker = ClickTracker(store)
    yield tracker
    await tracker.drain()


@pytest.fixture
def pipeline(store: LinkStore, cache: InMemoryFastCache, tracker: ClickTracker, settings: Settings) -> ResolutionPipeline:
    return ResolutionPipeline(store, cache, tracker, settings)


@pytest.fixture
def make_link(store: LinkStore):
    async def _make(
        code: str = "abc1234",
        target_url: str = "https://example.com/page",
        expires_in: datetime.timedelta | None = None,
        **kwargs,
    ) -> ShortLink:
        expires_at = utcnow() + expires_in if expires_in is not None else None
        return await store.insert_unique(
            ShortLink(code=code, target_url=target_url, expires_at=expires_at, **kwargs)
        )

    return _make


@pytest_asyncio.fixture
async def manager(settings: Settings, engine: AsyncEngine, cache: InMemoryFastCache) -> AsyncGenerator[ServiceManager, None]:
    manager = ServiceManager(settings, engine, cache)
    yield manager
    await manager.tracker.drain()


@pytest_asyncio.fixture
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    app.state.services = manager
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    del app.state.services
