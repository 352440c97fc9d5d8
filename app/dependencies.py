"""Dependency wiring for the HTTP layer.

The ``ServiceManager`` owns every shared resource (database engine, fast
cache, click tracker) and the core components built on them. It is constructed
by the application lifespan and attached to ``app.state``; request handlers
reach it through FastAPI ``Depends`` rather than through module globals, so
tests can build their own manager around in-memory collaborators.
"""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.allocator import CodeAllocator
from app.analytics import AnalyticsService
from app.cache import FastCache, RedisFastCache
from app.config import Settings
from app.database import close_db, create_engine, create_session_factory, init_db
from app.enums import HealthStatus, RateLimitOperation
from app.exceptions import CacheError
from app.ratelimit import RateDecision, RateGovernor
from app.resolver import ClickTracker, ResolutionPipeline
from app.service import LinkService
from app.store import LinkStore, VisitMetadata

__all__ = [
    "RequestContext",
    "ServiceManager",
    "get_analytics_service",
    "get_link_service",
    "get_resolution_pipeline",
    "get_request_context",
    "get_service_manager",
    "rate_limited",
]


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Process-wide owner of shared resources and core components.

    ``startup`` connects the cache and creates tables; ``shutdown`` drains the
    click tracker before closing the cache and disposing of the engine, so no
    background click accounting is cut off mid-write.
    """

    def __init__(self, settings: Settings, engine: AsyncEngine, cache: FastCache):
        self.settings = settings
        self.logger = self._setup_logger(settings)
        self.engine = engine
        self.cache = cache
        self.store = LinkStore(create_session_factory(engine), timeout=settings.STORE_TIMEOUT_SECONDS)
        self.tracker = ClickTracker(
            self.store,
            max_concurrency=settings.CLICK_ACCOUNTING_MAX_CONCURRENCY,
            max_pending=settings.CLICK_ACCOUNTING_MAX_PENDING,
        )
        self.allocator = CodeAllocator(self.store, code_length=settings.SHORT_CODE_LENGTH)
        self.pipeline = ResolutionPipeline(self.store, cache, self.tracker, settings)
        self.governor = RateGovernor(cache, settings)
        self.links = LinkService(self.store, self.allocator, self.pipeline, settings)
        self.analytics = AnalyticsService(self.store, settings)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceManager":
        cache = RedisFastCache(settings.REDIS_URL, timeout=settings.CACHE_TIMEOUT_SECONDS)
        return cls(settings, create_engine(settings), cache)

    async def startup(self) -> None:
        await init_db(self.engine)
        connect = getattr(self.cache, "connect", None)
        if connect is not None:
            await connect()
        self.logger.info("Service manager started")

    async def shutdown(self) -> None:
        await self.tracker.drain()
        close = getattr(self.cache, "close", None)
        if close is not None:
            await close()
        await close_db(self.engine)
        self.logger.info("Service manager stopped")

    async def health(self) -> tuple[HealthStatus, HealthStatus]:
        db_status = HealthStatus.HEALTHY
        cache_status = HealthStatus.HEALTHY
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            self.logger.error(f"Database health check failed: {e}")
            db_status = HealthStatus.UNHEALTHY
        try:
            await self.cache.ping()
        except CacheError as e:
            self.logger.error(f"Cache health check failed: {e}")
            cache_status = HealthStatus.UNHEALTHY
        return db_status, cache_status

    @staticmethod
    def _setup_logger(settings: Settings) -> logging.Logger:
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(settings.LOG_LEVEL)
        return logger


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data plus access to the shared service manager.

    Attributes:
        service_manager: Shared resources and core components
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        referrer: Referer header, if any
        client_ip: Client IP address (also the rate limit identity)
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def client_key(self) -> str:
        return self.client_ip or "unknown"

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with request context attached."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def visit(self) -> VisitMetadata:
        return VisitMetadata(client_ip=self.client_ip, user_agent=self.user_agent, referrer=self.referrer)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_service_manager(request: Request) -> ServiceManager:
    return request.app.state.services


def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer") or request.headers.get("referrer"),
        client_ip=request.client.host if request.client else None,
    )


def get_link_service(manager: ServiceManager = Depends(get_service_manager)) -> LinkService:
    return manager.links


def get_resolution_pipeline(manager: ServiceManager = Depends(get_service_manager)) -> ResolutionPipeline:
    return manager.pipeline


def get_analytics_service(manager: ServiceManager = Depends(get_service_manager)) -> AnalyticsService:
    return manager.analytics


def rate_limited(operation: RateLimitOperation) -> Callable[..., Awaitable[RateDecision]]:
    """Build a dependency that admits or rejects the request for ``operation``.

    Denied requests get a 429 with ``Retry-After``; admitted ones carry the
    ``X-RateLimit-*`` headers.
    """

    async def dependency(
        response: Response,
        ctx: RequestContext = Depends(get_request_context),
    ) -> RateDecision:
        decision = await ctx.service_manager.governor.check_rate_limit(ctx.client_key, operation)
        if not decision.allowed:
            ctx.logger.warning(f"Rate limit exceeded: {ctx.client_key} on {operation.value}")
            raise HTTPException(
                status_code=429,
                detail=f"Too many {operation.value} requests. Please try again later.",
                headers={
                    "Retry-After": str(decision.retry_after_seconds),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return decision

    return dependency
