"""FastAPI route definitions for the short-link REST API.

This module translates core outcomes into HTTP responses. It holds no
business logic: every decision (allocation, resolution, admission) is made by
the core components reached through dependencies.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /api/shorten                      [rate: create]
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 409 / 422 / 429 / 503

    GET  /api/url/:code
        └─ LinkDetails (200) or 404

    GET  /api/my-urls
        └─ list[LinkDetails] created by the caller's IP

    GET  /api/analytics/:code              [rate: analytics]
    GET  /api/analytics/:code/detailed     [rate: analytics]
    GET  /api/analytics/top/urls           [rate: analytics]
    GET  /api/analytics/system/stats       [rate: analytics]

    GET  /:code                            [rate: resolve]
        └─ 301 Redirect, 404 not found, 410 expired

Key Behaviours
===============
- NotFound and Expired map to different status codes (404 vs 410).
- Allocation exhaustion is a 503: the request may succeed if retried later.
- 429 responses carry Retry-After equal to the limiter window.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from app.analytics import AnalyticsService
from app.dependencies import (
    RequestContext,
    ServiceManager,
    get_analytics_service,
    get_link_service,
    get_request_context,
    get_resolution_pipeline,
    get_service_manager,
    rate_limited,
)
from app.enums import HealthStatus, RateLimitOperation
from app.exceptions import AllocationExhaustedError, CodeAlreadyTakenError, LinkExpiredError, LinkNotFoundError
from app.models import ShortLink
from app.ratelimit import RateDecision
from app.resolver import ResolutionPipeline
from app.schemas import (
    DetailedAnalytics,
    ErrorResponse,
    HealthResponse,
    LinkAnalytics,
    LinkCreate,
    LinkDetails,
    LinkResponse,
    SystemStats,
    TopLink,
)
from app.service import LinkService

__all__ = ["router"]

router = APIRouter()


def _details(link: ShortLink, base_url: str) -> LinkDetails:
    return LinkDetails(
        short_url=f"{base_url}/{link.code}",
        short_code=link.code,
        original_url=link.target_url,
        created_at=link.created_at,
        expires_at=link.expires_at,
        click_count=link.click_count,
        last_accessed_at=link.last_accessed_at,
        is_custom=link.is_custom,
    )


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(manager: ServiceManager = Depends(get_service_manager)) -> HealthResponse:
    db_status, cache_status = await manager.health()
    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post(
    "/api/shorten",
    response_model=LinkResponse,
    status_code=201,
    tags=["links"],
    responses={409: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def shorten_url(
    payload: LinkCreate,
    _: RateDecision = Depends(rate_limited(RateLimitOperation.CREATE)),
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    ctx.logger.info(f"URL shortening requested: {payload.url}")
    try:
        link = await service.create_short_link(
            payload.url,
            custom_code=payload.custom_code,
            ttl_days=payload.expiration_days,
            creator_key=ctx.client_key,
        )
    except CodeAlreadyTakenError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except AllocationExhaustedError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    ctx.logger.info(f"URL shortened successfully: {link.code} in {ctx.get_duration():.1f}ms")
    return LinkResponse(
        short_url=f"{ctx.settings.BASE_URL}/{link.code}",
        short_code=link.code,
        original_url=link.target_url,
        created_at=link.created_at,
        expires_at=link.expires_at,
    )


@router.get("/api/url/{short_code}", response_model=LinkDetails, tags=["links"])
async def get_url_details(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkDetails:
    link = await service.get_link(short_code)
    if link is None:
        raise HTTPException(status_code=404, detail="Short URL not found")
    return _details(link, ctx.settings.BASE_URL)


@router.get("/api/my-urls", response_model=list[LinkDetails], tags=["links"])
async def get_my_urls(
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> list[LinkDetails]:
    links = await service.links_for_client(ctx.client_key)
    return [_details(link, ctx.settings.BASE_URL) for link in links]


@router.get("/api/analytics/top/urls", response_model=list[TopLink], tags=["analytics"])
async def get_top_urls(
    limit: int = Query(10, ge=1, le=100),
    _: RateDecision = Depends(rate_limited(RateLimitOperation.ANALYTICS)),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> list[TopLink]:
    return await analytics.top_links(limit)


@router.get("/api/analytics/system/stats", response_model=SystemStats, tags=["analytics"])
async def get_system_stats(
    _: RateDecision = Depends(rate_limited(RateLimitOperation.ANALYTICS)),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> SystemStats:
    return await analytics.system_stats()


@router.get("/api/analytics/{short_code}", response_model=LinkAnalytics, tags=["analytics"])
async def get_link_analytics(
    short_code: str,
    _: RateDecision = Depends(rate_limited(RateLimitOperation.ANALYTICS)),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> LinkAnalytics:
    try:
        return await analytics.link_analytics(short_code)
    except LinkNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Short URL not found") from exc


@router.get("/api/analytics/{short_code}/detailed", response_model=DetailedAnalytics, tags=["analytics"])
async def get_detailed_analytics(
    short_code: str,
    limit: int = Query(100, ge=1, le=1000),
    _: RateDecision = Depends(rate_limited(RateLimitOperation.ANALYTICS)),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> DetailedAnalytics:
    try:
        return await analytics.detailed_analytics(short_code, limit)
    except LinkNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Short URL not found") from exc


@router.get(
    "/{short_code}",
    status_code=301,
    tags=["redirect"],
    responses={404: {"model": ErrorResponse}, 410: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def redirect_to_url(
    short_code: str,
    decision: RateDecision = Depends(rate_limited(RateLimitOperation.RESOLVE)),
    ctx: RequestContext = Depends(get_request_context),
    pipeline: ResolutionPipeline = Depends(get_resolution_pipeline),
) -> RedirectResponse:
    try:
        resolution = await pipeline.resolve(short_code, visit=ctx.visit())
    except LinkNotFoundError as exc:
        ctx.logger.warning(f"Redirect failed - short code not found: {short_code}")
        raise HTTPException(status_code=404, detail="Short URL not found") from exc
    except LinkExpiredError as exc:
        ctx.logger.info(f"Redirect failed - short code expired: {short_code}")
        raise HTTPException(status_code=410, detail="This short URL has expired") from exc

    ctx.logger.info(f"Redirect: {short_code} -> {resolution.target_url} (cache_hit={resolution.cache_status})")
    return RedirectResponse(
        url=resolution.target_url,
        status_code=301,
        headers={
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
        },
    )
