"""FastAPI application entry point for the short-link service.

This module owns the process lifecycle: it builds the ``ServiceManager``
(database engine, Redis fast cache, click tracker, core components), attaches
it to ``app.state`` and tears it down on shutdown.

Application Lifecycle Diagram
=============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌──────────────────┐
    │ lifespan():      │
    │ ServiceManager.  │
    │ from_settings()  │
    │ startup()        │
    └──────┬───────────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌──────────────────┐
    │ lifespan():      │
    │ shutdown()       │
    │ drain clicks,    │
    │ close cache, db  │
    └──────────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn app.main:app --host 0.0.0.0 --port 8000

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8000/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

Key Behaviours
===============
- Tables are created on startup.
- A Redis outage at startup is logged; the service runs without cache.
- /metrics is exposed by prometheus-fastapi-instrumentator.
- create_app() accepts a prebuilt ServiceManager so tests can inject fakes.
"""

__all__ = ["app", "create_app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from app.config import get_settings
from app.dependencies import ServiceManager
from app.routes import router


def create_app(manager: ServiceManager | None = None) -> FastAPI:
    settings = manager.settings if manager is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        services = manager or ServiceManager.from_settings(settings)
        await services.startup()
        app.state.services = services
        yield
        await services.shutdown()

    application = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Short link service with cache-aside resolution and rate limiting",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(application).expose(application)

    application.include_router(router)
    return application


app = create_app()
