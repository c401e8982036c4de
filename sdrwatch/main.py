"""SDR Watch API: FastAPI application entry point.

Run locally:
    uvicorn sdrwatch.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sdrwatch.config import Settings, get_settings
from sdrwatch.intraday.base import SliceSource
from sdrwatch.intraday.cache import HistoryCache
from sdrwatch.intraday.coordinator import SyncCoordinator
from sdrwatch.intraday.source import DtccSliceSource
from sdrwatch.intraday.store import BatchStore
from sdrwatch.routers import health, intraday

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("sdrwatch")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting SDR Watch API v%s [%s] live_fetch=%s",
        settings.app_version,
        settings.environment,
        settings.live_fetch_enabled,
    )
    yield
    await app.state.coordinator.aclose()
    logger.info("SDR Watch API shut down")


# ---------- App factory ----------

def create_app(
    settings: Settings | None = None,
    source: SliceSource | None = None,
    store: BatchStore | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Overrides ``get_settings()`` for this app and its routes.
        source:   Remote slice feed (defaults to the DTCC feed).
        store:    Accumulation store (a fresh one per app by default).
    """
    explicit_settings = settings is not None
    settings = settings or get_settings()

    app = FastAPI(
        title=f"{settings.app_name} API",
        debug=settings.debug,
        description=(
            "Near-real-time swap data repository feed: intraday slice sync "
            "with idempotent accumulation and delta queries."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    source = source or DtccSliceSource(settings=settings)
    app.state.store = store or BatchStore()
    app.state.coordinator = SyncCoordinator(
        store=app.state.store,
        source=source,
        history_cache=HistoryCache(settings),
    )
    logger.info("Using slice source: %s", source.DISPLAY_NAME)
    if explicit_settings:
        app.dependency_overrides[get_settings] = lambda: settings

    # ---------- Middleware ----------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "DELETE"],
        allow_headers=["*"],
    )

    # ---------- Health check (always at /health) ----------
    app.include_router(health.router)

    # ---------- API routes ----------
    app.include_router(intraday.router, prefix="/api")

    return app


app = create_app()
