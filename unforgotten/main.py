"""Unforgotten sync service: FastAPI application entry point.

Hosts the offline-first sync engine and exposes its status locally.

Run locally:
    uvicorn unforgotten.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from zoneinfo import ZoneInfo

import asyncpg
from fastapi import FastAPI

from unforgotten.config import get_settings
from unforgotten.routers import health, sync
from unforgotten.services.local_store import LocalStore
from unforgotten.services.supabase import close_pool, ensure_pool, init_pool
from unforgotten.sync.config_loader import get_sync_config
from unforgotten.sync.connectivity import ConnectivityMonitor
from unforgotten.sync.gateways import build_postgres_gateways
from unforgotten.sync.orchestrator import SyncOrchestrator

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("unforgotten")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Unforgotten sync v%s [%s]",
        settings.app_version,
        settings.environment,
    )

    if settings.supabase_db_url:
        try:
            await init_pool(settings)
        except (OSError, asyncpg.PostgresError) as exc:
            # Start offline; gateways create the pool on first use.
            logger.warning("Database unreachable at startup: %s", exc)
    else:
        logger.warning("UNFORGOTTEN_SUPABASE_DB_URL not set; remote sync will fail")

    async def pool_provider() -> asyncpg.Pool:
        return await ensure_pool(settings)

    store = LocalStore(settings.local_store_path)
    config = get_sync_config()
    monitor = ConnectivityMonitor(
        settings.supabase_url,
        check_interval=settings.connectivity_check_interval,
        probe_timeout=settings.connectivity_probe_timeout,
    )
    gateways = build_postgres_gateways(
        lambda: settings.session_user_id,
        pool_provider,
        config,
        timeout=settings.gateway_timeout_seconds,
    )
    orchestrator = SyncOrchestrator(
        store, gateways, monitor, config=config, tz=ZoneInfo(settings.timezone)
    )
    app.state.orchestrator = orchestrator
    await monitor.start()

    yield

    await monitor.stop()
    await orchestrator.close()
    await close_pool()
    store.close()
    logger.info("Unforgotten sync shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Unforgotten Sync",
        description=(
            "Offline-first sync engine for the Unforgotten family organizer: "
            "local store, pending change queue and Supabase reconciliation."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)

    return app


app = create_app()
