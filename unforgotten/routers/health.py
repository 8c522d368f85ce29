"""Health check endpoint. Public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from unforgotten.dependencies import AppSettings, Orchestrator
from unforgotten.services.supabase import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("unforgotten.health")


@router.get("/health")
async def health_check(settings: AppSettings, orchestrator: Orchestrator) -> dict:
    """Liveness probe. Returns 200 if the process is up.

    Also performs a lightweight DB connectivity check and reports the
    sync engine's reachability and queue depth.
    """
    db_ok = False
    try:
        pool = get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        db_ok = True
    except Exception as exc:
        logger.warning("Health check DB probe failed: %s", exc)

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "online": orchestrator.connectivity.is_connected,
        "pending_changes": orchestrator.pending_changes_count,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
