"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from unforgotten.config import Settings, get_settings
from unforgotten.sync.orchestrator import SyncOrchestrator


async def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Return the app's sync orchestrator.

    The lifespan hook sets ``app.state.orchestrator`` before routes run.
    """
    orchestrator: SyncOrchestrator | None = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sync engine not started")
    return orchestrator


# Annotated shortcuts for route signatures
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
AppSettings = Annotated[Settings, Depends(get_settings)]
