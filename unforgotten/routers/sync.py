"""Sync status and control endpoints, the data source for the status indicator."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter

from unforgotten.dependencies import Orchestrator
from unforgotten.models.base import ErrorDetail, UnforgottenBase
from unforgotten.models.sync import ChangeType, EntityType, SyncStatusKind
from unforgotten.sync.orchestrator import SyncOrchestrator

router = APIRouter(prefix="/sync", tags=["sync"], responses={503: {"model": ErrorDetail}})


class SyncStatusRead(UnforgottenBase):
    kind: SyncStatusKind
    entity: str | None = None
    progress: float = 0.0
    change_count: int = 0
    message: str | None = None
    display_text: str
    is_active: bool
    is_offline: bool
    is_connected: bool
    pending_changes_count: int
    last_sync_date: datetime | None = None


class FlushReportRead(UnforgottenBase):
    pushed: int
    failed: int
    discarded: int
    remaining: int


class PendingChangeRead(UnforgottenBase):
    id: uuid.UUID
    entity_type: EntityType
    entity_id: uuid.UUID
    account_id: uuid.UUID
    change_type: ChangeType
    created_at: datetime
    retry_count: int
    last_error: str | None = None


def _status_payload(orchestrator: SyncOrchestrator) -> dict[str, Any]:
    status = orchestrator.status
    return {
        **status.model_dump(),
        "display_text": status.display_text,
        "is_active": status.is_active,
        "is_offline": status.is_offline,
        "is_connected": orchestrator.connectivity.is_connected,
        "pending_changes_count": orchestrator.pending_changes_count,
        "last_sync_date": orchestrator.last_sync_date,
    }


@router.get("/status", response_model=SyncStatusRead)
async def get_status(orchestrator: Orchestrator) -> Any:
    return _status_payload(orchestrator)


@router.post("/pending", response_model=FlushReportRead)
async def flush_pending(orchestrator: Orchestrator) -> Any:
    """Push queued changes now. Returns zero counts while offline."""
    report = await orchestrator.process_pending_changes()
    return vars(report)


@router.get("/pending", response_model=list[PendingChangeRead])
async def list_pending(orchestrator: Orchestrator) -> Any:
    return [c.model_dump() for c in orchestrator.store.pending_changes()]


@router.post("/{account_id}", response_model=SyncStatusRead)
async def run_full_sync(account_id: uuid.UUID, orchestrator: Orchestrator) -> Any:
    """Run a full sync for the account and return the resulting status.

    Sync failures are reported in the status (``kind == "failed"``), not as
    HTTP errors.
    """
    await orchestrator.perform_full_sync(account_id)
    return _status_payload(orchestrator)
