"""Pydantic models for sync bookkeeping: local records, pending changes,
sync metadata and the observable global sync status."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field

from unforgotten.models.base import UnforgottenBase, utc_now


# ---------- Enums ----------

class EntityType(str, Enum):
    profile = "profile"
    profile_detail = "profile_detail"
    medication = "medication"
    medication_schedule = "medication_schedule"
    medication_log = "medication_log"
    appointment = "appointment"
    useful_contact = "useful_contact"
    todo_list = "todo_list"
    todo_item = "todo_item"
    countdown = "countdown"
    sticky_reminder = "sticky_reminder"
    mood_entry = "mood_entry"


class ChangeType(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class MergePolicy(str, Enum):
    last_write_wins = "last_write_wins"
    server_wins = "server_wins"


class SyncStatusKind(str, Enum):
    idle = "idle"
    syncing = "syncing"
    completed = "completed"
    offline = "offline"
    failed = "failed"


# ---------- Local store rows ----------

class LocalRecord(UnforgottenBase):
    """A locally cached entity plus its sync flags.

    ``data`` is the JSON-safe entity payload; ``id``, ``account_id`` and
    ``updated_at`` are lifted out of it so the store can index and compare them.
    """

    entity_type: EntityType
    id: uuid.UUID
    account_id: uuid.UUID
    updated_at: datetime
    is_synced: bool = False
    locally_deleted: bool = False
    data: dict[str, Any] = Field(default_factory=dict)

    def mark_modified(self, now: datetime | None = None) -> None:
        self.updated_at = now or utc_now()
        self.is_synced = False

    def mark_synced(self) -> None:
        self.is_synced = True


class PendingChange(UnforgottenBase):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    entity_type: EntityType
    entity_id: uuid.UUID
    account_id: uuid.UUID
    change_type: ChangeType
    created_at: datetime = Field(default_factory=utc_now)
    retry_count: int = 0
    last_error: str | None = None
    last_attempt_at: datetime | None = None

    def should_retry(self, max_retries: int) -> bool:
        return self.retry_count < max_retries

    def record_failure(self, error: str, now: datetime | None = None) -> None:
        self.retry_count += 1
        self.last_error = error
        self.last_attempt_at = now or utc_now()


class SyncMetadata(UnforgottenBase):
    """Last successful sync per account. ``entity_type`` None is the account row."""

    account_id: uuid.UUID
    entity_type: EntityType | None = None
    last_synced_at: datetime | None = None


# ---------- Global status ----------

class GlobalSyncStatus(UnforgottenBase):
    """Immutable snapshot of what the sync engine is doing.

    Build instances with the classmethods rather than directly::

        GlobalSyncStatus.syncing("profiles", 0.15)
        GlobalSyncStatus.completed(3)
    """

    model_config = ConfigDict(frozen=True)

    kind: SyncStatusKind = SyncStatusKind.idle
    entity: str | None = None
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    change_count: int = 0
    message: str | None = None

    @classmethod
    def idle(cls) -> GlobalSyncStatus:
        return cls(kind=SyncStatusKind.idle)

    @classmethod
    def syncing(cls, entity: str, progress: float) -> GlobalSyncStatus:
        return cls(kind=SyncStatusKind.syncing, entity=entity, progress=progress)

    @classmethod
    def completed(cls, change_count: int) -> GlobalSyncStatus:
        return cls(kind=SyncStatusKind.completed, change_count=change_count)

    @classmethod
    def offline(cls) -> GlobalSyncStatus:
        return cls(kind=SyncStatusKind.offline)

    @classmethod
    def failed(cls, message: str) -> GlobalSyncStatus:
        return cls(kind=SyncStatusKind.failed, message=message)

    @property
    def is_active(self) -> bool:
        return self.kind == SyncStatusKind.syncing

    @property
    def is_offline(self) -> bool:
        return self.kind == SyncStatusKind.offline

    @property
    def display_text(self) -> str:
        if self.kind == SyncStatusKind.syncing:
            if self.progress > 0:
                return f"Syncing {self.entity}... {round(self.progress * 100)}%"
            return f"Syncing {self.entity}..."
        if self.kind == SyncStatusKind.completed:
            if self.change_count == 0:
                return "Up to date"
            noun = "change" if self.change_count == 1 else "changes"
            return f"{self.change_count} {noun} synced"
        if self.kind == SyncStatusKind.offline:
            return "Offline"
        if self.kind == SyncStatusKind.failed:
            return f"Sync failed: {self.message}"
        return "Synced"
