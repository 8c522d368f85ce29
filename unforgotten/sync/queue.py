"""Pending change queue: the push path of the sync engine.

Entries are drained oldest first.  For each entry:

1. Retry ceiling reached → move to the dead letter, never retried.
2. Local record gone → discard (the change was superseded).
3. Dispatch create / update / delete through the entity's strategy.
4. Success → mark the record synced and remove the entry.
5. Failure → ``retry_count += 1``, remember the error, keep the entry and
   carry on with the next one.

A missing session or a lost connection stops the drain without charging
any entry a retry; the error propagates to the caller.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from unforgotten.models.sync import ChangeType, EntityType, PendingChange
from unforgotten.services.local_store import LocalStore
from unforgotten.sync.errors import (
    DataCorruptionError,
    NetworkUnavailableError,
    NotAuthenticatedError,
    SyncError,
)
from unforgotten.sync.strategies import EntitySyncStrategy, get_strategy

logger = logging.getLogger("unforgotten.sync.queue")


@dataclass
class FlushReport:
    """Outcome of one drain of the queue."""

    pushed: int = 0
    failed: int = 0
    discarded: int = 0
    remaining: int = 0


class PendingChangeQueue:
    """Durable outbound queue stored in the local store.

    Args:
        store:       Local store that owns the ``pending_changes`` table.
        strategies:  Entity strategy registry used for push dispatch.
        max_retries: Attempts per entry before it is discarded.
        clock:       Returns "now" for timestamps.
    """

    def __init__(
        self,
        store: LocalStore,
        strategies: dict[EntityType, EntitySyncStrategy],
        max_retries: int = 5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.strategies = strategies
        self.max_retries = max_retries
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def count(self) -> int:
        return self.store.pending_change_count()

    def enqueue(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        account_id: uuid.UUID,
        change_type: ChangeType,
    ) -> PendingChange:
        """Append a change and persist it immediately."""
        change = PendingChange(
            entity_type=entity_type,
            entity_id=entity_id,
            account_id=account_id,
            change_type=change_type,
            created_at=self._clock(),
        )
        self.store.add_pending_change(change)
        self.store.save()
        logger.debug(
            "Queued %s %s %s", change_type.value, entity_type.value, entity_id
        )
        return change

    def _discard(self, change: PendingChange, reason: str, report: FlushReport) -> None:
        logger.warning(
            "Discarding %s of %s %s after %d attempt(s): %s (last error: %s)",
            change.change_type.value,
            change.entity_type.value,
            change.entity_id,
            change.retry_count,
            reason,
            change.last_error,
        )
        self.store.discard_pending_change(change, reason, now=self._clock())
        report.discarded += 1

    async def drain(self) -> FlushReport:
        """Push every queued change once, oldest first.

        Returns:
            Counts of pushed, failed and discarded entries plus what remains.

        Raises:
            NotAuthenticatedError: No session; remaining entries untouched.
            NetworkUnavailableError: Connection lost; remaining entries untouched.
        """
        report = FlushReport()
        entries = self.store.pending_changes()
        if entries:
            logger.info("Flushing %d pending change(s)", len(entries))

        try:
            for change in entries:
                await self._process(change, report)
        finally:
            self.store.save()
            report.remaining = self.store.pending_change_count()

        logger.info(
            "Flush done: %d pushed, %d failed, %d discarded, %d remaining",
            report.pushed, report.failed, report.discarded, report.remaining,
        )
        return report

    async def _process(self, change: PendingChange, report: FlushReport) -> None:
        if not change.should_retry(self.max_retries):
            self._discard(change, "retry limit reached", report)
            return

        try:
            record = self.store.get(change.entity_type, change.entity_id)
        except DataCorruptionError as exc:
            change.last_error = str(exc)
            self._discard(change, "local record unreadable", report)
            return
        if record is None:
            self._discard(change, "local record no longer exists", report)
            return

        strategy = get_strategy(self.strategies, change.entity_type)
        try:
            remote = await strategy.push(change.change_type, record)
        except (NotAuthenticatedError, NetworkUnavailableError):
            logger.info("Flush interrupted at %s %s", change.entity_type.value, change.entity_id)
            raise
        except SyncError as exc:
            change.record_failure(str(exc), now=self._clock())
            self.store.update_pending_change(change)
            report.failed += 1
            logger.warning(
                "Push of %s %s failed (attempt %d/%d): %s",
                change.entity_type.value, change.entity_id,
                change.retry_count, self.max_retries, exc,
            )
            return

        self._apply_success(change, record.updated_at, remote)
        report.pushed += 1

    def _apply_success(
        self, change: PendingChange, pushed_updated_at: datetime, remote: dict | None
    ) -> None:
        self.store.remove_pending_change(change.id)
        current = self.store.get(change.entity_type, change.entity_id)
        if current is None:
            return
        if change.change_type == ChangeType.delete:
            self.store.delete(change.entity_type, change.entity_id)
            return
        if current.updated_at != pushed_updated_at:
            # Edited again while the push was in flight; a newer change is queued.
            return
        current.mark_synced()
        remote_updated = _updated_at(remote)
        if remote_updated is not None and remote_updated > current.updated_at:
            current.updated_at = remote_updated
        self.store.update(current)


def _updated_at(row: dict | None) -> datetime | None:
    if not row or row.get("updated_at") is None:
        return None
    value = row["updated_at"]
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
