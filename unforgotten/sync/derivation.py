"""Local derivation of today's scheduled medication-log occurrences.

After a full sync pulls medications and schedules, every dose due today
gets a ``scheduled`` medication log, so the day's checklist exists even
before the backend has one.  Generation is insert-only and idempotent:
a log is created only when none exists for the same
(medication_id, scheduled_at) occurrence.

Derived logs are stored unsynced and are not queued; the backend creates
its own, which later pulls merge in.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime, time, timezone, tzinfo

from pydantic import ValidationError

from unforgotten.models.entities import (
    Medication,
    MedicationLog,
    MedicationLogStatus,
    MedicationSchedule,
    ScheduleType,
    entity_payload,
)
from unforgotten.models.sync import EntityType, LocalRecord
from unforgotten.services.local_store import LocalStore

logger = logging.getLogger("unforgotten.sync.derivation")


def occurrence_key(medication_id: uuid.UUID, scheduled_at: datetime) -> str:
    """Generate a dedup key for one dose occurrence.

    Args:
        medication_id: Medication the dose belongs to.
        scheduled_at:  When the dose is due (aware datetime).

    Returns:
        Colon-separated key; equal instants in different zones collide.
        Naive datetimes are taken as UTC.
    """
    if scheduled_at.tzinfo is None:
        scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)
    return f"{medication_id}:{scheduled_at.astimezone(timezone.utc).isoformat()}"


def weekday_index(day: date) -> int:
    """Day of week with 0=Sunday … 6=Saturday."""
    return (day.weekday() + 1) % 7


class MedicationLogGenerator:
    """Materialise today's medication-log occurrences in the local store.

    Args:
        store: Local store holding medications, schedules and logs.
        tz:    Zone that decides what "today" and "08:00" mean.
        clock: Returns "now" (aware).
    """

    def __init__(
        self,
        store: LocalStore,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def generate(self, account_id: uuid.UUID) -> int:
        """Create missing logs for today's doses.

        Returns:
            Number of logs created.
        """
        now = self._clock()
        today = now.astimezone(self.tz).date()
        dow = weekday_index(today)

        existing = {
            occurrence_key(log.medication_id, log.scheduled_at)
            for log in self._decoded(EntityType.medication_log, MedicationLog, account_id, True)
        }
        schedules_by_med: dict[uuid.UUID, list[MedicationSchedule]] = {}
        for schedule in self._decoded(
            EntityType.medication_schedule, MedicationSchedule, account_id, False
        ):
            schedules_by_med.setdefault(schedule.medication_id, []).append(schedule)

        created = 0
        for med in self._decoded(EntityType.medication, Medication, account_id, False):
            if med.is_paused:
                continue
            for schedule in schedules_by_med.get(med.id, []):
                if schedule.schedule_type != ScheduleType.scheduled:
                    continue
                if not schedule.is_in_effect(today):
                    continue
                for entry in schedule.schedule_entries:
                    if dow not in entry.days_of_week:
                        continue
                    hour, minute = (int(p) for p in entry.time.split(":"))
                    scheduled_at = datetime.combine(today, time(hour, minute), tzinfo=self.tz)
                    key = occurrence_key(med.id, scheduled_at)
                    if key in existing:
                        continue
                    self._insert_log(account_id, med.id, scheduled_at, now)
                    existing.add(key)
                    created += 1

        self.store.save()
        if created:
            logger.info("Derived %d medication log(s) for %s", created, today.isoformat())
        return created

    def _decoded(self, entity_type, model, account_id, include_deleted):
        for record in self.store.fetch(entity_type, account_id, include_deleted=include_deleted):
            try:
                yield model.model_validate(record.data)
            except ValidationError as exc:
                logger.warning(
                    "Skipping undecodable %s %s: %d error(s)",
                    entity_type.value, record.id, exc.error_count(),
                )

    def _insert_log(
        self,
        account_id: uuid.UUID,
        medication_id: uuid.UUID,
        scheduled_at: datetime,
        now: datetime,
    ) -> None:
        log = MedicationLog(
            account_id=account_id,
            medication_id=medication_id,
            scheduled_at=scheduled_at,
            status=MedicationLogStatus.scheduled,
            created_at=now,
            updated_at=now,
        )
        self.store.insert(
            LocalRecord(
                entity_type=EntityType.medication_log,
                id=log.id,
                account_id=account_id,
                updated_at=now,
                is_synced=False,
                data=entity_payload(log),
            )
        )
