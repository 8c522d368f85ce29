"""Tests for sync models: status display text, records and queue entries."""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from pydantic import ValidationError

from unforgotten.models.entities import (
    MedicationSchedule,
    MoodEntry,
    Profile,
    ScheduleEntry,
    StickyReminder,
)
from unforgotten.models.sync import ChangeType, EntityType, GlobalSyncStatus, PendingChange
from unforgotten.sync.errors import ConflictDetectedError, DataCorruptionError, ServerError

from .conftest import TEST_ACCOUNT_ID, TEST_NOW, TEST_PROFILE_ID, TEST_USER_ID, new_id


class TestDisplayText:
    @pytest.mark.parametrize(
        "status, text",
        [
            (GlobalSyncStatus.idle(), "Synced"),
            (GlobalSyncStatus.syncing("profiles", 0.15), "Syncing profiles... 15%"),
            (GlobalSyncStatus.syncing("medications", 0.3), "Syncing medications... 30%"),
            (GlobalSyncStatus.syncing("starting", 0.0), "Syncing starting..."),
            (GlobalSyncStatus.completed(0), "Up to date"),
            (GlobalSyncStatus.completed(1), "1 change synced"),
            (GlobalSyncStatus.completed(7), "7 changes synced"),
            (GlobalSyncStatus.offline(), "Offline"),
            (GlobalSyncStatus.failed("No internet connection"), "Sync failed: No internet connection"),
        ],
    )
    def test_display_text(self, status, text) -> None:
        assert status.display_text == text

    def test_flags(self) -> None:
        assert GlobalSyncStatus.syncing("logs", 0.5).is_active
        assert not GlobalSyncStatus.completed(2).is_active
        assert GlobalSyncStatus.offline().is_offline

    def test_status_is_immutable(self) -> None:
        status = GlobalSyncStatus.idle()
        with pytest.raises(ValidationError):
            status.kind = "offline"

    def test_progress_bounded(self) -> None:
        with pytest.raises(ValidationError):
            GlobalSyncStatus.syncing("profiles", 1.5)


class TestPendingChange:
    def _change(self) -> PendingChange:
        return PendingChange(
            entity_type=EntityType.profile,
            entity_id=new_id(),
            account_id=TEST_ACCOUNT_ID,
            change_type=ChangeType.update,
            created_at=TEST_NOW,
        )

    def test_retry_bound(self) -> None:
        change = self._change()
        for attempt in range(5):
            assert change.should_retry(5)
            change.record_failure("boom", now=TEST_NOW + timedelta(seconds=attempt))
        assert not change.should_retry(5)
        assert change.retry_count == 5
        assert change.last_attempt_at == TEST_NOW + timedelta(seconds=4)


class TestErrorMessages:
    def test_messages(self) -> None:
        entity_id = new_id()
        assert str(ServerError("timeout")) == "Server error: timeout"
        assert str(DataCorruptionError("bad json")) == "Data error: bad json"
        assert str(ConflictDetectedError(entity_id)) == f"Conflict detected for item {str(entity_id)[:8]}"


class TestEntities:
    def test_display_name_prefers_preferred_name(self) -> None:
        profile = Profile(account_id=TEST_ACCOUNT_ID, full_name="Margaret Smith", preferred_name="Peggy")
        assert profile.display_name == "Peggy"
        assert Profile(account_id=TEST_ACCOUNT_ID, full_name="Margaret Smith").display_name == "Margaret Smith"

    @pytest.mark.parametrize("value", ["8:00am", "24:00", "12:60", "noon"])
    def test_schedule_time_must_be_hh_mm(self, value) -> None:
        with pytest.raises(ValidationError):
            ScheduleEntry(time=value)

    def test_schedule_days_within_week(self) -> None:
        with pytest.raises(ValidationError):
            ScheduleEntry(time="08:00", days_of_week=[7])

    def test_schedule_in_effect(self) -> None:
        schedule = MedicationSchedule(
            account_id=TEST_ACCOUNT_ID,
            medication_id=TEST_PROFILE_ID,
            start_date=date(2026, 3, 1),
            end_date=date(2026, 3, 31),
        )
        assert not schedule.is_in_effect(date(2026, 2, 28))
        assert schedule.is_in_effect(date(2026, 3, 1))
        assert schedule.is_in_effect(date(2026, 3, 31))
        assert not schedule.is_in_effect(date(2026, 4, 1))

    @pytest.mark.parametrize("interval", ["1_hours", "30_minutes", "2_weeks"])
    def test_repeat_interval_accepted(self, interval) -> None:
        StickyReminder(account_id=TEST_ACCOUNT_ID, title="Water plants", trigger_time=TEST_NOW, repeat_interval=interval)

    def test_repeat_interval_rejected(self) -> None:
        with pytest.raises(ValidationError):
            StickyReminder(account_id=TEST_ACCOUNT_ID, title="Water plants", trigger_time=TEST_NOW, repeat_interval="hourly")

    def test_mood_rating_range(self) -> None:
        with pytest.raises(ValidationError):
            MoodEntry(account_id=TEST_ACCOUNT_ID, user_id=TEST_USER_ID, date=date(2026, 3, 4), rating=6)
