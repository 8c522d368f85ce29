"""Pydantic models for the synced family-organizer entities: profiles and their
details, medications with schedules and logs, appointments, contacts, to-do
lists, countdowns, sticky reminders and mood entries."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from unforgotten.models.base import TimestampMixin, UnforgottenBase


# ---------- Enums ----------

class ProfileType(str, Enum):
    primary = "primary"
    relative = "relative"


class ScheduleType(str, Enum):
    scheduled = "scheduled"
    as_needed = "as_needed"


class MedicationLogStatus(str, Enum):
    scheduled = "scheduled"
    taken = "taken"
    missed = "missed"
    skipped = "skipped"


class AppointmentType(str, Enum):
    general = "general"
    doctor = "doctor"
    dentist = "dentist"
    hospital = "hospital"
    gym = "gym"
    work = "work"
    school = "school"
    friends = "friends"
    family = "family"
    shopping = "shopping"
    travel = "travel"
    other = "other"


# ---------- Base ----------

class AccountEntity(UnforgottenBase, TimestampMixin):
    """Every synced entity belongs to exactly one account."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    account_id: uuid.UUID


# ---------- Profiles ----------

class Profile(AccountEntity):
    type: ProfileType = ProfileType.relative
    full_name: str
    preferred_name: str | None = None
    relationship: str | None = None
    birthday: date | None = None
    is_deceased: bool = False
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    notes: str | None = None
    is_favourite: bool = False
    linked_user_id: uuid.UUID | None = None
    sort_order: int = 0

    @property
    def display_name(self) -> str:
        return self.preferred_name or self.full_name


class ProfileDetail(AccountEntity):
    profile_id: uuid.UUID
    category: str
    label: str
    value: str
    status: str | None = None
    occasion: str | None = None
    metadata: dict[str, str] | None = None


# ---------- Medications ----------

class Medication(AccountEntity):
    profile_id: uuid.UUID
    name: str
    strength: str | None = None
    form: str | None = None
    reason: str | None = None
    notes: str | None = None
    is_paused: bool = False
    paused_at: datetime | None = None
    sort_order: int = 0


class ScheduleEntry(UnforgottenBase):
    """One dose time inside a schedule. ``days_of_week`` uses 0=Sunday..6=Saturday."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    time: str  # "HH:mm"
    days_of_week: list[int] = Field(default_factory=lambda: list(range(7)))
    dosage: str | None = None
    sort_order: int = 0

    @field_validator("time")
    @classmethod
    def _check_time(cls, v: str) -> str:
        hours, sep, minutes = v.partition(":")
        if not sep or not hours.isdigit() or not minutes.isdigit():
            raise ValueError(f"time must be HH:mm, got {v!r}")
        if not (0 <= int(hours) < 24 and 0 <= int(minutes) < 60):
            raise ValueError(f"time out of range: {v!r}")
        return v

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, v: list[int]) -> list[int]:
        bad = [d for d in v if not 0 <= d <= 6]
        if bad:
            raise ValueError(f"days_of_week must be within 0..6, got {bad}")
        return v


class MedicationSchedule(AccountEntity):
    medication_id: uuid.UUID
    schedule_type: ScheduleType = ScheduleType.scheduled
    start_date: date
    end_date: date | None = None
    schedule_entries: list[ScheduleEntry] = Field(default_factory=list)
    dose_description: str | None = None

    def is_in_effect(self, day: date) -> bool:
        if day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date


class MedicationLog(AccountEntity):
    medication_id: uuid.UUID
    scheduled_at: datetime
    status: MedicationLogStatus = MedicationLogStatus.scheduled
    taken_at: datetime | None = None
    note: str | None = None


# ---------- Appointments & contacts ----------

class Appointment(AccountEntity):
    profile_id: uuid.UUID
    with_profile_id: uuid.UUID | None = None
    type: AppointmentType = AppointmentType.general
    title: str
    date: date
    time: str | None = None
    location: str | None = None
    notes: str | None = None
    reminder_offset_minutes: int | None = None
    is_completed: bool = False


class UsefulContact(AccountEntity):
    name: str
    category: str = "other"
    company_name: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    address: str | None = None
    notes: str | None = None
    is_favourite: bool = False
    sort_order: int = 0


# ---------- To-dos ----------

class ToDoList(AccountEntity):
    title: str
    list_type: str | None = None


class ToDoItem(AccountEntity):
    list_id: uuid.UUID
    text: str
    is_completed: bool = False
    sort_order: int = 0


# ---------- Countdowns, reminders, mood ----------

class Countdown(AccountEntity):
    title: str
    subtitle: str | None = None
    date: datetime
    end_date: datetime | None = None
    has_time: bool = False
    type: str = "custom"
    notes: str | None = None
    reminder_offset_minutes: int | None = None
    is_recurring: bool = False


class StickyReminder(AccountEntity):
    title: str
    message: str | None = None
    trigger_time: datetime
    repeat_interval: str = Field(default="1_hours", pattern=r"^\d+_(minutes|hours|days|weeks|months)$")  # "<value>_<unit>"
    is_active: bool = True
    is_dismissed: bool = False
    last_notified_at: datetime | None = None
    sort_order: int = 0


class MoodEntry(AccountEntity):
    user_id: uuid.UUID
    date: date
    rating: int = Field(ge=1, le=5)
    note: str | None = None


def entity_payload(model: AccountEntity) -> dict[str, Any]:
    """JSON-safe dict of an entity, as stored locally and sent to the backend."""
    return model.model_dump(mode="json")
