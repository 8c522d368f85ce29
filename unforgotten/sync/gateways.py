"""Remote entity gateways: one per entity type, backed by Supabase Postgres.

A gateway only moves rows across the wire.  It knows nothing about the
local store, merging or retries.  Failures are translated onto the sync
error taxonomy so callers can tell a missing session from a dropped
connection from a server-side rejection:

    NotAuthenticatedError   : no signed-in user, or the server refused our credentials
    NetworkUnavailableError : could not connect, connection lost, timed out
    ServerError             : any other Postgres error, including an RLS
                              rejection of one row
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any

import asyncpg
from pydantic import ValidationError

from unforgotten.models.entities import (
    AccountEntity,
    Appointment,
    Countdown,
    Medication,
    MedicationLog,
    MedicationSchedule,
    MoodEntry,
    Profile,
    ProfileDetail,
    StickyReminder,
    ToDoItem,
    ToDoList,
    UsefulContact,
)
from unforgotten.models.sync import EntityType
from unforgotten.services.supabase import get_connection
from unforgotten.sync.config_loader import RemoteWindow, SyncConfig
from unforgotten.sync.errors import (
    DataCorruptionError,
    NetworkUnavailableError,
    NotAuthenticatedError,
    ServerError,
    SyncError,
)

logger = logging.getLogger("unforgotten.sync.gateways")

SessionProvider = Callable[[], uuid.UUID | None]
PoolProvider = Callable[[], Awaitable[asyncpg.Pool]]


# ---------------------------------------------------------------------------
# Entity catalogue: entity type → (model, table)
# ---------------------------------------------------------------------------

ENTITY_MODELS: dict[EntityType, type[AccountEntity]] = {
    EntityType.profile: Profile,
    EntityType.profile_detail: ProfileDetail,
    EntityType.medication: Medication,
    EntityType.medication_schedule: MedicationSchedule,
    EntityType.medication_log: MedicationLog,
    EntityType.appointment: Appointment,
    EntityType.useful_contact: UsefulContact,
    EntityType.todo_list: ToDoList,
    EntityType.todo_item: ToDoItem,
    EntityType.countdown: Countdown,
    EntityType.sticky_reminder: StickyReminder,
    EntityType.mood_entry: MoodEntry,
}

TABLE_NAMES: dict[EntityType, str] = {
    EntityType.profile: "profiles",
    EntityType.profile_detail: "profile_details",
    EntityType.medication: "medications",
    EntityType.medication_schedule: "medication_schedules",
    EntityType.medication_log: "medication_logs",
    EntityType.appointment: "appointments",
    EntityType.useful_contact: "useful_contacts",
    EntityType.todo_list: "todo_lists",
    EntityType.todo_item: "todo_items",
    EntityType.countdown: "countdowns",
    EntityType.sticky_reminder: "sticky_reminders",
    EntityType.mood_entry: "mood_entries",
}

# Columns stored as jsonb; asyncpg hands these back as text.
JSON_COLUMNS: dict[EntityType, frozenset[str]] = {
    EntityType.profile_detail: frozenset({"metadata"}),
    EntityType.medication_schedule: frozenset({"schedule_entries"}),
}


# ---------------------------------------------------------------------------
# Gateway interface
# ---------------------------------------------------------------------------


class RemoteEntityGateway(ABC):
    """Backend CRUD for one entity type.

    Rows cross this boundary as JSON-safe dicts (the same shape as
    ``LocalRecord.data``).
    """

    entity_type: EntityType

    @abstractmethod
    async def list(self, account_id: uuid.UUID) -> list[dict[str, Any]]:
        """Return every remote row of this type for the account."""

    @abstractmethod
    async def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored. Replaying a create is safe."""

    @abstractmethod
    async def update(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Overwrite a row by id and return it as stored."""

    @abstractmethod
    async def delete(self, record_id: uuid.UUID, account_id: uuid.UUID) -> None:
        """Remove a row by id. Deleting a missing row is not an error."""


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def translate_error(exc: Exception) -> SyncError:
    """Map a driver/transport exception onto the sync error taxonomy."""
    # InsufficientPrivilegeError is a per-row RLS rejection: ServerError.
    if isinstance(exc, asyncpg.InvalidAuthorizationSpecificationError):
        return NotAuthenticatedError()
    if isinstance(
        exc,
        (
            asyncio.TimeoutError,
            OSError,
            asyncpg.PostgresConnectionError,
            asyncpg.InterfaceError,
        ),
    ):
        return NetworkUnavailableError()
    return ServerError(str(exc) or type(exc).__name__)


def window_bounds(window: RemoteWindow, today: date) -> tuple[date, date]:
    """Inclusive start, exclusive end of a remote date window."""
    return today - timedelta(days=window.days_back), today + timedelta(days=window.days_ahead + 1)


def build_upsert_query(table: str, columns: list[str]) -> str:
    """INSERT ... ON CONFLICT (id) DO UPDATE for one row.

    A create whose reply was lost can be replayed: the second attempt
    overwrites the row it already wrote instead of hitting a unique
    violation.  ``id`` and ``created_at`` are never rewritten, and
    ``updated_at`` is taken from the payload so last-write-wins still
    compares client timestamps.
    """
    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    update_set = ", ".join(
        f"{col} = EXCLUDED.{col}" for col in columns if col not in ("id", "created_at")
    )
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT (id) DO UPDATE SET {update_set}"
    )


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------


class PostgresTableGateway(RemoteEntityGateway):
    """Gateway over one Supabase table, scoped by RLS to the signed-in user.

    Column names come from the entity model, never from payload keys, so
    only known columns are interpolated into SQL.

    Args:
        entity_type:      Entity this gateway serves.
        session_provider: Returns the signed-in user id, or None when signed out.
        pool_provider:    Coroutine returning the asyncpg pool.
        window:           Optional date window applied to ``list``.
        timeout:          Seconds before a call is abandoned as unreachable.
        clock:            Returns "now"; used for window bounds.
    """

    def __init__(
        self,
        entity_type: EntityType,
        session_provider: SessionProvider,
        pool_provider: PoolProvider,
        *,
        window: RemoteWindow | None = None,
        timeout: float = 30.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.model = ENTITY_MODELS[entity_type]
        self.table = TABLE_NAMES[entity_type]
        self.columns: tuple[str, ...] = tuple(self.model.model_fields)
        self.json_columns = JSON_COLUMNS.get(entity_type, frozenset())
        self._session_provider = session_provider
        self._pool_provider = pool_provider
        self._window = window
        self._timeout = timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        if window is not None and window.column not in self.columns:
            raise ValueError(f"{self.table} has no column {window.column!r} to window on")

    # -- plumbing ----------------------------------------------------------

    def _require_session(self) -> uuid.UUID:
        user_id = self._session_provider()
        if user_id is None:
            raise NotAuthenticatedError()
        return user_id

    async def _call(
        self,
        account_id: uuid.UUID,
        op: Callable[[asyncpg.Connection], Awaitable[Any]],
    ) -> Any:
        user_id = self._require_session()

        async def run() -> Any:
            pool = await self._pool_provider()
            async with get_connection(user_id=user_id, account_id=account_id, pool=pool) as conn:
                return await op(conn)

        try:
            return await asyncio.wait_for(run(), timeout=self._timeout)
        except (asyncio.TimeoutError, OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            translated = translate_error(exc)
            logger.warning("%s call failed: %s", self.table, translated)
            raise translated from exc

    def _to_db(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Validate a JSON-safe payload and convert it to driver-native values."""
        try:
            entity = self.model.model_validate(payload)
        except ValidationError as exc:
            raise DataCorruptionError(f"{self.entity_type.value} payload invalid: {exc}") from exc
        values = entity.model_dump()
        for col in self.json_columns:
            if values.get(col) is not None:
                values[col] = json.dumps(values[col], default=str)
        return values

    def _from_db(self, row: asyncpg.Record) -> dict[str, Any]:
        values = dict(row)
        for col in self.json_columns:
            if isinstance(values.get(col), str):
                values[col] = json.loads(values[col])
        return values

    @property
    def _select_list(self) -> str:
        return ", ".join(self.columns)

    # -- operations ----------------------------------------------------------

    async def list(self, account_id: uuid.UUID) -> list[dict[str, Any]]:
        query = f"SELECT {self._select_list} FROM {self.table} WHERE account_id = $1"
        args: list[Any] = [account_id]
        if self._window is not None:
            start, end = window_bounds(self._window, self._clock().date())
            col = self._window.column
            query += f" AND {col} >= $2::date AND {col} < $3::date"
            args += [start, end]
        query += " ORDER BY updated_at"

        async def op(conn: asyncpg.Connection) -> list[asyncpg.Record]:
            return await conn.fetch(query, *args)

        rows = await self._call(account_id, op)
        logger.debug("Listed %d %s rows for account %s", len(rows), self.table, account_id)
        return [self._from_db(r) for r in rows]

    async def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        values = self._to_db(payload)
        cols = [c for c in self.columns if c in values]
        query = build_upsert_query(self.table, cols) + f" RETURNING {self._select_list}"

        async def op(conn: asyncpg.Connection) -> asyncpg.Record:
            return await conn.fetchrow(query, *(values[c] for c in cols))

        row = await self._call(values["account_id"], op)
        return self._from_db(row)

    async def update(self, payload: dict[str, Any]) -> dict[str, Any]:
        values = self._to_db(payload)
        cols = [c for c in self.columns if c in values and c not in ("id", "created_at")]
        assignments = ", ".join(f"{c} = ${i}" for i, c in enumerate(cols, start=2))
        query = (
            f"UPDATE {self.table} SET {assignments} WHERE id = $1 "
            f"RETURNING {self._select_list}"
        )

        async def op(conn: asyncpg.Connection) -> asyncpg.Record | None:
            return await conn.fetchrow(query, values["id"], *(values[c] for c in cols))

        row = await self._call(values["account_id"], op)
        if row is None:
            raise ServerError(f"{self.table} row {values['id']} not found")
        return self._from_db(row)

    async def delete(self, record_id: uuid.UUID, account_id: uuid.UUID) -> None:
        async def op(conn: asyncpg.Connection) -> str:
            return await conn.execute(f"DELETE FROM {self.table} WHERE id = $1", record_id)

        await self._call(account_id, op)


def build_postgres_gateways(
    session_provider: SessionProvider,
    pool_provider: PoolProvider,
    config: SyncConfig,
    *,
    timeout: float = 30.0,
    clock: Callable[[], datetime] | None = None,
) -> dict[EntityType, RemoteEntityGateway]:
    """One Postgres gateway per entity type, with configured windows applied."""
    return {
        entity: PostgresTableGateway(
            entity,
            session_provider,
            pool_provider,
            window=config.window(entity),
            timeout=timeout,
            clock=clock,
        )
        for entity in EntityType
    }
