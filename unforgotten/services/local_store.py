"""Embedded on-device store backed by SQLite.

Holds the cached entities (``local_records``), the durable outbound queue
(``pending_changes``), per-account/per-entity ``sync_metadata`` and the
``discarded_changes`` dead letter.

All methods are synchronous and meant to be called from the event-loop
thread.  Mutations accumulate in an open SQLite transaction until
``save()`` commits them, so a block of calls with no ``await`` between
them is applied atomically.

Usage::

    store = LocalStore("unforgotten_local.sqlite3")
    with store.transaction():
        store.insert(record)
        store.add_pending_change(change)
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from unforgotten.models.sync import (
    ChangeType,
    EntityType,
    LocalRecord,
    PendingChange,
    SyncMetadata,
)
from unforgotten.sync.errors import DataCorruptionError

logger = logging.getLogger("unforgotten.local_store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS local_records (
    entity_type     TEXT NOT NULL,
    id              TEXT NOT NULL,
    account_id      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    is_synced       INTEGER NOT NULL DEFAULT 0,
    locally_deleted INTEGER NOT NULL DEFAULT 0,
    data            TEXT NOT NULL,
    PRIMARY KEY (entity_type, id)
);
CREATE INDEX IF NOT EXISTS ix_local_records_account
    ON local_records (entity_type, account_id);

CREATE TABLE IF NOT EXISTS pending_changes (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    id              TEXT NOT NULL UNIQUE,
    entity_type     TEXT NOT NULL,
    entity_id       TEXT NOT NULL,
    account_id      TEXT NOT NULL,
    change_type     TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    retry_count     INTEGER NOT NULL DEFAULT 0,
    last_error      TEXT,
    last_attempt_at TEXT
);

CREATE TABLE IF NOT EXISTS sync_metadata (
    account_id      TEXT NOT NULL,
    entity_type     TEXT NOT NULL DEFAULT '',
    last_synced_at  TEXT,
    PRIMARY KEY (account_id, entity_type)
);

CREATE TABLE IF NOT EXISTS discarded_changes (
    id              TEXT PRIMARY KEY,
    entity_type     TEXT NOT NULL,
    entity_id       TEXT NOT NULL,
    account_id      TEXT NOT NULL,
    change_type     TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    retry_count     INTEGER NOT NULL,
    last_error      TEXT,
    reason          TEXT NOT NULL,
    discarded_at    TEXT NOT NULL
);
"""


def _iso(value: datetime | None) -> str | None:
    """Normalise to a UTC ISO string so stored timestamps sort lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class LocalStore:
    """SQLite-backed local store. ``path=":memory:"`` gives a throwaway store."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if str(path) != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()
        logger.info("Local store opened at %s", path)

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Commit every mutation since the last save."""
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit the block's mutations on success, roll them back on error."""
        try:
            yield
        except Exception:
            self._conn.rollback()
            raise
        self._conn.commit()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _row_to_record(self, row: sqlite3.Row) -> LocalRecord:
        try:
            data = json.loads(row["data"])
            return LocalRecord(
                entity_type=EntityType(row["entity_type"]),
                id=uuid.UUID(row["id"]),
                account_id=uuid.UUID(row["account_id"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
                is_synced=bool(row["is_synced"]),
                locally_deleted=bool(row["locally_deleted"]),
                data=data,
            )
        except (ValueError, TypeError) as exc:
            # json.JSONDecodeError and pydantic.ValidationError are ValueErrors
            raise DataCorruptionError(
                f"{row['entity_type']} {row['id']} could not be decoded: {exc}"
            ) from exc

    def get(self, entity_type: EntityType, record_id: uuid.UUID) -> LocalRecord | None:
        """Return the record or None.

        Raises:
            DataCorruptionError: If the stored row cannot be decoded.
        """
        row = self._conn.execute(
            "SELECT * FROM local_records WHERE entity_type = ? AND id = ?",
            (entity_type.value, str(record_id)),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def fetch(
        self,
        entity_type: EntityType,
        account_id: uuid.UUID | None = None,
        *,
        include_deleted: bool = False,
        where: Callable[[LocalRecord], bool] | None = None,
    ) -> list[LocalRecord]:
        """Return the records of one entity type.

        Rows that fail to decode are logged and skipped.
        """
        query = "SELECT * FROM local_records WHERE entity_type = ?"
        params: list[Any] = [entity_type.value]
        if account_id is not None:
            query += " AND account_id = ?"
            params.append(str(account_id))
        if not include_deleted:
            query += " AND locally_deleted = 0"
        query += " ORDER BY updated_at, id"

        records: list[LocalRecord] = []
        for row in self._conn.execute(query, params):
            try:
                record = self._row_to_record(row)
            except DataCorruptionError as exc:
                logger.warning("Skipping corrupt local record: %s", exc)
                continue
            if where is None or where(record):
                records.append(record)
        return records

    def insert(self, record: LocalRecord) -> None:
        """Insert a new record.

        Raises:
            ValueError: If a record with the same (entity_type, id) exists.
        """
        try:
            self._conn.execute(
                "INSERT INTO local_records "
                "(entity_type, id, account_id, updated_at, is_synced, locally_deleted, data) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                self._record_params(record),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(
                f"{record.entity_type.value} {record.id} already exists locally"
            ) from exc

    def update(self, record: LocalRecord) -> None:
        """Overwrite an existing record.

        Raises:
            KeyError: If no such record exists.
        """
        entity_type, record_id, account_id, updated_at, synced, deleted, data = (
            self._record_params(record)
        )
        cur = self._conn.execute(
            "UPDATE local_records SET account_id = ?, updated_at = ?, is_synced = ?, "
            "locally_deleted = ?, data = ? WHERE entity_type = ? AND id = ?",
            (account_id, updated_at, synced, deleted, data, entity_type, record_id),
        )
        if cur.rowcount == 0:
            raise KeyError(f"{record.entity_type.value} {record.id} not found locally")

    def delete(self, entity_type: EntityType, record_id: uuid.UUID) -> None:
        self._conn.execute(
            "DELETE FROM local_records WHERE entity_type = ? AND id = ?",
            (entity_type.value, str(record_id)),
        )

    @staticmethod
    def _record_params(record: LocalRecord) -> tuple:
        return (
            record.entity_type.value,
            str(record.id),
            str(record.account_id),
            _iso(record.updated_at),
            int(record.is_synced),
            int(record.locally_deleted),
            json.dumps(record.data, sort_keys=True, default=str),
        )

    # ------------------------------------------------------------------
    # Pending changes
    # ------------------------------------------------------------------

    def add_pending_change(self, change: PendingChange) -> None:
        self._conn.execute(
            "INSERT INTO pending_changes "
            "(id, entity_type, entity_id, account_id, change_type, created_at, "
            " retry_count, last_error, last_attempt_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(change.id),
                change.entity_type.value,
                str(change.entity_id),
                str(change.account_id),
                change.change_type.value,
                _iso(change.created_at),
                change.retry_count,
                change.last_error,
                _iso(change.last_attempt_at),
            ),
        )

    def pending_changes(self, account_id: uuid.UUID | None = None) -> list[PendingChange]:
        """Queue entries oldest first; insertion order breaks timestamp ties."""
        query = "SELECT * FROM pending_changes"
        params: list[Any] = []
        if account_id is not None:
            query += " WHERE account_id = ?"
            params.append(str(account_id))
        query += " ORDER BY created_at, seq"
        return [
            PendingChange(
                id=uuid.UUID(row["id"]),
                entity_type=EntityType(row["entity_type"]),
                entity_id=uuid.UUID(row["entity_id"]),
                account_id=uuid.UUID(row["account_id"]),
                change_type=ChangeType(row["change_type"]),
                created_at=_parse(row["created_at"]),
                retry_count=row["retry_count"],
                last_error=row["last_error"],
                last_attempt_at=_parse(row["last_attempt_at"]),
            )
            for row in self._conn.execute(query, params)
        ]

    def update_pending_change(self, change: PendingChange) -> None:
        self._conn.execute(
            "UPDATE pending_changes SET retry_count = ?, last_error = ?, last_attempt_at = ? "
            "WHERE id = ?",
            (change.retry_count, change.last_error, _iso(change.last_attempt_at), str(change.id)),
        )

    def remove_pending_change(self, change_id: uuid.UUID) -> None:
        self._conn.execute("DELETE FROM pending_changes WHERE id = ?", (str(change_id),))

    def pending_change_count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM pending_changes").fetchone()[0]

    def discard_pending_change(
        self, change: PendingChange, reason: str, now: datetime | None = None
    ) -> None:
        """Move a queue entry to the dead-letter table."""
        self._conn.execute(
            "INSERT OR REPLACE INTO discarded_changes "
            "(id, entity_type, entity_id, account_id, change_type, created_at, "
            " retry_count, last_error, reason, discarded_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(change.id),
                change.entity_type.value,
                str(change.entity_id),
                str(change.account_id),
                change.change_type.value,
                _iso(change.created_at),
                change.retry_count,
                change.last_error,
                reason,
                _iso(now or datetime.now(timezone.utc)),
            ),
        )
        self.remove_pending_change(change.id)

    def discarded_changes(self) -> list[dict[str, Any]]:
        rows = self._conn.execute("SELECT * FROM discarded_changes ORDER BY discarded_at")
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Sync metadata
    # ------------------------------------------------------------------

    def get_sync_metadata(
        self, account_id: uuid.UUID, entity_type: EntityType | None = None
    ) -> SyncMetadata | None:
        row = self._conn.execute(
            "SELECT * FROM sync_metadata WHERE account_id = ? AND entity_type = ?",
            (str(account_id), entity_type.value if entity_type else ""),
        ).fetchone()
        if row is None:
            return None
        return SyncMetadata(
            account_id=account_id,
            entity_type=entity_type,
            last_synced_at=_parse(row["last_synced_at"]),
        )

    def create_all_metadata_for_account(self, account_id: uuid.UUID) -> None:
        """Ensure the account row and one row per entity type exist."""
        keys = [""] + [e.value for e in EntityType]
        self._conn.executemany(
            "INSERT OR IGNORE INTO sync_metadata (account_id, entity_type) VALUES (?, ?)",
            [(str(account_id), key) for key in keys],
        )

    def touch_sync_metadata(
        self,
        account_id: uuid.UUID,
        entity_types: list[EntityType],
        when: datetime,
    ) -> None:
        """Set ``last_synced_at`` on the account row and the given entity rows."""
        self.create_all_metadata_for_account(account_id)
        keys = [""] + [e.value for e in entity_types]
        self._conn.executemany(
            "UPDATE sync_metadata SET last_synced_at = ? WHERE account_id = ? AND entity_type = ?",
            [(_iso(when), str(account_id), key) for key in keys],
        )

    def last_sync_date(self, account_id: uuid.UUID | None = None) -> datetime | None:
        """Most recent successful full sync, for one account or any."""
        query = "SELECT MAX(last_synced_at) FROM sync_metadata WHERE entity_type = ''"
        params: list[Any] = []
        if account_id is not None:
            query += " AND account_id = ?"
            params.append(str(account_id))
        return _parse(self._conn.execute(query, params).fetchone()[0])
