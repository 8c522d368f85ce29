"""Shared fixtures for sync engine tests: fake gateways, in-memory store,
manual connectivity and a fixed clock."""

from __future__ import annotations

import asyncio
import dataclasses
import uuid
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import pytest

from unforgotten.models.entities import entity_payload
from unforgotten.models.sync import EntityType, LocalRecord
from unforgotten.services.local_store import LocalStore
from unforgotten.sync.config_loader import SyncConfig, load_sync_config
from unforgotten.sync.connectivity import ConnectivityMonitor
from unforgotten.sync.gateways import ENTITY_MODELS, RemoteEntityGateway
from unforgotten.sync.orchestrator import SyncOrchestrator

# Canonical test identities
TEST_ACCOUNT_ID = UUID("12345678-1234-5678-1234-567812345678")
TEST_USER_ID = UUID("87654321-4321-8765-4321-876543218765")
TEST_PROFILE_ID = UUID("11111111-2222-3333-4444-555555555555")

# Wednesday 4 March 2026, 09:00 UTC (weekday index 3)
TEST_NOW = datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Doubles
# ---------------------------------------------------------------------------


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = TEST_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeGateway(RemoteEntityGateway):
    """In-memory backend table.

    ``fail_next`` holds exceptions raised, in order, by the next calls of
    any operation.  ``calls`` records ``(op, id_or_account)`` tuples; the
    optional shared ``journal`` records ``(entity_type, op)`` across gateways.
    """

    def __init__(self, entity_type: EntityType, journal: list | None = None) -> None:
        self.entity_type = entity_type
        self.rows: dict[UUID, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_next: list[Exception] = []
        self.journal = journal if journal is not None else []

    def _record(self, op: str, arg: Any) -> None:
        self.calls.append((op, arg))
        self.journal.append((self.entity_type, op))

    def _maybe_fail(self) -> None:
        if self.fail_next:
            raise self.fail_next.pop(0)

    async def list(self, account_id: UUID) -> list[dict[str, Any]]:
        self._record("list", account_id)
        self._maybe_fail()
        return [
            dict(row) for row in self.rows.values()
            if UUID(str(row["account_id"])) == account_id
        ]

    async def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create", UUID(str(payload["id"])))
        self._maybe_fail()
        self.rows[UUID(str(payload["id"]))] = dict(payload)
        return dict(payload)

    async def update(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update", UUID(str(payload["id"])))
        self._maybe_fail()
        self.rows[UUID(str(payload["id"]))] = dict(payload)
        return dict(payload)

    async def delete(self, record_id: UUID, account_id: UUID) -> None:
        self._record("delete", record_id)
        self._maybe_fail()
        self.rows.pop(record_id, None)

    def put(self, entity) -> None:
        """Seed the remote table with an entity model."""
        self.rows[entity.id] = entity_payload(entity)

    def ops(self, name: str) -> list[Any]:
        return [arg for op, arg in self.calls if op == name]


def local_record(entity, *, is_synced: bool = True, deleted: bool = False) -> LocalRecord:
    """Wrap an entity model as a local record."""
    entity_type = next(e for e, m in ENTITY_MODELS.items() if m is type(entity))
    updated_at = entity.updated_at
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return LocalRecord(
        entity_type=entity_type,
        id=entity.id,
        account_id=entity.account_id,
        updated_at=updated_at,
        is_synced=is_synced,
        locally_deleted=deleted,
        data=entity_payload(entity),
    )


def new_id() -> UUID:
    return uuid.uuid4()


async def settle(rounds: int = 20) -> None:
    """Let scheduled background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> Iterator[LocalStore]:
    s = LocalStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def sync_config() -> SyncConfig:
    """The bundled config with a short completed-status display delay."""
    return dataclasses.replace(load_sync_config(), completed_display_seconds=0.05)


@pytest.fixture
def monitor() -> ConnectivityMonitor:
    """Monitor without a probe URL; tests drive it with set_connected()."""
    return ConnectivityMonitor()


@pytest.fixture
def journal() -> list[tuple[EntityType, str]]:
    return []


@pytest.fixture
def gateways(journal) -> dict[EntityType, FakeGateway]:
    return {entity: FakeGateway(entity, journal) for entity in EntityType}


@pytest.fixture
def orchestrator(store, gateways, monitor, sync_config, clock) -> SyncOrchestrator:
    return SyncOrchestrator(store, gateways, monitor, config=sync_config, clock=clock)
