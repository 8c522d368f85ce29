"""Tests for the sync status and health endpoints."""

from __future__ import annotations

from datetime import date

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from unforgotten.models.entities import Appointment
from unforgotten.models.sync import EntityType
from unforgotten.routers import health, sync
from unforgotten.sync.errors import ServerError
from unforgotten.sync.repository import OfflineRepository

from .conftest import TEST_ACCOUNT_ID, TEST_PROFILE_ID


def _app(orchestrator=None) -> FastAPI:
    app = FastAPI()
    app.include_router(health.router)
    app.include_router(sync.router, prefix="/api/v1")
    if orchestrator is not None:
        app.state.orchestrator = orchestrator
    return app


@pytest.fixture
def client(orchestrator):
    with TestClient(_app(orchestrator)) as c:
        yield c


def _queue_offline_appointment(orchestrator, monitor) -> Appointment:
    monitor.set_connected(False)
    repo = OfflineRepository(EntityType.appointment, orchestrator)
    return repo.create(
        Appointment(
            account_id=TEST_ACCOUNT_ID,
            profile_id=TEST_PROFILE_ID,
            title="Dentist",
            date=date(2026, 3, 10),
        )
    )


class TestStatus:
    def test_idle_status(self, client) -> None:
        resp = client.get("/api/v1/sync/status")

        assert resp.status_code == 200
        body = resp.json()
        assert body["kind"] == "idle"
        assert body["display_text"] == "Synced"
        assert body["is_connected"] is True
        assert body["pending_changes_count"] == 0
        assert body["last_sync_date"] is None

    def test_offline_status_with_pending(self, client, orchestrator, monitor) -> None:
        _queue_offline_appointment(orchestrator, monitor)

        body = client.get("/api/v1/sync/status").json()

        assert body["kind"] == "offline"
        assert body["display_text"] == "Offline"
        assert body["is_offline"] is True
        assert body["pending_changes_count"] == 1

    def test_engine_not_started_is_503(self) -> None:
        with TestClient(_app()) as c:
            resp = c.get("/api/v1/sync/status")
        assert resp.status_code == 503
        assert resp.json()["detail"] == "Sync engine not started"


class TestPending:
    def test_list_pending(self, client, orchestrator, monitor) -> None:
        appt = _queue_offline_appointment(orchestrator, monitor)

        [entry] = client.get("/api/v1/sync/pending").json()

        assert entry["entity_type"] == "appointment"
        assert entry["entity_id"] == str(appt.id)
        assert entry["change_type"] == "create"
        assert entry["retry_count"] == 0

    def test_flush_while_offline_pushes_nothing(self, client, orchestrator, monitor) -> None:
        _queue_offline_appointment(orchestrator, monitor)

        body = client.post("/api/v1/sync/pending").json()

        assert body == {"pushed": 0, "failed": 0, "discarded": 0, "remaining": 1}

    def test_flush_after_reconnect(self, client, orchestrator, monitor, gateways) -> None:
        _queue_offline_appointment(orchestrator, monitor)
        monitor.set_connected(True)  # no running loop here, so no background flush

        body = client.post("/api/v1/sync/pending").json()

        assert body["pushed"] == 1
        assert body["remaining"] == 0
        assert len(gateways[EntityType.appointment].ops("create")) == 1


class TestFullSync:
    def test_full_sync_reports_completed(self, client) -> None:
        resp = client.post(f"/api/v1/sync/{TEST_ACCOUNT_ID}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["kind"] == "completed"
        assert body["display_text"] == "Up to date"
        assert body["last_sync_date"] is not None

    def test_failure_is_a_status_not_an_http_error(self, client, gateways) -> None:
        gateways[EntityType.profile].fail_next.append(ServerError("boom"))

        resp = client.post(f"/api/v1/sync/{TEST_ACCOUNT_ID}")

        assert resp.status_code == 200
        assert resp.json()["display_text"] == "Sync failed: Server error: boom"

    def test_invalid_account_id_is_422(self, client) -> None:
        assert client.post("/api/v1/sync/not-a-uuid").status_code == 422


class TestHealth:
    def test_degraded_without_database(self, client) -> None:
        body = client.get("/health").json()

        assert body["status"] == "degraded"
        assert body["database"] == "unreachable"
        assert body["online"] is True
        assert body["pending_changes"] == 0
