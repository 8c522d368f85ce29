"""Tests for entity pull-and-merge strategies."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from unforgotten.models.entities import Appointment, MoodEntry
from unforgotten.models.sync import EntityType, MergePolicy
from unforgotten.sync.errors import NetworkUnavailableError
from unforgotten.sync.strategies import (
    EntitySyncStrategy,
    build_strategy_registry,
    get_strategy,
)

from .conftest import (
    TEST_ACCOUNT_ID,
    TEST_NOW,
    TEST_PROFILE_ID,
    TEST_USER_ID,
    FakeGateway,
    local_record,
)


def _appointment(title: str, minutes: int = 0, **kwargs) -> Appointment:
    stamp = TEST_NOW + timedelta(minutes=minutes)
    return Appointment(
        account_id=TEST_ACCOUNT_ID,
        profile_id=TEST_PROFILE_ID,
        title=title,
        date=date(2026, 3, 10),
        created_at=TEST_NOW,
        updated_at=stamp,
        **kwargs,
    )


@pytest.fixture
def appt_gateway() -> FakeGateway:
    return FakeGateway(EntityType.appointment)


@pytest.fixture
def appt_strategy(appt_gateway, store) -> EntitySyncStrategy:
    return EntitySyncStrategy(EntityType.appointment, appt_gateway, store)


class TestPullInsert:
    """Remote records missing locally are inserted as synced."""

    @pytest.mark.asyncio
    async def test_inserts_new_records(self, appt_strategy, appt_gateway, store) -> None:
        a, b = _appointment("Dentist"), _appointment("Optician")
        appt_gateway.put(a)
        appt_gateway.put(b)

        changed = await appt_strategy.pull(TEST_ACCOUNT_ID)

        assert changed == 2
        local = store.get(EntityType.appointment, a.id)
        assert local is not None
        assert local.is_synced is True
        assert local.data["title"] == "Dentist"

    @pytest.mark.asyncio
    async def test_pull_is_idempotent(self, appt_strategy, appt_gateway, store) -> None:
        """A second pull with no remote changes changes nothing."""
        appt_gateway.put(_appointment("Dentist"))
        appt_gateway.put(_appointment("Optician"))

        assert await appt_strategy.pull(TEST_ACCOUNT_ID) == 2
        before = store.fetch(EntityType.appointment)
        assert await appt_strategy.pull(TEST_ACCOUNT_ID) == 0
        after = store.fetch(EntityType.appointment)

        assert [r.model_dump() for r in before] == [r.model_dump() for r in after]

    @pytest.mark.asyncio
    async def test_never_deletes_local_only_records(
        self, appt_strategy, appt_gateway, store
    ) -> None:
        local_only = _appointment("Local only")
        store.insert(local_record(local_only, is_synced=False))
        store.save()

        await appt_strategy.pull(TEST_ACCOUNT_ID)

        assert store.get(EntityType.appointment, local_only.id) is not None

    @pytest.mark.asyncio
    async def test_invalid_remote_row_is_skipped(
        self, appt_strategy, appt_gateway, store
    ) -> None:
        good = _appointment("Dentist")
        appt_gateway.put(good)
        bad = _appointment("Broken")
        appt_gateway.put(bad)
        del appt_gateway.rows[bad.id]["title"]

        changed = await appt_strategy.pull(TEST_ACCOUNT_ID)

        assert changed == 1
        assert store.get(EntityType.appointment, good.id) is not None
        assert store.get(EntityType.appointment, bad.id) is None

    @pytest.mark.asyncio
    async def test_gateway_failure_merges_nothing(
        self, appt_strategy, appt_gateway, store
    ) -> None:
        appt_gateway.put(_appointment("Dentist"))
        appt_gateway.fail_next.append(NetworkUnavailableError())

        with pytest.raises(NetworkUnavailableError):
            await appt_strategy.pull(TEST_ACCOUNT_ID)

        assert store.fetch(EntityType.appointment) == []


class TestLastWriteWins:
    """Default policy: the newer updated_at wins."""

    @pytest.mark.asyncio
    async def test_newer_remote_overwrites_local(
        self, appt_strategy, appt_gateway, store
    ) -> None:
        local = _appointment("Doctor", minutes=0)
        store.insert(local_record(local))
        store.save()
        appt_gateway.put(local.model_copy(update={"title": "Dentist", "updated_at": TEST_NOW + timedelta(minutes=5)}))

        changed = await appt_strategy.pull(TEST_ACCOUNT_ID)

        assert changed == 1
        assert store.get(EntityType.appointment, local.id).data["title"] == "Dentist"

    @pytest.mark.asyncio
    async def test_newer_local_edit_survives_pull(
        self, appt_strategy, appt_gateway, store
    ) -> None:
        """Local 'Dentist' edited after remote 'Doctor' is kept, still unsynced."""
        remote = _appointment("Doctor", minutes=0)
        appt_gateway.put(remote)
        local = remote.model_copy(update={"title": "Dentist", "updated_at": TEST_NOW + timedelta(minutes=10)})
        store.insert(local_record(local, is_synced=False))
        store.save()

        changed = await appt_strategy.pull(TEST_ACCOUNT_ID)

        assert changed == 0
        record = store.get(EntityType.appointment, remote.id)
        assert record.data["title"] == "Dentist"
        assert record.is_synced is False

    @pytest.mark.asyncio
    async def test_equal_timestamps_keep_local(
        self, appt_strategy, appt_gateway, store
    ) -> None:
        remote = _appointment("Doctor")
        appt_gateway.put(remote)
        store.insert(local_record(remote.model_copy(update={"title": "Local"})))
        store.save()

        assert await appt_strategy.pull(TEST_ACCOUNT_ID) == 0
        assert store.get(EntityType.appointment, remote.id).data["title"] == "Local"

    @pytest.mark.asyncio
    async def test_overwrite_keeps_local_tombstone(
        self, appt_strategy, appt_gateway, store
    ) -> None:
        local = _appointment("Doctor")
        store.insert(local_record(local, deleted=True))
        store.save()
        appt_gateway.put(local.model_copy(update={"updated_at": TEST_NOW + timedelta(hours=1)}))

        await appt_strategy.pull(TEST_ACCOUNT_ID)

        record = store.get(EntityType.appointment, local.id)
        assert record.locally_deleted is True


class TestServerWins:
    """Server-generated entities take the remote copy whenever it differs."""

    @pytest.fixture
    def mood_gateway(self) -> FakeGateway:
        return FakeGateway(EntityType.mood_entry)

    @pytest.fixture
    def mood_strategy(self, mood_gateway, store) -> EntitySyncStrategy:
        return EntitySyncStrategy(
            EntityType.mood_entry, mood_gateway, store, MergePolicy.server_wins
        )

    def _mood(self, rating: int, minutes: int = 0) -> MoodEntry:
        return MoodEntry(
            account_id=TEST_ACCOUNT_ID,
            user_id=TEST_USER_ID,
            date=date(2026, 3, 4),
            rating=rating,
            created_at=TEST_NOW,
            updated_at=TEST_NOW + timedelta(minutes=minutes),
        )

    @pytest.mark.asyncio
    async def test_older_remote_still_overwrites(
        self, mood_strategy, mood_gateway, store
    ) -> None:
        remote = self._mood(rating=2, minutes=0)
        mood_gateway.put(remote)
        store.insert(local_record(remote.model_copy(update={"rating": 5, "updated_at": TEST_NOW + timedelta(hours=1)}), is_synced=False))
        store.save()

        changed = await mood_strategy.pull(TEST_ACCOUNT_ID)

        assert changed == 1
        record = store.get(EntityType.mood_entry, remote.id)
        assert record.data["rating"] == 2
        assert record.is_synced is True

    @pytest.mark.asyncio
    async def test_identical_remote_is_not_counted(
        self, mood_strategy, mood_gateway, store
    ) -> None:
        mood_gateway.put(self._mood(rating=4))

        assert await mood_strategy.pull(TEST_ACCOUNT_ID) == 1
        assert await mood_strategy.pull(TEST_ACCOUNT_ID) == 0


class TestRegistry:
    def test_one_strategy_per_entity_with_configured_policy(
        self, gateways, store, sync_config
    ) -> None:
        registry = build_strategy_registry(gateways, store, sync_config)

        assert set(registry) == set(EntityType)
        assert registry[EntityType.mood_entry].policy == MergePolicy.server_wins
        assert registry[EntityType.medication_log].policy == MergePolicy.server_wins
        assert registry[EntityType.appointment].policy == MergePolicy.last_write_wins

    def test_missing_gateway_fails_at_construction(self, gateways, store, sync_config) -> None:
        del gateways[EntityType.countdown]
        with pytest.raises(KeyError, match="countdown"):
            build_strategy_registry(gateways, store, sync_config)

    def test_get_strategy_unknown_raises(self, gateways, store, sync_config) -> None:
        registry = build_strategy_registry(gateways, store, sync_config)
        del registry[EntityType.todo_item]
        with pytest.raises(KeyError, match="todo_item"):
            get_strategy(registry, EntityType.todo_item)
