"""Offline-first write path for app features.

Every write lands in the local store first, marked unsynced, and queues
the matching pending change through the orchestrator.  Reads never touch
the network.  Deletes are explicit: the record is kept as a tombstone
(``locally_deleted``) until the delete has been pushed.  Dependants are
not deleted implicitly.
"""

from __future__ import annotations

import logging
import uuid
from typing import Generic, TypeVar

from unforgotten.models.entities import AccountEntity, entity_payload
from unforgotten.models.sync import ChangeType, EntityType, LocalRecord
from unforgotten.sync.errors import DataCorruptionError
from unforgotten.sync.gateways import ENTITY_MODELS
from unforgotten.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger("unforgotten.sync.repository")

EntityT = TypeVar("EntityT", bound=AccountEntity)


class OfflineRepository(Generic[EntityT]):
    """Local CRUD for one entity type, queueing every mutation for upload."""

    def __init__(self, entity_type: EntityType, orchestrator: SyncOrchestrator) -> None:
        self.entity_type = entity_type
        self.model: type[EntityT] = ENTITY_MODELS[entity_type]  # type: ignore[assignment]
        self.orchestrator = orchestrator
        self.store = orchestrator.store

    def _decode(self, record: LocalRecord) -> EntityT:
        try:
            return self.model.model_validate(record.data)
        except ValueError as exc:
            raise DataCorruptionError(f"{self.entity_type.value} {record.id}: {exc}") from exc

    # -- reads ---------------------------------------------------------------

    def get(self, entity_id: uuid.UUID) -> EntityT | None:
        record = self.store.get(self.entity_type, entity_id)
        if record is None or record.locally_deleted:
            return None
        return self._decode(record)

    def list(self, account_id: uuid.UUID) -> list[EntityT]:
        items: list[EntityT] = []
        for record in self.store.fetch(self.entity_type, account_id):
            try:
                items.append(self._decode(record))
            except DataCorruptionError as exc:
                logger.warning("Skipping %s", exc)
        return items

    # -- writes --------------------------------------------------------------

    def create(self, entity: EntityT) -> EntityT:
        """Insert locally as unsynced and queue a create."""
        now = self.orchestrator.now()
        entity = entity.model_copy(update={"created_at": now, "updated_at": now})
        self.store.insert(
            LocalRecord(
                entity_type=self.entity_type,
                id=entity.id,
                account_id=entity.account_id,
                updated_at=now,
                is_synced=False,
                data=entity_payload(entity),
            )
        )
        self.store.save()
        self.orchestrator.queue_change(
            self.entity_type, entity.id, entity.account_id, ChangeType.create
        )
        return entity

    def update(self, entity: EntityT) -> EntityT:
        """Overwrite locally, mark modified and queue an update.

        Raises:
            KeyError: If the entity does not exist locally.
        """
        record = self.store.get(self.entity_type, entity.id)
        if record is None or record.locally_deleted:
            raise KeyError(f"{self.entity_type.value} {entity.id} not found locally")
        now = self.orchestrator.now()
        entity = entity.model_copy(update={"updated_at": now})
        record.data = entity_payload(entity)
        record.mark_modified(now)
        self.store.update(record)
        self.store.save()
        self.orchestrator.queue_change(
            self.entity_type, entity.id, entity.account_id, ChangeType.update
        )
        return entity

    def delete(self, entity_id: uuid.UUID) -> None:
        """Tombstone locally and queue a delete.

        Raises:
            KeyError: If the entity does not exist locally.
        """
        record = self.store.get(self.entity_type, entity_id)
        if record is None or record.locally_deleted:
            raise KeyError(f"{self.entity_type.value} {entity_id} not found locally")
        record.locally_deleted = True
        record.mark_modified(self.orchestrator.now())
        self.store.update(record)
        self.store.save()
        self.orchestrator.queue_change(
            self.entity_type, entity_id, record.account_id, ChangeType.delete
        )
