"""Per-entity pull-and-merge strategies.

A strategy pulls the remote list for one entity type and merges it into
the local store:

    remote row absent locally            → insert as synced          (+1)
    last_write_wins, remote newer        → overwrite local           (+1)
    server_wins, remote differs at all   → overwrite local           (+1)
    otherwise                            → leave local alone         (+0)

Pull never deletes local records missing from the remote list, and an
overwrite keeps the local ``locally_deleted`` flag.

Strategies also own the push side for their entity type, so the queue
dispatches through the same registry.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timezone
from typing import Any

from pydantic import ValidationError

from unforgotten.models.entities import AccountEntity
from unforgotten.models.sync import ChangeType, EntityType, LocalRecord, MergePolicy
from unforgotten.services.local_store import LocalStore
from unforgotten.sync.config_loader import SyncConfig
from unforgotten.sync.errors import DataCorruptionError
from unforgotten.sync.gateways import ENTITY_MODELS, RemoteEntityGateway

logger = logging.getLogger("unforgotten.sync.strategies")


def decode_remote(
    entity_type: EntityType, model: type[AccountEntity], row: dict[str, Any]
) -> LocalRecord:
    """Validate a remote row and wrap it as a synced local record.

    Raises:
        DataCorruptionError: If the row does not match the entity model.
    """
    try:
        entity = model.model_validate(row)
    except ValidationError as exc:
        raise DataCorruptionError(
            f"remote {entity_type.value} {row.get('id')} rejected: {exc.error_count()} error(s)"
        ) from exc
    updated_at = entity.updated_at
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return LocalRecord(
        entity_type=entity_type,
        id=entity.id,
        account_id=entity.account_id,
        updated_at=updated_at,
        is_synced=True,
        data=entity.model_dump(mode="json"),
    )


class EntitySyncStrategy:
    """Pull, diff and merge for one entity type, plus its push operations."""

    def __init__(
        self,
        entity_type: EntityType,
        gateway: RemoteEntityGateway,
        store: LocalStore,
        policy: MergePolicy = MergePolicy.last_write_wins,
    ) -> None:
        self.entity_type = entity_type
        self.gateway = gateway
        self.store = store
        self.policy = policy
        self.model = ENTITY_MODELS[entity_type]

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def pull(self, account_id: uuid.UUID) -> int:
        """Fetch the remote list and merge it locally.

        Returns:
            Number of local records inserted or overwritten.

        Raises:
            SyncError: Whatever the gateway raised; nothing is merged then.
        """
        rows = await self.gateway.list(account_id)

        # No awaits below: the merge lands in one store transaction.
        changed = 0
        with self.store.transaction():
            for row in rows:
                try:
                    remote = decode_remote(self.entity_type, self.model, row)
                except DataCorruptionError as exc:
                    logger.warning("Skipping %s", exc)
                    continue
                changed += self._merge(remote)

        logger.info(
            "Pulled %d %s record(s), %d changed locally",
            len(rows), self.entity_type.value, changed,
        )
        return changed

    def _merge(self, remote: LocalRecord) -> int:
        try:
            local = self.store.get(self.entity_type, remote.id)
        except DataCorruptionError as exc:
            logger.warning("Skipping merge over corrupt local record: %s", exc)
            return 0

        if local is None:
            self.store.insert(remote)
            logger.debug("Inserted %s %s", self.entity_type.value, remote.id)
            return 1

        if self.policy == MergePolicy.server_wins:
            if local.data == remote.data and local.is_synced:
                return 0
        elif remote.updated_at <= local.updated_at:
            return 0

        remote.locally_deleted = local.locally_deleted
        self.store.update(remote)
        logger.debug(
            "Overwrote %s %s (%s)", self.entity_type.value, remote.id, self.policy.value
        )
        return 1

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def push(
        self, change_type: ChangeType, record: LocalRecord
    ) -> dict[str, Any] | None:
        """Send one local mutation to the backend.

        Returns:
            The stored remote row for create/update, None for delete.
        """
        if change_type == ChangeType.create:
            return await self.gateway.create(record.data)
        if change_type == ChangeType.update:
            return await self.gateway.update(record.data)
        await self.gateway.delete(record.id, record.account_id)
        return None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def build_strategy_registry(
    gateways: dict[EntityType, RemoteEntityGateway],
    store: LocalStore,
    config: SyncConfig,
) -> dict[EntityType, EntitySyncStrategy]:
    """Resolve one strategy per entity type.

    Raises:
        KeyError: If an entity type in the pull order has no gateway.
    """
    missing = [e.value for e in config.entity_order if e not in gateways]
    if missing:
        raise KeyError(
            f"No gateway registered for entity type(s) {missing}. "
            f"Available: {[e.value for e in gateways]}"
        )
    return {
        entity: EntitySyncStrategy(entity, gateway, store, config.merge_policy(entity))
        for entity, gateway in gateways.items()
    }


def get_strategy(
    registry: dict[EntityType, EntitySyncStrategy], entity_type: EntityType
) -> EntitySyncStrategy:
    """Return the strategy for an entity type.

    Raises:
        KeyError: If the entity type is not registered.
    """
    if entity_type not in registry:
        raise KeyError(
            f"No strategy registered for '{entity_type.value}'. "
            f"Available: {[e.value for e in registry]}"
        )
    return registry[entity_type]
