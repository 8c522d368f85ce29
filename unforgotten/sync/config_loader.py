"""Load, validate, and hot-reload the sync engine configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk; orchestrators built afterwards pick up the new values.

Usage::

    from unforgotten.sync.config_loader import get_sync_config

    config = get_sync_config()
    config.max_retries                              # 5
    config.merge_policy(EntityType.mood_entry)      # MergePolicy.server_wins
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from unforgotten.models.sync import EntityType, MergePolicy

logger = logging.getLogger("unforgotten.sync.config")

_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class PullStep:
    """One entity in the full-sync pull order."""

    entity: EntityType
    label: str      # shown in the syncing status, e.g. "profiles"
    progress: float  # status fraction while this entity is pulled


@dataclass
class RemoteWindow:
    """Date window applied to a remote list, relative to today."""

    column: str
    days_back: int
    days_ahead: int


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:                   Config schema version string.
        max_retries:               Attempts per pending change before discard.
        completed_display_seconds: How long ``completed`` shows before idle.
        pull_order:                Ordered pull steps with progress fractions.
        merge_policies:            Per-entity overrides of last-write-wins.
        windows:                   Per-entity remote date windows.
        derivation_enabled:        Whether medication logs are derived locally.
        derivation_progress:       Status fraction during derivation.
    """

    version: str
    max_retries: int
    completed_display_seconds: float
    pull_order: list[PullStep]
    merge_policies: dict[EntityType, MergePolicy]
    windows: dict[EntityType, RemoteWindow]
    derivation_enabled: bool = True
    derivation_progress: float = 0.98
    _raw: dict = field(default_factory=dict, repr=False)

    def merge_policy(self, entity: EntityType) -> MergePolicy:
        return self.merge_policies.get(entity, MergePolicy.last_write_wins)

    def window(self, entity: EntityType) -> RemoteWindow | None:
        return self.windows.get(entity)

    @property
    def entity_order(self) -> list[EntityType]:
        return [step.entity for step in self.pull_order]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _entity(value: Any, where: str, errors: list[str]) -> EntityType | None:
    try:
        return EntityType(value)
    except ValueError:
        errors.append(f"{where}: unknown entity type {value!r}")
        return None


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    All problems are collected and reported together.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Queue ──
    queue_raw = raw.get("queue", {}) or {}
    max_retries = queue_raw.get("max_retries", 5)
    if not isinstance(max_retries, int) or max_retries < 1:
        errors.append(f"queue.max_retries must be a positive integer, got {max_retries!r}")
        max_retries = 5

    # ── Status ──
    status_raw = raw.get("status", {}) or {}
    try:
        display_seconds = float(status_raw.get("completed_display_seconds", 3.0))
    except (TypeError, ValueError):
        errors.append("status.completed_display_seconds must be a number")
        display_seconds = 3.0
    if display_seconds < 0:
        errors.append("status.completed_display_seconds must not be negative")

    # ── Pull order ──
    order_raw = raw.get("pull_order") or []
    if not order_raw:
        errors.append("'pull_order' section is missing or empty")
    pull_order: list[PullStep] = []
    seen: set[EntityType] = set()
    last_progress = 0.0
    for i, step in enumerate(order_raw):
        where = f"pull_order[{i}]"
        if not isinstance(step, dict) or "entity" not in step:
            errors.append(f"{where} must be a mapping with an 'entity' key")
            continue
        entity = _entity(step["entity"], where, errors)
        if entity is None:
            continue
        if entity in seen:
            errors.append(f"{where}: {entity.value} listed twice")
            continue
        seen.add(entity)
        try:
            progress = float(step.get("progress", 0.0))
        except (TypeError, ValueError):
            errors.append(f"{where}.progress must be a number")
            continue
        if not (last_progress < progress < 1.0):
            errors.append(
                f"{where}.progress = {progress} must increase and stay below 1.0"
            )
        last_progress = max(last_progress, progress)
        pull_order.append(
            PullStep(entity=entity, label=str(step.get("label", entity.value)), progress=progress)
        )

    missing = [e.value for e in EntityType if e not in seen]
    if order_raw and missing:
        errors.append(f"pull_order is missing entity types: {', '.join(missing)}")

    # ── Merge policies ──
    merge_policies: dict[EntityType, MergePolicy] = {}
    for key, val in (raw.get("merge_policies") or {}).items():
        entity = _entity(key, "merge_policies", errors)
        try:
            policy = MergePolicy(val)
        except ValueError:
            errors.append(f"merge_policies.{key}: unknown policy {val!r}")
            continue
        if entity is not None:
            merge_policies[entity] = policy

    # ── Windows ──
    windows: dict[EntityType, RemoteWindow] = {}
    for key, val in (raw.get("windows") or {}).items():
        entity = _entity(key, "windows", errors)
        if not isinstance(val, dict) or "column" not in val:
            errors.append(f"windows.{key} must be a mapping with a 'column' key")
            continue
        try:
            window = RemoteWindow(
                column=str(val["column"]),
                days_back=int(val.get("days_back", 0)),
                days_ahead=int(val.get("days_ahead", 0)),
            )
        except (TypeError, ValueError):
            errors.append(f"windows.{key}: days_back/days_ahead must be integers")
            continue
        if window.days_back < 0 or window.days_ahead < 0:
            errors.append(f"windows.{key}: days_back/days_ahead must not be negative")
        if entity is not None:
            windows[entity] = window

    # ── Derivation ──
    deriv_raw = raw.get("derivation", {}) or {}
    try:
        derivation_progress = float(deriv_raw.get("progress", 0.98))
    except (TypeError, ValueError):
        errors.append("derivation.progress must be a number")
        derivation_progress = 0.98
    if pull_order and not (last_progress < derivation_progress < 1.0):
        errors.append(
            f"derivation.progress = {derivation_progress} must follow the last pull step"
        )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        max_retries=max_retries,
        completed_display_seconds=display_seconds,
        pull_order=pull_order,
        merge_policies=merge_policies,
        windows=windows,
        derivation_enabled=bool(deriv_raw.get("enabled", True)),
        derivation_progress=derivation_progress,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.
    """
    global _config
    new_config = load_sync_config(path)
    with _config_lock:
        _config = new_config
    logger.info("Sync config reloaded (v%s)", new_config.version)
    return new_config
