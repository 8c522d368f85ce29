"""Sync orchestrator, the single owner of sync state for the app.

Responsibilities:
1. React to connectivity changes (offline status, flush on reconnect)
2. Run full syncs as an explicit phase pipeline:
       starting → push pending → ordered pulls → derivation → metadata → completed
3. Keep at most one full sync running; a newer request cancels the older
   one cooperatively at its next phase boundary
4. Schedule non-blocking flushes when changes are queued while online
5. Publish ``status`` and ``pending_changes_count`` to listeners

Everything runs on one asyncio event loop.  Network calls are awaited;
local-store mutations happen in synchronous stretches between awaits.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any

from unforgotten.models.sync import ChangeType, EntityType, GlobalSyncStatus, PendingChange
from unforgotten.services.local_store import LocalStore
from unforgotten.sync.config_loader import SyncConfig, get_sync_config
from unforgotten.sync.connectivity import ConnectivityMonitor
from unforgotten.sync.derivation import MedicationLogGenerator
from unforgotten.sync.errors import (
    NetworkUnavailableError,
    NotAuthenticatedError,
    SyncError,
)
from unforgotten.sync.gateways import RemoteEntityGateway
from unforgotten.sync.queue import FlushReport, PendingChangeQueue
from unforgotten.sync.strategies import build_strategy_registry

logger = logging.getLogger("unforgotten.sync.orchestrator")

StatusListener = Callable[[GlobalSyncStatus, int], None]


@dataclass
class _SyncRun:
    """One full-sync run and its cooperative cancellation flag."""

    account_id: uuid.UUID
    task: asyncio.Task | None = None
    cancelled: bool = False


class SyncOrchestrator:
    """Coordinates push, pull, derivation and status for one app instance.

    Args:
        store:        Local store (records, queue, metadata).
        gateways:     One remote gateway per entity type.
        connectivity: Reachability monitor; the orchestrator subscribes to it.
        config:       Sync tuning; defaults to the global sync config.
        clock:        Returns "now" (aware).
        tz:           Zone used to decide "today" for derived logs.
    """

    def __init__(
        self,
        store: LocalStore,
        gateways: dict[EntityType, RemoteEntityGateway],
        connectivity: ConnectivityMonitor,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self.store = store
        self.connectivity = connectivity
        self.config = config or get_sync_config()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.strategies = build_strategy_registry(gateways, store, self.config)
        self.queue = PendingChangeQueue(
            store, self.strategies, max_retries=self.config.max_retries, clock=self._clock
        )
        self.derivation = MedicationLogGenerator(store, tz=tz, clock=self._clock)

        self._status = GlobalSyncStatus.idle()
        self._pending_count = store.pending_change_count()
        self._listeners: list[StatusListener] = []
        self._current_run: _SyncRun | None = None
        self._active_task: asyncio.Task | None = None
        self._flush_lock = asyncio.Lock()
        self._flush_task: asyncio.Task | None = None
        self._flush_requested = False
        self._background: set[asyncio.Task] = set()
        self._unsubscribe = connectivity.subscribe(self._on_connectivity_change)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def status(self) -> GlobalSyncStatus:
        return self._status

    @property
    def pending_changes_count(self) -> int:
        return self._pending_count

    @property
    def last_sync_date(self) -> datetime | None:
        return self.store.last_sync_date()

    def now(self) -> datetime:
        return self._clock()

    @property
    def is_syncing(self) -> bool:
        task = self._active_task
        return task is not None and not task.done()

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Call ``listener(status, pending_count)`` on every change.

        Returns:
            A function that removes the listener again.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._status, self._pending_count)
            except Exception:
                logger.exception("Status listener %r failed", listener)

    def _set_status(self, status: GlobalSyncStatus) -> None:
        changed = status != self._status
        self._status = status
        if changed:
            logger.debug("Status → %s", status.display_text)
            self._notify()

    def _refresh_pending_count(self) -> None:
        count = self.store.pending_change_count()
        if count != self._pending_count:
            self._pending_count = count
            self._notify()

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; %s not scheduled", name)
            return None
        task = loop.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def close(self) -> None:
        """Detach from connectivity and stop background work."""
        self._unsubscribe()
        run = self._current_run
        if run is not None:
            run.cancelled = True
        tasks = list(self._background)
        if self._active_task is not None:
            tasks.append(self._active_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    def _on_connectivity_change(self, connected: bool) -> None:
        if connected:
            logger.info("Back online; flushing pending changes")
            if self._status.is_offline:
                self._set_status(GlobalSyncStatus.idle())
            self._schedule_flush()
        else:
            logger.info("Went offline")
            self._set_status(GlobalSyncStatus.offline())

    # ------------------------------------------------------------------
    # Push path
    # ------------------------------------------------------------------

    def queue_change(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        account_id: uuid.UUID,
        change_type: ChangeType,
    ) -> PendingChange:
        """Persist a local mutation for upload; flush soon if online."""
        change = self.queue.enqueue(entity_type, entity_id, account_id, change_type)
        self._refresh_pending_count()
        if self.connectivity.is_connected:
            self._schedule_flush()
        return change

    def _schedule_flush(self) -> None:
        self._flush_requested = True
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = self._spawn(self._flush_loop(), "pending-change-flush")

    async def _flush_loop(self) -> None:
        while self._flush_requested:
            self._flush_requested = False
            await self.process_pending_changes()

    async def _drain(self) -> FlushReport:
        async with self._flush_lock:
            try:
                return await self.queue.drain()
            finally:
                self._refresh_pending_count()

    async def process_pending_changes(self) -> FlushReport:
        """Push queued changes now. A no-op while offline.

        Session and network failures are logged, not raised; the queue is
        left intact for the next attempt.
        """
        if not self.connectivity.is_connected:
            logger.debug("Offline; %d pending change(s) held", self._pending_count)
            return FlushReport(remaining=self._pending_count)
        try:
            return await self._drain()
        except NetworkUnavailableError:
            logger.warning("Lost connection while flushing pending changes")
            self._set_status(GlobalSyncStatus.offline())
        except NotAuthenticatedError as exc:
            logger.warning("Pending changes not pushed: %s", exc)
        return FlushReport(remaining=self._pending_count)

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def perform_full_sync(self, account_id: uuid.UUID) -> GlobalSyncStatus:
        """Push, then pull every entity type in order, then derive.

        Offline: sets ``offline`` and returns without touching the network.
        A run already in flight is cancelled before this one starts.  When
        several callers arrive while a run is in flight, only the newest
        one runs; the others return without starting.

        Returns:
            The status when this run finished.
        """
        if not self.connectivity.is_connected:
            logger.info("Full sync skipped: offline")
            self._set_status(GlobalSyncStatus.offline())
            return self._status

        # Install before the first await so concurrent callers see this run.
        run = _SyncRun(account_id=account_id)
        previous, self._current_run = self._current_run, run
        if previous is not None:
            previous.cancelled = True

        while self._active_task is not None and not self._active_task.done():
            logger.info("Waiting for in-flight full sync to stop before %s", account_id)
            await asyncio.gather(self._active_task, return_exceptions=True)
            if run.cancelled:
                logger.info("Full sync for %s superseded before it started", account_id)
                return self._status

        run.task = asyncio.create_task(self._run(run), name=f"full-sync-{account_id}")
        self._active_task = run.task
        await run.task
        return self._status

    async def _run(self, run: _SyncRun) -> None:
        account_id = run.account_id
        started = self._clock()
        logger.info("Full sync started for %s", account_id)
        total = 0
        try:
            self._set_status(GlobalSyncStatus.syncing("starting", 0.0))

            # Phase 1: push
            self._set_status(GlobalSyncStatus.syncing("uploading", 0.05))
            await self._drain()

            # Phase 2: ordered pulls
            for step in self.config.pull_order:
                if run.cancelled:
                    logger.info("Full sync for %s cancelled before %s", account_id, step.label)
                    return
                self._set_status(GlobalSyncStatus.syncing(step.label, step.progress))
                total += await self.strategies[step.entity].pull(account_id)
            if run.cancelled:
                logger.info("Full sync for %s cancelled before derivation", account_id)
                return

            # Phase 3: local derivation
            if self.config.derivation_enabled:
                self._set_status(
                    GlobalSyncStatus.syncing("medication logs", self.config.derivation_progress)
                )
                self.derivation.generate(account_id)

            # Phase 4: metadata
            self.store.touch_sync_metadata(account_id, self.config.entity_order, self._clock())
            self.store.save()

            completed = GlobalSyncStatus.completed(total)
            self._set_status(completed)
            self._spawn(self._reset_to_idle(completed), "sync-status-reset")
            logger.info(
                "Full sync for %s completed: %d change(s) in %.1fs",
                account_id, total, (self._clock() - started).total_seconds(),
            )
        except NetworkUnavailableError:
            logger.warning("Full sync for %s stopped: network unavailable", account_id)
            self._set_status(GlobalSyncStatus.offline())
        except SyncError as exc:
            logger.error("Full sync for %s failed: %s", account_id, exc)
            self._set_status(GlobalSyncStatus.failed(str(exc)))
        except Exception as exc:
            logger.exception("Full sync for %s failed unexpectedly", account_id)
            self._set_status(GlobalSyncStatus.failed(str(exc) or type(exc).__name__))

    async def _reset_to_idle(self, completed: GlobalSyncStatus) -> None:
        await asyncio.sleep(self.config.completed_display_seconds)
        if self._status is completed:
            self._set_status(GlobalSyncStatus.idle())
