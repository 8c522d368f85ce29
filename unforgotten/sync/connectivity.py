"""Connectivity monitor: reachability state plus transition events.

The monitor probes the Supabase project URL with ``httpx`` on an interval
and also accepts reachability pushed in by the host platform through
``set_connected()``.  Subscribers are called only when the state flips.

Usage::

    monitor = ConnectivityMonitor("https://xyz.supabase.co")
    unsubscribe = monitor.subscribe(lambda online: print("online" if online else "offline"))
    await monitor.start()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

import httpx

logger = logging.getLogger("unforgotten.sync.connectivity")

ConnectivityCallback = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks whether the backend is reachable.

    Starts optimistic (``is_connected`` is True) until a probe or the host
    says otherwise.

    Args:
        probe_url:      URL probed on each check; empty disables probing.
        check_interval: Seconds between probes.
        probe_timeout:  Seconds before a probe counts as unreachable.
        client:         Optional shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        probe_url: str = "",
        check_interval: float = 30.0,
        probe_timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._probe_url = probe_url
        self._check_interval = check_interval
        self._probe_timeout = probe_timeout
        self._client = client
        self._owns_client = client is None
        self._connected = True
        self._callbacks: list[ConnectivityCallback] = []
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # State & events
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._connected

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register a callback fired on online/offline transitions.

        Returns:
            A function that removes the callback again.
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def set_connected(self, connected: bool) -> None:
        """Record the current reachability; notify subscribers on a change."""
        if connected == self._connected:
            return
        self._connected = connected
        logger.info("Connectivity changed: %s", "online" if connected else "offline")
        for callback in list(self._callbacks):
            try:
                callback(connected)
            except Exception:
                logger.exception("Connectivity callback %r failed", callback)

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    async def probe(self) -> bool:
        """Check the backend once and update the state.

        Any HTTP response counts as reachable; only transport failures
        count as offline.
        """
        if not self._probe_url:
            return self._connected
        if self._client is None:
            self._client = httpx.AsyncClient()
        try:
            await self._client.head(self._probe_url, timeout=self._probe_timeout)
            reachable = True
        except httpx.TransportError as exc:
            logger.debug("Probe of %s failed: %s", self._probe_url, exc)
            reachable = False
        self.set_connected(reachable)
        return reachable

    async def _monitor_loop(self) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(self._check_interval)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background probe loop (no-op without a probe URL)."""
        if self._task is not None or not self._probe_url:
            return
        self._task = asyncio.create_task(self._monitor_loop(), name="connectivity-monitor")
        logger.info(
            "ConnectivityMonitor started (url=%s, interval=%.0fs)",
            self._probe_url, self._check_interval,
        )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
