"""
Periodic price refresher — runs the sync orchestrator on an interval as
a cancellable background task and applies each result to the portfolio.

Only one sync may be in flight at a time: a refresh requested while
another is running is skipped rather than queued.

Usage:
    refresher = PriceRefresher(synchronizer, state, interval=300, on_update=store.save)
    refresher.start()
    ...
    await refresher.stop()
"""

import asyncio
from typing import Any, Callable

from loguru import logger

from kite_tracker.portfolio.merge import apply_sync_status
from kite_tracker.portfolio.models import PortfolioState
from kite_tracker.sync.orchestrator import PriceSynchronizer, SyncStatus

StateCallback = Callable[[PortfolioState], Any]


class PriceRefresher:
    """Single-flight periodic sync with exclusive merge into PortfolioState."""

    def __init__(
        self,
        synchronizer: PriceSynchronizer,
        state: PortfolioState | None = None,
        interval: float = 300.0,
        run_immediately: bool = True,
        on_update: StateCallback | None = None,
    ) -> None:
        self._synchronizer = synchronizer
        self._state = state if state is not None else PortfolioState()
        self._interval = interval
        self._run_immediately = run_immediately
        self._on_update = on_update

        self._state_lock = asyncio.Lock()
        self._in_flight = False
        self._task: asyncio.Task[None] | None = None
        self._last_status: SyncStatus | None = None
        self._last_updated: str | None = None

    # ── Properties ──────────────────────────────────────────────────────

    @property
    def state(self) -> PortfolioState:
        return self._state

    @property
    def last_status(self) -> SyncStatus | None:
        return self._last_status

    @property
    def last_updated(self) -> str | None:
        """Capture time of the last sync, suffixed with (成功) or (異常)."""
        return self._last_updated

    @property
    def is_syncing(self) -> bool:
        return self._in_flight

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Public API ──────────────────────────────────────────────────────

    async def refresh_once(self) -> SyncStatus | None:
        """Run one sync and apply it. Returns None if a sync is already in flight."""
        if self._in_flight:
            logger.info("Refresher: sync already in flight, skipping")
            return None

        self._in_flight = True
        try:
            status = await self._synchronizer.sync()

            async with self._state_lock:
                self._state = apply_sync_status(self._state, status)
                self._last_status = status
                suffix = " (異常)" if status.errors else " (成功)"
                self._last_updated = f"{status.timestamp}{suffix}"
                if self._on_update is not None:
                    result = self._on_update(self._state)
                    if asyncio.iscoroutine(result):
                        await result

            if status.errors:
                logger.warning("Refresher: partial sync: {}", "; ".join(status.errors))
            return status
        finally:
            self._in_flight = False

    def start(self) -> asyncio.Task[None]:
        """Launch the refresh loop as a background task (idempotent)."""
        if self.is_running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.create_task(self._loop(), name="price-refresher")
        return self._task

    async def stop(self) -> None:
        """Cancel the refresh loop and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Refresher: stopped")

    # ── Loop ────────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        logger.info("Refresher: starting (interval={}s)", self._interval)
        if not self._run_immediately:
            await asyncio.sleep(self._interval)

        while True:
            try:
                await self.refresh_once()
            except Exception as e:
                logger.error("Refresher: refresh failed: {}", e)

            await asyncio.sleep(self._interval)
