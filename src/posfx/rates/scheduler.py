"""Automatic rate refresh loop.

Wakes every check_interval_seconds, asks the manager whether the active
rate is stale, and refreshes it if so. The same tick re-runs receivable
reconciliation while a previous recalculation left records behind.

The loop is a single asyncio.Task: start() is idempotent, stop() cancels
and awaits it, and a tick never begins a fetch while one is in flight.
"""

import asyncio

from posfx.config import AutoUpdateSettings
from posfx.logging import get_logger
from posfx.rates.manager import RateManager

logger = get_logger(__name__)


class AutoUpdater:
    """Cancellable, non-reentrant scheduled refresh for the rate manager."""

    def __init__(self, manager: RateManager, settings: AutoUpdateSettings) -> None:
        self._manager = manager
        self._settings = settings
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._tick_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Begin the refresh loop in the background."""
        if self._running:
            logger.warning("auto_updater_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "auto_updater_started",
            interval_minutes=self._settings.interval_minutes,
            check_interval=self._settings.check_interval_seconds,
            source=self._settings.source,
        )

    async def stop(self) -> None:
        """Stop the loop and wait for the current tick to unwind."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("auto_updater_stopped")

    async def _run_loop(self) -> None:
        """Tick, then sleep, until stopped."""
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("auto_update_tick_error", exc_info=True)
            if self._running:
                await asyncio.sleep(self._settings.check_interval_seconds)

    async def tick(self) -> bool:
        """Run one staleness check (and reconciliation if due).

        Returns True if a new rate was activated. A tick that finds another
        tick or fetch still running does nothing.
        """
        if self._tick_lock.locked():
            logger.debug("auto_update_tick_skipped_overlap")
            return False

        async with self._tick_lock:
            refreshed = False
            try:
                record = await self._manager.refresh_if_stale(
                    threshold_minutes=self._settings.interval_minutes,
                    source_id=self._settings.source,
                )
                refreshed = record is not None
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Previous rate stays active; the failure is already published.
                logger.warning("auto_refresh_failed", error=str(e))

            if not refreshed and self._manager.needs_reconciliation:
                logger.info("auto_reconcile_started")
                await self._manager.reconcile_dependents()

            return refreshed
