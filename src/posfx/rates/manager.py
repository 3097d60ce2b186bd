"""Rate manager -- the orchestrator of the exchange-rate engine.

Owns the single in-memory copy of the current rate and the state machine:

    IDLE -> FETCHING -> ACTIVATED | FAILED -> IDLE (acknowledge)

Each successful activation:
  1. WRITE: RateStore.insert_and_activate (atomic deactivate-old/insert-new)
  2. CACHE: replace the CurrentRate served to synchronous readers
  3. NOTIFY: publish the new snapshot to subscribers
  4. RECALCULATE: best-effort update of open USD receivables, outside the
     rate-write transaction. A failed pass never un-activates the rate; it
     flags needs_reconciliation so the auto updater can heal it later.
     Passes run one at a time against whatever rate is active when they
     start, never against a rate that has since been replaced.

Fetches are single-flight: a refresh requested while another is running
joins the running one instead of starting a second request chain.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

import structlog

from posfx.accounts.recalculation import RecalculationService
from posfx.config import AppSettings
from posfx.data.rate_store import RateStore
from posfx.exceptions import InvalidRateError, RateEngineError
from posfx.logging import get_logger
from posfx.models import (
    MANUAL_SOURCE,
    CurrentRate,
    RateRecord,
    RateSnapshot,
    RateState,
    RecalculationResult,
    SourceComparison,
    rate_change_pct,
    utc_now,
)
from posfx.rates.notifier import RateNotifier, Subscriber
from posfx.sources.fetcher import FallbackFetcher
from posfx.sources.registry import fallback_order

logger = get_logger(__name__)


class RateManager:
    """Decides when to fetch, writes through the store, and serves the rate.

    Args:
        settings: Application-wide settings.
        store: Single writer of exchange_rates rows.
        fetcher: Priority-ordered provider fallback.
        recalculation: Dependent receivable recalculation.
        notifier: Subscription hub for state changes.
        clock: Current-time source used for staleness checks.
    """

    def __init__(
        self,
        settings: AppSettings,
        store: RateStore,
        fetcher: FallbackFetcher,
        recalculation: RecalculationService,
        notifier: RateNotifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._store = store
        self._fetcher = fetcher
        self._recalculation = recalculation
        self._notifier = notifier or RateNotifier()
        self._clock = clock

        self._state = RateState.IDLE
        self._current: CurrentRate | None = None
        self._loading = False
        self._last_error: str | None = None
        self._last_recalculation: RecalculationResult | None = None
        self._needs_reconciliation = False
        self._inflight: asyncio.Task[RateRecord] | None = None
        self._recalc_lock = asyncio.Lock()

    # ──────────────────────────────────────────────
    # Read accessors
    # ──────────────────────────────────────────────

    def get_current_rate(self) -> CurrentRate | None:
        """Return the rate currently served, without touching storage."""
        return self._current

    @property
    def state(self) -> RateState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def last_recalculation(self) -> RecalculationResult | None:
        return self._last_recalculation

    @property
    def needs_reconciliation(self) -> bool:
        """True when the last recalculation pass left receivables behind."""
        return self._needs_reconciliation

    @property
    def is_fetching(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def notifier(self) -> RateNotifier:
        return self._notifier

    def snapshot(self) -> RateSnapshot:
        """Immutable view of the current state."""
        return RateSnapshot(
            state=self._state,
            current=self._current,
            loading=self._loading,
            last_error=self._last_error,
            last_recalculation=self._last_recalculation,
        )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for snapshots; returns an unsubscribe function."""
        return self._notifier.subscribe(callback)

    async def is_stale(self, threshold_minutes: float | None = None) -> bool:
        """True if no rate is active or the active one is at least threshold old.

        A storage error counts as stale so the caller tries to refresh.
        """
        if threshold_minutes is None:
            threshold_minutes = self._settings.auto_update.interval_minutes
        try:
            active = await self._store.get_active()
        except Exception:
            logger.warning("staleness_check_failed", exc_info=True)
            return True
        if active is None:
            return True
        return active.age_minutes(self._clock()) >= threshold_minutes

    async def history(self, limit: int = 30) -> list[RateRecord]:
        return await self._store.get_history(limit)

    async def history_range(self, start: datetime, end: datetime) -> list[RateRecord]:
        return await self._store.get_range(start, end)

    async def latest_by_source(self, source: str) -> RateRecord | None:
        return await self._store.get_latest_by_source(source.upper())

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def load_current_rate(self) -> CurrentRate | None:
        """Prime the cache from the active record.

        With an empty history and fetch_on_empty enabled, fetches a rate
        instead. A failed initial fetch leaves the cache empty and the
        manager in FAILED; it is not raised.
        """
        active = await self._store.get_active()
        if active is not None:
            self._current = CurrentRate.from_record(active)
            logger.info(
                "current_rate_loaded",
                rate=str(active.rate),
                source=active.source,
                created_at=active.created_at.isoformat(),
            )
            await self._publish()
            return self._current

        logger.info("no_active_rate_stored")
        if self._settings.auto_update.fetch_on_empty:
            try:
                await self.refresh_rate(self._settings.auto_update.source)
            except RateEngineError:
                pass  # already surfaced as FAILED state
        return self._current

    async def close(self) -> None:
        """Cancel an in-flight fetch so nothing writes after teardown."""
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass
        self._inflight = None
        logger.info("rate_manager_closed")

    # ──────────────────────────────────────────────
    # Write paths
    # ──────────────────────────────────────────────

    async def refresh_rate(self, source_id: str | None = None) -> RateRecord:
        """Fetch a new rate and activate it.

        source_id, when given, is tried first and the configured priority
        list is the fallback. Joins an already running fetch instead of
        starting another. Raises FallbackExhaustedError when every source
        failed; the previous active rate stays in force.
        """
        if self.is_fetching:
            assert self._inflight is not None
            logger.info("refresh_joined_inflight_fetch", source=source_id)
            return await asyncio.shield(self._inflight)

        order = fallback_order(source_id, self._settings.fetch.priority)
        self._inflight = asyncio.create_task(self._fetch_and_activate(order))
        return await self._inflight

    async def refresh_if_stale(
        self,
        threshold_minutes: float | None = None,
        source_id: str | None = None,
    ) -> RateRecord | None:
        """Refresh only when the active rate is stale and no fetch is running.

        Returns the new record, or None when nothing was due. Used by the
        auto updater; never overlaps an in-flight fetch.
        """
        if self.is_fetching:
            logger.debug("auto_refresh_skipped_inflight")
            return None
        if not await self.is_stale(threshold_minutes):
            return None
        with structlog.contextvars.bound_contextvars(trigger="auto"):
            return await self.refresh_rate(source_id or self._settings.auto_update.source)

    async def set_manual_rate(self, value: object) -> RateRecord:
        """Activate an operator-entered rate through the normal write path.

        Raises InvalidRateError for non-numeric, non-positive or
        out-of-bounds input before anything is written.
        """
        try:
            rate = self._store.bounds.validate(value)
        except InvalidRateError as e:
            logger.warning("manual_rate_rejected", value=repr(value), reason=str(e))
            self._last_error = str(e)
            await self._publish()
            raise

        with structlog.contextvars.bound_contextvars(trigger="manual"):
            record = await self._store.insert_and_activate(MANUAL_SOURCE, rate)
            await self._activate(record)
        return record

    async def update_rate_local(self, value: object) -> CurrentRate:
        """Change the served rate for display only, without writing storage."""
        rate = self._store.bounds.validate(value)
        previous = self._current
        self._current = CurrentRate(
            rate=rate,
            source=previous.source if previous is not None else MANUAL_SOURCE,
            updated_at=self._clock(),
            record_id=None,
            persisted=False,
        )
        logger.info("rate_updated_locally", rate=str(rate))
        await self._publish()
        return self._current

    async def acknowledge(self) -> None:
        """Return to IDLE once the caller has observed ACTIVATED or FAILED."""
        if self._state in (RateState.ACTIVATED, RateState.FAILED):
            self._state = RateState.IDLE
            await self._publish()

    async def reconcile_dependents(self) -> RecalculationResult | None:
        """Re-run recalculation against the active rate.

        Safe to repeat; heals receivables missed by an earlier pass.
        Returns None when no rate is active yet.
        """
        active = await self._store.get_active()
        if active is None:
            logger.info("reconcile_skipped_no_active_rate")
            return None
        return await self._recalculate()

    async def compare_sources(
        self, source_ids: list[str] | None = None
    ) -> list[SourceComparison]:
        """Quote every comparison source for reporting.

        The result never changes the active rate.
        """
        ids = source_ids if source_ids is not None else self._settings.fetch.compare_sources
        quotes = await self._fetcher.fetch_all(ids)
        baseline = self._current.rate if self._current is not None else None
        return [
            SourceComparison(
                quote=q,
                change_pct=rate_change_pct(baseline, q.rate) if q.rate is not None else None,
            )
            for q in quotes
        ]

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    async def _fetch_and_activate(self, order: list[str]) -> RateRecord:
        """FETCHING -> ACTIVATED | FAILED for one fallback chain."""
        self._state = RateState.FETCHING
        self._loading = True
        self._last_error = None
        await self._publish()

        logger.info("rate_refresh_started", sources=order)
        try:
            quote = await self._fetcher.fetch_with_fallback(order)
            assert quote.rate is not None
            record = await self._store.insert_and_activate(quote.source, quote.rate)
        except asyncio.CancelledError:
            self._loading = False
            self._state = RateState.IDLE
            await asyncio.shield(self._publish())
            raise
        except Exception as e:
            self._state = RateState.FAILED
            self._loading = False
            self._last_error = str(e)
            logger.error("rate_refresh_failed", error=str(e))
            await self._publish()
            raise

        await self._activate(record)
        return record

    async def _activate(self, record: RateRecord) -> None:
        """Cache, notify and recalculate after a successful store write."""
        previous = self._current
        self._current = CurrentRate.from_record(record)
        self._state = RateState.ACTIVATED
        self._loading = False
        self._last_error = None

        logger.info(
            "current_rate_changed",
            source=record.source,
            rate=str(record.rate),
            change_pct=str(rate_change_pct(previous.rate if previous else None, record.rate)),
        )
        await self._publish()

        await self._recalculate()
        await self._publish()

    async def _recalculate(self) -> RecalculationResult | None:
        """Run one recalculation pass against the active rate, never raising.

        Passes are serialized and each one reads the active rate only after
        taking the lock, so a pass queued behind a slower one always writes
        the newest rate last.
        """
        async with self._recalc_lock:
            rate: Decimal | None = None
            try:
                active = await self._store.get_active()
                if active is None:
                    return None
                rate = active.rate
                result = await self._recalculation.recalculate_on_rate_change(rate)
            except Exception:
                self._needs_reconciliation = True
                logger.error("recalculation_failed", rate=str(rate), exc_info=True)
                return None

            self._last_recalculation = result
            self._needs_reconciliation = result.failed > 0
            return result

    async def _publish(self) -> None:
        await self._notifier.publish(self.snapshot())
