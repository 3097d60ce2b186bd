"""Tests for the AutoUpdater refresh loop."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from posfx.config import AutoUpdateSettings
from posfx.rates.manager import RateManager
from posfx.rates.scheduler import AutoUpdater


@pytest.fixture
def auto_settings() -> AutoUpdateSettings:
    return AutoUpdateSettings(interval_minutes=30, check_interval_seconds=0.01, source="BCV")


class TestTick:
    @pytest.mark.asyncio
    async def test_tick_refreshes_stale_rate(
        self, manager: RateManager, provider, clock, store, auto_settings
    ) -> None:
        provider.responses = {"BCV": Decimal("36")}
        updater = AutoUpdater(manager, auto_settings)

        assert await updater.tick()  # empty store is stale
        clock.advance(10)
        assert not await updater.tick()
        clock.advance(25)
        provider.responses = {"BCV": Decimal("37")}
        assert await updater.tick()

        assert await store.count() == 2
        assert manager.get_current_rate().rate == Decimal("37")

    @pytest.mark.asyncio
    async def test_tick_failure_keeps_previous_rate(
        self, manager: RateManager, provider, clock, auto_settings
    ) -> None:
        provider.responses = {"BCV": Decimal("36")}
        updater = AutoUpdater(manager, auto_settings)
        await updater.tick()
        clock.advance(31)
        provider.responses = {}

        assert not await updater.tick()

        assert manager.get_current_rate().rate == Decimal("36")

    @pytest.mark.asyncio
    async def test_tick_reconciles_when_flagged(self, auto_settings) -> None:
        manager = MagicMock(spec=RateManager)
        manager.refresh_if_stale = AsyncMock(return_value=None)
        manager.reconcile_dependents = AsyncMock()
        manager.needs_reconciliation = True
        updater = AutoUpdater(manager, auto_settings)

        await updater.tick()

        manager.refresh_if_stale.assert_awaited_once_with(threshold_minutes=30, source_id="BCV")
        manager.reconcile_dependents.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, auto_settings) -> None:
        gate = asyncio.Event()

        async def slow_refresh(**kwargs):
            await gate.wait()
            return None

        manager = MagicMock(spec=RateManager)
        manager.refresh_if_stale = AsyncMock(side_effect=slow_refresh)
        manager.needs_reconciliation = False
        updater = AutoUpdater(manager, auto_settings)

        first = asyncio.create_task(updater.tick())
        await asyncio.sleep(0)
        assert not await updater.tick()
        gate.set()
        await first

        assert manager.refresh_if_stale.await_count == 1


class TestLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, manager: RateManager, provider, store, auto_settings) -> None:
        provider.responses = {"BCV": Decimal("36")}
        updater = AutoUpdater(manager, auto_settings)

        await updater.start()
        await updater.start()  # idempotent
        assert updater.is_running
        for _ in range(100):
            if await store.count():
                break
            await asyncio.sleep(0.01)
        await updater.stop()

        assert not updater.is_running
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_loop_survives_tick_errors(self, auto_settings) -> None:
        calls = 0

        async def flaky(**kwargs):
            nonlocal calls
            calls += 1
            raise RuntimeError("unexpected")

        manager = MagicMock(spec=RateManager)
        manager.refresh_if_stale = AsyncMock(side_effect=flaky)
        manager.needs_reconciliation = False
        updater = AutoUpdater(manager, auto_settings)

        await updater.start()
        for _ in range(100):
            if calls >= 2:
                break
            await asyncio.sleep(0.01)
        await updater.stop()

        assert calls >= 2
