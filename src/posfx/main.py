"""Entry point for the POS exchange-rate engine.

Wires all components together, optionally embeds the FastAPI automation
API, and starts the auto updater. When the API is enabled (default), the
engine and the web server share a single asyncio event loop via uvicorn's
programmatic API and FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown in headless mode.

Component wiring order (in _build_components):
1. RateDatabase (shared SQLite connection)
2. RateStore (exchange_rates history, single active record)
3. HttpRateSourceAdapter + FallbackFetcher (provider access)
4. SqliteReceivableRepository + RecalculationService (dependents)
5. RateNotifier + RateManager (state machine, cache, subscriptions)
6. AutoUpdater (staleness-driven refresh loop)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from posfx.accounts.receivables import SqliteReceivableRepository
from posfx.accounts.recalculation import RecalculationService
from posfx.config import AppSettings
from posfx.data.database import RateDatabase
from posfx.data.rate_store import RateStore
from posfx.logging import get_logger, setup_logging
from posfx.models import RateBounds
from posfx.rates.manager import RateManager
from posfx.rates.notifier import RateNotifier
from posfx.rates.scheduler import AutoUpdater
from posfx.sources.adapter import HttpRateSourceAdapter
from posfx.sources.fetcher import FallbackFetcher


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build the engine's dependency graph from settings.

    Note: Does NOT connect the database -- that happens in the lifespan
    (API mode) or run() (headless mode).
    """
    database = RateDatabase(settings.storage.db_path)
    bounds = RateBounds(settings.rate.min_rate, settings.rate.max_rate)
    store = RateStore(
        database,
        bounds,
        local_currency=settings.rate.local_currency,
    )

    adapter = HttpRateSourceAdapter(settings.fetch)
    fetcher = FallbackFetcher(adapter, settings.fetch.priority, bounds)

    receivables = SqliteReceivableRepository(
        database,
        local_currency=settings.rate.local_currency,
        precision=settings.accounts.display_precision,
    )
    recalculation = RecalculationService(
        receivables, precision=settings.accounts.display_precision
    )

    notifier = RateNotifier()
    manager = RateManager(
        settings=settings,
        store=store,
        fetcher=fetcher,
        recalculation=recalculation,
        notifier=notifier,
    )
    auto_updater = AutoUpdater(manager, settings.auto_update)

    return {
        "database": database,
        "store": store,
        "adapter": adapter,
        "fetcher": fetcher,
        "receivables": receivables,
        "recalculation": recalculation,
        "notifier": notifier,
        "rate_manager": manager,
        "auto_updater": auto_updater,
    }


async def _start_engine(settings: AppSettings, components: dict[str, Any]) -> None:
    """Connect storage, prime the current rate, and start auto refresh."""
    await components["database"].connect()
    await components["rate_manager"].load_current_rate()
    if settings.auto_update.enabled:
        await components["auto_updater"].start()


async def _stop_engine(components: dict[str, Any]) -> None:
    """Stop background work first, then release the HTTP client and database."""
    await components["auto_updater"].stop()
    await components["rate_manager"].close()
    await components["adapter"].close()
    await components["database"].close()


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set stop_event on SIGINT/SIGTERM.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("posfx.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage engine component lifecycle within the FastAPI application.

    On startup: stores components on app.state, connects storage, loads the
    current rate, starts the auto updater, and subscribes the WebSocket hub.

    On shutdown: unsubscribes the hub and tears the engine down.
    """
    logger = get_logger("posfx.main")
    settings = app.state.settings
    components = app.state.components

    app.state.rate_manager = components["rate_manager"]
    app.state.receivables = components["receivables"]
    app.state.auto_updater = components["auto_updater"]

    unsubscribe = components["rate_manager"].subscribe(app.state.hub.on_snapshot)

    await _start_engine(settings, components)
    logger.info("lifespan_started", auto_update=settings.auto_update.enabled)

    yield

    unsubscribe()
    await _stop_engine(components)
    logger.info("rate_engine_stopped")


async def run() -> None:
    """Run the exchange-rate engine.

    When the API is enabled (API_ENABLED=true, the default):
    - Creates the FastAPI app with lifespan
    - Runs engine and API in a single asyncio event loop via uvicorn

    When the API is disabled (API_ENABLED=false):
    - Runs the engine headless until SIGINT/SIGTERM
    """
    settings = AppSettings()

    setup_logging(settings.log_level)
    logger = get_logger("posfx.main")

    components = _build_components(settings)

    if settings.api.enabled:
        from posfx.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_api",
            host=settings.api.host,
            port=settings.api.port,
            db_path=settings.storage.db_path,
        )

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        stop_event = asyncio.Event()
        _setup_signal_handlers(stop_event)

        logger.info(
            "starting_headless",
            db_path=settings.storage.db_path,
            interval_minutes=settings.auto_update.interval_minutes,
            source=settings.auto_update.source,
        )

        try:
            await _start_engine(settings, components)
            await stop_event.wait()
        finally:
            await _stop_engine(components)
            logger.info("rate_engine_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
