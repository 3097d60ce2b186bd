"""Shared test fixtures for the exchange-rate engine."""

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio

from posfx.accounts.receivables import SqliteReceivableRepository
from posfx.accounts.recalculation import RecalculationService
from posfx.config import AppSettings, AutoUpdateSettings, FetchSettings, StorageSettings
from posfx.data.database import RateDatabase
from posfx.data.rate_store import RateStore
from posfx.exceptions import SourceError
from posfx.models import RateBounds
from posfx.rates.manager import RateManager
from posfx.rates.notifier import RateNotifier
from posfx.sources.adapter import RateProvider
from posfx.sources.fetcher import FallbackFetcher

START_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


class StubProvider(RateProvider):
    """RateProvider answering from a per-source table.

    A Decimal value is returned as the rate, a str is raised as the
    SourceError reason, and a missing entry fails with "unreachable".
    Set gate to an Event to hold every fetch until it is set.
    """

    def __init__(self) -> None:
        self.responses: dict[str, Decimal | str] = {}
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None

    async def fetch(self, source_id: str) -> Decimal:
        key = source_id.upper()
        self.calls.append(key)
        if self.gate is not None:
            await self.gate.wait()
        result = self.responses.get(key, "unreachable")
        if isinstance(result, str):
            raise SourceError(key, result)
        return result


@pytest.fixture
def mock_settings(tmp_path: Path) -> AppSettings:
    """Return AppSettings with test defaults (temp database, no startup fetch)."""
    return AppSettings(
        log_level="DEBUG",
        fetch=FetchSettings(
            request_timeout=1.0,
            priority=["BCV", "DOLAR_TODAY", "BINANCE"],
            compare_sources=["BCV", "DOLAR_TODAY", "BINANCE", "PARALLEL"],
        ),
        auto_update=AutoUpdateSettings(
            interval_minutes=30,
            check_interval_seconds=0.01,
            source="BCV",
            fetch_on_empty=False,
        ),
        storage=StorageSettings(db_path=str(tmp_path / "posfx.db")),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bounds() -> RateBounds:
    return RateBounds(min_rate=Decimal("0.1"), max_rate=Decimal("1000"))


@pytest_asyncio.fixture
async def database(mock_settings: AppSettings) -> AsyncIterator[RateDatabase]:
    """Connected database in a temp directory, closed after the test."""
    db = RateDatabase(mock_settings.storage.db_path)
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def store(database: RateDatabase, bounds: RateBounds, clock: FakeClock) -> RateStore:
    return RateStore(database, bounds, local_currency="VES", clock=clock)


@pytest.fixture
def receivables(database: RateDatabase, clock: FakeClock) -> SqliteReceivableRepository:
    return SqliteReceivableRepository(database, local_currency="VES", clock=clock)


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def fetcher(
    provider: StubProvider, mock_settings: AppSettings, bounds: RateBounds
) -> FallbackFetcher:
    return FallbackFetcher(provider, mock_settings.fetch.priority, bounds)


@pytest_asyncio.fixture
async def manager(
    mock_settings: AppSettings,
    store: RateStore,
    fetcher: FallbackFetcher,
    receivables: SqliteReceivableRepository,
    clock: FakeClock,
) -> AsyncIterator[RateManager]:
    """RateManager wired to the stub provider and a real temp database."""
    rate_manager = RateManager(
        settings=mock_settings,
        store=store,
        fetcher=fetcher,
        recalculation=RecalculationService(receivables),
        notifier=RateNotifier(),
        clock=clock,
    )
    yield rate_manager
    await rate_manager.close()
