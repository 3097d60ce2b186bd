"""Append-only exchange-rate history with a single active record.

RateStore is the only component that writes exchange_rates rows, and
insert_and_activate is its only write path. Deactivating the previous
rate and inserting the new one happen inside one serialized transaction,
so concurrent callers can never leave two active rows behind.

CRITICAL: Rates are stored as TEXT in SQLite and restored as Decimal on read.
"""

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

import aiosqlite

from posfx.data.database import RateDatabase, from_db_timestamp, to_db_timestamp
from posfx.logging import get_logger
from posfx.models import USD, RateBounds, RateRecord, utc_now

logger = get_logger(__name__)

_COLUMNS = "id, source, rate, from_currency, to_currency, is_active, created_at"


def _row_to_record(row: aiosqlite.Row | tuple) -> RateRecord:
    return RateRecord(
        id=row[0],
        source=row[1],
        rate=Decimal(row[2]),
        from_currency=row[3],
        to_currency=row[4],
        is_active=bool(row[5]),
        created_at=from_db_timestamp(row[6]),
    )


class RateStore:
    """Typed read/write access to the exchange_rates table.

    Args:
        database: Connected RateDatabase.
        bounds: Plausibility bounds checked before every insert.
        local_currency: Quote currency recorded on each row.
        clock: Source of created_at timestamps (injectable for tests).
    """

    def __init__(
        self,
        database: RateDatabase,
        bounds: RateBounds,
        local_currency: str = "VES",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._database = database
        self._bounds = bounds
        self._local_currency = local_currency
        self._clock = clock

    @property
    def bounds(self) -> RateBounds:
        return self._bounds

    # ──────────────────────────────────────────────
    # Write path
    # ──────────────────────────────────────────────

    async def insert_and_activate(self, source: str, rate: Decimal) -> RateRecord:
        """Validate, deactivate every active rate, and insert rate as active.

        Raises InvalidRateError before touching the database when the rate
        fails the bound check.
        """
        value = self._bounds.validate(rate)
        created_at = self._clock()

        async with self._database.transaction() as db:
            cursor = await db.execute(
                "UPDATE exchange_rates SET is_active = 0 WHERE is_active = 1"
            )
            deactivated = cursor.rowcount
            cursor = await db.execute(
                "INSERT INTO exchange_rates "
                "(source, rate, from_currency, to_currency, is_active, created_at) "
                "VALUES (?, ?, ?, ?, 1, ?)",
                (
                    source,
                    str(value),
                    USD,
                    self._local_currency,
                    to_db_timestamp(created_at),
                ),
            )
            record_id = cursor.lastrowid

        assert record_id is not None
        record = RateRecord(
            id=record_id,
            source=source,
            rate=value,
            from_currency=USD,
            to_currency=self._local_currency,
            is_active=True,
            created_at=from_db_timestamp(to_db_timestamp(created_at)),
        )
        logger.info(
            "rate_activated",
            record_id=record.id,
            source=source,
            rate=str(value),
            deactivated=deactivated,
        )
        return record

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get_active(self) -> RateRecord | None:
        """Return the active rate, or None if no rate was ever stored."""
        cursor = await self._database.db.execute(
            f"SELECT {_COLUMNS} FROM exchange_rates "
            "WHERE is_active = 1 ORDER BY created_at DESC, id DESC LIMIT 1"
        )
        row = await cursor.fetchone()
        return _row_to_record(row) if row is not None else None

    async def get_history(self, limit: int = 30) -> list[RateRecord]:
        """Return up to limit records, newest first."""
        cursor = await self._database.db.execute(
            f"SELECT {_COLUMNS} FROM exchange_rates "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    async def get_range(self, start: datetime, end: datetime) -> list[RateRecord]:
        """Return records created within [start, end], oldest first (chart order)."""
        cursor = await self._database.db.execute(
            f"SELECT {_COLUMNS} FROM exchange_rates "
            "WHERE created_at >= ? AND created_at <= ? "
            "ORDER BY created_at ASC, id ASC",
            (to_db_timestamp(start), to_db_timestamp(end)),
        )
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    async def get_latest_by_source(self, source: str) -> RateRecord | None:
        """Return the newest record produced by source, active or not."""
        cursor = await self._database.db.execute(
            f"SELECT {_COLUMNS} FROM exchange_rates "
            "WHERE source = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (source,),
        )
        row = await cursor.fetchone()
        return _row_to_record(row) if row is not None else None

    async def count(self) -> int:
        """Total number of records in the history."""
        cursor = await self._database.db.execute("SELECT COUNT(*) FROM exchange_rates")
        return (await cursor.fetchone())[0]
