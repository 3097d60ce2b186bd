"""Receivables collaborator: the narrow contract the rate engine consumes.

Recalculation depends only on ReceivableRepository. SqliteReceivableRepository
is the local implementation over the accounts_receivable table; it also
books and settles debts so the point-of-sale screens and tests have a
real ledger to work against.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from posfx.data.database import RateDatabase, from_db_timestamp, to_db_timestamp
from posfx.exceptions import InvalidRateError, RecordNotFoundError
from posfx.logging import get_logger
from posfx.models import USD, Receivable, ReceivableStatus, parse_rate, utc_now

logger = get_logger(__name__)

_COLUMNS = (
    "id, customer_name, description, amount, base_currency, base_amount_usd, "
    "exchange_rate_at_creation, status, created_at, updated_at"
)


def quantize_amount(value: Decimal, places: int = 2) -> Decimal:
    """Round a money amount half-up to the given number of decimal places."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def _row_to_receivable(row) -> Receivable:  # type: ignore[no-untyped-def]
    return Receivable(
        id=row[0],
        customer_name=row[1],
        description=row[2],
        amount=Decimal(row[3]),
        base_currency=row[4],
        base_amount_usd=Decimal(row[5]) if row[5] is not None else None,
        exchange_rate_at_creation=Decimal(row[6]) if row[6] is not None else None,
        status=ReceivableStatus(row[7]),
        created_at=from_db_timestamp(row[8]),
        updated_at=from_db_timestamp(row[9]),
    )


class ReceivableRepository(ABC):
    """What the recalculation service needs from the accounts module."""

    @abstractmethod
    async def find_open_usd_receivables(self) -> list[Receivable]:
        """Return every open receivable whose principal is denominated in USD."""
        ...

    @abstractmethod
    async def update_receivable_amount(self, receivable_id: int, new_amount: Decimal) -> bool:
        """Persist a new local-currency amount. Returns False if nothing was updated."""
        ...


class SqliteReceivableRepository(ReceivableRepository):
    """accounts_receivable table access on the shared RateDatabase.

    Args:
        database: Connected RateDatabase.
        local_currency: Code for receivables booked in local currency.
        precision: Decimal places for local-currency amounts.
        clock: Source of created_at/updated_at timestamps.
    """

    def __init__(
        self,
        database: RateDatabase,
        local_currency: str = "VES",
        precision: int = 2,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._database = database
        self._local_currency = local_currency
        self._precision = precision
        self._clock = clock

    async def create_receivable(
        self,
        customer_name: str,
        amount: Decimal,
        currency: str,
        rate: Decimal | None = None,
        description: str | None = None,
    ) -> Receivable:
        """Book a new debt.

        USD debts keep amount as base_amount_usd, store rate as
        exchange_rate_at_creation, and owe amount * rate in local currency.
        Local-currency debts are stored as-is and never recalculated.
        """
        currency = currency.upper()
        now = to_db_timestamp(self._clock())

        if currency == USD:
            if rate is None:
                raise InvalidRateError("A USD receivable needs the rate in effect")
            usd_amount = Decimal(amount)
            rate_value = parse_rate(rate)
            local_amount = quantize_amount(usd_amount * rate_value, self._precision)
            params = (
                customer_name,
                description,
                str(local_amount),
                USD,
                str(usd_amount),
                str(rate_value),
                ReceivableStatus.PENDING.value,
                now,
                now,
            )
        elif currency == self._local_currency:
            local_amount = quantize_amount(Decimal(amount), self._precision)
            params = (
                customer_name,
                description,
                str(local_amount),
                currency,
                None,
                None,
                ReceivableStatus.PENDING.value,
                now,
                now,
            )
        else:
            raise ValueError(f"Unsupported receivable currency: {currency}")

        async with self._database.transaction() as db:
            cursor = await db.execute(
                "INSERT INTO accounts_receivable "
                "(customer_name, description, amount, base_currency, base_amount_usd, "
                "exchange_rate_at_creation, status, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                params,
            )
            receivable_id = cursor.lastrowid

        logger.info(
            "receivable_created",
            receivable_id=receivable_id,
            currency=currency,
            amount=str(local_amount),
        )
        assert receivable_id is not None
        return await self.get_receivable(receivable_id)

    async def get_receivable(self, receivable_id: int) -> Receivable:
        """Load one receivable or raise RecordNotFoundError."""
        cursor = await self._database.db.execute(
            f"SELECT {_COLUMNS} FROM accounts_receivable WHERE id = ?",
            (receivable_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"Receivable {receivable_id} not found")
        return _row_to_receivable(row)

    async def list_receivables(self, open_only: bool = False) -> list[Receivable]:
        """All receivables, newest first."""
        query = f"SELECT {_COLUMNS} FROM accounts_receivable"
        params: tuple = ()
        if open_only:
            query += " WHERE status != ?"
            params = (ReceivableStatus.PAID.value,)
        query += " ORDER BY created_at DESC, id DESC"
        cursor = await self._database.db.execute(query, params)
        rows = await cursor.fetchall()
        return [_row_to_receivable(row) for row in rows]

    async def mark_paid(self, receivable_id: int) -> None:
        """Settle a receivable; paid debts are never recalculated again."""
        async with self._database.transaction() as db:
            cursor = await db.execute(
                "UPDATE accounts_receivable SET status = ?, updated_at = ? WHERE id = ?",
                (
                    ReceivableStatus.PAID.value,
                    to_db_timestamp(self._clock()),
                    receivable_id,
                ),
            )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Receivable {receivable_id} not found")
        logger.info("receivable_paid", receivable_id=receivable_id)

    async def find_open_usd_receivables(self) -> list[Receivable]:
        cursor = await self._database.db.execute(
            f"SELECT {_COLUMNS} FROM accounts_receivable "
            "WHERE base_currency = ? AND status != ? AND base_amount_usd IS NOT NULL "
            "ORDER BY id ASC",
            (USD, ReceivableStatus.PAID.value),
        )
        rows = await cursor.fetchall()
        return [_row_to_receivable(row) for row in rows]

    async def update_receivable_amount(self, receivable_id: int, new_amount: Decimal) -> bool:
        """Only the amount column changes; a debt paid in the meantime is left alone."""
        async with self._database.transaction() as db:
            cursor = await db.execute(
                "UPDATE accounts_receivable SET amount = ?, updated_at = ? "
                "WHERE id = ? AND status != ?",
                (
                    str(new_amount),
                    to_db_timestamp(self._clock()),
                    receivable_id,
                    ReceivableStatus.PAID.value,
                ),
            )
        return cursor.rowcount == 1
