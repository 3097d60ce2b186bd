"""Shared data models for the exchange-rate engine.

CRITICAL: All monetary values and rates use Decimal. Never use float for
amounts or rates; floats coming from JSON or user input go through
parse_rate() first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum

from posfx.exceptions import InvalidRateError

USD = "USD"
MANUAL_SOURCE = "MANUAL"


def utc_now() -> datetime:
    """Timezone-aware current time; the default clock everywhere."""
    return datetime.now(timezone.utc)


class RateState(str, Enum):
    """Rate manager lifecycle state."""

    IDLE = "idle"
    FETCHING = "fetching"
    ACTIVATED = "activated"
    FAILED = "failed"


class ReceivableStatus(str, Enum):
    """Receivable settlement status. Everything except PAID is open."""

    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"


@dataclass(frozen=True)
class RateRecord:
    """An immutable fact about the USD rate at a point in time.

    Created only by RateStore.insert_and_activate. At most one record in
    the history has is_active=True.
    """

    id: int
    source: str
    rate: Decimal
    from_currency: str
    to_currency: str
    is_active: bool
    created_at: datetime

    def age_minutes(self, now: datetime) -> float:
        """Minutes elapsed between created_at and now."""
        return (now - self.created_at).total_seconds() / 60


@dataclass
class Receivable:
    """A customer debt, owned by the accounts collaborator.

    base_amount_usd is the source of truth for USD debts and is never
    touched by recalculation; amount is the local-currency display value.
    """

    id: int
    customer_name: str
    amount: Decimal
    base_currency: str
    base_amount_usd: Decimal | None = None
    exchange_rate_at_creation: Decimal | None = None
    status: ReceivableStatus = ReceivableStatus.PENDING
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status != ReceivableStatus.PAID


@dataclass(frozen=True)
class SourceQuote:
    """Outcome of asking one provider for the rate."""

    source: str
    rate: Decimal | None = None
    error: str | None = None
    fetched_at: datetime = field(default_factory=utc_now)

    @property
    def ok(self) -> bool:
        return self.rate is not None


@dataclass(frozen=True)
class CurrentRate:
    """The rate the process currently serves to synchronous readers.

    record_id is None and persisted is False for display-only local updates.
    """

    rate: Decimal
    source: str
    updated_at: datetime
    record_id: int | None = None
    persisted: bool = True

    @classmethod
    def from_record(cls, record: RateRecord) -> CurrentRate:
        return cls(
            rate=record.rate,
            source=record.source,
            updated_at=record.created_at,
            record_id=record.id,
            persisted=True,
        )


@dataclass(frozen=True)
class SourceComparison:
    """One provider's quote next to the rate currently served."""

    quote: SourceQuote
    change_pct: Decimal | None = None  # versus the current rate


@dataclass
class RecalculationResult:
    """Counts from one dependent recalculation pass."""

    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    failed_ids: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.updated + self.unchanged + self.failed


@dataclass(frozen=True)
class RateSnapshot:
    """Immutable notification payload describing the manager's state."""

    state: RateState
    current: CurrentRate | None
    loading: bool
    last_error: str | None = None
    last_recalculation: RecalculationResult | None = None


def parse_rate(value: object) -> Decimal:
    """Convert user or provider input into a finite positive Decimal.

    Accepts Decimal, int, float and numeric strings. Raises
    InvalidRateError for anything else, including bools, NaN, infinities,
    zero and negatives.
    """
    if value is None or isinstance(value, bool):
        raise InvalidRateError(f"Invalid rate value: {value!r}")
    if isinstance(value, Decimal):
        rate = value
    elif isinstance(value, (int, float, str)):
        try:
            rate = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidRateError(f"Rate is not numeric: {value!r}") from None
    else:
        raise InvalidRateError(f"Unsupported rate type: {type(value).__name__}")

    if not rate.is_finite():
        raise InvalidRateError(f"Rate is not finite: {value!r}")
    if rate <= 0:
        raise InvalidRateError(f"Rate must be positive: {value!r}")
    return rate


@dataclass(frozen=True)
class RateBounds:
    """Sanity bounds applied before any rate is activated."""

    min_rate: Decimal
    max_rate: Decimal

    def validate(self, value: object) -> Decimal:
        """Return the parsed rate, or raise InvalidRateError if implausible."""
        rate = parse_rate(value)
        if rate < self.min_rate or rate > self.max_rate:
            raise InvalidRateError(
                f"Rate {rate} outside allowed range [{self.min_rate}, {self.max_rate}]"
            )
        return rate


def rate_change_pct(old_rate: Decimal | None, new_rate: Decimal) -> Decimal | None:
    """Percentage change from old_rate to new_rate, or None without a baseline."""
    if not old_rate:
        return None
    return ((new_rate - old_rate) / old_rate * 100).quantize(Decimal("0.01"))
