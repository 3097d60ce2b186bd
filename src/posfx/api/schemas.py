"""JSON serialization of engine objects for the automation API.

Decimals are rendered as strings so no precision is lost in transit.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from posfx.models import (
    CurrentRate,
    RateRecord,
    RateSnapshot,
    RecalculationResult,
    SourceComparison,
)


def _decimal_to_str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def record_to_dict(record: RateRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "source": record.source,
        "rate": str(record.rate),
        "from_currency": record.from_currency,
        "to_currency": record.to_currency,
        "is_active": record.is_active,
        "created_at": record.created_at.isoformat(),
    }


def current_to_dict(current: CurrentRate | None) -> dict[str, Any] | None:
    if current is None:
        return None
    return {
        "rate": str(current.rate),
        "source": current.source,
        "updated_at": current.updated_at.isoformat(),
        "record_id": current.record_id,
        "persisted": current.persisted,
    }


def recalculation_to_dict(result: RecalculationResult | None) -> dict[str, Any] | None:
    if result is None:
        return None
    return {
        "updated": result.updated,
        "unchanged": result.unchanged,
        "failed": result.failed,
        "failed_ids": list(result.failed_ids),
    }


def snapshot_to_dict(snapshot: RateSnapshot) -> dict[str, Any]:
    return {
        "state": snapshot.state.value,
        "current": current_to_dict(snapshot.current),
        "loading": snapshot.loading,
        "last_error": snapshot.last_error,
        "last_recalculation": recalculation_to_dict(snapshot.last_recalculation),
    }


def comparison_to_dict(item: SourceComparison) -> dict[str, Any]:
    return {
        "source": item.quote.source,
        "rate": _decimal_to_str(item.quote.rate),
        "ok": item.quote.ok,
        "error": item.quote.error,
        "fetched_at": item.quote.fetched_at.isoformat(),
        "change_pct": _decimal_to_str(item.change_pct),
    }
