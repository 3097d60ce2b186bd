"""JSON endpoints exposing the rate engine to the POS UI and automation."""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from posfx.api.schemas import (
    comparison_to_dict,
    record_to_dict,
    recalculation_to_dict,
    snapshot_to_dict,
)
from posfx.exceptions import FallbackExhaustedError, InvalidRateError
from posfx.rates.manager import RateManager

log = structlog.get_logger(__name__)

router = APIRouter()


def _manager(request: Request) -> RateManager:
    return request.app.state.rate_manager


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.get("/rate")
async def get_rate(request: Request) -> JSONResponse:
    """Current rate with loading/error state."""
    return JSONResponse(content=snapshot_to_dict(_manager(request).snapshot()))


@router.get("/rate/stale")
async def get_staleness(
    request: Request,
    threshold_minutes: float | None = Query(default=None, gt=0),
) -> JSONResponse:
    """Whether the active rate is older than threshold_minutes."""
    stale = await _manager(request).is_stale(threshold_minutes)
    return JSONResponse(content={"stale": stale, "threshold_minutes": threshold_minutes})


@router.post("/rate/refresh")
async def refresh_rate(request: Request, source: str | None = None) -> JSONResponse:
    """Fetch a new rate, trying source first and then the priority list."""
    manager = _manager(request)
    try:
        record = await manager.refresh_rate(source)
    except FallbackExhaustedError as e:
        log.warning("api_refresh_failed", source=source, error=str(e))
        return _error(503, str(e))
    except InvalidRateError as e:
        # Provider answered, but with a value outside the plausibility bounds
        log.warning("api_refresh_rejected", source=source, error=str(e))
        return _error(502, str(e))
    return JSONResponse(
        content={
            "record": record_to_dict(record),
            "snapshot": snapshot_to_dict(manager.snapshot()),
        }
    )


@router.post("/rate/manual")
async def set_manual_rate(request: Request) -> JSONResponse:
    """Activate an operator-entered rate.

    Expects JSON body with: rate (number or numeric string).
    """
    try:
        body = await request.json()
    except Exception:
        return _error(400, "Invalid JSON body")
    if not isinstance(body, dict) or "rate" not in body:
        return _error(400, "Missing required field: rate")

    manager = _manager(request)
    try:
        record = await manager.set_manual_rate(body["rate"])
    except InvalidRateError as e:
        return _error(422, str(e))
    return JSONResponse(
        content={
            "record": record_to_dict(record),
            "snapshot": snapshot_to_dict(manager.snapshot()),
        }
    )


@router.post("/rate/acknowledge")
async def acknowledge(request: Request) -> JSONResponse:
    """Move an ACTIVATED/FAILED manager back to IDLE."""
    manager = _manager(request)
    await manager.acknowledge()
    return JSONResponse(content=snapshot_to_dict(manager.snapshot()))


@router.get("/rate/history")
async def get_history(
    request: Request,
    limit: int = Query(default=30, ge=1, le=1000),
) -> JSONResponse:
    """Most recent rate records, newest first."""
    records = await _manager(request).history(limit)
    return JSONResponse(content=[record_to_dict(r) for r in records])


@router.get("/rate/range")
async def get_range(request: Request, start: datetime, end: datetime) -> JSONResponse:
    """Rate records created between start and end, oldest first."""
    if end < start:
        return _error(400, "end must not be before start")
    records = await _manager(request).history_range(start, end)
    return JSONResponse(content=[record_to_dict(r) for r in records])


@router.get("/rate/sources/compare")
async def compare_sources(request: Request) -> JSONResponse:
    """Quote every comparison source. Reporting only; never activates a rate."""
    comparisons = await _manager(request).compare_sources()
    return JSONResponse(content=[comparison_to_dict(c) for c in comparisons])


@router.get("/rate/sources/{source}/latest")
async def get_latest_by_source(request: Request, source: str) -> JSONResponse:
    """Newest record produced by one source."""
    record = await _manager(request).latest_by_source(source)
    if record is None:
        return _error(404, f"No rate recorded for source {source.upper()}")
    return JSONResponse(content=record_to_dict(record))


@router.post("/receivables/reconcile")
async def reconcile_receivables(request: Request) -> JSONResponse:
    """Re-run receivable recalculation against the active rate."""
    result = await _manager(request).reconcile_dependents()
    if result is None:
        return _error(409, "No active exchange rate")
    return JSONResponse(content=recalculation_to_dict(result))
