"""Accounts collaborator contract and dependent receivable recalculation."""

from posfx.accounts.recalculation import RecalculationService
from posfx.accounts.receivables import (
    ReceivableRepository,
    SqliteReceivableRepository,
    quantize_amount,
)

__all__ = [
    "RecalculationService",
    "ReceivableRepository",
    "SqliteReceivableRepository",
    "quantize_amount",
]
