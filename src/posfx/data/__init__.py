"""Rate persistence layer.

Provides the SQLite connection manager and the append-only, single-active
exchange-rate store.
"""

from posfx.data.database import RateDatabase
from posfx.data.rate_store import RateStore

__all__ = [
    "RateDatabase",
    "RateStore",
]
