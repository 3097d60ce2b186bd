"""Known USD/VES rate providers.

All public providers are reached through the pydolarvenezuela aggregator,
which answers one JSON document per monitor page. MANUAL has no endpoint;
it only tags rates typed in by an operator.
"""

from dataclasses import dataclass

from posfx.models import MANUAL_SOURCE

_API_BASE = "https://pydolarvenezuela-api.vercel.app/api/v1/dollar/page"


@dataclass(frozen=True)
class SourceDefinition:
    """Static description of a rate provider."""

    id: str
    name: str
    url: str | None
    api_url: str | None
    priority: int
    official: bool = False

    @property
    def fetchable(self) -> bool:
        return self.api_url is not None


SOURCES: dict[str, SourceDefinition] = {
    "BCV": SourceDefinition(
        id="BCV",
        name="Banco Central de Venezuela",
        url="https://www.bcv.org.ve/",
        api_url=f"{_API_BASE}/bcv",
        priority=1,
        official=True,
    ),
    "DOLAR_TODAY": SourceDefinition(
        id="DOLAR_TODAY",
        name="DolarToday",
        url="https://dolartoday.com/",
        api_url=f"{_API_BASE}/dolartoday",
        priority=2,
    ),
    "BINANCE": SourceDefinition(
        id="BINANCE",
        name="Binance P2P",
        url="https://www.binance.com/",
        api_url=f"{_API_BASE}/binance",
        priority=3,
    ),
    "PARALLEL": SourceDefinition(
        id="PARALLEL",
        name="Monitor Dolar",
        url="https://monitordolarvenezuela.com/",
        api_url=f"{_API_BASE}/monitordolar",
        priority=4,
    ),
    MANUAL_SOURCE: SourceDefinition(
        id=MANUAL_SOURCE,
        name="Manual",
        url=None,
        api_url=None,
        priority=999,
    ),
}

DEFAULT_SOURCE = "BCV"


def get_source(source_id: str) -> SourceDefinition | None:
    """Look up a provider by id (case-insensitive)."""
    return SOURCES.get(source_id.upper())


def fetchable_sources() -> list[str]:
    """Ids of every provider with an endpoint, in priority order."""
    return [
        s.id
        for s in sorted(SOURCES.values(), key=lambda s: s.priority)
        if s.fetchable
    ]


def fallback_order(preferred: str | None, priority: list[str]) -> list[str]:
    """Put the preferred source first, followed by the rest of priority.

    Duplicates are dropped while keeping first occurrence order.
    """
    ordered = ([preferred.upper()] if preferred else []) + [p.upper() for p in priority]
    return list(dict.fromkeys(ordered))
