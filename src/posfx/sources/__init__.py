"""Rate providers -- registry, HTTP adapters, and priority-ordered fallback."""

from posfx.sources.adapter import HttpRateSourceAdapter, RateProvider, parse_rate_payload
from posfx.sources.fetcher import FallbackFetcher
from posfx.sources.registry import SOURCES, SourceDefinition, fallback_order, get_source

__all__ = [
    "SOURCES",
    "FallbackFetcher",
    "HttpRateSourceAdapter",
    "RateProvider",
    "SourceDefinition",
    "fallback_order",
    "get_source",
    "parse_rate_payload",
]
