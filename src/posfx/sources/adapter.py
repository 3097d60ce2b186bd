"""Rate source adapters: turn one provider's HTTP response into a Decimal rate.

Callers depend only on the RateProvider interface; the httpx details and
per-provider response shapes stay in HttpRateSourceAdapter. Any failure,
whether transport, HTTP status, decoding or validation, is reported as a
single SourceError. No partial or garbage value ever leaves an adapter.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Self

import httpx

from posfx.config import FetchSettings
from posfx.exceptions import InvalidRateError, SourceError
from posfx.logging import get_logger
from posfx.models import parse_rate
from posfx.sources.registry import get_source

logger = get_logger(__name__)

# Field names the aggregator uses for the rate, in order of preference.
RATE_FIELDS = ("price", "promedio", "rate")


class RateProvider(ABC):
    """Abstract interface for anything that can quote the USD rate."""

    @abstractmethod
    async def fetch(self, source_id: str) -> Decimal:
        """Return a validated positive rate for source_id or raise SourceError."""
        ...

    async def close(self) -> None:
        """Release network resources. No-op by default."""


def parse_rate_payload(source_id: str, payload: Any) -> Decimal:
    """Extract the rate from a decoded JSON body.

    The first field in RATE_FIELDS that is present and not null wins; if
    its value is not a finite positive number the payload is rejected
    rather than falling through to the next field.
    """
    if not isinstance(payload, dict):
        raise SourceError(source_id, f"unexpected payload type {type(payload).__name__}")

    for name in RATE_FIELDS:
        raw = payload.get(name)
        if raw is None:
            continue
        try:
            return parse_rate(raw)
        except InvalidRateError as e:
            raise SourceError(source_id, f"invalid '{name}' value: {e}") from None

    raise SourceError(source_id, "no recognized rate field in response")


class HttpRateSourceAdapter(RateProvider):
    """Fetches rates from the registry's HTTP endpoints using httpx.

    One AsyncClient is shared by all sources. url_overrides in settings
    replace registry URLs per source id (useful for mirrors and tests).

    Usage:
        async with HttpRateSourceAdapter(settings.fetch) as adapter:
            rate = await adapter.fetch("BCV")
    """

    def __init__(
        self,
        settings: FetchSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            timeout=settings.request_timeout,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )

    def endpoint_for(self, source_id: str) -> str:
        """Resolve the URL for source_id, raising SourceError if it has none."""
        key = source_id.upper()
        override = self._settings.url_overrides.get(key)
        if override:
            return override

        source = get_source(key)
        if source is None:
            raise SourceError(key, "unknown source")
        if source.api_url is None:
            raise SourceError(key, "source has no API endpoint")
        return source.api_url

    async def fetch(self, source_id: str) -> Decimal:
        """Fetch and validate the current rate from one provider."""
        key = source_id.upper()
        url = self.endpoint_for(key)

        try:
            response = await self._client.get(
                url, timeout=self._settings.request_timeout
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException:
            raise SourceError(
                key, f"timed out after {self._settings.request_timeout}s"
            ) from None
        except httpx.HTTPStatusError as e:
            raise SourceError(key, f"HTTP {e.response.status_code}") from None
        except httpx.HTTPError as e:
            raise SourceError(key, f"request failed: {e!r}") from None
        except ValueError:
            raise SourceError(key, "response body is not valid JSON") from None

        rate = parse_rate_payload(key, payload)
        logger.debug("source_rate_fetched", source=key, rate=str(rate))
        return rate

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
