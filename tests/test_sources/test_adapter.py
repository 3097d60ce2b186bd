"""Tests for HttpRateSourceAdapter and payload parsing.

HTTP traffic goes through httpx.MockTransport; no real provider is called.
"""

from decimal import Decimal

import httpx
import pytest

from posfx.config import FetchSettings
from posfx.exceptions import SourceError
from posfx.sources.adapter import HttpRateSourceAdapter, parse_rate_payload
from posfx.sources.registry import SOURCES


def _adapter(handler, **settings_kwargs) -> HttpRateSourceAdapter:
    settings = FetchSettings(request_timeout=1.0, **settings_kwargs)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpRateSourceAdapter(settings, client=client)


class TestParseRatePayload:
    """Field selection and validation on decoded JSON bodies."""

    def test_price_field(self) -> None:
        assert parse_rate_payload("BCV", {"price": 36.5}) == Decimal("36.5")

    def test_promedio_used_when_price_missing(self) -> None:
        assert parse_rate_payload("BCV", {"promedio": "37.10"}) == Decimal("37.10")

    def test_rate_field_last(self) -> None:
        assert parse_rate_payload("BCV", {"rate": 38}) == Decimal("38")

    def test_price_preferred_over_other_fields(self) -> None:
        payload = {"rate": 1, "promedio": 2, "price": 3}
        assert parse_rate_payload("BCV", payload) == Decimal("3")

    def test_null_field_is_skipped(self) -> None:
        assert parse_rate_payload("BCV", {"price": None, "rate": "40"}) == Decimal("40")

    @pytest.mark.parametrize("bad", [0, -5, "abc", "NaN", True])
    def test_invalid_value_rejected(self, bad) -> None:
        with pytest.raises(SourceError) as exc_info:
            parse_rate_payload("BCV", {"price": bad})
        assert exc_info.value.source_id == "BCV"

    def test_invalid_first_field_does_not_fall_through(self) -> None:
        with pytest.raises(SourceError):
            parse_rate_payload("BCV", {"price": "abc", "rate": 36})

    def test_no_known_field(self) -> None:
        with pytest.raises(SourceError, match="no recognized rate field"):
            parse_rate_payload("BCV", {"value": 36})

    def test_non_object_payload(self) -> None:
        with pytest.raises(SourceError, match="unexpected payload type"):
            parse_rate_payload("BCV", [36.5])


class TestHttpRateSourceAdapter:
    """Transport, status and decoding failures all surface as SourceError."""

    @pytest.mark.asyncio
    async def test_fetch_success(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"price": 36.5})

        async with _adapter(handler) as adapter:
            rate = await adapter.fetch("bcv")

        assert rate == Decimal("36.5")
        assert seen == [SOURCES["BCV"].api_url]

    @pytest.mark.asyncio
    async def test_url_override(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"promedio": 37})

        overrides = {"BINANCE": "http://mirror.local/binance"}
        async with _adapter(handler, url_overrides=overrides) as adapter:
            assert await adapter.fetch("BINANCE") == Decimal("37")

        assert seen == ["http://mirror.local/binance"]

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "down"})

        async with _adapter(handler) as adapter:
            with pytest.raises(SourceError, match="HTTP 503"):
                await adapter.fetch("BCV")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _adapter(handler) as adapter:
            with pytest.raises(SourceError, match="timed out"):
                await adapter.fetch("DOLAR_TODAY")

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _adapter(handler) as adapter:
            with pytest.raises(SourceError, match="request failed"):
                await adapter.fetch("BCV")

    @pytest.mark.asyncio
    async def test_malformed_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        async with _adapter(handler) as adapter:
            with pytest.raises(SourceError, match="not valid JSON"):
                await adapter.fetch("BCV")

    @pytest.mark.asyncio
    async def test_missing_field(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"monitors": {}})

        async with _adapter(handler) as adapter:
            with pytest.raises(SourceError, match="no recognized rate field"):
                await adapter.fetch("BCV")

    @pytest.mark.asyncio
    async def test_unknown_source(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with _adapter(handler) as adapter:
            with pytest.raises(SourceError, match="unknown source"):
                await adapter.fetch("NOPE")

    @pytest.mark.asyncio
    async def test_manual_has_no_endpoint(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with _adapter(handler) as adapter:
            with pytest.raises(SourceError, match="no API endpoint"):
                await adapter.fetch("MANUAL")
