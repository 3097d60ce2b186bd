"""Tests for SqliteReceivableRepository."""

from decimal import Decimal

import pytest

from posfx.accounts.receivables import SqliteReceivableRepository, quantize_amount
from posfx.exceptions import InvalidRateError, RecordNotFoundError
from posfx.models import ReceivableStatus


class TestQuantizeAmount:
    def test_rounds_half_up(self) -> None:
        assert quantize_amount(Decimal("10.005")) == Decimal("10.01")
        assert quantize_amount(Decimal("10.004")) == Decimal("10.00")

    def test_custom_precision(self) -> None:
        assert quantize_amount(Decimal("1.23456"), places=3) == Decimal("1.235")


class TestCreateReceivable:
    @pytest.mark.asyncio
    async def test_usd_receivable_snapshots_rate(
        self, receivables: SqliteReceivableRepository
    ) -> None:
        r = await receivables.create_receivable(
            "Maria", Decimal("100"), "usd", rate=Decimal("36"), description="Invoice 12"
        )

        assert r.base_currency == "USD"
        assert r.base_amount_usd == Decimal("100")
        assert r.exchange_rate_at_creation == Decimal("36")
        assert r.amount == Decimal("3600.00")
        assert r.status == ReceivableStatus.PENDING
        assert r.description == "Invoice 12"
        assert r.is_open

    @pytest.mark.asyncio
    async def test_usd_receivable_requires_rate(
        self, receivables: SqliteReceivableRepository
    ) -> None:
        with pytest.raises(InvalidRateError):
            await receivables.create_receivable("Maria", Decimal("100"), "USD")

    @pytest.mark.asyncio
    async def test_local_receivable_has_no_usd_base(
        self, receivables: SqliteReceivableRepository
    ) -> None:
        r = await receivables.create_receivable("Jose", Decimal("500"), "VES")

        assert r.base_currency == "VES"
        assert r.base_amount_usd is None
        assert r.exchange_rate_at_creation is None
        assert r.amount == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_unsupported_currency(
        self, receivables: SqliteReceivableRepository
    ) -> None:
        with pytest.raises(ValueError, match="Unsupported receivable currency"):
            await receivables.create_receivable("Ana", Decimal("10"), "EUR")


class TestQueriesAndUpdates:
    @pytest.mark.asyncio
    async def test_get_missing_receivable(
        self, receivables: SqliteReceivableRepository
    ) -> None:
        with pytest.raises(RecordNotFoundError):
            await receivables.get_receivable(999)

    @pytest.mark.asyncio
    async def test_find_open_usd_excludes_paid_and_local(
        self, receivables: SqliteReceivableRepository
    ) -> None:
        open_usd = await receivables.create_receivable("A", Decimal("10"), "USD", rate=Decimal("36"))
        paid_usd = await receivables.create_receivable("B", Decimal("20"), "USD", rate=Decimal("36"))
        await receivables.create_receivable("C", Decimal("300"), "VES")
        await receivables.mark_paid(paid_usd.id)

        found = await receivables.find_open_usd_receivables()

        assert [r.id for r in found] == [open_usd.id]

    @pytest.mark.asyncio
    async def test_list_open_only(self, receivables: SqliteReceivableRepository) -> None:
        a = await receivables.create_receivable("A", Decimal("10"), "VES")
        b = await receivables.create_receivable("B", Decimal("20"), "VES")
        await receivables.mark_paid(a.id)

        assert len(await receivables.list_receivables()) == 2
        assert [r.id for r in await receivables.list_receivables(open_only=True)] == [b.id]

    @pytest.mark.asyncio
    async def test_mark_paid_missing(self, receivables: SqliteReceivableRepository) -> None:
        with pytest.raises(RecordNotFoundError):
            await receivables.mark_paid(42)

    @pytest.mark.asyncio
    async def test_update_amount_only_touches_amount(
        self, receivables: SqliteReceivableRepository, clock
    ) -> None:
        r = await receivables.create_receivable("A", Decimal("100"), "USD", rate=Decimal("36"))
        clock.advance(10)

        assert await receivables.update_receivable_amount(r.id, Decimal("4000.00"))

        updated = await receivables.get_receivable(r.id)
        assert updated.amount == Decimal("4000.00")
        assert updated.base_amount_usd == Decimal("100")
        assert updated.exchange_rate_at_creation == Decimal("36")
        assert updated.updated_at is not None and updated.updated_at > r.updated_at

    @pytest.mark.asyncio
    async def test_update_skips_paid_receivable(
        self, receivables: SqliteReceivableRepository
    ) -> None:
        r = await receivables.create_receivable("A", Decimal("100"), "USD", rate=Decimal("36"))
        await receivables.mark_paid(r.id)

        assert not await receivables.update_receivable_amount(r.id, Decimal("4000.00"))
        assert (await receivables.get_receivable(r.id)).amount == Decimal("3600.00")
