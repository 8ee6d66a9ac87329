"""Tests for payout batching over vault splits."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from trade_settlement.domain.enums import (
    PayeeType,
    PayoutBatchStatus,
    PayoutLineStatus,
    SplitStatus,
)
from trade_settlement.domain.exceptions import (
    InvalidRequestError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from trade_settlement.infrastructure.database.orm_models import VaultSplit


@pytest.fixture
def sold_item(services, seller, admin, merchant):  # noqa: ANN001, ANN201
    """Factory: sell a consigned item at the counter and return its split."""
    counter = {"slot": 0}

    async def _make(price: str = "100.00"):  # noqa: ANN202
        counter["slot"] += 1
        item = await services.vault.deposit_item(seller, f"Card #{counter['slot']}")
        await services.vault.review_item(item.id, admin, accept=True)
        await services.vault.assign_to_shop(item.id, admin, merchant.id)
        await services.vault.place_in_case(item.id, merchant, "CASE-P", f"P{counter['slot']}")
        _, split = await services.vault.record_physical_sale(item.id, merchant, Decimal(price))
        return split

    return _make


async def split_status(session_factory, split_id) -> str:  # noqa: ANN001
    async with session_factory() as session:
        result = await session.execute(select(VaultSplit.status).where(VaultSplit.id == split_id))
        return result.scalar_one()


class TestCreateBatch:
    @pytest.mark.asyncio
    async def test_batches_owner_shares(self, services, sold_item, admin, seller) -> None:
        await sold_item("100.00")
        await sold_item("50.00")

        batch = await services.payouts.create_payout_batch(admin, PayeeType.OWNER)

        assert batch.status == PayoutBatchStatus.CREATED
        assert batch.total_amount == Decimal("105.00")
        assert len(batch.lines) == 2
        assert {line.payee_id for line in batch.lines} == {seller.id}
        assert all(line.status == PayoutLineStatus.PENDING for line in batch.lines)

    @pytest.mark.asyncio
    async def test_split_moves_into_payout(
        self, services, sold_item, admin, session_factory
    ) -> None:
        split = await sold_item()
        await services.payouts.create_payout_batch(admin, PayeeType.MERCHANT)
        assert await split_status(session_factory, split.id) == SplitStatus.IN_PAYOUT

    @pytest.mark.asyncio
    async def test_split_batched_once_per_payee_type(self, services, sold_item, admin) -> None:
        await sold_item()
        await services.payouts.create_payout_batch(admin, PayeeType.PLATFORM)
        with pytest.raises(PreconditionFailedError):
            await services.payouts.create_payout_batch(admin, PayeeType.PLATFORM)

    @pytest.mark.asyncio
    async def test_nothing_to_pay(self, services, admin) -> None:
        with pytest.raises(PreconditionFailedError):
            await services.payouts.create_payout_batch(admin, PayeeType.OWNER)

    @pytest.mark.asyncio
    async def test_period_must_be_ordered(self, services, admin, clock) -> None:
        with pytest.raises(InvalidRequestError):
            await services.payouts.create_payout_batch(
                admin, PayeeType.OWNER, period_start=clock.now, period_end=clock.now
            )

    @pytest.mark.asyncio
    async def test_only_admins(self, services, sold_item, moderator) -> None:
        await sold_item()
        with pytest.raises(PermissionDeniedError):
            await services.payouts.create_payout_batch(moderator, PayeeType.OWNER)


class TestPayBatch:
    @pytest.mark.asyncio
    async def test_pay_marks_lines(self, services, sold_item, admin, notifier, seller) -> None:
        await sold_item()
        batch = await services.payouts.create_payout_batch(admin, PayeeType.OWNER)
        batch = await services.payouts.pay_batch(batch.id, admin)

        assert batch.status == PayoutBatchStatus.PAID
        assert batch.paid_at is not None
        assert all(line.status == PayoutLineStatus.PAID for line in batch.lines)
        assert "payout.paid" in notifier.templates_for(seller.id)

    @pytest.mark.asyncio
    async def test_split_paid_after_every_share(
        self, services, sold_item, admin, session_factory
    ) -> None:
        split = await sold_item()

        for payee_type in (PayeeType.OWNER, PayeeType.MERCHANT):
            batch = await services.payouts.create_payout_batch(admin, payee_type)
            await services.payouts.pay_batch(batch.id, admin)
            assert await split_status(session_factory, split.id) == SplitStatus.IN_PAYOUT

        batch = await services.payouts.create_payout_batch(admin, PayeeType.PLATFORM)
        await services.payouts.pay_batch(batch.id, admin)
        assert await split_status(session_factory, split.id) == SplitStatus.PAID

    @pytest.mark.asyncio
    async def test_paid_batch_is_final(self, services, sold_item, admin) -> None:
        await sold_item()
        batch = await services.payouts.create_payout_batch(admin, PayeeType.OWNER)
        await services.payouts.pay_batch(batch.id, admin)
        with pytest.raises(PreconditionFailedError):
            await services.payouts.pay_batch(batch.id, admin)
