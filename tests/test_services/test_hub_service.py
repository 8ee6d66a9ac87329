"""Tests for hub custody: package and transaction statuses move together."""

from __future__ import annotations

import pytest

from trade_settlement.domain.enums import (
    EscrowType,
    HoldStatus,
    PackageStatus,
    ReleaseType,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import (
    InvalidRequestError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from trade_settlement.services.hub_service import normalize_tracking_number


@pytest.fixture
def awaiting_receipt(services, make_transaction, buyer, seller):  # noqa: ANN001, ANN201
    async def _make():  # noqa: ANN202
        txn = await make_transaction(EscrowType.VERIFIED, "300.00", hub_id="hub-milan")
        await services.transactions.check_in(txn.id, buyer)
        return await services.hub.mark_awaiting_hub_receipt(txn.id, seller)

    return _make


class TestTrackingNumbers:
    def test_normalizes_case_and_whitespace(self) -> None:
        assert normalize_tracking_number("  ab12cd34 ") == "AB12CD34"

    @pytest.mark.parametrize("value", ["", None, "SHORT1", "X" * 21, "ABC-12345"])
    def test_rejects_malformed(self, value: str | None) -> None:
        with pytest.raises(InvalidRequestError):
            normalize_tracking_number(value)


class TestInbound:
    @pytest.mark.asyncio
    async def test_dispatch_keeps_transaction_awaiting(
        self, services, awaiting_receipt, hub_staff
    ) -> None:
        txn = await awaiting_receipt()
        txn = await services.hub.dispatch_to_hub(txn.id, hub_staff, "in12345678")

        assert txn.status == TransactionStatus.AWAITING_HUB_RECEIPT
        assert txn.package_status == PackageStatus.IN_TRANSIT_TO_HUB
        assert txn.inbound_tracking == "IN12345678"

    @pytest.mark.asyncio
    async def test_receive_moves_both(self, services, awaiting_receipt, hub_staff) -> None:
        txn = await awaiting_receipt()
        await services.hub.dispatch_to_hub(txn.id, hub_staff, "IN12345678")
        txn = await services.hub.receive(txn.id, hub_staff)

        assert txn.status == TransactionStatus.HUB_RECEIVED
        assert txn.package_status == PackageStatus.RECEIVED_AT_HUB

    @pytest.mark.asyncio
    async def test_dispatch_before_awaiting_receipt_fails(
        self, services, make_transaction, buyer, hub_staff
    ) -> None:
        txn = await make_transaction(EscrowType.VERIFIED)
        await services.transactions.check_in(txn.id, buyer)
        with pytest.raises(PreconditionFailedError):
            await services.hub.dispatch_to_hub(txn.id, hub_staff, "IN12345678")

    @pytest.mark.asyncio
    async def test_seller_cannot_move_package(self, services, awaiting_receipt, seller) -> None:
        txn = await awaiting_receipt()
        with pytest.raises(PermissionDeniedError):
            await services.hub.dispatch_to_hub(txn.id, seller, "IN12345678")

    @pytest.mark.asyncio
    async def test_local_trade_has_no_package(self, services, confirmed_local, hub_staff) -> None:
        txn = await confirmed_local()
        with pytest.raises(PreconditionFailedError):
            await services.hub.receive(txn.id, hub_staff)


class TestVerification:
    @pytest.mark.asyncio
    async def test_verify_requires_three_photos(
        self, services, awaiting_receipt, hub_staff
    ) -> None:
        txn = await awaiting_receipt()
        with pytest.raises(InvalidRequestError):
            await services.hub.verify(txn.id, hub_staff, "looks right", photo_count=2)

    @pytest.mark.asyncio
    async def test_verify_requires_notes(self, services, awaiting_receipt, hub_staff) -> None:
        txn = await awaiting_receipt()
        with pytest.raises(InvalidRequestError):
            await services.hub.verify(txn.id, hub_staff, "   ", photo_count=3)

    @pytest.mark.asyncio
    async def test_fail_verification_only_while_in_progress(
        self, services, awaiting_receipt, hub_staff
    ) -> None:
        txn = await awaiting_receipt()
        with pytest.raises(PreconditionFailedError):
            await services.hub.fail_verification(txn.id, hub_staff, "wrong item")

    @pytest.mark.asyncio
    async def test_fail_verification_cancels_and_voids(
        self, services, awaiting_receipt, hub_staff, provider
    ) -> None:
        txn = await awaiting_receipt()
        await services.hub.dispatch_to_hub(txn.id, hub_staff, "IN12345678")
        await services.hub.receive(txn.id, hub_staff)
        await services.hub.start_verification(txn.id, hub_staff)

        txn = await services.hub.fail_verification(txn.id, hub_staff, "counterfeit")

        assert txn.status == TransactionStatus.CANCELLED
        assert txn.package_status == PackageStatus.VERIFICATION_IN_PROGRESS
        assert txn.payment.status == HoldStatus.CANCELLED
        assert provider.holds[txn.payment.hold_id].status == "CANCELLED"

    @pytest.mark.asyncio
    async def test_buyer_cannot_fail_verification(self, services, awaiting_receipt, buyer) -> None:
        txn = await awaiting_receipt()
        with pytest.raises(PermissionDeniedError):
            await services.hub.fail_verification(txn.id, buyer, "I changed my mind")


class TestOutbound:
    @pytest.mark.asyncio
    async def test_delivery_waits_for_buyer(self, services, delivered_verified, clock) -> None:
        txn = await delivered_verified("250.00")

        assert txn.status == TransactionStatus.SHIPPED_TO_BUYER
        assert txn.package_status == PackageStatus.DELIVERED
        assert txn.return_tracking == "OUT87654321"
        assert txn.delivered_at == clock.now
        pending = [r for r in await services.releases.list_pending() if r.transaction_id == txn.id]
        assert pending == []

    @pytest.mark.asyncio
    async def test_buyer_confirmation_stages_seller_release(
        self, services, delivered_verified, buyer, seller, notifier
    ) -> None:
        txn = await delivered_verified("250.00")

        txn, release = await services.hub.confirm_received(txn.id, buyer)

        assert txn.received_confirmed_at is not None
        assert release.release_type == ReleaseType.RELEASE_TO_SELLER
        assert release.amount == txn.amount
        assert release.recipient_id == seller.id
        assert release.reason == "Buyer confirmed receipt"
        assert "package.receipt_confirmed" in notifier.templates_for(seller.id)

    @pytest.mark.asyncio
    async def test_only_the_buyer_confirms(self, services, delivered_verified, seller) -> None:
        txn = await delivered_verified()
        with pytest.raises(PermissionDeniedError):
            await services.hub.confirm_received(txn.id, seller)

    @pytest.mark.asyncio
    async def test_confirm_twice_rejected(self, services, delivered_verified, buyer) -> None:
        txn = await delivered_verified()
        await services.hub.confirm_received(txn.id, buyer)
        with pytest.raises(PreconditionFailedError, match="already been confirmed"):
            await services.hub.confirm_received(txn.id, buyer)

    @pytest.mark.asyncio
    async def test_confirm_before_delivery_rejected(
        self, services, awaiting_receipt, buyer
    ) -> None:
        txn = await awaiting_receipt()
        with pytest.raises(PreconditionFailedError, match="once delivered"):
            await services.hub.confirm_received(txn.id, buyer)

    @pytest.mark.asyncio
    async def test_seller_cannot_request_payout_before_receipt(
        self, services, delivered_verified, seller
    ) -> None:
        txn = await delivered_verified()
        with pytest.raises(PreconditionFailedError, match="not confirmed receipt"):
            await services.transactions.request_release(txn.id, seller)

    @pytest.mark.asyncio
    async def test_delivery_audit_trail_has_both_entities(
        self, services, delivered_verified, buyer
    ) -> None:
        txn = await delivered_verified()
        await services.hub.confirm_received(txn.id, buyer)
        entries = await services.audit.get_by_transaction(str(txn.id))
        actions = [e.action_type for e in entries]

        assert actions.count("PACKAGE_TRANSITIONED") == 6
        assert "PACKAGE_RECEIPT_CONFIRMED" in actions
        assert "RELEASE_CREATED" in actions


class TestAutoRelease:
    @pytest.mark.asyncio
    async def test_stages_release_after_window(
        self, services, delivered_verified, clock, settings
    ) -> None:
        txn = await delivered_verified()

        assert await services.hub.auto_release_delivered(clock.advance(hours=1)) == 0
        now = clock.advance(hours=settings.auto_release_hours)
        assert await services.hub.auto_release_delivered(now) == 1

        txn = await services.transactions.get_transaction(txn.id)
        assert txn.auto_release_requested_at == now
        assert txn.received_confirmed_at is None
        assert await services.hub.auto_release_delivered(now) == 0

    @pytest.mark.asyncio
    async def test_confirmed_delivery_is_skipped(
        self, services, delivered_verified, buyer, clock, settings
    ) -> None:
        txn = await delivered_verified()
        await services.hub.confirm_received(txn.id, buyer)

        now = clock.advance(hours=settings.auto_release_hours + 1)
        assert await services.hub.auto_release_delivered(now) == 0
