"""Tests for dispute arbitration and its effect on the disputed trade."""

from __future__ import annotations

from decimal import Decimal

import pytest

from trade_settlement.domain.enums import (
    DisputeResolution,
    DisputeStatus,
    DisputeType,
    HoldStatus,
    ReleaseStatus,
    ReleaseType,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import (
    InvalidRequestError,
    PermissionDeniedError,
    PreconditionFailedError,
)


@pytest.fixture
def open_dispute(services, confirmed_local, buyer):  # noqa: ANN001, ANN201
    """Factory: the buyer disputes a checked-in LOCAL trade."""

    async def _make(amount: str = "100.00"):  # noqa: ANN202
        txn = await confirmed_local(amount)
        dispute = await services.disputes.open_dispute(
            txn.id,
            buyer,
            DisputeType.CONDITION_MISMATCH,
            "Card is creased",
            "The card has a visible crease that was not in the photos.",
            photos=["https://img.example/1.jpg"],
        )
        return txn, dispute

    return _make


@pytest.fixture
def completed_local(services, confirmed_local, seller, admin):  # noqa: ANN001, ANN201
    async def _make():  # noqa: ANN202
        txn = await confirmed_local()
        release = await services.transactions.request_release(txn.id, seller)
        summary = await services.releases.initiate_approval(release.id, admin)
        await services.releases.confirm_approval(release.id, admin, summary.token)
        return await services.transactions.get_transaction(txn.id)

    return _make


async def approve(services, release, actor):  # noqa: ANN001, ANN201
    summary = await services.releases.initiate_approval(release.id, actor)
    return await services.releases.confirm_approval(release.id, actor, summary.token)


class TestOpenDispute:
    @pytest.mark.asyncio
    async def test_freezes_transaction(self, services, open_dispute, seller, notifier) -> None:
        txn, dispute = await open_dispute()

        assert dispute.status == DisputeStatus.OPEN
        assert [m.photos for m in dispute.messages] == [["https://img.example/1.jpg"]]
        txn = await services.transactions.get_transaction(txn.id)
        assert txn.status == TransactionStatus.DISPUTED
        assert txn.status_before_dispute == TransactionStatus.CONFIRMED
        assert "dispute.opened" in notifier.templates_for(seller.id)

    @pytest.mark.asyncio
    async def test_pending_trade_cannot_be_disputed(
        self, services, make_transaction, buyer
    ) -> None:
        txn = await make_transaction()
        with pytest.raises(PreconditionFailedError):
            await services.disputes.open_dispute(
                txn.id, buyer, DisputeType.OTHER, "Title", "A long enough description"
            )

    @pytest.mark.asyncio
    async def test_one_open_dispute_at_a_time(self, services, open_dispute, seller) -> None:
        txn, _ = await open_dispute()
        with pytest.raises(PreconditionFailedError):
            await services.disputes.open_dispute(
                txn.id, seller, DisputeType.OTHER, "Again", "Another description here"
            )

    @pytest.mark.asyncio
    async def test_release_blocked_while_disputed(self, services, open_dispute, seller) -> None:
        txn, _ = await open_dispute()
        with pytest.raises(PreconditionFailedError):
            await services.transactions.request_release(txn.id, seller)

    @pytest.mark.asyncio
    async def test_completed_trade_inside_window(
        self, services, completed_local, buyer, clock
    ) -> None:
        txn = await completed_local()
        clock.advance(days=3)
        dispute = await services.disputes.open_dispute(
            txn.id, buyer, DisputeType.NOT_DELIVERED, "Missing", "Never actually handed over"
        )
        assert dispute.status == DisputeStatus.OPEN

    @pytest.mark.asyncio
    async def test_completed_trade_outside_window(
        self, services, completed_local, buyer, clock, settings
    ) -> None:
        txn = await completed_local()
        clock.advance(days=settings.dispute_window_days + 1)
        with pytest.raises(PreconditionFailedError, match="within"):
            await services.disputes.open_dispute(
                txn.id, buyer, DisputeType.NOT_DELIVERED, "Late", "Opened after the window"
            )

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, services, confirmed_local, buyer) -> None:
        txn = await confirmed_local()
        with pytest.raises(InvalidRequestError):
            await services.disputes.open_dispute(
                txn.id, buyer, DisputeType.OTHER, "   ", "description"
            )


class TestArbitration:
    @pytest.mark.asyncio
    async def test_counterparty_responds(self, services, open_dispute, seller) -> None:
        _, dispute = await open_dispute()
        dispute = await services.disputes.respond(dispute.id, seller, "It left my hands mint")

        assert dispute.status == DisputeStatus.SELLER_RESPONSE
        assert len(dispute.messages) == 2

    @pytest.mark.asyncio
    async def test_opener_cannot_respond(self, services, open_dispute, buyer) -> None:
        _, dispute = await open_dispute()
        with pytest.raises(PermissionDeniedError):
            await services.disputes.respond(dispute.id, buyer, "answering myself")

    @pytest.mark.asyncio
    async def test_response_after_deadline(
        self, services, open_dispute, seller, clock, settings
    ) -> None:
        _, dispute = await open_dispute()
        clock.advance(hours=settings.dispute_response_hours + 1)
        with pytest.raises(PreconditionFailedError):
            await services.disputes.respond(dispute.id, seller, "sorry, late")

    @pytest.mark.asyncio
    async def test_mediation_sets_deadline(self, services, open_dispute, moderator) -> None:
        _, dispute = await open_dispute()
        dispute = await services.disputes.mediate(dispute.id, moderator)

        assert dispute.status == DisputeStatus.IN_MEDIATION
        assert dispute.mediator_id == moderator.id
        assert dispute.mediation_deadline is not None

    @pytest.mark.asyncio
    async def test_party_cannot_mediate(self, services, open_dispute, seller) -> None:
        _, dispute = await open_dispute()
        with pytest.raises(PermissionDeniedError):
            await services.disputes.mediate(dispute.id, seller)

    @pytest.mark.asyncio
    async def test_party_escalation_only_before_mediation(
        self, services, open_dispute, buyer, moderator
    ) -> None:
        _, dispute = await open_dispute()
        await services.disputes.mediate(dispute.id, moderator)
        with pytest.raises(PreconditionFailedError):
            await services.disputes.escalate(dispute.id, buyer)

    @pytest.mark.asyncio
    async def test_sweep_escalates_overdue(
        self, services, open_dispute, clock, settings
    ) -> None:
        _, dispute = await open_dispute()
        now = clock.advance(hours=settings.dispute_response_hours + 1)

        assert await services.disputes.escalate_overdue(now) == 1
        dispute = await services.disputes.get_dispute(dispute.id)
        assert dispute.status == DisputeStatus.ESCALATED
        assert await services.disputes.escalate_overdue(now) == 0

    @pytest.mark.asyncio
    async def test_messages_on_closed_dispute_rejected(
        self, services, open_dispute, buyer, admin
    ) -> None:
        _, dispute = await open_dispute()
        await services.disputes.resolve(dispute.id, admin, DisputeResolution.REJECTED)
        await services.disputes.close(dispute.id, admin)
        with pytest.raises(PreconditionFailedError):
            await services.disputes.add_message(dispute.id, buyer, "one more thing")


class TestResolution:
    @pytest.mark.asyncio
    async def test_full_refund_cancels_after_approval(
        self, services, open_dispute, admin, moderator, provider
    ) -> None:
        txn, dispute = await open_dispute("90.00")
        dispute, release = await services.disputes.resolve(
            dispute.id, moderator, DisputeResolution.REFUND_FULL
        )

        assert dispute.status == DisputeStatus.RESOLVED
        assert release.release_type == ReleaseType.REFUND_FULL
        assert release.amount == Decimal("90.00")
        txn = await services.transactions.get_transaction(txn.id)
        assert txn.status == TransactionStatus.DISPUTED

        await approve(services, release, admin)

        txn = await services.transactions.get_transaction(txn.id)
        assert txn.status == TransactionStatus.CANCELLED
        assert txn.payment.status == HoldStatus.CANCELLED
        assert provider.holds[txn.payment.hold_id].status == "CANCELLED"

    @pytest.mark.asyncio
    async def test_partial_refund_captures_then_refunds(
        self, services, open_dispute, admin, provider
    ) -> None:
        txn, dispute = await open_dispute("100.00")
        _, release = await services.disputes.resolve(
            dispute.id, admin, DisputeResolution.REFUND_PARTIAL, amount=Decimal("30.00")
        )
        await approve(services, release, admin)

        txn = await services.transactions.get_transaction(txn.id)
        assert txn.status == TransactionStatus.COMPLETED
        assert txn.payment.status == HoldStatus.PARTIALLY_REFUNDED
        assert txn.payment.refunded_amount == Decimal("30.00")
        hold = provider.holds[txn.payment.hold_id]
        assert (hold.captured, hold.refunded) == (Decimal("100.00"), Decimal("30.00"))

    @pytest.mark.asyncio
    async def test_partial_refund_needs_amount(self, services, open_dispute, admin) -> None:
        _, dispute = await open_dispute()
        with pytest.raises(InvalidRequestError):
            await services.disputes.resolve(dispute.id, admin, DisputeResolution.REFUND_PARTIAL)

    @pytest.mark.asyncio
    async def test_partial_refund_over_hold_rejected(self, services, open_dispute, admin) -> None:
        _, dispute = await open_dispute("50.00")
        with pytest.raises(InvalidRequestError):
            await services.disputes.resolve(
                dispute.id, admin, DisputeResolution.REFUND_PARTIAL, amount=Decimal("50.01")
            )

    @pytest.mark.asyncio
    async def test_in_favor_of_seller_restores_and_stages_release(
        self, services, open_dispute, admin
    ) -> None:
        txn, dispute = await open_dispute()
        dispute, release = await services.disputes.resolve(
            dispute.id, admin, DisputeResolution.IN_FAVOR_SELLER, notes="photos match"
        )

        txn = await services.transactions.get_transaction(txn.id)
        assert txn.status == TransactionStatus.CONFIRMED
        assert release is not None
        assert release.release_type == ReleaseType.RELEASE_TO_SELLER

        release = await approve(services, release, admin)
        assert release.status == ReleaseStatus.APPROVED
        txn = await services.transactions.get_transaction(txn.id)
        assert txn.status == TransactionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_resolution_supersedes_pending_releases(
        self, services, confirmed_local, buyer, seller, admin
    ) -> None:
        txn = await confirmed_local()
        staged = await services.transactions.request_release(txn.id, seller)
        dispute = await services.disputes.open_dispute(
            txn.id, buyer, DisputeType.WRONG_CONTENT, "Wrong card", "Received a different card"
        )
        await services.disputes.resolve(dispute.id, admin, DisputeResolution.REFUND_FULL)

        staged = await services.releases.get_release(staged.id)
        assert staged.status == ReleaseStatus.REJECTED

    @pytest.mark.asyncio
    async def test_completed_trade_full_refund(
        self, services, completed_local, buyer, admin, provider
    ) -> None:
        txn = await completed_local()
        dispute = await services.disputes.open_dispute(
            txn.id, buyer, DisputeType.DAMAGED_ITEM, "Damaged", "Arrived with a torn corner"
        )
        _, release = await services.disputes.resolve(
            dispute.id, admin, DisputeResolution.IN_FAVOR_BUYER
        )
        await approve(services, release, admin)

        txn = await services.transactions.get_transaction(txn.id)
        assert txn.status == TransactionStatus.CANCELLED
        assert txn.payment.status == HoldStatus.REFUNDED
        assert provider.holds[txn.payment.hold_id].status == "REFUNDED"
