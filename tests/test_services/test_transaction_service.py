"""Tests for the TransactionService: creation, check-in, cancel and release requests."""

from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.enums import (
    EscrowType,
    HoldStatus,
    ReleaseStatus,
    ReleaseType,
    Role,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import (
    ConcurrentTransitionError,
    DuplicateOperationError,
    EntityNotFoundError,
    InvalidRequestError,
    InvalidStateTransitionError,
    PaymentProviderError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from trade_settlement.infrastructure.database.repositories import AuditRepository


class TestCreateTransaction:
    @pytest.mark.asyncio
    async def test_creates_pending_with_held_hold(self, services, make_transaction, provider) -> None:
        txn = await make_transaction(EscrowType.LOCAL, "120.50")

        assert txn.status == TransactionStatus.PENDING
        assert txn.package_status is None
        assert txn.amount == Decimal("120.50")
        assert txn.payment.status == HoldStatus.HELD
        assert provider.holds[txn.payment.hold_id].status == "AUTHORIZED"

    @pytest.mark.asyncio
    async def test_verified_starts_with_pending_package(self, make_transaction) -> None:
        txn = await make_transaction(EscrowType.VERIFIED)
        assert txn.package_status == "PENDING"

    @pytest.mark.asyncio
    async def test_writes_audit_and_notifies_parties(
        self, services, make_transaction, notifier, buyer, seller
    ) -> None:
        txn = await make_transaction()

        entries = await services.audit.get_by_transaction(str(txn.id))
        assert [e.action_type for e in entries] == ["TRANSACTION_CREATED"]
        assert entries[0].actor_id == buyer.id
        assert "transaction.created" in notifier.templates_for(buyer.id)
        assert "transaction.created" in notifier.templates_for(seller.id)

    @pytest.mark.asyncio
    async def test_duplicate_proposal_rejected(self, services, buyer, seller) -> None:
        kwargs = {
            "proposal_id": "proposal-dup",
            "buyer_id": buyer.id,
            "seller_id": seller.id,
            "amount": Decimal("10.00"),
            "escrow_type": EscrowType.LOCAL,
        }
        await services.transactions.create_transaction(buyer, **kwargs)
        with pytest.raises(DuplicateOperationError):
            await services.transactions.create_transaction(buyer, **kwargs)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1.00", "1000000.00"])
    async def test_amount_bounds(self, make_transaction, amount: str) -> None:
        with pytest.raises(InvalidRequestError):
            await make_transaction(amount=amount)

    @pytest.mark.asyncio
    async def test_buyer_and_seller_must_differ(self, services, buyer) -> None:
        with pytest.raises(InvalidRequestError):
            await services.transactions.create_transaction(
                buyer, "p-1", buyer.id, buyer.id, Decimal("5.00"), EscrowType.LOCAL
            )

    @pytest.mark.asyncio
    async def test_stranger_cannot_open(self, services, buyer, seller) -> None:
        stranger = Actor("someone-else", Role.BUYER)
        with pytest.raises(PermissionDeniedError):
            await services.transactions.create_transaction(
                stranger, "p-2", buyer.id, seller.id, Decimal("5.00"), EscrowType.LOCAL
            )

    @pytest.mark.asyncio
    async def test_failed_hold_persists_nothing(
        self, services, make_transaction, provider, buyer
    ) -> None:
        provider.fail_operations.add("create_hold")

        with pytest.raises(PaymentProviderError) as exc_info:
            await make_transaction()

        assert exc_info.value.retryable
        assert await services.transactions.list_for_party(buyer.id) == []

    @pytest.mark.asyncio
    async def test_hold_timeout_is_retryable(self, make_transaction, provider) -> None:
        provider.latency = 2.0
        with pytest.raises(PaymentProviderError):
            await make_transaction()


class TestTransitions:
    @pytest.mark.asyncio
    async def test_check_in_confirms(
        self, services, make_transaction, buyer, seller, notifier
    ) -> None:
        txn = await make_transaction()
        txn = await services.transactions.check_in(txn.id, buyer)

        assert txn.status == TransactionStatus.CONFIRMED
        assert txn.checked_in_at is not None
        assert "transaction.confirmed" in notifier.templates_for(seller.id)

    @pytest.mark.asyncio
    async def test_check_in_twice_is_invalid(self, services, make_transaction, buyer) -> None:
        txn = await make_transaction()
        await services.transactions.check_in(txn.id, buyer)
        with pytest.raises(InvalidStateTransitionError):
            await services.transactions.check_in(txn.id, buyer)

    @pytest.mark.asyncio
    async def test_parties_cannot_complete(self, services, confirmed_local, buyer) -> None:
        txn = await confirmed_local()
        with pytest.raises(PermissionDeniedError):
            await services.transactions.transition(txn.id, TransactionStatus.COMPLETED, buyer)

    @pytest.mark.asyncio
    async def test_local_trade_cannot_enter_hub_flow(self, services, confirmed_local, admin) -> None:
        txn = await confirmed_local()
        with pytest.raises(InvalidStateTransitionError):
            await services.transactions.transition(
                txn.id, TransactionStatus.AWAITING_HUB_RECEIPT, admin
            )

    @pytest.mark.asyncio
    async def test_transition_to_cancelled_routes_through_cancel(
        self, services, make_transaction, buyer
    ) -> None:
        txn = await make_transaction()
        txn = await services.transactions.transition(
            txn.id, TransactionStatus.CANCELLED, buyer, reason="changed mind"
        )
        assert txn.status == TransactionStatus.CANCELLED
        assert txn.payment.status == HoldStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, services, buyer) -> None:
        with pytest.raises(EntityNotFoundError):
            await services.transactions.check_in(uuid.uuid4(), buyer)


class TestCancel:
    @pytest.mark.asyncio
    async def test_buyer_cancels_pending_and_hold_is_voided(
        self, services, make_transaction, buyer, provider
    ) -> None:
        txn = await make_transaction()
        txn = await services.transactions.cancel(txn.id, buyer, "no longer needed")

        assert txn.status == TransactionStatus.CANCELLED
        assert txn.cancelled_at is not None
        assert txn.payment.status == HoldStatus.CANCELLED
        assert provider.holds[txn.payment.hold_id].status == "CANCELLED"

    @pytest.mark.asyncio
    async def test_seller_cannot_cancel_after_check_in(
        self, services, confirmed_local, seller
    ) -> None:
        txn = await confirmed_local()
        with pytest.raises(PermissionDeniedError):
            await services.transactions.cancel(txn.id, seller, "too late")

    @pytest.mark.asyncio
    async def test_admin_cancel_after_check_in(self, services, confirmed_local, admin) -> None:
        txn = await confirmed_local()
        txn = await services.transactions.cancel(txn.id, admin, "fraud suspected")
        assert txn.status == TransactionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_state_unchanged(
        self, services, make_transaction, buyer, provider
    ) -> None:
        txn = await make_transaction()
        provider.fail_operations.add("cancel_or_refund")

        with pytest.raises(PaymentProviderError):
            await services.transactions.cancel(txn.id, buyer, "provider down")

        reloaded = await services.transactions.get_transaction(txn.id)
        assert reloaded.status == TransactionStatus.PENDING
        assert reloaded.payment.status == HoldStatus.HELD
        actions = [e.action_type for e in await services.audit.get_by_transaction(str(txn.id))]
        assert "TRANSACTION_CANCELLED" not in actions


class TestRequestRelease:
    @pytest.mark.asyncio
    async def test_not_due_while_pending(self, services, make_transaction, seller) -> None:
        txn = await make_transaction()
        with pytest.raises(PreconditionFailedError):
            await services.transactions.request_release(txn.id, seller)

    @pytest.mark.asyncio
    async def test_stages_release_to_seller(self, services, confirmed_local, seller) -> None:
        txn = await confirmed_local("80.00")
        release = await services.transactions.request_release(txn.id, seller)

        assert release.status == ReleaseStatus.PENDING
        assert release.release_type == ReleaseType.RELEASE_TO_SELLER
        assert release.amount == Decimal("80.00")
        assert release.recipient_id == seller.id

    @pytest.mark.asyncio
    async def test_repeat_request_returns_same_release(
        self, services, confirmed_local, seller, buyer
    ) -> None:
        txn = await confirmed_local()
        first = await services.transactions.request_release(txn.id, seller)
        second = await services.transactions.request_release(txn.id, buyer)
        assert first.id == second.id


class TestStatusAndSideEffects:
    @pytest.mark.asyncio
    async def test_status_lists_targets_for_actor(self, services, make_transaction, buyer) -> None:
        txn = await make_transaction()
        status = await services.transactions.get_status(txn.id, buyer)

        assert status["status"] == "PENDING"
        assert status["hold_status"] == "HELD"
        assert status["allowed_targets"] == ["CANCELLED", "CONFIRMED"]

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_roll_back(
        self, services, make_transaction, buyer
    ) -> None:
        txn = await make_transaction()
        with patch.object(
            AuditRepository, "append", new_callable=AsyncMock, side_effect=RuntimeError("down")
        ):
            await services.transactions.check_in(txn.id, buyer)

        reloaded = await services.transactions.get_transaction(txn.id)
        assert reloaded.status == TransactionStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_notification_failure_is_swallowed(
        self, services, make_transaction, buyer, notifier
    ) -> None:
        txn = await make_transaction()
        notifier.dispatch = AsyncMock(side_effect=ConnectionError("smtp down"))

        txn = await services.transactions.check_in(txn.id, buyer)

        assert txn.status == TransactionStatus.CONFIRMED
        assert notifier.dispatch.await_count == 2


class TestConcurrentTransitions:
    @pytest.mark.asyncio
    async def test_cancel_racing_check_in(
        self, services, make_transaction, buyer, seller, provider
    ) -> None:
        txn = await make_transaction()
        provider.latency = 0.05

        results = await asyncio.gather(
            services.transactions.cancel(txn.id, seller, "changed my mind"),
            services.transactions.check_in(txn.id, buyer),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], (ConcurrentTransitionError, InvalidStateTransitionError))

        reloaded = await services.transactions.get_transaction(txn.id)
        voids = [c for c in provider.calls if c[0] == "cancel_or_refund"]
        if reloaded.status == TransactionStatus.CANCELLED:
            assert len(voids) == 1
            assert reloaded.payment.status == HoldStatus.CANCELLED
        else:
            assert reloaded.status == TransactionStatus.CONFIRMED
            assert voids == []
            assert provider.holds[reloaded.payment.hold_id].status == "AUTHORIZED"
