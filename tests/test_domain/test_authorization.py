"""Tests for actor capability checks, decisions and domain errors."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from trade_settlement.domain import authorization
from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.decision import Decision
from trade_settlement.domain.enums import Role, TransactionStatus
from trade_settlement.domain.exceptions import (
    ConcurrentTransitionError,
    EntityNotFoundError,
    PaymentProviderError,
    PermissionDeniedError,
    ReleaseTokenError,
    SettlementError,
)


def make_txn(**overrides: object) -> SimpleNamespace:
    values = {
        "buyer_id": "b1",
        "seller_id": "s1",
        "shop_id": "m1",
        "hub_id": None,
        "status": TransactionStatus.PENDING,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestActor:
    def test_role_is_coerced(self) -> None:
        actor = Actor("u1", "ADMIN")
        assert actor.role is Role.ADMIN
        assert actor.is_staff

    def test_unknown_role_rejected(self) -> None:
        with pytest.raises(ValueError):
            Actor("u1", "ROOT")

    def test_system_actor(self) -> None:
        system = Actor.system()
        assert system.is_system
        assert not system.is_staff


class TestTransactionCapabilities:
    def test_party_may_create(self) -> None:
        assert authorization.can_create_transaction(Actor("b1", Role.BUYER), "b1", "s1")

    def test_stranger_may_not_create(self) -> None:
        decision = authorization.can_create_transaction(Actor("x", Role.BUYER), "b1", "s1")
        assert not decision

    def test_buyer_role_must_be_this_buyer(self) -> None:
        assert not authorization.can_act_on_transaction(Actor("b2", Role.BUYER), make_txn())
        assert authorization.can_act_on_transaction(Actor("b1", Role.BUYER), make_txn())

    def test_merchant_must_host_trade(self) -> None:
        assert not authorization.can_act_on_transaction(Actor("m2", Role.MERCHANT), make_txn())

    def test_parties_cancel_only_while_pending(self) -> None:
        seller = Actor("s1", Role.SELLER)
        assert authorization.can_cancel_transaction(seller, make_txn())
        confirmed = make_txn(status=TransactionStatus.CONFIRMED)
        assert not authorization.can_cancel_transaction(seller, confirmed)
        assert authorization.can_cancel_transaction(Actor("a", Role.ADMIN), confirmed)

    def test_hub_staff_cancel_needs_hub_trade(self) -> None:
        hub = Actor("h", Role.HUB_STAFF)
        assert not authorization.can_cancel_transaction(hub, make_txn())
        assert authorization.can_cancel_transaction(hub, make_txn(hub_id="hub-1"))

    def test_merchant_cannot_request_release(self) -> None:
        assert not authorization.can_request_release(Actor("m1", Role.MERCHANT), make_txn())


class TestStaffCapabilities:
    @pytest.mark.parametrize("role", [Role.ADMIN, Role.MODERATOR])
    def test_staff_approve_releases(self, role: Role) -> None:
        assert authorization.can_approve_release(Actor("s", role))

    @pytest.mark.parametrize("role", [Role.HUB_STAFF, Role.BUYER, Role.SYSTEM])
    def test_non_staff_cannot_approve(self, role: Role) -> None:
        assert not authorization.can_approve_release(Actor("s", role))

    def test_only_admin_manages_payouts(self) -> None:
        assert authorization.can_manage_payouts(Actor("a", Role.ADMIN))
        assert not authorization.can_manage_payouts(Actor("m", Role.MODERATOR))

    def test_audit_trail_is_staff_only(self) -> None:
        assert authorization.can_read_audit_trail(Actor("m", Role.MODERATOR))
        assert not authorization.can_read_audit_trail(Actor("b", Role.BUYER))


class TestSessionAndVaultCapabilities:
    def test_other_merchant_cannot_manage_session(self) -> None:
        session = SimpleNamespace(merchant_id="m1", buyer_id="b1", seller_id="s1")
        decision = authorization.can_manage_session(Actor("m2", Role.MERCHANT), session)
        assert not decision
        assert "hosting" in decision.reason

    def test_participants_and_moderators_participate(self) -> None:
        session = SimpleNamespace(merchant_id="m1", buyer_id="b1", seller_id="s1")
        assert authorization.can_participate_in_session(Actor("b1", Role.BUYER), session)
        assert authorization.can_participate_in_session(Actor("mod", Role.MODERATOR), session)
        assert not authorization.can_participate_in_session(Actor("b9", Role.BUYER), session)

    def test_vault_item_handled_by_its_shop(self) -> None:
        item = SimpleNamespace(shop_id="m1")
        assert authorization.can_handle_vault_item(Actor("m1", Role.MERCHANT), item)
        assert not authorization.can_handle_vault_item(Actor("m2", Role.MERCHANT), item)
        assert not authorization.can_handle_vault_item(Actor("b", Role.BUYER), item)


class TestDecision:
    def test_allow_is_truthy(self) -> None:
        decision = Decision.allow(target="CONFIRMED", event="check_in")
        assert decision
        decision.enforce()

    def test_deny_enforce_raises(self) -> None:
        with pytest.raises(PermissionDeniedError, match="nope"):
            Decision.deny("nope").enforce()


class TestErrors:
    def test_retryable_flags(self) -> None:
        assert PaymentProviderError("capture").retryable
        assert ConcurrentTransitionError().retryable
        assert not EntityNotFoundError("Transaction", "x").retryable

    def test_codes(self) -> None:
        assert ReleaseTokenError("bad").code == "RELEASE_TOKEN_INVALID"
        assert ReleaseTokenError("old", expired=True).code == "RELEASE_TOKEN_EXPIRED"
        assert ConcurrentTransitionError().code == "CONCURRENT_MODIFICATION"

    def test_payment_message_hides_provider_detail(self) -> None:
        err = PaymentProviderError("capture", hold_id="hold_1")
        assert "hold_1" not in err.message
        assert isinstance(err, SettlementError)
