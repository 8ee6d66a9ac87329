"""Tests for the entity transition tables.

These tests verify that:
    1. Each table is derived from its machine (edges, terminal states).
    2. Role permissions gate events that are otherwise structurally valid.
    3. require/require_event raise the right domain error for each denial.
    4. Hub-only and dispute-only transaction statuses stay off the wrong path.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from trade_settlement.domain.enums import Role, SessionStatus, TransactionStatus
from trade_settlement.domain.exceptions import (
    InvalidStateTransitionError,
    PermissionDeniedError,
)
from trade_settlement.domain.state_machine import (
    DISPUTE_TABLE,
    FORCED_TRANSACTION_TABLE,
    PACKAGE_TABLE,
    RELEASE_TABLE,
    SESSION_TABLE,
    TRANSACTION_TABLE,
    VAULT_ITEM_TABLE,
    VAULT_ORDER_TABLE,
    SessionStateMachine,
    TransactionStateMachine,
)


class TestTransactionTable:
    def test_initial_state(self) -> None:
        assert TRANSACTION_TABLE.initial == "PENDING"

    def test_pending_targets(self) -> None:
        assert TRANSACTION_TABLE.targets("PENDING") == {"CONFIRMED", "CANCELLED"}

    def test_confirmed_branches_by_escrow_mode(self) -> None:
        assert TRANSACTION_TABLE.targets("CONFIRMED") == {
            "AWAITING_HUB_RECEIPT",
            "COMPLETED",
            "CANCELLED",
        }

    def test_every_non_terminal_state_can_cancel(self) -> None:
        for state in TRANSACTION_TABLE.states:
            if TRANSACTION_TABLE.is_terminal(state):
                continue
            assert "CANCELLED" in TRANSACTION_TABLE.targets(state), state

    def test_terminal_states(self) -> None:
        assert TRANSACTION_TABLE.is_terminal("COMPLETED")
        assert TRANSACTION_TABLE.is_terminal("CANCELLED")
        assert not TRANSACTION_TABLE.is_terminal("SHIPPED_TO_BUYER")

    def test_disputed_not_reachable_through_forward_table(self) -> None:
        assert "DISPUTED" not in TRANSACTION_TABLE.reachable("PENDING")

    def test_only_system_completes(self) -> None:
        assert TRANSACTION_TABLE.check("CONFIRMED", "COMPLETED", Role.SYSTEM)
        for role in (Role.BUYER, Role.SELLER, Role.ADMIN, Role.MERCHANT):
            decision = TRANSACTION_TABLE.check("CONFIRMED", "COMPLETED", role)
            assert not decision
            assert "may not complete" in decision.reason

    def test_check_returns_event_and_target(self) -> None:
        decision = TRANSACTION_TABLE.check("PENDING", "CONFIRMED", Role.BUYER)
        assert decision.allowed
        assert decision.event == "check_in"
        assert decision.target == "CONFIRMED"

    def test_require_unknown_edge_raises_invalid_transition(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            TRANSACTION_TABLE.require("PENDING", "SHIPPED_TO_BUYER", Role.ADMIN)
        err = exc_info.value
        assert err.code == "INVALID_STATE_TRANSITION"
        assert err.current_state == "PENDING"
        assert err.allowed == ["CANCELLED", "CONFIRMED"]

    def test_require_wrong_role_raises_permission_denied(self) -> None:
        with pytest.raises(PermissionDeniedError):
            TRANSACTION_TABLE.require("AWAITING_HUB_RECEIPT", "HUB_RECEIVED", Role.BUYER)

    def test_require_event_returns_target(self) -> None:
        target = TRANSACTION_TABLE.require_event("VERIFIED", "ship_to_buyer", Role.HUB_STAFF)
        assert target == "SHIPPED_TO_BUYER"

    def test_unknown_state_is_denied(self) -> None:
        decision = TRANSACTION_TABLE.check_event("NOT_A_STATE", "cancel", Role.ADMIN)
        assert not decision
        assert "Unknown" in decision.reason

    def test_machine_rejects_skipping_steps(self) -> None:
        sm = TransactionStateMachine("CONFIRMED")
        with pytest.raises(TransitionNotAllowed):
            sm.verify()
        sm.await_hub_receipt()
        assert sm.status == "AWAITING_HUB_RECEIPT"


class TestForcedTransactionTable:
    def test_dispute_hold_from_confirmed_and_completed(self) -> None:
        assert FORCED_TRANSACTION_TABLE.target_of("CONFIRMED", "hold_for_dispute") == "DISPUTED"
        assert FORCED_TRANSACTION_TABLE.target_of("COMPLETED", "hold_for_dispute") == "DISPUTED"

    def test_disputed_exits(self) -> None:
        assert FORCED_TRANSACTION_TABLE.targets("DISPUTED") == {
            "CONFIRMED",
            "COMPLETED",
            "CANCELLED",
        }

    def test_forced_events_are_system_only(self) -> None:
        assert not FORCED_TRANSACTION_TABLE.check_event(
            "CONFIRMED", "hold_for_dispute", Role.ADMIN
        )
        assert FORCED_TRANSACTION_TABLE.check_event(
            "CONFIRMED", "hold_for_dispute", Role.SYSTEM
        )


class TestPackageTable:
    def test_linear_custody_chain(self) -> None:
        chain = [
            "PENDING",
            "IN_TRANSIT_TO_HUB",
            "RECEIVED_AT_HUB",
            "VERIFICATION_IN_PROGRESS",
            "VERIFIED",
            "SHIPPED",
            "DELIVERED",
        ]
        for current, nxt in zip(chain, chain[1:], strict=False):
            assert PACKAGE_TABLE.targets(current) == {nxt}
        assert PACKAGE_TABLE.is_terminal("DELIVERED")

    def test_parties_cannot_move_packages(self) -> None:
        assert not PACKAGE_TABLE.check("PENDING", "IN_TRANSIT_TO_HUB", Role.SELLER)
        assert PACKAGE_TABLE.check("PENDING", "IN_TRANSIT_TO_HUB", Role.HUB_STAFF)


class TestSessionTable:
    def test_happy_path(self) -> None:
        sm = SessionStateMachine("CREATED")
        for event in (
            "book",
            "open_checkin",
            "check_in",
            "start_verification",
            "pass_verification",
            "request_release",
            "approve_release",
            "complete",
        ):
            getattr(sm, event)()
        assert sm.status == "COMPLETED"

    def test_expired_is_not_terminal(self) -> None:
        assert not SESSION_TABLE.is_terminal(SessionStatus.EXPIRED)
        assert SESSION_TABLE.target_of("EXPIRED", "extend_session") == "CHECKIN_PENDING"

    def test_only_waiting_states_expire(self) -> None:
        expirable = {
            state for state in SESSION_TABLE.states
            if SESSION_TABLE.target_of(state, "expire") is not None
        }
        assert expirable == {"BOOKED", "CHECKIN_PENDING"}

    def test_release_approved_cannot_be_closed(self) -> None:
        assert "close_session" not in SESSION_TABLE.events("RELEASE_APPROVED")
        assert "close_session" in SESSION_TABLE.events("RELEASE_REQUESTED")

    def test_merchant_runs_verification(self) -> None:
        assert SESSION_TABLE.check_event("CHECKED_IN", "start_verification", Role.MERCHANT)
        assert not SESSION_TABLE.check_event("CHECKED_IN", "start_verification", Role.BUYER)


class TestDisputeTable:
    def test_staff_may_skip_seller_response(self) -> None:
        assert DISPUTE_TABLE.check("OPEN", "IN_MEDIATION", Role.MODERATOR)

    def test_resolved_only_closes(self) -> None:
        assert DISPUTE_TABLE.targets("RESOLVED") == {"CLOSED"}
        assert DISPUTE_TABLE.is_terminal("CLOSED")

    def test_parties_cannot_resolve(self) -> None:
        with pytest.raises(PermissionDeniedError):
            DISPUTE_TABLE.require_event("IN_MEDIATION", "resolve", Role.BUYER)


class TestVaultTables:
    def test_online_listing_requires_case(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            VAULT_ITEM_TABLE.require("ASSIGNED_TO_SHOP", "LISTED_ONLINE", Role.ADMIN)
        assert VAULT_ITEM_TABLE.check("IN_CASE", "LISTED_ONLINE", Role.MERCHANT)

    def test_no_path_to_listing_around_the_case(self) -> None:
        assert "LISTED_ONLINE" not in VAULT_ITEM_TABLE.reachable(
            "ASSIGNED_TO_SHOP", avoiding={"IN_CASE"}
        )
        assert "LISTED_ONLINE" in VAULT_ITEM_TABLE.reachable("ASSIGNED_TO_SHOP")

    def test_rejected_event_names_allowed_targets(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            VAULT_ITEM_TABLE.require_event("ASSIGNED_TO_SHOP", "list_online", Role.ADMIN)

        assert exc_info.value.message == (
            "Cannot list_online vault item in ASSIGNED_TO_SHOP. Allowed: IN_CASE, RETURNED"
        )
        assert exc_info.value.allowed == ["IN_CASE", "RETURNED"]

    def test_listed_item_must_be_reserved_before_sale(self) -> None:
        assert "SOLD" not in VAULT_ITEM_TABLE.targets("LISTED_ONLINE")
        assert "SOLD" in VAULT_ITEM_TABLE.targets("RESERVED")

    def test_sold_is_terminal(self) -> None:
        assert VAULT_ITEM_TABLE.is_terminal("SOLD")

    def test_order_payment_is_system_or_admin(self) -> None:
        assert VAULT_ORDER_TABLE.check_event("PENDING_PAYMENT", "pay", Role.SYSTEM)
        assert VAULT_ORDER_TABLE.check_event("PENDING_PAYMENT", "pay", Role.ADMIN)
        assert not VAULT_ORDER_TABLE.check_event("PENDING_PAYMENT", "pay", Role.BUYER)

    def test_shipped_order_cannot_be_cancelled(self) -> None:
        assert "CANCELLED" not in VAULT_ORDER_TABLE.targets("SHIPPED")
        assert "REFUNDED" in VAULT_ORDER_TABLE.targets("SHIPPED")


class TestReleaseTable:
    def test_pending_is_only_live_state(self) -> None:
        assert RELEASE_TABLE.targets("PENDING") == {"APPROVED", "REJECTED", "EXPIRED"}
        for state in ("APPROVED", "REJECTED", "EXPIRED"):
            assert RELEASE_TABLE.is_terminal(state)

    def test_only_system_expires(self) -> None:
        assert not RELEASE_TABLE.check_event("PENDING", "expire", Role.ADMIN)


@pytest.mark.parametrize("status", list(TransactionStatus))
def test_every_transaction_status_is_known_to_some_table(status: TransactionStatus) -> None:
    assert status in TRANSACTION_TABLE.states or status in FORCED_TRANSACTION_TABLE.states
