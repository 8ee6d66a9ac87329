"""Tests for the joint transaction/package state."""

from __future__ import annotations

import pytest

from trade_settlement.domain.enums import EscrowType, PackageStatus, TransactionStatus
from trade_settlement.domain.exceptions import InvalidTradeStateError, PreconditionFailedError
from trade_settlement.domain import trade_state
from trade_settlement.domain.state_machine import TRANSACTION_TABLE
from trade_settlement.domain.trade_state import (
    PACKAGE_STEPS,
    PackageStep,
    TradeState,
    is_valid_pair,
)

T = TransactionStatus
P = PackageStatus


class TestConstruction:
    def test_initial_local_has_no_package(self) -> None:
        state = TradeState.initial(EscrowType.LOCAL)
        assert state.status == T.PENDING
        assert state.package_status is None

    def test_initial_verified_package_pending(self) -> None:
        state = TradeState.initial(EscrowType.VERIFIED)
        assert state.package_status == P.PENDING

    def test_invalid_pair_cannot_be_built(self) -> None:
        with pytest.raises(InvalidTradeStateError):
            TradeState(EscrowType.VERIFIED, T.VERIFIED, P.RECEIVED_AT_HUB)

    def test_invalid_trade_state_is_a_precondition_failure(self) -> None:
        with pytest.raises(PreconditionFailedError):
            TradeState(EscrowType.VERIFIED, T.COMPLETED, P.SHIPPED)

    def test_local_cannot_enter_hub_status(self) -> None:
        assert not is_valid_pair(EscrowType.LOCAL, T.HUB_RECEIVED, None)
        with pytest.raises(InvalidTradeStateError):
            TradeState(EscrowType.LOCAL, T.AWAITING_HUB_RECEIPT)

    def test_verified_needs_a_package(self) -> None:
        assert not is_valid_pair(EscrowType.VERIFIED, T.PENDING, None)

    def test_string_inputs_are_coerced(self) -> None:
        state = TradeState("VERIFIED", "SHIPPED_TO_BUYER", "DELIVERED")
        assert state.status is T.SHIPPED_TO_BUYER
        assert state.package_status is P.DELIVERED

    def test_cancelled_and_disputed_pair_with_any_package(self) -> None:
        for package in P:
            assert is_valid_pair(EscrowType.VERIFIED, T.CANCELLED, package)
            assert is_valid_pair(EscrowType.VERIFIED, T.DISPUTED, package)


class TestAdvancePackage:
    def test_full_custody_walk(self) -> None:
        state = TradeState(EscrowType.VERIFIED, T.AWAITING_HUB_RECEIPT, P.PENDING)
        expected = [
            (P.IN_TRANSIT_TO_HUB, T.AWAITING_HUB_RECEIPT),
            (P.RECEIVED_AT_HUB, T.HUB_RECEIVED),
            (P.VERIFICATION_IN_PROGRESS, T.VERIFICATION_IN_PROGRESS),
            (P.VERIFIED, T.VERIFIED),
            (P.SHIPPED, T.SHIPPED_TO_BUYER),
            (P.DELIVERED, T.SHIPPED_TO_BUYER),
        ]
        for package, status in expected:
            state = state.advance_package(package)
            assert (state.status, state.package_status) == (status, package)

    def test_dispatch_requires_awaiting_hub_receipt(self) -> None:
        state = TradeState(EscrowType.VERIFIED, T.CONFIRMED, P.PENDING)
        with pytest.raises(PreconditionFailedError, match="requires AWAITING_HUB_RECEIPT"):
            state.advance_package(P.IN_TRANSIT_TO_HUB)

    def test_local_has_no_package(self) -> None:
        state = TradeState.initial(EscrowType.LOCAL)
        with pytest.raises(PreconditionFailedError):
            state.advance_package(P.IN_TRANSIT_TO_HUB)

    def test_cannot_move_back_to_pending(self) -> None:
        state = TradeState(EscrowType.VERIFIED, T.AWAITING_HUB_RECEIPT, P.IN_TRANSIT_TO_HUB)
        with pytest.raises(PreconditionFailedError):
            state.advance_package(P.PENDING)

    def test_steps_follow_transaction_table(self) -> None:
        for package, step in PACKAGE_STEPS.items():
            if step.transaction_event is None:
                assert step.required_status == step.resulting_status, package
                continue
            assert (
                TRANSACTION_TABLE.target_of(step.required_status, step.transaction_event)
                == step.resulting_status
            ), package

    def test_step_with_unknown_event_is_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        steps = {
            **PACKAGE_STEPS,
            P.RECEIVED_AT_HUB: PackageStep(T.AWAITING_HUB_RECEIPT, T.HUB_RECEIVED, "verify"),
        }
        monkeypatch.setattr(trade_state, "PACKAGE_STEPS", steps)
        state = TradeState(EscrowType.VERIFIED, T.AWAITING_HUB_RECEIPT, P.IN_TRANSIT_TO_HUB)

        with pytest.raises(PreconditionFailedError, match="cannot verify from AWAITING_HUB_RECEIPT"):
            state.advance_package(P.RECEIVED_AT_HUB)


class TestAllowedTargets:
    def test_local_confirmed_filters_hub_targets(self) -> None:
        state = TradeState(EscrowType.LOCAL, T.CONFIRMED)
        allowed = state.allowed_targets({"AWAITING_HUB_RECEIPT", "COMPLETED", "CANCELLED"})
        assert allowed == {"COMPLETED", "CANCELLED"}

    def test_verified_confirmed_cannot_complete(self) -> None:
        state = TradeState(EscrowType.VERIFIED, T.CONFIRMED, P.PENDING)
        allowed = state.allowed_targets({"AWAITING_HUB_RECEIPT", "COMPLETED", "CANCELLED"})
        assert allowed == {"AWAITING_HUB_RECEIPT", "CANCELLED"}
