"""Tests for the in-memory payment hold provider."""

from __future__ import annotations

from decimal import Decimal

import pytest

from trade_settlement.domain.collaborators import PaymentHoldProvider
from trade_settlement.infrastructure.payments.simulated import (
    HoldStateError,
    SimulatedHoldProvider,
)


@pytest.fixture
def provider() -> SimulatedHoldProvider:
    return SimulatedHoldProvider()


class TestSimulatedHoldProvider:
    def test_satisfies_protocol(self, provider: SimulatedHoldProvider) -> None:
        assert isinstance(provider, PaymentHoldProvider)

    @pytest.mark.asyncio
    async def test_void_uncaptured_hold(self, provider: SimulatedHoldProvider) -> None:
        hold_id = await provider.create_hold(Decimal("40.00"), {"transaction_id": "t1"})
        result = await provider.cancel_or_refund(hold_id)

        assert result.action == "cancel"
        assert provider.holds[hold_id].status == "CANCELLED"

    @pytest.mark.asyncio
    async def test_capture_then_partial_refunds(self, provider: SimulatedHoldProvider) -> None:
        hold_id = await provider.create_hold(Decimal("100.00"), {})
        capture = await provider.capture(hold_id)
        assert capture.reference.startswith("cap_")

        first = await provider.cancel_or_refund(hold_id, Decimal("30.00"))
        assert first.action == "refund"
        assert provider.holds[hold_id].status == "PARTIALLY_REFUNDED"

        rest = await provider.cancel_or_refund(hold_id)
        assert rest.amount == Decimal("70.00")
        assert provider.holds[hold_id].status == "REFUNDED"

    @pytest.mark.asyncio
    async def test_replayed_key_moves_no_money(self, provider: SimulatedHoldProvider) -> None:
        hold_id = await provider.create_hold(Decimal("100.00"), {})
        await provider.capture(hold_id)

        first = await provider.cancel_or_refund(hold_id, Decimal("10.00"), idempotency_key="k1")
        replay = await provider.cancel_or_refund(hold_id, Decimal("10.00"), idempotency_key="k1")
        await provider.cancel_or_refund(hold_id, Decimal("10.00"), idempotency_key="k2")

        assert replay == first
        assert provider.holds[hold_id].refunded == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_refund_over_captured_rejected(self, provider: SimulatedHoldProvider) -> None:
        hold_id = await provider.create_hold(Decimal("10.00"), {})
        await provider.capture(hold_id)
        with pytest.raises(HoldStateError):
            await provider.cancel_or_refund(hold_id, Decimal("10.01"))

    @pytest.mark.asyncio
    async def test_double_capture_rejected(self, provider: SimulatedHoldProvider) -> None:
        hold_id = await provider.create_hold(Decimal("10.00"), {})
        await provider.capture(hold_id)
        with pytest.raises(HoldStateError):
            await provider.capture(hold_id)

    @pytest.mark.asyncio
    async def test_failure_injection(self, provider: SimulatedHoldProvider) -> None:
        provider.fail_operations.add("create_hold")
        with pytest.raises(ConnectionError):
            await provider.create_hold(Decimal("5.00"), {})

        assert provider.holds == {}
        assert provider.calls[0][0] == "create_hold"
