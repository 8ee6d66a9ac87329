"""In-memory payment hold provider.

Used for local runs, the simulation script and tests. It enforces the same
contract as the real processor: capture only an authorized hold, void an
uncaptured hold, refund only what was captured.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from trade_settlement.domain.collaborators import PaymentResult
from trade_settlement.logging_config import get_logger

logger = get_logger(__name__)


class HoldStateError(Exception):
    """The requested operation is not valid for the hold's current state."""


@dataclass
class SimulatedHold:
    hold_id: str
    amount: Decimal
    metadata: dict
    status: str = "AUTHORIZED"
    captured: Decimal = Decimal("0.00")
    refunded: Decimal = Decimal("0.00")


@dataclass
class SimulatedHoldProvider:
    """Processor stand-in with failure and latency injection for tests.

    Attributes:
        holds: Every hold created, by id.
        calls: (operation, hold_id, amount) tuples in call order.
        latency: Seconds to sleep before answering each call.
        fail_operations: Operation names that raise until removed.
        replays: cancel_or_refund results by idempotency key; a repeated
            key returns the stored result like the real processor.
    """

    holds: dict[str, SimulatedHold] = field(default_factory=dict)
    calls: list[tuple[str, str, Decimal | None]] = field(default_factory=list)
    latency: float = 0.0
    fail_operations: set[str] = field(default_factory=set)
    replays: dict[str, PaymentResult] = field(default_factory=dict)

    async def _enter(self, operation: str, hold_id: str, amount: Decimal | None) -> None:
        self.calls.append((operation, hold_id, amount))
        if self.latency:
            await asyncio.sleep(self.latency)
        if operation in self.fail_operations:
            raise ConnectionError(f"simulated {operation} failure")

    def _get(self, hold_id: str) -> SimulatedHold:
        hold = self.holds.get(hold_id)
        if hold is None:
            raise HoldStateError(f"unknown hold {hold_id}")
        return hold

    async def create_hold(self, amount: Decimal, metadata: dict) -> str:
        hold_id = f"hold_{uuid.uuid4().hex[:24]}"
        await self._enter("create_hold", hold_id, amount)
        self.holds[hold_id] = SimulatedHold(hold_id=hold_id, amount=amount, metadata=metadata)
        logger.info("payment.hold_created", hold_id=hold_id, amount=amount, simulated=True)
        return hold_id

    async def capture(self, hold_id: str) -> PaymentResult:
        await self._enter("capture", hold_id, None)
        hold = self._get(hold_id)
        if hold.status != "AUTHORIZED":
            raise HoldStateError(f"cannot capture hold in {hold.status}")
        hold.status = "CAPTURED"
        hold.captured = hold.amount
        logger.info("payment.hold_captured", hold_id=hold_id, amount=hold.amount, simulated=True)
        return PaymentResult(hold_id, "capture", hold.amount, f"cap_{uuid.uuid4().hex[:16]}")

    async def cancel_or_refund(
        self,
        hold_id: str,
        amount: Decimal | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentResult:
        if idempotency_key in self.replays:
            return self.replays[idempotency_key]
        result = await self._cancel_or_refund(hold_id, amount)
        if idempotency_key is not None:
            self.replays[idempotency_key] = result
        return result

    async def _cancel_or_refund(self, hold_id: str, amount: Decimal | None) -> PaymentResult:
        await self._enter("cancel_or_refund", hold_id, amount)
        hold = self._get(hold_id)

        if hold.status == "AUTHORIZED":
            hold.status = "CANCELLED"
            logger.info("payment.hold_cancelled", hold_id=hold_id, simulated=True)
            return PaymentResult(hold_id, "cancel", hold.amount, f"void_{uuid.uuid4().hex[:16]}")

        if hold.status in ("CAPTURED", "PARTIALLY_REFUNDED"):
            remaining = hold.captured - hold.refunded
            refund = remaining if amount is None else amount
            if refund <= 0 or refund > remaining:
                raise HoldStateError(f"refund {refund} exceeds refundable {remaining}")
            hold.refunded += refund
            hold.status = "REFUNDED" if hold.refunded == hold.captured else "PARTIALLY_REFUNDED"
            logger.info("payment.hold_refunded", hold_id=hold_id, amount=refund, simulated=True)
            return PaymentResult(hold_id, "refund", refund, f"re_{uuid.uuid4().hex[:16]}")

        raise HoldStateError(f"cannot cancel or refund hold in {hold.status}")
