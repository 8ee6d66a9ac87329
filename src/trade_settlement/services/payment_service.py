"""Payment Service: escrow holds against the external processor.

Wraps a PaymentHoldProvider with a hard deadline per call and keeps the
EscrowPayment row in step with what the processor did. Every call happens
inside an open unit of work and before its commit, so a failed or timed-out
call rolls the operation back and surfaces as a retryable
PaymentProviderError.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from trade_settlement.domain.enums import HoldStatus
from trade_settlement.domain.exceptions import PaymentProviderError, PreconditionFailedError
from trade_settlement.infrastructure.database.orm_models import EscrowPayment, utcnow
from trade_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable
    from decimal import Decimal

    from trade_settlement.domain.collaborators import PaymentHoldProvider, PaymentResult
    from trade_settlement.infrastructure.database.orm_models import Transaction

logger = get_logger(__name__)

_RELEASABLE = (HoldStatus.HELD, HoldStatus.CAPTURED, HoldStatus.PARTIALLY_REFUNDED)


class PaymentService:
    """Places, captures and releases the hold backing each transaction."""

    def __init__(self, provider: PaymentHoldProvider, timeout_seconds: float = 10.0) -> None:
        self._provider = provider
        self._timeout = timeout_seconds

    async def _call(self, operation: str, hold_id: str | None, call: Awaitable):  # noqa: ANN201
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except TimeoutError as err:
            logger.warning(
                "payment.timeout", operation=operation, hold_id=hold_id, timeout=self._timeout
            )
            raise PaymentProviderError(operation, hold_id) from err
        except Exception as err:
            logger.error("payment.failed", operation=operation, hold_id=hold_id, error=str(err))
            raise PaymentProviderError(operation, hold_id) from err

    # ------------------------------------------------------------------
    # Holds
    # ------------------------------------------------------------------

    async def place_hold(self, txn: Transaction) -> EscrowPayment:
        """Authorize the trade amount. The caller persists the returned row."""
        hold_id = await self._call(
            "create_hold",
            None,
            self._provider.create_hold(
                txn.amount,
                {
                    "transaction_id": str(txn.id),
                    "proposal_id": txn.proposal_id,
                    "idempotency_key": f"hold:{txn.proposal_id}",
                },
            ),
        )
        logger.info("payment.hold_placed", transaction_id=txn.id, hold_id=hold_id)
        return EscrowPayment(
            transaction_id=txn.id,
            hold_id=hold_id,
            amount=txn.amount,
            status=HoldStatus.HELD.value,
        )

    async def capture(self, payment: EscrowPayment) -> PaymentResult:
        if payment.status != HoldStatus.HELD:
            raise PreconditionFailedError(
                f"Payment hold cannot be captured while {payment.status}"
            )
        result = await self._call(
            "capture", payment.hold_id, self._provider.capture(payment.hold_id)
        )
        payment.status = HoldStatus.CAPTURED.value
        payment.captured_at = utcnow()
        logger.info("payment.captured", hold_id=payment.hold_id, amount=result.amount)
        return result

    async def release(
        self,
        payment: EscrowPayment,
        amount: Decimal | None = None,
        *,
        reference: str | None = None,
    ) -> PaymentResult:
        """Give money back to the buyer.

        amount=None voids an uncaptured hold or refunds whatever remains
        captured. A partial amount against an uncaptured hold captures first
        (the rest belongs to the seller) and then refunds the part.
        `reference` is the processor idempotency key for this movement.
        """
        if payment.status not in _RELEASABLE:
            raise PreconditionFailedError(
                f"Payment hold is already {payment.status}; nothing to release"
            )
        if amount is not None and amount > payment.amount - payment.refunded_amount:
            raise PreconditionFailedError(
                f"Refund {amount} exceeds refundable {payment.amount - payment.refunded_amount}"
            )

        if payment.status == HoldStatus.HELD and amount is None:
            result = await self._call(
                "cancel",
                payment.hold_id,
                self._provider.cancel_or_refund(payment.hold_id, idempotency_key=reference),
            )
            payment.status = HoldStatus.CANCELLED.value
            logger.info("payment.voided", hold_id=payment.hold_id)
            return result

        if payment.status == HoldStatus.HELD:
            await self.capture(payment)

        result = await self._call(
            "refund",
            payment.hold_id,
            self._provider.cancel_or_refund(payment.hold_id, amount, idempotency_key=reference),
        )
        payment.refunded_amount = payment.refunded_amount + result.amount
        payment.refunded_at = utcnow()
        payment.status = (
            HoldStatus.REFUNDED.value
            if payment.refunded_amount >= payment.amount
            else HoldStatus.PARTIALLY_REFUNDED.value
        )
        logger.info(
            "payment.refunded",
            hold_id=payment.hold_id,
            amount=result.amount,
            status=payment.status,
        )
        return result
