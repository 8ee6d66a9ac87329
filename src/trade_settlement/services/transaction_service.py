"""Transaction Settlement Service: trade lifecycle and escrow hold handling.

Coordinates between:
    - TradeState + TRANSACTION_TABLE (transition guard)
    - PaymentService (hold on create, capture on completion, void/refund on cancel)
    - Repositories through a UnitOfWork (one commit per operation)
    - Deferred audit entries and notifications

The REST routes and the session/hub/dispute services all go through here or
through the shared steps in services/transitions.py, so there is one set of
rules for every path that moves a transaction.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from trade_settlement.domain import authorization
from trade_settlement.domain.enums import (
    AuditAction,
    EntityType,
    EscrowType,
    HoldStatus,
    PackageStatus,
    RecipientType,
    ReleaseType,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import (
    DuplicateOperationError,
    InvalidRequestError,
    PreconditionFailedError,
)
from trade_settlement.domain.split_calculator import to_cents
from trade_settlement.domain.state_machine import TRANSACTION_TABLE
from trade_settlement.domain.trade_state import TradeState
from trade_settlement.infrastructure.database.orm_models import Transaction, utcnow
from trade_settlement.logging_config import get_logger
from trade_settlement.services.transitions import (
    allowed_transaction_targets,
    fire_transaction_event,
    settle_open_session,
    stage_release,
    supersede_pending_releases,
    transaction_snapshot,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from decimal import Decimal

    from trade_settlement.config import Settings
    from trade_settlement.domain.authorization import Actor
    from trade_settlement.infrastructure.database.orm_models import PendingRelease
    from trade_settlement.services.payment_service import PaymentService
    from trade_settlement.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

MAX_TRANSACTION_AMOUNT = to_cents("999999.99")


def funds_due_to_seller(txn: Transaction) -> bool:
    """LOCAL: checked in. VERIFIED: shipped and delivered to the buyer."""
    if txn.escrow_type == EscrowType.LOCAL:
        return txn.status == TransactionStatus.CONFIRMED
    return (
        txn.status == TransactionStatus.SHIPPED_TO_BUYER
        and txn.package_status == PackageStatus.DELIVERED
    )


async def request_seller_release(
    uow: UnitOfWork, txn: Transaction, actor: Actor, reason: str = "Funds due to seller"
) -> PendingRelease:
    """Stage (or return the already staged) RELEASE_TO_SELLER for a trade.

    A hub-delivered trade pays out only once the buyer has confirmed receipt
    or the auto-release window has run out.
    """
    if not funds_due_to_seller(txn):
        raise PreconditionFailedError(
            f"Funds are not due to the seller while transaction is {txn.status}"
            + (f" with package {txn.package_status}" if txn.package_status else "")
        )
    if txn.escrow_type == EscrowType.VERIFIED and not (
        txn.received_confirmed_at or txn.auto_release_requested_at
    ):
        raise PreconditionFailedError("Buyer has not confirmed receipt of the package")
    if await uow.disputes.get_open_for_transaction(txn.id) is not None:
        raise PreconditionFailedError("Cannot release funds while a dispute is open")
    if txn.payment is None or txn.payment.status != HoldStatus.HELD:
        raise PreconditionFailedError("Transaction has no active payment hold to release")

    for release in await uow.releases.get_pending_for_transaction(txn.id):
        if release.release_type == ReleaseType.RELEASE_TO_SELLER:
            return release

    return await stage_release(
        uow,
        release_type=ReleaseType.RELEASE_TO_SELLER,
        amount=txn.amount,
        recipient_id=txn.seller_id,
        recipient_type=RecipientType.SELLER,
        actor=actor,
        reason=reason,
        transaction_id=txn.id,
    )


class TransactionService:
    """Manages the trade transaction lifecycle."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        payments: PaymentService,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow = uow_factory
        self._payments = payments
        self._settings = settings
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        actor: Actor,
        proposal_id: str,
        buyer_id: str,
        seller_id: str,
        amount: Decimal,
        escrow_type: EscrowType,
        shop_id: str | None = None,
        hub_id: str | None = None,
    ) -> Transaction:
        """Open a PENDING transaction for an accepted proposal and place its hold."""
        authorization.can_create_transaction(actor, buyer_id, seller_id).enforce()

        amount = to_cents(amount)
        if amount <= 0 or amount > MAX_TRANSACTION_AMOUNT:
            raise InvalidRequestError(
                f"Amount must be between 0.01 and {MAX_TRANSACTION_AMOUNT}"
            )
        if buyer_id == seller_id:
            raise InvalidRequestError("Buyer and seller must be different users")

        state = TradeState.initial(EscrowType(escrow_type))

        async with self._uow() as uow:
            if await uow.transactions.get_by_proposal(proposal_id) is not None:
                raise DuplicateOperationError(f"proposal:{proposal_id}")

            txn = Transaction(
                id=uuid.uuid4(),
                proposal_id=proposal_id,
                buyer_id=buyer_id,
                seller_id=seller_id,
                shop_id=shop_id,
                hub_id=hub_id,
                escrow_type=state.escrow_type.value,
                status=state.status.value,
                package_status=state.package_status.value if state.package_status else None,
                amount=amount,
                created_at=self._clock(),
            )
            # A failed hold aborts creation; nothing has been written yet.
            txn.payment = await self._payments.place_hold(txn)
            await uow.transactions.add(txn)

            uow.record(
                AuditAction.TRANSACTION_CREATED,
                actor,
                EntityType.TRANSACTION,
                txn.id,
                transaction_id=txn.id,
                after=transaction_snapshot(txn),
                metadata={
                    "proposal_id": proposal_id,
                    "amount": amount,
                    "escrow_type": txn.escrow_type,
                    "hold_id": txn.payment.hold_id,
                },
            )
            for party in (buyer_id, seller_id):
                uow.notify(party, "transaction.created", transaction_id=str(txn.id))

        logger.info(
            "transaction.created",
            transaction_id=txn.id,
            escrow_type=txn.escrow_type,
            amount=amount,
        )
        return txn

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def check_in(self, transaction_id: uuid.UUID, actor: Actor) -> Transaction:
        """Both parties have met (or the trade was accepted): PENDING -> CONFIRMED."""
        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)
            authorization.can_act_on_transaction(actor, txn).enforce()
            fire_transaction_event(uow, txn, "check_in", actor, now=self._clock())
        return txn

    async def transition(
        self,
        transaction_id: uuid.UUID,
        target: TransactionStatus,
        actor: Actor,
        reason: str | None = None,
    ) -> Transaction:
        """Generic validated forward transition.

        CANCELLED is routed through cancel() so the hold is released, and
        COMPLETED captures the hold before the status moves.
        """
        target = TransactionStatus(target)
        if target == TransactionStatus.CANCELLED:
            return await self.cancel(transaction_id, actor, reason or "Cancelled")

        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)
            authorization.can_act_on_transaction(actor, txn).enforce()

            event = TRANSACTION_TABLE.require(txn.status, target, actor.role)
            if target == TransactionStatus.COMPLETED:
                fire_transaction_event(uow, txn, event, actor, now=self._clock())
                await settle_open_session(uow, txn.id, actor, completed=True)
                await uow.claim()
                if txn.payment is not None and txn.payment.status == HoldStatus.HELD:
                    await self._payments.capture(txn.payment)
            else:
                fire_transaction_event(
                    uow, txn, event, actor, metadata={"reason": reason}, now=self._clock()
                )
        return txn

    async def cancel(
        self, transaction_id: uuid.UUID, actor: Actor, reason: str
    ) -> Transaction:
        """Cancel the trade, void (or refund) its hold and wind down dependents."""
        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)
            authorization.can_cancel_transaction(actor, txn).enforce()
            await self.cancel_in(uow, txn, actor, reason)
        return txn

    async def cancel_in(
        self, uow: UnitOfWork, txn: Transaction, actor: Actor, reason: str
    ) -> None:
        """Cancellation steps inside an already open unit of work."""
        fire_transaction_event(
            uow, txn, "cancel", actor, metadata={"reason": reason}, now=self._clock()
        )
        await supersede_pending_releases(uow, txn.id, actor, "Transaction cancelled")
        await settle_open_session(uow, txn.id, actor, completed=False)
        await uow.claim()
        if txn.payment is not None and txn.payment.status in (
            HoldStatus.HELD,
            HoldStatus.CAPTURED,
            HoldStatus.PARTIALLY_REFUNDED,
        ):
            result = await self._payments.release(txn.payment, reference=f"cancel:{txn.id}")
            logger.info(
                "transaction.hold_released",
                transaction_id=txn.id,
                action=result.action,
                amount=result.amount,
            )

    # ------------------------------------------------------------------
    # Fund release
    # ------------------------------------------------------------------

    async def request_release(
        self, transaction_id: uuid.UUID, actor: Actor
    ) -> PendingRelease:
        """Ask staff to release the held funds to the seller."""
        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)
            authorization.can_request_release(actor, txn).enforce()
            release = await request_seller_release(uow, txn, actor)
        return release

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: uuid.UUID) -> Transaction:
        async with self._uow() as uow:
            return await uow.transactions.get_or_raise(transaction_id)

    async def list_for_party(self, party_id: str) -> list[Transaction]:
        async with self._uow() as uow:
            return await uow.transactions.list_for_party(party_id)

    async def get_status(self, transaction_id: uuid.UUID, actor: Actor | None = None) -> dict:
        """Current status with the targets this actor could move it to."""
        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)

        targets = allowed_transaction_targets(txn)
        if actor is not None:
            targets = {
                t for t in targets if TRANSACTION_TABLE.check(txn.status, t, actor.role)
            }
        return {
            "transaction_id": str(txn.id),
            "escrow_type": txn.escrow_type,
            "status": txn.status,
            "package_status": txn.package_status,
            "hold_status": txn.payment.status if txn.payment else None,
            "allowed_targets": sorted(targets),
        }

