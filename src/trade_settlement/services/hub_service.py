"""Custody Hub Service: verification-hub package handling for VERIFIED trades.

Every package step is validated twice: against PACKAGE_TABLE (is the package
allowed to move, by this role) and against TradeState (is the paired
transaction at the status the step requires). The transaction moves with the
package in the same unit of work; a pairing violation is an error, never
coerced.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import TYPE_CHECKING

from trade_settlement.domain import authorization
from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.enums import (
    AuditAction,
    EntityType,
    EscrowType,
    HoldStatus,
    PackageStatus,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import (
    ConcurrentTransitionError,
    InvalidRequestError,
    PreconditionFailedError,
)
from trade_settlement.domain.state_machine import PACKAGE_TABLE
from trade_settlement.infrastructure.database.orm_models import utcnow
from trade_settlement.logging_config import get_logger
from trade_settlement.services.transaction_service import request_seller_release
from trade_settlement.services.transitions import (
    apply_trade_state,
    fire_transaction_event,
    trade_state_of,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable
    from datetime import datetime

    from trade_settlement.config import Settings
    from trade_settlement.infrastructure.database.orm_models import (
        PendingRelease,
        Transaction,
    )
    from trade_settlement.services.transaction_service import TransactionService
    from trade_settlement.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

TRACKING_NUMBER_PATTERN = re.compile(r"^[A-Z0-9]{8,20}$")
MIN_VERIFICATION_PHOTOS = 3


def normalize_tracking_number(tracking: str | None) -> str:
    value = (tracking or "").strip().upper()
    if not TRACKING_NUMBER_PATTERN.match(value):
        raise InvalidRequestError("Tracking number must be 8-20 letters or digits")
    return value


class HubService:
    """Moves hub packages and their paired transactions in lockstep."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        transactions: TransactionService,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow = uow_factory
        self._transactions = transactions
        self._settings = settings
        self._clock = clock

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def mark_awaiting_hub_receipt(
        self, transaction_id: uuid.UUID, actor: Actor
    ) -> Transaction:
        """Seller is about to ship to the hub: CONFIRMED -> AWAITING_HUB_RECEIPT."""
        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)
            authorization.can_act_on_transaction(actor, txn).enforce()
            fire_transaction_event(uow, txn, "await_hub_receipt", actor, now=self._clock())
        return txn

    async def dispatch_to_hub(
        self, transaction_id: uuid.UUID, actor: Actor, tracking_number: str
    ) -> Transaction:
        tracking = normalize_tracking_number(tracking_number)
        async with self._uow() as uow:
            txn = await self._advance(
                uow, transaction_id, PackageStatus.IN_TRANSIT_TO_HUB, actor,
                metadata={"inbound_tracking": tracking},
            )
            txn.inbound_tracking = tracking
        return txn

    async def receive(self, transaction_id: uuid.UUID, actor: Actor) -> Transaction:
        async with self._uow() as uow:
            txn = await self._advance(uow, transaction_id, PackageStatus.RECEIVED_AT_HUB, actor)
        return txn

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def start_verification(self, transaction_id: uuid.UUID, actor: Actor) -> Transaction:
        async with self._uow() as uow:
            txn = await self._advance(
                uow, transaction_id, PackageStatus.VERIFICATION_IN_PROGRESS, actor
            )
        return txn

    async def verify(
        self,
        transaction_id: uuid.UUID,
        actor: Actor,
        notes: str,
        photo_count: int,
    ) -> Transaction:
        """Item matches the listing. Requires notes and at least three photos."""
        if photo_count < MIN_VERIFICATION_PHOTOS:
            raise InvalidRequestError(
                f"Verification requires at least {MIN_VERIFICATION_PHOTOS} photos"
            )
        if not notes or not notes.strip():
            raise InvalidRequestError("Verification notes are required")
        async with self._uow() as uow:
            txn = await self._advance(
                uow, transaction_id, PackageStatus.VERIFIED, actor,
                metadata={"notes": notes.strip(), "photo_count": photo_count},
            )
        return txn

    async def fail_verification(
        self, transaction_id: uuid.UUID, actor: Actor, reason: str
    ) -> Transaction:
        """Item does not match: cancel the trade and void the hold."""
        authorization.can_operate_hub(actor).enforce()
        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)
            if txn.status != TransactionStatus.VERIFICATION_IN_PROGRESS:
                raise PreconditionFailedError(
                    f"Verification can only fail while in progress; transaction is {txn.status}"
                )
            await self._transactions.cancel_in(
                uow, txn, actor, f"Hub verification failed: {reason}"
            )
        logger.info("hub.verification_failed", transaction_id=txn.id, reason=reason)
        return txn

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def ship(
        self, transaction_id: uuid.UUID, actor: Actor, tracking_number: str
    ) -> Transaction:
        tracking = normalize_tracking_number(tracking_number)
        async with self._uow() as uow:
            txn = await self._advance(
                uow, transaction_id, PackageStatus.SHIPPED, actor,
                metadata={"return_tracking": tracking},
            )
            txn.return_tracking = tracking
        return txn

    async def deliver(self, transaction_id: uuid.UUID, actor: Actor) -> Transaction:
        """Carrier confirmed delivery. Payout waits for the buyer or the auto-release window."""
        async with self._uow() as uow:
            txn = await self._advance(uow, transaction_id, PackageStatus.DELIVERED, actor)
            txn.delivered_at = self._clock()
        return txn

    async def confirm_received(
        self, transaction_id: uuid.UUID, actor: Actor
    ) -> tuple[Transaction, PendingRelease]:
        """Buyer confirms the delivered item arrived; stage the seller's release."""
        now = self._clock()
        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)
            authorization.can_confirm_receipt(actor, txn).enforce()
            if txn.escrow_type != EscrowType.VERIFIED:
                raise PreconditionFailedError("Only hub-verified trades have a package to confirm")
            if txn.received_confirmed_at is not None:
                raise PreconditionFailedError("Receipt has already been confirmed")
            if txn.package_status != PackageStatus.DELIVERED:
                raise PreconditionFailedError(
                    f"Receipt can only be confirmed once delivered; package is {txn.package_status}"
                )
            txn.received_confirmed_at = now
            txn.delivered_at = txn.delivered_at or now
            release = await request_seller_release(
                uow, txn, actor, reason="Buyer confirmed receipt"
            )
            uow.record(
                AuditAction.PACKAGE_RECEIPT_CONFIRMED,
                actor,
                EntityType.PACKAGE,
                txn.id,
                transaction_id=txn.id,
                after={"received_confirmed_at": now.isoformat()},
                metadata={"release_id": release.id},
            )
            uow.notify(txn.seller_id, "package.receipt_confirmed", transaction_id=str(txn.id))
        logger.info("hub.receipt_confirmed", transaction_id=txn.id, release_id=release.id)
        return txn, release

    async def auto_release_delivered(self, now: datetime | None = None) -> int:
        """Sweep: stage the seller's release for deliveries the buyer never confirmed."""
        now = now or self._clock()
        cutoff = now - timedelta(hours=self._settings.auto_release_hours)
        async with self._uow() as uow:
            candidates = [t.id for t in await uow.transactions.get_auto_release_due(cutoff)]

        staged = 0
        system = Actor.system()
        for transaction_id in candidates:
            try:
                async with self._uow() as uow:
                    txn = await uow.transactions.get_or_raise(transaction_id)
                    if txn.received_confirmed_at or txn.auto_release_requested_at:
                        continue
                    if await uow.disputes.get_open_for_transaction(txn.id) is not None:
                        continue
                    if txn.payment is None or txn.payment.status != HoldStatus.HELD:
                        continue
                    txn.auto_release_requested_at = now
                    release = await request_seller_release(
                        uow,
                        txn,
                        system,
                        reason=f"Auto-release {self._settings.auto_release_hours}h after delivery",
                    )
                    uow.record(
                        AuditAction.PACKAGE_AUTO_RELEASED,
                        system,
                        EntityType.PACKAGE,
                        txn.id,
                        transaction_id=txn.id,
                        after={"auto_release_requested_at": now.isoformat()},
                        metadata={"release_id": release.id, "delivered_at": txn.delivered_at},
                    )
                    uow.notify(txn.seller_id, "package.auto_released", transaction_id=str(txn.id))
                    uow.notify(txn.buyer_id, "package.auto_released", transaction_id=str(txn.id))
                staged += 1
            except ConcurrentTransitionError:
                logger.info("hub.auto_release_race_lost", transaction_id=transaction_id)
        if staged:
            logger.info("hub.sweep_auto_released", count=staged)
        return staged

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _advance(
        self,
        uow: UnitOfWork,
        transaction_id: uuid.UUID,
        target: PackageStatus,
        actor: Actor,
        metadata: dict | None = None,
    ) -> Transaction:
        txn = await uow.transactions.get_or_raise(transaction_id)
        if txn.package_status is None:
            raise PreconditionFailedError("LOCAL escrow trades have no hub package")

        event = PACKAGE_TABLE.require(txn.package_status, target, actor.role)
        before_package = txn.package_status
        new_state = trade_state_of(txn).advance_package(target)
        moved_transaction = new_state.status != txn.status

        if moved_transaction:
            apply_trade_state(
                uow, txn, new_state, actor,
                metadata={"package_event": event, **(metadata or {})},
                now=self._clock(),
            )
        else:
            txn.package_status = new_state.package_status.value

        uow.record(
            AuditAction.PACKAGE_TRANSITIONED,
            actor,
            EntityType.PACKAGE,
            txn.id,
            transaction_id=txn.id,
            before={"package_status": before_package},
            after={"package_status": txn.package_status},
            metadata={"event": event, **(metadata or {})},
        )
        uow.notify(txn.buyer_id, "package.updated", transaction_id=str(txn.id),
                   package_status=txn.package_status)
        uow.notify(txn.seller_id, "package.updated", transaction_id=str(txn.id),
                   package_status=txn.package_status)
        logger.info(
            "hub.package_advanced",
            transaction_id=txn.id,
            from_package=before_package,
            to_package=txn.package_status,
            transaction_status=txn.status,
        )
        return txn
