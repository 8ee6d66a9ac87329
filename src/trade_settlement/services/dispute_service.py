"""Dispute Arbitrator: dispute lifecycle, deadlines and resolution outcomes.

Opening a dispute forces the transaction onto the DISPUTED side-channel and
remembers where it came from. Resolution never moves money directly: refund
and release outcomes are staged as pending releases for dual confirmation,
everything else restores the transaction's prior status.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

from trade_settlement.domain import authorization
from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.enums import (
    AuditAction,
    DisputeResolution,
    DisputeStatus,
    DisputeType,
    EntityType,
    HoldStatus,
    RecipientType,
    ReleaseType,
    Role,
    SessionStatus,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import (
    ConcurrentTransitionError,
    InvalidRequestError,
    PreconditionFailedError,
)
from trade_settlement.domain.split_calculator import to_cents
from trade_settlement.domain.state_machine import DISPUTE_TABLE, SESSION_TABLE
from trade_settlement.infrastructure.database.orm_models import (
    Dispute,
    DisputeMessage,
    utcnow,
)
from trade_settlement.logging_config import get_logger
from trade_settlement.services.transaction_service import funds_due_to_seller
from trade_settlement.services.transitions import (
    fire_session_event,
    force_transaction_event,
    stage_release,
    supersede_pending_releases,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from decimal import Decimal

    from trade_settlement.config import Settings
    from trade_settlement.infrastructure.database.orm_models import (
        PendingRelease,
        Transaction,
    )
    from trade_settlement.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 200
DISPUTABLE_STATUSES = (TransactionStatus.CONFIRMED, TransactionStatus.COMPLETED)


def dispute_snapshot(dispute: Dispute) -> dict:
    return {
        "status": dispute.status,
        "resolution": dispute.resolution,
        "mediator_id": dispute.mediator_id,
    }


class DisputeService:
    """Opens, moves and resolves disputes against transactions."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow = uow_factory
        self._settings = settings
        self._clock = clock

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    async def open_dispute(
        self,
        transaction_id: uuid.UUID,
        actor: Actor,
        dispute_type: DisputeType,
        title: str,
        description: str,
        photos: list[str] | None = None,
    ) -> Dispute:
        dispute_type = DisputeType(dispute_type)
        title = (title or "").strip()
        description = (description or "").strip()
        if not title or len(title) > MAX_TITLE_LENGTH:
            raise InvalidRequestError(f"Title must be 1-{MAX_TITLE_LENGTH} characters")
        if not description:
            raise InvalidRequestError("A dispute needs a description")

        now = self._clock()
        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)
            authorization.can_open_dispute(actor, txn).enforce()
            await self._check_disputable(uow, txn, now)

            prior_status = txn.status
            dispute = Dispute(
                id=uuid.uuid4(),
                transaction_id=txn.id,
                dispute_type=dispute_type.value,
                status=DisputeStatus.OPEN.value,
                title=title,
                description=description,
                opened_by_id=actor.id,
                opened_at=now,
                seller_response_deadline=now
                + timedelta(hours=self._settings.dispute_response_hours),
            )
            dispute.messages = [
                DisputeMessage(
                    sender_id=actor.id,
                    sender_role=actor.role.value,
                    content=description,
                    photos=list(photos) if photos else None,
                    created_at=now,
                )
            ]
            await uow.disputes.add(dispute)

            txn.status_before_dispute = prior_status
            force_transaction_event(
                uow, txn, "hold_for_dispute", actor,
                metadata={"dispute_id": dispute.id}, now=now,
            )
            session = await uow.sessions.get_active_for_transaction(txn.id)
            if session is not None and "dispute" in SESSION_TABLE.events(session.status):
                fire_session_event(
                    uow, session, "dispute", actor, as_role=Role.SYSTEM,
                    metadata={"dispute_id": dispute.id},
                )

            uow.record(
                AuditAction.DISPUTE_OPENED,
                actor,
                EntityType.DISPUTE,
                dispute.id,
                transaction_id=txn.id,
                after=dispute_snapshot(dispute),
                metadata={
                    "dispute_type": dispute_type.value,
                    "status_before_dispute": prior_status,
                    "photo_count": len(photos or []),
                },
            )
            counterparty = txn.seller_id if actor.id == txn.buyer_id else txn.buyer_id
            uow.notify(counterparty, "dispute.opened", dispute_id=str(dispute.id))
            uow.notify("STAFF", "dispute.opened", dispute_id=str(dispute.id))

        logger.info(
            "dispute.opened",
            dispute_id=dispute.id,
            transaction_id=txn.id,
            dispute_type=dispute_type,
            opened_by=actor.id,
        )
        return dispute

    async def _check_disputable(self, uow: UnitOfWork, txn: Transaction, now: datetime) -> None:
        if txn.status not in DISPUTABLE_STATUSES:
            raise PreconditionFailedError(
                f"Only CONFIRMED or COMPLETED transactions can be disputed; "
                f"transaction is {txn.status}"
            )
        if txn.payment is None:
            raise PreconditionFailedError("Transaction has no payment hold to dispute")
        if await uow.disputes.get_open_for_transaction(txn.id) is not None:
            raise PreconditionFailedError("Transaction already has an open dispute")
        if txn.status == TransactionStatus.COMPLETED:
            window = timedelta(days=self._settings.dispute_window_days)
            if txn.completed_at is None or now > txn.completed_at + window:
                raise PreconditionFailedError(
                    f"Disputes must be opened within {self._settings.dispute_window_days} "
                    "days of completion"
                )

    # ------------------------------------------------------------------
    # Arbitration steps
    # ------------------------------------------------------------------

    async def respond(self, dispute_id: uuid.UUID, actor: Actor, message: str) -> Dispute:
        """The counterparty answers before the response deadline."""
        message = (message or "").strip()
        if not message:
            raise InvalidRequestError("A response needs a message")
        now = self._clock()
        async with self._uow() as uow:
            dispute = await uow.disputes.get_or_raise(dispute_id)
            txn = await uow.transactions.get_or_raise(dispute.transaction_id)
            authorization.can_respond_to_dispute(actor, dispute, txn).enforce()
            if now > dispute.seller_response_deadline:
                raise PreconditionFailedError("The response deadline has passed")
            self._fire(uow, dispute, "respond", actor)
            self._add_message(uow, dispute, actor, message, None, now)
            uow.notify(dispute.opened_by_id, "dispute.responded", dispute_id=str(dispute.id))
        return dispute

    async def mediate(self, dispute_id: uuid.UUID, actor: Actor) -> Dispute:
        authorization.can_arbitrate(actor).enforce()
        now = self._clock()
        async with self._uow() as uow:
            dispute = await uow.disputes.get_or_raise(dispute_id)
            self._fire(uow, dispute, "mediate", actor)
            dispute.mediator_id = actor.id
            dispute.mediation_deadline = now + timedelta(
                hours=self._settings.dispute_mediation_hours
            )
        return dispute

    async def escalate(self, dispute_id: uuid.UUID, actor: Actor) -> Dispute:
        async with self._uow() as uow:
            dispute = await uow.disputes.get_or_raise(dispute_id)
            txn = await uow.transactions.get_or_raise(dispute.transaction_id)
            authorization.can_escalate_dispute(actor, txn).enforce()
            if actor.role in (Role.BUYER, Role.SELLER) and dispute.status not in (
                DisputeStatus.OPEN,
                DisputeStatus.SELLER_RESPONSE,
            ):
                raise PreconditionFailedError(
                    "Parties may only escalate before mediation starts"
                )
            self._fire(uow, dispute, "escalate", actor)
            uow.notify("STAFF", "dispute.escalated", dispute_id=str(dispute.id))
        return dispute

    async def resolve(
        self,
        dispute_id: uuid.UUID,
        actor: Actor,
        resolution: DisputeResolution,
        amount: Decimal | None = None,
        notes: str | None = None,
    ) -> tuple[Dispute, PendingRelease | None]:
        """Decide the dispute. Returns the staged release, if the outcome moves money."""
        authorization.can_arbitrate(actor).enforce()
        resolution = DisputeResolution(resolution)
        now = self._clock()

        async with self._uow() as uow:
            dispute = await uow.disputes.get_or_raise(dispute_id)
            DISPUTE_TABLE.require_event(dispute.status, "resolve", actor.role)
            txn = await uow.transactions.get_or_raise(dispute.transaction_id)
            if txn.payment is None:
                raise PreconditionFailedError("Transaction has no payment hold")

            await supersede_pending_releases(
                uow, txn.id, actor, f"Superseded by dispute resolution {resolution}"
            )
            release, resolved_amount = await self._apply_outcome(
                uow, dispute, txn, actor, resolution, amount, now
            )

            before = dispute_snapshot(dispute)
            dispute.status = DisputeStatus.RESOLVED.value
            dispute.resolution = resolution.value
            dispute.resolution_amount = resolved_amount
            dispute.resolution_notes = notes
            dispute.resolved_by_id = actor.id
            dispute.resolved_at = now
            uow.record(
                AuditAction.DISPUTE_RESOLVED,
                actor,
                EntityType.DISPUTE,
                dispute.id,
                transaction_id=txn.id,
                before=before,
                after=dispute_snapshot(dispute),
                metadata={
                    "resolution": resolution.value,
                    "amount": resolved_amount,
                    "release_id": release.id if release else None,
                    "notes": notes,
                },
            )
            for party in (txn.buyer_id, txn.seller_id):
                uow.notify(
                    party, "dispute.resolved",
                    dispute_id=str(dispute.id), resolution=resolution.value,
                )

        logger.info(
            "dispute.resolved",
            dispute_id=dispute.id,
            resolution=resolution,
            release_id=release.id if release else None,
        )
        return dispute, release

    async def close(self, dispute_id: uuid.UUID, actor: Actor) -> Dispute:
        async with self._uow() as uow:
            dispute = await uow.disputes.get_or_raise(dispute_id)
            self._fire(uow, dispute, "close", actor)
            dispute.closed_at = self._clock()
        return dispute

    async def add_message(
        self,
        dispute_id: uuid.UUID,
        actor: Actor,
        content: str,
        photos: list[str] | None = None,
    ) -> DisputeMessage:
        content = (content or "").strip()
        if not content:
            raise InvalidRequestError("Message content is required")
        async with self._uow() as uow:
            dispute = await uow.disputes.get_or_raise(dispute_id)
            txn = await uow.transactions.get_or_raise(dispute.transaction_id)
            authorization.can_post_dispute_message(actor, txn).enforce()
            if dispute.status == DisputeStatus.CLOSED:
                raise PreconditionFailedError("Cannot post to a closed dispute")
            message = self._add_message(uow, dispute, actor, content, photos, self._clock())
            for participant in (txn.buyer_id, txn.seller_id, dispute.mediator_id):
                if participant != actor.id:
                    uow.notify(participant, "dispute.message", dispute_id=str(dispute.id))
        return message

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def escalate_overdue(self, now: datetime | None = None) -> int:
        """OPEN past the response deadline or IN_MEDIATION past mediation -> ESCALATED."""
        now = now or self._clock()
        async with self._uow() as uow:
            candidates = [d.id for d in await uow.disputes.get_overdue(now)]

        escalated = 0
        system = Actor.system()
        for dispute_id in candidates:
            try:
                async with self._uow() as uow:
                    dispute = await uow.disputes.get_or_raise(dispute_id)
                    if not self._is_overdue(dispute, now):
                        continue
                    self._fire(uow, dispute, "escalate", system, metadata={"overdue": True})
                    uow.notify("STAFF", "dispute.escalated", dispute_id=str(dispute.id))
                escalated += 1
            except ConcurrentTransitionError:
                logger.info("dispute.escalation_race_lost", dispute_id=dispute_id)
        if escalated:
            logger.info("dispute.sweep_escalated", count=escalated)
        return escalated

    @staticmethod
    def _is_overdue(dispute: Dispute, now: datetime) -> bool:
        if dispute.status == DisputeStatus.OPEN:
            return dispute.seller_response_deadline <= now
        if dispute.status == DisputeStatus.IN_MEDIATION:
            return dispute.mediation_deadline is not None and dispute.mediation_deadline <= now
        return False

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        async with self._uow() as uow:
            return await uow.disputes.get_or_raise(dispute_id)

    async def list_for_transaction(self, transaction_id: uuid.UUID) -> list[Dispute]:
        async with self._uow() as uow:
            return await uow.disputes.get_by_transaction(transaction_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _fire(
        self,
        uow: UnitOfWork,
        dispute: Dispute,
        event: str,
        actor: Actor,
        metadata: dict | None = None,
    ) -> str:
        before = dispute_snapshot(dispute)
        target = DISPUTE_TABLE.require_event(dispute.status, event, actor.role)
        dispute.status = target
        uow.record(
            AuditAction.DISPUTE_TRANSITIONED,
            actor,
            EntityType.DISPUTE,
            dispute.id,
            transaction_id=dispute.transaction_id,
            before=before,
            after=dispute_snapshot(dispute),
            metadata={"event": event, **(metadata or {})},
        )
        logger.info(
            "dispute.transitioned",
            dispute_id=dispute.id,
            from_status=before["status"],
            to_status=target,
            actor_id=actor.id,
        )
        return target

    @staticmethod
    def _add_message(
        uow: UnitOfWork,
        dispute: Dispute,
        actor: Actor,
        content: str,
        photos: list[str] | None,
        now: datetime,
    ) -> DisputeMessage:
        message = DisputeMessage(
            dispute_id=dispute.id,
            sender_id=actor.id,
            sender_role=actor.role.value,
            content=content,
            photos=list(photos) if photos else None,
            created_at=now,
        )
        dispute.messages.append(message)
        return message

    async def _apply_outcome(
        self,
        uow: UnitOfWork,
        dispute: Dispute,
        txn: Transaction,
        actor: Actor,
        resolution: DisputeResolution,
        amount: Decimal | None,
        now: datetime,
    ) -> tuple[PendingRelease | None, Decimal | None]:
        payment = txn.payment
        refundable = payment.amount - payment.refunded_amount

        if resolution in (DisputeResolution.REFUND_FULL, DisputeResolution.IN_FAVOR_BUYER):
            if refundable <= 0:
                raise PreconditionFailedError("Nothing left on the hold to refund")
            release = await stage_release(
                uow,
                release_type=ReleaseType.REFUND_FULL,
                amount=refundable,
                recipient_id=txn.buyer_id,
                recipient_type=RecipientType.BUYER,
                actor=actor,
                reason=f"Dispute resolved: {resolution}",
                transaction_id=txn.id,
                dispute_id=dispute.id,
            )
            return release, refundable

        if resolution == DisputeResolution.REFUND_PARTIAL:
            if amount is None:
                raise InvalidRequestError("A partial refund needs an amount")
            amount = to_cents(amount)
            if amount <= 0 or amount > payment.amount:
                raise InvalidRequestError(
                    f"Partial refund must be between 0.01 and the held {payment.amount}"
                )
            if amount > refundable:
                raise InvalidRequestError(f"Partial refund exceeds the refundable {refundable}")
            release = await stage_release(
                uow,
                release_type=ReleaseType.REFUND_PARTIAL,
                amount=amount,
                recipient_id=txn.buyer_id,
                recipient_type=RecipientType.BUYER,
                actor=actor,
                reason=f"Dispute resolved: {resolution}",
                transaction_id=txn.id,
                dispute_id=dispute.id,
            )
            return release, amount

        release = None
        if resolution == DisputeResolution.IN_FAVOR_SELLER and payment.status == HoldStatus.HELD:
            self._restore(uow, txn, actor, dispute, now)
            # a hub trade that has not been delivered yet carries on through the hub
            if funds_due_to_seller(txn):
                release = await stage_release(
                    uow,
                    release_type=ReleaseType.RELEASE_TO_SELLER,
                    amount=txn.amount,
                    recipient_id=txn.seller_id,
                    recipient_type=RecipientType.SELLER,
                    actor=actor,
                    reason=f"Dispute resolved: {resolution}",
                    transaction_id=txn.id,
                    dispute_id=dispute.id,
                )
        elif resolution == DisputeResolution.IN_FAVOR_SELLER:
            # already captured: the trade simply stands
            force_transaction_event(
                uow, txn, "restore_completed", actor,
                metadata={"dispute_id": dispute.id}, now=now,
            )
            txn.status_before_dispute = None
        else:
            self._restore(uow, txn, actor, dispute, now)

        await self._resume_session(uow, txn, actor, resolution)
        return release, None

    @staticmethod
    def _restore(
        uow: UnitOfWork, txn: Transaction, actor: Actor, dispute: Dispute, now: datetime
    ) -> None:
        event = (
            "restore_completed"
            if txn.status_before_dispute == TransactionStatus.COMPLETED
            else "restore_confirmed"
        )
        force_transaction_event(uow, txn, event, actor, metadata={"dispute_id": dispute.id}, now=now)
        txn.status_before_dispute = None

    @staticmethod
    async def _resume_session(
        uow: UnitOfWork, txn: Transaction, actor: Actor, resolution: DisputeResolution
    ) -> None:
        session = await uow.sessions.get_active_for_transaction(txn.id)
        if session is None or session.status != SessionStatus.DISPUTED:
            return
        event = (
            "resume_release"
            if resolution == DisputeResolution.IN_FAVOR_SELLER
            else "resume_passed"
        )
        fire_session_event(uow, session, event, actor)
