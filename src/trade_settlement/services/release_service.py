"""Release Approval Service: dual confirmation for irreversible money movement.

Flow:
    1. initiate_approval: a staff member asks to approve; a single-use token
       (secrets.token_urlsafe) valid for `release_token_ttl_seconds` is stored.
    2. confirm_approval: the same staff member echoes the token back. In ONE
       unit of work the token is checked (constant-time) and cleared, the
       payment action runs, the release becomes APPROVED and the transaction
       (and its session) move to their final status.

A wrong or expired token burns the pending approval: the release stays
PENDING and approval has to be initiated again. A payment failure rolls
everything back, so the token stays usable until it expires.
"""

from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from trade_settlement.domain import authorization
from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.enums import (
    AuditAction,
    EntityType,
    HoldStatus,
    RecipientType,
    ReleaseStatus,
    ReleaseType,
    Role,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import (
    ConcurrentTransitionError,
    InvalidRequestError,
    PermissionDeniedError,
    PreconditionFailedError,
    ReleaseTokenError,
)
from trade_settlement.domain.split_calculator import to_cents
from trade_settlement.domain.state_machine import RELEASE_TABLE
from trade_settlement.infrastructure.database.orm_models import utcnow
from trade_settlement.logging_config import get_logger
from trade_settlement.services.transitions import (
    fire_transaction_event,
    force_transaction_event,
    release_snapshot,
    settle_open_session,
    stage_release,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable
    from datetime import datetime
    from decimal import Decimal

    from trade_settlement.config import Settings
    from trade_settlement.domain.collaborators import PaymentResult
    from trade_settlement.infrastructure.database.orm_models import (
        PendingRelease,
        Transaction,
    )
    from trade_settlement.services.payment_service import PaymentService
    from trade_settlement.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

MIN_REJECTION_REASON_LENGTH = 10


@dataclass(frozen=True)
class ReleaseSummary:
    """What the approving staff member is shown before confirming."""

    release_id: str
    release_type: str
    label: str
    amount: Decimal
    recipient_id: str
    recipient_type: str
    reason: str | None
    token: str
    expires_at: datetime
    expires_in_seconds: int


class ReleaseService:
    """Stages, approves, rejects and expires pending releases."""

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
    # Staging
    # ------------------------------------------------------------------

    async def create_release(
        self,
        actor: Actor,
        release_type: ReleaseType,
        amount: Decimal,
        recipient_id: str,
        recipient_type: RecipientType,
        reason: str,
        transaction_id: uuid.UUID | None = None,
    ) -> PendingRelease:
        """Stage a release by hand (commissions, withdrawals, re-issued refunds)."""
        authorization.can_approve_release(actor).enforce()
        release_type = ReleaseType(release_type)
        amount = to_cents(amount)
        if amount <= 0:
            raise InvalidRequestError("Release amount must be positive")

        async with self._uow() as uow:
            if transaction_id is not None:
                txn = await uow.transactions.get_or_raise(transaction_id)
                self._check_amount_against_hold(txn, release_type, amount)
            elif release_type not in (ReleaseType.WITHDRAWAL, ReleaseType.HUB_COMMISSION):
                raise InvalidRequestError(f"{release_type} requires a transaction")
            release = await stage_release(
                uow,
                release_type=release_type,
                amount=amount,
                recipient_id=recipient_id,
                recipient_type=RecipientType(recipient_type),
                actor=actor,
                reason=reason,
                transaction_id=transaction_id,
            )
        return release

    # ------------------------------------------------------------------
    # Dual confirmation
    # ------------------------------------------------------------------

    async def initiate_approval(self, release_id: uuid.UUID, actor: Actor) -> ReleaseSummary:
        authorization.can_approve_release(actor).enforce()
        now = self._clock()
        ttl = self._settings.release_token_ttl_seconds

        async with self._uow() as uow:
            release = await uow.releases.get_or_raise(release_id)
            RELEASE_TABLE.require_event(release.status, "approve", actor.role)

            token = secrets.token_urlsafe(32)
            release.confirmation_token = token
            release.token_expires_at = now + timedelta(seconds=ttl)
            release.initiated_by_id = actor.id

            uow.record(
                AuditAction.RELEASE_APPROVAL_INITIATED,
                actor,
                EntityType.RELEASE,
                release.id,
                transaction_id=release.transaction_id,
                metadata={"token_expires_at": release.token_expires_at},
            )

        logger.info(
            "release.approval_initiated",
            release_id=release.id,
            initiated_by=actor.id,
            expires_at=release.token_expires_at,
        )
        release_type = ReleaseType(release.release_type)
        return ReleaseSummary(
            release_id=str(release.id),
            release_type=release_type.value,
            label=release_type.label,
            amount=release.amount,
            recipient_id=release.recipient_id,
            recipient_type=release.recipient_type,
            reason=release.reason,
            token=token,
            expires_at=release.token_expires_at,
            expires_in_seconds=ttl,
        )

    async def confirm_approval(
        self,
        release_id: uuid.UUID,
        actor: Actor,
        token: str,
        notes: str | None = None,
    ) -> PendingRelease:
        authorization.can_approve_release(actor).enforce()
        now = self._clock()
        token_failure: ReleaseTokenError | None = None

        async with self._uow() as uow:
            release = await uow.releases.get_or_raise(release_id)
            RELEASE_TABLE.require_event(release.status, "approve", actor.role)

            if release.confirmation_token is None:
                raise ReleaseTokenError("No approval in progress; initiate approval first")
            if release.initiated_by_id != actor.id:
                raise PermissionDeniedError(
                    "Only the staff member who initiated approval may confirm it"
                )

            if not hmac.compare_digest(release.confirmation_token, token or ""):
                token_failure = ReleaseTokenError(
                    "Confirmation token does not match; initiate approval again"
                )
            elif release.token_expires_at is None or release.token_expires_at <= now:
                token_failure = ReleaseTokenError(
                    "Confirmation token has expired; initiate approval again", expired=True
                )

            if token_failure is not None:
                # burn the token; committed before the error surfaces
                self._clear_token(release)
                logger.warning(
                    "release.token_rejected", release_id=release.id, code=token_failure.code
                )
            else:
                before = release_snapshot(release)
                self._clear_token(release)
                release.status = ReleaseStatus.APPROVED.value
                release.approved_by_id = actor.id
                release.approved_at = now
                release.approval_notes = notes
                result = await self._execute(uow, release, actor)
                release.payment_reference = result.reference if result else None
                uow.record(
                    AuditAction.RELEASE_APPROVED,
                    actor,
                    EntityType.RELEASE,
                    release.id,
                    transaction_id=release.transaction_id,
                    before=before,
                    after=release_snapshot(release),
                    metadata={
                        "release_type": release.release_type,
                        "payment": result.to_dict() if result else None,
                        "notes": notes,
                    },
                )
                uow.notify(
                    release.recipient_id,
                    "release.approved",
                    release_id=str(release.id),
                    amount=str(release.amount),
                )

        if token_failure is not None:
            raise token_failure
        logger.info("release.approved", release_id=release.id, approved_by=actor.id)
        return release

    async def reject_release(
        self, release_id: uuid.UUID, actor: Actor, reason: str
    ) -> PendingRelease:
        authorization.can_approve_release(actor).enforce()
        reason = (reason or "").strip()
        if len(reason) < MIN_REJECTION_REASON_LENGTH:
            raise InvalidRequestError(
                f"Rejection reason must be at least {MIN_REJECTION_REASON_LENGTH} characters"
            )
        async with self._uow() as uow:
            release = await uow.releases.get_or_raise(release_id)
            RELEASE_TABLE.require_event(release.status, "reject", actor.role)
            before = release_snapshot(release)
            self._clear_token(release)
            release.status = ReleaseStatus.REJECTED.value
            release.rejected_by_id = actor.id
            release.rejected_at = self._clock()
            release.rejection_reason = reason
            uow.record(
                AuditAction.RELEASE_REJECTED,
                actor,
                EntityType.RELEASE,
                release.id,
                transaction_id=release.transaction_id,
                before=before,
                after=release_snapshot(release),
                metadata={"reason": reason},
            )
            uow.notify(release.recipient_id, "release.rejected", release_id=str(release.id))
        logger.info("release.rejected", release_id=release.id, rejected_by=actor.id)
        return release

    async def expire_stale_releases(self, now: datetime | None = None) -> int:
        """Sweep: PENDING releases older than the configured TTL become EXPIRED."""
        now = now or self._clock()
        cutoff = now - timedelta(hours=self._settings.pending_release_ttl_hours)
        async with self._uow() as uow:
            candidates = [r.id for r in await uow.releases.get_stale_pending(cutoff)]

        expired = 0
        system = Actor.system()
        for release_id in candidates:
            try:
                async with self._uow() as uow:
                    release = await uow.releases.get_or_raise(release_id)
                    if release.status != ReleaseStatus.PENDING:
                        continue
                    before = release_snapshot(release)
                    RELEASE_TABLE.require_event(release.status, "expire", Role.SYSTEM)
                    self._clear_token(release)
                    release.status = ReleaseStatus.EXPIRED.value
                    uow.record(
                        AuditAction.RELEASE_EXPIRED,
                        system,
                        EntityType.RELEASE,
                        release.id,
                        transaction_id=release.transaction_id,
                        before=before,
                        after=release_snapshot(release),
                    )
                expired += 1
            except ConcurrentTransitionError:
                logger.info("release.expiry_race_lost", release_id=release_id)
        if expired:
            logger.info("release.sweep_expired", count=expired)
        return expired

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_release(self, release_id: uuid.UUID) -> PendingRelease:
        async with self._uow() as uow:
            return await uow.releases.get_or_raise(release_id)

    async def list_pending(self) -> list[PendingRelease]:
        async with self._uow() as uow:
            return await uow.releases.get_by_status(ReleaseStatus.PENDING)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _clear_token(release: PendingRelease) -> None:
        release.confirmation_token = None
        release.token_expires_at = None
        release.initiated_by_id = None

    @staticmethod
    def _check_amount_against_hold(
        txn: Transaction, release_type: ReleaseType, amount: Decimal
    ) -> None:
        if txn.payment is None:
            raise PreconditionFailedError("Transaction has no payment hold")
        refundable = txn.payment.amount - txn.payment.refunded_amount
        if release_type.is_refund and amount > refundable:
            raise InvalidRequestError(f"Refund exceeds the refundable {refundable}")
        if amount > txn.payment.amount:
            raise InvalidRequestError(f"Amount exceeds the held {txn.payment.amount}")

    async def _execute(
        self, uow: UnitOfWork, release: PendingRelease, actor: Actor
    ) -> PaymentResult | None:
        """Move the transaction and session, claim the rows, then move the money."""
        release_type = ReleaseType(release.release_type)
        if release.transaction_id is None:
            return None

        txn = await uow.transactions.get_or_raise(release.transaction_id)
        payment = txn.payment
        now = self._clock()
        reference = f"release:{release.id}"

        if release_type == ReleaseType.RELEASE_TO_SELLER:
            if await uow.disputes.get_open_for_transaction(txn.id) is not None:
                raise PreconditionFailedError(
                    "Cannot release funds to the seller while a dispute is open"
                )
            if txn.status != TransactionStatus.COMPLETED:
                fire_transaction_event(uow, txn, "complete", actor, as_role=Role.SYSTEM, now=now)
            await settle_open_session(uow, txn.id, actor, completed=True)
            await uow.claim()
            if payment is not None and payment.status == HoldStatus.HELD:
                return await self._payments.capture(payment)
            return None

        if release_type == ReleaseType.HUB_COMMISSION:
            await uow.claim()
            if payment is not None and payment.status == HoldStatus.HELD:
                return await self._payments.capture(payment)
            return None

        if release_type.is_refund:
            if payment is None:
                raise PreconditionFailedError("Transaction has no payment hold to refund")
            amount = None if release_type == ReleaseType.REFUND_FULL else release.amount
            if release_type == ReleaseType.REFUND_FULL:
                await self._cancel_after_refund(uow, txn, actor)
            elif txn.status == TransactionStatus.DISPUTED:
                # seller keeps the remainder; the trade completes
                force_transaction_event(uow, txn, "restore_completed", actor, now=now)
                txn.status_before_dispute = None
                await settle_open_session(uow, txn.id, actor, completed=False)
            await uow.claim()
            return await self._payments.release(payment, amount, reference=reference)

        return None

    async def _cancel_after_refund(
        self, uow: UnitOfWork, txn: Transaction, actor: Actor
    ) -> None:
        now = self._clock()
        if txn.status == TransactionStatus.DISPUTED:
            force_transaction_event(uow, txn, "cancel_disputed", actor, now=now)
        elif txn.status not in (TransactionStatus.CANCELLED, TransactionStatus.COMPLETED):
            fire_transaction_event(uow, txn, "cancel", actor, as_role=Role.SYSTEM, now=now)
        await settle_open_session(uow, txn.id, actor, completed=False)
