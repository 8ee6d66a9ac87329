"""Transition steps shared by the orchestrators.

Each helper runs inside the caller's unit of work: it validates against the
entity's TransitionTable, mutates the loaded row, and queues the audit entry
and notifications. Nothing here commits.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from trade_settlement.domain.enums import (
    TERMINAL_SESSION_STATUSES,
    AuditAction,
    EntityType,
    RecipientType,
    ReleaseStatus,
    ReleaseType,
    Role,
    SessionStatus,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import InvalidStateTransitionError
from trade_settlement.domain.state_machine import (
    FORCED_TRANSACTION_TABLE,
    SESSION_TABLE,
    TRANSACTION_TABLE,
)
from trade_settlement.domain.trade_state import TradeState
from trade_settlement.infrastructure.database.orm_models import PendingRelease, utcnow
from trade_settlement.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from decimal import Decimal

    from trade_settlement.domain.authorization import Actor
    from trade_settlement.infrastructure.database.orm_models import (
        EscrowSession,
        Transaction,
    )
    from trade_settlement.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def transaction_snapshot(txn: Transaction) -> dict:
    return {"status": txn.status, "package_status": txn.package_status}


def trade_state_of(txn: Transaction) -> TradeState:
    return TradeState(txn.escrow_type, txn.status, txn.package_status)


def allowed_transaction_targets(txn: Transaction) -> set[str]:
    """Forward-table targets that are also valid for the trade's escrow mode."""
    state = trade_state_of(txn)
    return state.allowed_targets(TRANSACTION_TABLE.targets(txn.status))


def apply_trade_state(
    uow: UnitOfWork,
    txn: Transaction,
    new_state: TradeState,
    actor: Actor,
    *,
    action: AuditAction = AuditAction.TRANSACTION_TRANSITIONED,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> None:
    """Write a validated TradeState onto the row, stamp timestamps, queue effects."""
    now = now or utcnow()
    before = transaction_snapshot(txn)
    txn.status = new_state.status.value
    txn.package_status = new_state.package_status.value if new_state.package_status else None

    if new_state.status == TransactionStatus.CONFIRMED and txn.checked_in_at is None:
        txn.checked_in_at = now
    elif new_state.status == TransactionStatus.COMPLETED:
        txn.completed_at = now
    elif new_state.status == TransactionStatus.CANCELLED:
        txn.cancelled_at = now

    uow.record(
        action,
        actor,
        EntityType.TRANSACTION,
        txn.id,
        transaction_id=txn.id,
        before=before,
        after=transaction_snapshot(txn),
        metadata=metadata,
    )
    template = f"transaction.{txn.status.lower()}"
    for party in (txn.buyer_id, txn.seller_id):
        uow.notify(party, template, transaction_id=str(txn.id), status=txn.status)
    logger.info(
        "transaction.transitioned",
        transaction_id=txn.id,
        from_status=before["status"],
        to_status=txn.status,
        package_status=txn.package_status,
        actor_id=actor.id,
    )


def fire_transaction_event(
    uow: UnitOfWork,
    txn: Transaction,
    event: str,
    actor: Actor,
    *,
    as_role: Role | None = None,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> str:
    """Fire a forward-table event. `as_role` lets an approved release act as SYSTEM."""
    role = as_role or actor.role
    target = TRANSACTION_TABLE.require_event(txn.status, event, role)
    allowed = allowed_transaction_targets(txn)
    if target not in allowed:
        raise InvalidStateTransitionError("transaction", txn.status, target, allowed)
    new_state = trade_state_of(txn).with_status(TransactionStatus(target))
    action = (
        AuditAction.TRANSACTION_CANCELLED
        if target == TransactionStatus.CANCELLED
        else AuditAction.TRANSACTION_TRANSITIONED
    )
    apply_trade_state(
        uow,
        txn,
        new_state,
        actor,
        action=action,
        metadata={"event": event, **(metadata or {})},
        now=now,
    )
    return target


def force_transaction_event(
    uow: UnitOfWork,
    txn: Transaction,
    event: str,
    actor: Actor,
    *,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> str:
    """Fire a dispute side-channel event. Only ever driven on SYSTEM authority."""
    target = FORCED_TRANSACTION_TABLE.require_event(txn.status, event, Role.SYSTEM)
    new_state = trade_state_of(txn).with_status(TransactionStatus(target))
    apply_trade_state(
        uow,
        txn,
        new_state,
        actor,
        action=AuditAction.TRANSACTION_FORCED,
        metadata={"event": event, **(metadata or {})},
        now=now,
    )
    return target


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def session_snapshot(session: EscrowSession) -> dict:
    return {
        "status": session.status,
        "expires_at": session.expires_at,
        "extension_count": session.extension_count,
    }


def fire_session_event(
    uow: UnitOfWork,
    session: EscrowSession,
    event: str,
    actor: Actor,
    *,
    as_role: Role | None = None,
    action: AuditAction = AuditAction.SESSION_TRANSITIONED,
    metadata: dict | None = None,
) -> str:
    before = session_snapshot(session)
    target = SESSION_TABLE.require_event(session.status, event, as_role or actor.role)
    session.status = target
    session.last_activity_at = utcnow()
    uow.record(
        action,
        actor,
        EntityType.SESSION,
        session.id,
        transaction_id=session.transaction_id,
        before=before,
        after=session_snapshot(session),
        metadata={"event": event, **(metadata or {})},
    )
    template = f"session.{target.lower()}"
    for participant in (session.buyer_id, session.seller_id, session.merchant_id):
        uow.notify(participant, template, session_id=str(session.id), status=target)
    logger.info(
        "session.transitioned",
        session_id=session.id,
        from_status=before["status"],
        to_status=target,
        actor_id=actor.id,
    )
    return target


async def settle_open_session(
    uow: UnitOfWork,
    transaction_id: uuid.UUID,
    actor: Actor,
    *,
    completed: bool,
) -> EscrowSession | None:
    """Carry a transaction's final outcome over to its live session, if any.

    completed=True walks RELEASE_REQUESTED -> RELEASE_APPROVED -> COMPLETED;
    otherwise the session is closed (or cancelled before check-in opened).
    """
    session = await uow.sessions.get_active_for_transaction(transaction_id)
    if session is None or session.status in TERMINAL_SESSION_STATUSES:
        return None

    if completed:
        if session.status == SessionStatus.RELEASE_REQUESTED:
            fire_session_event(uow, session, "approve_release", actor, as_role=Role.SYSTEM)
        if session.status == SessionStatus.RELEASE_APPROVED:
            fire_session_event(uow, session, "complete", actor, as_role=Role.SYSTEM)
        return session

    events = SESSION_TABLE.events(session.status)
    if "close_session" in events:
        fire_session_event(
            uow, session, "close_session", actor,
            as_role=Role.SYSTEM, action=AuditAction.SESSION_CLOSED,
        )
    elif "cancel" in events:
        fire_session_event(
            uow, session, "cancel", actor,
            as_role=Role.SYSTEM, action=AuditAction.SESSION_CLOSED,
        )
    return session


# ---------------------------------------------------------------------------
# Pending releases
# ---------------------------------------------------------------------------


def release_snapshot(release: PendingRelease) -> dict:
    return {"status": release.status, "amount": release.amount}


async def stage_release(
    uow: UnitOfWork,
    *,
    release_type: ReleaseType,
    amount: Decimal,
    recipient_id: str,
    recipient_type: RecipientType,
    actor: Actor,
    reason: str | None = None,
    transaction_id: uuid.UUID | None = None,
    dispute_id: uuid.UUID | None = None,
) -> PendingRelease:
    """Insert a PENDING release awaiting dual confirmation."""
    release = PendingRelease(
        transaction_id=transaction_id,
        dispute_id=dispute_id,
        release_type=release_type.value,
        amount=amount,
        recipient_id=recipient_id,
        recipient_type=recipient_type.value,
        status=ReleaseStatus.PENDING.value,
        triggered_by=actor.id,
        reason=reason,
    )
    release = await uow.releases.add(release)
    uow.record(
        AuditAction.RELEASE_CREATED,
        actor,
        EntityType.RELEASE,
        release.id,
        transaction_id=transaction_id,
        after=release_snapshot(release),
        metadata={
            "release_type": release_type.value,
            "recipient_id": recipient_id,
            "dispute_id": dispute_id,
        },
    )
    uow.notify("STAFF", "release.pending_approval", release_id=str(release.id))
    logger.info(
        "release.created",
        release_id=release.id,
        release_type=release_type,
        amount=amount,
        transaction_id=transaction_id,
    )
    return release


async def supersede_pending_releases(
    uow: UnitOfWork,
    transaction_id: uuid.UUID,
    actor: Actor,
    reason: str,
    *,
    keep: uuid.UUID | None = None,
) -> list[PendingRelease]:
    """Reject every other PENDING release on a transaction."""
    superseded = []
    for release in await uow.releases.get_pending_for_transaction(transaction_id):
        if release.id == keep:
            continue
        before = release_snapshot(release)
        release.status = ReleaseStatus.REJECTED.value
        release.rejected_by_id = actor.id
        release.rejected_at = utcnow()
        release.rejection_reason = reason
        release.confirmation_token = None
        release.token_expires_at = None
        uow.record(
            AuditAction.RELEASE_REJECTED,
            actor,
            EntityType.RELEASE,
            release.id,
            transaction_id=transaction_id,
            before=before,
            after=release_snapshot(release),
            metadata={"reason": reason, "superseded": True},
        )
        superseded.append(release)
    if superseded:
        logger.info(
            "release.superseded",
            transaction_id=transaction_id,
            count=len(superseded),
        )
    return superseded
