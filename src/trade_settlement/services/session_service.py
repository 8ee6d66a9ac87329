"""Escrow Session Service: in-store handoffs for LOCAL trades.

A session is the meeting at a merchant's shop where both parties show up,
the merchant verifies the item, and the seller's release is requested.
Sessions waiting on check-in expire; expiry is applied lazily whenever a
session is read and by the periodic sweep, and both paths tolerate racing
each other.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from trade_settlement.domain import authorization
from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.enums import (
    AuditAction,
    EntityType,
    EscrowType,
    SessionStatus,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import (
    ConcurrentTransitionError,
    ConfirmationRequiredError,
    InvalidRequestError,
    PreconditionFailedError,
)
from trade_settlement.domain.state_machine import SESSION_TABLE
from trade_settlement.infrastructure.database.orm_models import (
    EscrowSession,
    SessionMessage,
    utcnow,
)
from trade_settlement.logging_config import get_logger
from trade_settlement.services.transaction_service import request_seller_release
from trade_settlement.services.transitions import (
    fire_session_event,
    fire_transaction_event,
    session_snapshot,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable
    from datetime import datetime

    from trade_settlement.config import Settings
    from trade_settlement.infrastructure.database.orm_models import PendingRelease
    from trade_settlement.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

MIN_VERIFICATION_PHOTOS = 3
MAX_MESSAGE_LENGTH = 2000
_EXPIRABLE = (SessionStatus.BOOKED, SessionStatus.CHECKIN_PENDING)


class SessionService:
    """Manages the in-store escrow session lifecycle."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow = uow_factory
        self._settings = settings
        self._clock = clock

    @property
    def _checkin_window(self) -> timedelta:
        return timedelta(minutes=self._settings.session_checkin_window_minutes)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def create_session(
        self,
        actor: Actor,
        transaction_id: uuid.UUID,
        merchant_id: str,
        shop_id: str | None = None,
    ) -> EscrowSession:
        """Open a session for a LOCAL trade at the given merchant's shop."""
        now = self._clock()
        async with self._uow() as uow:
            txn = await uow.transactions.get_or_raise(transaction_id)
            authorization.can_create_session(actor, txn, merchant_id).enforce()

            if txn.escrow_type != EscrowType.LOCAL:
                raise PreconditionFailedError("Escrow sessions are only for LOCAL trades")
            if txn.status != TransactionStatus.PENDING:
                raise PreconditionFailedError(
                    f"A session can only be opened for a PENDING transaction, not {txn.status}"
                )
            if txn.shop_id is not None and txn.shop_id != merchant_id:
                raise PreconditionFailedError("Transaction is hosted by a different merchant")
            if await uow.sessions.get_active_for_transaction(txn.id) is not None:
                raise PreconditionFailedError("Transaction already has an active session")

            txn.shop_id = merchant_id
            session = await uow.sessions.add(
                EscrowSession(
                    transaction_id=txn.id,
                    buyer_id=txn.buyer_id,
                    seller_id=txn.seller_id,
                    merchant_id=merchant_id,
                    shop_id=shop_id or merchant_id,
                    status=SessionStatus.CREATED.value,
                    expires_at=now + self._checkin_window,
                    last_activity_at=now,
                    created_at=now,
                )
            )
            uow.record(
                AuditAction.SESSION_CREATED,
                actor,
                EntityType.SESSION,
                session.id,
                transaction_id=txn.id,
                after=session_snapshot(session),
                metadata={"merchant_id": merchant_id},
            )
            for participant in (txn.buyer_id, txn.seller_id, merchant_id):
                uow.notify(participant, "session.created", session_id=str(session.id))

        logger.info("session.created", session_id=session.id, transaction_id=txn.id)
        return session

    async def book(self, session_id: uuid.UUID, actor: Actor) -> EscrowSession:
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_participate_in_session(actor, session).enforce()
            fire_session_event(uow, session, "book", actor)
            session.expires_at = self._clock() + self._checkin_window
        return session

    async def open_checkin(self, session_id: uuid.UUID, actor: Actor) -> EscrowSession:
        await self.get_session(session_id)
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_manage_session(actor, session).enforce()
            fire_session_event(uow, session, "open_checkin", actor)
            session.expires_at = self._clock() + self._checkin_window
        return session

    async def cancel(self, session_id: uuid.UUID, actor: Actor) -> EscrowSession:
        """A party withdraws before check-in opens."""
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_participate_in_session(actor, session).enforce()
            fire_session_event(uow, session, "cancel", actor, action=AuditAction.SESSION_CLOSED)
        return session

    # ------------------------------------------------------------------
    # In-person handoff
    # ------------------------------------------------------------------

    async def check_in(
        self,
        session_id: uuid.UUID,
        actor: Actor,
        buyer_present: bool,
        seller_present: bool,
    ) -> EscrowSession:
        """Merchant confirms both parties are on site; the transaction checks in too."""
        if not (buyer_present and seller_present):
            raise PreconditionFailedError("Both buyer and seller must be present to check in")

        await self.get_session(session_id)
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_manage_session(actor, session).enforce()
            fire_session_event(uow, session, "check_in", actor)
            session.buyer_present = True
            session.seller_present = True

            txn = await uow.transactions.get_or_raise(session.transaction_id)
            if txn.status == TransactionStatus.PENDING:
                fire_transaction_event(
                    uow, txn, "check_in", actor,
                    metadata={"session_id": str(session.id)}, now=self._clock(),
                )
        return session

    async def start_verification(self, session_id: uuid.UUID, actor: Actor) -> EscrowSession:
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_manage_session(actor, session).enforce()
            fire_session_event(uow, session, "start_verification", actor)
        return session

    async def complete_verification(
        self,
        session_id: uuid.UUID,
        actor: Actor,
        passed: bool,
        photo_count: int = 0,
        notes: str | None = None,
    ) -> EscrowSession:
        if passed and photo_count < MIN_VERIFICATION_PHOTOS:
            raise InvalidRequestError(
                f"Passing verification requires at least {MIN_VERIFICATION_PHOTOS} photos"
            )
        event = "pass_verification" if passed else "fail_verification"
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_manage_session(actor, session).enforce()
            fire_session_event(
                uow, session, event, actor,
                metadata={"photo_count": photo_count, "notes": notes},
            )
            session.verification_photo_count = photo_count
        return session

    async def request_release(
        self, session_id: uuid.UUID, actor: Actor
    ) -> tuple[EscrowSession, PendingRelease]:
        """Verification passed: ask staff to release funds to the seller."""
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_participate_in_session(actor, session).enforce()
            fire_session_event(uow, session, "request_release", actor)
            txn = await uow.transactions.get_or_raise(session.transaction_id)
            release = await request_seller_release(uow, txn, actor)
        return session, release

    # ------------------------------------------------------------------
    # Expiry, extension, close
    # ------------------------------------------------------------------

    async def extend_session(self, session_id: uuid.UUID, actor: Actor) -> EscrowSession:
        """Resurrect an EXPIRED session with a fresh check-in window."""
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_manage_session(actor, session).enforce()
            fire_session_event(
                uow, session, "extend_session", actor, action=AuditAction.SESSION_EXTENDED
            )
            session.expires_at = self._clock() + timedelta(
                minutes=self._settings.session_extension_minutes
            )
            session.extension_count += 1
        logger.info(
            "session.extended",
            session_id=session.id,
            expires_at=session.expires_at,
            extension_count=session.extension_count,
        )
        return session

    async def close_session(
        self,
        session_id: uuid.UUID,
        actor: Actor,
        confirm: bool = False,
        reason: str | None = None,
    ) -> EscrowSession:
        """Manual abort. Humans must pass confirm=True."""
        if not confirm and not actor.is_system:
            raise ConfirmationRequiredError("close_session")
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_manage_session(actor, session).enforce()
            fire_session_event(
                uow, session, "close_session", actor,
                action=AuditAction.SESSION_CLOSED, metadata={"reason": reason},
            )
        return session

    async def post_message(
        self, session_id: uuid.UUID, actor: Actor, body: str
    ) -> SessionMessage:
        body = (body or "").strip()
        if not body or len(body) > MAX_MESSAGE_LENGTH:
            raise InvalidRequestError(
                f"Message must be between 1 and {MAX_MESSAGE_LENGTH} characters"
            )
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_participate_in_session(actor, session).enforce()
            if SESSION_TABLE.is_terminal(session.status):
                raise PreconditionFailedError(f"Session is {session.status}")
            message = SessionMessage(
                session_id=session.id,
                sender_id=actor.id,
                sender_role=actor.role.value,
                body=body,
                created_at=self._clock(),
            )
            uow.session.add(message)
            session.last_activity_at = self._clock()
            for participant in (session.buyer_id, session.seller_id, session.merchant_id):
                if participant != actor.id:
                    uow.notify(participant, "session.message", session_id=str(session.id))
        return message

    async def get_session(self, session_id: uuid.UUID) -> EscrowSession:
        """Read a session, applying expiry first if its window has passed."""
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
        if self._is_overdue(session):
            await self._expire(session.id)
            async with self._uow() as uow:
                session = await uow.sessions.get_or_raise(session_id)
        return session

    async def list_messages(
        self, session_id: uuid.UUID, actor: Actor
    ) -> list[SessionMessage]:
        async with self._uow() as uow:
            session = await uow.sessions.get_or_raise(session_id)
            authorization.can_participate_in_session(actor, session).enforce()
            return list(session.messages)

    async def expire_stale_sessions(self, now: datetime | None = None) -> int:
        """Sweep: expire every BOOKED/CHECKIN_PENDING session past its window."""
        now = now or self._clock()
        async with self._uow() as uow:
            candidates = [s.id for s in await uow.sessions.get_expirable(now)]
        expired = 0
        for session_id in candidates:
            if await self._expire(session_id, now):
                expired += 1
        if expired:
            logger.info("session.sweep_expired", count=expired)
        return expired

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _is_overdue(self, session: EscrowSession, now: datetime | None = None) -> bool:
        now = now or self._clock()
        return (
            session.status in _EXPIRABLE
            and session.expires_at is not None
            and session.expires_at <= now
        )

    async def _expire(self, session_id: uuid.UUID, now: datetime | None = None) -> bool:
        """Expire one session in its own unit. A lost race counts as already expired."""
        try:
            async with self._uow() as uow:
                session = await uow.sessions.get_or_raise(session_id)
                if not self._is_overdue(session, now):
                    return False
                fire_session_event(
                    uow, session, "expire", Actor.system(),
                    action=AuditAction.SESSION_EXPIRED,
                )
        except ConcurrentTransitionError:
            logger.info("session.expiry_race_lost", session_id=session_id)
            return False
        logger.info("session.expired", session_id=session_id)
        return True

