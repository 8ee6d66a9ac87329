"""Unit of work: one database transaction per orchestrator operation.

Usage:
    async with uow_factory() as uow:
        txn = await uow.transactions.get_or_raise(transaction_id)
        ...
        uow.record(AuditAction.TRANSACTION_TRANSITIONED, actor, EntityType.TRANSACTION, txn.id)
        uow.notify(txn.buyer_id, "transaction.confirmed", transaction_id=str(txn.id))

On a clean exit the session commits once; only then are the queued audit
records and notifications handed to their writers. Any exception rolls the
whole unit back and nothing queued is emitted. Operations that call the
payment processor make their state changes first and `claim()` them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from trade_settlement.domain.collaborators import NotificationRequest
from trade_settlement.domain.exceptions import ConcurrentTransitionError
from trade_settlement.infrastructure.database.repositories import (
    DisputeRepository,
    PayoutRepository,
    ReleaseRepository,
    SessionRepository,
    TransactionRepository,
    VaultItemRepository,
    VaultOrderRepository,
    VaultSplitRepository,
)
from trade_settlement.logging_config import get_logger
from trade_settlement.services.audit_service import AuditRecord

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from trade_settlement.domain.authorization import Actor
    from trade_settlement.domain.collaborators import NotificationDispatcher
    from trade_settlement.domain.enums import AuditAction, EntityType
    from trade_settlement.services.audit_service import AuditWriter

logger = get_logger(__name__)

# Unique constraints in this schema only ever trip when two requests race
# to create the same row (payment per transaction, split per item, ...).
_RACE_ERRORS = (StaleDataError, IntegrityError)


class UnitOfWork:
    """Session, repositories and deferred side effects for one operation."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit_writer: AuditWriter | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._audit_writer = audit_writer
        self._notifier = notifier
        self._audit: list[AuditRecord] = []
        self._notifications: list[NotificationRequest] = []
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> UnitOfWork:
        self.session = self._session_factory()
        self.transactions = TransactionRepository(self.session)
        self.sessions = SessionRepository(self.session)
        self.disputes = DisputeRepository(self.session)
        self.releases = ReleaseRepository(self.session)
        self.vault_items = VaultItemRepository(self.session)
        self.vault_orders = VaultOrderRepository(self.session)
        self.splits = VaultSplitRepository(self.session)
        self.payouts = PayoutRepository(self.session)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        try:
            if exc_type is None:
                try:
                    await self.session.commit()
                except _RACE_ERRORS as err:
                    await self.session.rollback()
                    logger.info("uow.concurrent_modification", error=str(err))
                    raise ConcurrentTransitionError() from err
            else:
                await self.session.rollback()
        finally:
            await self.session.close()

        if isinstance(exc, _RACE_ERRORS):
            logger.info("uow.concurrent_modification", error=str(exc))
            raise ConcurrentTransitionError() from exc
        if exc_type is None:
            await self._drain()
        return False

    async def claim(self) -> None:
        """Write the changes made so far, without committing.

        Call this before any call that moves money. The versioned UPDATEs
        take the row locks now, so a concurrent unit on the same rows blocks
        until this one ends and then fails its version check instead of
        reaching the processor a second time.
        """
        await self.session.flush()

    # ------------------------------------------------------------------
    # Deferred side effects
    # ------------------------------------------------------------------

    def record(
        self,
        action: AuditAction,
        actor: Actor,
        entity_type: EntityType,
        entity_id: object,
        *,
        transaction_id: object | None = None,
        before: dict | None = None,
        after: dict | None = None,
        metadata: dict | None = None,
    ) -> None:
        """Queue an audit entry for after commit."""
        self._audit.append(
            AuditRecord(
                action=action,
                actor=actor,
                entity_type=entity_type,
                entity_id=str(entity_id),
                transaction_id=str(transaction_id) if transaction_id else None,
                before=before,
                after=after,
                metadata=metadata,
            )
        )

    def notify(self, recipient_id: str | None, template: str, **payload: object) -> None:
        """Queue a notification for after commit."""
        if recipient_id:
            self._notifications.append(NotificationRequest(recipient_id, template, payload))

    async def _drain(self) -> None:
        audit, self._audit = self._audit, []
        notifications, self._notifications = self._notifications, []

        if self._audit_writer is not None:
            await self._audit_writer.write(audit)

        if self._notifier is None:
            return
        for request in notifications:
            try:
                await self._notifier.dispatch(request)
            except Exception as exc:
                logger.warning(
                    "notification.dispatch_failed",
                    template=request.template,
                    recipient_id=request.recipient_id,
                    error=str(exc),
                )


def unit_of_work_factory(
    session_factory: async_sessionmaker[AsyncSession],
    audit_writer: AuditWriter | None = None,
    notifier: NotificationDispatcher | None = None,
) -> Callable[[], UnitOfWork]:
    def factory() -> UnitOfWork:
        return UnitOfWork(session_factory, audit_writer, notifier)

    return factory
