"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the unit of work's responsibility).

Updates are plain attribute assignments on loaded rows; the mapper's
version_id_col turns each flush into a conditional UPDATE, so a row changed
by another request since it was read raises StaleDataError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from trade_settlement.domain.enums import (
    OPEN_DISPUTE_STATUSES,
    TERMINAL_SESSION_STATUSES,
    DisputeStatus,
    EscrowType,
    PackageStatus,
    PayeeType,
    ReleaseStatus,
    SessionStatus,
    SplitStatus,
    TransactionStatus,
    VaultItemStatus,
)
from trade_settlement.domain.exceptions import EntityNotFoundError
from trade_settlement.infrastructure.database.orm_models import (
    AuditLogEntry,
    Dispute,
    EscrowSession,
    PendingRelease,
    Transaction,
    VaultItem,
    VaultOrder,
    VaultPayoutBatch,
    VaultPayoutLine,
    VaultSplit,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from trade_settlement.infrastructure.database.orm_models import Base


class _Repository:
    model: type[Base]
    entity_name = "Record"

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, entity):  # noqa: ANN001, ANN201
        """Insert a new row and flush so generated defaults are populated."""
        self._session.add(entity)
        await self._session.flush()
        return entity

    async def get_by_id(self, entity_id: uuid.UUID):  # noqa: ANN201
        result = await self._session.execute(
            select(self.model).where(self.model.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def get_or_raise(self, entity_id: uuid.UUID):  # noqa: ANN201
        entity = await self.get_by_id(entity_id)
        if entity is None:
            raise EntityNotFoundError(self.entity_name, str(entity_id))
        return entity

    async def flush(self) -> None:
        await self._session.flush()


class TransactionRepository(_Repository):
    """Data access for trade transactions."""

    model = Transaction
    entity_name = "Transaction"

    async def get_by_proposal(self, proposal_id: str) -> Transaction | None:
        result = await self._session.execute(
            select(Transaction).where(Transaction.proposal_id == proposal_id)
        )
        return result.scalar_one_or_none()

    async def list_for_party(self, party_id: str) -> list[Transaction]:
        result = await self._session.execute(
            select(Transaction)
            .where((Transaction.buyer_id == party_id) | (Transaction.seller_id == party_id))
            .order_by(Transaction.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_auto_release_due(self, cutoff: datetime) -> list[Transaction]:
        """Hub deliveries made before `cutoff` that the buyer never confirmed."""
        result = await self._session.execute(
            select(Transaction).where(
                Transaction.escrow_type == EscrowType.VERIFIED.value,
                Transaction.status == TransactionStatus.SHIPPED_TO_BUYER.value,
                Transaction.package_status == PackageStatus.DELIVERED.value,
                Transaction.delivered_at <= cutoff,
                Transaction.received_confirmed_at.is_(None),
                Transaction.auto_release_requested_at.is_(None),
            )
        )
        return list(result.scalars().all())


class SessionRepository(_Repository):
    """Data access for in-store escrow sessions."""

    model = EscrowSession
    entity_name = "Session"

    async def get_active_for_transaction(
        self, transaction_id: uuid.UUID
    ) -> EscrowSession | None:
        result = await self._session.execute(
            select(EscrowSession)
            .where(
                EscrowSession.transaction_id == transaction_id,
                EscrowSession.status.not_in([s.value for s in TERMINAL_SESSION_STATUSES]),
            )
            .order_by(EscrowSession.created_at.desc())
        )
        return result.scalars().first()

    async def get_expirable(self, now: datetime) -> list[EscrowSession]:
        """Sessions waiting on check-in whose window has passed."""
        result = await self._session.execute(
            select(EscrowSession).where(
                EscrowSession.status.in_(
                    [SessionStatus.BOOKED.value, SessionStatus.CHECKIN_PENDING.value]
                ),
                EscrowSession.expires_at.is_not(None),
                EscrowSession.expires_at <= now,
            )
        )
        return list(result.scalars().all())


class DisputeRepository(_Repository):
    """Data access for disputes."""

    model = Dispute
    entity_name = "Dispute"

    async def get_open_for_transaction(self, transaction_id: uuid.UUID) -> Dispute | None:
        result = await self._session.execute(
            select(Dispute).where(
                Dispute.transaction_id == transaction_id,
                Dispute.status.in_([s.value for s in OPEN_DISPUTE_STATUSES]),
            )
        )
        return result.scalars().first()

    async def get_by_transaction(self, transaction_id: uuid.UUID) -> list[Dispute]:
        result = await self._session.execute(
            select(Dispute)
            .where(Dispute.transaction_id == transaction_id)
            .order_by(Dispute.opened_at.asc())
        )
        return list(result.scalars().all())

    async def get_overdue(self, now: datetime) -> list[Dispute]:
        """OPEN past the response deadline, or IN_MEDIATION past the mediation deadline."""
        result = await self._session.execute(
            select(Dispute).where(
                (
                    (Dispute.status == DisputeStatus.OPEN.value)
                    & (Dispute.seller_response_deadline <= now)
                )
                | (
                    (Dispute.status == DisputeStatus.IN_MEDIATION.value)
                    & (Dispute.mediation_deadline.is_not(None))
                    & (Dispute.mediation_deadline <= now)
                )
            )
        )
        return list(result.scalars().all())


class ReleaseRepository(_Repository):
    """Data access for pending releases."""

    model = PendingRelease
    entity_name = "Release"

    async def get_pending_for_transaction(
        self, transaction_id: uuid.UUID
    ) -> list[PendingRelease]:
        result = await self._session.execute(
            select(PendingRelease)
            .where(
                PendingRelease.transaction_id == transaction_id,
                PendingRelease.status == ReleaseStatus.PENDING.value,
            )
            .order_by(PendingRelease.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_by_status(self, status: ReleaseStatus) -> list[PendingRelease]:
        result = await self._session.execute(
            select(PendingRelease)
            .where(PendingRelease.status == status.value)
            .order_by(PendingRelease.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_stale_pending(self, created_before: datetime) -> list[PendingRelease]:
        result = await self._session.execute(
            select(PendingRelease).where(
                PendingRelease.status == ReleaseStatus.PENDING.value,
                PendingRelease.created_at <= created_before,
            )
        )
        return list(result.scalars().all())


_SHELVED_STATUSES = [
    VaultItemStatus.IN_CASE.value,
    VaultItemStatus.LISTED_ONLINE.value,
    VaultItemStatus.RESERVED.value,
]


class VaultItemRepository(_Repository):
    model = VaultItem
    entity_name = "Vault item"

    async def get_in_slot(self, case_id: str, slot_code: str) -> VaultItem | None:
        """The item currently occupying a case slot, if any."""
        result = await self._session.execute(
            select(VaultItem).where(
                VaultItem.case_id == case_id,
                VaultItem.slot_code == slot_code,
                VaultItem.status.in_(_SHELVED_STATUSES),
            )
        )
        return result.scalars().first()


class VaultOrderRepository(_Repository):
    model = VaultOrder
    entity_name = "Vault order"

    async def get_by_payment_ref(self, payment_ref: str) -> VaultOrder | None:
        result = await self._session.execute(
            select(VaultOrder).where(VaultOrder.payment_ref == payment_ref)
        )
        return result.scalar_one_or_none()


class VaultSplitRepository(_Repository):
    model = VaultSplit
    entity_name = "Vault split"

    async def get_by_item(self, item_id: uuid.UUID) -> VaultSplit | None:
        result = await self._session.execute(
            select(VaultSplit).where(VaultSplit.item_id == item_id)
        )
        return result.scalar_one_or_none()

    async def get_unbatched(
        self,
        payee_type: PayeeType,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> list[VaultSplit]:
        """Splits that still owe `payee_type` and have no line for it yet."""
        already_batched = select(VaultPayoutLine.split_id).where(
            VaultPayoutLine.payee_type == payee_type.value
        )
        query = select(VaultSplit).where(
            VaultSplit.status != SplitStatus.PAID.value,
            VaultSplit.id.not_in(already_batched),
        )
        if period_start is not None:
            query = query.where(VaultSplit.created_at >= period_start)
        if period_end is not None:
            query = query.where(VaultSplit.created_at < period_end)
        result = await self._session.execute(query.order_by(VaultSplit.created_at.asc()))
        return list(result.scalars().all())

    async def get_many(self, split_ids: list[uuid.UUID]) -> list[VaultSplit]:
        result = await self._session.execute(
            select(VaultSplit).where(VaultSplit.id.in_(split_ids))
        )
        return list(result.scalars().all())


class PayoutRepository(_Repository):
    model = VaultPayoutBatch
    entity_name = "Payout batch"

    async def get_lines_for_splits(self, split_ids: list[uuid.UUID]) -> list[VaultPayoutLine]:
        result = await self._session.execute(
            select(VaultPayoutLine).where(VaultPayoutLine.split_id.in_(split_ids))
        )
        return list(result.scalars().all())


class AuditRepository:
    """Data access for the append-only audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, entries: list[AuditLogEntry]) -> None:
        """Insert entries. This is the ONLY write operation allowed."""
        self._session.add_all(entries)
        await self._session.flush()

    async def get_by_entity(self, entity_type: str, entity_id: str) -> list[AuditLogEntry]:
        result = await self._session.execute(
            select(AuditLogEntry)
            .where(
                AuditLogEntry.entity_type == entity_type,
                AuditLogEntry.entity_id == entity_id,
            )
            .order_by(AuditLogEntry.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_by_transaction(self, transaction_id: str) -> list[AuditLogEntry]:
        result = await self._session.execute(
            select(AuditLogEntry)
            .where(AuditLogEntry.transaction_id == transaction_id)
            .order_by(AuditLogEntry.created_at.asc())
        )
        return list(result.scalars().all())
