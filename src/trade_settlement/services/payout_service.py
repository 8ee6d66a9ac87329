"""Payout batching for vault splits.

A batch pays one payee type (owners, merchants or the platform). Each split
contributes at most one line per payee type, enforced by the unique
(split_id, payee_type) index, and only when that share is non-zero.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from trade_settlement.domain import authorization
from trade_settlement.domain.enums import (
    AuditAction,
    EntityType,
    PayeeType,
    PayoutBatchStatus,
    PayoutLineStatus,
    SplitStatus,
)
from trade_settlement.domain.exceptions import InvalidRequestError, PreconditionFailedError
from trade_settlement.infrastructure.database.orm_models import (
    VaultPayoutBatch,
    VaultPayoutLine,
    utcnow,
)
from trade_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from trade_settlement.domain.authorization import Actor
    from trade_settlement.infrastructure.database.orm_models import VaultSplit
    from trade_settlement.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)


def batch_snapshot(batch: VaultPayoutBatch) -> dict:
    return {"status": batch.status, "total_amount": batch.total_amount}


def split_fully_paid(split: VaultSplit, paid_types: set[str]) -> bool:
    """Every non-zero share of the split has a PAID line."""
    return all(
        payee_type.value in paid_types
        for payee_type in PayeeType
        if split.share_for(payee_type) > 0
    )


class PayoutService:
    """Creates and pays payout batches."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow = uow_factory
        self._clock = clock

    async def create_payout_batch(
        self,
        actor: Actor,
        payee_type: PayeeType,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> VaultPayoutBatch:
        authorization.can_manage_payouts(actor).enforce()
        payee_type = PayeeType(payee_type)
        if period_start and period_end and period_start >= period_end:
            raise InvalidRequestError("period_start must be before period_end")

        async with self._uow() as uow:
            splits = [
                split
                for split in await uow.splits.get_unbatched(payee_type, period_start, period_end)
                if split.share_for(payee_type) > 0
            ]
            if not splits:
                raise PreconditionFailedError(f"No splits owe {payee_type} in this period")

            lines = [
                VaultPayoutLine(
                    split_id=split.id,
                    payee_type=payee_type.value,
                    payee_id=split.payee_for(payee_type),
                    amount=split.share_for(payee_type),
                    status=PayoutLineStatus.PENDING.value,
                )
                for split in splits
            ]
            batch = VaultPayoutBatch(
                id=uuid.uuid4(),
                payee_type=payee_type.value,
                status=PayoutBatchStatus.CREATED.value,
                period_start=period_start,
                period_end=period_end,
                total_amount=sum((s.share_for(payee_type) for s in splits), Decimal("0.00")),
                created_by_id=actor.id,
                created_at=self._clock(),
                lines=lines,
            )
            await uow.payouts.add(batch)
            for split in splits:
                if split.status == SplitStatus.ELIGIBLE:
                    split.status = SplitStatus.IN_PAYOUT.value

            uow.record(
                AuditAction.VAULT_PAYOUT_BATCH_CREATED,
                actor,
                EntityType.PAYOUT_BATCH,
                batch.id,
                after=batch_snapshot(batch),
                metadata={
                    "payee_type": payee_type.value,
                    "split_ids": [s.id for s in splits],
                },
            )

        logger.info(
            "payout.batch_created",
            batch_id=batch.id,
            payee_type=payee_type,
            lines=len(splits),
            total=batch.total_amount,
        )
        return batch

    async def pay_batch(self, batch_id: uuid.UUID, actor: Actor) -> VaultPayoutBatch:
        authorization.can_manage_payouts(actor).enforce()
        async with self._uow() as uow:
            batch = await uow.payouts.get_or_raise(batch_id)
            if batch.status != PayoutBatchStatus.CREATED:
                raise PreconditionFailedError(f"Batch is already {batch.status}")

            before = batch_snapshot(batch)
            batch.status = PayoutBatchStatus.PAID.value
            batch.paid_at = self._clock()
            for line in batch.lines:
                line.status = PayoutLineStatus.PAID.value
            await uow.payouts.flush()

            split_ids = [line.split_id for line in batch.lines]
            paid_types: dict[uuid.UUID, set[str]] = {}
            for line in await uow.payouts.get_lines_for_splits(split_ids):
                if line.status == PayoutLineStatus.PAID:
                    paid_types.setdefault(line.split_id, set()).add(line.payee_type)

            settled = []
            for split in await uow.splits.get_many(split_ids):
                if split_fully_paid(split, paid_types.get(split.id, set())):
                    split.status = SplitStatus.PAID.value
                    settled.append(split.id)

            uow.record(
                AuditAction.VAULT_PAYOUT_BATCH_PAID,
                actor,
                EntityType.PAYOUT_BATCH,
                batch.id,
                before=before,
                after=batch_snapshot(batch),
                metadata={"paid_split_ids": settled},
            )
            for line in batch.lines:
                uow.notify(line.payee_id, "payout.paid", batch_id=str(batch.id),
                           amount=str(line.amount))

        logger.info("payout.batch_paid", batch_id=batch.id, splits_paid=len(settled))
        return batch

    async def get_batch(self, batch_id: uuid.UUID) -> VaultPayoutBatch:
        async with self._uow() as uow:
            return await uow.payouts.get_or_raise(batch_id)
