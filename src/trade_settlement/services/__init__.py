"""Application services: use case orchestration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from trade_settlement.infrastructure.database.orm_models import utcnow
from trade_settlement.services.audit_service import AuditWriter
from trade_settlement.services.dispute_service import DisputeService
from trade_settlement.services.hub_service import HubService
from trade_settlement.services.payment_service import PaymentService
from trade_settlement.services.payout_service import PayoutService
from trade_settlement.services.release_service import ReleaseService
from trade_settlement.services.session_service import SessionService
from trade_settlement.services.transaction_service import TransactionService
from trade_settlement.services.unit_of_work import UnitOfWork, unit_of_work_factory
from trade_settlement.services.vault_service import VaultService

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from trade_settlement.config import Settings
    from trade_settlement.domain.collaborators import (
        NotificationDispatcher,
        PaymentHoldProvider,
    )


@dataclass
class SettlementServices:
    """Every orchestrator wired to one session factory, provider and notifier."""

    audit: AuditWriter
    payments: PaymentService
    transactions: TransactionService
    hub: HubService
    sessions: SessionService
    disputes: DisputeService
    releases: ReleaseService
    vault: VaultService
    payouts: PayoutService


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    provider: PaymentHoldProvider,
    notifier: NotificationDispatcher | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> SettlementServices:
    audit = AuditWriter(session_factory)
    uow_factory = unit_of_work_factory(session_factory, audit, notifier)
    payments = PaymentService(provider, timeout_seconds=settings.payment_timeout_seconds)
    transactions = TransactionService(uow_factory, payments, settings, clock)
    return SettlementServices(
        audit=audit,
        payments=payments,
        transactions=transactions,
        hub=HubService(uow_factory, transactions, settings, clock),
        sessions=SessionService(uow_factory, settings, clock),
        disputes=DisputeService(uow_factory, settings, clock),
        releases=ReleaseService(uow_factory, payments, settings, clock),
        vault=VaultService(uow_factory, clock),
        payouts=PayoutService(uow_factory, clock),
    )


__all__ = [
    "AuditWriter",
    "DisputeService",
    "HubService",
    "PaymentService",
    "PayoutService",
    "ReleaseService",
    "SessionService",
    "SettlementServices",
    "TransactionService",
    "UnitOfWork",
    "VaultService",
    "build_services",
]
