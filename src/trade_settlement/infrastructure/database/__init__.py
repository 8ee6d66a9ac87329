"""Database infrastructure: engine, ORM models, and repositories."""

from trade_settlement.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    create_tables,
    get_session_factory,
    init_db,
)
from trade_settlement.infrastructure.database.orm_models import (
    AuditLogEntry,
    Base,
    Dispute,
    EscrowPayment,
    EscrowSession,
    PendingRelease,
    Transaction,
    VaultItem,
    VaultOrder,
    VaultPayoutBatch,
    VaultPayoutLine,
    VaultSplit,
)

__all__ = [
    "AuditLogEntry",
    "Base",
    "Dispute",
    "EscrowPayment",
    "EscrowSession",
    "PendingRelease",
    "Transaction",
    "VaultItem",
    "VaultOrder",
    "VaultPayoutBatch",
    "VaultPayoutLine",
    "VaultSplit",
    "build_engine",
    "build_session_factory",
    "create_tables",
    "get_session_factory",
    "init_db",
    "close_db",
]
