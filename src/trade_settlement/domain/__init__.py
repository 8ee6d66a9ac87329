"""Domain layer: pure business logic with zero framework dependencies."""

from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.collaborators import (
    NotificationDispatcher,
    NotificationRequest,
    PaymentHoldProvider,
    PaymentResult,
)
from trade_settlement.domain.decision import Decision
from trade_settlement.domain.enums import (
    EscrowType,
    PackageStatus,
    Role,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import (
    ConcurrentTransitionError,
    EntityNotFoundError,
    InvalidStateTransitionError,
    PaymentProviderError,
    SettlementError,
)
from trade_settlement.domain.split_calculator import Split, calculate_split
from trade_settlement.domain.state_machine import TransitionTable
from trade_settlement.domain.trade_state import TradeState

__all__ = [
    "Actor",
    "Decision",
    "EscrowType",
    "PackageStatus",
    "Role",
    "TransactionStatus",
    "SettlementError",
    "EntityNotFoundError",
    "InvalidStateTransitionError",
    "PaymentProviderError",
    "ConcurrentTransitionError",
    "NotificationDispatcher",
    "NotificationRequest",
    "PaymentHoldProvider",
    "PaymentResult",
    "Split",
    "calculate_split",
    "TransitionTable",
    "TradeState",
]
