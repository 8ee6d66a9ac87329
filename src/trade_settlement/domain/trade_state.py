"""Joint transaction/package state.

A VERIFIED trade moves money and custody in lockstep, so the transaction
status and the hub package status are held as one value restricted to the
valid pairs below. An invalid combination cannot be constructed, which
means it can never be persisted.

Package step pairing:
    package target            requires txn               txn becomes
    IN_TRANSIT_TO_HUB         AWAITING_HUB_RECEIPT       AWAITING_HUB_RECEIPT
    RECEIVED_AT_HUB           AWAITING_HUB_RECEIPT       HUB_RECEIVED
    VERIFICATION_IN_PROGRESS  HUB_RECEIVED               VERIFICATION_IN_PROGRESS
    VERIFIED                  VERIFICATION_IN_PROGRESS   VERIFIED
    SHIPPED                   VERIFIED                   SHIPPED_TO_BUYER
    DELIVERED                 SHIPPED_TO_BUYER           SHIPPED_TO_BUYER
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from trade_settlement.domain.enums import (
    HUB_TRANSACTION_STATUSES,
    EscrowType,
    PackageStatus,
    TransactionStatus,
)
from trade_settlement.domain.exceptions import InvalidTradeStateError, PreconditionFailedError
from trade_settlement.domain.state_machine import TRANSACTION_TABLE

T = TransactionStatus
P = PackageStatus

VALID_VERIFIED_PAIRS: frozenset[tuple[TransactionStatus, PackageStatus]] = frozenset({
    (T.PENDING, P.PENDING),
    (T.CONFIRMED, P.PENDING),
    (T.AWAITING_HUB_RECEIPT, P.PENDING),
    (T.AWAITING_HUB_RECEIPT, P.IN_TRANSIT_TO_HUB),
    (T.HUB_RECEIVED, P.RECEIVED_AT_HUB),
    (T.VERIFICATION_IN_PROGRESS, P.VERIFICATION_IN_PROGRESS),
    (T.VERIFIED, P.VERIFIED),
    (T.SHIPPED_TO_BUYER, P.SHIPPED),
    (T.SHIPPED_TO_BUYER, P.DELIVERED),
    (T.COMPLETED, P.DELIVERED),
    *((T.CANCELLED, p) for p in P),
    *((T.DISPUTED, p) for p in P),
})


@dataclass(frozen=True)
class PackageStep:
    """One custody step. `transaction_event` is the forward-table edge the
    transaction takes with it; None when the transaction status stays put."""

    required_status: TransactionStatus
    resulting_status: TransactionStatus
    transaction_event: str | None = None


PACKAGE_STEPS: dict[PackageStatus, PackageStep] = {
    P.IN_TRANSIT_TO_HUB: PackageStep(T.AWAITING_HUB_RECEIPT, T.AWAITING_HUB_RECEIPT),
    P.RECEIVED_AT_HUB: PackageStep(T.AWAITING_HUB_RECEIPT, T.HUB_RECEIVED, "receive_at_hub"),
    P.VERIFICATION_IN_PROGRESS: PackageStep(
        T.HUB_RECEIVED, T.VERIFICATION_IN_PROGRESS, "start_verification"
    ),
    P.VERIFIED: PackageStep(T.VERIFICATION_IN_PROGRESS, T.VERIFIED, "verify"),
    P.SHIPPED: PackageStep(T.VERIFIED, T.SHIPPED_TO_BUYER, "ship_to_buyer"),
    P.DELIVERED: PackageStep(T.SHIPPED_TO_BUYER, T.SHIPPED_TO_BUYER),
}


def is_valid_pair(
    escrow_type: EscrowType,
    status: TransactionStatus,
    package_status: PackageStatus | None,
) -> bool:
    if escrow_type == EscrowType.LOCAL:
        return package_status is None and status not in HUB_TRANSACTION_STATUSES
    if package_status is None:
        return False
    return (status, package_status) in VALID_VERIFIED_PAIRS


@dataclass(frozen=True)
class TradeState:
    """Product of transaction status and package status, valid pairs only."""

    escrow_type: EscrowType
    status: TransactionStatus
    package_status: PackageStatus | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "escrow_type", EscrowType(self.escrow_type))
        object.__setattr__(self, "status", TransactionStatus(self.status))
        if self.package_status is not None:
            object.__setattr__(self, "package_status", PackageStatus(self.package_status))
        if not is_valid_pair(self.escrow_type, self.status, self.package_status):
            raise InvalidTradeStateError(
                self.escrow_type, self.status, self.package_status
            )

    @classmethod
    def initial(cls, escrow_type: EscrowType) -> TradeState:
        package = PackageStatus.PENDING if escrow_type == EscrowType.VERIFIED else None
        return cls(escrow_type, TransactionStatus.PENDING, package)

    @property
    def is_verified(self) -> bool:
        return self.escrow_type == EscrowType.VERIFIED

    def with_status(self, status: TransactionStatus) -> TradeState:
        return replace(self, status=status)

    def advance_package(self, target: PackageStatus) -> TradeState:
        """Move the package to `target`, moving the transaction with it.

        Raises PreconditionFailedError when the paired transaction status
        does not match what the step requires.
        """
        if not self.is_verified:
            raise PreconditionFailedError("LOCAL escrow trades have no hub package")
        step = PACKAGE_STEPS.get(PackageStatus(target))
        if step is None:
            raise PreconditionFailedError(f"Package cannot be moved to {target}")
        if self.status != step.required_status:
            raise PreconditionFailedError(
                f"Package cannot move to {target} while transaction is "
                f"{self.status}; requires {step.required_status}"
            )
        if step.transaction_event is not None:
            moved_to = TRANSACTION_TABLE.target_of(self.status, step.transaction_event)
            if moved_to != step.resulting_status:
                raise PreconditionFailedError(
                    f"Transaction cannot {step.transaction_event} from {self.status}"
                )
        return replace(self, status=step.resulting_status, package_status=PackageStatus(target))

    def allowed_targets(self, targets: set[str]) -> set[str]:
        """Filter forward-table targets down to those valid for this escrow mode."""
        allowed = set()
        for target in targets:
            status = TransactionStatus(target)
            if is_valid_pair(self.escrow_type, status, self.package_status):
                allowed.add(target)
            elif status in HUB_TRANSACTION_STATUSES and self.is_verified:
                # hub statuses move the package too; pairing is checked per step
                allowed.add(target)
        return allowed
