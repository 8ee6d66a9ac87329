"""Domain enumerations for the Trade Settlement engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class Role(enum.StrEnum):
    """Closed set of actor roles. Every orchestrator call carries one."""

    BUYER = "BUYER"
    SELLER = "SELLER"
    MERCHANT = "MERCHANT"
    HUB_STAFF = "HUB_STAFF"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"
    SYSTEM = "SYSTEM"


STAFF_ROLES = frozenset({Role.ADMIN, Role.MODERATOR})


class EscrowType(enum.StrEnum):
    """How custody changes hands: in person at a shop, or through a hub."""

    LOCAL = "LOCAL"
    VERIFIED = "VERIFIED"


class TransactionStatus(enum.StrEnum):
    """Lifecycle states of a trade transaction.

    See domain/state_machine.py for the forward and forced transition tables.
    """

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    AWAITING_HUB_RECEIPT = "AWAITING_HUB_RECEIPT"
    HUB_RECEIVED = "HUB_RECEIVED"
    VERIFICATION_IN_PROGRESS = "VERIFICATION_IN_PROGRESS"
    VERIFIED = "VERIFIED"
    SHIPPED_TO_BUYER = "SHIPPED_TO_BUYER"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"


HUB_TRANSACTION_STATUSES = frozenset({
    TransactionStatus.AWAITING_HUB_RECEIPT,
    TransactionStatus.HUB_RECEIVED,
    TransactionStatus.VERIFICATION_IN_PROGRESS,
    TransactionStatus.VERIFIED,
    TransactionStatus.SHIPPED_TO_BUYER,
})


class PackageStatus(enum.StrEnum):
    """Physical custody states of a hub package (VERIFIED escrow only)."""

    PENDING = "PENDING"
    IN_TRANSIT_TO_HUB = "IN_TRANSIT_TO_HUB"
    RECEIVED_AT_HUB = "RECEIVED_AT_HUB"
    VERIFICATION_IN_PROGRESS = "VERIFICATION_IN_PROGRESS"
    VERIFIED = "VERIFIED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"


class HoldStatus(enum.StrEnum):
    """State of the escrow payment hold backing a transaction."""

    HELD = "HELD"
    CAPTURED = "CAPTURED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class SessionStatus(enum.StrEnum):
    """In-store escrow session states."""

    CREATED = "CREATED"
    BOOKED = "BOOKED"
    CHECKIN_PENDING = "CHECKIN_PENDING"
    CHECKED_IN = "CHECKED_IN"
    VERIFICATION_IN_PROGRESS = "VERIFICATION_IN_PROGRESS"
    VERIFICATION_PASSED = "VERIFICATION_PASSED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    RELEASE_REQUESTED = "RELEASE_REQUESTED"
    RELEASE_APPROVED = "RELEASE_APPROVED"
    COMPLETED = "COMPLETED"
    DISPUTED = "DISPUTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


TERMINAL_SESSION_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED})


class DisputeStatus(enum.StrEnum):
    OPEN = "OPEN"
    SELLER_RESPONSE = "SELLER_RESPONSE"
    IN_MEDIATION = "IN_MEDIATION"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


OPEN_DISPUTE_STATUSES = frozenset({
    DisputeStatus.OPEN,
    DisputeStatus.SELLER_RESPONSE,
    DisputeStatus.IN_MEDIATION,
    DisputeStatus.ESCALATED,
})


class DisputeType(enum.StrEnum):
    NOT_DELIVERED = "NOT_DELIVERED"
    DAMAGED_ITEM = "DAMAGED_ITEM"
    WRONG_CONTENT = "WRONG_CONTENT"
    MISSING_ITEMS = "MISSING_ITEMS"
    CONDITION_MISMATCH = "CONDITION_MISMATCH"
    DELAY = "DELAY"
    OTHER = "OTHER"


class DisputeResolution(enum.StrEnum):
    REFUND_FULL = "REFUND_FULL"
    REFUND_PARTIAL = "REFUND_PARTIAL"
    IN_FAVOR_BUYER = "IN_FAVOR_BUYER"
    IN_FAVOR_SELLER = "IN_FAVOR_SELLER"
    REPLACEMENT = "REPLACEMENT"
    RETURN_REQUIRED = "RETURN_REQUIRED"
    REJECTED = "REJECTED"


class ReleaseType(enum.StrEnum):
    """Kinds of irreversible money movement gated by dual confirmation."""

    RELEASE_TO_SELLER = "RELEASE_TO_SELLER"
    REFUND_FULL = "REFUND_FULL"
    REFUND_PARTIAL = "REFUND_PARTIAL"
    HUB_COMMISSION = "HUB_COMMISSION"
    WITHDRAWAL = "WITHDRAWAL"

    @property
    def label(self) -> str:
        return _RELEASE_LABELS[self]

    @property
    def is_refund(self) -> bool:
        return self in (ReleaseType.REFUND_FULL, ReleaseType.REFUND_PARTIAL)


_RELEASE_LABELS = {
    ReleaseType.RELEASE_TO_SELLER: "Release funds to seller",
    ReleaseType.REFUND_FULL: "Full refund to buyer",
    ReleaseType.REFUND_PARTIAL: "Partial refund to buyer",
    ReleaseType.HUB_COMMISSION: "Hub commission payout",
    ReleaseType.WITHDRAWAL: "User withdrawal",
}


class ReleaseStatus(enum.StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class RecipientType(enum.StrEnum):
    BUYER = "BUYER"
    SELLER = "SELLER"
    HUB = "HUB"
    USER = "USER"


class VaultItemStatus(enum.StrEnum):
    """Consignment item custody states."""

    PENDING_REVIEW = "PENDING_REVIEW"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    ASSIGNED_TO_SHOP = "ASSIGNED_TO_SHOP"
    IN_CASE = "IN_CASE"
    LISTED_ONLINE = "LISTED_ONLINE"
    RESERVED = "RESERVED"
    SOLD = "SOLD"
    RETURNED = "RETURNED"


class VaultOrderStatus(enum.StrEnum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    FULFILLING = "FULFILLING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    DISPUTED = "DISPUTED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


class SplitStatus(enum.StrEnum):
    ELIGIBLE = "ELIGIBLE"
    IN_PAYOUT = "IN_PAYOUT"
    PAID = "PAID"


class PayeeType(enum.StrEnum):
    OWNER = "OWNER"
    MERCHANT = "MERCHANT"
    PLATFORM = "PLATFORM"


class PayoutBatchStatus(enum.StrEnum):
    CREATED = "CREATED"
    PAID = "PAID"


class PayoutLineStatus(enum.StrEnum):
    PENDING = "PENDING"
    PAID = "PAID"


class AuditAction(enum.StrEnum):
    """Types of audit entries recorded in the audit_log table.

    Every state-changing operation MUST produce exactly one entry per
    entity it transitions.
    """

    # Transactions
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_TRANSITIONED = "TRANSACTION_TRANSITIONED"
    TRANSACTION_CANCELLED = "TRANSACTION_CANCELLED"
    TRANSACTION_FORCED = "TRANSACTION_FORCED"

    # Hub packages
    PACKAGE_TRANSITIONED = "PACKAGE_TRANSITIONED"
    PACKAGE_RECEIPT_CONFIRMED = "PACKAGE_RECEIPT_CONFIRMED"
    PACKAGE_AUTO_RELEASED = "PACKAGE_AUTO_RELEASED"

    # Sessions
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_TRANSITIONED = "SESSION_TRANSITIONED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSION_EXTENDED = "SESSION_EXTENDED"
    SESSION_CLOSED = "SESSION_CLOSED"

    # Disputes
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_TRANSITIONED = "DISPUTE_TRANSITIONED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"

    # Releases
    RELEASE_CREATED = "RELEASE_CREATED"
    RELEASE_APPROVAL_INITIATED = "RELEASE_APPROVAL_INITIATED"
    RELEASE_APPROVED = "RELEASE_APPROVED"
    RELEASE_REJECTED = "RELEASE_REJECTED"
    RELEASE_EXPIRED = "RELEASE_EXPIRED"

    # Vault
    VAULT_ITEM_DEPOSITED = "VAULT_ITEM_DEPOSITED"
    VAULT_ITEM_TRANSITIONED = "VAULT_ITEM_TRANSITIONED"
    VAULT_ORDER_CREATED = "VAULT_ORDER_CREATED"
    VAULT_ORDER_TRANSITIONED = "VAULT_ORDER_TRANSITIONED"
    VAULT_SPLIT_CREATED = "VAULT_SPLIT_CREATED"
    VAULT_PAYOUT_BATCH_CREATED = "VAULT_PAYOUT_BATCH_CREATED"
    VAULT_PAYOUT_BATCH_PAID = "VAULT_PAYOUT_BATCH_PAID"

    # Anomalies
    PRICE_ANOMALY = "PRICE_ANOMALY"


class EntityType(enum.StrEnum):
    TRANSACTION = "TRANSACTION"
    PACKAGE = "PACKAGE"
    SESSION = "SESSION"
    DISPUTE = "DISPUTE"
    RELEASE = "RELEASE"
    VAULT_ITEM = "VAULT_ITEM"
    VAULT_ORDER = "VAULT_ORDER"
    VAULT_SPLIT = "VAULT_SPLIT"
    PAYOUT_BATCH = "PAYOUT_BATCH"
