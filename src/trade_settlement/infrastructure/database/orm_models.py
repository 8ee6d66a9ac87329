"""SQLAlchemy 2.0 ORM models for the Trade Settlement engine.

Tables:
    1. transactions        : Trades between a buyer and a seller (LOCAL or VERIFIED).
    2. escrow_payments     : The payment-processor hold backing a transaction.
    3. escrow_sessions     : In-store meetings at a merchant's shop (+ session_messages).
    4. disputes            : Arbitration cases against a transaction (+ dispute_messages).
    5. pending_releases    : Irreversible money movements awaiting dual confirmation.
    6. vault_items         : Consigned goods under custodial control.
    7. vault_orders        : Online purchases of vault items.
    8. vault_splits        : Owner/merchant/platform division of one sale.
    9. vault_payout_batches: Grouped payouts per payee type (+ vault_payout_lines).
   10. audit_log           : Append-only record of every state change.

Design decisions:
    - UUIDs as primary keys (no sequential leakage).
    - Decimal for money (no floating point rounding errors).
    - Every mutable row carries `version` as the mapper's version_id_col, so a
      concurrent UPDATE against a stale row raises StaleDataError.
    - Portable column types (Uuid, JSON with a JSONB variant, UTC datetimes)
      so the same models run on PostgreSQL and on SQLite for tests.
    - audit_log is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(12, 2)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite stores datetimes without an offset; values read back are tagged
    as UTC so comparisons against datetime.now(UTC) stay valid.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. transactions
# ---------------------------------------------------------------------------
class Transaction(Base):
    """A single trade between a buyer (party A) and a seller (party B)."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    shop_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Merchant shop hosting a LOCAL handoff"
    )
    hub_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Verification hub for a VERIFIED trade"
    )
    proposal_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- State (guarded by TradeState + TRANSACTION_TABLE) ---
    escrow_type: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    package_status: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        default=None,
        comment="Hub package status; non-null only for VERIFIED escrow",
    )
    status_before_dispute: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        default=None,
        comment="Restoration point for the dispute side-channel",
    )

    # --- Financials / shipping ---
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    inbound_tracking: Mapped[str | None] = mapped_column(String(32), nullable=True)
    return_tracking: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    checked_in_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Hub package delivered to the buyer"
    )
    received_confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    auto_release_requested_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    payment: Mapped[EscrowPayment | None] = relationship(
        "EscrowPayment",
        back_populates="transaction",
        uselist=False,
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        CheckConstraint(
            "(escrow_type = 'VERIFIED' AND package_status IS NOT NULL) OR "
            "(escrow_type = 'LOCAL' AND package_status IS NULL)",
            name="ck_transaction_package_matches_escrow_type",
        ),
        Index("idx_transaction_status", "status"),
        Index("idx_transaction_buyer", "buyer_id"),
        Index("idx_transaction_seller", "seller_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} {self.escrow_type} status={self.status} "
            f"package={self.package_status} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# 2. escrow_payments
# ---------------------------------------------------------------------------
class EscrowPayment(Base):
    """Authorization hold placed with the payment processor for a transaction."""

    __tablename__ = "escrow_payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False, unique=True
    )
    hold_id: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="HELD")
    refunded_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00")
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    captured_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    transaction: Mapped[Transaction] = relationship("Transaction", back_populates="payment")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<EscrowPayment hold={self.hold_id} status={self.status} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 3. escrow_sessions
# ---------------------------------------------------------------------------
class EscrowSession(Base):
    """An in-person meeting at a merchant's premises for a LOCAL trade."""

    __tablename__ = "escrow_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False
    )
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    shop_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="CREATED")
    buyer_present: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seller_present: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_photo_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extension_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    messages: Mapped[list[SessionMessage]] = relationship(
        "SessionMessage",
        back_populates="session",
        order_by="SessionMessage.created_at.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_session_transaction", "transaction_id"),
        Index("idx_session_status_expiry", "status", "expires_at"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<EscrowSession id={self.id} status={self.status} expires={self.expires_at}>"


class SessionMessage(Base):
    __tablename__ = "session_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_sessions.id"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sender_role: Mapped[str] = mapped_column(String(16), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    session: Mapped[EscrowSession] = relationship("EscrowSession", back_populates="messages")


# ---------------------------------------------------------------------------
# 4. disputes
# ---------------------------------------------------------------------------
class Dispute(Base):
    """An arbitration case opened against exactly one transaction."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False
    )
    dispute_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="OPEN")
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    opened_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    opened_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    seller_response_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    mediator_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mediation_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Outcome ---
    resolution: Mapped[str | None] = mapped_column(String(24), nullable=True)
    resolution_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    messages: Mapped[list[DisputeMessage]] = relationship(
        "DisputeMessage",
        back_populates="dispute",
        order_by="DisputeMessage.created_at.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_dispute_transaction", "transaction_id"),
        Index("idx_dispute_status", "status"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} type={self.dispute_type} status={self.status}>"


class DisputeMessage(Base):
    """Statement or evidence posted to a dispute thread."""

    __tablename__ = "dispute_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("disputes.id"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sender_role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    photos: Mapped[list | None] = mapped_column(JSONType, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    dispute: Mapped[Dispute] = relationship("Dispute", back_populates="messages")


# ---------------------------------------------------------------------------
# 5. pending_releases
# ---------------------------------------------------------------------------
class PendingRelease(Base):
    """A proposed irreversible money movement awaiting dual confirmation."""

    __tablename__ = "pending_releases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=True
    )
    dispute_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("disputes.id"), nullable=True
    )
    release_type: Mapped[str] = mapped_column(String(24), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    triggered_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Dual confirmation ---
    confirmation_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    initiated_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # --- Outcome ---
    approved_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_release_positive_amount"),
        Index("idx_release_status", "status"),
        Index("idx_release_transaction", "transaction_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<PendingRelease id={self.id} type={self.release_type} "
            f"status={self.status} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# 6. vault_items
# ---------------------------------------------------------------------------
class VaultItem(Base):
    """A consigned physical good held by a shop on its owner's behalf."""

    __tablename__ = "vault_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    shop_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    case_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    slot_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="PENDING_REVIEW")
    declared_condition: Mapped[str | None] = mapped_column(String(32), nullable=True)
    verified_condition: Mapped[str | None] = mapped_column(String(32), nullable=True)
    estimated_value: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    final_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    has_been_in_case: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Set once the item has been physically placed in a display case",
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_vault_item_status", "status"),
        Index("idx_vault_item_slot", "case_id", "slot_code"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<VaultItem id={self.id} status={self.status} shop={self.shop_id}>"


# ---------------------------------------------------------------------------
# 7. vault_orders
# ---------------------------------------------------------------------------
class VaultOrder(Base):
    __tablename__ = "vault_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vault_items.id"), nullable=False
    )
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    shop_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default="PENDING_PAYMENT")
    shipping_address: Mapped[dict] = mapped_column(JSONType, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    shipping_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    tracking_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_vault_order_item", "item_id"),
        Index("idx_vault_order_status", "status"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<VaultOrder id={self.id} status={self.status} total={self.total}>"


# ---------------------------------------------------------------------------
# 8. vault_splits
# ---------------------------------------------------------------------------
class VaultSplit(Base):
    """Owner/merchant/platform division of one sale's gross amount."""

    __tablename__ = "vault_splits"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vault_items.id"), nullable=False, unique=True
    )
    order_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("vault_orders.id"), nullable=True
    )
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    shop_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gross_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    owner_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    merchant_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ELIGIBLE")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_vault_split_status", "status"),
    )
    __mapper_args__ = {"version_id_col": version}

    def share_for(self, payee_type: str) -> Decimal:
        return {
            "OWNER": self.owner_amount,
            "MERCHANT": self.merchant_amount,
            "PLATFORM": self.platform_amount,
        }[str(payee_type)]

    def payee_for(self, payee_type: str) -> str:
        return {
            "OWNER": self.owner_id,
            "MERCHANT": self.shop_id or "UNASSIGNED_SHOP",
            "PLATFORM": "PLATFORM",
        }[str(payee_type)]

    def __repr__(self) -> str:
        return f"<VaultSplit id={self.id} gross={self.gross_amount} status={self.status}>"


# ---------------------------------------------------------------------------
# 9. vault_payout_batches / vault_payout_lines
# ---------------------------------------------------------------------------
class VaultPayoutBatch(Base):
    __tablename__ = "vault_payout_batches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payee_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="CREATED")
    period_start: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list[VaultPayoutLine]] = relationship(
        "VaultPayoutLine",
        back_populates="batch",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<VaultPayoutBatch id={self.id} payee={self.payee_type} "
            f"status={self.status} total={self.total_amount}>"
        )


class VaultPayoutLine(Base):
    """One payee's share of one split inside a batch."""

    __tablename__ = "vault_payout_lines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vault_payout_batches.id"), nullable=False
    )
    split_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("vault_splits.id"), nullable=False
    )
    payee_type: Mapped[str] = mapped_column(String(16), nullable=False)
    payee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")

    batch: Mapped[VaultPayoutBatch] = relationship("VaultPayoutBatch", back_populates="lines")

    __table_args__ = (
        Index("uq_payout_line_split_payee", "split_id", "payee_type", unique=True),
    )


# ---------------------------------------------------------------------------
# 10. audit_log (Append-Only)
# ---------------------------------------------------------------------------
class AuditLogEntry(Base):
    """Immutable record of one state change.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Every row represents a single entity transition.
    """

    __tablename__ = "audit_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    action_type: Mapped[str] = mapped_column(String(40), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(24), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    before: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_transaction", "transaction_id"),
        Index("idx_audit_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLogEntry {self.action_type} {self.entity_type}:{self.entity_id} "
            f"by {self.actor_role}:{self.actor_id}>"
        )
