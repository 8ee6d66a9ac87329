"""baseline schema

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
Money = sa.Numeric(12, 2)
UTCDateTime = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("buyer_id", sa.String(64), nullable=False),
        sa.Column("seller_id", sa.String(64), nullable=False),
        sa.Column("shop_id", sa.String(64), nullable=True,
                  comment="Merchant shop hosting a LOCAL handoff"),
        sa.Column("hub_id", sa.String(64), nullable=True,
                  comment="Verification hub for a VERIFIED trade"),
        sa.Column("proposal_id", sa.String(64), nullable=False),
        sa.Column("escrow_type", sa.String(10), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("package_status", sa.String(32), nullable=True,
                  comment="Hub package status; non-null only for VERIFIED escrow"),
        sa.Column("status_before_dispute", sa.String(32), nullable=True,
                  comment="Restoration point for the dispute side-channel"),
        sa.Column("amount", Money, nullable=False),
        sa.Column("inbound_tracking", sa.String(32), nullable=True),
        sa.Column("return_tracking", sa.String(32), nullable=True),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("checked_in_at", UTCDateTime, nullable=True),
        sa.Column("completed_at", UTCDateTime, nullable=True),
        sa.Column("cancelled_at", UTCDateTime, nullable=True),
        sa.Column("delivered_at", UTCDateTime, nullable=True,
                  comment="Hub package delivered to the buyer"),
        sa.Column("received_confirmed_at", UTCDateTime, nullable=True),
        sa.Column("auto_release_requested_at", UTCDateTime, nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        sa.CheckConstraint(
            "(escrow_type = 'VERIFIED' AND package_status IS NOT NULL) OR "
            "(escrow_type = 'LOCAL' AND package_status IS NULL)",
            name="ck_transaction_package_matches_escrow_type",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_transaction_status", "transactions", ["status"])
    op.create_index("idx_transaction_buyer", "transactions", ["buyer_id"])
    op.create_index("idx_transaction_seller", "transactions", ["seller_id"])

    op.create_table(
        "escrow_payments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("transaction_id", sa.Uuid(), nullable=False),
        sa.Column("hold_id", sa.String(128), nullable=False),
        sa.Column("amount", Money, nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("refunded_amount", Money, nullable=False),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("captured_at", UTCDateTime, nullable=True),
        sa.Column("refunded_at", UTCDateTime, nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id"),
    )

    op.create_table(
        "escrow_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("transaction_id", sa.Uuid(), nullable=False),
        sa.Column("buyer_id", sa.String(64), nullable=False),
        sa.Column("seller_id", sa.String(64), nullable=False),
        sa.Column("merchant_id", sa.String(64), nullable=False),
        sa.Column("shop_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("buyer_present", sa.Boolean(), nullable=False),
        sa.Column("seller_present", sa.Boolean(), nullable=False),
        sa.Column("verification_photo_count", sa.Integer(), nullable=False),
        sa.Column("extension_count", sa.Integer(), nullable=False),
        sa.Column("expires_at", UTCDateTime, nullable=True),
        sa.Column("last_activity_at", UTCDateTime, nullable=False),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_session_transaction", "escrow_sessions", ["transaction_id"])
    op.create_index("idx_session_status_expiry", "escrow_sessions", ["status", "expires_at"])

    op.create_table(
        "session_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("sender_role", sa.String(16), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["escrow_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "disputes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("transaction_id", sa.Uuid(), nullable=False),
        sa.Column("dispute_type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("opened_by_id", sa.String(64), nullable=False),
        sa.Column("opened_at", UTCDateTime, nullable=False),
        sa.Column("seller_response_deadline", UTCDateTime, nullable=False),
        sa.Column("mediator_id", sa.String(64), nullable=True),
        sa.Column("mediation_deadline", UTCDateTime, nullable=True),
        sa.Column("resolution", sa.String(24), nullable=True),
        sa.Column("resolution_amount", Money, nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_by_id", sa.String(64), nullable=True),
        sa.Column("resolved_at", UTCDateTime, nullable=True),
        sa.Column("closed_at", UTCDateTime, nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_dispute_transaction", "disputes", ["transaction_id"])
    op.create_index("idx_dispute_status", "disputes", ["status"])

    op.create_table(
        "dispute_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("dispute_id", sa.Uuid(), nullable=False),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("sender_role", sa.String(16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("photos", JSONType, nullable=True),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.ForeignKeyConstraint(["dispute_id"], ["disputes.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "pending_releases",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("transaction_id", sa.Uuid(), nullable=True),
        sa.Column("dispute_id", sa.Uuid(), nullable=True),
        sa.Column("release_type", sa.String(24), nullable=False),
        sa.Column("amount", Money, nullable=False),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("recipient_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("triggered_by", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("confirmation_token", sa.String(64), nullable=True),
        sa.Column("token_expires_at", UTCDateTime, nullable=True),
        sa.Column("initiated_by_id", sa.String(64), nullable=True),
        sa.Column("approved_by_id", sa.String(64), nullable=True),
        sa.Column("approved_at", UTCDateTime, nullable=True),
        sa.Column("approval_notes", sa.Text(), nullable=True),
        sa.Column("rejected_by_id", sa.String(64), nullable=True),
        sa.Column("rejected_at", UTCDateTime, nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("payment_reference", sa.String(128), nullable=True),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_release_positive_amount"),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["dispute_id"], ["disputes.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_release_status", "pending_releases", ["status"])
    op.create_index("idx_release_transaction", "pending_releases", ["transaction_id"])

    op.create_table(
        "vault_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("shop_id", sa.String(64), nullable=True),
        sa.Column("case_id", sa.String(64), nullable=True),
        sa.Column("slot_code", sa.String(16), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("declared_condition", sa.String(32), nullable=True),
        sa.Column("verified_condition", sa.String(32), nullable=True),
        sa.Column("estimated_value", Money, nullable=True),
        sa.Column("final_price", Money, nullable=True),
        sa.Column("has_been_in_case", sa.Boolean(), nullable=False,
                  comment="Set once the item has been physically placed in a display case"),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_vault_item_status", "vault_items", ["status"])
    op.create_index("idx_vault_item_slot", "vault_items", ["case_id", "slot_code"])

    op.create_table(
        "vault_orders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("item_id", sa.Uuid(), nullable=False),
        sa.Column("buyer_id", sa.String(64), nullable=False),
        sa.Column("shop_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("shipping_address", JSONType, nullable=False),
        sa.Column("subtotal", Money, nullable=False),
        sa.Column("shipping_fee", Money, nullable=False),
        sa.Column("total", Money, nullable=False),
        sa.Column("payment_ref", sa.String(128), nullable=True),
        sa.Column("tracking_number", sa.String(32), nullable=True),
        sa.Column("settled_at", UTCDateTime, nullable=True),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["vault_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_ref"),
    )
    op.create_index("idx_vault_order_item", "vault_orders", ["item_id"])
    op.create_index("idx_vault_order_status", "vault_orders", ["status"])

    op.create_table(
        "vault_splits",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("item_id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("shop_id", sa.String(64), nullable=True),
        sa.Column("gross_amount", Money, nullable=False),
        sa.Column("owner_amount", Money, nullable=False),
        sa.Column("merchant_amount", Money, nullable=False),
        sa.Column("platform_amount", Money, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["vault_items.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["vault_orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("item_id"),
    )
    op.create_index("idx_vault_split_status", "vault_splits", ["status"])

    op.create_table(
        "vault_payout_batches",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("payee_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("period_start", UTCDateTime, nullable=True),
        sa.Column("period_end", UTCDateTime, nullable=True),
        sa.Column("total_amount", Money, nullable=False),
        sa.Column("created_by_id", sa.String(64), nullable=False),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("paid_at", UTCDateTime, nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "vault_payout_lines",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("batch_id", sa.Uuid(), nullable=False),
        sa.Column("split_id", sa.Uuid(), nullable=False),
        sa.Column("payee_type", sa.String(16), nullable=False),
        sa.Column("payee_id", sa.String(64), nullable=False),
        sa.Column("amount", Money, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.ForeignKeyConstraint(["batch_id"], ["vault_payout_batches.id"]),
        sa.ForeignKeyConstraint(["split_id"], ["vault_splits.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_payout_line_split_payee",
        "vault_payout_lines",
        ["split_id", "payee_type"],
        unique=True,
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("action_type", sa.String(40), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("actor_role", sa.String(16), nullable=False),
        sa.Column("entity_type", sa.String(24), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("transaction_id", sa.String(64), nullable=True),
        sa.Column("before", JSONType, nullable=True),
        sa.Column("after", JSONType, nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_audit_entity", "audit_log", ["entity_type", "entity_id"])
    op.create_index("idx_audit_transaction", "audit_log", ["transaction_id"])
    op.create_index("idx_audit_created_at", "audit_log", ["created_at"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "vault_payout_lines",
        "vault_payout_batches",
        "vault_splits",
        "vault_orders",
        "vault_items",
        "pending_releases",
        "dispute_messages",
        "disputes",
        "session_messages",
        "escrow_sessions",
        "escrow_payments",
        "transactions",
    ):
        op.drop_table(table)
