"""Schemas for transactions, hub packages and pending releases."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from trade_settlement.domain.enums import (  # noqa: TC001
    EscrowType,
    RecipientType,
    ReleaseType,
    TransactionStatus,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateTransactionRequest(BaseModel):
    """Open a transaction for an accepted trade proposal."""

    proposal_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Accepted proposal this transaction settles; one transaction per proposal",
    )
    buyer_id: str = Field(..., min_length=1, max_length=64, description="Party A, pays")
    seller_id: str = Field(..., min_length=1, max_length=64, description="Party B, delivers")
    amount: Decimal = Field(
        ...,
        gt=0,
        le=Decimal("999999.99"),
        decimal_places=2,
        description="Trade amount held in escrow",
        examples=["150.00"],
    )
    escrow_type: EscrowType = Field(
        ...,
        description="LOCAL (handoff at a merchant's shop) or VERIFIED (through a hub)",
    )
    shop_id: str | None = Field(default=None, max_length=64)
    hub_id: str | None = Field(default=None, max_length=64)


class TransitionRequest(BaseModel):
    target: TransactionStatus = Field(..., description="Requested status")
    reason: str | None = Field(default=None, max_length=2000)


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class TrackingRequest(BaseModel):
    tracking_number: str = Field(
        ...,
        min_length=8,
        max_length=32,
        description="Carrier tracking number; 8-20 letters or digits after normalizing",
        examples=["1Z999AA10123456784"],
    )


class HubVerifyRequest(BaseModel):
    notes: str = Field(..., min_length=1, max_length=5000)
    photo_count: int = Field(..., ge=0, description="At least three photos are required")


class HubFailRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class CreateReleaseRequest(BaseModel):
    """Stage a release by hand (staff only)."""

    release_type: ReleaseType
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    recipient_id: str = Field(..., min_length=1, max_length=64)
    recipient_type: RecipientType
    reason: str = Field(..., min_length=3, max_length=2000)
    transaction_id: uuid.UUID | None = None


class ConfirmReleaseRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)
    notes: str | None = Field(default=None, max_length=2000)


class RejectReleaseRequest(BaseModel):
    reason: str = Field(..., min_length=10, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    hold_id: str
    amount: Decimal
    status: str
    refunded_amount: Decimal
    captured_at: datetime | None
    refunded_at: datetime | None


class TransactionResponse(BaseModel):
    """Response schema for a trade transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    proposal_id: str
    buyer_id: str
    seller_id: str
    shop_id: str | None
    hub_id: str | None
    escrow_type: str
    status: str
    package_status: str | None
    status_before_dispute: str | None
    amount: Decimal
    inbound_tracking: str | None
    return_tracking: str | None
    payment: PaymentResponse | None
    created_at: datetime
    checked_in_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    delivered_at: datetime | None
    received_confirmed_at: datetime | None
    auto_release_requested_at: datetime | None
    version: int


class TransactionStatusResponse(BaseModel):
    """Lightweight status check."""

    transaction_id: uuid.UUID
    escrow_type: str
    status: str
    package_status: str | None
    hold_status: str | None
    allowed_targets: list[str] = Field(
        description="Statuses the calling actor could move this transaction to"
    )


class ReleaseResponse(BaseModel):
    """A pending (or decided) release. The confirmation token is never exposed here."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID | None
    dispute_id: uuid.UUID | None
    release_type: str
    amount: Decimal
    recipient_id: str
    recipient_type: str
    status: str
    triggered_by: str
    reason: str | None
    token_expires_at: datetime | None
    initiated_by_id: str | None
    approved_by_id: str | None
    approved_at: datetime | None
    approval_notes: str | None
    rejected_by_id: str | None
    rejected_at: datetime | None
    rejection_reason: str | None
    payment_reference: str | None
    created_at: datetime


class ReleaseSummaryResponse(BaseModel):
    """Returned by initiate-approval; carries the single-use token."""

    model_config = ConfigDict(from_attributes=True)

    release_id: str
    release_type: str
    label: str
    amount: Decimal
    recipient_id: str
    recipient_type: str
    reason: str | None
    token: str
    expires_at: datetime
    expires_in_seconds: int


class DeliveryResponse(BaseModel):
    """Buyer-confirmed delivery and the seller release it staged."""

    transaction: TransactionResponse
    release: ReleaseResponse
