"""Schemas for the consignment vault and payouts."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from trade_settlement.domain.enums import PayeeType  # noqa: TC001

# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class DepositItemRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    declared_condition: str | None = Field(default=None, max_length=32)
    estimated_value: Decimal | None = Field(default=None, gt=0, decimal_places=2)


class ReviewItemRequest(BaseModel):
    accept: bool
    verified_condition: str | None = Field(default=None, max_length=32)
    final_price: Decimal | None = Field(default=None, gt=0, decimal_places=2)


class AssignShopRequest(BaseModel):
    shop_id: str = Field(..., min_length=1, max_length=64)


class PlaceInCaseRequest(BaseModel):
    case_id: str = Field(..., min_length=1, max_length=64)
    slot_code: str = Field(..., min_length=1, max_length=16, examples=["A3"])


class ListOnlineRequest(BaseModel):
    price: Decimal | None = Field(default=None, gt=0, decimal_places=2)


class ReasonRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class PhysicalSaleRequest(BaseModel):
    price: Decimal = Field(..., gt=0, le=Decimal("100000.00"), decimal_places=2)


class VaultItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: str
    shop_id: str | None
    case_id: str | None
    slot_code: str | None
    title: str
    status: str
    declared_condition: str | None
    verified_condition: str | None
    estimated_value: Decimal | None
    final_price: Decimal | None
    has_been_in_case: bool
    created_at: datetime


class VaultSplitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    item_id: uuid.UUID
    order_id: uuid.UUID | None
    owner_id: str
    shop_id: str | None
    gross_amount: Decimal
    owner_amount: Decimal
    merchant_amount: Decimal
    platform_amount: Decimal
    status: str
    created_at: datetime


class PhysicalSaleResponse(BaseModel):
    item: VaultItemResponse
    split: VaultSplitResponse


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class ShippingAddress(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(default="IT", min_length=2, max_length=2)


class CreateOrderRequest(BaseModel):
    item_id: uuid.UUID
    shipping_address: ShippingAddress
    shipping_fee: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)


class MarkPaidRequest(BaseModel):
    payment_ref: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Processor reference; replaying the same reference is a no-op",
    )


class ShipOrderRequest(BaseModel):
    tracking_number: str = Field(..., min_length=8, max_length=32)


class DisputeOrderRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class ResolveOrderDisputeRequest(BaseModel):
    refund: bool
    notes: str | None = Field(default=None, max_length=2000)


class VaultOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    item_id: uuid.UUID
    buyer_id: str
    shop_id: str | None
    status: str
    shipping_address: dict
    subtotal: Decimal
    shipping_fee: Decimal
    total: Decimal
    payment_ref: str | None
    tracking_number: str | None
    settled_at: datetime | None
    created_at: datetime


class SettleOrderResponse(BaseModel):
    order: VaultOrderResponse
    split: VaultSplitResponse


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------


class CreatePayoutBatchRequest(BaseModel):
    payee_type: PayeeType
    period_start: datetime | None = None
    period_end: datetime | None = None


class PayoutLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    split_id: uuid.UUID
    payee_type: str
    payee_id: str
    amount: Decimal
    status: str


class PayoutBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    payee_type: str
    status: str
    period_start: datetime | None
    period_end: datetime | None
    total_amount: Decimal
    created_by_id: str
    created_at: datetime
    paid_at: datetime | None
    lines: list[PayoutLineResponse] = Field(default_factory=list)
