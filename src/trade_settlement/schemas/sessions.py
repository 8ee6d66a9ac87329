"""Schemas for in-store escrow sessions."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from trade_settlement.schemas.transactions import ReleaseResponse  # noqa: TC001


class CreateSessionRequest(BaseModel):
    transaction_id: uuid.UUID
    merchant_id: str = Field(..., min_length=1, max_length=64)
    shop_id: str | None = Field(default=None, max_length=64)


class CheckInRequest(BaseModel):
    buyer_present: bool = Field(..., description="Merchant confirms the buyer is at the counter")
    seller_present: bool = Field(..., description="Merchant confirms the seller is at the counter")


class CompleteVerificationRequest(BaseModel):
    passed: bool
    photo_count: int = Field(default=0, ge=0)
    notes: str | None = Field(default=None, max_length=5000)


class CloseSessionRequest(BaseModel):
    confirm: bool = Field(
        default=False,
        description="Must be true; closing a session cannot be undone",
    )
    reason: str | None = Field(default=None, max_length=2000)


class SessionMessageRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=2000)


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    buyer_id: str
    seller_id: str
    merchant_id: str
    shop_id: str | None
    status: str
    buyer_present: bool
    seller_present: bool
    verification_photo_count: int
    extension_count: int
    expires_at: datetime | None
    last_activity_at: datetime
    created_at: datetime


class SessionMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    sender_id: str
    sender_role: str
    body: str
    created_at: datetime


class SessionReleaseResponse(BaseModel):
    session: SessionResponse
    release: ReleaseResponse
