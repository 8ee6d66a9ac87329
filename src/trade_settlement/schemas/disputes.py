"""Schemas for dispute arbitration."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from trade_settlement.domain.enums import DisputeResolution, DisputeType  # noqa: TC001
from trade_settlement.schemas.transactions import ReleaseResponse  # noqa: TC001


class OpenDisputeRequest(BaseModel):
    transaction_id: uuid.UUID
    dispute_type: DisputeType
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=10, max_length=5000)
    photos: list[str] = Field(
        default_factory=list,
        max_length=10,
        description="References to already uploaded evidence photos",
    )


class DisputeRespondRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)


class ResolveDisputeRequest(BaseModel):
    resolution: DisputeResolution
    amount: Decimal | None = Field(
        default=None,
        gt=0,
        decimal_places=2,
        description="Required for REFUND_PARTIAL; at most the held amount",
    )
    notes: str | None = Field(default=None, max_length=5000)


class DisputeMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    photos: list[str] = Field(default_factory=list, max_length=10)


class DisputeMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sender_id: str
    sender_role: str
    content: str
    photos: list[str] | None
    created_at: datetime


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    dispute_type: str
    status: str
    title: str
    description: str
    opened_by_id: str
    opened_at: datetime
    seller_response_deadline: datetime
    mediator_id: str | None
    mediation_deadline: datetime | None
    resolution: str | None
    resolution_amount: Decimal | None
    resolution_notes: str | None
    resolved_by_id: str | None
    resolved_at: datetime | None
    closed_at: datetime | None
    messages: list[DisputeMessageResponse] = Field(default_factory=list)


class ResolveDisputeResponse(BaseModel):
    dispute: DisputeResponse
    release: ReleaseResponse | None = Field(
        default=None,
        description="Staged release awaiting dual confirmation, when the outcome moves money",
    )
