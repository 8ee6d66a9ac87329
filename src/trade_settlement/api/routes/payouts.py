"""Payout batch routes (admin only)."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from trade_settlement.api.deps import get_actor, get_services
from trade_settlement.domain import authorization
from trade_settlement.domain.authorization import Actor
from trade_settlement.schemas.vault import CreatePayoutBatchRequest, PayoutBatchResponse
from trade_settlement.services import SettlementServices

router = APIRouter(prefix="/api/v1/payouts", tags=["Payouts"])


@router.post(
    "/batches",
    response_model=PayoutBatchResponse,
    status_code=201,
    summary="Batch every unpaid split share for one payee type",
)
async def create_payout_batch(
    request: CreatePayoutBatchRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> PayoutBatchResponse:
    batch = await services.payouts.create_payout_batch(
        actor,
        payee_type=request.payee_type,
        period_start=request.period_start,
        period_end=request.period_end,
    )
    return PayoutBatchResponse.model_validate(batch)


@router.get("/batches/{batch_id}", response_model=PayoutBatchResponse, summary="Get a batch")
async def get_payout_batch(
    batch_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> PayoutBatchResponse:
    authorization.can_manage_payouts(actor).enforce()
    return PayoutBatchResponse.model_validate(await services.payouts.get_batch(batch_id))


@router.post(
    "/batches/{batch_id}/pay",
    response_model=PayoutBatchResponse,
    summary="Mark a batch paid and settle fully paid splits",
)
async def pay_payout_batch(
    batch_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> PayoutBatchResponse:
    return PayoutBatchResponse.model_validate(await services.payouts.pay_batch(batch_id, actor))
