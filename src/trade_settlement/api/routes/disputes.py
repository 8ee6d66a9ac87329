"""Dispute arbitration routes.

Opening a dispute freezes the transaction; resolving one may stage a
release that still needs dual confirmation on the releases router.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from trade_settlement.api.deps import get_actor, get_services, idempotency_guard
from trade_settlement.domain.authorization import Actor
from trade_settlement.logging_config import get_logger
from trade_settlement.schemas.disputes import (
    DisputeMessageRequest,
    DisputeMessageResponse,
    DisputeRespondRequest,
    DisputeResponse,
    OpenDisputeRequest,
    ResolveDisputeRequest,
    ResolveDisputeResponse,
)
from trade_settlement.schemas.transactions import ReleaseResponse
from trade_settlement.services import SettlementServices

router = APIRouter(prefix="/api/v1/disputes", tags=["Disputes"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=DisputeResponse,
    status_code=201,
    summary="Open a dispute on a transaction",
)
async def open_dispute(
    request: OpenDisputeRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
    _idempotency_key: str | None = Depends(idempotency_guard),
) -> DisputeResponse:
    dispute = await services.disputes.open_dispute(
        request.transaction_id,
        actor,
        dispute_type=request.dispute_type,
        title=request.title,
        description=request.description,
        photos=request.photos,
    )
    return DisputeResponse.model_validate(dispute)


@router.get(
    "",
    response_model=list[DisputeResponse],
    summary="List disputes for a transaction",
)
async def list_disputes(
    transaction_id: uuid.UUID = Query(...),
    services: SettlementServices = Depends(get_services),
) -> list[DisputeResponse]:
    disputes = await services.disputes.list_for_transaction(transaction_id)
    return [DisputeResponse.model_validate(d) for d in disputes]


@router.get("/{dispute_id}", response_model=DisputeResponse, summary="Get dispute details")
async def get_dispute(
    dispute_id: uuid.UUID,
    services: SettlementServices = Depends(get_services),
) -> DisputeResponse:
    return DisputeResponse.model_validate(await services.disputes.get_dispute(dispute_id))


@router.post(
    "/{dispute_id}/respond",
    response_model=DisputeResponse,
    summary="Seller responds to the dispute",
)
async def respond_to_dispute(
    dispute_id: uuid.UUID,
    request: DisputeRespondRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> DisputeResponse:
    dispute = await services.disputes.respond(dispute_id, actor, request.message)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/{dispute_id}/mediate",
    response_model=DisputeResponse,
    summary="Staff take the dispute into mediation",
)
async def mediate_dispute(
    dispute_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> DisputeResponse:
    return DisputeResponse.model_validate(await services.disputes.mediate(dispute_id, actor))


@router.post(
    "/{dispute_id}/escalate",
    response_model=DisputeResponse,
    summary="Escalate the dispute to staff",
)
async def escalate_dispute(
    dispute_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> DisputeResponse:
    return DisputeResponse.model_validate(await services.disputes.escalate(dispute_id, actor))


@router.post(
    "/{dispute_id}/resolve",
    response_model=ResolveDisputeResponse,
    summary="Resolve the dispute and stage any money movement",
)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    request: ResolveDisputeRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> ResolveDisputeResponse:
    dispute, release = await services.disputes.resolve(
        dispute_id,
        actor,
        resolution=request.resolution,
        amount=request.amount,
        notes=request.notes,
    )
    logger.info(
        "dispute.resolved_via_api",
        dispute_id=dispute.id,
        staged_release=release.id if release else None,
    )
    return ResolveDisputeResponse(
        dispute=DisputeResponse.model_validate(dispute),
        release=ReleaseResponse.model_validate(release) if release else None,
    )


@router.post("/{dispute_id}/close", response_model=DisputeResponse, summary="Close the dispute")
async def close_dispute(
    dispute_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> DisputeResponse:
    return DisputeResponse.model_validate(await services.disputes.close(dispute_id, actor))


@router.post(
    "/{dispute_id}/messages",
    response_model=DisputeMessageResponse,
    status_code=201,
    summary="Add a message with optional evidence photos",
)
async def add_dispute_message(
    dispute_id: uuid.UUID,
    request: DisputeMessageRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> DisputeMessageResponse:
    message = await services.disputes.add_message(
        dispute_id, actor, request.content, photos=request.photos
    )
    return DisputeMessageResponse.model_validate(message)
