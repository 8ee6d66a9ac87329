"""Dual-confirmation release routes.

A staff member initiates approval and receives a single-use token, then a
second call confirms with that token before it expires. Only the confirm
step moves money.
"""

from __future__ import annotations

import dataclasses
import uuid

from fastapi import APIRouter, Depends

from trade_settlement.api.deps import get_actor, get_services
from trade_settlement.domain import authorization
from trade_settlement.domain.authorization import Actor
from trade_settlement.schemas.transactions import (
    ConfirmReleaseRequest,
    CreateReleaseRequest,
    RejectReleaseRequest,
    ReleaseResponse,
    ReleaseSummaryResponse,
)
from trade_settlement.services import SettlementServices

router = APIRouter(prefix="/api/v1/releases", tags=["Releases"])


@router.post(
    "",
    response_model=ReleaseResponse,
    status_code=201,
    summary="Stage a release by hand (staff)",
)
async def create_release(
    request: CreateReleaseRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> ReleaseResponse:
    release = await services.releases.create_release(
        actor,
        release_type=request.release_type,
        amount=request.amount,
        recipient_id=request.recipient_id,
        recipient_type=request.recipient_type,
        reason=request.reason,
        transaction_id=request.transaction_id,
    )
    return ReleaseResponse.model_validate(release)


@router.get(
    "/pending",
    response_model=list[ReleaseResponse],
    summary="List releases awaiting approval (staff)",
)
async def list_pending_releases(
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> list[ReleaseResponse]:
    authorization.can_approve_release(actor).enforce()
    return [ReleaseResponse.model_validate(r) for r in await services.releases.list_pending()]


@router.get("/{release_id}", response_model=ReleaseResponse, summary="Get a release")
async def get_release(
    release_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> ReleaseResponse:
    authorization.can_approve_release(actor).enforce()
    return ReleaseResponse.model_validate(await services.releases.get_release(release_id))


@router.post(
    "/{release_id}/initiate",
    response_model=ReleaseSummaryResponse,
    summary="Start approval and receive a confirmation token",
)
async def initiate_approval(
    release_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> ReleaseSummaryResponse:
    summary = await services.releases.initiate_approval(release_id, actor)
    return ReleaseSummaryResponse(**dataclasses.asdict(summary))


@router.post(
    "/{release_id}/confirm",
    response_model=ReleaseResponse,
    summary="Confirm with the token and execute the release",
)
async def confirm_approval(
    release_id: uuid.UUID,
    request: ConfirmReleaseRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> ReleaseResponse:
    release = await services.releases.confirm_approval(
        release_id, actor, token=request.token, notes=request.notes
    )
    return ReleaseResponse.model_validate(release)


@router.post(
    "/{release_id}/reject",
    response_model=ReleaseResponse,
    summary="Reject a pending release",
)
async def reject_release(
    release_id: uuid.UUID,
    request: RejectReleaseRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> ReleaseResponse:
    release = await services.releases.reject_release(release_id, actor, request.reason)
    return ReleaseResponse.model_validate(release)
