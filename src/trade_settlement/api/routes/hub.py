"""Hub package routes for VERIFIED trades.

Every step moves the package and, where paired, the transaction in one
commit. Tracking numbers are normalized before they are stored.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from trade_settlement.api.deps import get_actor, get_services, idempotency_guard
from trade_settlement.domain.authorization import Actor
from trade_settlement.schemas.transactions import (
    DeliveryResponse,
    HubFailRequest,
    HubVerifyRequest,
    ReleaseResponse,
    TrackingRequest,
    TransactionResponse,
)
from trade_settlement.services import SettlementServices

router = APIRouter(prefix="/api/v1/hub/transactions", tags=["Hub"])


@router.post(
    "/{transaction_id}/awaiting-receipt",
    response_model=TransactionResponse,
    summary="Expect the seller's package at the hub",
)
async def mark_awaiting_receipt(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.hub.mark_awaiting_hub_receipt(transaction_id, actor)
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/dispatch",
    response_model=TransactionResponse,
    summary="Seller ships the item to the hub",
)
async def dispatch_to_hub(
    transaction_id: uuid.UUID,
    request: TrackingRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.hub.dispatch_to_hub(transaction_id, actor, request.tracking_number)
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/receive",
    response_model=TransactionResponse,
    summary="Hub staff log the package as received",
)
async def receive_package(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.hub.receive(transaction_id, actor)
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/start-verification",
    response_model=TransactionResponse,
    summary="Begin inspecting the item",
)
async def start_verification(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.hub.start_verification(transaction_id, actor)
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/verify",
    response_model=TransactionResponse,
    summary="Item passed inspection",
)
async def verify_package(
    transaction_id: uuid.UUID,
    request: HubVerifyRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.hub.verify(
        transaction_id, actor, notes=request.notes, photo_count=request.photo_count
    )
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/fail-verification",
    response_model=TransactionResponse,
    summary="Item failed inspection; the trade is cancelled",
)
async def fail_verification(
    transaction_id: uuid.UUID,
    request: HubFailRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.hub.fail_verification(transaction_id, actor, request.reason)
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/ship",
    response_model=TransactionResponse,
    summary="Hub ships the verified item to the buyer",
)
async def ship_to_buyer(
    transaction_id: uuid.UUID,
    request: TrackingRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.hub.ship(transaction_id, actor, request.tracking_number)
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/deliver",
    response_model=TransactionResponse,
    summary="Carrier delivered the item to the buyer",
)
async def deliver_package(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.hub.deliver(transaction_id, actor)
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/confirm-received",
    response_model=DeliveryResponse,
    summary="Buyer confirms receipt; stages the seller payout",
)
async def confirm_received(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
    _idempotency_key: str | None = Depends(idempotency_guard),
) -> DeliveryResponse:
    txn, release = await services.hub.confirm_received(transaction_id, actor)
    return DeliveryResponse(
        transaction=TransactionResponse.model_validate(txn),
        release=ReleaseResponse.model_validate(release),
    )
