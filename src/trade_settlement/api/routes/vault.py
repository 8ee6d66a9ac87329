"""Consignment vault routes: item custody, online orders and settlement."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from trade_settlement.api.deps import get_actor, get_services, idempotency_guard
from trade_settlement.domain.authorization import Actor
from trade_settlement.schemas.vault import (
    AssignShopRequest,
    CreateOrderRequest,
    DepositItemRequest,
    DisputeOrderRequest,
    ListOnlineRequest,
    MarkPaidRequest,
    PhysicalSaleRequest,
    PhysicalSaleResponse,
    PlaceInCaseRequest,
    ReasonRequest,
    ResolveOrderDisputeRequest,
    ReviewItemRequest,
    SettleOrderResponse,
    ShipOrderRequest,
    VaultItemResponse,
    VaultOrderResponse,
    VaultSplitResponse,
)
from trade_settlement.services import SettlementServices

router = APIRouter(prefix="/api/v1/vault", tags=["Vault"])


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


@router.post(
    "/items",
    response_model=VaultItemResponse,
    status_code=201,
    summary="Deposit an item for consignment",
)
async def deposit_item(
    request: DepositItemRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultItemResponse:
    item = await services.vault.deposit_item(
        actor,
        title=request.title,
        declared_condition=request.declared_condition,
        estimated_value=request.estimated_value,
    )
    return VaultItemResponse.model_validate(item)


@router.get("/items/{item_id}", response_model=VaultItemResponse, summary="Get a vault item")
async def get_item(
    item_id: uuid.UUID,
    services: SettlementServices = Depends(get_services),
) -> VaultItemResponse:
    return VaultItemResponse.model_validate(await services.vault.get_item(item_id))


@router.post(
    "/items/{item_id}/review",
    response_model=VaultItemResponse,
    summary="Accept or reject a deposited item",
)
async def review_item(
    item_id: uuid.UUID,
    request: ReviewItemRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultItemResponse:
    item = await services.vault.review_item(
        item_id,
        actor,
        accept=request.accept,
        verified_condition=request.verified_condition,
        final_price=request.final_price,
    )
    return VaultItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/assign",
    response_model=VaultItemResponse,
    summary="Assign an accepted item to a shop",
)
async def assign_to_shop(
    item_id: uuid.UUID,
    request: AssignShopRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultItemResponse:
    item = await services.vault.assign_to_shop(item_id, actor, request.shop_id)
    return VaultItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/place",
    response_model=VaultItemResponse,
    summary="Put the item in a display case slot",
)
async def place_in_case(
    item_id: uuid.UUID,
    request: PlaceInCaseRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultItemResponse:
    item = await services.vault.place_in_case(
        item_id, actor, case_id=request.case_id, slot_code=request.slot_code
    )
    return VaultItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/list-online",
    response_model=VaultItemResponse,
    summary="List a cased item for online sale",
)
async def list_online(
    item_id: uuid.UUID,
    request: ListOnlineRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultItemResponse:
    item = await services.vault.list_online(item_id, actor, price=request.price)
    return VaultItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/return",
    response_model=VaultItemResponse,
    summary="Return the item to its owner",
)
async def return_item(
    item_id: uuid.UUID,
    request: ReasonRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultItemResponse:
    item = await services.vault.return_item(item_id, actor, reason=request.reason)
    return VaultItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/sell",
    response_model=PhysicalSaleResponse,
    summary="Record an in-store sale and create its split",
)
async def record_physical_sale(
    item_id: uuid.UUID,
    request: PhysicalSaleRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> PhysicalSaleResponse:
    item, split = await services.vault.record_physical_sale(item_id, actor, request.price)
    return PhysicalSaleResponse(
        item=VaultItemResponse.model_validate(item),
        split=VaultSplitResponse.model_validate(split),
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@router.post(
    "/orders",
    response_model=VaultOrderResponse,
    status_code=201,
    summary="Order an online-listed item",
)
async def create_order(
    request: CreateOrderRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
    _idempotency_key: str | None = Depends(idempotency_guard),
) -> VaultOrderResponse:
    order = await services.vault.create_order(
        request.item_id,
        actor,
        shipping_address=request.shipping_address.model_dump(),
        shipping_fee=request.shipping_fee,
    )
    return VaultOrderResponse.model_validate(order)


@router.get("/orders/{order_id}", response_model=VaultOrderResponse, summary="Get an order")
async def get_order(
    order_id: uuid.UUID,
    services: SettlementServices = Depends(get_services),
) -> VaultOrderResponse:
    return VaultOrderResponse.model_validate(await services.vault.get_order(order_id))


@router.post(
    "/orders/{order_id}/paid",
    response_model=VaultOrderResponse,
    summary="Record the processor's payment confirmation",
)
async def mark_order_paid(
    order_id: uuid.UUID,
    request: MarkPaidRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultOrderResponse:
    order = await services.vault.mark_order_paid(order_id, actor, request.payment_ref)
    return VaultOrderResponse.model_validate(order)


@router.post("/orders/{order_id}/fulfill", response_model=VaultOrderResponse, summary="Pack")
async def fulfill_order(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultOrderResponse:
    return VaultOrderResponse.model_validate(await services.vault.fulfill_order(order_id, actor))


@router.post("/orders/{order_id}/ship", response_model=VaultOrderResponse, summary="Ship")
async def ship_order(
    order_id: uuid.UUID,
    request: ShipOrderRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultOrderResponse:
    order = await services.vault.ship_order(order_id, actor, request.tracking_number)
    return VaultOrderResponse.model_validate(order)


@router.post(
    "/orders/{order_id}/delivered",
    response_model=VaultOrderResponse,
    summary="Carrier confirmed delivery",
)
async def mark_delivered(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultOrderResponse:
    return VaultOrderResponse.model_validate(await services.vault.mark_delivered(order_id, actor))


@router.post(
    "/orders/{order_id}/dispute",
    response_model=VaultOrderResponse,
    summary="Buyer disputes a delivered order",
)
async def dispute_order(
    order_id: uuid.UUID,
    request: DisputeOrderRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultOrderResponse:
    order = await services.vault.dispute_order(order_id, actor, request.reason)
    return VaultOrderResponse.model_validate(order)


@router.post(
    "/orders/{order_id}/resolve-dispute",
    response_model=VaultOrderResponse,
    summary="Staff resolve an order dispute",
)
async def resolve_order_dispute(
    order_id: uuid.UUID,
    request: ResolveOrderDisputeRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultOrderResponse:
    order = await services.vault.resolve_order_dispute(
        order_id, actor, refund=request.refund, notes=request.notes
    )
    return VaultOrderResponse.model_validate(order)


@router.post(
    "/orders/{order_id}/cancel",
    response_model=VaultOrderResponse,
    summary="Cancel an unpaid order and free the item",
)
async def cancel_order(
    order_id: uuid.UUID,
    request: ReasonRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultOrderResponse:
    order = await services.vault.cancel_order(order_id, actor, reason=request.reason)
    return VaultOrderResponse.model_validate(order)


@router.post(
    "/orders/{order_id}/refund",
    response_model=VaultOrderResponse,
    summary="Refund an unsettled order",
)
async def refund_order(
    order_id: uuid.UUID,
    request: ReasonRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> VaultOrderResponse:
    order = await services.vault.refund_order(order_id, actor, reason=request.reason)
    return VaultOrderResponse.model_validate(order)


@router.post(
    "/orders/{order_id}/settle",
    response_model=SettleOrderResponse,
    summary="Settle a completed order and create its split",
)
async def settle_order(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SettleOrderResponse:
    order, split = await services.vault.settle_order(order_id, actor)
    return SettleOrderResponse(
        order=VaultOrderResponse.model_validate(order),
        split=VaultSplitResponse.model_validate(split),
    )
