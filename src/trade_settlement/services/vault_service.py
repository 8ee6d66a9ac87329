"""Vault Custody & Sale Orchestrator: consignment items and online orders.

Item custody:  PENDING_REVIEW -> ACCEPTED -> ASSIGNED_TO_SHOP -> IN_CASE
               -> (LISTED_ONLINE -> RESERVED) -> SOLD, or RETURNED along the way.
Online orders: create_order reserves the item in the same unit of work; the
order then runs PENDING_PAYMENT -> PAID -> FULFILLING -> SHIPPED -> DELIVERED
and settle_order marks the item SOLD and writes its revenue split.

A sale (physical or settled order) always writes exactly one VaultSplit per
item; the unique item_id column turns a racing second sale into a
ConcurrentTransitionError.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from trade_settlement.domain import authorization
from trade_settlement.domain.enums import (
    AuditAction,
    EntityType,
    Role,
    VaultItemStatus,
    VaultOrderStatus,
)
from trade_settlement.domain.exceptions import (
    DuplicateOperationError,
    InvalidRequestError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from trade_settlement.domain.split_calculator import calculate_split, to_cents
from trade_settlement.domain.state_machine import VAULT_ITEM_TABLE, VAULT_ORDER_TABLE
from trade_settlement.infrastructure.database.orm_models import (
    VaultItem,
    VaultOrder,
    VaultSplit,
    utcnow,
)
from trade_settlement.logging_config import get_logger
from trade_settlement.services.hub_service import normalize_tracking_number

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from decimal import Decimal

    from trade_settlement.domain.authorization import Actor
    from trade_settlement.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

MIN_SALE_PRICE = to_cents("0.01")
MAX_SALE_PRICE = to_cents("100000.00")
PRICE_ANOMALY_FACTOR = 2
REQUIRED_ADDRESS_FIELDS = ("name", "address", "city", "postal_code")
DEFAULT_COUNTRY = "IT"


def item_snapshot(item: VaultItem) -> dict:
    return {
        "status": item.status,
        "shop_id": item.shop_id,
        "case_id": item.case_id,
        "slot_code": item.slot_code,
        "final_price": item.final_price,
    }


def order_snapshot(order: VaultOrder) -> dict:
    return {"status": order.status, "payment_ref": order.payment_ref}


def validate_sale_price(price: Decimal | int | str) -> Decimal:
    price = to_cents(price)
    if price < MIN_SALE_PRICE or price > MAX_SALE_PRICE:
        raise InvalidRequestError(
            f"Price must be between {MIN_SALE_PRICE} and {MAX_SALE_PRICE}"
        )
    return price


def normalize_shipping_address(address: dict | None) -> dict:
    address = {k: str(v).strip() for k, v in (address or {}).items() if v is not None}
    missing = [key for key in REQUIRED_ADDRESS_FIELDS if not address.get(key)]
    if missing:
        raise InvalidRequestError(f"Shipping address is missing: {', '.join(missing)}")
    address.setdefault("country", DEFAULT_COUNTRY)
    return address


class VaultService:
    """Drives consignment items from deposit to sale and online orders to settlement."""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow = uow_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Item custody
    # ------------------------------------------------------------------

    async def deposit_item(
        self,
        actor: Actor,
        title: str,
        declared_condition: str | None = None,
        estimated_value: Decimal | None = None,
    ) -> VaultItem:
        """An owner hands an item over for review."""
        title = (title or "").strip()
        if not title:
            raise InvalidRequestError("Item title is required")
        if actor.role not in (Role.SELLER, Role.BUYER, Role.ADMIN):
            raise PermissionDeniedError(f"Role {actor.role} may not deposit vault items")

        async with self._uow() as uow:
            item = VaultItem(
                id=uuid.uuid4(),
                owner_id=actor.id,
                title=title,
                status=VAULT_ITEM_TABLE.initial,
                declared_condition=declared_condition,
                estimated_value=to_cents(estimated_value) if estimated_value else None,
                created_at=self._clock(),
            )
            await uow.vault_items.add(item)
            uow.record(
                AuditAction.VAULT_ITEM_DEPOSITED,
                actor,
                EntityType.VAULT_ITEM,
                item.id,
                after=item_snapshot(item),
                metadata={"item_id": item.id, "title": title},
            )
            uow.notify("STAFF", "vault.item_deposited", item_id=str(item.id))
        logger.info("vault.item_deposited", item_id=item.id, owner_id=actor.id)
        return item

    async def review_item(
        self,
        item_id: uuid.UUID,
        actor: Actor,
        accept: bool,
        verified_condition: str | None = None,
        final_price: Decimal | None = None,
    ) -> VaultItem:
        async with self._uow() as uow:
            item = await uow.vault_items.get_or_raise(item_id)
            if accept:
                price = validate_sale_price(final_price) if final_price is not None else None
                self._fire_item(
                    uow, item, "accept", actor,
                    metadata={"verified_condition": verified_condition, "final_price": price},
                )
                item.verified_condition = verified_condition
                item.final_price = price
            else:
                self._fire_item(uow, item, "reject", actor)
            uow.notify(item.owner_id, f"vault.item_{item.status.lower()}", item_id=str(item.id))
        return item

    async def assign_to_shop(self, item_id: uuid.UUID, actor: Actor, shop_id: str) -> VaultItem:
        if not shop_id:
            raise InvalidRequestError("shop_id is required")
        async with self._uow() as uow:
            item = await uow.vault_items.get_or_raise(item_id)
            self._fire_item(uow, item, "assign_to_shop", actor, metadata={"shop_id": shop_id})
            item.shop_id = shop_id
            uow.notify(shop_id, "vault.item_assigned", item_id=str(item.id))
        return item

    async def place_in_case(
        self, item_id: uuid.UUID, actor: Actor, case_id: str, slot_code: str
    ) -> VaultItem:
        if not case_id or not slot_code:
            raise InvalidRequestError("case_id and slot_code are required")
        async with self._uow() as uow:
            item = await uow.vault_items.get_or_raise(item_id)
            authorization.can_handle_vault_item(actor, item).enforce()
            occupant = await uow.vault_items.get_in_slot(case_id, slot_code)
            if occupant is not None and occupant.id != item.id:
                raise PreconditionFailedError(
                    f"Slot {slot_code} in case {case_id} is already occupied"
                )
            self._fire_item(
                uow, item, "place_in_case", actor,
                metadata={"case_id": case_id, "slot_code": slot_code},
            )
            item.case_id = case_id
            item.slot_code = slot_code
            item.has_been_in_case = True
        return item

    async def list_online(
        self, item_id: uuid.UUID, actor: Actor, price: Decimal | None = None
    ) -> VaultItem:
        async with self._uow() as uow:
            item = await uow.vault_items.get_or_raise(item_id)
            authorization.can_handle_vault_item(actor, item).enforce()
            VAULT_ITEM_TABLE.require(item.status, VaultItemStatus.LISTED_ONLINE, actor.role)
            if not item.has_been_in_case:
                raise PreconditionFailedError(
                    "Item must be physically placed in a case before listing online"
                )
            if price is not None:
                item.final_price = validate_sale_price(price)
            if item.final_price is None:
                raise InvalidRequestError("A listing price is required")
            self._fire_item(
                uow, item, "list_online", actor, metadata={"price": item.final_price}
            )
        return item

    async def return_item(
        self, item_id: uuid.UUID, actor: Actor, reason: str | None = None
    ) -> VaultItem:
        async with self._uow() as uow:
            item = await uow.vault_items.get_or_raise(item_id)
            authorization.can_handle_vault_item(actor, item).enforce()
            self._fire_item(uow, item, "return_to_owner", actor, metadata={"reason": reason})
            uow.notify(item.owner_id, "vault.item_returned", item_id=str(item.id))
        return item

    async def record_physical_sale(
        self, item_id: uuid.UUID, actor: Actor, price: Decimal
    ) -> tuple[VaultItem, VaultSplit]:
        """Counter sale at the shop. A LISTED_ONLINE item is reserved then sold."""
        price = validate_sale_price(price)
        async with self._uow() as uow:
            item = await uow.vault_items.get_or_raise(item_id)
            authorization.can_handle_vault_item(actor, item).enforce()
            if item.status not in (VaultItemStatus.IN_CASE, VaultItemStatus.LISTED_ONLINE):
                raise PreconditionFailedError(
                    f"Physical sale requires IN_CASE or LISTED_ONLINE; item is {item.status}"
                )
            if item.status == VaultItemStatus.LISTED_ONLINE:
                self._fire_item(uow, item, "reserve", actor, as_role=Role.SYSTEM)

            if item.estimated_value and price > item.estimated_value * PRICE_ANOMALY_FACTOR:
                uow.record(
                    AuditAction.PRICE_ANOMALY,
                    actor,
                    EntityType.VAULT_ITEM,
                    item.id,
                    metadata={
                        "item_id": item.id,
                        "price": price,
                        "estimated_value": item.estimated_value,
                    },
                )
                logger.warning(
                    "vault.price_anomaly",
                    item_id=item.id,
                    price=price,
                    estimated_value=item.estimated_value,
                )

            item.final_price = price
            self._fire_item(uow, item, "sell", actor, as_role=Role.SYSTEM,
                            metadata={"channel": "physical", "price": price})
            split = await self._create_split(uow, item, actor, price, order=None)
            uow.notify(item.owner_id, "vault.item_sold", item_id=str(item.id), price=str(price))
        return item, split

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def create_order(
        self,
        item_id: uuid.UUID,
        actor: Actor,
        shipping_address: dict,
        shipping_fee: Decimal = to_cents(0),
    ) -> VaultOrder:
        """Checkout: reserve the listed item and open an order in one unit of work."""
        if actor.role != Role.BUYER:
            raise PermissionDeniedError("Only buyers may place vault orders")
        address = normalize_shipping_address(shipping_address)
        shipping_fee = to_cents(shipping_fee)
        if shipping_fee < 0:
            raise InvalidRequestError("Shipping fee cannot be negative")

        async with self._uow() as uow:
            item = await uow.vault_items.get_or_raise(item_id)
            if item.shop_id is None:
                raise PreconditionFailedError("Item is not assigned to a shop")
            if item.final_price is None:
                raise PreconditionFailedError("Item has no listing price")
            self._fire_item(uow, item, "reserve", actor)

            order = VaultOrder(
                id=uuid.uuid4(),
                item_id=item.id,
                buyer_id=actor.id,
                shop_id=item.shop_id,
                status=VAULT_ORDER_TABLE.initial,
                shipping_address=address,
                subtotal=item.final_price,
                shipping_fee=shipping_fee,
                total=item.final_price + shipping_fee,
                created_at=self._clock(),
            )
            await uow.vault_orders.add(order)
            uow.record(
                AuditAction.VAULT_ORDER_CREATED,
                actor,
                EntityType.VAULT_ORDER,
                order.id,
                after=order_snapshot(order),
                metadata={"item_id": item.id, "order_id": order.id, "total": order.total},
            )
        logger.info("vault.order_created", order_id=order.id, item_id=item.id, total=order.total)
        return order

    async def mark_order_paid(
        self, order_id: uuid.UUID, actor: Actor, payment_ref: str
    ) -> VaultOrder:
        """Payment confirmed. Replaying the same payment_ref is a no-op."""
        payment_ref = (payment_ref or "").strip()
        if not payment_ref:
            raise InvalidRequestError("payment_ref is required")
        async with self._uow() as uow:
            order = await uow.vault_orders.get_or_raise(order_id)
            if order.payment_ref == payment_ref:
                logger.info("vault.order_payment_replayed", order_id=order.id)
                return order
            existing = await uow.vault_orders.get_by_payment_ref(payment_ref)
            if existing is not None:
                raise DuplicateOperationError(f"payment_ref:{payment_ref}")
            self._fire_order(uow, order, "pay", actor, metadata={"payment_ref": payment_ref})
            order.payment_ref = payment_ref
            uow.notify(order.shop_id, "vault.order_paid", order_id=str(order.id))
        return order

    async def fulfill_order(self, order_id: uuid.UUID, actor: Actor) -> VaultOrder:
        async with self._uow() as uow:
            order = await uow.vault_orders.get_or_raise(order_id)
            authorization.can_act_on_order(actor, order).enforce()
            self._fire_order(uow, order, "fulfill", actor)
        return order

    async def ship_order(
        self, order_id: uuid.UUID, actor: Actor, tracking_number: str
    ) -> VaultOrder:
        tracking = normalize_tracking_number(tracking_number)
        async with self._uow() as uow:
            order = await uow.vault_orders.get_or_raise(order_id)
            authorization.can_act_on_order(actor, order).enforce()
            self._fire_order(uow, order, "ship", actor, metadata={"tracking_number": tracking})
            order.tracking_number = tracking
        return order

    async def mark_delivered(self, order_id: uuid.UUID, actor: Actor) -> VaultOrder:
        async with self._uow() as uow:
            order = await uow.vault_orders.get_or_raise(order_id)
            authorization.can_act_on_order(actor, order).enforce()
            if order.status != VaultOrderStatus.SHIPPED:
                raise PreconditionFailedError(
                    f"Only shipped orders can be marked delivered; order is {order.status}"
                )
            self._fire_order(uow, order, "deliver", actor)
        return order

    async def dispute_order(
        self, order_id: uuid.UUID, actor: Actor, reason: str
    ) -> VaultOrder:
        if not reason or not reason.strip():
            raise InvalidRequestError("A dispute reason is required")
        async with self._uow() as uow:
            order = await uow.vault_orders.get_or_raise(order_id)
            authorization.can_act_on_order(actor, order).enforce()
            if order.settled_at is not None:
                raise PreconditionFailedError("Settled orders can no longer be disputed")
            self._fire_order(uow, order, "dispute", actor, metadata={"reason": reason.strip()})
            uow.notify("STAFF", "vault.order_disputed", order_id=str(order.id))
        return order

    async def resolve_order_dispute(
        self, order_id: uuid.UUID, actor: Actor, refund: bool, notes: str | None = None
    ) -> VaultOrder:
        """Staff decision: refund the buyer, or let the delivery stand."""
        authorization.can_arbitrate(actor).enforce()
        async with self._uow() as uow:
            order = await uow.vault_orders.get_or_raise(order_id)
            if order.status != VaultOrderStatus.DISPUTED:
                raise PreconditionFailedError(f"Order is not disputed; order is {order.status}")
            if refund:
                await self._refund_in(uow, order, actor, notes)
            else:
                self._fire_order(uow, order, "deliver", actor, metadata={"notes": notes})
        return order

    async def cancel_order(
        self, order_id: uuid.UUID, actor: Actor, reason: str | None = None
    ) -> VaultOrder:
        async with self._uow() as uow:
            order = await uow.vault_orders.get_or_raise(order_id)
            authorization.can_act_on_order(actor, order).enforce()
            self._fire_order(uow, order, "cancel", actor, metadata={"reason": reason})
            await self._release_reserved_item(uow, order, actor)
            uow.notify(order.buyer_id, "vault.order_cancelled", order_id=str(order.id))
        return order

    async def refund_order(
        self, order_id: uuid.UUID, actor: Actor, reason: str | None = None
    ) -> VaultOrder:
        async with self._uow() as uow:
            order = await uow.vault_orders.get_or_raise(order_id)
            await self._refund_in(uow, order, actor, reason)
        return order

    async def settle_order(
        self, order_id: uuid.UUID, actor: Actor
    ) -> tuple[VaultOrder, VaultSplit]:
        """Delivered and unsettled: the item is SOLD and its split is written."""
        async with self._uow() as uow:
            order = await uow.vault_orders.get_or_raise(order_id)
            if actor.role not in (Role.ADMIN, Role.SYSTEM):
                raise PermissionDeniedError(f"Role {actor.role} may not settle vault orders")
            if order.status != VaultOrderStatus.DELIVERED:
                raise PreconditionFailedError(
                    f"Only delivered orders can be settled; order is {order.status}"
                )
            if order.settled_at is not None:
                raise PreconditionFailedError("Order is already settled")

            item = await uow.vault_items.get_or_raise(order.item_id)
            self._fire_item(uow, item, "sell", actor, as_role=Role.SYSTEM,
                            metadata={"channel": "online", "order_id": order.id})
            item.final_price = order.subtotal
            split = await self._create_split(uow, item, actor, order.subtotal, order=order)
            order.settled_at = self._clock()
            uow.notify(item.owner_id, "vault.item_sold", item_id=str(item.id),
                       price=str(order.subtotal))
        logger.info("vault.order_settled", order_id=order.id, split_id=split.id)
        return order, split

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_item(self, item_id: uuid.UUID) -> VaultItem:
        async with self._uow() as uow:
            return await uow.vault_items.get_or_raise(item_id)

    async def get_order(self, order_id: uuid.UUID) -> VaultOrder:
        async with self._uow() as uow:
            return await uow.vault_orders.get_or_raise(order_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _fire_item(
        self,
        uow: UnitOfWork,
        item: VaultItem,
        event: str,
        actor: Actor,
        *,
        as_role: Role | None = None,
        metadata: dict | None = None,
    ) -> str:
        before = item_snapshot(item)
        target = VAULT_ITEM_TABLE.require_event(item.status, event, as_role or actor.role)
        item.status = target
        uow.record(
            AuditAction.VAULT_ITEM_TRANSITIONED,
            actor,
            EntityType.VAULT_ITEM,
            item.id,
            before=before,
            after=item_snapshot(item),
            metadata={"event": event, "item_id": item.id, **(metadata or {})},
        )
        logger.info(
            "vault.item_transitioned",
            item_id=item.id,
            from_status=before["status"],
            to_status=target,
            actor_id=actor.id,
        )
        return target

    def _fire_order(
        self,
        uow: UnitOfWork,
        order: VaultOrder,
        event: str,
        actor: Actor,
        *,
        as_role: Role | None = None,
        metadata: dict | None = None,
    ) -> str:
        before = order_snapshot(order)
        target = VAULT_ORDER_TABLE.require_event(order.status, event, as_role or actor.role)
        order.status = target
        uow.record(
            AuditAction.VAULT_ORDER_TRANSITIONED,
            actor,
            EntityType.VAULT_ORDER,
            order.id,
            before=before,
            after=order_snapshot(order),
            metadata={
                "event": event,
                "order_id": order.id,
                "item_id": order.item_id,
                **(metadata or {}),
            },
        )
        uow.notify(order.buyer_id, f"vault.order_{target.lower()}", order_id=str(order.id))
        logger.info(
            "vault.order_transitioned",
            order_id=order.id,
            from_status=before["status"],
            to_status=target,
            actor_id=actor.id,
        )
        return target

    async def _refund_in(
        self, uow: UnitOfWork, order: VaultOrder, actor: Actor, reason: str | None
    ) -> None:
        if order.settled_at is not None:
            raise PreconditionFailedError("Settled orders cannot be refunded")
        self._fire_order(uow, order, "refund", actor, metadata={"reason": reason})
        await self._release_reserved_item(uow, order, actor)

    async def _release_reserved_item(
        self, uow: UnitOfWork, order: VaultOrder, actor: Actor
    ) -> None:
        item = await uow.vault_items.get_or_raise(order.item_id)
        if item.status == VaultItemStatus.RESERVED:
            self._fire_item(
                uow, item, "return_to_owner", actor, as_role=Role.SYSTEM,
                metadata={"order_id": order.id},
            )

    async def _create_split(
        self,
        uow: UnitOfWork,
        item: VaultItem,
        actor: Actor,
        gross: Decimal,
        order: VaultOrder | None,
    ) -> VaultSplit:
        shares = calculate_split(gross)
        split = VaultSplit(
            id=uuid.uuid4(),
            item_id=item.id,
            order_id=order.id if order else None,
            owner_id=item.owner_id,
            shop_id=item.shop_id,
            gross_amount=shares.gross,
            owner_amount=shares.owner,
            merchant_amount=shares.merchant,
            platform_amount=shares.platform,
            created_at=self._clock(),
        )
        await uow.splits.add(split)
        uow.record(
            AuditAction.VAULT_SPLIT_CREATED,
            actor,
            EntityType.VAULT_SPLIT,
            split.id,
            after=shares.to_dict(),
            metadata={"item_id": item.id, "order_id": order.id if order else None},
        )
        logger.info("vault.split_created", split_id=split.id, item_id=item.id, **shares.to_dict())
        return split
