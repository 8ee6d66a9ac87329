"""Actor identity and per-operation capability checks.

The engine never authenticates. Callers hand in an already-authenticated
Actor (id + role) and each operation asks one capability function here,
which answers with a Decision instead of a bare boolean.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from trade_settlement.domain.decision import Decision
from trade_settlement.domain.enums import STAFF_ROLES, Role, TransactionStatus

if TYPE_CHECKING:
    from trade_settlement.infrastructure.database.orm_models import (
        Dispute,
        EscrowSession,
        Transaction,
        VaultItem,
        VaultOrder,
    )

SYSTEM_ACTOR_ID = "SYSTEM"


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role(self.role))

    @classmethod
    def system(cls) -> Actor:
        return cls(id=SYSTEM_ACTOR_ID, role=Role.SYSTEM)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_system(self) -> bool:
        return self.role == Role.SYSTEM


def _deny_role(actor: Actor, action: str) -> Decision:
    return Decision.deny(f"Role {actor.role} may not {action}")


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def is_party(actor: Actor, txn: Transaction) -> bool:
    return actor.id in (txn.buyer_id, txn.seller_id)


def can_create_transaction(actor: Actor, buyer_id: str, seller_id: str) -> Decision:
    if actor.is_staff or actor.is_system:
        return Decision.allow()
    if actor.role in (Role.BUYER, Role.SELLER) and actor.id in (buyer_id, seller_id):
        return Decision.allow()
    return Decision.deny("Only a party to the accepted proposal may open its transaction")


def can_act_on_transaction(actor: Actor, txn: Transaction) -> Decision:
    """Buyer, seller and merchant roles must be the actual party of this trade."""
    if actor.role == Role.BUYER and actor.id != txn.buyer_id:
        return Decision.deny("Only the buyer of this transaction may act as buyer")
    if actor.role == Role.SELLER and actor.id != txn.seller_id:
        return Decision.deny("Only the seller of this transaction may act as seller")
    if actor.role == Role.MERCHANT and actor.id != txn.shop_id:
        return Decision.deny("Only the merchant hosting this trade may act on it")
    return Decision.allow()


def can_cancel_transaction(actor: Actor, txn: Transaction) -> Decision:
    """Parties may withdraw before check-in; afterwards only staff/hub/system."""
    ownership = can_act_on_transaction(actor, txn)
    if not ownership:
        return ownership
    if actor.role in (Role.BUYER, Role.SELLER) and txn.status != TransactionStatus.PENDING:
        return Decision.deny("Parties may only cancel a transaction before check-in")
    if actor.role == Role.HUB_STAFF and txn.hub_id is None:
        return Decision.deny("Hub staff may only cancel hub-verified transactions")
    return Decision.allow()


def can_request_release(actor: Actor, txn: Transaction) -> Decision:
    if actor.is_system or actor.is_staff:
        return Decision.allow()
    if actor.role == Role.SELLER and actor.id == txn.seller_id:
        return Decision.allow()
    if actor.role == Role.BUYER and actor.id == txn.buyer_id:
        return Decision.allow()
    return Decision.deny("Only a party to the trade or staff may request a release")


def can_operate_hub(actor: Actor) -> Decision:
    if actor.role in (Role.HUB_STAFF, Role.ADMIN) or actor.is_system:
        return Decision.allow()
    return _deny_role(actor, "operate the verification hub")


def can_confirm_receipt(actor: Actor, txn: Transaction) -> Decision:
    if actor.role == Role.BUYER and actor.id == txn.buyer_id:
        return Decision.allow()
    return Decision.deny("Only the buyer may confirm receipt of the package")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def can_create_session(actor: Actor, txn: Transaction, merchant_id: str) -> Decision:
    if actor.role in (Role.ADMIN, Role.SYSTEM):
        return Decision.allow()
    if actor.role == Role.MERCHANT and actor.id == merchant_id:
        return Decision.allow()
    if actor.role in (Role.BUYER, Role.SELLER) and is_party(actor, txn):
        return Decision.allow()
    return Decision.deny("Only the trading parties or the hosting merchant may set up a session")


def can_manage_session(actor: Actor, session: EscrowSession) -> Decision:
    """Merchant-side session actions: only the hosting merchant, admins or system."""
    if actor.role in (Role.ADMIN, Role.SYSTEM):
        return Decision.allow()
    if actor.role == Role.MERCHANT and actor.id == session.merchant_id:
        return Decision.allow()
    if actor.role == Role.MERCHANT:
        return Decision.deny("Only the merchant hosting this session may manage it")
    return _deny_role(actor, "manage an escrow session")


def can_participate_in_session(actor: Actor, session: EscrowSession) -> Decision:
    if actor.role in (Role.ADMIN, Role.MODERATOR, Role.SYSTEM):
        return Decision.allow()
    if actor.id in (session.buyer_id, session.seller_id, session.merchant_id):
        return Decision.allow()
    return Decision.deny("Only session participants may act on this session")


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


def can_open_dispute(actor: Actor, txn: Transaction) -> Decision:
    if actor.is_staff or actor.role == Role.HUB_STAFF:
        return Decision.allow()
    if actor.role in (Role.BUYER, Role.SELLER) and is_party(actor, txn):
        return Decision.allow()
    return Decision.deny("Only a party to the trade may open a dispute")


def can_respond_to_dispute(actor: Actor, dispute: Dispute, txn: Transaction) -> Decision:
    """The counterparty of whoever opened the dispute answers it."""
    if not is_party(actor, txn):
        return Decision.deny("Only a party to the trade may respond to a dispute")
    if actor.id == dispute.opened_by_id:
        return Decision.deny("The party who opened the dispute cannot respond to it")
    return Decision.allow()


def can_escalate_dispute(actor: Actor, txn: Transaction) -> Decision:
    if actor.is_staff or actor.is_system:
        return Decision.allow()
    if is_party(actor, txn):
        return Decision.allow()
    return Decision.deny("Only a party to the trade or staff may escalate a dispute")


def can_arbitrate(actor: Actor) -> Decision:
    if actor.is_staff:
        return Decision.allow()
    return _deny_role(actor, "arbitrate disputes")


def can_post_dispute_message(actor: Actor, txn: Transaction) -> Decision:
    if actor.is_staff or actor.role == Role.HUB_STAFF or is_party(actor, txn):
        return Decision.allow()
    return Decision.deny("Only dispute participants may post messages")


# ---------------------------------------------------------------------------
# Releases / payouts
# ---------------------------------------------------------------------------


def can_approve_release(actor: Actor) -> Decision:
    if actor.is_staff:
        return Decision.allow()
    return _deny_role(actor, "approve fund releases")


def can_manage_payouts(actor: Actor) -> Decision:
    if actor.role == Role.ADMIN:
        return Decision.allow()
    return _deny_role(actor, "manage payout batches")


def can_read_audit_trail(actor: Actor) -> Decision:
    if actor.is_staff:
        return Decision.allow()
    return _deny_role(actor, "read the audit trail")


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


def can_handle_vault_item(actor: Actor, item: VaultItem) -> Decision:
    """Shop-side custody steps: admins, system, or the merchant of the item's shop."""
    if actor.role in (Role.ADMIN, Role.SYSTEM):
        return Decision.allow()
    if actor.role == Role.MERCHANT and item.shop_id is not None and actor.id == item.shop_id:
        return Decision.allow()
    if actor.role == Role.MERCHANT:
        return Decision.deny("Item is not held by this merchant's shop")
    return _deny_role(actor, "handle vault items")


def can_act_on_order(actor: Actor, order: VaultOrder) -> Decision:
    """Buyers act on their own orders; merchants on orders for their shop."""
    if actor.is_staff or actor.is_system:
        return Decision.allow()
    if actor.role == Role.BUYER and actor.id == order.buyer_id:
        return Decision.allow()
    if actor.role == Role.MERCHANT and order.shop_id is not None and actor.id == order.shop_id:
        return Decision.allow()
    return Decision.deny("Only the order's buyer, its shop or staff may act on this order")
