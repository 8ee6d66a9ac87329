"""Transaction REST API routes.

Routes:
    POST   /api/v1/transactions                        - Open a transaction and place its hold
    GET    /api/v1/transactions?party_id=              - Transactions a user is party to
    GET    /api/v1/transactions/{id}                   - Transaction details
    GET    /api/v1/transactions/{id}/status            - Lightweight status check
    GET    /api/v1/transactions/{id}/audit             - Audit trail (staff)
    POST   /api/v1/transactions/{id}/transition        - Generic guarded transition
    POST   /api/v1/transactions/{id}/check-in          - Confirm in-store check-in
    POST   /api/v1/transactions/{id}/cancel            - Cancel and void/refund the hold
    POST   /api/v1/transactions/{id}/request-release   - Stage the seller payout
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from trade_settlement.api.deps import get_actor, get_services, idempotency_guard
from trade_settlement.domain import authorization
from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.exceptions import PermissionDeniedError
from trade_settlement.logging_config import get_logger
from trade_settlement.schemas.common import AuditEntryResponse
from trade_settlement.schemas.transactions import (
    CancelRequest,
    CreateTransactionRequest,
    ReleaseResponse,
    TransactionResponse,
    TransactionStatusResponse,
    TransitionRequest,
)
from trade_settlement.services import SettlementServices

router = APIRouter(prefix="/api/v1/transactions", tags=["Transactions"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=201,
    summary="Open a transaction for an accepted proposal",
)
async def create_transaction(
    request: CreateTransactionRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
    _idempotency_key: str | None = Depends(idempotency_guard),
) -> TransactionResponse:
    txn = await services.transactions.create_transaction(
        actor=actor,
        proposal_id=request.proposal_id,
        buyer_id=request.buyer_id,
        seller_id=request.seller_id,
        amount=request.amount,
        escrow_type=request.escrow_type,
        shop_id=request.shop_id,
        hub_id=request.hub_id,
    )
    return TransactionResponse.model_validate(txn)


@router.get(
    "",
    response_model=list[TransactionResponse],
    summary="List transactions for a party",
)
async def list_transactions(
    party_id: str = Query(..., min_length=1, max_length=64),
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> list[TransactionResponse]:
    if party_id != actor.id and not actor.is_staff:
        raise PermissionDeniedError("Only staff may list another user's transactions")
    txns = await services.transactions.list_for_party(party_id)
    return [TransactionResponse.model_validate(t) for t in txns]


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get transaction details",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.transactions.get_transaction(transaction_id)
    authorization.can_act_on_transaction(actor, txn).enforce()
    return TransactionResponse.model_validate(txn)


@router.get(
    "/{transaction_id}/status",
    response_model=TransactionStatusResponse,
    summary="Lightweight status check",
)
async def get_transaction_status(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionStatusResponse:
    status = await services.transactions.get_status(transaction_id, actor)
    return TransactionStatusResponse(**status)


@router.get(
    "/{transaction_id}/audit",
    response_model=list[AuditEntryResponse],
    summary="Get the audit trail of a transaction",
)
async def get_transaction_audit(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> list[AuditEntryResponse]:
    authorization.can_read_audit_trail(actor).enforce()
    await services.transactions.get_transaction(transaction_id)
    entries = await services.audit.get_by_transaction(str(transaction_id))
    return [AuditEntryResponse.model_validate(e) for e in entries]


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/transition",
    response_model=TransactionResponse,
    summary="Move a transaction to a new status",
)
async def transition_transaction(
    transaction_id: uuid.UUID,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.transactions.transition(
        transaction_id, request.target, actor, reason=request.reason
    )
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/check-in",
    response_model=TransactionResponse,
    summary="Confirm both parties checked in at the shop",
)
async def check_in_transaction(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.transactions.check_in(transaction_id, actor)
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/cancel",
    response_model=TransactionResponse,
    summary="Cancel a transaction and return the buyer's funds",
)
async def cancel_transaction(
    transaction_id: uuid.UUID,
    request: CancelRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> TransactionResponse:
    txn = await services.transactions.cancel(transaction_id, actor, request.reason)
    return TransactionResponse.model_validate(txn)


@router.post(
    "/{transaction_id}/request-release",
    response_model=ReleaseResponse,
    status_code=201,
    summary="Stage the seller payout for dual confirmation",
)
async def request_release(
    transaction_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> ReleaseResponse:
    release = await services.transactions.request_release(transaction_id, actor)
    return ReleaseResponse.model_validate(release)
