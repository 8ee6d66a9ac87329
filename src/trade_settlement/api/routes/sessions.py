"""In-store escrow session routes.

A session is the merchant-hosted handoff of a LOCAL trade. Reads apply
lazy expiry, so a session whose window has passed comes back EXPIRED.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from trade_settlement.api.deps import get_actor, get_services, idempotency_guard
from trade_settlement.domain import authorization
from trade_settlement.domain.authorization import Actor
from trade_settlement.schemas.sessions import (
    CheckInRequest,
    CloseSessionRequest,
    CompleteVerificationRequest,
    CreateSessionRequest,
    SessionMessageRequest,
    SessionMessageResponse,
    SessionReleaseResponse,
    SessionResponse,
)
from trade_settlement.schemas.transactions import ReleaseResponse
from trade_settlement.services import SettlementServices

router = APIRouter(prefix="/api/v1/sessions", tags=["Sessions"])


@router.post(
    "",
    response_model=SessionResponse,
    status_code=201,
    summary="Create an escrow session for a LOCAL transaction",
)
async def create_session(
    request: CreateSessionRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
    _idempotency_key: str | None = Depends(idempotency_guard),
) -> SessionResponse:
    session = await services.sessions.create_session(
        actor,
        transaction_id=request.transaction_id,
        merchant_id=request.merchant_id,
        shop_id=request.shop_id,
    )
    return SessionResponse.model_validate(session)


@router.get("/{session_id}", response_model=SessionResponse, summary="Get session details")
async def get_session(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionResponse:
    session = await services.sessions.get_session(session_id)
    authorization.can_participate_in_session(actor, session).enforce()
    return SessionResponse.model_validate(session)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("/{session_id}/book", response_model=SessionResponse, summary="Book a time slot")
async def book_session(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionResponse:
    return SessionResponse.model_validate(await services.sessions.book(session_id, actor))


@router.post(
    "/{session_id}/open-checkin",
    response_model=SessionResponse,
    summary="Open the check-in window",
)
async def open_checkin(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionResponse:
    return SessionResponse.model_validate(await services.sessions.open_checkin(session_id, actor))


@router.post(
    "/{session_id}/check-in",
    response_model=SessionResponse,
    summary="Record which parties are present",
)
async def check_in(
    session_id: uuid.UUID,
    request: CheckInRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionResponse:
    session = await services.sessions.check_in(
        session_id,
        actor,
        buyer_present=request.buyer_present,
        seller_present=request.seller_present,
    )
    return SessionResponse.model_validate(session)


@router.post(
    "/{session_id}/start-verification",
    response_model=SessionResponse,
    summary="Merchant starts inspecting the item",
)
async def start_verification(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionResponse:
    session = await services.sessions.start_verification(session_id, actor)
    return SessionResponse.model_validate(session)


@router.post(
    "/{session_id}/complete-verification",
    response_model=SessionResponse,
    summary="Record the inspection outcome",
)
async def complete_verification(
    session_id: uuid.UUID,
    request: CompleteVerificationRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionResponse:
    session = await services.sessions.complete_verification(
        session_id,
        actor,
        passed=request.passed,
        photo_count=request.photo_count,
        notes=request.notes,
    )
    return SessionResponse.model_validate(session)


@router.post(
    "/{session_id}/request-release",
    response_model=SessionReleaseResponse,
    status_code=201,
    summary="Stage the seller payout after a passed verification",
)
async def request_release(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionReleaseResponse:
    session, release = await services.sessions.request_release(session_id, actor)
    return SessionReleaseResponse(
        session=SessionResponse.model_validate(session),
        release=ReleaseResponse.model_validate(release),
    )


@router.post("/{session_id}/extend", response_model=SessionResponse, summary="Extend the window")
async def extend_session(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionResponse:
    session = await services.sessions.extend_session(session_id, actor)
    return SessionResponse.model_validate(session)


@router.post("/{session_id}/cancel", response_model=SessionResponse, summary="Cancel a session")
async def cancel_session(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionResponse:
    return SessionResponse.model_validate(await services.sessions.cancel(session_id, actor))


@router.post(
    "/{session_id}/close",
    response_model=SessionResponse,
    summary="Force-close a session (requires confirm=true)",
)
async def close_session(
    session_id: uuid.UUID,
    request: CloseSessionRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionResponse:
    session = await services.sessions.close_session(
        session_id, actor, confirm=request.confirm, reason=request.reason
    )
    return SessionResponse.model_validate(session)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


@router.post(
    "/{session_id}/messages",
    response_model=SessionMessageResponse,
    status_code=201,
    summary="Post a chat message",
)
async def post_message(
    session_id: uuid.UUID,
    request: SessionMessageRequest,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> SessionMessageResponse:
    message = await services.sessions.post_message(session_id, actor, request.body)
    return SessionMessageResponse.model_validate(message)


@router.get(
    "/{session_id}/messages",
    response_model=list[SessionMessageResponse],
    summary="List chat messages, oldest first",
)
async def list_messages(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    services: SettlementServices = Depends(get_services),
) -> list[SessionMessageResponse]:
    messages = await services.sessions.list_messages(session_id, actor)
    return [SessionMessageResponse.model_validate(m) for m in messages]
