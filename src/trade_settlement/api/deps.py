"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the wired
services, the calling actor, and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Header, Request

from trade_settlement.config import Settings, get_settings
from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.enums import Role
from trade_settlement.domain.exceptions import DuplicateOperationError, PermissionDeniedError
from trade_settlement.infrastructure.redis_client import (
    claim_idempotency_key,
    redis_available,
    release_idempotency_key,
)
from trade_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from trade_settlement.services import SettlementServices

logger = get_logger(__name__)


def get_services(request: Request) -> SettlementServices:
    """Provide the services container built during startup."""
    return request.app.state.services


def get_actor(
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    x_actor_role: str | None = Header(default=None, alias="X-Actor-Role"),
) -> Actor:
    """Build the calling Actor from the headers set by the upstream gateway.

    SYSTEM is reserved for in-process work (sweeps, side-channel transitions)
    and is never accepted from the outside.
    """
    if not x_actor_id or not x_actor_role:
        raise PermissionDeniedError("X-Actor-Id and X-Actor-Role headers are required")
    try:
        role = Role(x_actor_role.upper())
    except ValueError:
        raise PermissionDeniedError(f"Unknown role: {x_actor_role}") from None
    if role == Role.SYSTEM:
        raise PermissionDeniedError("The SYSTEM role cannot be used over HTTP")
    return Actor(id=x_actor_id, role=role)


async def idempotency_guard(
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> AsyncGenerator[str | None, None]:
    """Reject a replayed Idempotency-Key while Redis is connected.

    The key is released again if the request fails, so the client can retry.
    Without Redis the header is accepted but not enforced; uniqueness
    constraints in the database still catch duplicate creations.
    """
    if idempotency_key is None or not redis_available():
        yield idempotency_key
        return

    if not await claim_idempotency_key(idempotency_key):
        logger.warning("idempotency.duplicate", key=idempotency_key)
        raise DuplicateOperationError(idempotency_key)
    try:
        yield idempotency_key
    except Exception:
        await release_idempotency_key(idempotency_key)
        raise


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
