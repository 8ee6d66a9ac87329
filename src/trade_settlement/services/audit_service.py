"""Audit Log Writer.

Entries are queued on the unit of work while an operation runs and written
here only after the primary commit, in a session of their own. A failed
audit write is logged and dropped; it never undoes the transition it
describes.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from trade_settlement.infrastructure.database.orm_models import AuditLogEntry, utcnow
from trade_settlement.infrastructure.database.repositories import AuditRepository
from trade_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from trade_settlement.domain.authorization import Actor
    from trade_settlement.domain.enums import AuditAction, EntityType

logger = get_logger(__name__)


def to_jsonable(value):  # noqa: ANN001, ANN201
    """Convert money, ids, enums and datetimes into JSON-safe values."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class AuditRecord:
    """One queued audit entry, captured at the moment of the transition."""

    action: AuditAction
    actor: Actor
    entity_type: EntityType
    entity_id: str
    transaction_id: str | None = None
    before: dict | None = None
    after: dict | None = None
    metadata: dict | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_entry(self) -> AuditLogEntry:
        return AuditLogEntry(
            action_type=self.action.value,
            actor_id=self.actor.id,
            actor_role=self.actor.role.value,
            entity_type=self.entity_type.value,
            entity_id=str(self.entity_id),
            transaction_id=str(self.transaction_id) if self.transaction_id else None,
            before=to_jsonable(self.before),
            after=to_jsonable(self.after),
            metadata_json=to_jsonable(self.metadata),
            created_at=self.created_at,
        )


class AuditWriter:
    """Best-effort, append-only writer plus read helpers for the audit log."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write(self, records: list[AuditRecord]) -> bool:
        """Persist queued records. Returns False (after logging) on failure."""
        if not records:
            return True
        try:
            async with self._session_factory() as session, session.begin():
                await AuditRepository(session).append([r.to_entry() for r in records])
        except Exception as exc:
            logger.error(
                "audit.write_failed",
                error=str(exc),
                count=len(records),
                actions=[r.action.value for r in records],
                entity_ids=[str(r.entity_id) for r in records],
            )
            return False
        logger.debug("audit.written", count=len(records))
        return True

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_by_entity(self, entity_type: EntityType, entity_id: str) -> list[AuditLogEntry]:
        async with self._session_factory() as session:
            return await AuditRepository(session).get_by_entity(
                entity_type.value, str(entity_id)
            )

    async def get_by_transaction(self, transaction_id: str) -> list[AuditLogEntry]:
        async with self._session_factory() as session:
            return await AuditRepository(session).get_by_transaction(str(transaction_id))
