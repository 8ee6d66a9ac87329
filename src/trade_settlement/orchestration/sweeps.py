"""Scheduled sweeps: time-driven transitions nobody asks for explicitly.

Each pass runs, in order:

    expire_stale_sessions -> escalate_overdue disputes -> expire_stale_releases
        -> auto_release_delivered hub packages

Every sweep re-checks its condition per row inside its own unit of work and
treats a lost optimistic-concurrency race as "someone else already did it",
so overlapping passes (two replicas, a lazy expiry racing the sweep) are
harmless. With Redis connected, each tick is additionally claimed once so
replicas don't all do the same work.

Usage:
    from trade_settlement.orchestration.sweeps import run_sweeps

    report = await run_sweeps(services)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypedDict

from trade_settlement.infrastructure.database.orm_models import utcnow
from trade_settlement.infrastructure.redis_client import claim_idempotency_key, redis_available
from trade_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from datetime import datetime

    from trade_settlement.services import SettlementServices

logger = get_logger(__name__)


class SweepReport(TypedDict, total=False):
    """Outcome of one sweep pass."""

    ran_at: str
    sessions_expired: int
    disputes_escalated: int
    releases_expired: int
    deliveries_auto_released: int
    skipped: bool


async def run_sweeps(
    services: SettlementServices, now: datetime | None = None
) -> SweepReport:
    now = now or utcnow()
    report: SweepReport = {
        "ran_at": now.isoformat(),
        "sessions_expired": await services.sessions.expire_stale_sessions(now),
        "disputes_escalated": await services.disputes.escalate_overdue(now),
        "releases_expired": await services.releases.expire_stale_releases(now),
        "deliveries_auto_released": await services.hub.auto_release_delivered(now),
        "skipped": False,
    }
    logger.info("sweep.completed", **report)
    return report


async def _claim_tick(now: datetime, interval_seconds: int) -> bool:
    if not redis_available():
        return True
    tick = int(now.timestamp()) // interval_seconds
    return await claim_idempotency_key(f"sweep:{tick}")


async def sweep_forever(services: SettlementServices, interval_seconds: int) -> None:
    """Run a pass every `interval_seconds` until cancelled."""
    logger.info("sweep.loop_started", interval_seconds=interval_seconds)
    while True:
        now = utcnow()
        try:
            if await _claim_tick(now, interval_seconds):
                await run_sweeps(services, now)
            else:
                logger.debug("sweep.tick_claimed_elsewhere")
        except Exception as exc:
            # one bad pass must not stop the schedule
            logger.error("sweep.failed", error=str(exc), exc_info=True)
        await asyncio.sleep(interval_seconds)
