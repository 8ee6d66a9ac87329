"""Tests for the scheduled sweep pass."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from trade_settlement.domain.enums import (
    DisputeStatus,
    DisputeType,
    EscrowType,
    ReleaseStatus,
    ReleaseType,
)
from trade_settlement.orchestration import sweeps
from trade_settlement.orchestration.sweeps import run_sweeps


class TestRunSweeps:
    @pytest.mark.asyncio
    async def test_quiet_pass(self, services, clock) -> None:
        report = await run_sweeps(services, clock.now)

        assert report["sessions_expired"] == 0
        assert report["disputes_escalated"] == 0
        assert report["releases_expired"] == 0
        assert report["deliveries_auto_released"] == 0
        assert report["skipped"] is False
        assert report["ran_at"] == clock.now.isoformat()

    @pytest.mark.asyncio
    async def test_pass_handles_every_overdue_kind(
        self,
        services,
        make_transaction,
        confirmed_local,
        buyer,
        seller,
        merchant,
        clock,
        settings,
    ) -> None:
        txn = await make_transaction(EscrowType.LOCAL)
        session = await services.sessions.create_session(buyer, txn.id, merchant.id)
        await services.sessions.book(session.id, buyer)
        await services.sessions.open_checkin(session.id, merchant)

        disputed = await confirmed_local()
        dispute = await services.disputes.open_dispute(
            disputed.id, buyer, DisputeType.OTHER, "No reply", "Seller went quiet on us"
        )

        released = await confirmed_local()
        await services.transactions.request_release(released.id, seller)

        hours = max(settings.pending_release_ttl_hours, settings.dispute_response_hours) + 1
        now = clock.advance(hours=hours)
        report = await run_sweeps(services, now)

        assert report["sessions_expired"] == 1
        assert report["disputes_escalated"] == 1
        assert report["releases_expired"] == 1
        dispute = await services.disputes.get_dispute(dispute.id)
        assert dispute.status == DisputeStatus.ESCALATED

        again = await run_sweeps(services, now)
        assert (again["sessions_expired"], again["disputes_escalated"], again["releases_expired"]) == (
            0,
            0,
            0,
        )

    @pytest.mark.asyncio
    async def test_unconfirmed_delivery_is_auto_released(
        self, services, delivered_verified, clock, settings, notifier, seller
    ) -> None:
        txn = await delivered_verified()

        early = await run_sweeps(services, clock.advance(hours=settings.auto_release_hours - 1))
        assert early["deliveries_auto_released"] == 0

        now = clock.advance(hours=2)
        report = await run_sweeps(services, now)

        assert report["deliveries_auto_released"] == 1
        releases = [
            r for r in await services.releases.list_pending() if r.transaction_id == txn.id
        ]
        assert [(r.release_type, r.status) for r in releases] == [
            (ReleaseType.RELEASE_TO_SELLER, ReleaseStatus.PENDING)
        ]
        assert "package.auto_released" in notifier.templates_for(seller.id)

        again = await run_sweeps(services, now)
        assert again["deliveries_auto_released"] == 0


class TestTickClaim:
    @pytest.mark.asyncio
    async def test_without_redis_every_tick_runs(self, clock) -> None:
        with patch.object(sweeps, "redis_available", return_value=False):
            assert await sweeps._claim_tick(clock.now, 60) is True

    @pytest.mark.asyncio
    async def test_with_redis_tick_claimed_once(self, clock) -> None:
        claim = AsyncMock(side_effect=[True, False])
        with (
            patch.object(sweeps, "redis_available", return_value=True),
            patch.object(sweeps, "claim_idempotency_key", claim),
        ):
            assert await sweeps._claim_tick(clock.now, 60) is True
            assert await sweeps._claim_tick(clock.now, 60) is False

        tick = int(clock.now.timestamp()) // 60
        claim.assert_awaited_with(f"sweep:{tick}")
