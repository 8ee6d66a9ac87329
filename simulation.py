#!/usr/bin/env python3
"""Trade Settlement: End-to-End Simulation.

Drives the service container directly (no HTTP) against a throwaway SQLite
database and the in-memory payment provider:

    Scenario 1: In-store handoff
        - Buyer opens a LOCAL trade, the hold is placed
        - Merchant runs the session: check-in, verification, release request
        - Admin initiates and confirms the release -> COMPLETED, hold captured

    Scenario 2: Hub verification and a partial refund
        - VERIFIED trade travels through the hub, the buyer confirms receipt, seller is paid
        - Buyer disputes the condition, the moderator awards a partial refund
        - Admin confirms the refund -> COMPLETED, hold PARTIALLY_REFUNDED

    Scenario 3: Consignment sale and payouts
        - Seller deposits a card, staff accept it and shelve it at a shop
        - The shop sells it at the counter -> revenue split
        - Admin batches and pays every payee type -> split PAID

Usage:
    uv run python simulation.py
    uv run python simulation.py --scenario 2
    uv run python simulation.py --database-url sqlite+aiosqlite:///./sim.db
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from trade_settlement.logging_config import setup_logging

setup_logging(log_level="WARNING", json_logs=False)

from trade_settlement.config import Settings  # noqa: E402
from trade_settlement.domain.authorization import Actor  # noqa: E402
from trade_settlement.domain.enums import (  # noqa: E402
    DisputeResolution,
    DisputeType,
    EscrowType,
    PayeeType,
    Role,
)
from trade_settlement.infrastructure.database.engine import (  # noqa: E402
    build_engine,
    build_session_factory,
    create_tables,
)
from trade_settlement.infrastructure.notifications import (  # noqa: E402
    LoggingNotificationDispatcher,
)
from trade_settlement.infrastructure.payments import SimulatedHoldProvider  # noqa: E402
from trade_settlement.services import build_services  # noqa: E402

if TYPE_CHECKING:
    import uuid

    from trade_settlement.services import SettlementServices

BUYER = Actor("sim-buyer", Role.BUYER)
SELLER = Actor("sim-seller", Role.SELLER)
MERCHANT = Actor("sim-shop", Role.MERCHANT)
HUB = Actor("sim-hub-staff", Role.HUB_STAFF)
ADMIN = Actor("sim-admin", Role.ADMIN)
MODERATOR = Actor("sim-moderator", Role.MODERATOR)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    print(f"\n--- {text} ---\n")


async def print_audit_trail(services: SettlementServices, transaction_id: uuid.UUID) -> None:
    entries = await services.audit.get_by_transaction(str(transaction_id))
    print("\n  Audit trail:")
    for i, entry in enumerate(entries, 1):
        before = (entry.before or {}).get("status", "-")
        after = (entry.after or {}).get("status", "-")
        print(f"    {i:2}. [{entry.action_type}] {before} -> {after} (by {entry.actor_id})")
    print()


async def approve(services: SettlementServices, release_id: uuid.UUID) -> None:
    summary = await services.releases.initiate_approval(release_id, ADMIN)
    print(f"  {summary.label}: {summary.amount} to {summary.recipient_id}")
    print(f"  Token expires in {summary.expires_in_seconds}s")
    release = await services.releases.confirm_approval(release_id, ADMIN, summary.token)
    print(f"  Release {release.status} (ref {release.payment_reference})")


# ===========================================================================
# Scenario 1: In-store handoff
# ===========================================================================
async def scenario_1_local_handoff(services: SettlementServices) -> None:
    banner("SCENARIO 1: In-store handoff at a merchant's shop")

    section("Step 1: Buyer opens the trade")
    txn = await services.transactions.create_transaction(
        BUYER, "sim-proposal-1", BUYER.id, SELLER.id, Decimal("120.00"), EscrowType.LOCAL
    )
    print(f"  Transaction {txn.id} {txn.status}, hold {txn.payment.hold_id}")

    section("Step 2: Merchant runs the session")
    session = await services.sessions.create_session(BUYER, txn.id, MERCHANT.id)
    await services.sessions.book(session.id, BUYER)
    await services.sessions.open_checkin(session.id, MERCHANT)
    await services.sessions.check_in(session.id, MERCHANT, buyer_present=True, seller_present=True)
    await services.sessions.start_verification(session.id, MERCHANT)
    await services.sessions.complete_verification(session.id, MERCHANT, passed=True, photo_count=3)
    session, release = await services.sessions.request_release(session.id, SELLER)
    print(f"  Session {session.status}, release {release.id} staged")

    section("Step 3: Dual-confirmation release")
    await approve(services, release.id)

    txn = await services.transactions.get_transaction(txn.id)
    print(f"  Final status: {txn.status}, hold {txn.payment.status}")
    await print_audit_trail(services, txn.id)


# ===========================================================================
# Scenario 2: Hub verification and a partial refund
# ===========================================================================
async def scenario_2_hub_dispute(services: SettlementServices) -> None:
    banner("SCENARIO 2: Hub verification, dispute and partial refund")

    section("Step 1: Trade travels through the hub and settles")
    txn = await services.transactions.create_transaction(
        BUYER, "sim-proposal-2", BUYER.id, SELLER.id, Decimal("300.00"),
        EscrowType.VERIFIED, hub_id="hub-sim",
    )
    await services.transactions.check_in(txn.id, BUYER)
    await services.hub.mark_awaiting_hub_receipt(txn.id, SELLER)
    await services.hub.dispatch_to_hub(txn.id, HUB, "SIMIN0001")
    await services.hub.receive(txn.id, HUB)
    await services.hub.start_verification(txn.id, HUB)
    await services.hub.verify(txn.id, HUB, "Authentic, light whitening", photo_count=5)
    await services.hub.ship(txn.id, HUB, "SIMOUT0001")
    await services.hub.deliver(txn.id, HUB)
    txn, release = await services.hub.confirm_received(txn.id, BUYER)
    print(f"  {txn.status} / package {txn.package_status}")
    await approve(services, release.id)

    section("Step 2: Buyer disputes the condition")
    dispute = await services.disputes.open_dispute(
        txn.id, BUYER, DisputeType.CONDITION_MISMATCH,
        "Edge wear", "Edges are more worn than the hub notes suggest.",
    )
    await services.disputes.respond(dispute.id, SELLER, "The hub photos show the same edges.")
    await services.disputes.mediate(dispute.id, MODERATOR)
    dispute, refund = await services.disputes.resolve(
        dispute.id, MODERATOR, DisputeResolution.REFUND_PARTIAL,
        amount=Decimal("45.00"), notes="Minor mismatch",
    )
    print(f"  Dispute {dispute.status}: {dispute.resolution}")

    section("Step 3: Refund approval")
    await approve(services, refund.id)

    txn = await services.transactions.get_transaction(txn.id)
    print(f"  Final status: {txn.status}, hold {txn.payment.status}")
    print(f"  Refunded: {txn.payment.refunded_amount}")
    await print_audit_trail(services, txn.id)


# ===========================================================================
# Scenario 3: Consignment sale and payouts
# ===========================================================================
async def scenario_3_vault_sale(services: SettlementServices) -> None:
    banner("SCENARIO 3: Consignment sale and payouts")

    section("Step 1: Item goes into a display case")
    item = await services.vault.deposit_item(
        SELLER, "Base Set Charizard", declared_condition="EX", estimated_value=Decimal("400")
    )
    await services.vault.review_item(item.id, ADMIN, accept=True, verified_condition="EX")
    await services.vault.assign_to_shop(item.id, ADMIN, MERCHANT.id)
    item = await services.vault.place_in_case(item.id, MERCHANT, "CASE-1", "A1")
    print(f"  Item {item.id} {item.status} at {item.case_id}/{item.slot_code}")

    section("Step 2: Counter sale")
    item, split = await services.vault.record_physical_sale(item.id, MERCHANT, Decimal("450.00"))
    print(f"  Sold for {split.gross_amount}: owner {split.owner_amount}, "
          f"shop {split.merchant_amount}, platform {split.platform_amount}")

    section("Step 3: Payout batches")
    for payee_type in PayeeType:
        batch = await services.payouts.create_payout_batch(ADMIN, payee_type)
        batch = await services.payouts.pay_batch(batch.id, ADMIN)
        print(f"  {payee_type}: {batch.total_amount} in {len(batch.lines)} line(s), {batch.status}")


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_local_handoff,
    2: scenario_2_hub_dispute,
    3: scenario_3_vault_sale,
}


async def run(scenario: int, database_url: str | None) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        url = database_url or f"sqlite+aiosqlite:///{Path(tmp) / 'simulation.db'}"
        settings = Settings(_env_file=None, database_url=url)
        engine = build_engine(url)
        await create_tables(engine)
        services = build_services(
            build_session_factory(engine),
            settings,
            SimulatedHoldProvider(),
            LoggingNotificationDispatcher(),
        )

        try:
            print("\n  TRADE SETTLEMENT ENGINE: SIMULATION")
            print(f"  Database: {url}\n")
            selected = [scenario] if scenario else sorted(SCENARIOS)
            for num in selected:
                if num not in SCENARIOS:
                    print(f"Unknown scenario {num}. Available: 1, 2, 3")
                    return
                await SCENARIOS[num](services)
            print("\n  ALL SCENARIOS COMPLETED\n")
        finally:
            await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Trade Settlement Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database to use instead of a temporary SQLite file.",
    )
    args = parser.parse_args()
    asyncio.run(run(args.scenario, args.database_url))
