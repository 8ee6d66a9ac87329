"""Shared test fixtures for the Trade Settlement test suite.

Provides:
    - A file-backed SQLite database per test (aiosqlite)
    - The full service container wired to a simulated payment provider
    - A recording notifier and a clock tests can move forward
    - Actors for every role, plus helpers that drive a trade to a given state
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from trade_settlement.config import Settings
from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.collaborators import NotificationRequest
from trade_settlement.domain.enums import EscrowType, Role
from trade_settlement.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    create_tables,
)
from trade_settlement.infrastructure.payments.simulated import SimulatedHoldProvider
from trade_settlement.services import build_services

BUYER_ID = "user-buyer-1"
SELLER_ID = "user-seller-1"
MERCHANT_ID = "shop-merchant-1"
HUB_STAFF_ID = "hub-staff-1"
ADMIN_ID = "admin-1"
MODERATOR_ID = "moderator-1"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class MutableClock:
    """Callable clock; tests advance it instead of sleeping."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class RecordingNotifier:
    sent: list[NotificationRequest] = field(default_factory=list)

    async def dispatch(self, request: NotificationRequest) -> None:
        self.sent.append(request)

    def templates_for(self, recipient_id: str) -> list[str]:
        return [r.template for r in self.sent if r.recipient_id == recipient_id]


# ---------------------------------------------------------------------------
# Infrastructure Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:  # noqa: ANN001
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        payment_provider="simulated",
        payment_timeout_seconds=0.5,
        notification_backend="log",
    )


@pytest_asyncio.fixture
async def engine(settings: Settings):  # noqa: ANN201
    engine = build_engine(settings.database_url)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):  # noqa: ANN001, ANN201
    return build_session_factory(engine)


@pytest.fixture
def provider() -> SimulatedHoldProvider:
    return SimulatedHoldProvider()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def services(session_factory, settings, provider, notifier, clock):  # noqa: ANN001, ANN201
    return build_services(session_factory, settings, provider, notifier, clock)


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@pytest.fixture
def buyer() -> Actor:
    return Actor(BUYER_ID, Role.BUYER)


@pytest.fixture
def seller() -> Actor:
    return Actor(SELLER_ID, Role.SELLER)


@pytest.fixture
def merchant() -> Actor:
    return Actor(MERCHANT_ID, Role.MERCHANT)


@pytest.fixture
def hub_staff() -> Actor:
    return Actor(HUB_STAFF_ID, Role.HUB_STAFF)


@pytest.fixture
def admin() -> Actor:
    return Actor(ADMIN_ID, Role.ADMIN)


@pytest.fixture
def moderator() -> Actor:
    return Actor(MODERATOR_ID, Role.MODERATOR)


# ---------------------------------------------------------------------------
# Scenario helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_transaction(services, buyer):  # noqa: ANN001, ANN201
    """Factory: open a PENDING transaction for a fresh proposal."""
    counter = {"n": 0}

    async def _make(
        escrow_type: EscrowType = EscrowType.LOCAL,
        amount: Decimal | str = "100.00",
        **kwargs: object,
    ):  # noqa: ANN202
        counter["n"] += 1
        return await services.transactions.create_transaction(
            buyer,
            proposal_id=f"proposal-{counter['n']}",
            buyer_id=BUYER_ID,
            seller_id=SELLER_ID,
            amount=Decimal(amount),
            escrow_type=escrow_type,
            **kwargs,
        )

    return _make


@pytest.fixture
def confirmed_local(services, make_transaction, buyer):  # noqa: ANN001, ANN201
    """Factory: a LOCAL transaction checked in (CONFIRMED, hold HELD)."""

    async def _make(amount: str = "100.00"):  # noqa: ANN202
        txn = await make_transaction(EscrowType.LOCAL, amount)
        return await services.transactions.check_in(txn.id, buyer)

    return _make


@pytest.fixture
def delivered_verified(services, make_transaction, buyer, seller, hub_staff):  # noqa: ANN001, ANN201
    """Factory: a VERIFIED trade driven through the hub up to delivery, unconfirmed."""

    async def _make(amount: str = "250.00"):  # noqa: ANN202
        txn = await make_transaction(EscrowType.VERIFIED, amount, hub_id="hub-milan")
        await services.transactions.check_in(txn.id, buyer)
        await services.hub.mark_awaiting_hub_receipt(txn.id, seller)
        await services.hub.dispatch_to_hub(txn.id, hub_staff, "IN12345678")
        await services.hub.receive(txn.id, hub_staff)
        await services.hub.start_verification(txn.id, hub_staff)
        await services.hub.verify(txn.id, hub_staff, "Matches listing", photo_count=4)
        await services.hub.ship(txn.id, hub_staff, "OUT87654321")
        return await services.hub.deliver(txn.id, hub_staff)

    return _make
