"""HTTP client fixtures: the real app wired to the per-test service container."""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from trade_settlement.main import create_app


def headers_for(actor) -> dict[str, str]:  # noqa: ANN001
    return {"X-Actor-Id": actor.id, "X-Actor-Role": actor.role.value}


@pytest_asyncio.fixture
async def client(services, session_factory):  # noqa: ANN001, ANN201
    app = create_app()
    app.state.services = services
    app.state.session_factory = session_factory
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def as_actor():  # noqa: ANN201
    return headers_for
