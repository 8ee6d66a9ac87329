"""HTTP tests for session reads and chat."""

from __future__ import annotations

import pytest

from trade_settlement.domain.authorization import Actor
from trade_settlement.domain.enums import Role


@pytest.fixture
def open_session(services, make_transaction, buyer, merchant):  # noqa: ANN001, ANN201
    async def _make():  # noqa: ANN202
        txn = await make_transaction()
        session = await services.sessions.create_session(buyer, txn.id, merchant.id)
        await services.sessions.post_message(session.id, buyer, "on my way")
        return session

    return _make


class TestSessionReads:
    @pytest.mark.asyncio
    async def test_participant_reads_session(
        self, client, as_actor, open_session, seller
    ) -> None:
        session = await open_session()

        response = await client.get(f"/api/v1/sessions/{session.id}", headers=as_actor(seller))

        assert response.status_code == 200
        assert response.json()["id"] == str(session.id)

    @pytest.mark.asyncio
    async def test_outsider_cannot_read_session(self, client, as_actor, open_session) -> None:
        session = await open_session()
        outsider = Actor("user-outsider", Role.BUYER)

        response = await client.get(
            f"/api/v1/sessions/{session.id}", headers=as_actor(outsider)
        )

        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_read_requires_actor_headers(self, client, open_session) -> None:
        session = await open_session()

        response = await client.get(f"/api/v1/sessions/{session.id}")

        assert response.status_code == 403


class TestSessionMessages:
    @pytest.mark.asyncio
    async def test_merchant_lists_messages(
        self, client, as_actor, open_session, merchant
    ) -> None:
        session = await open_session()

        response = await client.get(
            f"/api/v1/sessions/{session.id}/messages", headers=as_actor(merchant)
        )

        assert response.status_code == 200
        assert [m["body"] for m in response.json()] == ["on my way"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_list_messages(self, client, as_actor, open_session) -> None:
        session = await open_session()
        outsider = Actor("user-outsider", Role.MERCHANT)

        response = await client.get(
            f"/api/v1/sessions/{session.id}/messages", headers=as_actor(outsider)
        )

        assert response.status_code == 403
