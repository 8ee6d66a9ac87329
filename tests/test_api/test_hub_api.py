"""HTTP tests for hub delivery and buyer receipt."""

from __future__ import annotations

import pytest


class TestConfirmReceived:
    @pytest.mark.asyncio
    async def test_buyer_confirms_and_release_is_staged(
        self, client, as_actor, delivered_verified, buyer, seller
    ) -> None:
        txn = await delivered_verified("250.00")

        response = await client.post(
            f"/api/v1/hub/transactions/{txn.id}/confirm-received", headers=as_actor(buyer)
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["transaction"]["received_confirmed_at"] is not None
        assert body["release"]["release_type"] == "RELEASE_TO_SELLER"
        assert body["release"]["recipient_id"] == seller.id

    @pytest.mark.asyncio
    async def test_hub_staff_cannot_confirm_for_the_buyer(
        self, client, as_actor, delivered_verified, hub_staff
    ) -> None:
        txn = await delivered_verified()

        response = await client.post(
            f"/api/v1/hub/transactions/{txn.id}/confirm-received", headers=as_actor(hub_staff)
        )

        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_seller_release_request_needs_receipt(
        self, client, as_actor, delivered_verified, seller
    ) -> None:
        txn = await delivered_verified()

        response = await client.post(
            f"/api/v1/transactions/{txn.id}/request-release", headers=as_actor(seller)
        )

        assert response.status_code == 409
        assert response.json()["error"] == "PRECONDITION_FAILED"
        assert "not confirmed receipt" in response.json()["message"]
