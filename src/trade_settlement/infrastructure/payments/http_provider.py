"""REST adapter for the external payment processor's hold API.

Endpoints consumed:
    POST /v1/holds                          -> {"id": ...}
    POST /v1/holds/{id}/capture             -> {"amount": ..., "reference": ...}
    POST /v1/holds/{id}/cancel-or-refund    -> {"action": ..., "amount": ..., "reference": ...}

Every call carries an Idempotency-Key so transport-level retries (tenacity)
cannot double-charge. The overall per-operation deadline is enforced one
level up by PaymentService.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from trade_settlement.domain.collaborators import PaymentResult
from trade_settlement.logging_config import get_logger

logger = get_logger(__name__)


class HttpHoldProvider:
    """Payment hold provider backed by the processor's REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._timeout = timeout_seconds
        self._transport = transport

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    async def _post(self, path: str, body: dict, idempotency_key: str) -> dict:
        headers = {**self._headers, "Idempotency-Key": idempotency_key}
        async with httpx.AsyncClient(
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(f"{self._base_url}{path}", json=body)
            response.raise_for_status()
            return response.json()

    async def create_hold(self, amount: Decimal, metadata: dict) -> str:
        key = metadata.get("idempotency_key") or str(uuid.uuid4())
        data = await self._post(
            "/v1/holds",
            {"amount": str(amount), "metadata": metadata},
            idempotency_key=key,
        )
        logger.info("payment.hold_created", hold_id=data["id"], amount=amount)
        return data["id"]

    async def capture(self, hold_id: str) -> PaymentResult:
        data = await self._post(
            f"/v1/holds/{hold_id}/capture", {}, idempotency_key=f"capture:{hold_id}"
        )
        logger.info("payment.hold_captured", hold_id=hold_id)
        return PaymentResult(
            hold_id=hold_id,
            action="capture",
            amount=Decimal(str(data["amount"])),
            reference=data.get("reference", ""),
        )

    async def cancel_or_refund(
        self,
        hold_id: str,
        amount: Decimal | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentResult:
        """Void an uncaptured hold or refund a captured one.

        `idempotency_key` names the business operation (one per release), so
        two refunds of the same amount on one hold are never collapsed.
        """
        body = {} if amount is None else {"amount": str(amount)}
        if idempotency_key is None:
            suffix = "full" if amount is None else str(amount)
            idempotency_key = f"cancel-or-refund:{hold_id}:{suffix}"
        data = await self._post(
            f"/v1/holds/{hold_id}/cancel-or-refund",
            body,
            idempotency_key=idempotency_key,
        )
        logger.info("payment.hold_released", hold_id=hold_id, action=data.get("action"))
        return PaymentResult(
            hold_id=hold_id,
            action=data.get("action", "refund"),
            amount=Decimal(str(data["amount"])),
            reference=data.get("reference", ""),
        )
