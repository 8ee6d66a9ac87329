"""External collaborator protocols.

Defines the interfaces the engine consumes from the outside world: the
payment processor's authorization-hold primitive and the notification
dispatcher. These are Protocols (structural subtyping) so adapters don't
need to inherit from a base class.

The domain layer has ZERO imports from HTTP clients, Redis, or any processor SDK.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from decimal import Decimal


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a capture or cancel/refund call.

    Attributes:
        hold_id: Processor reference of the hold acted upon.
        action: "capture", "cancel" or "refund".
        amount: Amount captured or returned.
        reference: Processor-side reference for the movement.
    """

    hold_id: str
    action: str
    amount: Decimal
    reference: str = ""

    def to_dict(self) -> dict:
        return {
            "hold_id": self.hold_id,
            "action": self.action,
            "amount": str(self.amount),
            "reference": self.reference,
        }


@runtime_checkable
class PaymentHoldProvider(Protocol):
    """Authorization-hold contract of the external payment processor.

    Contract:
        - capture is valid only while the hold is authorized and uncaptured.
        - cancel_or_refund voids an uncaptured hold, or refunds (part of)
          a captured one. Calls sharing an idempotency_key are one operation
          to the processor: a replay returns the first result and moves no money.

    Implementations:
        - infrastructure/payments/simulated.py  (in-memory)
        - infrastructure/payments/http_provider.py (httpx REST client)
    """

    async def create_hold(self, amount: Decimal, metadata: dict) -> str:
        """Authorize `amount` and return the processor's hold id."""
        ...

    async def capture(self, hold_id: str) -> PaymentResult:
        ...

    async def cancel_or_refund(
        self,
        hold_id: str,
        amount: Decimal | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentResult:
        ...


@dataclass(frozen=True)
class NotificationRequest:
    recipient_id: str
    template: str
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "recipient_id": self.recipient_id,
            "template": self.template,
            "payload": self.payload,
        }


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Fire-and-forget delivery of notifications after a commit."""

    async def dispatch(self, request: NotificationRequest) -> None:
        ...
