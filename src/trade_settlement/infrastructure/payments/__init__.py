"""Payment hold provider adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

from trade_settlement.infrastructure.payments.http_provider import HttpHoldProvider
from trade_settlement.infrastructure.payments.simulated import SimulatedHoldProvider

if TYPE_CHECKING:
    from trade_settlement.config import Settings
    from trade_settlement.domain.collaborators import PaymentHoldProvider


def build_payment_provider(settings: Settings) -> PaymentHoldProvider:
    if settings.payment_provider == "http":
        return HttpHoldProvider(
            base_url=settings.payment_api_base_url,
            api_key=settings.payment_api_key,
            timeout_seconds=settings.payment_timeout_seconds,
        )
    return SimulatedHoldProvider()


__all__ = ["HttpHoldProvider", "SimulatedHoldProvider", "build_payment_provider"]
