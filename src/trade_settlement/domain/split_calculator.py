"""Consignment revenue split.

owner = round(gross * 0.70), merchant = round(gross * 0.20), both to the cent
with ROUND_HALF_UP; the platform absorbs whatever remains so the three shares
always sum to the gross exactly. Non-positive gross yields all-zero shares.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from trade_settlement.domain.enums import PayeeType

CENT = Decimal("0.01")
OWNER_RATE = Decimal("0.70")
MERCHANT_RATE = Decimal("0.20")
ZERO = Decimal("0.00")


def to_cents(amount: Decimal | int | str) -> Decimal:
    """Quantize a money value to two decimal places."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Split:
    gross: Decimal
    owner: Decimal
    merchant: Decimal
    platform: Decimal

    def share_for(self, payee_type: PayeeType) -> Decimal:
        return {
            PayeeType.OWNER: self.owner,
            PayeeType.MERCHANT: self.merchant,
            PayeeType.PLATFORM: self.platform,
        }[PayeeType(payee_type)]

    def to_dict(self) -> dict:
        return {
            "gross": str(self.gross),
            "owner": str(self.owner),
            "merchant": str(self.merchant),
            "platform": str(self.platform),
        }


def calculate_split(gross: Decimal | int | str) -> Split:
    gross = to_cents(gross)
    if gross <= 0:
        return Split(ZERO, ZERO, ZERO, ZERO)
    owner = to_cents(gross * OWNER_RATE)
    merchant = to_cents(gross * MERCHANT_RATE)
    platform = gross - owner - merchant
    return Split(gross=gross, owner=owner, merchant=merchant, platform=platform)


def validate_split(split: Split) -> bool:
    """True when the shares sum exactly to the gross and none is negative."""
    shares = (split.owner, split.merchant, split.platform)
    return sum(shares) == split.gross and all(share >= 0 for share in shares)
