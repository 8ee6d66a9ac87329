"""Tests for the 70/20/10 consignment split."""

from __future__ import annotations

from decimal import Decimal

import pytest

from trade_settlement.domain.enums import PayeeType
from trade_settlement.domain.split_calculator import (
    Split,
    calculate_split,
    to_cents,
    validate_split,
)


class TestCalculateSplit:
    def test_round_amount(self) -> None:
        split = calculate_split(Decimal("100.00"))
        assert (split.owner, split.merchant, split.platform) == (
            Decimal("70.00"),
            Decimal("20.00"),
            Decimal("10.00"),
        )

    def test_platform_absorbs_rounding(self) -> None:
        # 70% of 0.05 = 0.035 -> 0.04, 20% = 0.01, platform keeps 0.00
        split = calculate_split("0.05")
        assert split.owner == Decimal("0.04")
        assert split.merchant == Decimal("0.01")
        assert split.platform == Decimal("0.00")

    def test_half_up_rounding(self) -> None:
        split = calculate_split("10.05")
        assert split.owner == Decimal("7.04")  # 7.035
        assert split.merchant == Decimal("2.01")
        assert split.platform == Decimal("1.00")

    @pytest.mark.parametrize("gross", ["0", "0.00", "-5.00"])
    def test_non_positive_gross_is_all_zero(self, gross: str) -> None:
        split = calculate_split(gross)
        assert split == Split(Decimal("0.00"), Decimal("0.00"), Decimal("0.00"), Decimal("0.00"))

    def test_shares_always_sum_to_gross(self) -> None:
        for cents in range(1, 5001, 7):
            gross = Decimal(cents) / 100
            split = calculate_split(gross)
            assert validate_split(split), gross
            assert split.owner + split.merchant + split.platform == to_cents(gross)


class TestSplitHelpers:
    def test_share_for(self) -> None:
        split = calculate_split("50.00")
        assert split.share_for(PayeeType.OWNER) == Decimal("35.00")
        assert split.share_for("MERCHANT") == Decimal("10.00")
        assert split.share_for(PayeeType.PLATFORM) == Decimal("5.00")

    def test_to_dict_uses_strings(self) -> None:
        assert calculate_split("1.00").to_dict() == {
            "gross": "1.00",
            "owner": "0.70",
            "merchant": "0.20",
            "platform": "0.10",
        }

    def test_validate_rejects_mismatched_shares(self) -> None:
        bad = Split(Decimal("10.00"), Decimal("7.00"), Decimal("2.00"), Decimal("0.50"))
        assert not validate_split(bad)

    def test_to_cents_quantizes(self) -> None:
        assert to_cents("12.345") == Decimal("12.35")
        assert to_cents(3) == Decimal("3.00")
