"""Tests for domain enumerations."""

from __future__ import annotations

from trade_settlement.domain.enums import (
    HUB_TRANSACTION_STATUSES,
    OPEN_DISPUTE_STATUSES,
    STAFF_ROLES,
    ReleaseType,
    Role,
    TransactionStatus,
)


class TestRole:
    def test_closed_role_set(self) -> None:
        assert {r.value for r in Role} == {
            "BUYER", "SELLER", "MERCHANT", "HUB_STAFF", "ADMIN", "MODERATOR", "SYSTEM",
        }

    def test_staff_roles(self) -> None:
        assert STAFF_ROLES == {Role.ADMIN, Role.MODERATOR}
        assert Role.HUB_STAFF not in STAFF_ROLES


class TestTransactionStatus:
    def test_status_is_str_enum(self) -> None:
        assert isinstance(TransactionStatus.PENDING, str)
        assert TransactionStatus.PENDING == "PENDING"

    def test_hub_statuses_exclude_shared_ones(self) -> None:
        for shared in ("PENDING", "CONFIRMED", "COMPLETED", "CANCELLED", "DISPUTED"):
            assert shared not in HUB_TRANSACTION_STATUSES


class TestReleaseType:
    def test_refund_types(self) -> None:
        assert ReleaseType.REFUND_FULL.is_refund
        assert ReleaseType.REFUND_PARTIAL.is_refund
        assert not ReleaseType.RELEASE_TO_SELLER.is_refund

    def test_every_type_has_a_label(self) -> None:
        for release_type in ReleaseType:
            assert release_type.label


def test_resolved_disputes_are_not_open() -> None:
    assert "RESOLVED" not in OPEN_DISPUTE_STATUSES
    assert "ESCALATED" in OPEN_DISPUTE_STATUSES
