"""Typed allow/deny result returned by every validator and capability check."""

from __future__ import annotations

from dataclasses import dataclass

from trade_settlement.domain.exceptions import PermissionDeniedError


@dataclass(frozen=True)
class Decision:
    """Outcome of a transition or capability check.

    Attributes:
        allowed: Whether the request may proceed.
        reason: Human-readable denial reason (None when allowed).
        target: Resulting status for an allowed transition.
        event: State machine event that produces `target`.
    """

    allowed: bool
    reason: str | None = None
    target: str | None = None
    event: str | None = None

    @classmethod
    def allow(cls, target: str | None = None, event: str | None = None) -> Decision:
        return cls(allowed=True, target=target, event=event)

    @classmethod
    def deny(cls, reason: str) -> Decision:
        return cls(allowed=False, reason=reason)

    def __bool__(self) -> bool:
        return self.allowed

    def enforce(self) -> None:
        """Raise PermissionDeniedError for a denied capability check."""
        if not self.allowed:
            raise PermissionDeniedError(self.reason or "Operation not permitted")
