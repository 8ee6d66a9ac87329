"""Domain exceptions for the Trade Settlement engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
Messages are safe to show to callers; they never embed internal exception text.
"""

from __future__ import annotations

from collections.abc import Iterable


class SettlementError(Exception):
    """Base exception for all domain errors.

    `retryable` tells the caller whether re-attempting the same request
    may succeed (external outage, lost optimistic-concurrency race).
    """

    retryable = False

    def __init__(self, message: str, code: str = "SETTLEMENT_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- State Machine Errors ---


class InvalidStateTransitionError(SettlementError):
    """Raised when a requested transition is not in the allowed set.

    Example: ASSIGNED_TO_SHOP -> LISTED_ONLINE (must pass through IN_CASE).
    """

    def __init__(
        self,
        entity: str,
        current_state: str,
        attempted: str,
        allowed: Iterable[str] = (),
        reason: str | None = None,
    ) -> None:
        self.entity = entity
        self.current_state = current_state
        self.attempted = attempted
        self.allowed = sorted(str(a) for a in allowed)
        allowed_text = ", ".join(self.allowed) if self.allowed else "none"
        message = reason or (
            f"Cannot move {entity} from {current_state} to {attempted}. "
            f"Allowed: {allowed_text}"
        )
        super().__init__(message=message, code="INVALID_STATE_TRANSITION")


class PreconditionFailedError(SettlementError):
    """Raised when a joint-state or business precondition does not hold."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="PRECONDITION_FAILED")


class InvalidTradeStateError(PreconditionFailedError):
    """Raised when a transaction/package status pair is not a valid combination."""

    def __init__(self, escrow_type: str, status: str, package_status: str | None) -> None:
        super().__init__(
            f"Invalid trade state for {escrow_type} escrow: "
            f"status={status}, package_status={package_status}"
        )
        self.status = status
        self.package_status = package_status


# --- Authorization Errors ---


class PermissionDeniedError(SettlementError):
    """Raised when the actor's role or ownership does not permit the operation."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="PERMISSION_DENIED")


class ConfirmationRequiredError(SettlementError):
    """Raised when a destructive action is attempted without explicit confirmation."""

    def __init__(self, action: str) -> None:
        super().__init__(
            message=f"{action} requires explicit confirmation",
            code="CONFIRMATION_REQUIRED",
        )


class ReleaseTokenError(SettlementError):
    """Raised when a release confirmation token is wrong, consumed or expired."""

    def __init__(self, message: str, expired: bool = False) -> None:
        super().__init__(
            message=message,
            code="RELEASE_TOKEN_EXPIRED" if expired else "RELEASE_TOKEN_INVALID",
        )
        self.expired = expired


# --- Lookup / Input Errors ---


class EntityNotFoundError(SettlementError):
    """Raised when an entity ID does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code="ENTITY_NOT_FOUND",
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidRequestError(SettlementError):
    """Raised when operation input is malformed (amounts, tracking numbers)."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_REQUEST")


class DuplicateOperationError(SettlementError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )


# --- Retryable Errors ---


class PaymentProviderError(SettlementError):
    """Raised when the payment processor fails or times out.

    Nothing is committed when this is raised; the caller may retry.
    """

    retryable = True

    def __init__(self, operation: str, hold_id: str | None = None) -> None:
        super().__init__(
            message=f"Payment provider could not complete {operation}; please retry",
            code="PAYMENT_PROVIDER_ERROR",
        )
        self.operation = operation
        self.hold_id = hold_id


class ConcurrentTransitionError(SettlementError):
    """Raised when another request changed the same record first."""

    retryable = True

    def __init__(self, entity: str = "record") -> None:
        super().__init__(
            message=f"The {entity} was modified by another request; reload and retry",
            code="CONCURRENT_MODIFICATION",
        )
        self.entity = entity
