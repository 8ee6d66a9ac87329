"""Entity State Machine Guards.

Each settlement entity declares its lifecycle once, as a python-statemachine
class. A `TransitionTable` is derived from every machine by firing each event
from each state, so the table the validators consult can never drift from
the machine definition.

Validators are pure: (current state, requested target or event, actor role)
-> Decision. Orchestrators call `require_*` which raises the matching domain
error when the decision is a denial.

Transaction transition table (forward):
    PENDING                  -> CONFIRMED, CANCELLED
    CONFIRMED                -> AWAITING_HUB_RECEIPT (VERIFIED), COMPLETED (LOCAL), CANCELLED
    AWAITING_HUB_RECEIPT     -> HUB_RECEIVED, CANCELLED
    HUB_RECEIVED             -> VERIFICATION_IN_PROGRESS, CANCELLED
    VERIFICATION_IN_PROGRESS -> VERIFIED, CANCELLED
    VERIFIED                 -> SHIPPED_TO_BUYER, CANCELLED
    SHIPPED_TO_BUYER         -> COMPLETED, CANCELLED

Transaction forced table (dispute side-channel only):
    CONFIRMED | COMPLETED    -> DISPUTED
    DISPUTED                 -> CONFIRMED, COMPLETED, CANCELLED
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from trade_settlement.domain.decision import Decision
from trade_settlement.domain.enums import STAFF_ROLES, Role
from trade_settlement.domain.exceptions import (
    InvalidStateTransitionError,
    PermissionDeniedError,
)


class PersistedStatusMixin:
    """Start a machine at a status loaded from the database.

    Usage:
        sm = VaultItemStateMachine("IN_CASE")
        sm.list_online()
        sm.status  # "LISTED_ONLINE"
    """

    def __init__(self, current_status: str | None = None) -> None:
        if current_status is None:
            super().__init__()
            return
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        return str(self.current_state.value)


# ---------------------------------------------------------------------------
# Machines
# ---------------------------------------------------------------------------


class TransactionStateMachine(PersistedStatusMixin, StateMachine):
    """Forward lifecycle of a trade transaction."""

    PENDING = State("PENDING", initial=True)
    CONFIRMED = State("CONFIRMED")
    AWAITING_HUB_RECEIPT = State("AWAITING_HUB_RECEIPT")
    HUB_RECEIVED = State("HUB_RECEIVED")
    VERIFICATION_IN_PROGRESS = State("VERIFICATION_IN_PROGRESS")
    VERIFIED = State("VERIFIED")
    SHIPPED_TO_BUYER = State("SHIPPED_TO_BUYER")
    COMPLETED = State("COMPLETED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    check_in = PENDING.to(CONFIRMED)
    await_hub_receipt = CONFIRMED.to(AWAITING_HUB_RECEIPT)
    receive_at_hub = AWAITING_HUB_RECEIPT.to(HUB_RECEIVED)
    start_verification = HUB_RECEIVED.to(VERIFICATION_IN_PROGRESS)
    verify = VERIFICATION_IN_PROGRESS.to(VERIFIED)
    ship_to_buyer = VERIFIED.to(SHIPPED_TO_BUYER)
    complete = CONFIRMED.to(COMPLETED) | SHIPPED_TO_BUYER.to(COMPLETED)
    cancel = (
        PENDING.to(CANCELLED)
        | CONFIRMED.to(CANCELLED)
        | AWAITING_HUB_RECEIPT.to(CANCELLED)
        | HUB_RECEIVED.to(CANCELLED)
        | VERIFICATION_IN_PROGRESS.to(CANCELLED)
        | VERIFIED.to(CANCELLED)
        | SHIPPED_TO_BUYER.to(CANCELLED)
    )


class ForcedTransactionStateMachine(PersistedStatusMixin, StateMachine):
    """Side-channel transitions a dispute may force on a transaction."""

    CONFIRMED = State("CONFIRMED", initial=True)
    COMPLETED = State("COMPLETED")
    DISPUTED = State("DISPUTED")
    CANCELLED = State("CANCELLED", final=True)

    hold_for_dispute = CONFIRMED.to(DISPUTED) | COMPLETED.to(DISPUTED)
    restore_confirmed = DISPUTED.to(CONFIRMED)
    restore_completed = DISPUTED.to(COMPLETED)
    cancel_disputed = DISPUTED.to(CANCELLED)


class PackageStateMachine(PersistedStatusMixin, StateMachine):
    """Physical custody of a hub package."""

    PENDING = State("PENDING", initial=True)
    IN_TRANSIT_TO_HUB = State("IN_TRANSIT_TO_HUB")
    RECEIVED_AT_HUB = State("RECEIVED_AT_HUB")
    VERIFICATION_IN_PROGRESS = State("VERIFICATION_IN_PROGRESS")
    VERIFIED = State("VERIFIED")
    SHIPPED = State("SHIPPED")
    DELIVERED = State("DELIVERED", final=True)

    dispatch_to_hub = PENDING.to(IN_TRANSIT_TO_HUB)
    receive = IN_TRANSIT_TO_HUB.to(RECEIVED_AT_HUB)
    start_verification = RECEIVED_AT_HUB.to(VERIFICATION_IN_PROGRESS)
    verify = VERIFICATION_IN_PROGRESS.to(VERIFIED)
    ship = VERIFIED.to(SHIPPED)
    deliver = SHIPPED.to(DELIVERED)


class SessionStateMachine(PersistedStatusMixin, StateMachine):
    """In-store escrow session.

    EXPIRED is deliberately not final: extend_session resurrects it.
    """

    CREATED = State("CREATED", initial=True)
    BOOKED = State("BOOKED")
    CHECKIN_PENDING = State("CHECKIN_PENDING")
    CHECKED_IN = State("CHECKED_IN")
    VERIFICATION_IN_PROGRESS = State("VERIFICATION_IN_PROGRESS")
    VERIFICATION_PASSED = State("VERIFICATION_PASSED")
    VERIFICATION_FAILED = State("VERIFICATION_FAILED")
    RELEASE_REQUESTED = State("RELEASE_REQUESTED")
    RELEASE_APPROVED = State("RELEASE_APPROVED")
    DISPUTED = State("DISPUTED")
    EXPIRED = State("EXPIRED")
    COMPLETED = State("COMPLETED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    book = CREATED.to(BOOKED)
    open_checkin = BOOKED.to(CHECKIN_PENDING)
    check_in = CHECKIN_PENDING.to(CHECKED_IN)
    start_verification = CHECKED_IN.to(VERIFICATION_IN_PROGRESS)
    pass_verification = VERIFICATION_IN_PROGRESS.to(VERIFICATION_PASSED)
    fail_verification = VERIFICATION_IN_PROGRESS.to(VERIFICATION_FAILED)
    request_release = VERIFICATION_PASSED.to(RELEASE_REQUESTED)
    approve_release = RELEASE_REQUESTED.to(RELEASE_APPROVED)
    complete = RELEASE_APPROVED.to(COMPLETED)
    dispute = (
        VERIFICATION_IN_PROGRESS.to(DISPUTED)
        | VERIFICATION_PASSED.to(DISPUTED)
        | VERIFICATION_FAILED.to(DISPUTED)
        | RELEASE_REQUESTED.to(DISPUTED)
    )
    resume_verification = DISPUTED.to(VERIFICATION_IN_PROGRESS)
    resume_passed = DISPUTED.to(VERIFICATION_PASSED)
    resume_release = DISPUTED.to(RELEASE_REQUESTED)
    expire = BOOKED.to(EXPIRED) | CHECKIN_PENDING.to(EXPIRED)
    extend_session = EXPIRED.to(CHECKIN_PENDING)
    cancel = CREATED.to(CANCELLED) | BOOKED.to(CANCELLED)
    close_session = (
        CHECKIN_PENDING.to(CANCELLED)
        | CHECKED_IN.to(CANCELLED)
        | VERIFICATION_IN_PROGRESS.to(CANCELLED)
        | VERIFICATION_PASSED.to(CANCELLED)
        | VERIFICATION_FAILED.to(CANCELLED)
        | RELEASE_REQUESTED.to(CANCELLED)
        | DISPUTED.to(CANCELLED)
        | EXPIRED.to(CANCELLED)
    )


class DisputeStateMachine(PersistedStatusMixin, StateMachine):
    """Dispute arbitration. Staff may skip SELLER_RESPONSE and mediate early."""

    OPEN = State("OPEN", initial=True)
    SELLER_RESPONSE = State("SELLER_RESPONSE")
    IN_MEDIATION = State("IN_MEDIATION")
    ESCALATED = State("ESCALATED")
    RESOLVED = State("RESOLVED")
    CLOSED = State("CLOSED", final=True)

    respond = OPEN.to(SELLER_RESPONSE)
    mediate = OPEN.to(IN_MEDIATION) | SELLER_RESPONSE.to(IN_MEDIATION) | ESCALATED.to(IN_MEDIATION)
    escalate = OPEN.to(ESCALATED) | SELLER_RESPONSE.to(ESCALATED) | IN_MEDIATION.to(ESCALATED)
    resolve = (
        OPEN.to(RESOLVED)
        | SELLER_RESPONSE.to(RESOLVED)
        | IN_MEDIATION.to(RESOLVED)
        | ESCALATED.to(RESOLVED)
    )
    close = RESOLVED.to(CLOSED)


class VaultItemStateMachine(PersistedStatusMixin, StateMachine):
    """Consignment item custody. Online listing only ever follows IN_CASE."""

    PENDING_REVIEW = State("PENDING_REVIEW", initial=True)
    ACCEPTED = State("ACCEPTED")
    ASSIGNED_TO_SHOP = State("ASSIGNED_TO_SHOP")
    IN_CASE = State("IN_CASE")
    LISTED_ONLINE = State("LISTED_ONLINE")
    RESERVED = State("RESERVED")
    SOLD = State("SOLD", final=True)
    REJECTED = State("REJECTED", final=True)
    RETURNED = State("RETURNED", final=True)

    accept = PENDING_REVIEW.to(ACCEPTED)
    reject = PENDING_REVIEW.to(REJECTED)
    assign_to_shop = ACCEPTED.to(ASSIGNED_TO_SHOP)
    place_in_case = ASSIGNED_TO_SHOP.to(IN_CASE)
    list_online = IN_CASE.to(LISTED_ONLINE)
    reserve = LISTED_ONLINE.to(RESERVED)
    sell = IN_CASE.to(SOLD) | RESERVED.to(SOLD)
    return_to_owner = (
        ASSIGNED_TO_SHOP.to(RETURNED)
        | IN_CASE.to(RETURNED)
        | LISTED_ONLINE.to(RETURNED)
        | RESERVED.to(RETURNED)
    )


class VaultOrderStateMachine(PersistedStatusMixin, StateMachine):
    """Online order for a vault item."""

    PENDING_PAYMENT = State("PENDING_PAYMENT", initial=True)
    PAID = State("PAID")
    FULFILLING = State("FULFILLING")
    SHIPPED = State("SHIPPED")
    DELIVERED = State("DELIVERED")
    DISPUTED = State("DISPUTED")
    REFUNDED = State("REFUNDED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    pay = PENDING_PAYMENT.to(PAID)
    fulfill = PAID.to(FULFILLING)
    ship = FULFILLING.to(SHIPPED)
    deliver = SHIPPED.to(DELIVERED) | DISPUTED.to(DELIVERED)
    dispute = SHIPPED.to(DISPUTED) | DELIVERED.to(DISPUTED)
    refund = (
        PAID.to(REFUNDED)
        | FULFILLING.to(REFUNDED)
        | SHIPPED.to(REFUNDED)
        | DELIVERED.to(REFUNDED)
        | DISPUTED.to(REFUNDED)
    )
    cancel = PENDING_PAYMENT.to(CANCELLED) | PAID.to(CANCELLED) | FULFILLING.to(CANCELLED)


class PendingReleaseStateMachine(PersistedStatusMixin, StateMachine):
    PENDING = State("PENDING", initial=True)
    APPROVED = State("APPROVED", final=True)
    REJECTED = State("REJECTED", final=True)
    EXPIRED = State("EXPIRED", final=True)

    approve = PENDING.to(APPROVED)
    reject = PENDING.to(REJECTED)
    expire = PENDING.to(EXPIRED)


# ---------------------------------------------------------------------------
# Generic transition table
# ---------------------------------------------------------------------------


class TransitionTable:
    """Explicit state -> {event -> target} map derived from a machine class.

    `permissions` maps every event name to the roles allowed to fire it.
    """

    def __init__(
        self,
        entity: str,
        machine_cls: type[PersistedStatusMixin],
        permissions: Mapping[str, Iterable[Role]],
    ) -> None:
        self.entity = entity
        self.machine_cls = machine_cls
        self.permissions = {event: frozenset(roles) for event, roles in permissions.items()}
        self.states = tuple(s.value for s in machine_cls.states)
        self.initial = machine_cls().status
        self._edges = self._derive_edges()

    def _derive_edges(self) -> dict[str, dict[str, str]]:
        edges: dict[str, dict[str, str]] = {state: {} for state in self.states}
        for state in self.states:
            for event_name in self.permissions:
                sm = self.machine_cls(state)
                event_method = getattr(sm, event_name, None)
                if event_method is None or not callable(event_method):
                    raise ValueError(f"{self.entity} machine has no event '{event_name}'")
                try:
                    event_method()
                except TransitionNotAllowed:
                    continue
                edges[state][event_name] = sm.status
        return edges

    # --- Queries ---

    def events(self, state: str) -> dict[str, str]:
        """Events that can fire from `state`, mapped to their target."""
        return dict(self._edges.get(str(state), {}))

    def targets(self, state: str) -> set[str]:
        return set(self._edges.get(str(state), {}).values())

    def target_of(self, state: str, event_name: str) -> str | None:
        return self._edges.get(str(state), {}).get(event_name)

    def event_for(self, state: str, target: str) -> str | None:
        for event_name, event_target in self._edges.get(str(state), {}).items():
            if event_target == target:
                return event_name
        return None

    def is_terminal(self, state: str) -> bool:
        return not self._edges.get(str(state))

    def reachable(self, start: str, avoiding: Iterable[str] = ()) -> set[str]:
        """All states reachable from `start` without entering any of `avoiding`."""
        blocked = {str(s) for s in avoiding}
        seen = {str(start)}
        queue = deque([str(start)])
        while queue:
            state = queue.popleft()
            for target in self._edges[state].values():
                if target in seen or target in blocked:
                    continue
                seen.add(target)
                queue.append(target)
        return seen

    # --- Validation ---

    def check_event(self, state: str, event_name: str, role: Role) -> Decision:
        state = str(state)
        if state not in self._edges:
            return Decision.deny(f"Unknown {self.entity} status '{state}'")
        target = self._edges[state].get(event_name)
        if target is None:
            allowed = ", ".join(sorted(self.targets(state))) or "none"
            return Decision.deny(
                f"Cannot {event_name} {self.entity} in {state}. Allowed: {allowed}"
            )
        roles = self.permissions.get(event_name, frozenset())
        if role not in roles:
            return Decision.deny(f"Role {role} may not {event_name} a {self.entity}")
        return Decision.allow(target=target, event=event_name)

    def check(self, state: str, target: str, role: Role) -> Decision:
        state = str(state)
        target = str(target)
        if state not in self._edges:
            return Decision.deny(f"Unknown {self.entity} status '{state}'")
        event_name = self.event_for(state, target)
        if event_name is None:
            allowed = ", ".join(sorted(self.targets(state))) or "none"
            return Decision.deny(
                f"Cannot move {self.entity} from {state} to {target}. Allowed: {allowed}"
            )
        return self.check_event(state, event_name, role)

    def require_event(self, state: str, event_name: str, role: Role) -> str:
        """Validate an event and return the target status, or raise."""
        decision = self.check_event(state, event_name, role)
        if decision.allowed:
            return decision.target
        if self.target_of(state, event_name) is None:
            raise InvalidStateTransitionError(
                self.entity, str(state), event_name, self.targets(state), decision.reason
            )
        raise PermissionDeniedError(decision.reason)

    def require(self, state: str, target: str, role: Role) -> str:
        """Validate a target status and return the event name, or raise."""
        decision = self.check(state, target, role)
        if decision.allowed:
            return decision.event
        if self.event_for(state, str(target)) is None:
            raise InvalidStateTransitionError(
                self.entity, str(state), str(target), self.targets(state), decision.reason
            )
        raise PermissionDeniedError(decision.reason)


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

_HUB = frozenset({Role.HUB_STAFF, Role.ADMIN})
_PARTIES = frozenset({Role.BUYER, Role.SELLER})

TRANSACTION_TABLE = TransitionTable(
    "transaction",
    TransactionStateMachine,
    {
        "check_in": {Role.BUYER, Role.SELLER, Role.MERCHANT, Role.ADMIN},
        "await_hub_receipt": {Role.SELLER, Role.ADMIN, Role.SYSTEM},
        "receive_at_hub": _HUB,
        "start_verification": _HUB,
        "verify": _HUB,
        "ship_to_buyer": _HUB,
        "complete": {Role.SYSTEM},
        "cancel": _PARTIES | STAFF_ROLES | {Role.HUB_STAFF, Role.SYSTEM},
    },
)

FORCED_TRANSACTION_TABLE = TransitionTable(
    "transaction",
    ForcedTransactionStateMachine,
    {
        "hold_for_dispute": {Role.SYSTEM},
        "restore_confirmed": {Role.SYSTEM},
        "restore_completed": {Role.SYSTEM},
        "cancel_disputed": {Role.SYSTEM},
    },
)

PACKAGE_TABLE = TransitionTable(
    "package",
    PackageStateMachine,
    {
        "dispatch_to_hub": _HUB,
        "receive": _HUB,
        "start_verification": _HUB,
        "verify": _HUB,
        "ship": _HUB,
        "deliver": _HUB | {Role.SYSTEM},
    },
)

SESSION_TABLE = TransitionTable(
    "session",
    SessionStateMachine,
    {
        "book": {Role.BUYER, Role.SELLER, Role.MERCHANT},
        "open_checkin": {Role.MERCHANT, Role.SYSTEM},
        "check_in": {Role.MERCHANT},
        "start_verification": {Role.MERCHANT},
        "pass_verification": {Role.MERCHANT},
        "fail_verification": {Role.MERCHANT},
        "request_release": {Role.BUYER, Role.SELLER, Role.MERCHANT},
        "approve_release": {Role.SYSTEM},
        "complete": {Role.SYSTEM},
        "dispute": {Role.BUYER, Role.SELLER, Role.MERCHANT, Role.SYSTEM},
        "resume_verification": STAFF_ROLES,
        "resume_passed": STAFF_ROLES,
        "resume_release": STAFF_ROLES,
        "expire": {Role.SYSTEM},
        "extend_session": {Role.MERCHANT, Role.ADMIN},
        "cancel": _PARTIES | {Role.SYSTEM},
        "close_session": {Role.MERCHANT, Role.ADMIN, Role.SYSTEM},
    },
)

DISPUTE_TABLE = TransitionTable(
    "dispute",
    DisputeStateMachine,
    {
        "respond": _PARTIES,
        "mediate": STAFF_ROLES,
        "escalate": _PARTIES | STAFF_ROLES | {Role.SYSTEM},
        "resolve": STAFF_ROLES,
        "close": STAFF_ROLES | {Role.SYSTEM},
    },
)

VAULT_ITEM_TABLE = TransitionTable(
    "vault item",
    VaultItemStateMachine,
    {
        "accept": STAFF_ROLES,
        "reject": STAFF_ROLES,
        "assign_to_shop": {Role.ADMIN},
        "place_in_case": {Role.MERCHANT, Role.ADMIN},
        "list_online": {Role.MERCHANT, Role.ADMIN},
        "reserve": {Role.BUYER, Role.ADMIN, Role.SYSTEM},
        "sell": {Role.MERCHANT, Role.ADMIN, Role.SYSTEM},
        "return_to_owner": {Role.MERCHANT, Role.ADMIN, Role.SYSTEM},
    },
)

VAULT_ORDER_TABLE = TransitionTable(
    "vault order",
    VaultOrderStateMachine,
    {
        "pay": {Role.SYSTEM, Role.ADMIN},
        "fulfill": {Role.MERCHANT, Role.ADMIN},
        "ship": {Role.MERCHANT, Role.ADMIN},
        "deliver": STAFF_ROLES | {Role.MERCHANT, Role.SYSTEM},
        "dispute": STAFF_ROLES | {Role.BUYER},
        "refund": STAFF_ROLES | {Role.SYSTEM},
        "cancel": {Role.BUYER, Role.MERCHANT, Role.ADMIN, Role.SYSTEM},
    },
)

RELEASE_TABLE = TransitionTable(
    "release",
    PendingReleaseStateMachine,
    {
        "approve": STAFF_ROLES,
        "reject": STAFF_ROLES,
        "expire": {Role.SYSTEM},
    },
)
