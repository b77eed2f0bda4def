"""Checkout status state machine.

The transition table is data: ``TRANSITIONS[(state, event)] -> next_state``.
Everything else in this module is a pure function over it or over a
session's fields.

Usage:
    from ucp_gateway.checkout.state_machine import transition, CheckoutEvent, CheckoutStatus

    status = transition(CheckoutStatus.READY_FOR_PAYMENT, CheckoutEvent.PAYMENT_SUBMITTED)
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Tuple

from ..exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from .models import CheckoutSession


class CheckoutStatus(str, Enum):
    """Status of a checkout session."""

    INCOMPLETE = "incomplete"
    READY_FOR_PAYMENT = "ready_for_payment"
    READY_FOR_COMPLETE = "ready_for_complete"
    REQUIRES_ACTION = "requires_action"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CheckoutEvent(str, Enum):
    """Events that drive status transitions."""

    BUYER_INFO_ADDED = "BUYER_INFO_ADDED"
    SHIPPING_SELECTED = "SHIPPING_SELECTED"
    ALL_INFO_PROVIDED = "ALL_INFO_PROVIDED"
    PAYMENT_SUBMITTED = "PAYMENT_SUBMITTED"
    ACTION_REQUIRED = "ACTION_REQUIRED"
    ACTION_COMPLETED = "ACTION_COMPLETED"
    COMPLETE_CALLED = "COMPLETE_CALLED"
    CANCEL_CALLED = "CANCEL_CALLED"
    EXPIRED = "EXPIRED"


TERMINAL_STATES: FrozenSet[CheckoutStatus] = frozenset({
    CheckoutStatus.COMPLETED,
    CheckoutStatus.CANCELLED,
    CheckoutStatus.EXPIRED,
})

MODIFIABLE_STATES: FrozenSet[CheckoutStatus] = frozenset({
    CheckoutStatus.INCOMPLETE,
    CheckoutStatus.READY_FOR_PAYMENT,
})

_NON_TERMINAL = [s for s in CheckoutStatus if s not in TERMINAL_STATES]

TRANSITIONS: Dict[Tuple[CheckoutStatus, CheckoutEvent], CheckoutStatus] = {
    (CheckoutStatus.INCOMPLETE, CheckoutEvent.ALL_INFO_PROVIDED): CheckoutStatus.READY_FOR_PAYMENT,
    (CheckoutStatus.READY_FOR_PAYMENT, CheckoutEvent.PAYMENT_SUBMITTED): CheckoutStatus.READY_FOR_COMPLETE,
    (CheckoutStatus.READY_FOR_PAYMENT, CheckoutEvent.ACTION_REQUIRED): CheckoutStatus.REQUIRES_ACTION,
    (CheckoutStatus.READY_FOR_COMPLETE, CheckoutEvent.ACTION_REQUIRED): CheckoutStatus.REQUIRES_ACTION,
    (CheckoutStatus.REQUIRES_ACTION, CheckoutEvent.ACTION_COMPLETED): CheckoutStatus.READY_FOR_COMPLETE,
    (CheckoutStatus.READY_FOR_COMPLETE, CheckoutEvent.COMPLETE_CALLED): CheckoutStatus.COMPLETED,
    **{(s, CheckoutEvent.CANCEL_CALLED): CheckoutStatus.CANCELLED for s in _NON_TERMINAL},
    **{(s, CheckoutEvent.EXPIRED): CheckoutStatus.EXPIRED for s in _NON_TERMINAL},
}


def is_terminal(status: CheckoutStatus) -> bool:
    return CheckoutStatus(status) in TERMINAL_STATES


def can_modify(status: CheckoutStatus) -> bool:
    return CheckoutStatus(status) in MODIFIABLE_STATES


def can_transition(status: CheckoutStatus, event: CheckoutEvent) -> bool:
    return (CheckoutStatus(status), CheckoutEvent(event)) in TRANSITIONS


def transition(status: CheckoutStatus, event: CheckoutEvent) -> CheckoutStatus:
    """Return the status reached by applying event.

    Raises:
        InvalidTransitionError: if the pair is not in the table (this
            includes every event against a terminal status).
    """
    status = CheckoutStatus(status)
    event = CheckoutEvent(event)
    next_status = TRANSITIONS.get((status, event))
    if next_status is None:
        raise InvalidTransitionError(status.value, event.value)
    return next_status


def valid_events(status: CheckoutStatus) -> List[CheckoutEvent]:
    status = CheckoutStatus(status)
    return [event for (s, event) in TRANSITIONS if s == status]


# =============================================================================
# Readiness
# =============================================================================

def has_physical_items(session: "CheckoutSession") -> bool:
    """Anything not explicitly digital needs shipping."""
    return any(item.item.type != "digital" for item in session.line_items)


def is_ready_for_payment(session: "CheckoutSession") -> bool:
    if session.buyer is None or not session.buyer.email:
        return False
    if not session.line_items:
        return False
    if has_physical_items(session):
        if not session.selected_fulfillment_id or session.shipping_address is None:
            return False
    return True


def missing_fields(session: "CheckoutSession") -> List[str]:
    """Fields still needed before payment, in a stable order."""
    missing: List[str] = []
    if session.buyer is None or not session.buyer.email:
        missing.append("buyer.email")
    if not session.line_items:
        missing.append("lineItems")
    if session.line_items and has_physical_items(session):
        if not session.selected_fulfillment_id:
            missing.append("fulfillment.selectedId")
        if session.shipping_address is None:
            missing.append("shippingAddress")
    return missing


def determine_status(session: "CheckoutSession", now: Optional[datetime] = None) -> CheckoutStatus:
    """Derive the authoritative status from the session fields."""
    if is_terminal(session.status):
        return CheckoutStatus(session.status)

    now = now or datetime.now(timezone.utc)
    if session.expires_at < now:
        return CheckoutStatus.EXPIRED

    # Action-required is only left through ACTION_COMPLETED.
    if session.status == CheckoutStatus.REQUIRES_ACTION:
        return CheckoutStatus.REQUIRES_ACTION

    if is_ready_for_payment(session):
        if session.payment_transaction_id:
            return CheckoutStatus.READY_FOR_COMPLETE
        return CheckoutStatus.READY_FOR_PAYMENT

    return CheckoutStatus.INCOMPLETE


class CheckoutStateMachine:
    """Caller-owned mutable wrapper around transition().

    Usage:
        machine = CheckoutStateMachine(session.status)
        machine.dispatch(CheckoutEvent.CANCEL_CALLED)
        session.status = machine.state
    """

    def __init__(self, initial: CheckoutStatus = CheckoutStatus.INCOMPLETE) -> None:
        self._state = CheckoutStatus(initial)
        self.history: List[Tuple[CheckoutStatus, CheckoutEvent, CheckoutStatus]] = []

    @property
    def state(self) -> CheckoutStatus:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self._state)

    def can(self, event: CheckoutEvent) -> bool:
        return can_transition(self._state, event)

    def dispatch(self, event: CheckoutEvent) -> CheckoutStatus:
        next_state = transition(self._state, event)
        self.history.append((self._state, CheckoutEvent(event), next_state))
        self._state = next_state
        return next_state

    def force_status(self, status: CheckoutStatus) -> None:
        """Overwrite the state without consulting the table (rehydration)."""
        self._state = CheckoutStatus(status)
