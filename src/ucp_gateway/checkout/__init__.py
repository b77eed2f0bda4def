"""Checkout sessions, pricing and the completion flow."""

from .idempotency import IdempotencyGuard, IdempotencyStatus
from .pricing import Discount, DiscountType, TotalType, calculate_totals, validate_discount_code
from .sessions import CheckoutSessionStore
from .state_machine import CheckoutEvent, CheckoutStateMachine, CheckoutStatus

__all__ = [
    "CheckoutEvent",
    "CheckoutSessionStore",
    "CheckoutStateMachine",
    "CheckoutStatus",
    "Discount",
    "DiscountType",
    "IdempotencyGuard",
    "IdempotencyStatus",
    "TotalType",
    "calculate_totals",
    "validate_discount_code",
]
