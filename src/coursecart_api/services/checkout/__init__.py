from .sessions import (
    CheckoutBlocked,
    CheckoutSessionResult,
    CheckoutSessionService,
    build_line_items,
    enforce_checkout_policy,
)
from .validator import SelectionResult, SelectionValidator, validate_selection

__all__ = [
    "CheckoutBlocked",
    "CheckoutSessionResult",
    "CheckoutSessionService",
    "SelectionResult",
    "SelectionValidator",
    "build_line_items",
    "enforce_checkout_policy",
    "validate_selection",
]
