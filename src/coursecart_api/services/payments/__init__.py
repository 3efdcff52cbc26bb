from .confirmation import PaymentConfirmation, PurchasedLineItem, confirmation_from_checkout_session
from .stripe_service import StripeService

__all__ = [
    "PaymentConfirmation",
    "PurchasedLineItem",
    "StripeService",
    "confirmation_from_checkout_session",
]
