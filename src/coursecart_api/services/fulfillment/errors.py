"""Failures raised inside the fulfillment saga.

Only ``PersistenceError`` stops a saga; the others are caught at the step that
raised them, logged, and the saga moves on.
"""

from __future__ import annotations


class FulfillmentError(Exception):
    pass


class SignatureError(FulfillmentError):
    """Payment webhook failed signature verification."""


class PersistenceError(FulfillmentError):
    """The order row could not be written."""


class DuplicatePayment(PersistenceError):
    """An order already exists for this payment reference."""

    def __init__(self, payment_reference: str) -> None:
        super().__init__(f"Order already recorded for payment {payment_reference}")
        self.payment_reference = payment_reference


class FulfillmentIncomplete(FulfillmentError):
    """The saga aborted before an order existed and the event must be redelivered."""


class CartClearError(FulfillmentError):
    pass


class CustomerUpdateError(FulfillmentError):
    pass


class IdentityProvisionError(FulfillmentError):
    pass


class EmailError(FulfillmentError):
    pass


class LmsRequestError(FulfillmentError):
    """Non-success response from the learning platform."""

    def __init__(self, message: str, *, status_code: int | None = None, url: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class EnrollmentError(LmsRequestError):
    pass


class EnrollmentRateLimited(EnrollmentError):
    """HTTP 429/503 from the enroll endpoint; safe to retry."""


class EnrollmentRejected(EnrollmentError):
    """Any other non-2xx from the enroll endpoint; terminal for the item."""
