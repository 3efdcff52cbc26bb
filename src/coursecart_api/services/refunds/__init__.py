from .service import (
    RefundError,
    RefundNotEligible,
    RefundNotFound,
    RefundOutcome,
    RefundQuote,
    RefundService,
)

__all__ = [
    "RefundError",
    "RefundNotEligible",
    "RefundNotFound",
    "RefundOutcome",
    "RefundQuote",
    "RefundService",
]
