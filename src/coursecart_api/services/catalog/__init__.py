from .discounts import DEFAULT_DISCOUNT_TIERS, DiscountTier, discounted_price, select_tier
from .options import (
    CatalogEntry,
    CatalogItemUnavailable,
    EmptySelection,
    InvalidPrice,
    MissingEnrollmentKey,
    NoPricingOption,
    PricingOption,
    SelectionRequest,
    SelectionValidationError,
    ValidatedItem,
    resolve_option,
)
from .ownership import Entitlement, split_owned

__all__ = [
    "DEFAULT_DISCOUNT_TIERS",
    "CatalogEntry",
    "CatalogItemUnavailable",
    "DiscountTier",
    "EmptySelection",
    "Entitlement",
    "InvalidPrice",
    "MissingEnrollmentKey",
    "NoPricingOption",
    "PricingOption",
    "SelectionRequest",
    "SelectionValidationError",
    "ValidatedItem",
    "discounted_price",
    "resolve_option",
    "select_tier",
    "split_owned",
]
