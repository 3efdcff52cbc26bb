"""Resolve a raw catalog selection into a single priced, enrollable option."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

DEFAULT_VARIANT_CODE = "Standard"
DEFAULT_CURRENCY = "USD"
PREFERRED_VALIDITY_MONTHS = 12


class SelectionValidationError(ValueError):
    """Raised when a selection cannot be priced; blocks checkout."""

    def __init__(self, message: str, *, item_id: str | None = None) -> None:
        super().__init__(message)
        self.item_id = item_id


class EmptySelection(SelectionValidationError):
    pass


class CatalogItemUnavailable(SelectionValidationError):
    pass


class NoPricingOption(SelectionValidationError):
    pass


class MissingEnrollmentKey(SelectionValidationError):
    pass


class InvalidPrice(SelectionValidationError):
    pass


@dataclass(frozen=True)
class PricingOption:
    enroll_key: str | None = None
    variant_code: str | None = None
    price: Decimal | None = None
    original_price: Decimal | None = None
    currency: str | None = None
    validity_duration: int | None = None
    validity_unit: str | None = None


@dataclass(frozen=True)
class CatalogEntry:
    """Read-only snapshot of a catalog item and its options in catalog order."""

    item_id: str
    product_type: str = "course"
    slug: str | None = None
    title: str | None = None
    thumbnail_url: str | None = None
    lms_product_type: str | None = None
    options: tuple[PricingOption, ...] = field(default_factory=tuple)
    included_course_ids: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SelectionRequest:
    item_id: str
    preferred_enroll_key: str | None = None
    preferred_variant_code: str | None = None
    # Display fallbacks only, never a price source
    title: str | None = None
    slug: str | None = None
    thumbnail_url: str | None = None


@dataclass(frozen=True)
class ValidatedItem:
    item_id: str
    slug: str
    title: str
    enroll_key: str
    variant_code: str | None
    price: Decimal
    original_price: Decimal
    currency: str
    product_type: str = "course"
    lms_product_type: str | None = None
    validity_duration: int | None = None
    validity_unit: str | None = None
    thumbnail_url: str | None = None


def to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def validity_in_months(duration: int | None, unit: str | None) -> float | None:
    """Express a validity window in months; unknown units count as months."""

    if duration is None:
        return None
    normalized = (unit or "months").strip().lower()
    if normalized in {"day", "days"}:
        return round(duration * 12 / 365)
    if normalized in {"year", "years"}:
        return duration * 12
    return duration


def choose_option(options: Sequence[PricingOption], request: SelectionRequest) -> PricingOption | None:
    if not options:
        return None

    if request.preferred_enroll_key:
        for option in options:
            if option.enroll_key == request.preferred_enroll_key:
                return option

    wanted_variant = (request.preferred_variant_code or DEFAULT_VARIANT_CODE).strip().lower()
    for option in options:
        if option.variant_code and option.variant_code.strip().lower() == wanted_variant:
            return option

    for option in options:
        if validity_in_months(option.validity_duration, option.validity_unit) == PREFERRED_VALIDITY_MONTHS:
            return option

    best = options[0]
    for option in options[1:]:
        # strict comparison keeps the earliest option on ties
        if (option.validity_duration or 0) > (best.validity_duration or 0):
            best = option
    return best


def resolve_option(item: CatalogEntry, request: SelectionRequest) -> ValidatedItem:
    """Price one selection against its catalog row.

    Args:
        item: Catalog snapshot for ``request.item_id``.
        request: The buyer's raw selection.

    Returns:
        The validated, purchasable item.

    Raises:
        NoPricingOption: The item has no options.
        MissingEnrollmentKey: Neither the option nor the request names an enroll key.
        InvalidPrice: The resolved price is missing or not positive.
    """

    option = choose_option(item.options, request)
    if option is None:
        raise NoPricingOption(f"No pricing option available for {item.item_id}", item_id=item.item_id)

    enroll_key = option.enroll_key or request.preferred_enroll_key
    if not enroll_key:
        raise MissingEnrollmentKey(f"Missing enrollment key for {item.item_id}", item_id=item.item_id)

    price = to_decimal(option.price)
    if price is None or price <= 0:
        raise InvalidPrice(f"Invalid price for {item.item_id}", item_id=item.item_id)

    original = to_decimal(option.original_price)
    original_price = max(price, original if original is not None else price)

    currency = (option.currency or DEFAULT_CURRENCY).strip().upper() or DEFAULT_CURRENCY

    return ValidatedItem(
        item_id=item.item_id,
        slug=item.slug or request.slug or item.item_id,
        title=item.title or request.title or item.item_id,
        enroll_key=enroll_key,
        variant_code=option.variant_code,
        price=price,
        original_price=original_price,
        currency=currency,
        product_type=item.product_type,
        lms_product_type=item.lms_product_type,
        validity_duration=option.validity_duration,
        validity_unit=option.validity_unit,
        thumbnail_url=item.thumbnail_url or request.thumbnail_url,
    )
