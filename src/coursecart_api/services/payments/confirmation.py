"""Payment-confirmation payload the fulfillment saga trusts after payment."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from coursecart_api.services.catalog.options import to_decimal

_CENTS = Decimal("100")


@dataclass(frozen=True)
class PurchasedLineItem:
    product_id: str
    enroll_key: str
    product_type: str
    lms_product_type: str | None
    title: str
    discounted_price: Decimal
    list_price: Decimal
    validity_duration: int | None = None
    validity_unit: str | None = None

    def snapshot(self) -> dict[str, Any]:
        """JSON form stored in ``orders.purchased_items``."""
        return {
            "product_id": self.product_id,
            "enroll_key": self.enroll_key,
            "product_type": self.product_type,
            "lms_product_type": self.lms_product_type,
            "title": self.title,
            "price": str(self.discounted_price),
            "original_price": str(self.list_price),
            "validity_duration": self.validity_duration,
            "validity_unit": self.validity_unit,
        }


@dataclass(frozen=True)
class PaymentConfirmation:
    buyer_id: str
    payment_reference: str
    customer_email: str
    customer_name: str | None = None
    country: str | None = None
    payment_customer_id: str | None = None
    currency: str = "USD"
    discount_tier_name: str | None = None
    line_items: tuple[PurchasedLineItem, ...] = field(default_factory=tuple)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.list_price for item in self.line_items), Decimal("0"))

    @property
    def total(self) -> Decimal:
        return sum((item.discounted_price for item in self.line_items), Decimal("0"))

    @property
    def discount(self) -> Decimal:
        return max(self.subtotal - self.total, Decimal("0"))


def line_item_metadata(
    *,
    product_id: str,
    enroll_key: str,
    product_type: str,
    lms_product_type: str | None,
    title: str,
    discounted_price: Decimal,
    list_price: Decimal,
    validity_duration: int | None,
    validity_unit: str | None,
) -> dict[str, str]:
    """Gateway metadata is string-only; empty values are dropped."""

    raw = {
        "product_id": product_id,
        "enroll_key": enroll_key,
        "product_type": product_type,
        "lms_product_type": lms_product_type,
        "title": title,
        "discounted_price": str(discounted_price),
        "list_price": str(list_price),
        "validity_duration": None if validity_duration is None else str(validity_duration),
        "validity_unit": validity_unit,
    }
    return {key: value for key, value in raw.items() if value not in (None, "")}


def _get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _line_item_from_stripe(raw: Any) -> PurchasedLineItem | None:
    price = _get(raw, "price")
    product = _get(price, "product")
    metadata = _get(product, "metadata") or _get(price, "metadata") or _get(raw, "metadata") or {}

    product_id = _get(metadata, "product_id")
    enroll_key = _get(metadata, "enroll_key")
    if not product_id or not enroll_key:
        return None

    quantity = _as_int(_get(raw, "quantity")) or 1
    amount_total = _as_int(_get(raw, "amount_total"))
    paid = to_decimal(_get(metadata, "discounted_price"))
    if paid is None and amount_total is not None:
        paid = Decimal(amount_total) / _CENTS / quantity
    paid = paid if paid is not None else Decimal("0")
    listed = to_decimal(_get(metadata, "list_price"))

    return PurchasedLineItem(
        product_id=str(product_id),
        enroll_key=str(enroll_key),
        product_type=str(_get(metadata, "product_type") or "course"),
        lms_product_type=_get(metadata, "lms_product_type"),
        title=str(_get(metadata, "title") or _get(raw, "description") or product_id),
        discounted_price=paid,
        list_price=max(listed, paid) if listed is not None else paid,
        validity_duration=_as_int(_get(metadata, "validity_duration")),
        validity_unit=_get(metadata, "validity_unit"),
    )


def confirmation_from_checkout_session(session: Any, line_items: Iterable[Any]) -> PaymentConfirmation:
    """Build a confirmation from a completed Checkout session and its line items.

    Line items without product/enroll metadata are skipped; they cannot be fulfilled.
    """

    metadata = _get(session, "metadata") or {}
    details = _get(session, "customer_details") or {}
    address = _get(details, "address") or {}

    buyer_id = _get(session, "client_reference_id") or _get(metadata, "buyer_id") or ""
    email = _get(details, "email") or _get(session, "customer_email") or ""
    reference = _get(session, "payment_intent") or _get(session, "id")
    if not isinstance(reference, str):
        reference = _get(reference, "id") or _get(session, "id")
    customer = _get(session, "customer")
    if customer is not None and not isinstance(customer, str):
        customer = _get(customer, "id")

    items = tuple(item for item in (_line_item_from_stripe(raw) for raw in line_items) if item is not None)

    return PaymentConfirmation(
        buyer_id=str(buyer_id),
        payment_reference=str(reference),
        customer_email=str(email),
        customer_name=_get(details, "name"),
        country=_get(address, "country"),
        payment_customer_id=customer,
        currency=str(_get(session, "currency") or "usd").upper(),
        discount_tier_name=_get(metadata, "bundle_tier") or None,
        line_items=items,
    )
