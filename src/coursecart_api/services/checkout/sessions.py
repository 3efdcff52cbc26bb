"""Build a payment-gateway checkout session from a validated selection."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.core.settings import get_settings
from coursecart_api.models.user import User
from coursecart_api.services.catalog.options import SelectionRequest, ValidatedItem
from coursecart_api.services.payments.confirmation import line_item_metadata
from coursecart_api.services.payments.stripe_service import StripeService

from .validator import SelectionResult, SelectionValidator


class CheckoutBlocked(Exception):
    """Selection is valid but store policy forbids paying for it."""

    def __init__(self, message: str, *, item_ids: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.item_ids = list(item_ids)


@dataclass
class CheckoutSessionResult:
    session_id: str
    checkout_url: str | None
    selection: SelectionResult


def enforce_checkout_policy(selection: SelectionResult, *, min_items: int) -> None:
    """Raise ``CheckoutBlocked`` unless the selection may proceed to payment."""

    if selection.duplicates:
        titles = ", ".join(item.title for item in selection.duplicates)
        raise CheckoutBlocked(
            f"You already own: {titles}. Remove them to continue.",
            item_ids=[item.item_id for item in selection.duplicates],
        )
    if not selection.purchasable:
        raise CheckoutBlocked("Nothing left to purchase")
    if len(selection.purchasable) < min_items:
        raise CheckoutBlocked(f"Select at least {min_items} items to unlock bundle pricing")
    currencies = {item.currency for item in selection.purchasable}
    if len(currencies) > 1:
        raise CheckoutBlocked(f"Items use different currencies: {', '.join(sorted(currencies))}")


def build_line_items(selection: SelectionResult) -> list[Dict[str, Any]]:
    line_items: list[Dict[str, Any]] = []
    for item in selection.purchasable:
        paid = selection.discounted_price_for(item)
        product_data: Dict[str, Any] = {
            "name": item.title,
            "metadata": _item_metadata(item, paid),
        }
        if item.thumbnail_url:
            product_data["images"] = [item.thumbnail_url]
        line_items.append(
            {
                "price_data": {
                    "currency": item.currency.lower(),
                    "unit_amount": int((paid * 100).to_integral_value(rounding=ROUND_HALF_UP)),
                    "product_data": product_data,
                },
                "quantity": 1,
            }
        )
    return line_items


def _item_metadata(item: ValidatedItem, paid: Decimal) -> dict[str, str]:
    return line_item_metadata(
        product_id=item.item_id,
        enroll_key=item.enroll_key,
        product_type=item.product_type,
        lms_product_type=item.lms_product_type,
        title=item.title,
        discounted_price=paid,
        list_price=item.price,
        validity_duration=item.validity_duration,
        validity_unit=item.validity_unit,
    )


class CheckoutSessionService:
    """Validate a buyer's selection and open a Stripe Checkout session for it."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        stripe_service: StripeService | None = None,
        validator: SelectionValidator | None = None,
    ) -> None:
        self._db = db_session
        self._stripe = stripe_service or StripeService()
        self._validator = validator or SelectionValidator(db_session)

    async def create_session(
        self,
        buyer_id: str,
        requests: Sequence[SelectionRequest],
        *,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> CheckoutSessionResult:
        settings = get_settings()
        selection = await self._validator.validate(buyer_id, requests)
        enforce_checkout_policy(selection, min_items=settings.bundle_min_items)

        user = await self._db.get(User, buyer_id)
        metadata = {
            "bundle_tier": selection.tier_name or "",
            "discount_applied_percent": str(selection.discount_percent),
            "bundle_course_count": str(len(selection.purchasable)),
        }
        session = await self._stripe.create_checkout_session(
            buyer_id=buyer_id,
            line_items=build_line_items(selection),
            success_url=success_url or f"{settings.frontend_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url or f"{settings.frontend_url}/cart",
            customer_email=user.email if user else None,
            customer_id=user.payment_customer_id if user else None,
            metadata=metadata,
        )

        logger.info(
            "Checkout session ready",
            buyer_id=buyer_id,
            session_id=session.id,
            items=len(selection.purchasable),
            tier=selection.tier_name,
            discounted_subtotal=str(selection.discounted_subtotal),
        )
        return CheckoutSessionResult(session_id=session.id, checkout_url=session.url, selection=selection)
