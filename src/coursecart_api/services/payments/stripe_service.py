"""Stripe payment gateway operations."""

from typing import Any, Dict, Optional

import stripe
from loguru import logger

from coursecart_api.core.settings import get_settings


class StripeService:
    """Service for handling Stripe payment operations."""

    def __init__(self):
        settings = get_settings()
        stripe.api_key = settings.stripe_secret_key
        self.webhook_secret = settings.stripe_webhook_secret

    async def create_checkout_session(
        self,
        *,
        buyer_id: str,
        line_items: list[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        customer_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> stripe.checkout.Session:
        """Create a Stripe Checkout session for a course purchase.

        Args:
            buyer_id: Buyer identifier, echoed back as ``client_reference_id``
            line_items: Stripe ``price_data`` line items
            success_url: URL to redirect after successful payment
            cancel_url: URL to redirect after cancelled payment
            customer_email: Prefill for first-time buyers
            customer_id: Existing Stripe customer, reused when known
            metadata: Additional metadata to attach to the session

        Returns:
            Stripe checkout session object

        Raises:
            stripe.StripeError: If session creation fails
        """
        session_metadata = {"buyer_id": buyer_id}
        if metadata:
            session_metadata.update(metadata)

        session_data: Dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": buyer_id,
            "metadata": session_metadata,
            "payment_intent_data": {"metadata": session_metadata},
            "billing_address_collection": "required",
        }
        if customer_id:
            session_data["customer"] = customer_id
        else:
            session_data["customer_creation"] = "always"
            if customer_email:
                session_data["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(**session_data)
        except stripe.StripeError as e:
            logger.error("Failed to create Stripe checkout session", buyer_id=buyer_id, error=str(e))
            raise

        logger.info(
            "Created Stripe checkout session",
            session_id=session.id,
            buyer_id=buyer_id,
            amount=sum(item["price_data"]["unit_amount"] * item.get("quantity", 1) for item in line_items),
        )
        return session

    async def list_line_items(self, session_id: str) -> list[Dict[str, Any]]:
        """Fetch the paid line items of a session with their product metadata."""
        try:
            page = stripe.checkout.Session.list_line_items(
                session_id,
                limit=100,
                expand=["data.price.product"],
            )
        except stripe.StripeError as e:
            logger.error("Failed to list Stripe line items", session_id=session_id, error=str(e))
            raise
        return list(page.auto_paging_iter())

    async def create_refund(
        self,
        payment_intent_id: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> stripe.Refund:
        """Create a refund for a payment.

        Args:
            payment_intent_id: Stripe payment intent ID
            amount: Refund amount in cents (full refund if None)
            reason: Stripe refund reason
            metadata: Bookkeeping attached to the refund

        Returns:
            Stripe refund object

        Raises:
            stripe.StripeError: If refund creation fails
        """
        refund_data: Dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount is not None:
            refund_data["amount"] = amount
        if reason:
            refund_data["reason"] = reason
        if metadata:
            refund_data["metadata"] = metadata

        try:
            refund = stripe.Refund.create(**refund_data)
        except stripe.StripeError as e:
            logger.error("Failed to create refund", payment_intent_id=payment_intent_id, error=str(e))
            raise

        logger.info("Created refund", refund_id=refund.id, payment_intent_id=payment_intent_id, amount=amount)
        return refund

    async def construct_webhook_event(self, payload: bytes, signature: str) -> stripe.Event:
        """Verify and parse a webhook delivery.

        Raises:
            stripe.SignatureVerificationError: If signature verification fails
        """
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error("Invalid webhook signature", error=str(e))
            raise
