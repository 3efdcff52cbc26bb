"""Turn verified Stripe webhook deliveries into fulfillment runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

import stripe
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.models.webhook_event import WebhookEvent, WebhookProviderEnum
from coursecart_api.observability.fulfillment import get_fulfillment_store
from coursecart_api.services.fulfillment import (
    FulfillmentIncomplete,
    FulfillmentOrchestrator,
    FulfillmentReport,
    LmsClient,
    SignatureError,
    build_orchestrator,
)
from coursecart_api.services.notifications import NotificationService

from .confirmation import confirmation_from_checkout_session
from .stripe_service import StripeService

CHECKOUT_COMPLETED = "checkout.session.completed"
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"

OrchestratorFactory = Callable[[AsyncSession, LmsClient], FulfillmentOrchestrator]


@dataclass
class WebhookResult:
    event_id: str | None
    event_type: str
    status: str
    report: FulfillmentReport | None = None


def _default_orchestrator(db_session: AsyncSession, lms_client: LmsClient) -> FulfillmentOrchestrator:
    return build_orchestrator(db_session, lms_client=lms_client, notifier=NotificationService())


class PaymentWebhookService:
    """Verify, deduplicate and dispatch payment gateway events."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        stripe_service: StripeService | None = None,
        lms_client_factory: Callable[[], LmsClient] = LmsClient,
        orchestrator_factory: OrchestratorFactory = _default_orchestrator,
    ) -> None:
        self._db = db_session
        self._stripe = stripe_service or StripeService()
        self._lms_client_factory = lms_client_factory
        self._orchestrator_factory = orchestrator_factory

    async def verify(self, payload: bytes, signature: str) -> Mapping[str, Any]:
        """Raises ``SignatureError`` when the delivery is not authentic."""
        try:
            return await self._stripe.construct_webhook_event(payload, signature)
        except stripe.SignatureVerificationError as exc:
            raise SignatureError("Invalid webhook signature") from exc
        except ValueError as exc:
            raise SignatureError("Malformed webhook payload") from exc

    async def process_event(self, event: Mapping[str, Any]) -> WebhookResult:
        event_id = event.get("id")
        event_type = event.get("type") or "unknown"
        observability = get_fulfillment_store()

        if event_id and await self._already_processed(event_id):
            logger.info("Skipping replayed webhook event", event_id=event_id, event_type=event_type)
            observability.record_webhook(event_type, "skipped")
            return WebhookResult(event_id=event_id, event_type=event_type, status="duplicate")

        report: FulfillmentReport | None = None
        status = "ignored"
        if event_type in (CHECKOUT_COMPLETED, ASYNC_PAYMENT_SUCCEEDED):
            session = event["data"]["object"]
            if event_type == CHECKOUT_COMPLETED and session.get("payment_status") != "paid":
                logger.info(
                    "Checkout completed without payment yet; awaiting async confirmation",
                    event_id=event_id,
                    session_id=session.get("id"),
                )
            else:
                report = await self._fulfill(session)
                if report.retryable:
                    logger.error(
                        "Fulfillment aborted before the order was stored; leaving event unrecorded for redelivery",
                        event_id=event_id,
                        payment_reference=report.payment_reference,
                        reason=report.aborted_reason,
                    )
                    observability.record_webhook(event_type, "failed")
                    raise FulfillmentIncomplete(report.aborted_reason or "order insert failed")
                status = "processed"

        await self._mark_processed(event_id, event_type)
        observability.record_webhook(event_type, status)
        return WebhookResult(event_id=event_id, event_type=event_type, status=status, report=report)

    async def _fulfill(self, session: Mapping[str, Any]) -> FulfillmentReport:
        line_items = await self._stripe.list_line_items(session["id"])
        confirmation = confirmation_from_checkout_session(session, line_items)
        async with self._lms_client_factory() as lms_client:
            orchestrator = self._orchestrator_factory(self._db, lms_client)
            return await orchestrator.run(confirmation)

    async def _already_processed(self, event_id: str) -> bool:
        stmt = select(WebhookEvent.id).where(
            WebhookEvent.provider == WebhookProviderEnum.STRIPE,
            WebhookEvent.external_id == event_id,
        )
        return (await self._db.scalar(stmt)) is not None

    async def _mark_processed(self, event_id: str | None, event_type: str) -> None:
        if not event_id:
            return
        self._db.add(WebhookEvent(provider=WebhookProviderEnum.STRIPE, external_id=event_id, event_type=event_type))
        try:
            await self._db.commit()
        except IntegrityError:
            # a concurrent delivery of the same event got there first
            await self._db.rollback()
