"""Forward-only fulfillment saga run once per confirmed payment."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from loguru import logger

from coursecart_api.models.enrollment import Enrollment, EnrollmentOutcomeEnum
from coursecart_api.models.order import Order
from coursecart_api.observability.fulfillment import FulfillmentObservabilityStore, get_fulfillment_store
from coursecart_api.services.payments.confirmation import PaymentConfirmation, PurchasedLineItem

from .errors import DuplicatePayment, PersistenceError
from .identity import IdentityProvisioner
from .lms_client import EnrollmentRequest, LmsClient
from .retry import RetryPolicy, Sleeper
from .store import EnrollmentRecord, FulfillmentStore, IdentityMapping
from .validity import compute_expiry


class FulfillmentStage(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    ITEMS_EXTRACTED = "items_extracted"
    ORDER_CREATED = "order_created"
    CART_CLEARED = "cart_cleared"
    CUSTOMER_REF_UPDATED = "customer_ref_updated"
    CONFIRMATION_EMAIL_SENT = "confirmation_email_sent"
    LMS_IDENTITY_PROVISIONED = "lms_identity_provisioned"
    ENROLLING = "enrolling"
    ENROLLMENT_EMAIL_SENT = "enrollment_email_sent"
    COMPLETE = "complete"


class Notifier(Protocol):
    async def send_order_confirmation(self, order: Order) -> None: ...

    async def send_enrollment_ready(self, *, email: str, name: str | None, item_count: int) -> None: ...


@dataclass
class FulfillmentReport:
    payment_reference: str
    buyer_id: str
    stages: list[FulfillmentStage] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    order: Order | None = None
    enrollments: list[Enrollment] = field(default_factory=list)
    aborted_reason: str | None = None
    # Set when the abort was not a replay, so the payment still needs an order
    retryable: bool = False

    @property
    def completed(self) -> bool:
        return FulfillmentStage.COMPLETE in self.stages

    @property
    def succeeded_count(self) -> int:
        return sum(1 for row in self.enrollments if row.outcome == EnrollmentOutcomeEnum.SUCCESS)

    @property
    def failed_count(self) -> int:
        return sum(1 for row in self.enrollments if row.outcome == EnrollmentOutcomeEnum.FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FulfillmentOrchestrator:
    """Persist the order, provision LMS access and enroll each purchased item.

    Only the order insert is a hard gate. Every later step is attempted,
    logged on failure and skipped; nothing already done is rolled back.
    """

    def __init__(
        self,
        store: FulfillmentStore,
        lms_client: LmsClient,
        notifier: Notifier,
        *,
        retry_policy: RetryPolicy | None = None,
        identity_pacing_seconds: float = 1.0,
        enrollment_pacing_seconds: float = 1.0,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
        observability: FulfillmentObservabilityStore | None = None,
    ) -> None:
        self._store = store
        self._lms = lms_client
        self._notifier = notifier
        self._retry = retry_policy or RetryPolicy()
        self._enrollment_pacing_seconds = enrollment_pacing_seconds
        self._sleep = sleep
        self._clock = clock
        self._observability = observability or get_fulfillment_store()
        self._identity = IdentityProvisioner(
            store,
            lms_client,
            pacing_seconds=identity_pacing_seconds,
            sleep=sleep,
        )

    async def run(self, confirmation: PaymentConfirmation) -> FulfillmentReport:
        report = FulfillmentReport(
            payment_reference=confirmation.payment_reference,
            buyer_id=confirmation.buyer_id,
        )
        context: dict[str, Any] = {
            "buyer_id": confirmation.buyer_id,
            "payment_reference": confirmation.payment_reference,
        }
        self._advance(report, FulfillmentStage.RECEIVED, context)
        # Confirmations are only built from signature-checked events
        self._advance(report, FulfillmentStage.VERIFIED, context)

        if not confirmation.line_items:
            report.aborted_reason = "no line items"
            logger.warning("Payment confirmation has no fulfillable line items; skipping", **context)
            self._observability.record_run(report)
            return report
        self._advance(report, FulfillmentStage.ITEMS_EXTRACTED, context, items=len(confirmation.line_items))

        try:
            order = await self._store.create_order(confirmation)
        except PersistenceError as exc:
            report.aborted_reason = str(exc)
            report.retryable = not isinstance(exc, DuplicatePayment)
            logger.error("Order insert failed; aborting fulfillment", error=str(exc), **context)
            self._observability.record_run(report)
            return report
        report.order = order
        context.update(order_id=str(order.id), order_number=order.order_number)
        self._advance(report, FulfillmentStage.ORDER_CREATED, context)

        cleared = await self._attempt(
            report,
            FulfillmentStage.CART_CLEARED,
            context,
            lambda: self._store.clear_cart(confirmation.buyer_id),
        )
        if cleared:
            self._advance(report, FulfillmentStage.CART_CLEARED, context)

        if confirmation.payment_customer_id:
            updated = await self._attempt(
                report,
                FulfillmentStage.CUSTOMER_REF_UPDATED,
                context,
                lambda: self._store.update_payment_customer(confirmation.buyer_id, confirmation.payment_customer_id),
            )
            if updated:
                self._advance(report, FulfillmentStage.CUSTOMER_REF_UPDATED, context)

        if await self._attempt(
            report,
            FulfillmentStage.CONFIRMATION_EMAIL_SENT,
            context,
            lambda: self._notifier.send_order_confirmation(order),
        ):
            self._advance(report, FulfillmentStage.CONFIRMATION_EMAIL_SENT, context)

        identity: IdentityMapping | None = None
        try:
            identity = await self._identity.provision(
                confirmation.buyer_id,
                confirmation.customer_email,
                confirmation.customer_name,
            )
        except Exception as exc:
            report.failures[FulfillmentStage.LMS_IDENTITY_PROVISIONED.value] = str(exc)
            logger.error("LMS identity provisioning failed; enrollments will fail", error=str(exc), **context)
        else:
            self._advance(report, FulfillmentStage.LMS_IDENTITY_PROVISIONED, context, lms_user_id=identity.external_user_id)

        self._advance(report, FulfillmentStage.ENROLLING, context)
        for item in confirmation.line_items:
            enrollment = await self._enroll_item(order, confirmation, item, identity, report, context)
            if enrollment is not None:
                report.enrollments.append(enrollment)

        if report.succeeded_count:
            sent = await self._attempt(
                report,
                FulfillmentStage.ENROLLMENT_EMAIL_SENT,
                context,
                lambda: self._notifier.send_enrollment_ready(
                    email=confirmation.customer_email,
                    name=confirmation.customer_name,
                    item_count=report.succeeded_count,
                ),
            )
            if sent:
                self._advance(report, FulfillmentStage.ENROLLMENT_EMAIL_SENT, context)

        self._advance(
            report,
            FulfillmentStage.COMPLETE,
            context,
            succeeded=report.succeeded_count,
            failed=report.failed_count,
        )
        self._observability.record_run(report)
        return report

    async def _enroll_item(
        self,
        order: Order,
        confirmation: PaymentConfirmation,
        item: PurchasedLineItem,
        identity: IdentityMapping | None,
        report: FulfillmentReport,
        context: dict[str, Any],
    ) -> Enrollment | None:
        item_context = {**context, "product_id": item.product_id, "enroll_key": item.enroll_key}
        record = await self._attempt_enrollment(order, confirmation, item, identity, item_context)
        try:
            return await self._store.record_enrollment(record)
        except Exception as exc:
            report.failures[f"enrollment:{item.product_id}"] = str(exc)
            logger.error(
                "Could not record enrollment outcome; reconcile manually",
                outcome=record.outcome.value,
                error=str(exc),
                **item_context,
            )
            return None

    async def _attempt_enrollment(
        self,
        order: Order,
        confirmation: PaymentConfirmation,
        item: PurchasedLineItem,
        identity: IdentityMapping | None,
        context: dict[str, Any],
    ) -> EnrollmentRecord:
        def failed(message: str, retries: int = 0) -> EnrollmentRecord:
            return EnrollmentRecord(
                buyer_id=confirmation.buyer_id,
                order_id=order.id,
                item=item,
                outcome=EnrollmentOutcomeEnum.FAILED,
                retry_count=retries,
                error_message=message,
            )

        if identity is None:
            logger.warning("Skipping enrollment without an LMS identity", **context)
            return failed("LMS identity unavailable")

        request = EnrollmentRequest(
            email=identity.email,
            product_id=item.enroll_key,
            product_type=item.lms_product_type or item.product_type,
            price=item.discounted_price,
            duration=item.validity_duration,
            duration_unit=item.validity_unit,
        )

        await self._sleep(self._enrollment_pacing_seconds)
        try:
            outcome = await self._retry.run(lambda: self._lms.enroll(request), sleep=self._sleep, context=context)
        except Exception as exc:
            logger.error("Enrollment failed", error=str(exc), **context)
            return failed(str(exc))

        if outcome.exhausted:
            message = f"rate limit exceeded after {outcome.retries} retries"
            logger.error("Enrollment failed", error=message, **context)
            return failed(message, outcome.retries)

        enrolled_at = self._clock()
        logger.info("Enrolled buyer", retries=outcome.retries, **context)
        return EnrollmentRecord(
            buyer_id=confirmation.buyer_id,
            order_id=order.id,
            item=item,
            outcome=EnrollmentOutcomeEnum.SUCCESS,
            retry_count=outcome.retries,
            enrolled_at=enrolled_at,
            expires_at=compute_expiry(enrolled_at, item.validity_duration, item.validity_unit),
        )

    async def _attempt(
        self,
        report: FulfillmentReport,
        stage: FulfillmentStage,
        context: dict[str, Any],
        step: Callable[[], Awaitable[Any]],
    ) -> bool:
        try:
            await step()
        except Exception as exc:
            report.failures[stage.value] = str(exc)
            logger.error("Fulfillment step failed; continuing", stage=stage.value, error=str(exc), **context)
            return False
        return True

    @staticmethod
    def _advance(
        report: FulfillmentReport,
        stage: FulfillmentStage,
        context: dict[str, Any],
        **details: Any,
    ) -> None:
        report.stages.append(stage)
        logger.info("Fulfillment stage reached", stage=stage.value, **context, **details)
