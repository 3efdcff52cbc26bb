"""Self-service refunds for individual enrollments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping
from uuid import UUID

import httpx
import stripe
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.core.settings import get_settings
from coursecart_api.models.catalog import ProductTypeEnum
from coursecart_api.models.enrollment import Enrollment, EnrollmentLifecycleEnum, EnrollmentOutcomeEnum
from coursecart_api.models.lms_identity import LmsIdentity
from coursecart_api.models.order import Order, PaymentStatusEnum
from coursecart_api.services.catalog.options import to_decimal
from coursecart_api.services.fulfillment.errors import LmsRequestError
from coursecart_api.services.fulfillment.lms_client import LmsClient
from coursecart_api.services.notifications import NotificationService
from coursecart_api.services.payments.stripe_service import StripeService

_CENT = Decimal("0.01")
DEFAULT_REFUND_REASON = "User requested refund"


class RefundNotFound(LookupError):
    pass


class RefundNotEligible(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class RefundError(Exception):
    """The payment gateway refused the refund; nothing was changed."""


@dataclass(frozen=True)
class RefundQuote:
    enrollment_id: UUID
    product_title: str
    purchase_date: datetime
    days_elapsed: int
    original_amount: Decimal
    processing_fee_percent: Decimal
    processing_fee_amount: Decimal
    refund_amount: Decimal

    @property
    def processing_fee_applied(self) -> bool:
        return self.processing_fee_amount > 0


@dataclass(frozen=True)
class RefundOutcome:
    refund_id: str
    amount: Decimal
    payment_status: PaymentStatusEnum
    unenrolled: bool


def _as_aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def find_purchased_item(order: Order, enrollment: Enrollment) -> Mapping[str, Any] | None:
    items = [item for item in (order.purchased_items or []) if isinstance(item, Mapping)]
    for item in items:
        if item.get("product_id") == enrollment.product_id and item.get("enroll_key") == enrollment.enroll_key:
            return item
    for item in items:
        if item.get("product_id") == enrollment.product_id:
            return item
    return None


class RefundService:
    """Check eligibility for, and process, single-item refunds."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        stripe_service: StripeService | None = None,
        lms_client: LmsClient | None = None,
        notifier: NotificationService | None = None,
    ) -> None:
        self._db = db_session
        self._stripe = stripe_service or StripeService()
        self._lms = lms_client
        self._notifier = notifier or NotificationService()

    async def check_eligibility(
        self,
        buyer_id: str,
        enrollment_id: UUID,
        *,
        now: datetime | None = None,
    ) -> RefundQuote:
        """Quote the refund for one enrollment.

        Raises:
            RefundNotFound: Unknown enrollment, order or purchased item.
            RefundNotEligible: Policy forbids the refund.
        """
        enrollment, order = await self._load(buyer_id, enrollment_id)
        return self._quote(enrollment, order, now or datetime.now(timezone.utc))

    async def process_refund(
        self,
        buyer_id: str,
        enrollment_id: UUID,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> RefundOutcome:
        moment = now or datetime.now(timezone.utc)
        enrollment, order = await self._load(buyer_id, enrollment_id)
        quote = self._quote(enrollment, order, moment)
        refund_reason = reason or DEFAULT_REFUND_REASON

        try:
            refund = await self._stripe.create_refund(
                order.payment_reference,
                amount=_cents(quote.refund_amount),
                metadata={
                    "enrollment_id": str(enrollment.id),
                    "product_id": enrollment.product_id,
                    "product_title": quote.product_title,
                    "buyer_id": buyer_id,
                },
            )
        except stripe.StripeError as exc:
            raise RefundError(str(exc)) from exc

        unenrolled = await self._unenroll(order, enrollment)

        enrollment.lifecycle_status = EnrollmentLifecycleEnum.REFUNDED
        enrollment.refund_reason = refund_reason
        enrollment.refunded_at = moment

        refunded_items = list(order.refunded_items or [])
        refunded_items.append(
            {
                "product_id": enrollment.product_id,
                "product_type": enrollment.product_type.value,
                "product_title": quote.product_title,
                "refund_amount": str(quote.refund_amount),
                "refunded_at": moment.isoformat(),
                "enrollment_id": str(enrollment.id),
            }
        )
        order.refunded_items = refunded_items
        order.refund_amount = Decimal(order.refund_amount or 0) + quote.refund_amount
        order.refund_reason = refund_reason
        order.refunded_at = moment
        all_refunded = len(refunded_items) >= len(order.purchased_items or [])
        order.payment_status = PaymentStatusEnum.REFUNDED if all_refunded else PaymentStatusEnum.PARTIALLY_REFUNDED
        await self._db.commit()

        logger.info(
            "Refund processed",
            buyer_id=buyer_id,
            order_id=str(order.id),
            enrollment_id=str(enrollment.id),
            refund_id=refund.id,
            amount=str(quote.refund_amount),
            payment_status=order.payment_status.value,
        )

        try:
            await self._notifier.send_refund_update(order, product_title=quote.product_title, amount=quote.refund_amount)
        except Exception as exc:
            logger.error("Refund email failed", order_id=str(order.id), error=str(exc))

        return RefundOutcome(
            refund_id=refund.id,
            amount=quote.refund_amount,
            payment_status=order.payment_status,
            unenrolled=unenrolled,
        )

    async def _load(self, buyer_id: str, enrollment_id: UUID) -> tuple[Enrollment, Order]:
        stmt = select(Enrollment).where(Enrollment.id == enrollment_id, Enrollment.buyer_id == buyer_id)
        enrollment = (await self._db.execute(stmt)).scalar_one_or_none()
        if enrollment is None:
            raise RefundNotFound("Enrollment not found")
        order = await self._db.get(Order, enrollment.order_id)
        if order is None:
            raise RefundNotFound("Order not found")
        return enrollment, order

    def _quote(self, enrollment: Enrollment, order: Order, now: datetime) -> RefundQuote:
        settings = get_settings()
        if enrollment.lifecycle_status == EnrollmentLifecycleEnum.REFUNDED:
            raise RefundNotEligible("This item has already been refunded.")
        if (
            enrollment.outcome != EnrollmentOutcomeEnum.SUCCESS
            or enrollment.lifecycle_status != EnrollmentLifecycleEnum.ACTIVE
        ):
            raise RefundNotEligible("Only active enrollments are eligible for refunds.")

        is_bundle = enrollment.product_type == ProductTypeEnum.BUNDLE
        window_days = settings.refund_bundle_window_days if is_bundle else settings.refund_course_window_days
        days_elapsed = (now - _as_aware(order.paid_at)).days
        if days_elapsed > window_days:
            noun = "bundles" if is_bundle else "courses"
            raise RefundNotEligible(
                f"Refund requests for {noun} must be made within {window_days} days of purchase. "
                f"Your purchase was {days_elapsed} days ago."
            )

        item = find_purchased_item(order, enrollment)
        if item is None:
            raise RefundNotFound("Purchase item not found")

        original = (to_decimal(item.get("price")) or Decimal("0")).quantize(_CENT, rounding=ROUND_HALF_UP)
        fee_percent = Decimal(str(settings.refund_processing_fee_percent))
        fee = (original * fee_percent / 100).quantize(_CENT, rounding=ROUND_HALF_UP)
        return RefundQuote(
            enrollment_id=enrollment.id,
            product_title=enrollment.title or str(item.get("title") or enrollment.product_id),
            purchase_date=_as_aware(order.paid_at),
            days_elapsed=days_elapsed,
            original_amount=original,
            processing_fee_percent=fee_percent,
            processing_fee_amount=fee,
            refund_amount=max(Decimal("0"), original - fee),
        )

    async def _unenroll(self, order: Order, enrollment: Enrollment) -> bool:
        identity = await self._db.get(LmsIdentity, enrollment.buyer_id)
        email = identity.email if identity else order.customer_email
        product_type = enrollment.lms_product_type or enrollment.product_type.value
        lms = self._lms or LmsClient()
        try:
            await lms.unenroll(email, enrollment.enroll_key, product_type)
        except (LmsRequestError, httpx.HTTPError) as exc:
            logger.error(
                "LMS unenrollment failed; reconcile manually",
                enrollment_id=str(enrollment.id),
                enroll_key=enrollment.enroll_key,
                error=str(exc),
            )
            return False
        finally:
            if self._lms is None:
                await lms.aclose()
        return True
