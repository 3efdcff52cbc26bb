"""Durable writes performed by the fulfillment saga."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.models.cart import CartItem
from coursecart_api.models.catalog import ProductTypeEnum
from coursecart_api.models.enrollment import Enrollment, EnrollmentLifecycleEnum, EnrollmentOutcomeEnum
from coursecart_api.models.lms_identity import LmsIdentity
from coursecart_api.models.order import Order, PaymentStatusEnum
from coursecart_api.models.user import User
from coursecart_api.services.payments.confirmation import PaymentConfirmation, PurchasedLineItem

from .errors import CartClearError, CustomerUpdateError, DuplicatePayment, IdentityProvisionError, PersistenceError

_ORDER_NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class IdentityMapping:
    buyer_id: str
    external_user_id: str
    email: str


@dataclass(frozen=True)
class EnrollmentRecord:
    """Terminal outcome for one purchased item."""

    buyer_id: str
    order_id: object
    item: PurchasedLineItem
    outcome: EnrollmentOutcomeEnum
    retry_count: int = 0
    enrolled_at: datetime | None = None
    expires_at: datetime | None = None
    error_message: str | None = None


class FulfillmentStore(Protocol):
    async def create_order(self, confirmation: PaymentConfirmation) -> Order: ...

    async def clear_cart(self, buyer_id: str) -> int: ...

    async def update_payment_customer(self, buyer_id: str, payment_customer_id: str) -> None: ...

    async def get_identity(self, buyer_id: str) -> IdentityMapping | None: ...

    async def save_identity(self, mapping: IdentityMapping) -> IdentityMapping: ...

    async def record_enrollment(self, record: EnrollmentRecord) -> Enrollment: ...


def _product_type(value: str) -> ProductTypeEnum:
    try:
        return ProductTypeEnum(value)
    except ValueError:
        return ProductTypeEnum.COURSE


class SqlAlchemyFulfillmentStore:
    """``FulfillmentStore`` backed by the service database. Each write commits."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def create_order(self, confirmation: PaymentConfirmation) -> Order:
        """Insert the order for a confirmed payment.

        Order numbers count up from the number of stored orders. A concurrent
        saga can claim the same number first; the insert is then retried with
        the next free number, up to ``_ORDER_NUMBER_ATTEMPTS`` times.

        Raises:
            DuplicatePayment: The payment reference already has an order.
            PersistenceError: Any other failure writing the row.
        """
        existing = await self._db.scalar(
            select(Order.id).where(Order.payment_reference == confirmation.payment_reference)
        )
        if existing is not None:
            raise DuplicatePayment(confirmation.payment_reference)

        last_tried = 0
        for attempt in range(1, _ORDER_NUMBER_ATTEMPTS + 1):
            try:
                await self._ensure_user(confirmation)
                order_count = await self._db.scalar(select(func.count(Order.id)))
                sequence = max((order_count or 0) + 1, last_tried + 1)
                order = self._build_order(confirmation, f"CC{sequence:06d}")
                self._db.add(order)
                await self._db.commit()
            except IntegrityError as exc:
                await self._db.rollback()
                duplicate = await self._db.scalar(
                    select(Order.id).where(Order.payment_reference == confirmation.payment_reference)
                )
                if duplicate is not None:
                    raise DuplicatePayment(confirmation.payment_reference) from exc
                if "order_number" not in str(exc.orig):
                    raise PersistenceError(str(exc.orig)) from exc
                last_tried = sequence
                logger.warning(
                    "Order number taken by a concurrent checkout; retrying",
                    order_number=f"CC{sequence:06d}",
                    attempt=attempt,
                    payment_reference=confirmation.payment_reference,
                )
                continue
            except SQLAlchemyError as exc:
                await self._db.rollback()
                raise PersistenceError(str(exc)) from exc
            return order

        raise PersistenceError(
            f"Could not assign an order number after {_ORDER_NUMBER_ATTEMPTS} attempts"
        )

    @staticmethod
    def _build_order(confirmation: PaymentConfirmation, order_number: str) -> Order:
        return Order(
            order_number=order_number,
            buyer_id=confirmation.buyer_id,
            payment_reference=confirmation.payment_reference,
            payment_status=PaymentStatusEnum.COMPLETED,
            subtotal=confirmation.subtotal,
            discount=confirmation.discount,
            discount_tier_name=confirmation.discount_tier_name,
            total=confirmation.total,
            currency=confirmation.currency,
            customer_email=confirmation.customer_email,
            customer_name=confirmation.customer_name,
            country=confirmation.country,
            purchased_items=[item.snapshot() for item in confirmation.line_items],
            paid_at=datetime.now(timezone.utc),
            refund_amount=Decimal("0"),
            refunded_items=[],
        )

    async def _ensure_user(self, confirmation: PaymentConfirmation) -> None:
        user = await self._db.get(User, confirmation.buyer_id)
        if user is None:
            self._db.add(
                User(
                    id=confirmation.buyer_id,
                    email=confirmation.customer_email,
                    display_name=confirmation.customer_name,
                )
            )
            await self._db.flush()

    async def clear_cart(self, buyer_id: str) -> int:
        try:
            result = await self._db.execute(delete(CartItem).where(CartItem.user_id == buyer_id))
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise CartClearError(str(exc)) from exc
        return result.rowcount or 0

    async def update_payment_customer(self, buyer_id: str, payment_customer_id: str) -> None:
        try:
            user = await self._db.get(User, buyer_id)
            if user is None:
                raise CustomerUpdateError(f"User {buyer_id} not found")
            user.payment_customer_id = payment_customer_id
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise CustomerUpdateError(str(exc)) from exc

    async def get_identity(self, buyer_id: str) -> IdentityMapping | None:
        row = await self._db.get(LmsIdentity, buyer_id)
        if row is None:
            return None
        return IdentityMapping(buyer_id=row.buyer_id, external_user_id=row.external_user_id, email=row.email)

    async def save_identity(self, mapping: IdentityMapping) -> IdentityMapping:
        """Persist a mapping unless one exists; the stored one always wins."""
        try:
            existing = await self._db.get(LmsIdentity, mapping.buyer_id)
            if existing is not None:
                logger.info("LMS identity already stored; keeping it", buyer_id=mapping.buyer_id)
                return IdentityMapping(
                    buyer_id=existing.buyer_id,
                    external_user_id=existing.external_user_id,
                    email=existing.email,
                )
            self._db.add(
                LmsIdentity(
                    buyer_id=mapping.buyer_id,
                    external_user_id=mapping.external_user_id,
                    email=mapping.email,
                )
            )
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise IdentityProvisionError(str(exc)) from exc
        return mapping

    async def record_enrollment(self, record: EnrollmentRecord) -> Enrollment:
        succeeded = record.outcome == EnrollmentOutcomeEnum.SUCCESS
        enrollment = Enrollment(
            buyer_id=record.buyer_id,
            order_id=record.order_id,
            product_id=record.item.product_id,
            product_type=_product_type(record.item.product_type),
            lms_product_type=record.item.lms_product_type,
            enroll_key=record.item.enroll_key,
            title=record.item.title,
            price=record.item.discounted_price,
            validity_duration=record.item.validity_duration,
            validity_unit=record.item.validity_unit,
            enrolled_at=record.enrolled_at if succeeded else None,
            expires_at=record.expires_at if succeeded else None,
            outcome=record.outcome,
            lifecycle_status=EnrollmentLifecycleEnum.ACTIVE if succeeded else EnrollmentLifecycleEnum.PENDING,
            error_message=None if succeeded else record.error_message,
            retry_count=record.retry_count,
        )
        self._db.add(enrollment)
        try:
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise PersistenceError(str(exc)) from exc
        return enrollment
