from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import select

from coursecart_api.models.enrollment import Enrollment, EnrollmentLifecycleEnum, EnrollmentOutcomeEnum
from coursecart_api.models.lms_identity import LmsIdentity
from coursecart_api.models.order import Order
from coursecart_api.models.user import User
from coursecart_api.observability.fulfillment import FulfillmentObservabilityStore
from coursecart_api.services.fulfillment import (
    DuplicatePayment,
    EnrollmentRateLimited,
    EnrollmentRejected,
    FulfillmentOrchestrator,
    FulfillmentStage,
    IdentityMapping,
    LmsUser,
    PersistenceError,
    RetryPolicy,
    SqlAlchemyFulfillmentStore,
)
from coursecart_api.services.payments.confirmation import PaymentConfirmation, PurchasedLineItem

NOW = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)


def _line_item(product_id: str, **overrides) -> PurchasedLineItem:
    fields = {
        "product_id": product_id,
        "enroll_key": f"{product_id}-key",
        "product_type": "course",
        "lms_product_type": "course",
        "title": f"Course {product_id}",
        "discounted_price": Decimal("281"),
        "list_price": Decimal("299"),
        "validity_duration": 1,
        "validity_unit": "months",
    }
    fields.update(overrides)
    return PurchasedLineItem(**fields)


def _confirmation(*items: PurchasedLineItem, **overrides) -> PaymentConfirmation:
    fields = {
        "buyer_id": "buyer-1",
        "payment_reference": "pi_123",
        "customer_email": "learner@example.com",
        "customer_name": "Sam Learner",
        "payment_customer_id": "cus_123",
        "line_items": tuple(items),
    }
    fields.update(overrides)
    return PaymentConfirmation(**fields)


class FakeStore:
    def __init__(self, *, fail_order: Exception | None = None, identity: IdentityMapping | None = None) -> None:
        self.fail_order = fail_order
        self.identity = identity
        self.orders: list[Order] = []
        self.records = []
        self.saved_identities: list[IdentityMapping] = []
        self.cleared: list[str] = []

    async def create_order(self, confirmation):
        if self.fail_order is not None:
            raise self.fail_order
        order = Order(
            id=uuid4(),
            order_number="CC000001",
            buyer_id=confirmation.buyer_id,
            payment_reference=confirmation.payment_reference,
            customer_email=confirmation.customer_email,
            purchased_items=[item.snapshot() for item in confirmation.line_items],
        )
        self.orders.append(order)
        return order

    async def clear_cart(self, buyer_id):
        self.cleared.append(buyer_id)
        return 1

    async def update_payment_customer(self, buyer_id, payment_customer_id):
        return None

    async def get_identity(self, buyer_id):
        return self.identity

    async def save_identity(self, mapping):
        self.saved_identities.append(mapping)
        self.identity = mapping
        return mapping

    async def record_enrollment(self, record):
        self.records.append(record)
        return SimpleNamespace(outcome=record.outcome, record=record)


class FakeLms:
    def __init__(self, responses: dict[str, list] | None = None, *, existing_user: LmsUser | None = None) -> None:
        self.responses = responses or {}
        self.existing_user = existing_user
        self.enroll_calls: list = []
        self.lookups: list[str] = []
        self.created: list[str] = []

    async def find_user_by_email(self, email):
        self.lookups.append(email)
        return self.existing_user

    async def create_user(self, email, display_name=None):
        self.created.append(email)
        return LmsUser(id="lms-new", email=email)

    async def enroll(self, request):
        self.enroll_calls.append(request)
        queue = self.responses.get(request.product_id, [])
        outcome = queue.pop(0) if queue else {"ok": True}
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.confirmations: list[Order] = []
        self.ready: list[dict] = []

    async def send_order_confirmation(self, order):
        if self.fail:
            raise RuntimeError("smtp down")
        self.confirmations.append(order)

    async def send_enrollment_ready(self, *, email, name, item_count):
        self.ready.append({"email": email, "name": name, "item_count": item_count})


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _rate_limited() -> EnrollmentRateLimited:
    return EnrollmentRateLimited("LMS responded 429", status_code=429)


def _orchestrator(store, lms, notifier=None, sleep=None, observability=None):
    return FulfillmentOrchestrator(
        store,
        lms,
        notifier or FakeNotifier(),
        retry_policy=RetryPolicy(max_retries=3, delay_seconds=10),
        identity_pacing_seconds=1,
        enrollment_pacing_seconds=1,
        sleep=sleep or SleepRecorder(),
        clock=lambda: NOW,
        observability=observability or FulfillmentObservabilityStore(),
    )


@pytest.mark.asyncio
async def test_one_failed_item_does_not_stop_the_others():
    store = FakeStore()
    lms = FakeLms({"b-key": [EnrollmentRejected("Product not found", status_code=404)]})
    notifier = FakeNotifier()
    confirmation = _confirmation(_line_item("a"), _line_item("b"), _line_item("c"))

    report = await _orchestrator(store, lms, notifier).run(confirmation)

    outcomes = [(record.item.product_id, record.outcome) for record in store.records]
    assert outcomes == [
        ("a", EnrollmentOutcomeEnum.SUCCESS),
        ("b", EnrollmentOutcomeEnum.FAILED),
        ("c", EnrollmentOutcomeEnum.SUCCESS),
    ]
    assert store.records[1].error_message == "Product not found"
    assert [call.product_id for call in lms.enroll_calls] == ["a-key", "b-key", "c-key"]
    assert report.completed
    assert report.succeeded_count == 2
    assert report.failed_count == 1
    assert notifier.ready == [{"email": "learner@example.com", "name": "Sam Learner", "item_count": 2}]


@pytest.mark.asyncio
async def test_rate_limited_enrollment_retries_then_succeeds():
    store = FakeStore()
    lms = FakeLms({"a-key": [_rate_limited(), _rate_limited(), _rate_limited(), {"ok": True}]})
    sleep = SleepRecorder()

    await _orchestrator(store, lms, sleep=sleep).run(_confirmation(_line_item("a")))

    (record,) = store.records
    assert record.outcome == EnrollmentOutcomeEnum.SUCCESS
    assert record.retry_count == 3
    assert len(lms.enroll_calls) == 4
    # identity pacing, enrollment pacing, then three retry delays
    assert sleep.calls == [1, 1, 10, 10, 10]


@pytest.mark.asyncio
async def test_rate_limit_exhaustion_marks_item_failed():
    store = FakeStore()
    lms = FakeLms({"a-key": [_rate_limited() for _ in range(4)]})

    report = await _orchestrator(store, lms).run(_confirmation(_line_item("a")))

    (record,) = store.records
    assert record.outcome == EnrollmentOutcomeEnum.FAILED
    assert record.retry_count == 3
    assert record.error_message == "rate limit exceeded after 3 retries"
    assert len(lms.enroll_calls) == 4
    assert report.succeeded_count == 0


@pytest.mark.asyncio
async def test_rejection_after_rate_limit_fails_without_further_retries():
    store = FakeStore()
    lms = FakeLms({"a-key": [_rate_limited(), EnrollmentRejected("Invalid product", status_code=400)]})
    sleep = SleepRecorder()

    await _orchestrator(store, lms, sleep=sleep).run(_confirmation(_line_item("a")))

    (record,) = store.records
    assert record.outcome == EnrollmentOutcomeEnum.FAILED
    assert record.error_message == "Invalid product"
    assert record.retry_count == 0
    assert len(lms.enroll_calls) == 2
    assert sleep.calls == [1, 1, 10]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [httpx.ConnectError("connection refused"), RuntimeError("unexpected payload")],
)
async def test_unexpected_enroll_error_marks_item_failed_once(error):
    store = FakeStore()
    lms = FakeLms({"a-key": [error]})

    report = await _orchestrator(store, lms).run(_confirmation(_line_item("a"), _line_item("b")))

    failed, succeeded = store.records
    assert failed.outcome == EnrollmentOutcomeEnum.FAILED
    assert failed.error_message == str(error)
    assert failed.retry_count == 0
    assert succeeded.outcome == EnrollmentOutcomeEnum.SUCCESS
    assert [call.product_id for call in lms.enroll_calls] == ["a-key", "b-key"]
    assert report.completed


@pytest.mark.asyncio
async def test_successful_enrollment_expiry_uses_calendar_months():
    store = FakeStore()

    await _orchestrator(store, FakeLms()).run(_confirmation(_line_item("a")))

    (record,) = store.records
    assert record.enrolled_at == NOW
    assert record.expires_at == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_enroll_request_uses_stored_identity_and_paid_price():
    store = FakeStore(identity=IdentityMapping("buyer-1", "lms-7", "lms-login@example.com"))
    lms = FakeLms()

    await _orchestrator(store, lms).run(_confirmation(_line_item("a")))

    (request,) = lms.enroll_calls
    assert request.email == "lms-login@example.com"
    assert request.product_id == "a-key"
    assert request.price == Decimal("281")
    assert lms.lookups == []
    assert store.saved_identities == []


@pytest.mark.asyncio
async def test_missing_identity_is_created_and_saved_once():
    store = FakeStore()
    lms = FakeLms()

    report = await _orchestrator(store, lms).run(_confirmation(_line_item("a")))

    assert lms.lookups == ["learner@example.com"]
    assert lms.created == ["learner@example.com"]
    assert store.saved_identities == [IdentityMapping("buyer-1", "lms-new", "learner@example.com")]
    assert FulfillmentStage.LMS_IDENTITY_PROVISIONED in report.stages


@pytest.mark.asyncio
async def test_no_line_items_creates_nothing():
    store = FakeStore()
    observability = FulfillmentObservabilityStore()

    report = await _orchestrator(store, FakeLms(), observability=observability).run(_confirmation())

    assert store.orders == []
    assert report.order is None
    assert report.aborted_reason == "no line items"
    assert observability.snapshot().runs == {"aborted": 1}


@pytest.mark.asyncio
async def test_order_insert_failure_aborts_saga():
    store = FakeStore(fail_order=PersistenceError("database unavailable"))
    lms = FakeLms()
    notifier = FakeNotifier()

    report = await _orchestrator(store, lms, notifier).run(_confirmation(_line_item("a")))

    assert report.aborted_reason == "database unavailable"
    assert report.retryable is True
    assert FulfillmentStage.ORDER_CREATED not in report.stages
    assert store.cleared == []
    assert lms.enroll_calls == []
    assert notifier.confirmations == []


@pytest.mark.asyncio
async def test_confirmation_email_failure_is_not_fatal():
    store = FakeStore()
    notifier = FakeNotifier(fail=True)

    report = await _orchestrator(store, FakeLms(), notifier).run(_confirmation(_line_item("a")))

    assert report.completed
    assert report.failures[FulfillmentStage.CONFIRMATION_EMAIL_SENT.value] == "smtp down"
    assert store.records[0].outcome == EnrollmentOutcomeEnum.SUCCESS


@pytest.mark.asyncio
async def test_identity_failure_records_every_item_as_failed():
    class BrokenLms(FakeLms):
        async def find_user_by_email(self, email):
            raise EnrollmentRejected("LMS unavailable", status_code=500)

    store = FakeStore()
    lms = BrokenLms()
    notifier = FakeNotifier()

    report = await _orchestrator(store, lms, notifier).run(_confirmation(_line_item("a"), _line_item("b")))

    assert [record.error_message for record in store.records] == ["LMS identity unavailable"] * 2
    assert lms.enroll_calls == []
    assert notifier.ready == []
    assert report.completed


async def _run_with_database(session_factory, confirmation, lms):
    async with session_factory() as session:
        store = SqlAlchemyFulfillmentStore(session)
        return await _orchestrator(store, lms).run(confirmation)


@pytest.mark.asyncio
async def test_database_store_persists_order_and_enrollments(session_factory):
    lms = FakeLms(
        {"b-key": [EnrollmentRejected("nope", status_code=400)]},
        existing_user=LmsUser(id="lms-1", email="learner@example.com"),
    )
    confirmation = _confirmation(_line_item("a"), _line_item("b"))

    report = await _run_with_database(session_factory, confirmation, lms)

    assert report.order.order_number == "CC000001"
    async with session_factory() as session:
        order = (await session.execute(select(Order))).scalar_one()
        assert order.payment_reference == "pi_123"
        assert order.subtotal == Decimal("598")
        assert order.total == Decimal("562")
        assert [item["product_id"] for item in order.purchased_items] == ["a", "b"]

        rows = (await session.execute(select(Enrollment).order_by(Enrollment.product_id))).scalars().all()
        assert [(row.product_id, row.outcome, row.lifecycle_status) for row in rows] == [
            ("a", EnrollmentOutcomeEnum.SUCCESS, EnrollmentLifecycleEnum.ACTIVE),
            ("b", EnrollmentOutcomeEnum.FAILED, EnrollmentLifecycleEnum.PENDING),
        ]
        assert rows[0].error_message is None
        assert rows[1].error_message == "nope"

        identity = await session.get(LmsIdentity, "buyer-1")
        assert identity.external_user_id == "lms-1"


@pytest.mark.asyncio
async def test_replayed_payment_is_rejected_by_store(session_factory):
    confirmation = _confirmation(_line_item("a"))
    await _run_with_database(session_factory, confirmation, FakeLms())

    lms = FakeLms()
    report = await _run_with_database(session_factory, confirmation, lms)

    assert report.order is None
    assert "pi_123" in report.aborted_reason
    assert report.retryable is False
    assert lms.enroll_calls == []
    async with session_factory() as session:
        orders = (await session.execute(select(Order))).scalars().all()
        assert len(orders) == 1


@pytest.mark.asyncio
async def test_store_raises_duplicate_payment(session_factory):
    confirmation = _confirmation(_line_item("a"))
    async with session_factory() as session:
        store = SqlAlchemyFulfillmentStore(session)
        await store.create_order(confirmation)
        with pytest.raises(DuplicatePayment):
            await store.create_order(confirmation)


@pytest.mark.asyncio
async def test_store_never_overwrites_identity(session_factory):
    async with session_factory() as session:
        store = SqlAlchemyFulfillmentStore(session)
        await store.create_order(_confirmation(_line_item("a")))
        first = await store.save_identity(IdentityMapping("buyer-1", "lms-1", "first@example.com"))
        second = await store.save_identity(IdentityMapping("buyer-1", "lms-2", "second@example.com"))

    assert first.external_user_id == "lms-1"
    assert second.external_user_id == "lms-1"
    assert second.email == "first@example.com"


@pytest.mark.asyncio
async def test_concurrent_orders_for_different_buyers_get_distinct_numbers(session_factory):
    async def place(buyer_id: str, payment_reference: str) -> Order:
        async with session_factory() as session:
            store = SqlAlchemyFulfillmentStore(session)
            confirmation = _confirmation(
                _line_item("a"),
                buyer_id=buyer_id,
                payment_reference=payment_reference,
            )
            return await store.create_order(confirmation)

    first, second = await asyncio.gather(place("buyer-a", "pi_a"), place("buyer-b", "pi_b"))

    assert sorted([first.order_number, second.order_number]) == ["CC000001", "CC000002"]
    async with session_factory() as session:
        references = (await session.execute(select(Order.payment_reference))).scalars().all()
        assert sorted(references) == ["pi_a", "pi_b"]


@pytest.mark.asyncio
async def test_taken_order_number_moves_to_next_free_one(session_factory):
    async with session_factory() as session:
        session.add(User(id="buyer-0", email="earlier@example.com"))
        session.add(
            Order(
                order_number="CC000002",
                buyer_id="buyer-0",
                payment_reference="pi_earlier",
                customer_email="earlier@example.com",
                purchased_items=[],
            )
        )
        await session.commit()

    async with session_factory() as session:
        order = await SqlAlchemyFulfillmentStore(session).create_order(_confirmation(_line_item("a")))

    assert order.order_number == "CC000003"
    assert order.payment_reference == "pi_123"
