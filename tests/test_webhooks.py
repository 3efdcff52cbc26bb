from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from coursecart_api.models.enrollment import Enrollment, EnrollmentOutcomeEnum
from coursecart_api.models.order import Order
from coursecart_api.models.webhook_event import WebhookEvent
from coursecart_api.observability.fulfillment import FulfillmentObservabilityStore, get_fulfillment_store
from coursecart_api.services.fulfillment import (
    FulfillmentIncomplete,
    FulfillmentOrchestrator,
    FulfillmentReport,
    LmsUser,
    PersistenceError,
    SqlAlchemyFulfillmentStore,
)
from coursecart_api.services.payments.stripe_service import StripeService
from coursecart_api.services.payments.webhook_service import PaymentWebhookService


def _checkout_event(event_id: str = "evt_1", payment_status: str = "paid") -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_1",
                "payment_status": payment_status,
                "client_reference_id": "buyer-1",
                "payment_intent": "pi_1",
                "customer": "cus_1",
                "currency": "usd",
                "customer_details": {
                    "email": "learner@example.com",
                    "name": "Sam Learner",
                    "address": {"country": "US"},
                },
                "metadata": {"buyer_id": "buyer-1", "bundle_tier": "Foundation"},
            }
        },
    }


def _stripe_line_item(product_id: str) -> dict:
    return {
        "quantity": 1,
        "amount_total": 28100,
        "price": {
            "product": {
                "metadata": {
                    "product_id": product_id,
                    "enroll_key": f"{product_id}-key",
                    "product_type": "course",
                    "title": f"Course {product_id}",
                    "discounted_price": "281",
                    "list_price": "299",
                    "validity_duration": "12",
                    "validity_unit": "months",
                }
            }
        },
    }


class FakeLms:
    def __init__(self) -> None:
        self.enrolled: list[str] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_):
        return None

    async def find_user_by_email(self, email):
        return LmsUser(id="lms-1", email=email)

    async def create_user(self, email, display_name=None):
        raise AssertionError("user already exists")

    async def enroll(self, request):
        self.enrolled.append(request.product_id)
        return {"success": True}


class SilentNotifier:
    async def send_order_confirmation(self, order):
        return None

    async def send_enrollment_ready(self, *, email, name, item_count):
        return None


async def _no_sleep(_):
    return None


def _service(
    session,
    lms: FakeLms,
    line_items: list[dict],
    store_factory=SqlAlchemyFulfillmentStore,
) -> PaymentWebhookService:
    stripe_stub = SimpleNamespace(list_line_items=AsyncMock(return_value=line_items))

    def orchestrator_factory(db_session, lms_client):
        return FulfillmentOrchestrator(
            store_factory(db_session),
            lms_client,
            SilentNotifier(),
            sleep=_no_sleep,
            observability=FulfillmentObservabilityStore(),
        )

    return PaymentWebhookService(
        session,
        stripe_service=stripe_stub,
        lms_client_factory=lambda: lms,
        orchestrator_factory=orchestrator_factory,
    )


@pytest.mark.asyncio
async def test_completed_checkout_runs_fulfillment_once(session_factory):
    get_fulfillment_store().reset()
    lms = FakeLms()
    line_items = [_stripe_line_item("a"), _stripe_line_item("b")]

    async with session_factory() as session:
        service = _service(session, lms, line_items)
        first = await service.process_event(_checkout_event())
        replay = await service.process_event(_checkout_event())

    assert first.status == "processed"
    assert first.report.succeeded_count == 2
    assert replay.status == "duplicate"
    assert lms.enrolled == ["a-key", "b-key"]

    async with session_factory() as session:
        orders = (await session.execute(select(Order))).scalars().all()
        assert len(orders) == 1
        assert orders[0].payment_reference == "pi_1"
        assert orders[0].total == Decimal("562")
        assert orders[0].discount_tier_name == "Foundation"
        outcomes = (await session.execute(select(Enrollment.outcome))).scalars().all()
        assert outcomes == [EnrollmentOutcomeEnum.SUCCESS, EnrollmentOutcomeEnum.SUCCESS]
        events = (await session.execute(select(WebhookEvent))).scalars().all()
        assert [event.external_id for event in events] == ["evt_1"]

    snapshot = get_fulfillment_store().snapshot().as_dict()
    assert snapshot["webhooks"]["processed"] == {"checkout.session.completed": 1}
    assert snapshot["webhooks"]["skipped"] == {"checkout.session.completed": 1}


@pytest.mark.asyncio
async def test_same_payment_under_new_event_id_is_not_fulfilled_twice(session_factory):
    lms = FakeLms()

    async with session_factory() as session:
        service = _service(session, lms, [_stripe_line_item("a")])
        await service.process_event(_checkout_event("evt_1"))
        second = await service.process_event(_checkout_event("evt_2"))

    assert second.report.order is None
    assert second.report.aborted_reason is not None
    assert lms.enrolled == ["a-key"]


@pytest.mark.asyncio
async def test_order_insert_outage_leaves_event_open_for_redelivery(session_factory):
    lms = FakeLms()
    outages = [PersistenceError("transient db outage")]

    class FlakyStore(SqlAlchemyFulfillmentStore):
        async def create_order(self, confirmation):
            if outages:
                raise outages.pop()
            return await super().create_order(confirmation)

    async with session_factory() as session:
        service = _service(session, lms, [_stripe_line_item("a")], store_factory=FlakyStore)
        with pytest.raises(FulfillmentIncomplete):
            await service.process_event(_checkout_event("evt_x"))
        assert (await session.execute(select(WebhookEvent))).scalars().all() == []

        redelivered = await service.process_event(_checkout_event("evt_x"))

    assert redelivered.status == "processed"
    assert redelivered.report.order is not None
    assert lms.enrolled == ["a-key"]
    async with session_factory() as session:
        assert len((await session.execute(select(Order))).scalars().all()) == 1
        events = (await session.execute(select(WebhookEvent.external_id))).scalars().all()
        assert events == ["evt_x"]


@pytest.mark.asyncio
async def test_unpaid_checkout_is_recorded_but_not_fulfilled(session_factory):
    lms = FakeLms()

    async with session_factory() as session:
        service = _service(session, lms, [_stripe_line_item("a")])
        result = await service.process_event(_checkout_event(payment_status="unpaid"))

    assert result.status == "ignored"
    assert lms.enrolled == []
    async with session_factory() as session:
        assert (await session.execute(select(Order))).scalars().all() == []


@pytest.mark.asyncio
async def test_webhook_endpoint_rejects_bad_signature(app_with_db):
    app, session_factory = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        missing = await client.post("/api/v1/webhooks/stripe", content=b"{}")
        invalid = await client.post(
            "/api/v1/webhooks/stripe",
            content=b'{"id": "evt_1"}',
            headers={"stripe-signature": "t=1,v1=deadbeef"},
        )

    assert missing.status_code == 400
    assert invalid.status_code == 400
    async with session_factory() as session:
        assert (await session.execute(select(WebhookEvent))).scalars().all() == []


@pytest.mark.asyncio
async def test_webhook_endpoint_acknowledges_unhandled_event(app_with_db, monkeypatch):
    app, session_factory = app_with_db
    monkeypatch.setattr(
        StripeService,
        "construct_webhook_event",
        AsyncMock(return_value={"id": "evt_refund", "type": "charge.refunded", "data": {"object": {}}}),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "t=1,v1=ok"},
        )
        second = await client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "t=1,v1=ok"},
        )

    assert first.status_code == 200
    assert first.json()["message"] == "ignored charge.refunded event"
    assert second.json()["message"] == "duplicate charge.refunded event"


@pytest.mark.asyncio
async def test_webhook_endpoint_asks_for_redelivery_when_order_not_stored(app_with_db, monkeypatch):
    app, session_factory = app_with_db
    monkeypatch.setattr(
        StripeService,
        "construct_webhook_event",
        AsyncMock(return_value=_checkout_event("evt_outage")),
    )
    aborted = FulfillmentReport(
        payment_reference="pi_1",
        buyer_id="buyer-1",
        aborted_reason="transient db outage",
        retryable=True,
    )
    monkeypatch.setattr(PaymentWebhookService, "_fulfill", AsyncMock(return_value=aborted))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "t=1,v1=ok"},
        )

    assert response.status_code == 503
    async with session_factory() as session:
        assert (await session.execute(select(WebhookEvent))).scalars().all() == []
