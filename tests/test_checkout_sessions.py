from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import stripe
from httpx import ASGITransport, AsyncClient

from coursecart_api.models.catalog import CatalogItem, CatalogOption, ProductTypeEnum
from coursecart_api.models.user import User
from coursecart_api.services.catalog.options import ValidatedItem
from coursecart_api.services.checkout import CheckoutBlocked, SelectionResult, build_line_items, enforce_checkout_policy
from coursecart_api.services.payments.stripe_service import StripeService


def _validated(item_id: str, price: str = "299", currency: str = "USD") -> ValidatedItem:
    return ValidatedItem(
        item_id=item_id,
        slug=item_id,
        title=f"Title {item_id}",
        enroll_key=f"{item_id}-key",
        variant_code="Standard",
        price=Decimal(price),
        original_price=Decimal(price),
        currency=currency,
        lms_product_type="course",
        validity_duration=12,
        validity_unit="months",
        thumbnail_url="https://cdn.test/thumb.png",
    )


def _selection(purchasable, duplicates=(), percent="6", tier="Foundation") -> SelectionResult:
    purchasable = list(purchasable)
    return SelectionResult(
        items=purchasable + list(duplicates),
        purchasable=purchasable,
        duplicates=list(duplicates),
        tier_name=tier,
        discount_percent=Decimal(percent),
        subtotal=sum((item.price for item in purchasable), Decimal("0")),
        discounted_subtotal=Decimal("0"),
    )


def test_policy_blocks_duplicates_with_titles():
    selection = _selection([_validated("a")], duplicates=[_validated("b")])
    with pytest.raises(CheckoutBlocked) as excinfo:
        enforce_checkout_policy(selection, min_items=1)
    assert str(excinfo.value) == "You already own: Title b. Remove them to continue."
    assert excinfo.value.item_ids == ["b"]


def test_policy_requires_minimum_items():
    selection = _selection([_validated(f"c{index}") for index in range(4)])
    with pytest.raises(CheckoutBlocked):
        enforce_checkout_policy(selection, min_items=5)


def test_policy_rejects_mixed_currencies():
    selection = _selection([_validated("a", currency="USD"), _validated("b", currency="EUR")])
    with pytest.raises(CheckoutBlocked):
        enforce_checkout_policy(selection, min_items=1)


def test_build_line_items_charges_discounted_cents_and_carries_metadata():
    selection = _selection([_validated("a")])

    (line_item,) = build_line_items(selection)

    price_data = line_item["price_data"]
    assert price_data["currency"] == "usd"
    assert price_data["unit_amount"] == 28100
    assert price_data["product_data"]["images"] == ["https://cdn.test/thumb.png"]
    metadata = price_data["product_data"]["metadata"]
    assert metadata["product_id"] == "a"
    assert metadata["enroll_key"] == "a-key"
    assert metadata["discounted_price"] == "281"
    assert metadata["list_price"] == "299"
    assert line_item["quantity"] == 1


async def _seed(session_factory, count: int) -> list[str]:
    async with session_factory() as session:
        session.add(User(id="buyer-1", email="buyer@example.com", payment_customer_id="cus_existing"))
        for index in range(count):
            item = CatalogItem(id=f"course-{index}", kind=ProductTypeEnum.COURSE, title=f"Course {index}")
            item.options.append(
                CatalogOption(enroll_key=f"course-{index}-key", price=Decimal("299.00"), currency="USD")
            )
            session.add(item)
        await session.commit()
    return [f"course-{index}" for index in range(count)]


@pytest.mark.asyncio
async def test_create_session_endpoint_returns_gateway_session(app_with_db, monkeypatch):
    app, session_factory = app_with_db
    item_ids = await _seed(session_factory, 5)
    create_mock = AsyncMock(return_value=SimpleNamespace(id="cs_test_1", url="https://stripe.test/cs_test_1"))
    monkeypatch.setattr(StripeService, "create_checkout_session", create_mock)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/checkout/sessions",
            headers={"X-Session-User": "buyer-1"},
            json={"items": [{"itemId": item_id} for item_id in item_ids]},
        )

    assert response.status_code == 201
    body = response.json()
    assert body["sessionId"] == "cs_test_1"
    assert body["selection"]["tierName"] == "Foundation"

    create_mock.assert_awaited_once()
    kwargs = create_mock.await_args.kwargs
    assert kwargs["buyer_id"] == "buyer-1"
    assert kwargs["customer_id"] == "cus_existing"
    assert kwargs["metadata"]["bundle_course_count"] == "5"
    assert len(kwargs["line_items"]) == 5


@pytest.mark.asyncio
async def test_create_session_below_minimum_is_conflict(app_with_db, monkeypatch):
    app, session_factory = app_with_db
    item_ids = await _seed(session_factory, 2)
    create_mock = AsyncMock()
    monkeypatch.setattr(StripeService, "create_checkout_session", create_mock)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/checkout/sessions",
            headers={"X-Session-User": "buyer-1"},
            json={"items": [{"itemId": item_id} for item_id in item_ids]},
        )

    assert response.status_code == 409
    create_mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_session_gateway_failure_is_bad_gateway(app_with_db, monkeypatch):
    app, session_factory = app_with_db
    item_ids = await _seed(session_factory, 5)
    monkeypatch.setattr(
        StripeService,
        "create_checkout_session",
        AsyncMock(side_effect=stripe.APIConnectionError("unreachable")),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/checkout/sessions",
            headers={"X-Session-User": "buyer-1"},
            json={"items": [{"itemId": item_id} for item_id in item_ids]},
        )

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_validate_endpoint_reports_unknown_item(app_with_db):
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/checkout/validate",
            headers={"X-Session-User": "buyer-1"},
            json={"items": [{"itemId": "missing"}]},
        )

    assert response.status_code == 422
    assert response.json()["detail"]["itemId"] == "missing"


@pytest.mark.asyncio
async def test_checkout_requires_session_user(app_with_db):
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/checkout/validate", json={"items": [{"itemId": "x"}]})

    assert response.status_code == 401
