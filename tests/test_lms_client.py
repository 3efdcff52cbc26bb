from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from coursecart_api.services.fulfillment import (
    EnrollmentRateLimited,
    EnrollmentRejected,
    EnrollmentRequest,
    LmsClient,
    LmsRequestError,
)


def _client(handler) -> LmsClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LmsClient(
        base_url="https://lms.test/",
        api_token="token-123",
        client_id="client-abc",
        http_client=http_client,
    )


@pytest.mark.asyncio
async def test_enroll_posts_payload_with_auth_headers():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True})

    client = _client(handler)
    result = await client.enroll(
        EnrollmentRequest(
            email="learner@example.com",
            product_id="course-a-12m",
            product_type="course",
            price=Decimal("281"),
            duration=12,
            duration_unit="months",
        )
    )

    assert result == {"success": True}
    assert captured["url"] == "https://lms.test/admin/api/v2/users/learner%40example.com/enrollment"
    assert captured["headers"]["Authorization"] == "Bearer token-123"
    assert captured["headers"]["Lw-Client"] == "client-abc"
    assert captured["body"] == {
        "productId": "course-a-12m",
        "productType": "course",
        "price": 281.0,
        "justification": "Purchased via storefront checkout",
        "send_enrollment_email": False,
    }


def test_subscription_payload_carries_duration():
    payload = EnrollmentRequest(
        email="learner@example.com",
        product_id="sub-1",
        product_type="subscription",
        price=Decimal("99"),
        duration=1,
        duration_unit="year",
    ).payload()

    assert payload["duration"] == 1
    assert payload["duration_type"] == "years"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [429, 503])
async def test_enroll_rate_limit_statuses_are_retryable(status_code):
    client = _client(lambda request: httpx.Response(status_code, text="slow down"))

    with pytest.raises(EnrollmentRateLimited) as excinfo:
        await client.enroll(EnrollmentRequest("a@example.com", "p", "course", Decimal("1")))

    assert excinfo.value.status_code == status_code


@pytest.mark.asyncio
async def test_enroll_other_errors_are_terminal_with_message():
    client = _client(lambda request: httpx.Response(400, json={"errors": [{"message": "Unknown product"}]}))

    with pytest.raises(EnrollmentRejected) as excinfo:
        await client.enroll(EnrollmentRequest("a@example.com", "p", "course", Decimal("1")))

    assert str(excinfo.value) == "Unknown product"
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_find_user_returns_none_on_not_found():
    client = _client(lambda request: httpx.Response(404, json={"error": "not found"}))
    assert await client.find_user_by_email("ghost@example.com") is None


@pytest.mark.asyncio
async def test_find_user_raises_on_server_error():
    client = _client(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(LmsRequestError):
        await client.find_user_by_email("learner@example.com")


@pytest.mark.asyncio
async def test_create_user_uses_display_name_as_username():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "u-9", "email": "learner@example.com"})

    user = await _client(handler).create_user("learner@example.com", "Sam")

    assert captured["body"] == {"email": "learner@example.com", "username": "Sam"}
    assert user.id == "u-9"


@pytest.mark.asyncio
async def test_unenroll_sends_delete_with_product():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={})

    await _client(handler).unenroll("learner@example.com", "course-a-12m", "course")

    assert captured["method"] == "DELETE"
    assert captured["body"] == {"productId": "course-a-12m", "productType": "course"}
