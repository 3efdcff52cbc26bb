"""HTTP client for the learning platform's admin API."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping
from urllib.parse import quote

import httpx
from loguru import logger

from coursecart_api.core.settings import get_settings

from .errors import EnrollmentRateLimited, EnrollmentRejected, LmsRequestError

RETRYABLE_STATUS_CODES = frozenset({429, 503})
SUBSCRIPTION_PRODUCT_TYPE = "subscription"


@dataclass(frozen=True)
class LmsUser:
    id: str
    email: str


@dataclass(frozen=True)
class EnrollmentRequest:
    email: str
    product_id: str
    product_type: str
    price: Decimal
    justification: str = "Purchased via storefront checkout"
    duration: int | None = None
    duration_unit: str | None = None

    def payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "productId": self.product_id,
            "productType": self.product_type,
            "price": float(self.price),
            "justification": self.justification,
            "send_enrollment_email": False,
        }
        # Only subscriptions take an explicit access window
        if self.product_type == SUBSCRIPTION_PRODUCT_TYPE and self.duration is not None:
            body["duration"] = self.duration
            body["duration_type"] = _duration_type(self.duration_unit)
        return body


def _duration_type(unit: str | None) -> str:
    normalized = (unit or "").strip().lower()
    if normalized in {"day", "days"}:
        return "days"
    if normalized in {"year", "years"}:
        return "years"
    return "months"


def _parse_response_body(response: httpx.Response) -> Mapping[str, Any]:
    content_type = response.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            parsed = response.json()
        except ValueError:
            return {"text": response.text}
        if isinstance(parsed, Mapping):
            return parsed
        return {"data": parsed}
    return {"text": response.text}


def _error_message(response: httpx.Response) -> str:
    body = _parse_response_body(response)
    for key in ("message", "error", "errors", "text"):
        value = body.get(key)
        if isinstance(value, list) and value:
            value = value[0]
        if isinstance(value, Mapping):
            value = value.get("message") or value.get("context")
        if value:
            return str(value)
    return f"HTTP {response.status_code}"


class LmsClient:
    """Admin API wrapper: user lookup/creation, enrollment and unenrollment."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_token: str | None = None,
        client_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.lms_base_url).rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_token if api_token is not None else settings.lms_api_token}",
            "Lw-Client": client_id if client_id is not None else settings.lms_client_id,
            "Accept": "application/json",
        }
        self._timeout = timeout if timeout is not None else settings.lms_timeout_seconds
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "LmsClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _url(self, path: str) -> str:
        return f"{self._base_url}/admin/api/v2{path}"

    async def find_user_by_email(self, email: str) -> LmsUser | None:
        url = self._url(f"/users/{quote(email, safe='')}")
        response = await self._http().get(url, headers=self._headers)
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise LmsRequestError(_error_message(response), status_code=response.status_code, url=url)
        body = _parse_response_body(response)
        return LmsUser(id=str(body.get("id") or email), email=str(body.get("email") or email))

    async def create_user(self, email: str, display_name: str | None = None) -> LmsUser:
        url = self._url("/users")
        payload = {"email": email, "username": display_name or email.split("@", 1)[0]}
        response = await self._http().post(url, headers=self._headers, json=payload)
        if not response.is_success:
            raise LmsRequestError(_error_message(response), status_code=response.status_code, url=url)
        body = _parse_response_body(response)
        logger.info("Created LMS user", email=email, lms_user_id=body.get("id"))
        return LmsUser(id=str(body.get("id") or email), email=str(body.get("email") or email))

    async def enroll(self, request: EnrollmentRequest) -> Mapping[str, Any]:
        """Grant access to one product.

        Raises:
            EnrollmentRateLimited: HTTP 429 or 503.
            EnrollmentRejected: Any other non-2xx response.
        """

        url = self._url(f"/users/{quote(request.email, safe='')}/enrollment")
        response = await self._http().post(url, headers=self._headers, json=request.payload())
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise EnrollmentRateLimited(
                f"LMS responded {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        if not response.is_success:
            raise EnrollmentRejected(_error_message(response), status_code=response.status_code, url=url)
        return _parse_response_body(response)

    async def unenroll(self, email: str, product_id: str, product_type: str) -> None:
        url = self._url(f"/users/{quote(email, safe='')}/enrollment")
        response = await self._http().request(
            "DELETE",
            url,
            headers={**self._headers, "Content-Type": "application/json"},
            json={"productId": product_id, "productType": product_type},
        )
        if not response.is_success:
            raise LmsRequestError(_error_message(response), status_code=response.status_code, url=url)
