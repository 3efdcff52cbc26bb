"""High-level notification service for transactional emails."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from loguru import logger

from coursecart_api.core.settings import get_settings
from coursecart_api.models.order import Order
from coursecart_api.services.fulfillment.errors import EmailError

from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend
from .templates import RenderedTemplate, render_enrollment_ready, render_order_confirmation, render_refund_update


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    recipient: str
    subject: str
    body_text: str
    body_html: str | None
    event_type: str
    metadata: dict[str, Any]


class NotificationService:
    """Coordinates notification delivery via pluggable backends.

    With no backend configured every send is a logged no-op.
    """

    def __init__(self, backend: Optional[EmailBackend] = None) -> None:
        self._backend = backend or self._build_default_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    def use_in_memory_backend(self) -> InMemoryEmailBackend:
        backend = InMemoryEmailBackend()
        self._backend = backend
        return backend

    async def send_order_confirmation(self, order: Order) -> None:
        settings = get_settings()
        template = render_order_confirmation(order, order.customer_name, support_email=settings.support_email)
        await self._deliver(
            order.customer_email,
            template,
            event_type="order_confirmation",
            metadata={"order_id": str(order.id), "order_number": order.order_number},
        )

    async def send_enrollment_ready(self, *, email: str, name: str | None, item_count: int) -> None:
        settings = get_settings()
        template = render_enrollment_ready(name, item_count, dashboard_url=f"{settings.frontend_url}/my-enrollments")
        await self._deliver(email, template, event_type="enrollment_ready", metadata={"item_count": item_count})

    async def send_refund_update(self, order: Order, *, product_title: str, amount: Decimal) -> None:
        template = render_refund_update(
            order,
            contact_name=order.customer_name,
            product_title=product_title,
            amount=amount,
        )
        await self._deliver(
            order.customer_email,
            template,
            event_type="refund_processing",
            metadata={"order_id": str(order.id), "amount": str(amount)},
        )

    def _build_default_backend(self) -> Optional[EmailBackend]:
        settings = get_settings()
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None

        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_email=settings.smtp_sender_email,
        )

    async def _deliver(
        self,
        recipient: str,
        template: RenderedTemplate,
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> None:
        """Send using active backend and record emitted event.

        Raises:
            EmailError: The backend failed to send.
        """
        if self._backend is None:
            logger.info("Email backend not configured; skipping notification", event_type=event_type)
            return
        if not recipient:
            raise EmailError(f"No recipient for {event_type} email")

        try:
            await self._backend.send_email(
                recipient,
                template.subject,
                template.text_body,
                body_html=template.html_body,
            )
        except Exception as exc:
            raise EmailError(f"Failed to send {event_type} email: {exc}") from exc

        self._events.append(
            NotificationEvent(
                recipient=recipient,
                subject=template.subject,
                body_text=template.text_body,
                body_html=template.html_body,
                event_type=event_type,
                metadata=metadata,
            )
        )
        logger.info("Notification sent", event_type=event_type, **metadata)
