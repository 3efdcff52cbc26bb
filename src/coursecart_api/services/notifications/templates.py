"""Notification templates for checkout, enrollment and refund events."""

from __future__ import annotations

import html
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from coursecart_api.models.order import Order
from coursecart_api.services.catalog.options import to_decimal


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def _format_currency(amount: Decimal, currency: str) -> str:
    symbols = {
        "EUR": "€",
        "USD": "$",
        "GBP": "£",
    }
    symbol = symbols.get(currency.upper(), "")
    numeric = f"{float(amount):,.2f}"
    return f"{symbol}{numeric}" if symbol else f"{numeric} {currency.upper()}"


def _greeting(name: str | None) -> str:
    return f"Hi {name}," if name else "Hi there,"


def _item_caption(item: Mapping[str, Any]) -> str:
    kind = "Bundle" if item.get("product_type") == "bundle" else "Course"
    duration = item.get("validity_duration")
    if duration:
        return f"{kind} - {duration} {item.get('validity_unit') or 'months'} access"
    return kind


def _purchased_items(order: Order) -> Iterable[Mapping[str, Any]]:
    return [item for item in (order.purchased_items or []) if isinstance(item, Mapping)]


def render_order_confirmation(order: Order, contact_name: str | None, *, support_email: str) -> RenderedTemplate:
    currency = order.currency or "USD"
    subtotal = Decimal(order.subtotal or 0)
    discount = Decimal(order.discount or 0)
    total = Decimal(order.total or 0)
    subject = f"Order Confirmed - {order.order_number}"

    text_lines = [
        _greeting(contact_name),
        "",
        "Your order has been confirmed and your courses are being prepared for access.",
        "",
        f"Order number: {order.order_number}",
        f"Order ID: {order.id}",
        "",
        "Your purchase:",
    ]
    html_rows: list[str] = []
    for item in _purchased_items(order):
        price = _format_currency(to_decimal(item.get("price")) or Decimal("0"), currency)
        title = str(item.get("title") or item.get("product_id"))
        caption = _item_caption(item)
        text_lines.append(f"- {title} ({caption}): {price}")
        html_rows.append(
            f"<tr><td><strong>{html.escape(title)}</strong><br/><span>{html.escape(caption)}</span></td>"
            f"<td style=\"text-align:right\">{price}</td></tr>"
        )

    text_lines.extend(["", f"Subtotal: {_format_currency(subtotal, currency)}"])
    discount_html = ""
    if discount > 0:
        label = f"Discount ({order.discount_tier_name})" if order.discount_tier_name else "Discount"
        text_lines.append(f"{label}: -{_format_currency(discount, currency)}")
        discount_html = f"<p>{html.escape(label)}: -{_format_currency(discount, currency)}</p>"
    text_lines.extend(
        [
            f"Total paid: {_format_currency(total, currency)}",
            "",
            "You'll receive another email shortly once your course access is ready.",
            "",
            f"Need help? Contact us at {support_email}",
        ]
    )

    html_body = f"""<html>
  <body>
    <h1>Order Confirmed!</h1>
    <p>{html.escape(_greeting(contact_name))}</p>
    <p>Your order has been confirmed and your courses are being prepared for access.</p>
    <p><strong>Order Number:</strong> {html.escape(order.order_number)}<br/><strong>Order ID:</strong> {order.id}</p>
    <table>
      {''.join(html_rows)}
    </table>
    <p>Subtotal: {_format_currency(subtotal, currency)}</p>
    {discount_html}
    <p><strong>Total Paid: {_format_currency(total, currency)}</strong></p>
    <p>You'll receive another email shortly once your course access is ready.</p>
    <p>Need help? Contact us at <a href="mailto:{support_email}">{support_email}</a></p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body="\n".join(text_lines), html_body=html_body)


def render_enrollment_ready(contact_name: str | None, item_count: int, *, dashboard_url: str) -> RenderedTemplate:
    noun = "course is" if item_count == 1 else "courses are"
    subject = "Your courses are ready"
    summary = f"Great news! Your enrollment is complete and all {item_count} {noun} now ready for you to access."
    text_body = "\n".join(
        [
            _greeting(contact_name),
            "",
            summary,
            "",
            f"Start learning: {dashboard_url}",
        ]
    )
    html_body = f"""<html>
  <body>
    <p>{html.escape(_greeting(contact_name))}</p>
    <p>{summary}</p>
    <p><a href="{dashboard_url}">Start learning</a></p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=html_body)


def render_refund_update(
    order: Order,
    *,
    contact_name: str | None,
    product_title: str,
    amount: Decimal,
) -> RenderedTemplate:
    formatted = _format_currency(amount, order.currency or "USD")
    subject = f"Refund processing for order {order.order_number}"
    text_body = "\n".join(
        [
            _greeting(contact_name),
            "",
            f"We are processing your refund of {formatted} for {product_title} (order {order.order_number}).",
            "Your access to this item has been removed.",
            "Refunds usually reach your account within 5-10 business days.",
        ]
    )
    html_body = f"""<html>
  <body>
    <p>{html.escape(_greeting(contact_name))}</p>
    <p>We are processing your refund of <strong>{formatted}</strong> for {html.escape(product_title)} (order {html.escape(order.order_number)}).</p>
    <p>Your access to this item has been removed. Refunds usually reach your account within 5-10 business days.</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=html_body)
