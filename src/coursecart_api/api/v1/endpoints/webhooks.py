from fastapi import APIRouter, Depends, Header, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.db.session import get_session
from coursecart_api.observability.fulfillment import get_fulfillment_store
from coursecart_api.services.fulfillment.errors import FulfillmentIncomplete, SignatureError
from coursecart_api.services.payments.webhook_service import PaymentWebhookService

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


class WebhookResponse(BaseModel):
    success: bool = Field(..., description="Whether the delivery was accepted")
    message: str = Field(..., description="Processing result message")


@router.post("/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="stripe-signature"),
    db: AsyncSession = Depends(get_session),
) -> WebhookResponse:
    """Verify a Stripe delivery and run fulfillment for completed checkouts.

    An invalid signature is rejected with 400 before anything is read or written.
    """
    delivery_id = request.headers.get("stripe-webhook-id")
    service = PaymentWebhookService(db)
    payload = await request.body()

    try:
        if not stripe_signature:
            raise SignatureError("Missing stripe-signature header")
        event = await service.verify(payload, stripe_signature)
    except SignatureError as error:
        logger.warning("Rejected Stripe webhook", delivery_id=delivery_id, error=str(error))
        get_fulfillment_store().record_webhook("signature_error", "failed")
        raise HTTPException(status_code=400, detail="Invalid webhook signature") from error

    event_type = event.get("type", "unknown")
    try:
        result = await service.process_event(event)
    except FulfillmentIncomplete as error:
        # non-2xx makes Stripe redeliver the event
        raise HTTPException(status_code=503, detail="Fulfillment incomplete; retry later") from error
    except Exception as error:
        logger.exception(
            "Stripe webhook processing error",
            event_id=event.get("id"),
            event_type=event_type,
            delivery_id=delivery_id,
            error=str(error),
        )
        get_fulfillment_store().record_webhook(event_type, "failed")
        raise HTTPException(status_code=500, detail="Webhook processing failed") from error

    return WebhookResponse(success=True, message=f"{result.status} {event_type} event")
