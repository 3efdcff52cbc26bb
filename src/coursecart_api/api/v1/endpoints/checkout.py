"""Checkout selection validation and payment session endpoints."""

from __future__ import annotations

from decimal import Decimal

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.api.dependencies.session import require_member_session
from coursecart_api.db.session import get_session
from coursecart_api.services.catalog.options import SelectionRequest, SelectionValidationError, ValidatedItem
from coursecart_api.services.checkout import CheckoutBlocked, CheckoutSessionService, SelectionResult, SelectionValidator

router = APIRouter(prefix="/checkout", tags=["Checkout"])


class SelectionItemPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(..., alias="itemId", min_length=1)
    preferred_enroll_key: str | None = Field(None, alias="preferredEnrollKey")
    preferred_variant_code: str | None = Field(None, alias="preferredVariantCode")
    title: str | None = None
    slug: str | None = None
    thumbnail_url: str | None = Field(None, alias="thumbnailUrl")

    def to_request(self) -> SelectionRequest:
        return SelectionRequest(
            item_id=self.item_id,
            preferred_enroll_key=self.preferred_enroll_key,
            preferred_variant_code=self.preferred_variant_code,
            title=self.title,
            slug=self.slug,
            thumbnail_url=self.thumbnail_url,
        )


class SelectionPayload(BaseModel):
    items: list[SelectionItemPayload]


class CheckoutSessionPayload(SelectionPayload):
    model_config = ConfigDict(populate_by_name=True)

    success_url: str | None = Field(None, alias="successUrl")
    cancel_url: str | None = Field(None, alias="cancelUrl")


class ValidatedItemResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(alias="itemId")
    slug: str
    title: str
    enroll_key: str = Field(alias="enrollKey")
    variant_code: str | None = Field(None, alias="variantCode")
    price: Decimal
    original_price: Decimal = Field(alias="originalPrice")
    discounted_price: Decimal = Field(alias="discountedPrice")
    currency: str
    product_type: str = Field(alias="productType")
    validity_duration: int | None = Field(None, alias="validityDuration")
    validity_unit: str | None = Field(None, alias="validityUnit")


class SelectionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[ValidatedItemResponse]
    purchasable: list[ValidatedItemResponse]
    duplicates: list[ValidatedItemResponse]
    tier_name: str | None = Field(None, alias="tierName")
    discount_percent: Decimal = Field(alias="discountPercent")
    subtotal: Decimal
    discounted_subtotal: Decimal = Field(alias="discountedSubtotal")


class CheckoutSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    checkout_url: str | None = Field(None, alias="checkoutUrl")
    selection: SelectionResponse


def _item_response(item: ValidatedItem, result: SelectionResult) -> ValidatedItemResponse:
    return ValidatedItemResponse(
        item_id=item.item_id,
        slug=item.slug,
        title=item.title,
        enroll_key=item.enroll_key,
        variant_code=item.variant_code,
        price=item.price,
        original_price=item.original_price,
        discounted_price=result.discounted_price_for(item),
        currency=item.currency,
        product_type=item.product_type,
        validity_duration=item.validity_duration,
        validity_unit=item.validity_unit,
    )


def _selection_response(result: SelectionResult) -> SelectionResponse:
    return SelectionResponse(
        items=[_item_response(item, result) for item in result.items],
        purchasable=[_item_response(item, result) for item in result.purchasable],
        duplicates=[_item_response(item, result) for item in result.duplicates],
        tier_name=result.tier_name,
        discount_percent=result.discount_percent,
        subtotal=result.subtotal,
        discounted_subtotal=result.discounted_subtotal,
    )


def _validation_http_error(error: SelectionValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"error": str(error), "itemId": error.item_id, "code": type(error).__name__},
    )


@router.post("/validate", response_model=SelectionResponse, response_model_by_alias=True)
async def validate_checkout_selection(
    payload: SelectionPayload,
    buyer_id: str = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> SelectionResponse:
    """Price a selection and report duplicates without contacting the gateway."""
    try:
        result = await SelectionValidator(db).validate(buyer_id, [item.to_request() for item in payload.items])
    except SelectionValidationError as error:
        raise _validation_http_error(error) from error
    return _selection_response(result)


@router.post(
    "/sessions",
    response_model=CheckoutSessionResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_checkout_session(
    payload: CheckoutSessionPayload,
    buyer_id: str = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CheckoutSessionResponse:
    service = CheckoutSessionService(db)
    try:
        result = await service.create_session(
            buyer_id,
            [item.to_request() for item in payload.items],
            success_url=payload.success_url,
            cancel_url=payload.cancel_url,
        )
    except SelectionValidationError as error:
        raise _validation_http_error(error) from error
    except CheckoutBlocked as error:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": str(error), "itemIds": error.item_ids},
        ) from error
    except stripe.StripeError as error:
        logger.error("Checkout session creation failed", buyer_id=buyer_id, error=str(error))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Payment provider unavailable") from error

    return CheckoutSessionResponse(
        session_id=result.session_id,
        checkout_url=result.checkout_url,
        selection=_selection_response(result.selection),
    )
