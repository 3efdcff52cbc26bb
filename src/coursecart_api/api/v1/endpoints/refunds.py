from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.api.dependencies.session import require_member_session
from coursecart_api.db.session import get_session
from coursecart_api.services.refunds import RefundError, RefundNotEligible, RefundNotFound, RefundService

router = APIRouter(prefix="/refunds", tags=["Refunds"])


class EligibilityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enrollment_id: UUID = Field(alias="enrollmentId")


class RefundRequest(EligibilityRequest):
    reason: str | None = Field(None, alias="refundReason", max_length=500)


class RefundDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enrollment_id: UUID = Field(alias="enrollmentId")
    product_title: str = Field(alias="productTitle")
    purchase_date: datetime = Field(alias="purchaseDate")
    days_elapsed: int = Field(alias="daysElapsed")
    original_amount: Decimal = Field(alias="originalAmount")
    processing_fee_applied: bool = Field(alias="processingFeeApplied")
    processing_fee_percent: Decimal = Field(alias="processingFeePercent")
    processing_fee_amount: Decimal = Field(alias="processingFeeAmount")
    refund_amount: Decimal = Field(alias="refundAmount")


class EligibilityResponse(BaseModel):
    eligible: bool
    reason: str | None = None
    details: RefundDetails | None = None


class RefundResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    refund_id: str = Field(alias="refundId")
    amount: Decimal
    payment_status: str = Field(alias="paymentStatus")


@router.post("/eligibility", response_model=EligibilityResponse, response_model_by_alias=True)
async def check_refund_eligibility(
    payload: EligibilityRequest,
    buyer_id: str = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> EligibilityResponse:
    try:
        quote = await RefundService(db).check_eligibility(buyer_id, payload.enrollment_id)
    except RefundNotFound as error:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error)) from error
    except RefundNotEligible as error:
        return EligibilityResponse(eligible=False, reason=error.reason)

    return EligibilityResponse(
        eligible=True,
        details=RefundDetails(
            enrollment_id=quote.enrollment_id,
            product_title=quote.product_title,
            purchase_date=quote.purchase_date,
            days_elapsed=quote.days_elapsed,
            original_amount=quote.original_amount,
            processing_fee_applied=quote.processing_fee_applied,
            processing_fee_percent=quote.processing_fee_percent,
            processing_fee_amount=quote.processing_fee_amount,
            refund_amount=quote.refund_amount,
        ),
    )


@router.post("", response_model=RefundResponse, response_model_by_alias=True)
async def process_refund(
    payload: RefundRequest,
    buyer_id: str = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> RefundResponse:
    try:
        outcome = await RefundService(db).process_refund(buyer_id, payload.enrollment_id, reason=payload.reason)
    except RefundNotFound as error:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error)) from error
    except RefundNotEligible as error:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.reason) from error
    except RefundError as error:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Refund processing failed", "details": str(error)},
        ) from error

    return RefundResponse(
        success=True,
        refund_id=outcome.refund_id,
        amount=outcome.amount,
        payment_status=outcome.payment_status.value,
    )
