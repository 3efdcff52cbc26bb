from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.api.dependencies.session import require_member_session
from coursecart_api.db.session import get_session
from coursecart_api.services.enrollments import EnrollmentQueryService

router = APIRouter(prefix="/enrollments", tags=["Enrollments"])


class EnrollmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    order_id: UUID = Field(alias="orderId")
    product_id: str = Field(alias="productId")
    product_type: str = Field(alias="productType")
    enroll_key: str = Field(alias="enrollKey")
    title: str | None = None
    price: Decimal | None = None
    outcome: str
    lifecycle_status: str = Field(alias="lifecycleStatus")
    error_message: str | None = Field(None, alias="errorMessage")
    retry_count: int = Field(alias="retryCount")
    enrolled_at: datetime | None = Field(None, alias="enrolledAt")
    expires_at: datetime | None = Field(None, alias="expiresAt")


class OwnedItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(alias="itemId")
    enroll_key: str = Field(alias="enrollKey")


class EnrollmentListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enrollments: list[EnrollmentResponse]
    owned: list[OwnedItem]


def _value(enum_or_str: object) -> str:
    return getattr(enum_or_str, "value", str(enum_or_str))


@router.get("", response_model=EnrollmentListResponse, response_model_by_alias=True)
async def list_enrollments(
    buyer_id: str = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> EnrollmentListResponse:
    """Purchase history plus the active (item, enroll key) pairs the buyer owns."""
    service = EnrollmentQueryService(db)
    rows = await service.list_for_buyer(buyer_id)
    owned = await service.active_entitlements(buyer_id)
    return EnrollmentListResponse(
        enrollments=[
            EnrollmentResponse(
                id=row.id,
                order_id=row.order_id,
                product_id=row.product_id,
                product_type=_value(row.product_type),
                enroll_key=row.enroll_key,
                title=row.title,
                price=row.price,
                outcome=_value(row.outcome),
                lifecycle_status=_value(row.lifecycle_status),
                error_message=row.error_message,
                retry_count=row.retry_count or 0,
                enrolled_at=row.enrolled_at,
                expires_at=row.expires_at,
            )
            for row in rows
        ],
        owned=[OwnedItem(item_id=item.item_id, enroll_key=item.enroll_key) for item in owned],
    )
