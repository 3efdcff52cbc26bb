from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.models.catalog import CatalogItem, ProductTypeEnum
from coursecart_api.models.enrollment import Enrollment, EnrollmentLifecycleEnum, EnrollmentOutcomeEnum
from coursecart_api.services.catalog.ownership import Entitlement


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EnrollmentQueryService:
    """Read-side queries over a buyer's enrollments."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def list_for_buyer(self, buyer_id: str) -> Sequence[Enrollment]:
        stmt = (
            select(Enrollment)
            .where(Enrollment.buyer_id == buyer_id)
            .order_by(Enrollment.created_at.desc())
        )
        result = await self._db.execute(stmt)
        return result.scalars().all()

    async def active_enrollments(self, buyer_id: str, *, now: datetime | None = None) -> list[Enrollment]:
        """Successful, unrefunded enrollments that have not expired."""

        moment = now or datetime.now(timezone.utc)
        stmt = select(Enrollment).where(
            Enrollment.buyer_id == buyer_id,
            Enrollment.outcome == EnrollmentOutcomeEnum.SUCCESS,
            Enrollment.lifecycle_status == EnrollmentLifecycleEnum.ACTIVE,
        )
        result = await self._db.execute(stmt)
        return [
            enrollment
            for enrollment in result.scalars().all()
            if enrollment.expires_at is None or _as_aware(enrollment.expires_at) > moment
        ]

    async def active_entitlements(self, buyer_id: str, *, now: datetime | None = None) -> list[Entitlement]:
        enrollments = await self.active_enrollments(buyer_id, now=now)
        return [Entitlement(item_id=row.product_id, enroll_key=row.enroll_key) for row in enrollments]

    async def entitled_course_ids(self, buyer_id: str, *, now: datetime | None = None) -> set[str]:
        """Course ids the buyer may watch, expanding bundles to their courses."""

        enrollments = await self.active_enrollments(buyer_id, now=now)
        course_ids = {row.product_id for row in enrollments if row.product_type == ProductTypeEnum.COURSE}
        bundle_ids = {row.product_id for row in enrollments if row.product_type == ProductTypeEnum.BUNDLE}
        if bundle_ids:
            stmt = select(CatalogItem).where(CatalogItem.id.in_(bundle_ids))
            result = await self._db.execute(stmt)
            for bundle in result.scalars().all():
                course_ids.update(str(course_id) for course_id in (bundle.included_course_ids or []))
        return course_ids
