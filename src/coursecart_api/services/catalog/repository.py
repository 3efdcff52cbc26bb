from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from coursecart_api.models.catalog import CatalogItem, CatalogOption

from .options import CatalogEntry, PricingOption


def entry_from_model(item: CatalogItem) -> CatalogEntry:
    kind = item.kind.value if hasattr(item.kind, "value") else str(item.kind or "course")
    return CatalogEntry(
        item_id=item.id,
        product_type=kind,
        slug=item.slug,
        title=item.title,
        thumbnail_url=item.thumbnail_url,
        lms_product_type=item.lms_product_type,
        options=tuple(_option_from_model(option) for option in item.options),
        included_course_ids=tuple(str(course_id) for course_id in (item.included_course_ids or [])),
    )


def _option_from_model(option: CatalogOption) -> PricingOption:
    return PricingOption(
        enroll_key=option.enroll_key,
        variant_code=option.variant_code,
        price=option.price,
        original_price=option.original_price,
        currency=option.currency,
        validity_duration=option.validity_duration,
        validity_unit=option.validity_unit,
    )


class CatalogRepository:
    """Read catalog snapshots for pricing."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_entries(self, item_ids: Iterable[str]) -> dict[str, CatalogEntry]:
        wanted = {item_id for item_id in item_ids if item_id}
        if not wanted:
            return {}
        stmt = (
            select(CatalogItem)
            .options(selectinload(CatalogItem.options))
            .where(CatalogItem.id.in_(wanted))
        )
        result = await self._db.execute(stmt)
        return {item.id: entry_from_model(item) for item in result.scalars().all()}
