"""Compose option resolution, duplicate filtering and tier pricing for a cart."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.services.catalog.discounts import (
    DEFAULT_DISCOUNT_TIERS,
    DiscountTier,
    discount_percent_for,
    discounted_price,
)
from coursecart_api.services.catalog.options import (
    CatalogEntry,
    CatalogItemUnavailable,
    EmptySelection,
    SelectionRequest,
    ValidatedItem,
    resolve_option,
)
from coursecart_api.services.catalog.ownership import Entitlement, split_owned
from coursecart_api.services.catalog.repository import CatalogRepository
from coursecart_api.services.enrollments import EnrollmentQueryService


@dataclass(frozen=True)
class SelectionResult:
    items: list[ValidatedItem]
    purchasable: list[ValidatedItem]
    duplicates: list[ValidatedItem]
    tier_name: str | None
    discount_percent: Decimal
    subtotal: Decimal
    discounted_subtotal: Decimal

    @property
    def discount_amount(self) -> Decimal:
        return self.subtotal - self.discounted_subtotal

    def discounted_price_for(self, item: ValidatedItem) -> Decimal:
        return discounted_price(item.price, self.discount_percent)


def validate_selection(
    requests: Sequence[SelectionRequest],
    catalog: Mapping[str, CatalogEntry],
    entitlements: Iterable[Entitlement],
    tiers: Sequence[DiscountTier] = DEFAULT_DISCOUNT_TIERS,
) -> SelectionResult:
    """Price a selection batch; the first unresolvable item aborts the batch.

    Raises:
        EmptySelection: ``requests`` is empty.
        CatalogItemUnavailable: An item id has no catalog row.
        SelectionValidationError: Any option-resolution failure.
    """

    if not requests:
        raise EmptySelection("Selection is empty")

    items: list[ValidatedItem] = []
    for request in requests:
        entry = catalog.get(request.item_id)
        if entry is None:
            raise CatalogItemUnavailable(f"Course {request.item_id} is unavailable", item_id=request.item_id)
        items.append(resolve_option(entry, request))

    purchasable, duplicates = split_owned(items, entitlements)
    tier_name, percent = discount_percent_for(len(purchasable), tiers)

    subtotal = sum((item.price for item in purchasable), Decimal("0"))
    discounted_subtotal = sum((discounted_price(item.price, percent) for item in purchasable), Decimal("0"))

    return SelectionResult(
        items=items,
        purchasable=purchasable,
        duplicates=duplicates,
        tier_name=tier_name,
        discount_percent=percent,
        subtotal=subtotal,
        discounted_subtotal=discounted_subtotal,
    )


class SelectionValidator:
    """Load catalog + entitlements for a buyer and validate their selection."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        tiers: Sequence[DiscountTier] = DEFAULT_DISCOUNT_TIERS,
    ) -> None:
        self._catalog = CatalogRepository(db_session)
        self._enrollments = EnrollmentQueryService(db_session)
        self._tiers = tiers

    async def validate(
        self,
        buyer_id: str | None,
        requests: Sequence[SelectionRequest],
        *,
        now: datetime | None = None,
    ) -> SelectionResult:
        catalog = await self._catalog.get_entries(request.item_id for request in requests)
        entitlements: list[Entitlement] = []
        if buyer_id:
            entitlements = await self._enrollments.active_entitlements(buyer_id, now=now)

        result = validate_selection(requests, catalog, entitlements, self._tiers)
        logger.info(
            "Validated checkout selection",
            buyer_id=buyer_id,
            requested=len(requests),
            purchasable=len(result.purchasable),
            duplicates=len(result.duplicates),
            tier=result.tier_name,
        )
        return result
