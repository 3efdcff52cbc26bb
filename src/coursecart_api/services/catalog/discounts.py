"""Volume discount tiers applied to a whole checkout."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence


@dataclass(frozen=True)
class DiscountTier:
    name: str
    min_qualifying_count: int
    discount_percent: Decimal


DEFAULT_DISCOUNT_TIERS: tuple[DiscountTier, ...] = (
    DiscountTier("Extraordinary", 40, Decimal("37")),
    DiscountTier("Visionary", 20, Decimal("25")),
    DiscountTier("Leader", 10, Decimal("16")),
    DiscountTier("Foundation", 5, Decimal("6")),
)

_WHOLE_UNIT = Decimal("1")
_HUNDRED = Decimal("100")


def select_tier(count: int, tiers: Sequence[DiscountTier] = DEFAULT_DISCOUNT_TIERS) -> DiscountTier | None:
    """Return the highest-threshold tier reached by ``count`` qualifying items."""

    for tier in sorted(tiers, key=lambda tier: tier.min_qualifying_count, reverse=True):
        if tier.min_qualifying_count <= count:
            return tier
    return None


def discount_percent_for(count: int, tiers: Sequence[DiscountTier] = DEFAULT_DISCOUNT_TIERS) -> tuple[str | None, Decimal]:
    tier = select_tier(count, tiers)
    if tier is None:
        return None, Decimal("0")
    return tier.name, tier.discount_percent


def discounted_price(price: Decimal, discount_percent: Decimal) -> Decimal:
    """Apply ``discount_percent`` and round half-up to whole currency units."""

    if not discount_percent:
        return price
    factor = (_HUNDRED - Decimal(discount_percent)) / _HUNDRED
    return (Decimal(price) * factor).quantize(_WHOLE_UNIT, rounding=ROUND_HALF_UP)
