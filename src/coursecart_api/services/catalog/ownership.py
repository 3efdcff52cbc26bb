from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from .options import ValidatedItem


@dataclass(frozen=True)
class Entitlement:
    """An active (item, enroll key) grant the buyer already holds."""

    item_id: str
    enroll_key: str


def split_owned(
    items: Sequence[ValidatedItem],
    entitlements: Iterable[Entitlement],
) -> tuple[list[ValidatedItem], list[ValidatedItem]]:
    """Partition items into ``(purchasable, duplicates)``.

    Ownership is variant-level: the same course under a different enroll key
    stays purchasable.
    """

    owned = {(entitlement.item_id, entitlement.enroll_key) for entitlement in entitlements}
    purchasable: list[ValidatedItem] = []
    duplicates: list[ValidatedItem] = []
    for item in items:
        if (item.item_id, item.enroll_key) in owned:
            duplicates.append(item)
        else:
            purchasable.append(item)
    return purchasable, duplicates
