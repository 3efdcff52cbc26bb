from __future__ import annotations

import calendar
from datetime import datetime, timedelta


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month addition, clamping to the last day of the target month."""

    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def compute_expiry(enrolled_at: datetime, duration: int | None, unit: str | None) -> datetime | None:
    """Return ``enrolled_at`` plus the validity window, or None when open-ended.

    Unrecognised units are treated as months.
    """

    if duration is None:
        return None
    normalized = (unit or "").strip().lower()
    if normalized in {"day", "days"}:
        return enrolled_at + timedelta(days=duration)
    if normalized in {"year", "years"}:
        return add_months(enrolled_at, duration * 12)
    return add_months(enrolled_at, duration)
