"""Merge raw playback segments into watched/available seconds per course.

Everything here is pure; rows come from ``video_progress`` or any other source
shaped like :class:`ProgressRow`.
"""

from __future__ import annotations

import json
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

Segment = tuple[float, float]

DEFAULT_UNIT_KEY = "__default__"


@dataclass(frozen=True)
class ProgressRow:
    course_id: str | None
    unit_id: str | None = None
    video_id: str | None = None
    video_duration_seconds: float | None = None
    covered_segments: Any = None


@dataclass(frozen=True)
class AggregatedCourseProgress:
    watched_seconds: int
    available_seconds: int

    @property
    def completion_percent(self) -> float:
        if self.available_seconds <= 0:
            return 0.0
        return round(min(self.watched_seconds / self.available_seconds, 1.0) * 100, 1)


def _finite(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _ordered(start: float, end: float) -> Segment:
    return (min(start, end), max(start, end))


def _collect(value: Any, out: list[Segment]) -> None:
    if isinstance(value, (list, tuple)):
        if len(value) == 2:
            start, end = _finite(value[0]), _finite(value[1])
            if start is not None and end is not None:
                out.append(_ordered(start, end))
                return
        for entry in value:
            _collect(entry, out)
    elif isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            return
        _collect(decoded, out)
    elif isinstance(value, Mapping):
        start, end = _finite(value.get("start")), _finite(value.get("end"))
        if start is not None and end is not None:
            out.append(_ordered(start, end))


def extract_segments(value: Any) -> list[Segment]:
    """Decode a raw ``covered_segments`` payload; malformed entries are dropped."""

    segments: list[Segment] = []
    _collect(value, segments)
    return segments


def merge_segments(segments: Iterable[Segment]) -> list[Segment]:
    ordered = sorted(_ordered(start, end) for start, end in segments)
    merged: list[list[float]] = []
    for start, end in ordered:
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [(start, end) for start, end in merged]


def measure_watched(segments: Iterable[Segment], duration: float | None = None) -> float:
    """Total covered time, clamped to ``duration`` when one is known."""

    total = sum(max(0.0, end - start) for start, end in merge_segments(segments))
    if duration is not None and duration >= 0:
        return min(total, duration)
    return total


def _round_half_up(value: float) -> int:
    return max(0, math.floor(value + 0.5))


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def aggregate_watched_by_course(rows: Iterable[ProgressRow] | None) -> dict[str, AggregatedCourseProgress]:
    """Aggregate playback rows into per-course totals.

    Rows are grouped by course and by unit (falling back to video id, then a
    shared default bucket). Segments of every row in a group are unioned before
    measuring; the group's duration is the largest one any row reported.
    """

    groups: dict[str, dict[str, tuple[list[Segment], float | None]]] = defaultdict(dict)
    for row in rows or ():
        if row is None:
            continue
        course_id = _clean(row.course_id)
        if not course_id:
            continue
        unit_key = _clean(row.unit_id) or _clean(row.video_id) or DEFAULT_UNIT_KEY

        segments, duration = groups[course_id].get(unit_key, ([], None))
        segments.extend(extract_segments(row.covered_segments))
        reported = _finite(row.video_duration_seconds)
        if reported is not None and (duration is None or reported > duration):
            duration = reported
        groups[course_id][unit_key] = (segments, duration)

    aggregated: dict[str, AggregatedCourseProgress] = {}
    for course_id, units in groups.items():
        watched_total = 0.0
        available_total = 0.0
        for segments, duration in units.values():
            watched = measure_watched(segments, duration)
            available = max(0.0, duration if duration is not None else watched)
            watched_total += watched
            available_total += max(available, watched)
        if watched_total <= 0 and available_total <= 0:
            continue
        aggregated[course_id] = AggregatedCourseProgress(
            watched_seconds=_round_half_up(watched_total),
            available_seconds=_round_half_up(available_total),
        )
    return aggregated
