from .segments import (
    AggregatedCourseProgress,
    ProgressRow,
    aggregate_watched_by_course,
    extract_segments,
    measure_watched,
    merge_segments,
)
from .service import WatchProgressService

__all__ = [
    "AggregatedCourseProgress",
    "ProgressRow",
    "WatchProgressService",
    "aggregate_watched_by_course",
    "extract_segments",
    "measure_watched",
    "merge_segments",
]
