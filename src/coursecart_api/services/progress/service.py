from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.models.video_progress import VideoProgress
from coursecart_api.services.enrollments import EnrollmentQueryService

from .segments import AggregatedCourseProgress, ProgressRow, aggregate_watched_by_course


class WatchProgressService:
    """Per-course watch progress for the courses a buyer is entitled to."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._enrollments = EnrollmentQueryService(db_session)

    async def course_progress(
        self,
        buyer_id: str,
        *,
        now: datetime | None = None,
    ) -> dict[str, AggregatedCourseProgress]:
        course_ids = await self._enrollments.entitled_course_ids(buyer_id, now=now)
        if not course_ids:
            return {}

        stmt = select(VideoProgress).where(
            VideoProgress.buyer_id == buyer_id,
            VideoProgress.course_id.in_(course_ids),
        )
        result = await self._db.execute(stmt)
        rows = [
            ProgressRow(
                course_id=row.course_id,
                unit_id=row.unit_id,
                video_id=row.video_id,
                video_duration_seconds=row.video_duration_seconds,
                covered_segments=row.covered_segments,
            )
            for row in result.scalars().all()
        ]
        return aggregate_watched_by_course(rows)
