from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.api.dependencies.session import require_member_session
from coursecart_api.db.session import get_session
from coursecart_api.services.progress import WatchProgressService

router = APIRouter(prefix="/progress", tags=["Progress"])


class CourseProgressResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: str = Field(alias="courseId")
    watched_seconds: int = Field(alias="watchedSeconds")
    available_seconds: int = Field(alias="availableSeconds")
    completion_percent: float = Field(alias="completionPercent")


@router.get("", response_model=list[CourseProgressResponse], response_model_by_alias=True)
async def get_course_progress(
    buyer_id: str = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> list[CourseProgressResponse]:
    progress = await WatchProgressService(db).course_progress(buyer_id)
    return [
        CourseProgressResponse(
            course_id=course_id,
            watched_seconds=totals.watched_seconds,
            available_seconds=totals.available_seconds,
            completion_percent=totals.completion_percent,
        )
        for course_id, totals in sorted(progress.items())
    ]
