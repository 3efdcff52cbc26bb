from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, ForeignKey, JSON, String, func
from sqlalchemy.dialects.postgresql import UUID

from coursecart_api.db.base import Base


class VideoProgress(Base):
    """Append-only playback log row as reported by the LMS."""

    __tablename__ = "video_progress"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    buyer_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String, nullable=True)
    unit_id = Column(String, nullable=True)
    video_id = Column(String, nullable=True)
    video_duration_seconds = Column(Float, nullable=True)
    # Raw payload: nested pairs, JSON strings or {start, end} objects
    covered_segments = Column(JSON, nullable=True)
    recorded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
