from sqlalchemy import Column, DateTime, ForeignKey, String, func

from coursecart_api.db.base import Base


class LmsIdentity(Base):
    """Link between a buyer and their learning-platform account. Written once."""

    __tablename__ = "lms_identities"

    buyer_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    external_user_id = Column(String, nullable=False)
    email = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
