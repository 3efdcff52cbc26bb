from sqlalchemy import Column, DateTime, String, func

from coursecart_api.db.base import Base


class User(Base):
    """Buyer account keyed by the identifier issued by the auth provider."""

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    payment_customer_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
