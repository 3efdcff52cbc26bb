from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from coursecart_api.db.base import Base
from .catalog import ProductTypeEnum


class EnrollmentOutcomeEnum(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class EnrollmentLifecycleEnum(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    REFUNDED = "refunded"


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    buyer_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    product_type = Column(
        SqlEnum(
            ProductTypeEnum,
            name="product_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    lms_product_type = Column(String, nullable=True)
    enroll_key = Column(String, nullable=False)
    title = Column(String, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    validity_duration = Column(Integer, nullable=True)
    validity_unit = Column(String, nullable=True)
    enrolled_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    outcome = Column(
        SqlEnum(
            EnrollmentOutcomeEnum,
            name="enrollment_outcome_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    lifecycle_status = Column(
        SqlEnum(
            EnrollmentLifecycleEnum,
            name="enrollment_lifecycle_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, server_default="0", default=0)
    refund_reason = Column(Text, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    order = relationship("Order", back_populates="enrollments")
