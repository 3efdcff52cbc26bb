from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, JSON, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from coursecart_api.db.base import Base


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class Order(Base):
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_number = Column(String, nullable=False, unique=True)
    buyer_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    # Idempotency key: one order per payment
    payment_reference = Column(String, nullable=False, unique=True)
    payment_status = Column(
        SqlEnum(
            PaymentStatusEnum,
            name="payment_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        server_default=PaymentStatusEnum.COMPLETED.value,
    )
    subtotal = Column(Numeric(12, 2), nullable=False, server_default="0")
    discount = Column(Numeric(12, 2), nullable=False, server_default="0")
    discount_tier_name = Column(String, nullable=True)
    total = Column(Numeric(12, 2), nullable=False, server_default="0")
    currency = Column(String(3), nullable=False, server_default="USD")
    customer_email = Column(String, nullable=False)
    customer_name = Column(String, nullable=True)
    country = Column(String, nullable=True)
    # Denormalized snapshot of what was paid for; never rewritten from the catalog
    purchased_items = Column(JSON, nullable=False, default=list)
    paid_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    refund_amount = Column(Numeric(12, 2), nullable=False, server_default="0")
    refunded_items = Column(JSON, nullable=True)
    refund_reason = Column(Text, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    enrollments = relationship("Enrollment", back_populates="order")
