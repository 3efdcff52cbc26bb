from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, JSON, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from coursecart_api.db.base import Base


class ProductTypeEnum(str, Enum):
    COURSE = "course"
    BUNDLE = "bundle"


class ValidityUnitEnum(str, Enum):
    DAYS = "days"
    MONTHS = "months"
    YEARS = "years"


class CatalogItem(Base):
    __tablename__ = "catalog_items"

    id = Column(String, primary_key=True)
    kind = Column(
        SqlEnum(
            ProductTypeEnum,
            name="product_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        server_default=ProductTypeEnum.COURSE.value,
    )
    slug = Column(String, nullable=True, unique=True)
    title = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    # LMS enrollment kind, e.g. "subscription" or "bundle"
    lms_product_type = Column(String, nullable=True)
    # Bundles list the course ids they grant access to
    included_course_ids = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    options = relationship(
        "CatalogOption",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="CatalogOption.position",
    )


class CatalogOption(Base):
    __tablename__ = "catalog_options"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    item_id = Column(String, ForeignKey("catalog_items.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, server_default="0")
    enroll_key = Column(String, nullable=True)
    variant_code = Column(String, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    original_price = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    validity_duration = Column(Integer, nullable=True)
    validity_unit = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    item = relationship("CatalogItem", back_populates="options")
