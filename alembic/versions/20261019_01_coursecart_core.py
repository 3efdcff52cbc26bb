"""Create catalog, order, enrollment and progress tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE TYPE product_type_enum AS ENUM ('course', 'bundle')")
    op.execute("CREATE TYPE payment_status_enum AS ENUM ('pending', 'completed', 'partially_refunded', 'refunded')")
    op.execute("CREATE TYPE enrollment_outcome_enum AS ENUM ('success', 'failed')")
    op.execute("CREATE TYPE enrollment_lifecycle_enum AS ENUM ('active', 'pending', 'refunded')")
    op.execute("CREATE TYPE webhook_provider_enum AS ENUM ('stripe')")

    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("payment_customer_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "catalog_items",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "kind",
            sa.dialects.postgresql.ENUM("course", "bundle", name="product_type_enum", create_type=False),
            nullable=False,
            server_default="course",
        ),
        sa.Column("slug", sa.String(), nullable=True, unique=True),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("thumbnail_url", sa.String(), nullable=True),
        sa.Column("lms_product_type", sa.String(), nullable=True),
        sa.Column("included_course_ids", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "catalog_options",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("item_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enroll_key", sa.String(), nullable=True),
        sa.Column("variant_code", sa.String(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("original_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("validity_duration", sa.Integer(), nullable=True),
        sa.Column("validity_unit", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["catalog_items.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_catalog_options_item_id", "catalog_options", ["item_id"])

    op.create_table(
        "cart_items",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("item_id", sa.String(), nullable=False),
        sa.Column("enroll_key", sa.String(), nullable=True),
        sa.Column("variant_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["item_id"], ["catalog_items.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_cart_items_user_id", "cart_items", ["user_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("order_number", sa.String(), nullable=False, unique=True),
        sa.Column("buyer_id", sa.String(), nullable=True),
        sa.Column("payment_reference", sa.String(), nullable=False, unique=True),
        sa.Column(
            "payment_status",
            sa.dialects.postgresql.ENUM(
                "pending",
                "completed",
                "partially_refunded",
                "refunded",
                name="payment_status_enum",
                create_type=False,
            ),
            nullable=False,
            server_default="completed",
        ),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount_tier_name", sa.String(), nullable=True),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("customer_email", sa.String(), nullable=False),
        sa.Column("customer_name", sa.String(), nullable=True),
        sa.Column("country", sa.String(), nullable=True),
        sa.Column("purchased_items", sa.JSON(), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("refunded_items", sa.JSON(), nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])

    op.create_table(
        "enrollments",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("buyer_id", sa.String(), nullable=False),
        sa.Column("order_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", sa.String(), nullable=False),
        sa.Column(
            "product_type",
            sa.dialects.postgresql.ENUM("course", "bundle", name="product_type_enum", create_type=False),
            nullable=False,
        ),
        sa.Column("lms_product_type", sa.String(), nullable=True),
        sa.Column("enroll_key", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("validity_duration", sa.Integer(), nullable=True),
        sa.Column("validity_unit", sa.String(), nullable=True),
        sa.Column("enrolled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "outcome",
            sa.dialects.postgresql.ENUM("success", "failed", name="enrollment_outcome_enum", create_type=False),
            nullable=False,
        ),
        sa.Column(
            "lifecycle_status",
            sa.dialects.postgresql.ENUM(
                "active", "pending", "refunded", name="enrollment_lifecycle_enum", create_type=False
            ),
            nullable=False,
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_enrollments_buyer_id", "enrollments", ["buyer_id"])
    op.create_index("ix_enrollments_order_id", "enrollments", ["order_id"])

    op.create_table(
        "lms_identities",
        sa.Column("buyer_id", sa.String(), primary_key=True),
        sa.Column("external_user_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "video_progress",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("buyer_id", sa.String(), nullable=False),
        sa.Column("course_id", sa.String(), nullable=True),
        sa.Column("unit_id", sa.String(), nullable=True),
        sa.Column("video_id", sa.String(), nullable=True),
        sa.Column("video_duration_seconds", sa.Float(), nullable=True),
        sa.Column("covered_segments", sa.JSON(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_video_progress_buyer_id", "video_progress", ["buyer_id"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "provider",
            sa.dialects.postgresql.ENUM("stripe", name="webhook_provider_enum", create_type=False),
            nullable=False,
        ),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("provider", "external_id", name="uq_webhook_events_provider_external"),
    )


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_index("ix_video_progress_buyer_id", table_name="video_progress")
    op.drop_table("video_progress")
    op.drop_table("lms_identities")
    op.drop_index("ix_enrollments_order_id", table_name="enrollments")
    op.drop_index("ix_enrollments_buyer_id", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_index("ix_orders_buyer_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_cart_items_user_id", table_name="cart_items")
    op.drop_table("cart_items")
    op.drop_index("ix_catalog_options_item_id", table_name="catalog_options")
    op.drop_table("catalog_options")
    op.drop_table("catalog_items")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    op.execute("DROP TYPE webhook_provider_enum")
    op.execute("DROP TYPE enrollment_lifecycle_enum")
    op.execute("DROP TYPE enrollment_outcome_enum")
    op.execute("DROP TYPE payment_status_enum")
    op.execute("DROP TYPE product_type_enum")
