"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2025-03-01 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _now():
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'customer'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
    )

    op.create_table(
        "medications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("generic_name", sa.String(length=255), nullable=True),
        sa.Column("brand_name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("dosage", sa.String(length=100), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("retail_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("requires_prescription", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("in_stock", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("refill_interval_days", sa.Integer(), nullable=True),
    )

    op.create_table(
        "prescriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("doctor_name", sa.String(length=255), nullable=True),
        sa.Column("doctor_phone", sa.String(length=50), nullable=True),
        sa.Column("file_url", sa.String(length=500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("upload_date", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column(
            "verification_status",
            sa.String(length=20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("verified_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(length=500), nullable=True),
    )
    op.create_index("ix_prescriptions_user_id", "prescriptions", ["user_id"])

    op.create_table(
        "refill_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("prescription_id", sa.Integer(), sa.ForeignKey("prescriptions.id"), nullable=True),
        sa.Column("medication_id", sa.Integer(), sa.ForeignKey("medications.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("request_date", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("refills_authorized", sa.Integer(), nullable=False),
        sa.Column("refills_remaining", sa.Integer(), nullable=False),
        sa.Column("times_refilled", sa.Integer(), nullable=False),
        sa.Column("last_filled_date", sa.Date(), nullable=True),
        sa.Column("next_refill_date", sa.Date(), nullable=True),
        sa.Column("auto_refill", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.CheckConstraint("refills_remaining >= 0", name="ck_refill_requests_remaining_non_negative"),
        sa.CheckConstraint(
            "refills_remaining <= refills_authorized",
            name="ck_refill_requests_remaining_le_authorized",
        ),
        sa.CheckConstraint("quantity > 0", name="ck_refill_requests_quantity_positive"),
    )
    op.create_index("ix_refill_requests_user_id", "refill_requests", ["user_id"])
    op.create_index("ix_refill_requests_prescription_id", "refill_requests", ["prescription_id"])
    op.create_index("ix_refill_requests_status", "refill_requests", ["status"])
    op.create_index("ix_refill_requests_next_refill_date", "refill_requests", ["next_refill_date"])

    op.create_table(
        "refill_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("refill_request_id", sa.Integer(), sa.ForeignKey("refill_requests.id"), nullable=True),
        sa.Column("notification_type", sa.String(length=30), nullable=False),
        sa.Column("message", sa.String(length=2000), nullable=False),
        sa.Column("sent_date", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_refill_notifications_user_id", "refill_notifications", ["user_id"])
    op.create_index(
        "ix_refill_notifications_refill_request_id", "refill_notifications", ["refill_request_id"]
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("prescription_id", sa.Integer(), sa.ForeignKey("prescriptions.id"), nullable=True),
        sa.Column("refill_request_id", sa.Integer(), sa.ForeignKey("refill_requests.id"), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("order_date", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("shipping_method", sa.String(length=50), nullable=False),
        sa.Column("shipping_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("shipping_address", sa.Text(), nullable=True),
        sa.Column("total", sa.Numeric(10, 2), nullable=False),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        sa.Column("carrier", sa.String(length=50), nullable=True),
        sa.Column("processing_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(length=500), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_prescription_id", "orders", ["prescription_id"])
    op.create_index("ix_orders_refill_request_id", "orders", ["refill_request_id"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("medication_id", sa.Integer(), sa.ForeignKey("medications.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "inventory_providers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("provider_type", sa.String(length=30), nullable=False),
        sa.Column("api_endpoint", sa.String(length=500), nullable=True),
        sa.Column("api_key", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "connection_status",
            sa.String(length=20),
            nullable=False,
            server_default=sa.text("'disconnected'"),
        ),
        sa.Column("last_error", sa.String(length=1000), nullable=True),
        sa.Column("sync_frequency", sa.Integer(), nullable=False),
        sa.Column("last_sync_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_generation", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("inventory_providers.id"), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("external_ndc", sa.String(length=50), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit", sa.String(length=50), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("wholesale_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("retail_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("in_stock", sa.Boolean(), nullable=False),
        sa.Column("location", sa.String(length=100), nullable=True),
        sa.Column("expiration_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reorder_point", sa.Integer(), nullable=True),
        sa.Column("reorder_quantity", sa.Integer(), nullable=True),
        sa.Column("supplier_info", sa.String(length=255), nullable=True),
        sa.Column("raw_data", sa.JSON(), nullable=True),
        sa.Column("sync_generation", sa.Integer(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.UniqueConstraint("provider_id", "external_id", name="uq_inventory_items_provider_external"),
    )
    op.create_index("ix_inventory_items_provider_id", "inventory_items", ["provider_id"])

    op.create_table(
        "inventory_mappings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("medication_id", sa.Integer(), sa.ForeignKey("medications.id"), nullable=False),
        sa.Column("inventory_item_id", sa.Integer(), sa.ForeignKey("inventory_items.id"), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("mapping_type", sa.String(length=20), nullable=False),
        sa.Column("mapping_status", sa.String(length=20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("mapping_confidence", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.UniqueConstraint(
            "medication_id", "inventory_item_id", name="uq_inventory_mappings_medication_item"
        ),
        sa.CheckConstraint(
            "mapping_confidence IS NULL OR (mapping_confidence >= 0 AND mapping_confidence <= 1)",
            name="ck_inventory_mappings_confidence_range",
        ),
    )
    op.create_index("ix_inventory_mappings_medication_id", "inventory_mappings", ["medication_id"])
    op.create_index("ix_inventory_mappings_inventory_item_id", "inventory_mappings", ["inventory_item_id"])
    op.create_index(
        "uq_inventory_mappings_one_primary",
        "inventory_mappings",
        ["medication_id"],
        unique=True,
        postgresql_where=sa.text("is_primary AND mapping_status = 'active'"),
        sqlite_where=sa.text("is_primary = 1 AND mapping_status = 'active'"),
    )

    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "refill_notification_id",
            sa.Integer(),
            sa.ForeignKey("refill_notifications.id"),
            nullable=True,
        ),
        sa.Column("channel", sa.String(length=10), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=True),
        sa.Column("message", sa.String(length=2000), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
    )
    op.create_index(
        "ix_notification_deliveries_refill_notification_id",
        "notification_deliveries",
        ["refill_notification_id"],
    )


def downgrade() -> None:
    op.drop_table("notification_deliveries")
    op.drop_index("uq_inventory_mappings_one_primary", table_name="inventory_mappings")
    op.drop_table("inventory_mappings")
    op.drop_table("inventory_items")
    op.drop_table("inventory_providers")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("refill_notifications")
    op.drop_table("refill_requests")
    op.drop_table("prescriptions")
    op.drop_table("medications")
    op.drop_table("users")
