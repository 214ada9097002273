"""rewear initial schema: catalog, orders, deliveries, drivers, notifications

Revision ID: 3c1d5e7f9a20
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "3c1d5e7f9a20"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="user"),
            sa.Column("city", sa.String(length=120), nullable=True),
            sa.Column("country", sa.String(length=120), nullable=True),
            sa.Column("address", sa.String(length=255), nullable=True),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if not _table_exists(bind, "addresses"):
        op.create_table(
            "addresses",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("label", sa.String(length=64), nullable=True),
            sa.Column("full_name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("address_line1", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("address_line2", sa.String(length=255), nullable=True),
            sa.Column("city", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("state", sa.String(length=120), nullable=True),
            sa.Column("postal_code", sa.String(length=32), nullable=True),
            sa.Column("country", sa.String(length=120), nullable=False, server_default="Lebanon"),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_addresses_user_id", "addresses", ["user_id"], unique=False)

    if not _table_exists(bind, "items"):
        op.create_table(
            "items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("title", sa.String(length=160), nullable=False, server_default=""),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=32), nullable=False, server_default="other"),
            sa.Column("condition", sa.String(length=32), nullable=False, server_default="good"),
            sa.Column("size", sa.String(length=16), nullable=True),
            sa.Column("gender", sa.String(length=16), nullable=True),
            sa.Column("price", sa.Float(), nullable=True),
            sa.Column("is_donation", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("donation_quantity", sa.Integer(), nullable=True),
            sa.Column("donation_quantity_available", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="available"),
            sa.Column("views_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("sold_at", sa.DateTime(), nullable=True),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        for column in ("seller_id", "category", "is_donation", "status", "deleted_at", "created_at"):
            op.create_index(f"ix_items_{column}", "items", [column], unique=False)

    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_number", sa.String(length=32), nullable=False),
            sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id"), nullable=False),
            sa.Column("delivery_address_id", sa.Integer(), sa.ForeignKey("addresses.id"), nullable=False),
            sa.Column("item_price", sa.Float(), nullable=False, server_default="0"),
            sa.Column("delivery_fee", sa.Float(), nullable=False, server_default="0"),
            sa.Column("total_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
            sa.Column("payment_method", sa.String(length=16), nullable=False, server_default="cod"),
            sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("cancellation_reason", sa.Text(), nullable=True),
            sa.Column("donation_claim_key", sa.String(length=64), nullable=True),
            sa.Column("distributed_at", sa.DateTime(), nullable=True),
            sa.Column("distribution_notes", sa.Text(), nullable=True),
            sa.Column("people_helped", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("confirmed_at", sa.DateTime(), nullable=True),
            sa.Column("in_delivery_at", sa.DateTime(), nullable=True),
            sa.Column("delivered_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("donation_claim_key", name="uq_orders_donation_claim_key"),
        )
        op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
        for column in ("buyer_id", "seller_id", "item_id", "status", "created_at"):
            op.create_index(f"ix_orders_{column}", "orders", [column], unique=False)

    if not _table_exists(bind, "order_sequences"):
        op.create_table(
            "order_sequences",
            sa.Column("day", sa.String(length=8), primary_key=True),
            sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )

    if not _table_exists(bind, "deliveries"):
        op.create_table(
            "deliveries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("driver_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("pickup_address", sa.String(length=255), nullable=True),
            sa.Column("pickup_latitude", sa.Float(), nullable=True),
            sa.Column("pickup_longitude", sa.Float(), nullable=True),
            sa.Column("delivery_address", sa.String(length=255), nullable=True),
            sa.Column("delivery_latitude", sa.Float(), nullable=True),
            sa.Column("delivery_longitude", sa.Float(), nullable=True),
            sa.Column("distance_km", sa.Float(), nullable=False, server_default="0"),
            sa.Column("duration_minutes", sa.Integer(), nullable=True),
            sa.Column("route_polyline", sa.Text(), nullable=True),
            sa.Column("is_fallback_route", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("delivery_fee", sa.Float(), nullable=False, server_default="0"),
            sa.Column("driver_earning", sa.Float(), nullable=False, server_default="0"),
            sa.Column("platform_fee", sa.Float(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("failure_reason", sa.Text(), nullable=True),
            sa.Column(
                "superseded_by_id",
                sa.Integer(),
                sa.ForeignKey("deliveries.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("assigned_at", sa.DateTime(), nullable=True),
            sa.Column("picked_up_at", sa.DateTime(), nullable=True),
            sa.Column("delivered_at", sa.DateTime(), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        )
        for column in ("order_id", "driver_id", "status", "created_at"):
            op.create_index(f"ix_deliveries_{column}", "deliveries", [column], unique=False)

    if not _table_exists(bind, "driver_applications"):
        op.create_table(
            "driver_applications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("full_name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("phone", sa.String(length=32), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("address", sa.String(length=255), nullable=True),
            sa.Column("city", sa.String(length=120), nullable=True),
            sa.Column("vehicle_type", sa.String(length=16), nullable=False, server_default="car"),
            sa.Column("id_document_url", sa.String(length=1024), nullable=True),
            sa.Column("driving_license_url", sa.String(length=1024), nullable=True),
            sa.Column("vehicle_registration_url", sa.String(length=1024), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("reviewed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_driver_applications_user_id", "driver_applications", ["user_id"], unique=False)
        op.create_index("ix_driver_applications_status", "driver_applications", ["status"], unique=False)

    if not _table_exists(bind, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("type", sa.String(length=48), nullable=False),
            sa.Column("title", sa.String(length=160), nullable=False, server_default=""),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("meta", sa.Text(), nullable=True),
        )
        for column in ("user_id", "type", "created_at"):
            op.create_index(f"ix_notifications_{column}", "notifications", [column], unique=False)

    if not _table_exists(bind, "audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("delivery_id", sa.Integer(), nullable=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("severity", sa.String(length=16), nullable=False, server_default="INFO"),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
        for column in ("created_at", "event_type", "actor_user_id", "order_id", "delivery_id"):
            op.create_index(f"ix_audit_events_{column}", "audit_events", [column], unique=False)

    if not _table_exists(bind, "idempotency_keys"):
        op.create_table(
            "idempotency_keys",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(length=128), nullable=False),
            sa.Column("scope", sa.String(length=64), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("request_hash", sa.String(length=64), nullable=False),
            sa.Column("response_json", sa.Text(), nullable=True),
            sa.Column("status_code", sa.Integer(), nullable=False, server_default="200"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("scope", "user_id", "key", name="uq_idempotency_scope_user_key"),
        )
        op.create_index("ix_idempotency_keys_user_id", "idempotency_keys", ["user_id"], unique=False)


def downgrade():
    for table_name in (
        "idempotency_keys",
        "audit_events",
        "notifications",
        "driver_applications",
        "deliveries",
        "order_sequences",
        "orders",
        "items",
        "addresses",
        "users",
    ):
        op.drop_table(table_name)
