"""initial stockline schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def _movement_table(name: str, constraint: str) -> None:
    op.create_table(
        name,
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("item_id", GUID(), nullable=False),
        sa.Column("outlet_id", GUID(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(length=50), nullable=False),
        sa.Column("reference_id", GUID(), nullable=True),
        sa.Column("line_id", GUID(), nullable=True),
        sa.Column("created_by_user_id", GUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("reference_id", "line_id", "movement_type", name=constraint),
    )
    op.create_index(f"ix_{name}_item_id", name, ["item_id"])
    op.create_index(f"ix_{name}_outlet_id", name, ["outlet_id"])
    op.create_index(f"ix_{name}_reference_id", name, ["reference_id"])


def _line_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transfer_id", GUID(), sa.ForeignKey("transfer_requests.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("item_id", GUID(), sa.ForeignKey("catalog_items.id"), nullable=False),
        sa.Column("quantity_requested", sa.Integer(), nullable=False),
        sa.Column("quantity_approved", sa.Integer(), nullable=True),
        sa.Column("quantity_received", sa.Integer(), nullable=True),
        sa.Column("variance_reason", sa.Text(), nullable=True),
        sa.Column("unit_cost_snapshot", sa.Numeric(14, 2), nullable=True),
    )
    op.create_index(f"ix_{name}_transfer_id", name, ["transfer_id"])
    op.create_index(f"ix_{name}_item_id", name, ["item_id"])


def upgrade() -> None:
    op.create_table(
        "outlets",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False, server_default="store"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("outlet_id", GUID(), sa.ForeignKey("outlets.id"), nullable=True),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="store_staff"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_outlet_id", "users", ["outlet_id"])
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "outlet_access_grants",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("outlet_id", GUID(), sa.ForeignKey("outlets.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "outlet_id", name="uq_outlet_access_grant"),
    )
    op.create_index("ix_outlet_access_grants_user_id", "outlet_access_grants", ["user_id"])
    op.create_index("ix_outlet_access_grants_outlet_id", "outlet_access_grants", ["outlet_id"])

    op.create_table(
        "catalog_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("sku", sa.String(length=100), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "transfer_requests",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("sequence_number", sa.Integer(), nullable=False, unique=True),
        sa.Column("source_outlet_id", GUID(), sa.ForeignKey("outlets.id"), nullable=False),
        sa.Column("destination_outlet_id", GUID(), sa.ForeignKey("outlets.id"), nullable=False),
        sa.Column("requested_by_user_id", GUID(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("receipt_notes", sa.Text(), nullable=True),
        sa.Column("approved_by_user_id", GUID(), nullable=True),
        sa.Column("dispatched_by_user_id", GUID(), nullable=True),
        sa.Column("received_by_user_id", GUID(), nullable=True),
        sa.Column("cancelled_by_user_id", GUID(), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_transfer_requests_source_outlet_id", "transfer_requests", ["source_outlet_id"])
    op.create_index("ix_transfer_requests_destination_outlet_id", "transfer_requests", ["destination_outlet_id"])
    op.create_index("ix_transfer_requests_status", "transfer_requests", ["status"])

    _line_table("transfer_line_items")
    _line_table("transfer_packaging_line_items")

    _movement_table("stock_movements", "uq_stock_movement_line_side")
    _movement_table("packaging_movements", "uq_packaging_movement_line_side")
    op.create_index("ix_stock_movements_item_outlet", "stock_movements", ["item_id", "outlet_id"])
    op.create_index("ix_packaging_movements_item_outlet", "packaging_movements", ["item_id", "outlet_id"])

    op.create_table(
        "transfer_variances",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transfer_id", GUID(), sa.ForeignKey("transfer_requests.id"), nullable=False),
        sa.Column("line_id", GUID(), nullable=False, unique=True),
        sa.Column("item_kind", sa.String(length=20), nullable=False),
        sa.Column("item_id", GUID(), nullable=False),
        sa.Column("outlet_id", GUID(), nullable=False),
        sa.Column("expected_quantity", sa.Integer(), nullable=False),
        sa.Column("received_quantity", sa.Integer(), nullable=False),
        sa.Column("variance", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("variance_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("root_cause", sa.Text(), nullable=True),
        sa.Column("corrective_action", sa.Text(), nullable=True),
        sa.Column("reported_by_user_id", GUID(), nullable=False),
        sa.Column("investigated_by_user_id", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_transfer_variances_transfer_id", "transfer_variances", ["transfer_id"])
    op.create_index("ix_transfer_variances_item_id", "transfer_variances", ["item_id"])
    op.create_index("ix_transfer_variances_outlet_id", "transfer_variances", ["outlet_id"])
    op.create_index("ix_transfer_variances_status", "transfer_variances", ["status"])
    op.create_index("ix_transfer_variances_outlet_status", "transfer_variances", ["outlet_id", "status"])

    op.create_table(
        "transfer_notifications",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transfer_id", GUID(), nullable=False),
        sa.Column("event_type", sa.String(length=30), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("recipient_user_ids", sa.JSON(), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_transfer_notifications_transfer_id", "transfer_notifications", ["transfer_id"])

    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )
    op.create_index("ix_idempotency_records_user_id", "idempotency_records", ["user_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("trace_id", sa.String(length=255), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("before_payload", sa.JSON(), nullable=True),
        sa.Column("after_payload", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("idempotency_records")
    op.drop_table("transfer_notifications")
    op.drop_table("transfer_variances")
    op.drop_table("packaging_movements")
    op.drop_table("stock_movements")
    op.drop_table("transfer_packaging_line_items")
    op.drop_table("transfer_line_items")
    op.drop_table("transfer_requests")
    op.drop_table("catalog_items")
    op.drop_table("outlet_access_grants")
    op.drop_table("users")
    op.drop_table("outlets")
