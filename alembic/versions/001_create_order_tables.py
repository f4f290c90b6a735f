"""Create order lifecycle tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create orders, customers, configuration and outbox tables."""
    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), nullable=False, index=True),
        sa.Column("store_id", sa.String(36), nullable=False, index=True),
        sa.Column("customer_id", sa.String(36), nullable=True, index=True),
        sa.Column("offer_code", sa.String(100), nullable=True),
        # Line items
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("product_sku", sa.String(100), nullable=True, index=True),
        sa.Column("quantity", sa.Integer, nullable=False, default=1),
        sa.Column("upsells", postgresql.JSONB, nullable=False, server_default="[]"),
        # Totals (bani)
        sa.Column("subtotal_cents", sa.Integer, nullable=False),
        sa.Column("shipping_cost_cents", sa.Integer, nullable=False, default=0),
        sa.Column("total_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, default="RON"),
        # Delivery
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=False, index=True),
        sa.Column("county", sa.String(100), nullable=False),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("address", sa.Text, nullable=False),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            default="pending",
            index=True,
        ),
        # Reversal bookkeeping
        sa.Column("hold_from_status", sa.String(20), nullable=True),
        sa.Column("cancelled_from_status", sa.String(20), nullable=True),
        sa.Column("cancelled_note", sa.Text, nullable=True),
        sa.Column("canceller_name", sa.String(255), nullable=True),
        sa.Column("order_note", sa.String(64), nullable=True),
        sa.Column("helpship_order_id", sa.String(100), nullable=True, index=True),
        sa.Column("queue_expires_at", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("scheduled_date", sa.Date, nullable=True, index=True),
        # Provenance
        sa.Column("from_partial_id", sa.String(36), nullable=True),
        sa.Column("promoted_from_testing", sa.Boolean, nullable=False, default=False),
        sa.Column("order_series", sa.String(20), nullable=False, default="VLR"),
        sa.Column("order_number", sa.Integer, nullable=True),
        # Ad attribution
        sa.Column("event_source_url", sa.Text, nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("client_user_agent", sa.Text, nullable=True),
        sa.Column("fbp", sa.String(255), nullable=True),
        sa.Column("fbc", sa.String(255), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, default=1),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )

    op.create_table(
        "customers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), nullable=False, index=True),
        sa.Column("phone", sa.String(50), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("county", sa.String(100), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("address", sa.Text, nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("total_orders", sa.Integer, nullable=False, default=0),
        sa.Column("total_spent_cents", sa.Integer, nullable=False, default=0),
        sa.Column("first_order_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_order_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, default=1),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("organization_id", "phone", name="uq_customers_org_phone"),
    )

    op.create_table(
        "stores",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("url", sa.String(255), nullable=True),
        sa.Column("order_series", sa.String(20), nullable=False, server_default="VLR"),
        sa.Column("order_sequence", sa.Integer, nullable=False, server_default="0"),
        sa.Column("duplicate_order_days", sa.Integer, nullable=False, server_default="14"),
        sa.Column("post_purchase_window_minutes", sa.Integer, nullable=True),
        sa.Column("meta_pixel_id", sa.String(64), nullable=True),
        sa.Column("meta_access_token", sa.Text, nullable=True),
        sa.Column("meta_test_event_code", sa.String(64), nullable=True),
    )

    op.create_table(
        "upsells",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), nullable=False, index=True),
        sa.Column("store_id", sa.String(36), nullable=False, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("price_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="RON"),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("product_sku", sa.String(100), nullable=True),
        sa.Column("product_name", sa.String(255), nullable=True),
        sa.Column("display_order", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "organization_settings",
        sa.Column("organization_id", sa.String(36), primary_key=True),
        sa.Column("helpship_client_id", sa.String(255), nullable=True),
        sa.Column("helpship_client_secret", sa.Text, nullable=True),
        sa.Column("helpship_token_url", sa.String(255), nullable=True),
        sa.Column("helpship_api_url", sa.String(255), nullable=True),
        sa.Column(
            "helpship_environment",
            sa.String(20),
            nullable=False,
            server_default="production",
        ),
    )

    op.create_table(
        "conversion_outbox",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), nullable=False, index=True),
        sa.Column("store_id", sa.String(36), nullable=False),
        sa.Column("event_id", sa.String(100), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "next_attempt_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            index=True,
        ),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    """Drop order lifecycle tables."""
    op.drop_table("conversion_outbox")
    op.drop_table("organization_settings")
    op.drop_table("upsells")
    op.drop_table("stores")
    op.drop_table("customers")
    op.drop_table("orders")
