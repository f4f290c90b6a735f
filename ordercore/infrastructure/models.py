"""SQLAlchemy models for database tables.

Provides ORM models for orders, customers, store and upsell
configuration, organization settings and the conversion outbox.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from ordercore.infrastructure.database import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    Status, reversal bookkeeping and the Helpship link live on the row
    so a single conditional UPDATE can enforce the status precondition.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    organization_id = Column(String(36), nullable=False, index=True)
    store_id = Column(String(36), nullable=False, index=True)
    customer_id = Column(String(36), nullable=True, index=True)
    offer_code = Column(String(100), nullable=True)

    # Line items
    product_name = Column(String(255), nullable=False)
    product_sku = Column(String(100), nullable=True, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    upsells = Column(JSONB, nullable=False, default=list)

    # Totals (bani)
    subtotal_cents = Column(Integer, nullable=False)
    shipping_cost_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="RON")

    # Delivery
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False, index=True)
    county = Column(String(100), nullable=False)
    city = Column(String(100), nullable=False)
    address = Column(Text, nullable=False)
    postal_code = Column(String(20), nullable=True)

    status = Column(String(20), nullable=False, default="pending", index=True)

    # Reversal bookkeeping
    hold_from_status = Column(String(20), nullable=True)
    cancelled_from_status = Column(String(20), nullable=True)
    cancelled_note = Column(Text, nullable=True)
    canceller_name = Column(String(255), nullable=True)
    order_note = Column(String(64), nullable=True)

    helpship_order_id = Column(String(100), nullable=True, index=True)
    queue_expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    scheduled_date = Column(Date, nullable=True, index=True)

    # Provenance
    from_partial_id = Column(String(36), nullable=True)
    promoted_from_testing = Column(Boolean, nullable=False, default=False)

    # Numbering
    order_series = Column(String(20), nullable=False, default="VLR")
    order_number = Column(Integer, nullable=True)

    # Ad attribution
    event_source_url = Column(Text, nullable=True)
    client_ip = Column(String(64), nullable=True)
    client_user_agent = Column(Text, nullable=True)
    fbp = Column(String(255), nullable=True)
    fbc = Column(String(255), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        onupdate=_utc_now,
    )


class CustomerModel(Base):
    """Customer aggregate keyed by (organization_id, phone)."""

    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("organization_id", "phone", name="uq_customers_org_phone"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    organization_id = Column(String(36), nullable=False, index=True)
    phone = Column(String(50), nullable=False)
    full_name = Column(String(255), nullable=True)
    county = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    address = Column(Text, nullable=True)
    postal_code = Column(String(20), nullable=True)
    total_orders = Column(Integer, nullable=False, default=0)
    total_spent_cents = Column(Integer, nullable=False, default=0)
    first_order_date = Column(DateTime(timezone=True), nullable=True)
    last_order_date = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)


# ============================================================================
# Configuration Models
# ============================================================================


class StoreModel(Base):
    """Storefront configuration read by the order lifecycle."""

    __tablename__ = "stores"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    organization_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(255), nullable=True)
    order_series = Column(String(20), nullable=False, default="VLR")
    order_sequence = Column(Integer, nullable=False, default=0)
    duplicate_order_days = Column(Integer, nullable=False, default=14)
    post_purchase_window_minutes = Column(Integer, nullable=True)
    meta_pixel_id = Column(String(64), nullable=True)
    meta_access_token = Column(Text, nullable=True)
    meta_test_event_code = Column(String(64), nullable=True)


class UpsellModel(Base):
    """Catalog upsell."""

    __tablename__ = "upsells"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    organization_id = Column(String(36), nullable=False, index=True)
    store_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="RON")
    type = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, nullable=False, default=True)
    product_sku = Column(String(100), nullable=True)
    product_name = Column(String(255), nullable=True)
    display_order = Column(Integer, nullable=False, default=0)


class OrganizationSettingsModel(Base):
    """Per-organization Helpship credentials and environment."""

    __tablename__ = "organization_settings"

    organization_id = Column(String(36), primary_key=True)
    helpship_client_id = Column(String(255), nullable=True)
    helpship_client_secret = Column(Text, nullable=True)
    helpship_token_url = Column(String(255), nullable=True)
    helpship_api_url = Column(String(255), nullable=True)
    helpship_environment = Column(String(20), nullable=False, default="production")


# ============================================================================
# Conversion Outbox
# ============================================================================


class ConversionOutboxModel(Base):
    """Purchase events waiting to be (re)delivered to the Conversions API."""

    __tablename__ = "conversion_outbox"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(String(36), nullable=False, index=True)
    store_id = Column(String(36), nullable=False)
    event_id = Column(String(100), nullable=False)
    payload = Column(JSONB, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now, index=True)
    last_error = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
