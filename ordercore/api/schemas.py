"""API schemas for the ordercore API.

Pydantic models for request/response validation and serialization.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ============================================================================
# Common Schemas
# ============================================================================


class PriceSchema(BaseModel):
    """Price representation."""

    amount: int = Field(..., ge=0, description="Amount in smallest currency unit (bani)")
    currency: str = Field(default="RON", description="Currency code")


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | list[Any] = Field(
        default_factory=dict, description="Additional error details"
    )
    request_id: str | None = Field(default=None, description="Request ID for correlation")


# ============================================================================
# Order Schemas
# ============================================================================


class OrderStatusEnum(str, Enum):
    """Order status values."""

    TESTING = "testing"
    QUEUE = "queue"
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    HOLD = "hold"
    CANCELLED = "cancelled"
    SYNC_ERROR = "sync_error"


class UpsellLineSchema(BaseModel):
    """Upsell line on an order."""

    upsell_id: str
    title: str
    quantity: int
    price: PriceSchema
    type: str
    product_sku: str | None = None
    product_name: str | None = None


class OrderResponse(BaseModel):
    """Full order details."""

    id: str
    name: str = Field(..., description="Human-readable order number, e.g. VLR-00042")
    organization_id: str
    store_id: str
    customer_id: str | None = None
    offer_code: str | None = None
    product_name: str
    product_sku: str | None = None
    quantity: int
    upsells: list[UpsellLineSchema] = Field(default_factory=list)
    subtotal: PriceSchema
    shipping_cost: PriceSchema
    total: PriceSchema
    full_name: str
    phone: str
    county: str
    city: str
    address: str
    postal_code: str | None = None
    status: OrderStatusEnum
    hold_from_status: OrderStatusEnum | None = None
    cancelled_from_status: OrderStatusEnum | None = None
    cancelled_note: str | None = None
    canceller_name: str | None = None
    order_note: str | None = None
    helpship_order_id: str | None = None
    queue_expires_at: datetime | None = None
    scheduled_date: date | None = None
    from_partial_id: str | None = None
    promoted_from_testing: bool = False
    version: int
    created_at: datetime
    updated_at: datetime


class OrderSummarySchema(BaseModel):
    """Order summary for duplicate listings."""

    id: str
    name: str
    status: OrderStatusEnum
    product_name: str
    total: PriceSchema
    phone: str
    full_name: str
    order_note: str | None = None
    helpship_order_id: str | None = None
    created_at: datetime


class OrderOperationResponse(BaseModel):
    """Response of an order operation."""

    success: bool = True
    order: OrderResponse
    message: str | None = None
    already_finalized: bool = False
    sync_error: str | None = None


# ============================================================================
# Order Request Schemas
# ============================================================================


class PresaleUpsellRequest(BaseModel):
    """Presale upsell chosen on the landing page."""

    upsell_id: str
    quantity: int = Field(default=1, ge=1)


class OrderCreateRequest(BaseModel):
    """New order submitted by a storefront."""

    store_id: str
    product_name: str = Field(..., min_length=1)
    product_sku: str | None = None
    quantity: int = Field(default=1, ge=1)
    subtotal: PriceSchema
    shipping_cost: PriceSchema | None = None
    upsells: list[PresaleUpsellRequest] = Field(default_factory=list)
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    county: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    postal_code: str | None = None
    offer_code: str | None = None
    testing: bool = False
    from_partial_id: str | None = None
    event_source_url: str | None = None
    fbp: str | None = None
    fbc: str | None = None


class ConfirmOrderRequest(BaseModel):
    """Delivery corrections applied on confirmation."""

    full_name: str | None = None
    phone: str | None = None
    county: str | None = None
    city: str | None = None
    address: str | None = None
    postal_code: str | None = None
    shipping_cost: PriceSchema | None = None


class ScheduleOrderRequest(BaseModel):
    """Ship date for a scheduled confirmation."""

    scheduled_date: date


class HoldOrderRequest(BaseModel):
    """Hold request."""

    note: str | None = Field(default=None, description="Up to 2 lines of 20 characters")


class CancelOrderRequest(BaseModel):
    """Cancel request."""

    note: str | None = None


class OrderNoteRequest(BaseModel):
    """Operator note update."""

    note: str | None = Field(default=None, description="Up to 2 lines of 20 characters")


# ============================================================================
# Duplicate Schemas
# ============================================================================


class DuplicateCheckRequest(BaseModel):
    """Duplicate lookup for a customer."""

    phone: str | None = None
    customer_id: str | None = None
    exclude_order_id: str | None = None
    store_id: str | None = None


class DuplicateCheckResponse(BaseModel):
    """Recent orders of the same customer."""

    has_duplicates: bool
    duplicate_count: int
    duplicate_order_days: int
    orders: list[OrderSummarySchema] = Field(default_factory=list)


# ============================================================================
# Upsell Schemas
# ============================================================================


class PostsaleUpsellRequest(BaseModel):
    """Postsale upsell accepted on the thank-you page."""

    upsell_id: str


class UpsellSchema(BaseModel):
    """Catalog upsell offered to a customer."""

    id: str
    title: str
    price: PriceSchema
    quantity: int
    product_name: str | None = None


class PostsaleOfferResponse(BaseModel):
    """Thank-you page offer state."""

    order_id: str
    status: OrderStatusEnum
    show_offer: bool
    expires_at: datetime | None = None
    upsells: list[UpsellSchema] = Field(default_factory=list)


# ============================================================================
# Batch Schemas
# ============================================================================


class BatchResultSchema(BaseModel):
    """Per-item outcome counts of a batch."""

    total: int
    success: int
    failed: int
    errors: list[dict[str, str]] = Field(default_factory=list)


class BulkOperationResponse(BaseModel):
    """Response of a bulk testing-order operation."""

    success: bool = True
    message: str
    results: BatchResultSchema


class CronResponse(BaseModel):
    """Response of a sweeper run."""

    success: bool = True
    message: str
    results: BatchResultSchema


# ============================================================================
# Settings Schemas
# ============================================================================


class EnvironmentResponse(BaseModel):
    """Helpship environment an organization is connected to."""

    organization_id: str
    helpship_environment: str
    helpship_api_url: str
    credentials_configured: bool
