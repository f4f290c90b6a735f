"""Domain entities.

The Order aggregate with its status-changing behavior, the Customer
aggregate, and the store/catalog configuration entities the order
lifecycle reads from.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Self
from uuid import uuid4

from ordercore.domain.base import AggregateRoot, Entity, utc_now
from ordercore.domain.exceptions import ValidationFailedError
from ordercore.domain.state_machines import (
    OrderOperation,
    OrderStatus,
    require_operation,
)
from ordercore.domain.value_objects import Money, normalize_order_note


# ============================================================================
# Upsells
# ============================================================================


class UpsellType(str, Enum):
    """When an upsell is offered."""

    PRESALE = "presale"
    POSTSALE = "postsale"


@dataclass(frozen=True)
class UpsellLine:
    """An upsell item attached to an order.

    Attributes:
        upsell_id: Catalog upsell ID.
        title: Display title at the time of purchase.
        quantity: Units added.
        price: Unit price.
        type: presale or postsale.
        product_sku: SKU sent to fulfillment.
        product_name: Product name sent to fulfillment.
    """

    upsell_id: str
    title: str
    quantity: int
    price: Money
    type: UpsellType
    product_sku: str | None = None
    product_name: str | None = None

    @property
    def line_total(self) -> Money:
        """Price multiplied by quantity."""
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON storage."""
        return {
            "upsell_id": self.upsell_id,
            "title": self.title,
            "quantity": self.quantity,
            "price_cents": self.price.amount_cents,
            "currency": self.price.currency,
            "type": self.type.value,
            "product_sku": self.product_sku,
            "product_name": self.product_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Deserialize from JSON storage."""
        return cls(
            upsell_id=data["upsell_id"],
            title=data["title"],
            quantity=int(data["quantity"]),
            price=Money(data["price_cents"], data.get("currency", "RON")),
            type=UpsellType(data["type"]),
            product_sku=data.get("product_sku"),
            product_name=data.get("product_name"),
        )


@dataclass(eq=False)
class Upsell(Entity[str]):
    """Catalog upsell offered on a store's landing page or thank-you page."""

    organization_id: str
    store_id: str
    title: str
    price: Money
    type: UpsellType
    quantity: int = 1
    active: bool = True
    product_sku: str | None = None
    product_name: str | None = None
    display_order: int = 0

    def to_line(self) -> UpsellLine:
        """Snapshot this upsell as an order line."""
        return UpsellLine(
            upsell_id=self.id,
            title=self.title,
            quantity=self.quantity,
            price=self.price,
            type=self.type,
            product_sku=self.product_sku,
            product_name=self.product_name,
        )


# ============================================================================
# Store and Organization Configuration
# ============================================================================


@dataclass(eq=False)
class Store(Entity[str]):
    """Storefront configuration consumed by the order lifecycle.

    Attributes:
        order_series: Prefix of human-readable order numbers (e.g., "VLR").
        duplicate_order_days: Trailing window for duplicate detection.
        post_purchase_window_minutes: Offer window; None disables the queue.
        meta_pixel_id: Pixel receiving purchase events, if tracking is on.
        meta_access_token: Conversions API token for the pixel.
        meta_test_event_code: Routes events to the test tab when set.
    """

    organization_id: str
    name: str
    url: str | None = None
    order_series: str = "VLR"
    duplicate_order_days: int = 14
    post_purchase_window_minutes: int | None = None
    meta_pixel_id: str | None = None
    meta_access_token: str | None = None
    meta_test_event_code: str | None = None

    @property
    def has_conversion_tracking(self) -> bool:
        return bool(self.meta_pixel_id and self.meta_access_token)


class HelpshipEnvironment(str, Enum):
    """Helpship deployment an organization talks to."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass
class OrganizationSettings:
    """Per-organization fulfillment credentials and endpoints.

    Any field left as None falls back to the process-wide settings.
    """

    organization_id: str
    helpship_client_id: str | None = None
    helpship_client_secret: str | None = None
    helpship_token_url: str | None = None
    helpship_api_url: str | None = None
    helpship_environment: HelpshipEnvironment = HelpshipEnvironment.PRODUCTION


# ============================================================================
# Customer Aggregate
# ============================================================================


@dataclass(kw_only=True, eq=False)
class Customer(AggregateRoot[str]):
    """Customer keyed by organization and digits-only phone number."""

    organization_id: str
    phone: str
    full_name: str | None = None
    county: str | None = None
    city: str | None = None
    address: str | None = None
    postal_code: str | None = None
    total_orders: int = 0
    total_spent: Money = field(default_factory=Money.zero)
    first_order_date: datetime | None = None
    last_order_date: datetime | None = None

    @classmethod
    def create(cls, organization_id: str, phone: str, **details: Any) -> Self:
        """Create a new customer with no orders yet."""
        return cls(id=str(uuid4()), organization_id=organization_id, phone=phone, **details)

    def record_order(self, total: Money, at: datetime | None = None) -> None:
        """Add a finalized order to the running statistics.

        Args:
            total: Order total.
            at: When the order was placed.
        """
        at = at or utc_now()
        self.total_orders += 1
        self.total_spent = self.total_spent + total
        if self.first_order_date is None:
            self.first_order_date = at
        self.last_order_date = at
        self._touch()


# ============================================================================
# Order Aggregate
# ============================================================================


@dataclass(frozen=True)
class DeliveryPatch:
    """Operator corrections applied when confirming an order.

    Only fields that are not None are applied.
    """

    full_name: str | None = None
    phone: str | None = None
    county: str | None = None
    city: str | None = None
    address: str | None = None
    postal_code: str | None = None
    shipping_cost: Money | None = None

    def is_empty(self) -> bool:
        return all(value is None for value in vars(self).values())


@dataclass(kw_only=True, eq=False)
class Order(AggregateRoot[str]):
    """Purchase order aggregate.

    Every status change goes through one of the methods below, each of
    which checks the operation against the state machine before mutating.
    The transition engine calls them on a freshly loaded copy and persists
    the result with a compare-and-set on the status it loaded.
    """

    organization_id: str
    store_id: str
    customer_id: str | None = None
    offer_code: str | None = None

    # Line items
    product_name: str
    product_sku: str | None = None
    quantity: int = 1
    upsells: list[UpsellLine] = field(default_factory=list)
    subtotal: Money
    shipping_cost: Money = field(default_factory=Money.zero)
    total: Money = field(default_factory=Money.zero)

    # Delivery
    full_name: str
    phone: str
    county: str
    city: str
    address: str
    postal_code: str | None = None

    status: OrderStatus = OrderStatus.PENDING

    # Reversal bookkeeping
    hold_from_status: OrderStatus | None = None
    cancelled_from_status: OrderStatus | None = None
    cancelled_note: str | None = None
    canceller_name: str | None = None
    order_note: str | None = None

    helpship_order_id: str | None = None
    queue_expires_at: datetime | None = None
    scheduled_date: date | None = None

    # Provenance
    from_partial_id: str | None = None
    promoted_from_testing: bool = False

    # Numbering
    order_series: str = "VLR"
    order_number: int | None = None

    # Ad attribution context captured at intake
    event_source_url: str | None = None
    client_ip: str | None = None
    client_user_agent: str | None = None
    fbp: str | None = None
    fbc: str | None = None

    @classmethod
    def create(cls, **fields: Any) -> Self:
        """Create a new order with a generated ID and computed total."""
        order = cls(id=str(uuid4()), **fields)
        order.recompute_total()
        return order

    def copy(self) -> Self:
        """Detached copy for repositories that keep objects in memory."""
        return replace(self, upsells=list(self.upsells))

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def display_number(self) -> str:
        """Human-readable order name, e.g. VLR-00042."""
        if self.order_number is None:
            return self.id
        return f"{self.order_series}-{self.order_number:05d}"

    def compute_total(self) -> Money:
        """Subtotal plus shipping plus every upsell line."""
        total = self.subtotal + self.shipping_cost
        for line in self.upsells:
            total = total + line.line_total
        return total

    def recompute_total(self) -> None:
        self.total = self.compute_total()

    def is_queue_expired(self, now: datetime | None = None) -> bool:
        """Check if the post-purchase offer window has elapsed."""
        if self.queue_expires_at is None:
            return False
        return self.queue_expires_at <= (now or utc_now())

    def item_count(self) -> int:
        return self.quantity + sum(line.quantity for line in self.upsells)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def promote(self) -> None:
        """Move a testing order into the live flow."""
        require_operation(self.id, OrderOperation.PROMOTE, self.status, OrderStatus.PENDING)
        self.status = OrderStatus.PENDING
        self.promoted_from_testing = True
        self._touch()

    def finalize(self, upsell: UpsellLine | None = None) -> None:
        """Close the post-purchase window, optionally adding a late upsell."""
        operation = OrderOperation.ATTACH_UPSELL if upsell else OrderOperation.FINALIZE
        require_operation(self.id, operation, self.status, OrderStatus.PENDING)
        if upsell is not None:
            if upsell.type != UpsellType.POSTSALE:
                raise ValidationFailedError(
                    f"Upsell {upsell.upsell_id} is not a postsale upsell",
                    details={"upsell_id": upsell.upsell_id, "type": upsell.type.value},
                )
            self.upsells.append(upsell)
            self.recompute_total()
        self.status = OrderStatus.PENDING
        self._touch()

    def mark_sync_error(self) -> None:
        """Record that the fulfillment create failed."""
        self.status = OrderStatus.SYNC_ERROR
        self._touch()

    def mark_resynced(self) -> None:
        """Return a previously failed order to pending once linked."""
        require_operation(self.id, OrderOperation.RESYNC, self.status, OrderStatus.PENDING)
        self.status = OrderStatus.PENDING
        self._touch()

    def link_helpship(self, helpship_order_id: str) -> None:
        """Set the fulfillment ID. It can only be set once."""
        if self.helpship_order_id is not None:
            raise ValidationFailedError(
                f"Order {self.id} is already linked to Helpship order {self.helpship_order_id}",
                details={"order_id": self.id, "helpship_order_id": self.helpship_order_id},
            )
        self.helpship_order_id = helpship_order_id
        self._touch()

    def confirm(
        self,
        patch: DeliveryPatch | None = None,
        operation: OrderOperation = OrderOperation.CONFIRM,
    ) -> None:
        """Confirm the order, applying any delivery corrections."""
        require_operation(self.id, operation, self.status, OrderStatus.CONFIRMED)
        if patch is not None:
            self.apply_patch(patch)
        self.status = OrderStatus.CONFIRMED
        self._touch()

    def apply_patch(self, patch: DeliveryPatch) -> None:
        for name in ("full_name", "phone", "county", "city", "address", "postal_code"):
            value = getattr(patch, name)
            if value is not None:
                setattr(self, name, value)
        if patch.shipping_cost is not None:
            self.shipping_cost = patch.shipping_cost
            self.recompute_total()

    def schedule(self, scheduled_date: date) -> None:
        """Defer confirmation to a later ship date."""
        require_operation(self.id, OrderOperation.SCHEDULE, self.status, OrderStatus.SCHEDULED)
        self.status = OrderStatus.SCHEDULED
        self.scheduled_date = scheduled_date
        self._touch()

    def hold(self, note: str | None = None) -> None:
        """Put the order on hold, remembering the status to restore."""
        note = normalize_order_note(note)
        require_operation(self.id, OrderOperation.HOLD, self.status, OrderStatus.HOLD)
        self.hold_from_status = self.status
        self.status = OrderStatus.HOLD
        self.order_note = note
        self.cancelled_from_status = None
        self.cancelled_note = None
        self.canceller_name = None
        self._touch()

    def unhold(self) -> None:
        """Release a hold, restoring the recorded status."""
        target = self.hold_from_status or OrderStatus.PENDING
        require_operation(self.id, OrderOperation.UNHOLD, self.status, target)
        self.status = target
        self.hold_from_status = None
        self.order_note = None
        self._touch()

    def cancel(self, note: str | None = None, canceller_name: str | None = None) -> None:
        """Cancel the order, remembering the status to restore."""
        require_operation(self.id, OrderOperation.CANCEL, self.status, OrderStatus.CANCELLED)
        self.cancelled_from_status = self.status
        self.status = OrderStatus.CANCELLED
        self.cancelled_note = (note or "").strip() or None
        self.canceller_name = canceller_name
        self.hold_from_status = None
        self._touch()

    def uncancel(self) -> None:
        """Restore the status recorded at cancel time."""
        target = self.cancelled_from_status or OrderStatus.PENDING
        require_operation(self.id, OrderOperation.UNCANCEL, self.status, target)
        self.status = target
        self.cancelled_from_status = None
        self.cancelled_note = None
        self.canceller_name = None
        self._touch()

    def cancel_testing(self) -> None:
        """Cancel a testing order without any fulfillment bookkeeping."""
        require_operation(
            self.id, OrderOperation.BULK_CANCEL_TESTING, self.status, OrderStatus.CANCELLED
        )
        self.cancelled_from_status = self.status
        self.status = OrderStatus.CANCELLED
        self._touch()

    def set_note(self, note: str | None) -> None:
        """Replace the operator note."""
        self.order_note = normalize_order_note(note)
        self._touch()


def queue_expiry(created_at: datetime, window_minutes: int) -> datetime:
    """Compute when a queued order's offer window closes."""
    return created_at + timedelta(minutes=window_minutes)


# ============================================================================
# Conversion Outbox
# ============================================================================


class OutboxStatus(str, Enum):
    """Delivery state of a queued purchase event."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class ConversionOutboxEntry:
    """A purchase event that failed delivery and is waiting for a retry.

    Attributes:
        payload: The Conversions API event, ready to send as-is.
        attempts: Deliveries tried so far.
        next_attempt_at: Earliest time of the next retry.
    """

    order_id: str
    store_id: str
    event_id: str
    payload: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid4()))
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    next_attempt_at: datetime = field(default_factory=utc_now)
    last_error: str | None = None
    sent_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
