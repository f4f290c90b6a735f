"""Domain layer - Order aggregate, value objects, state machine.

This module exports the core domain building blocks:

- **Entities**: Order and Customer aggregates, store/catalog configuration
- **Value Objects**: Money, order notes, phone and address helpers
- **State Machine**: OrderStatus, OrderOperation and the transition map
- **Exceptions**: Domain-specific errors and invariant violations

Example usage:
    from ordercore.domain import Money, Order, OrderStatus

    order = Order.create(
        organization_id="org-1",
        store_id="store-1",
        product_name="Lampa LED",
        subtotal=Money.from_float(100.00),
        full_name="Ion Popescu",
        phone="0722123456",
        county="Cluj",
        city="Cluj-Napoca",
        address="Strada Lalelelor 12",
        status=OrderStatus.QUEUE,
    )
    order.finalize()
"""

from ordercore.domain.base import AggregateRoot, Entity, ValueObject, utc_now
from ordercore.domain.entities import (
    ConversionOutboxEntry,
    Customer,
    DeliveryPatch,
    HelpshipEnvironment,
    Order,
    OrganizationSettings,
    OutboxStatus,
    Store,
    Upsell,
    UpsellLine,
    UpsellType,
)
from ordercore.domain.state_machines import (
    OrderOperation,
    OrderStatus,
    require_operation,
    validate_order_transition,
)
from ordercore.domain.value_objects import (
    Money,
    StreetAddress,
    normalize_order_note,
    normalize_phone,
    split_full_name,
    to_international_phone,
)

__all__ = [
    # Base
    "AggregateRoot",
    "Entity",
    "ValueObject",
    "utc_now",
    # Entities
    "ConversionOutboxEntry",
    "Customer",
    "DeliveryPatch",
    "HelpshipEnvironment",
    "Order",
    "OrganizationSettings",
    "OutboxStatus",
    "Store",
    "Upsell",
    "UpsellLine",
    "UpsellType",
    # State machine
    "OrderOperation",
    "OrderStatus",
    "require_operation",
    "validate_order_transition",
    # Value objects
    "Money",
    "StreetAddress",
    "normalize_order_note",
    "normalize_phone",
    "split_full_name",
    "to_international_phone",
]
