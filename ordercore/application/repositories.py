"""Repository interfaces and in-memory implementations.

The transition engine only talks to these interfaces. The in-memory
implementations back the default configuration and the test suite; the
PostgreSQL implementations live in ordercore.infrastructure.sql_repositories.

Every write of an order is a compare-and-set on the status the caller
loaded: ``update(order, expected_status)`` returns False instead of
overwriting when another writer changed the status first.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import date, datetime

from ordercore.domain.entities import (
    ConversionOutboxEntry,
    Customer,
    Order,
    OrganizationSettings,
    OutboxStatus,
    Store,
    Upsell,
    UpsellType,
)
from ordercore.domain.state_machines import OrderStatus
from ordercore.domain.value_objects import Money


# ============================================================================
# Interfaces
# ============================================================================


class OrderRepository(ABC):
    """Persistence for Order aggregates."""

    @abstractmethod
    async def get(self, order_id: str) -> Order | None:
        """Load a detached copy of an order."""

    @abstractmethod
    async def add(self, order: Order) -> None:
        """Insert a new order."""

    @abstractmethod
    async def update(self, order: Order, expected_status: OrderStatus) -> bool:
        """Write an order if its stored status still equals expected_status.

        Returns:
            True if written, False if another writer moved the order first.
        """

    @abstractmethod
    async def link_external(self, order_id: str, helpship_order_id: str) -> Order | None:
        """Set the Helpship ID if it is still unset, regardless of status.

        Returns:
            The updated order, or None if the order is missing or already linked.
        """

    @abstractmethod
    async def find_expired_queue(self, now: datetime) -> list[Order]:
        """Queued orders whose offer window closed before ``now``."""

    @abstractmethod
    async def find_due_scheduled(self, today: date) -> list[Order]:
        """Scheduled orders whose ship date is today or earlier."""

    @abstractmethod
    async def find_recent_for_customer(
        self,
        organization_id: str,
        customer_id: str,
        since: datetime,
        exclude_order_id: str | None = None,
    ) -> list[Order]:
        """Orders of a customer created at or after ``since``, newest first."""

    @abstractmethod
    async def list_testing_by_sku(self, organization_id: str, product_sku: str) -> list[Order]:
        """Testing orders of a product."""

    @abstractmethod
    async def next_order_number(self, store_id: str) -> int:
        """Allocate the next sequential order number of a store."""


class CustomerRepository(ABC):
    """Persistence for Customer aggregates."""

    @abstractmethod
    async def get(self, customer_id: str) -> Customer | None: ...

    @abstractmethod
    async def find_by_phone(self, organization_id: str, phone: str) -> Customer | None: ...

    @abstractmethod
    async def save(self, customer: Customer) -> None: ...

    @abstractmethod
    async def record_order(
        self, customer_id: str, total: Money, at: datetime
    ) -> Customer | None:
        """Add one order to the customer's statistics as a single atomic step.

        Returns:
            The updated customer, or None if it does not exist.
        """

    async def get_or_create(self, organization_id: str, phone: str, **details) -> Customer:
        """Return the customer for a phone number, creating it on first order."""
        customer = await self.find_by_phone(organization_id, phone)
        if customer is None:
            customer = Customer.create(organization_id, phone, **details)
            await self.save(customer)
        return customer


class CatalogRepository(ABC):
    """Read access to store, upsell and organization configuration."""

    @abstractmethod
    async def get_store(self, store_id: str) -> Store | None: ...

    @abstractmethod
    async def get_upsell(self, upsell_id: str) -> Upsell | None: ...

    @abstractmethod
    async def list_upsells(
        self,
        store_id: str,
        upsell_type: UpsellType | None = None,
        active_only: bool = True,
    ) -> list[Upsell]: ...

    @abstractmethod
    async def get_organization_settings(
        self, organization_id: str
    ) -> OrganizationSettings | None: ...


class ConversionOutboxRepository(ABC):
    """Storage for purchase events awaiting redelivery."""

    @abstractmethod
    async def add(self, entry: ConversionOutboxEntry) -> None: ...

    @abstractmethod
    async def save(self, entry: ConversionOutboxEntry) -> None: ...

    @abstractmethod
    async def find_due(self, now: datetime, limit: int) -> list[ConversionOutboxEntry]:
        """Pending entries whose next attempt is due, oldest first."""


# ============================================================================
# In-Memory Implementations
# ============================================================================


class InMemoryOrderRepository(OrderRepository):
    """In-memory order storage.

    Orders are stored and returned as copies so callers never share state
    with the store; a lock makes each compare-and-set atomic.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._sequences: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def get(self, order_id: str) -> Order | None:
        async with self._lock:
            order = self._orders.get(order_id)
            return order.copy() if order else None

    async def add(self, order: Order) -> None:
        async with self._lock:
            self._orders[order.id] = order.copy()

    async def update(self, order: Order, expected_status: OrderStatus) -> bool:
        async with self._lock:
            current = self._orders.get(order.id)
            if current is None or current.status != expected_status:
                return False
            # The Helpship link is owned by link_external
            stored = order.copy()
            stored.helpship_order_id = current.helpship_order_id or order.helpship_order_id
            self._orders[order.id] = stored
            return True

    async def link_external(self, order_id: str, helpship_order_id: str) -> Order | None:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None or current.helpship_order_id is not None:
                return None
            current.link_helpship(helpship_order_id)
            return current.copy()

    async def find_expired_queue(self, now: datetime) -> list[Order]:
        async with self._lock:
            orders = [
                o.copy()
                for o in self._orders.values()
                if o.status == OrderStatus.QUEUE
                and o.queue_expires_at is not None
                and o.queue_expires_at < now
            ]
        orders.sort(key=lambda o: o.queue_expires_at)
        return orders

    async def find_due_scheduled(self, today: date) -> list[Order]:
        async with self._lock:
            orders = [
                o.copy()
                for o in self._orders.values()
                if o.status == OrderStatus.SCHEDULED
                and o.scheduled_date is not None
                and o.scheduled_date <= today
            ]
        orders.sort(key=lambda o: o.scheduled_date)
        return orders

    async def find_recent_for_customer(
        self,
        organization_id: str,
        customer_id: str,
        since: datetime,
        exclude_order_id: str | None = None,
    ) -> list[Order]:
        async with self._lock:
            orders = [
                o.copy()
                for o in self._orders.values()
                if o.organization_id == organization_id
                and o.customer_id == customer_id
                and o.created_at >= since
                and o.id != exclude_order_id
            ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    async def list_testing_by_sku(self, organization_id: str, product_sku: str) -> list[Order]:
        async with self._lock:
            orders = [
                o.copy()
                for o in self._orders.values()
                if o.organization_id == organization_id
                and o.product_sku == product_sku
                and o.status == OrderStatus.TESTING
            ]
        orders.sort(key=lambda o: o.created_at)
        return orders

    async def next_order_number(self, store_id: str) -> int:
        async with self._lock:
            number = self._sequences.get(store_id, 0) + 1
            self._sequences[store_id] = number
            return number


class InMemoryCustomerRepository(CustomerRepository):
    """In-memory customer storage keyed by (organization_id, phone)."""

    def __init__(self) -> None:
        self._customers: dict[str, Customer] = {}
        self._by_phone: dict[tuple[str, str], str] = {}

    async def get(self, customer_id: str) -> Customer | None:
        return self._customers.get(customer_id)

    async def find_by_phone(self, organization_id: str, phone: str) -> Customer | None:
        customer_id = self._by_phone.get((organization_id, phone))
        if customer_id:
            return self._customers.get(customer_id)
        return None

    async def save(self, customer: Customer) -> None:
        self._customers[customer.id] = customer
        self._by_phone[(customer.organization_id, customer.phone)] = customer.id

    async def record_order(
        self, customer_id: str, total: Money, at: datetime
    ) -> Customer | None:
        customer = self._customers.get(customer_id)
        if customer is not None:
            customer.record_order(total, at)
        return customer


class InMemoryCatalogRepository(CatalogRepository):
    """In-memory store, upsell and organization configuration."""

    def __init__(self) -> None:
        self._stores: dict[str, Store] = {}
        self._upsells: dict[str, Upsell] = {}
        self._org_settings: dict[str, OrganizationSettings] = {}

    def add_store(self, store: Store) -> None:
        self._stores[store.id] = store

    def add_upsell(self, upsell: Upsell) -> None:
        self._upsells[upsell.id] = upsell

    def set_organization_settings(self, org_settings: OrganizationSettings) -> None:
        self._org_settings[org_settings.organization_id] = org_settings

    async def get_store(self, store_id: str) -> Store | None:
        return self._stores.get(store_id)

    async def get_upsell(self, upsell_id: str) -> Upsell | None:
        return self._upsells.get(upsell_id)

    async def list_upsells(
        self,
        store_id: str,
        upsell_type: UpsellType | None = None,
        active_only: bool = True,
    ) -> list[Upsell]:
        upsells = [
            u
            for u in self._upsells.values()
            if u.store_id == store_id
            and (upsell_type is None or u.type == upsell_type)
            and (u.active or not active_only)
        ]
        upsells.sort(key=lambda u: u.display_order)
        return upsells

    async def get_organization_settings(
        self, organization_id: str
    ) -> OrganizationSettings | None:
        return self._org_settings.get(organization_id)


class InMemoryConversionOutboxRepository(ConversionOutboxRepository):
    """In-memory conversion outbox."""

    def __init__(self) -> None:
        self._entries: dict[str, ConversionOutboxEntry] = {}

    async def add(self, entry: ConversionOutboxEntry) -> None:
        self._entries[entry.id] = entry

    async def save(self, entry: ConversionOutboxEntry) -> None:
        self._entries[entry.id] = entry

    async def find_due(self, now: datetime, limit: int) -> list[ConversionOutboxEntry]:
        due = [
            e
            for e in self._entries.values()
            if e.status == OutboxStatus.PENDING and e.next_attempt_at <= now
        ]
        due.sort(key=lambda e: e.created_at)
        return due[:limit]

    def list_all(self) -> list[ConversionOutboxEntry]:
        return list(self._entries.values())


# ============================================================================
# Repository Registry
# ============================================================================


class Repositories:
    """The set of repositories one service instance works with."""

    def __init__(
        self,
        orders: OrderRepository,
        customers: CustomerRepository,
        catalog: CatalogRepository,
        outbox: ConversionOutboxRepository,
    ) -> None:
        self.orders = orders
        self.customers = customers
        self.catalog = catalog
        self.outbox = outbox


def create_in_memory_repositories() -> Repositories:
    return Repositories(
        orders=InMemoryOrderRepository(),
        customers=InMemoryCustomerRepository(),
        catalog=InMemoryCatalogRepository(),
        outbox=InMemoryConversionOutboxRepository(),
    )


# Global repository instance
_repositories: Repositories | None = None


def get_repositories() -> Repositories:
    """Get repositories singleton for the configured backend."""
    global _repositories
    if _repositories is None:
        from ordercore.infrastructure.config import settings

        if settings.repository_backend == "sql":
            from ordercore.infrastructure.sql_repositories import create_sql_repositories

            _repositories = create_sql_repositories()
        else:
            _repositories = create_in_memory_repositories()
    return _repositories


def set_repositories(repositories: Repositories) -> None:
    """Install a specific repository set (for scripts and tests)."""
    global _repositories
    _repositories = repositories


def reset_repositories() -> None:
    """Reset repositories (for testing)."""
    global _repositories
    _repositories = create_in_memory_repositories()
