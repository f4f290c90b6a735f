"""PostgreSQL repositories.

SQLAlchemy implementations of the application repository interfaces.
Each call runs in its own short session; the order compare-and-set is a
single ``UPDATE ... WHERE id = :id AND status = :expected`` whose rowcount
tells whether the write won.
"""

from datetime import date, datetime

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert

from ordercore.application.repositories import (
    CatalogRepository,
    ConversionOutboxRepository,
    CustomerRepository,
    OrderRepository,
    Repositories,
)
from ordercore.domain.base import utc_now
from ordercore.domain.entities import (
    ConversionOutboxEntry,
    Customer,
    HelpshipEnvironment,
    Order,
    OrganizationSettings,
    OutboxStatus,
    Store,
    Upsell,
    UpsellLine,
    UpsellType,
)
from ordercore.domain.state_machines import OrderStatus
from ordercore.domain.value_objects import Money
from ordercore.infrastructure.database import session_scope
from ordercore.infrastructure.models import (
    ConversionOutboxModel,
    CustomerModel,
    OrderModel,
    OrganizationSettingsModel,
    StoreModel,
    UpsellModel,
)


# ============================================================================
# Converters
# ============================================================================


def _status(value: str | None) -> OrderStatus | None:
    return OrderStatus(value) if value else None


def order_from_model(model: OrderModel) -> Order:
    """Convert a row to an Order aggregate."""
    currency = model.currency
    return Order(
        id=model.id,
        organization_id=model.organization_id,
        store_id=model.store_id,
        customer_id=model.customer_id,
        offer_code=model.offer_code,
        product_name=model.product_name,
        product_sku=model.product_sku,
        quantity=model.quantity,
        upsells=[UpsellLine.from_dict(line) for line in model.upsells or []],
        subtotal=Money(model.subtotal_cents, currency),
        shipping_cost=Money(model.shipping_cost_cents, currency),
        total=Money(model.total_cents, currency),
        full_name=model.full_name,
        phone=model.phone,
        county=model.county,
        city=model.city,
        address=model.address,
        postal_code=model.postal_code,
        status=OrderStatus(model.status),
        hold_from_status=_status(model.hold_from_status),
        cancelled_from_status=_status(model.cancelled_from_status),
        cancelled_note=model.cancelled_note,
        canceller_name=model.canceller_name,
        order_note=model.order_note,
        helpship_order_id=model.helpship_order_id,
        queue_expires_at=model.queue_expires_at,
        scheduled_date=model.scheduled_date,
        from_partial_id=model.from_partial_id,
        promoted_from_testing=model.promoted_from_testing,
        order_series=model.order_series,
        order_number=model.order_number,
        event_source_url=model.event_source_url,
        client_ip=model.client_ip,
        client_user_agent=model.client_user_agent,
        fbp=model.fbp,
        fbc=model.fbc,
        version=model.version,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def order_values(order: Order) -> dict:
    """Column values of an order, without its Helpship link."""
    return {
        "organization_id": order.organization_id,
        "store_id": order.store_id,
        "customer_id": order.customer_id,
        "offer_code": order.offer_code,
        "product_name": order.product_name,
        "product_sku": order.product_sku,
        "quantity": order.quantity,
        "upsells": [line.to_dict() for line in order.upsells],
        "subtotal_cents": order.subtotal.amount_cents,
        "shipping_cost_cents": order.shipping_cost.amount_cents,
        "total_cents": order.total.amount_cents,
        "currency": order.total.currency,
        "full_name": order.full_name,
        "phone": order.phone,
        "county": order.county,
        "city": order.city,
        "address": order.address,
        "postal_code": order.postal_code,
        "status": order.status.value,
        "hold_from_status": order.hold_from_status.value if order.hold_from_status else None,
        "cancelled_from_status": (
            order.cancelled_from_status.value if order.cancelled_from_status else None
        ),
        "cancelled_note": order.cancelled_note,
        "canceller_name": order.canceller_name,
        "order_note": order.order_note,
        "queue_expires_at": order.queue_expires_at,
        "scheduled_date": order.scheduled_date,
        "from_partial_id": order.from_partial_id,
        "promoted_from_testing": order.promoted_from_testing,
        "order_series": order.order_series,
        "order_number": order.order_number,
        "event_source_url": order.event_source_url,
        "client_ip": order.client_ip,
        "client_user_agent": order.client_user_agent,
        "fbp": order.fbp,
        "fbc": order.fbc,
        "version": order.version,
        "updated_at": order.updated_at,
    }


def customer_from_model(model: CustomerModel) -> Customer:
    return Customer(
        id=model.id,
        organization_id=model.organization_id,
        phone=model.phone,
        full_name=model.full_name,
        county=model.county,
        city=model.city,
        address=model.address,
        postal_code=model.postal_code,
        total_orders=model.total_orders,
        total_spent=Money(model.total_spent_cents),
        first_order_date=model.first_order_date,
        last_order_date=model.last_order_date,
        version=model.version,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def customer_values(customer: Customer) -> dict:
    return {
        "id": customer.id,
        "organization_id": customer.organization_id,
        "phone": customer.phone,
        "full_name": customer.full_name,
        "county": customer.county,
        "city": customer.city,
        "address": customer.address,
        "postal_code": customer.postal_code,
        "total_orders": customer.total_orders,
        "total_spent_cents": customer.total_spent.amount_cents,
        "first_order_date": customer.first_order_date,
        "last_order_date": customer.last_order_date,
        "version": customer.version,
        "created_at": customer.created_at,
        "updated_at": customer.updated_at,
    }


def insert_customer_if_absent(customer: Customer):
    """INSERT that yields to a concurrent first order for the same phone."""
    return (
        insert(CustomerModel)
        .values(**customer_values(customer))
        .on_conflict_do_nothing(constraint="uq_customers_org_phone")
    )


def increment_customer_stats(customer_id: str, total: Money, at: datetime):
    """In-database increment of a customer's order statistics."""
    return (
        update(CustomerModel)
        .where(CustomerModel.id == customer_id)
        .values(
            total_orders=CustomerModel.total_orders + 1,
            total_spent_cents=CustomerModel.total_spent_cents + total.amount_cents,
            first_order_date=func.coalesce(CustomerModel.first_order_date, at),
            last_order_date=at,
            version=CustomerModel.version + 1,
            updated_at=utc_now(),
        )
        .returning(CustomerModel)
    )


def store_from_model(model: StoreModel) -> Store:
    return Store(
        id=model.id,
        organization_id=model.organization_id,
        name=model.name,
        url=model.url,
        order_series=model.order_series,
        duplicate_order_days=model.duplicate_order_days,
        post_purchase_window_minutes=model.post_purchase_window_minutes,
        meta_pixel_id=model.meta_pixel_id,
        meta_access_token=model.meta_access_token,
        meta_test_event_code=model.meta_test_event_code,
    )


def upsell_from_model(model: UpsellModel) -> Upsell:
    return Upsell(
        id=model.id,
        organization_id=model.organization_id,
        store_id=model.store_id,
        title=model.title,
        price=Money(model.price_cents, model.currency),
        type=UpsellType(model.type),
        quantity=model.quantity,
        active=model.active,
        product_sku=model.product_sku,
        product_name=model.product_name,
        display_order=model.display_order,
    )


def outbox_from_model(model: ConversionOutboxModel) -> ConversionOutboxEntry:
    return ConversionOutboxEntry(
        id=model.id,
        order_id=model.order_id,
        store_id=model.store_id,
        event_id=model.event_id,
        payload=model.payload,
        status=OutboxStatus(model.status),
        attempts=model.attempts,
        next_attempt_at=model.next_attempt_at,
        last_error=model.last_error,
        sent_at=model.sent_at,
        created_at=model.created_at,
    )


# ============================================================================
# Repositories
# ============================================================================


class SqlOrderRepository(OrderRepository):
    """Order repository backed by the ``orders`` table."""

    async def get(self, order_id: str) -> Order | None:
        async with session_scope() as session:
            model = await session.get(OrderModel, order_id)
            return order_from_model(model) if model else None

    async def add(self, order: Order) -> None:
        async with session_scope() as session:
            session.add(
                OrderModel(
                    id=order.id,
                    helpship_order_id=order.helpship_order_id,
                    created_at=order.created_at,
                    **order_values(order),
                )
            )

    async def update(self, order: Order, expected_status: OrderStatus) -> bool:
        async with session_scope() as session:
            result = await session.execute(
                update(OrderModel)
                .where(OrderModel.id == order.id, OrderModel.status == expected_status.value)
                .values(**order_values(order))
            )
            return result.rowcount == 1

    async def link_external(self, order_id: str, helpship_order_id: str) -> Order | None:
        async with session_scope() as session:
            result = await session.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id, OrderModel.helpship_order_id.is_(None))
                .values(
                    helpship_order_id=helpship_order_id,
                    version=OrderModel.version + 1,
                    updated_at=utc_now(),
                )
                .returning(OrderModel)
            )
            model = result.scalar_one_or_none()
            return order_from_model(model) if model else None

    async def find_expired_queue(self, now: datetime) -> list[Order]:
        async with session_scope() as session:
            result = await session.execute(
                select(OrderModel)
                .where(
                    OrderModel.status == OrderStatus.QUEUE.value,
                    OrderModel.queue_expires_at < now,
                )
                .order_by(OrderModel.queue_expires_at)
            )
            return [order_from_model(m) for m in result.scalars()]

    async def find_due_scheduled(self, today: date) -> list[Order]:
        async with session_scope() as session:
            result = await session.execute(
                select(OrderModel)
                .where(
                    OrderModel.status == OrderStatus.SCHEDULED.value,
                    OrderModel.scheduled_date <= today,
                )
                .order_by(OrderModel.scheduled_date)
            )
            return [order_from_model(m) for m in result.scalars()]

    async def find_recent_for_customer(
        self,
        organization_id: str,
        customer_id: str,
        since: datetime,
        exclude_order_id: str | None = None,
    ) -> list[Order]:
        query = select(OrderModel).where(
            OrderModel.organization_id == organization_id,
            OrderModel.customer_id == customer_id,
            OrderModel.created_at >= since,
        )
        if exclude_order_id:
            query = query.where(OrderModel.id != exclude_order_id)
        async with session_scope() as session:
            result = await session.execute(query.order_by(OrderModel.created_at.desc()))
            return [order_from_model(m) for m in result.scalars()]

    async def list_testing_by_sku(self, organization_id: str, product_sku: str) -> list[Order]:
        async with session_scope() as session:
            result = await session.execute(
                select(OrderModel)
                .where(
                    OrderModel.organization_id == organization_id,
                    OrderModel.product_sku == product_sku,
                    OrderModel.status == OrderStatus.TESTING.value,
                )
                .order_by(OrderModel.created_at)
            )
            return [order_from_model(m) for m in result.scalars()]

    async def next_order_number(self, store_id: str) -> int:
        async with session_scope() as session:
            result = await session.execute(
                update(StoreModel)
                .where(StoreModel.id == store_id)
                .values(order_sequence=StoreModel.order_sequence + 1)
                .returning(StoreModel.order_sequence)
            )
            return result.scalar_one()


class SqlCustomerRepository(CustomerRepository):
    """Customer repository backed by the ``customers`` table."""

    async def get(self, customer_id: str) -> Customer | None:
        async with session_scope() as session:
            model = await session.get(CustomerModel, customer_id)
            return customer_from_model(model) if model else None

    async def find_by_phone(self, organization_id: str, phone: str) -> Customer | None:
        async with session_scope() as session:
            result = await session.execute(
                select(CustomerModel).where(
                    CustomerModel.organization_id == organization_id,
                    CustomerModel.phone == phone,
                )
            )
            model = result.scalar_one_or_none()
            return customer_from_model(model) if model else None

    async def save(self, customer: Customer) -> None:
        async with session_scope() as session:
            await session.merge(CustomerModel(**customer_values(customer)))

    async def get_or_create(self, organization_id: str, phone: str, **details) -> Customer:
        candidate = Customer.create(organization_id, phone, **details)
        async with session_scope() as session:
            await session.execute(insert_customer_if_absent(candidate))
            result = await session.execute(
                select(CustomerModel).where(
                    CustomerModel.organization_id == organization_id,
                    CustomerModel.phone == phone,
                )
            )
            return customer_from_model(result.scalar_one())

    async def record_order(
        self, customer_id: str, total: Money, at: datetime
    ) -> Customer | None:
        async with session_scope() as session:
            result = await session.execute(increment_customer_stats(customer_id, total, at))
            model = result.scalar_one_or_none()
            return customer_from_model(model) if model else None


class SqlCatalogRepository(CatalogRepository):
    """Store, upsell and organization configuration tables."""

    async def get_store(self, store_id: str) -> Store | None:
        async with session_scope() as session:
            model = await session.get(StoreModel, store_id)
            return store_from_model(model) if model else None

    async def get_upsell(self, upsell_id: str) -> Upsell | None:
        async with session_scope() as session:
            model = await session.get(UpsellModel, upsell_id)
            return upsell_from_model(model) if model else None

    async def list_upsells(
        self,
        store_id: str,
        upsell_type: UpsellType | None = None,
        active_only: bool = True,
    ) -> list[Upsell]:
        query = select(UpsellModel).where(UpsellModel.store_id == store_id)
        if upsell_type is not None:
            query = query.where(UpsellModel.type == upsell_type.value)
        if active_only:
            query = query.where(UpsellModel.active.is_(True))
        async with session_scope() as session:
            result = await session.execute(query.order_by(UpsellModel.display_order))
            return [upsell_from_model(m) for m in result.scalars()]

    async def get_organization_settings(
        self, organization_id: str
    ) -> OrganizationSettings | None:
        async with session_scope() as session:
            model = await session.get(OrganizationSettingsModel, organization_id)
            if model is None:
                return None
            return OrganizationSettings(
                organization_id=model.organization_id,
                helpship_client_id=model.helpship_client_id,
                helpship_client_secret=model.helpship_client_secret,
                helpship_token_url=model.helpship_token_url,
                helpship_api_url=model.helpship_api_url,
                helpship_environment=HelpshipEnvironment(model.helpship_environment),
            )


class SqlConversionOutboxRepository(ConversionOutboxRepository):
    """Conversion outbox backed by the ``conversion_outbox`` table."""

    async def add(self, entry: ConversionOutboxEntry) -> None:
        await self.save(entry)

    async def save(self, entry: ConversionOutboxEntry) -> None:
        async with session_scope() as session:
            await session.merge(
                ConversionOutboxModel(
                    id=entry.id,
                    order_id=entry.order_id,
                    store_id=entry.store_id,
                    event_id=entry.event_id,
                    payload=entry.payload,
                    status=entry.status.value,
                    attempts=entry.attempts,
                    next_attempt_at=entry.next_attempt_at,
                    last_error=entry.last_error,
                    sent_at=entry.sent_at,
                    created_at=entry.created_at,
                )
            )

    async def find_due(self, now: datetime, limit: int) -> list[ConversionOutboxEntry]:
        async with session_scope() as session:
            result = await session.execute(
                select(ConversionOutboxModel)
                .where(
                    ConversionOutboxModel.status == OutboxStatus.PENDING.value,
                    ConversionOutboxModel.next_attempt_at <= now,
                )
                .order_by(ConversionOutboxModel.created_at)
                .limit(limit)
            )
            return [outbox_from_model(m) for m in result.scalars()]


def create_sql_repositories() -> Repositories:
    return Repositories(
        orders=SqlOrderRepository(),
        customers=SqlCustomerRepository(),
        catalog=SqlCatalogRepository(),
        outbox=SqlConversionOutboxRepository(),
    )
