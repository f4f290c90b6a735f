"""Tests for the ORM converters of the SQL repositories."""

from datetime import datetime, timezone

from sqlalchemy.dialects import postgresql

from ordercore.domain import Customer, Money, Order, OrderStatus, UpsellLine, UpsellType
from ordercore.infrastructure.models import OrderModel
from ordercore.infrastructure.sql_repositories import (
    increment_customer_stats,
    insert_customer_if_absent,
    order_from_model,
    order_values,
)


def compiled(statement):
    return statement.compile(dialect=postgresql.dialect())


def test_order_row_keeps_reversal_bookkeeping_and_upsells() -> None:
    order = Order.create(
        organization_id="org_1",
        store_id="store_1",
        product_name="Lampa solara",
        subtotal=Money(10000),
        upsells=[
            UpsellLine(
                upsell_id="ups_1",
                title="Al doilea bec",
                quantity=1,
                price=Money(4999),
                type=UpsellType.POSTSALE,
            )
        ],
        full_name="Ion Popescu",
        phone="0722123456",
        county="Cluj",
        city="Cluj-Napoca",
        address="Strada Lalelelor 12",
        status=OrderStatus.PENDING,
    )
    order.cancel("duplicat", canceller_name="Ana")

    values = order_values(order)
    assert "helpship_order_id" not in values

    model = OrderModel(
        id=order.id,
        helpship_order_id="hs_1",
        created_at=order.created_at,
        **values,
    )
    restored = order_from_model(model)

    assert restored.status == OrderStatus.CANCELLED
    assert restored.cancelled_from_status == OrderStatus.PENDING
    assert restored.canceller_name == "Ana"
    assert restored.total.amount_cents == 14999
    assert restored.upsells == order.upsells
    assert restored.helpship_order_id == "hs_1"


def test_customer_stats_increment_in_the_database() -> None:
    at = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)

    statement = compiled(increment_customer_stats("cus_1", Money(2500), at))
    sql = str(statement)

    assert sql.startswith("UPDATE customers SET")
    assert "customers.total_orders +" in sql
    assert "customers.total_spent_cents +" in sql
    assert "coalesce(customers.first_order_date" in sql
    assert "WHERE customers.id =" in sql
    assert "RETURNING" in sql
    assert 2500 in statement.params.values()
    assert "cus_1" in statement.params.values()


def test_customer_insert_yields_to_existing_phone() -> None:
    customer = Customer.create("org_1", "0722123456", full_name="Ion Popescu")

    statement = compiled(insert_customer_if_absent(customer))
    sql = str(statement)

    assert sql.startswith("INSERT INTO customers")
    assert "ON CONFLICT ON CONSTRAINT uq_customers_org_phone DO NOTHING" in sql
    assert statement.params["phone"] == "0722123456"
    assert statement.params["total_orders"] == 0
