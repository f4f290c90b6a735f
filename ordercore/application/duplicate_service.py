"""Duplicate order detection.

Finds a customer's other recent orders so operators notice double
submissions before confirming. Read-only.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from ordercore.application.repositories import Repositories, get_repositories
from ordercore.domain.base import utc_now
from ordercore.domain.entities import Order
from ordercore.domain.exceptions import ValidationFailedError
from ordercore.domain.value_objects import normalize_phone
from ordercore.infrastructure.config import settings

logger = structlog.get_logger()


@dataclass
class DuplicateCheckResult:
    """Recent orders of the same customer."""

    duplicate_order_days: int
    orders: list[Order] = field(default_factory=list)

    @property
    def has_duplicates(self) -> bool:
        return bool(self.orders)

    @property
    def duplicate_count(self) -> int:
        return len(self.orders)


class DuplicateService:
    """Looks up a customer's orders within the store's trailing window."""

    def __init__(
        self,
        repositories: Repositories | None = None,
        request_id: str | None = None,
    ) -> None:
        self.repos = repositories or get_repositories()
        self.request_id = request_id

    async def window_days(self, store_id: str | None) -> int:
        """Trailing window length from store configuration."""
        if store_id:
            store = await self.repos.catalog.get_store(store_id)
            if store is not None and store.duplicate_order_days:
                return store.duplicate_order_days
        return settings.default_duplicate_order_days

    async def check(
        self,
        organization_id: str,
        phone: str | None = None,
        customer_id: str | None = None,
        exclude_order_id: str | None = None,
        store_id: str | None = None,
        now: datetime | None = None,
    ) -> DuplicateCheckResult:
        """Find the customer's other orders created within the window.

        The customer is identified by ID or, failing that, by phone number.

        Args:
            organization_id: Organization to search in.
            phone: Customer phone, any common format.
            customer_id: Customer ID.
            exclude_order_id: In-flight order to leave out.
            store_id: Store whose duplicate window applies.
            now: Current time (defaults to now).

        Returns:
            DuplicateCheckResult, newest orders first.

        Raises:
            ValidationFailedError: If neither phone nor customer_id is given.
        """
        days = await self.window_days(store_id)
        if customer_id is None:
            if not phone:
                raise ValidationFailedError(
                    "Either phone or customer_id is required",
                    details={"fields": ["phone", "customer_id"]},
                )
            customer = await self.repos.customers.find_by_phone(
                organization_id, normalize_phone(phone)
            )
            if customer is None:
                return DuplicateCheckResult(duplicate_order_days=days)
            customer_id = customer.id

        since = (now or utc_now()) - timedelta(days=days)
        orders = await self.repos.orders.find_recent_for_customer(
            organization_id, customer_id, since, exclude_order_id
        )
        if orders:
            logger.info(
                "Possible duplicate orders found",
                organization_id=organization_id,
                customer_id=customer_id,
                count=len(orders),
                window_days=days,
            )
        return DuplicateCheckResult(duplicate_order_days=days, orders=orders)


def get_duplicate_service(request_id: str | None = None) -> DuplicateService:
    """Get duplicate service instance."""
    return DuplicateService(request_id=request_id)
