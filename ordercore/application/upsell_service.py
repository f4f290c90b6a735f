"""Postsale upsell handling.

A queued order can accept one post-purchase upsell from the thank-you
page before its offer window closes. Accepting it appends the line,
recomputes the total and finalizes the order in the same write.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime

import structlog

from ordercore.application.repositories import Repositories, get_repositories
from ordercore.application.transition_engine import TransitionEngine, TransitionResult
from ordercore.domain.base import utc_now
from ordercore.domain.entities import Order, Upsell, UpsellLine, UpsellType
from ordercore.domain.exceptions import (
    OfferExpiredError,
    UpsellNotFoundError,
    ValidationFailedError,
)
from ordercore.domain.state_machines import OrderOperation, OrderStatus, require_operation

logger = structlog.get_logger()


@dataclass
class PostsaleOffer:
    """What the thank-you page should show for an order."""

    order: Order
    show_offer: bool
    expires_at: datetime | None = None
    upsells: list[Upsell] = field(default_factory=list)


class UpsellService:
    """Validates and attaches postsale upsells."""

    def __init__(
        self,
        repositories: Repositories | None = None,
        engine: TransitionEngine | None = None,
        request_id: str | None = None,
    ) -> None:
        self.repos = repositories or get_repositories()
        self.engine = engine or TransitionEngine(repositories=self.repos, request_id=request_id)
        self.request_id = request_id

    async def _resolve_upsell(self, order: Order, upsell_id: str) -> Upsell:
        upsell = await self.repos.catalog.get_upsell(upsell_id)
        if upsell is None or upsell.organization_id != order.organization_id:
            raise UpsellNotFoundError(upsell_id)
        if upsell.type != UpsellType.POSTSALE:
            raise ValidationFailedError(
                f"Upsell {upsell_id} is a {upsell.type.value} upsell, not postsale",
                details={"upsell_id": upsell_id, "type": upsell.type.value},
            )
        if not upsell.active:
            raise ValidationFailedError(
                f"Upsell {upsell_id} is not active",
                details={"upsell_id": upsell_id},
            )
        return upsell

    async def attach_postsale(
        self,
        order_id: str,
        upsell_id: str,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Add a postsale upsell to a queued order and finalize it.

        Args:
            order_id: Queued order.
            upsell_id: Catalog upsell accepted by the customer.
            now: Current time (defaults to now).

        Returns:
            TransitionResult of the finalization.

        Raises:
            OrderNotFoundError: If the order does not exist.
            UpsellNotFoundError: If the upsell does not exist for the organization.
            ValidationFailedError: If the upsell is inactive or not postsale.
            InvalidStateTransitionError: If the order is not queued.
            OfferExpiredError: If the offer window already closed.
        """
        now = now or utc_now()
        order = await self.engine.get_order(order_id)
        upsell = await self._resolve_upsell(order, upsell_id)
        require_operation(order.id, OrderOperation.ATTACH_UPSELL, order.status, OrderStatus.PENDING)
        if order.is_queue_expired(now):
            raise OfferExpiredError(order.id, order.queue_expires_at.isoformat())

        result = await self.engine.finalize(order_id, upsell=upsell.to_line(), now=now)
        logger.info(
            "Postsale upsell attached",
            order_id=order_id,
            upsell_id=upsell_id,
            total=str(result.order.total) if result.order else None,
            request_id=self.request_id,
        )
        return result

    async def resolve_presale(
        self,
        organization_id: str,
        store_id: str,
        selections: list[tuple[str, int]],
    ) -> list[UpsellLine]:
        """Snapshot the presale upsells chosen on the landing page.

        Args:
            organization_id: Ordering organization.
            store_id: Store the order is placed in.
            selections: (upsell_id, quantity) pairs.

        Returns:
            Order lines priced from the catalog.
        """
        lines = []
        for upsell_id, quantity in selections:
            upsell = await self.repos.catalog.get_upsell(upsell_id)
            if (
                upsell is None
                or upsell.organization_id != organization_id
                or upsell.store_id != store_id
            ):
                raise UpsellNotFoundError(upsell_id)
            if upsell.type != UpsellType.PRESALE or not upsell.active:
                raise ValidationFailedError(
                    f"Upsell {upsell_id} is not an active presale upsell",
                    details={"upsell_id": upsell_id},
                )
            lines.append(replace(upsell.to_line(), quantity=quantity or upsell.quantity))
        return lines

    async def get_postsale_offer(self, order_id: str, now: datetime | None = None) -> PostsaleOffer:
        """Decide whether the thank-you page should offer a postsale upsell."""
        order = await self.engine.get_order(order_id)
        show = order.status == OrderStatus.QUEUE and not order.is_queue_expired(now)
        if not show:
            return PostsaleOffer(order=order, show_offer=False)

        upsells = await self.repos.catalog.list_upsells(order.store_id, UpsellType.POSTSALE)
        return PostsaleOffer(
            order=order,
            show_offer=bool(upsells),
            expires_at=order.queue_expires_at,
            upsells=upsells,
        )


def get_upsell_service(request_id: str | None = None) -> UpsellService:
    """Get upsell service instance."""
    return UpsellService(request_id=request_id)
