"""Order transition engine.

Executes every status change of an order:
- Intake of new orders (testing, queue or pending)
- Promote, finalize, confirm, schedule, hold, unhold
- Cancel and uncancel with background Helpship reconciliation
- Resync of orders whose Helpship creation failed
- Bulk operations on a product's testing orders

Each operation loads the order, checks the operation against its
persisted status, writes with a compare-and-set on that status and then
reconciles with Helpship either inline or through the background
dispatcher.
"""

from dataclasses import dataclass, field
from datetime import date, datetime

import structlog

from ordercore.application.conversion_service import ConversionService
from ordercore.application.dispatcher import BackgroundDispatcher, get_dispatcher
from ordercore.application.repositories import Repositories, get_repositories
from ordercore.domain.base import utc_now
from ordercore.domain.entities import DeliveryPatch, Order, UpsellLine, queue_expiry
from ordercore.domain.exceptions import (
    AlreadyCancelledError,
    DomainError,
    ExternalUnavailableError,
    ForbiddenError,
    InvalidStateTransitionError,
    OfferExpiredError,
    OrderNotFoundError,
    SyncUnconfirmedError,
    ValidationFailedError,
)
from ordercore.domain.state_machines import OrderOperation, OrderStatus, require_operation
from ordercore.domain.value_objects import Money, normalize_order_note, normalize_phone
from ordercore.infrastructure.helpship_client import (
    FulfillmentClientFactory,
    HelpshipClientError,
    HelpshipOrderStatus,
)

logger = structlog.get_logger()


# ============================================================================
# Data Transfer Objects
# ============================================================================


@dataclass
class OrderIntake:
    """A new order as submitted by a storefront.

    The organization defaults to the one owning the store.
    """

    store_id: str
    product_name: str
    subtotal: Money
    full_name: str
    phone: str
    county: str
    city: str
    address: str
    product_sku: str | None = None
    quantity: int = 1
    shipping_cost: Money = field(default_factory=Money.zero)
    upsells: list[UpsellLine] = field(default_factory=list)
    postal_code: str | None = None
    offer_code: str | None = None
    testing: bool = False
    from_partial_id: str | None = None
    event_source_url: str | None = None
    client_ip: str | None = None
    client_user_agent: str | None = None
    fbp: str | None = None
    fbc: str | None = None
    organization_id: str | None = None


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class TransitionResult:
    """Result of an engine operation.

    Attributes:
        already_finalized: Finalize found the order already past the queue.
        skipped: The operation was a no-op (e.g. already done by another worker).
        sync_error: Helpship creation failed; the order is in sync_error.
    """

    order: Order | None = None
    success: bool = True
    already_finalized: bool = False
    skipped: bool = False
    sync_error: str | None = None
    message: str | None = None


@dataclass
class BulkResult:
    """Result of a bulk operation over several orders."""

    total: int = 0
    success: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


# ============================================================================
# Fulfillment Client Factory
# ============================================================================


_client_factory: FulfillmentClientFactory | None = None


async def _load_organization_settings(organization_id: str):
    return await get_repositories().catalog.get_organization_settings(organization_id)


def get_client_factory() -> FulfillmentClientFactory:
    """Get the process-wide Helpship client factory."""
    global _client_factory
    if _client_factory is None:
        _client_factory = FulfillmentClientFactory(settings_loader=_load_organization_settings)
    return _client_factory


async def close_client_factory() -> None:
    """Close cached Helpship clients on shutdown."""
    global _client_factory
    if _client_factory is not None:
        await _client_factory.close_all()
    _client_factory = None


# ============================================================================
# Transition Engine
# ============================================================================


class TransitionEngine:
    """Application service owning every order status change."""

    def __init__(
        self,
        repositories: Repositories | None = None,
        client_factory: FulfillmentClientFactory | None = None,
        dispatcher: BackgroundDispatcher | None = None,
        conversions: ConversionService | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            repositories: Repository set.
            client_factory: Per-organization Helpship clients.
            dispatcher: Background job dispatcher.
            conversions: Conversion notifier.
            request_id: Request ID for correlation.
        """
        self.repos = repositories or get_repositories()
        self.client_factory = client_factory or get_client_factory()
        self.dispatcher = dispatcher or get_dispatcher()
        self.conversions = conversions or ConversionService(
            repositories=self.repos, request_id=request_id
        )
        self.request_id = request_id

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------

    async def get_order(self, order_id: str, organization_id: str | None = None) -> Order:
        """Load an order, checking it belongs to the caller's organization.

        Raises:
            OrderNotFoundError: If the order does not exist.
            ForbiddenError: If it belongs to another organization.
        """
        order = await self.repos.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if organization_id is not None and order.organization_id != organization_id:
            raise ForbiddenError("Order", order_id)
        return order

    async def _save(
        self,
        order: Order,
        expected_status: OrderStatus,
        operation: OrderOperation,
    ) -> None:
        """Compare-and-set write; raises if another writer got there first."""
        if await self.repos.orders.update(order, expected_status):
            return
        raise await self._conflict(order.id, operation, order.status)

    async def _conflict(
        self,
        order_id: str,
        operation: OrderOperation,
        target_status: OrderStatus,
    ) -> DomainError:
        current = await self.repos.orders.get(order_id)
        if current is None:
            return OrderNotFoundError(order_id)
        if operation == OrderOperation.CANCEL and current.status == OrderStatus.CANCELLED:
            return AlreadyCancelledError(order_id)
        logger.warning(
            "Concurrent status change detected",
            order_id=order_id,
            operation=operation.value,
            current_status=current.status.value,
            request_id=self.request_id,
        )
        return InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current.status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current.status.allowed_transitions()],
            operation=operation.value,
            allowed_sources=[s.value for s in operation.allowed_sources()],
            action=operation.action,
        )

    # ------------------------------------------------------------------
    # Helpship reconciliation
    # ------------------------------------------------------------------

    async def _create_remote(self, order: Order) -> tuple[Order, str | None]:
        """Create the order in Helpship and record the link.

        On failure a pending order is moved to sync_error.

        Returns:
            The latest order and the failure message, if any.
        """
        try:
            client = await self.client_factory.get_client(order.organization_id)
            helpship_order_id = await client.create_order(order)
        except HelpshipClientError as e:
            logger.error(
                "Helpship order creation failed",
                order_id=order.id,
                organization_id=order.organization_id,
                error=e.message,
                request_id=self.request_id,
            )
            return await self._mark_sync_error(order.id), e.message

        linked = await self.repos.orders.link_external(order.id, helpship_order_id)
        if linked is None:
            logger.warning(
                "Order already linked, Helpship order left orphaned",
                order_id=order.id,
                helpship_order_id=helpship_order_id,
            )
            return await self.get_order(order.id), None

        logger.info(
            "Order linked to Helpship",
            order_id=order.id,
            organization_id=order.organization_id,
            helpship_order_id=helpship_order_id,
            status=linked.status.value,
            request_id=self.request_id,
        )
        if linked.status == OrderStatus.CANCELLED:
            # Cancelled while the create was in flight
            self._dispatch_remote_cancel(linked)
        return linked, None

    async def _mark_sync_error(self, order_id: str) -> Order:
        current = await self.get_order(order_id)
        if current.status != OrderStatus.PENDING or current.helpship_order_id:
            return current
        current.mark_sync_error()
        if not await self.repos.orders.update(current, OrderStatus.PENDING):
            logger.warning("Order changed before sync_error could be recorded", order_id=order_id)
            return await self.get_order(order_id)
        return current

    def _dispatch_remote_cancel(self, order: Order) -> None:
        organization_id = order.organization_id
        helpship_order_id = order.helpship_order_id
        self.dispatcher.submit(
            "helpship_cancel",
            lambda: self._remote_cancel(organization_id, helpship_order_id),
            order_id=order.id,
            helpship_order_id=helpship_order_id,
        )

    async def _remote_cancel(self, organization_id: str, helpship_order_id: str) -> None:
        client = await self.client_factory.get_client(organization_id)
        remote_status = await client.get_order_status(helpship_order_id)
        if remote_status == HelpshipOrderStatus.ARCHIVED:
            logger.info(
                "Helpship order already archived, skipping cancel",
                helpship_order_id=helpship_order_id,
            )
            return
        await client.cancel_order(helpship_order_id)

    async def _remote_uncancel(self, organization_id: str, helpship_order_id: str) -> None:
        client = await self.client_factory.get_client(organization_id)
        remote_status = await client.get_order_status(helpship_order_id)
        if remote_status != HelpshipOrderStatus.ARCHIVED:
            logger.info(
                "Helpship order not archived, nothing to uncancel",
                helpship_order_id=helpship_order_id,
                remote_status=remote_status.value,
            )
            return
        await client.uncancel_order(helpship_order_id)

    def _dispatch_conversion(self, order: Order) -> None:
        self.dispatcher.submit(
            "conversion_purchase",
            lambda: self.conversions.notify_purchase(order),
            order_id=order.id,
        )

    async def _record_customer_order(self, order: Order) -> None:
        if not order.customer_id:
            return
        customer = await self.repos.customers.record_order(
            order.customer_id, order.total, order.created_at
        )
        if customer is None:
            logger.warning("Customer missing for order", order_id=order.id)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def create_order(self, intake: OrderIntake) -> TransitionResult:
        """Create an order from a storefront submission.

        Testing orders stay local. Stores with a post-purchase window put
        the order in the queue; all others are finalized immediately.

        Args:
            intake: Submitted order.

        Returns:
            TransitionResult with the created order.

        Raises:
            ValidationFailedError: If the store is unknown or the phone invalid.
            ForbiddenError: If the store belongs to another organization.
        """
        store = await self.repos.catalog.get_store(intake.store_id)
        if store is None:
            raise ValidationFailedError(
                f"Unknown store: {intake.store_id}", details={"store_id": intake.store_id}
            )
        if intake.organization_id and store.organization_id != intake.organization_id:
            raise ForbiddenError("Store", store.id)
        organization_id = store.organization_id
        if intake.quantity < 1:
            raise ValidationFailedError(
                "Quantity must be at least 1", details={"field": "quantity"}
            )

        phone = normalize_phone(intake.phone)
        customer = await self.repos.customers.get_or_create(
            organization_id,
            phone,
            full_name=intake.full_name,
            county=intake.county,
            city=intake.city,
            address=intake.address,
            postal_code=intake.postal_code,
        )

        if intake.testing:
            status = OrderStatus.TESTING
        elif store.post_purchase_window_minutes:
            status = OrderStatus.QUEUE
        else:
            status = OrderStatus.PENDING

        order = Order.create(
            organization_id=organization_id,
            store_id=store.id,
            customer_id=customer.id,
            offer_code=intake.offer_code,
            product_name=intake.product_name,
            product_sku=intake.product_sku,
            quantity=intake.quantity,
            upsells=list(intake.upsells),
            subtotal=intake.subtotal,
            shipping_cost=intake.shipping_cost,
            full_name=intake.full_name.strip(),
            phone=phone,
            county=intake.county,
            city=intake.city,
            address=intake.address,
            postal_code=intake.postal_code,
            status=status,
            from_partial_id=intake.from_partial_id,
            order_series=store.order_series,
            order_number=await self.repos.orders.next_order_number(store.id),
            event_source_url=intake.event_source_url,
            client_ip=intake.client_ip,
            client_user_agent=intake.client_user_agent,
            fbp=intake.fbp,
            fbc=intake.fbc,
        )
        if status == OrderStatus.QUEUE:
            order.queue_expires_at = queue_expiry(
                order.created_at, store.post_purchase_window_minutes
            )
        await self.repos.orders.add(order)

        logger.info(
            "Order created",
            order_id=order.id,
            organization_id=order.organization_id,
            store_id=store.id,
            status=status.value,
            total=str(order.total),
            name=order.display_number,
            request_id=self.request_id,
        )

        if status != OrderStatus.PENDING:
            return TransitionResult(order=order)

        await self._record_customer_order(order)
        order, sync_error = await self._create_remote(order)
        self._dispatch_conversion(order)
        return TransitionResult(order=order, sync_error=sync_error)

    # ------------------------------------------------------------------
    # Queue and testing exits
    # ------------------------------------------------------------------

    async def promote(self, order_id: str, organization_id: str | None = None) -> TransitionResult:
        """Promote a testing order into the live flow and sync it.

        Raises:
            InvalidStateTransitionError: If the order is not in testing.
            ExternalUnavailableError: If Helpship creation failed; the order
                is left in sync_error.
        """
        order = await self.get_order(order_id, organization_id)
        order.promote()
        await self._save(order, OrderStatus.TESTING, OrderOperation.PROMOTE)
        logger.info("Order promoted from testing", order_id=order_id, request_id=self.request_id)

        await self._record_customer_order(order)
        order, sync_error = await self._create_remote(order)
        self._dispatch_conversion(order)
        if sync_error:
            raise ExternalUnavailableError("helpship", sync_error, order_id=order_id)
        return TransitionResult(order=order)

    async def finalize(
        self,
        order_id: str,
        upsell: UpsellLine | None = None,
        force: bool = False,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Close an order's post-purchase window and sync it to Helpship.

        Finalizing an order that already left the queue, or a testing
        order, succeeds without doing anything.

        Args:
            order_id: Order identifier.
            upsell: Postsale upsell the customer accepted, if any.
            force: Finalize even if the offer window elapsed (sweeper).
            now: Current time (defaults to now).

        Returns:
            TransitionResult; ``sync_error`` is set if Helpship creation failed.

        Raises:
            OfferExpiredError: If an upsell is accepted after the window closed.
            InvalidStateTransitionError: If an upsell is accepted for an order
                that left the queue.
        """
        order = await self.get_order(order_id)
        operation = OrderOperation.ATTACH_UPSELL if upsell else OrderOperation.FINALIZE

        if order.status == OrderStatus.TESTING:
            return TransitionResult(order=order, skipped=True, message="Testing order")
        if order.status != OrderStatus.QUEUE:
            if upsell is not None:
                require_operation(order.id, operation, order.status, OrderStatus.PENDING)
            return TransitionResult(order=order, already_finalized=True)
        if upsell is not None and not force and order.is_queue_expired(now):
            raise OfferExpiredError(order.id, order.queue_expires_at.isoformat())

        order.finalize(upsell)
        if not await self.repos.orders.update(order, OrderStatus.QUEUE):
            if upsell is not None:
                raise await self._conflict(order_id, operation, OrderStatus.PENDING)
            logger.info("Order finalized by another worker", order_id=order_id)
            return TransitionResult(order=await self.get_order(order_id), already_finalized=True)

        logger.info(
            "Order finalized",
            order_id=order_id,
            with_upsell=upsell is not None,
            total=str(order.total),
            forced=force,
            request_id=self.request_id,
        )

        await self._record_customer_order(order)
        order, sync_error = await self._create_remote(order)
        self._dispatch_conversion(order)
        return TransitionResult(order=order, sync_error=sync_error)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def confirm(
        self,
        order_id: str,
        patch: DeliveryPatch | None = None,
        organization_id: str | None = None,
    ) -> TransitionResult:
        """Confirm an order, pushing delivery corrections to Helpship.

        The local confirm is authoritative; Helpship failures are logged.
        """
        order = await self.get_order(order_id, organization_id)
        expected = order.status
        order.confirm(patch)
        await self._save(order, expected, OrderOperation.CONFIRM)

        logger.info(
            "Order confirmed",
            order_id=order_id,
            from_status=expected.value,
            patched=bool(patch and not patch.is_empty()),
            request_id=self.request_id,
        )

        if order.helpship_order_id is None:
            logger.warning("Confirmed order is not linked to Helpship", order_id=order_id)
            return TransitionResult(order=order)

        try:
            client = await self.client_factory.get_client(order.organization_id)
            await client.update_order(order.helpship_order_id, patch, release_hold=True)
        except HelpshipClientError as e:
            logger.warning(
                "Helpship update failed after confirm",
                order_id=order_id,
                helpship_order_id=order.helpship_order_id,
                error=e.message,
            )
            return TransitionResult(order=order, message=f"Helpship not updated: {e.message}")
        return TransitionResult(order=order)

    async def schedule(
        self,
        order_id: str,
        scheduled_date: date,
        organization_id: str | None = None,
        today: date | None = None,
    ) -> TransitionResult:
        """Defer confirmation of a pending order to a ship date."""
        today = today or utc_now().date()
        if scheduled_date < today:
            raise ValidationFailedError(
                f"Scheduled date {scheduled_date.isoformat()} is in the past",
                details={"scheduled_date": scheduled_date.isoformat()},
            )
        order = await self.get_order(order_id, organization_id)
        order.schedule(scheduled_date)
        await self._save(order, OrderStatus.PENDING, OrderOperation.SCHEDULE)
        logger.info(
            "Order scheduled",
            order_id=order_id,
            scheduled_date=scheduled_date.isoformat(),
            request_id=self.request_id,
        )
        return TransitionResult(order=order)

    async def scheduled_confirm(self, order_id: str) -> TransitionResult:
        """Confirm a scheduled order whose ship date arrived.

        A linked order is released from hold in Helpship first. Remote
        trouble is logged; the local confirm always happens.
        """
        order = await self.get_order(order_id)
        if order.status != OrderStatus.SCHEDULED:
            if order.status == OrderStatus.CONFIRMED:
                return TransitionResult(order=order, skipped=True)
            require_operation(
                order.id, OrderOperation.SCHEDULED_CONFIRM, order.status, OrderStatus.CONFIRMED
            )

        if order.helpship_order_id:
            await self._release_scheduled_hold(order)

        order.confirm(operation=OrderOperation.SCHEDULED_CONFIRM)
        if not await self.repos.orders.update(order, OrderStatus.SCHEDULED):
            current = await self.get_order(order_id)
            if current.status == OrderStatus.CONFIRMED:
                return TransitionResult(order=current, skipped=True)
            raise await self._conflict(
                order_id, OrderOperation.SCHEDULED_CONFIRM, OrderStatus.CONFIRMED
            )
        logger.info("Scheduled order confirmed", order_id=order_id)
        return TransitionResult(order=order)

    async def _release_scheduled_hold(self, order: Order) -> None:
        try:
            client = await self.client_factory.get_client(order.organization_id)
            remote_status = await client.get_order_status(order.helpship_order_id)
            if remote_status == HelpshipOrderStatus.ON_HOLD:
                await client.unhold(order.helpship_order_id)
            elif remote_status != HelpshipOrderStatus.PENDING:
                logger.warning(
                    "Unexpected Helpship status for scheduled order",
                    order_id=order.id,
                    helpship_order_id=order.helpship_order_id,
                    remote_status=remote_status.value,
                )
        except HelpshipClientError as e:
            logger.warning(
                "Helpship release failed for scheduled order",
                order_id=order.id,
                helpship_order_id=order.helpship_order_id,
                error=e.message,
            )

    # ------------------------------------------------------------------
    # Hold
    # ------------------------------------------------------------------

    async def hold(
        self,
        order_id: str,
        note: str | None = None,
        organization_id: str | None = None,
    ) -> TransitionResult:
        """Put an order on hold once Helpship confirms it is held.

        Nothing is written locally unless Helpship reports OnHold after
        the hold request.

        Raises:
            InvalidStateTransitionError: If the order is not pending.
            ValidationFailedError: If the order is not linked to Helpship.
            SyncUnconfirmedError: If Helpship did not confirm the hold.
        """
        normalize_order_note(note)
        order = await self.get_order(order_id, organization_id)
        require_operation(order.id, OrderOperation.HOLD, order.status, OrderStatus.HOLD)
        if order.helpship_order_id is None:
            raise ValidationFailedError(
                f"Order {order_id} is not linked to Helpship; resync it before holding",
                details={"order_id": order_id},
            )

        try:
            client = await self.client_factory.get_client(order.organization_id)
            await client.set_hold(order.helpship_order_id)
            remote_status = await client.get_order_status(order.helpship_order_id)
        except HelpshipClientError as e:
            logger.error(
                "Helpship hold failed",
                order_id=order_id,
                helpship_order_id=order.helpship_order_id,
                error=e.message,
            )
            raise SyncUnconfirmedError(order_id, reason=e.message) from e

        if remote_status != HelpshipOrderStatus.ON_HOLD:
            logger.error(
                "Helpship did not confirm hold",
                order_id=order_id,
                helpship_order_id=order.helpship_order_id,
                remote_status=remote_status.value,
            )
            raise SyncUnconfirmedError(order_id, remote_status=remote_status.value)

        order.hold(note)
        await self._save(order, OrderStatus.PENDING, OrderOperation.HOLD)
        logger.info(
            "Order held",
            order_id=order_id,
            helpship_order_id=order.helpship_order_id,
            request_id=self.request_id,
        )
        return TransitionResult(order=order)

    async def unhold(self, order_id: str, organization_id: str | None = None) -> TransitionResult:
        """Release a hold, restoring the status recorded when it was placed.

        Helpship is left on hold; confirming the order releases it there.
        """
        order = await self.get_order(order_id, organization_id)
        order.unhold()
        await self._save(order, OrderStatus.HOLD, OrderOperation.UNHOLD)
        logger.info(
            "Order released from hold",
            order_id=order_id,
            status=order.status.value,
            request_id=self.request_id,
        )
        return TransitionResult(order=order)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(
        self,
        order_id: str,
        note: str | None = None,
        canceller_name: str | None = None,
        organization_id: str | None = None,
    ) -> TransitionResult:
        """Cancel an order locally, then cancel it in Helpship in the background.

        Raises:
            AlreadyCancelledError: If the order is already cancelled.
        """
        order = await self.get_order(order_id, organization_id)
        if order.status == OrderStatus.CANCELLED:
            raise AlreadyCancelledError(order_id)

        expected = order.status
        order.cancel(note, canceller_name)
        await self._save(order, expected, OrderOperation.CANCEL)
        logger.info(
            "Order cancelled",
            order_id=order_id,
            from_status=expected.value,
            canceller_name=canceller_name,
            request_id=self.request_id,
        )

        if order.helpship_order_id:
            self._dispatch_remote_cancel(order)
        return TransitionResult(order=order)

    async def uncancel(self, order_id: str, organization_id: str | None = None) -> TransitionResult:
        """Restore a cancelled order to its previous status.

        Helpship is reconciled in the background, and only if it archived
        the order.
        """
        order = await self.get_order(order_id, organization_id)
        order.uncancel()
        await self._save(order, OrderStatus.CANCELLED, OrderOperation.UNCANCEL)
        logger.info(
            "Order uncancelled",
            order_id=order_id,
            status=order.status.value,
            request_id=self.request_id,
        )

        if order.helpship_order_id:
            organization, helpship_order_id = order.organization_id, order.helpship_order_id
            self.dispatcher.submit(
                "helpship_uncancel",
                lambda: self._remote_uncancel(organization, helpship_order_id),
                order_id=order_id,
                helpship_order_id=helpship_order_id,
            )
        return TransitionResult(order=order)

    # ------------------------------------------------------------------
    # Resync and notes
    # ------------------------------------------------------------------

    async def resync(self, order_id: str, organization_id: str | None = None) -> TransitionResult:
        """Retry Helpship creation for an order that was never linked.

        Raises:
            ValidationFailedError: If the order is already linked.
            ExternalUnavailableError: If Helpship creation failed again.
        """
        order = await self.get_order(order_id, organization_id)
        require_operation(order.id, OrderOperation.RESYNC, order.status, OrderStatus.PENDING)
        if order.helpship_order_id is not None:
            raise ValidationFailedError(
                f"Order {order_id} is already synced as Helpship order {order.helpship_order_id}",
                details={"order_id": order_id, "helpship_order_id": order.helpship_order_id},
            )

        order, sync_error = await self._create_remote(order)
        if sync_error:
            raise ExternalUnavailableError("helpship", sync_error, order_id=order_id)

        if order.status == OrderStatus.SYNC_ERROR:
            order.mark_resynced()
            if not await self.repos.orders.update(order, OrderStatus.SYNC_ERROR):
                order = await self.get_order(order_id)
        logger.info(
            "Order resynced",
            order_id=order_id,
            helpship_order_id=order.helpship_order_id,
            request_id=self.request_id,
        )
        return TransitionResult(order=order)

    async def set_note(
        self,
        order_id: str,
        note: str | None,
        organization_id: str | None = None,
    ) -> TransitionResult:
        """Replace an order's operator note."""
        order = await self.get_order(order_id, organization_id)
        expected = order.status
        order.set_note(note)
        if not await self.repos.orders.update(order, expected):
            current = await self.get_order(order_id)
            raise InvalidStateTransitionError(
                entity_type="Order",
                entity_id=order_id,
                current_state=current.status.value,
                target_state=expected.value,
            )
        logger.info("Order note updated", order_id=order_id, request_id=self.request_id)
        return TransitionResult(order=order)

    # ------------------------------------------------------------------
    # Bulk testing operations
    # ------------------------------------------------------------------

    async def cancel_testing_orders(self, organization_id: str, product_sku: str) -> BulkResult:
        """Cancel all testing orders of a product. Nothing is sent to Helpship."""
        orders = await self.repos.orders.list_testing_by_sku(organization_id, product_sku)
        result = BulkResult(total=len(orders))
        for order in orders:
            order.cancel_testing()
            if await self.repos.orders.update(order, OrderStatus.TESTING):
                result.success += 1
            else:
                result.failed += 1
                result.errors.append({"order_id": order.id, "error": "Order changed concurrently"})

        logger.info(
            "Testing orders cancelled",
            organization_id=organization_id,
            product_sku=product_sku,
            total=result.total,
            cancelled=result.success,
        )
        return result

    async def promote_testing_orders(self, organization_id: str, product_sku: str) -> BulkResult:
        """Promote all testing orders of a product, isolating failures."""
        orders = await self.repos.orders.list_testing_by_sku(organization_id, product_sku)
        result = BulkResult(total=len(orders))
        for order in orders:
            try:
                await self.promote(order.id, organization_id)
                result.success += 1
            except DomainError as e:
                result.failed += 1
                result.errors.append({"order_id": order.id, "error": e.message})

        logger.info(
            "Testing orders promoted",
            organization_id=organization_id,
            product_sku=product_sku,
            total=result.total,
            promoted=result.success,
            failed=result.failed,
        )
        return result


# ============================================================================
# Service Factory
# ============================================================================


def get_transition_engine(request_id: str | None = None) -> TransitionEngine:
    """Get transition engine instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        TransitionEngine instance.
    """
    return TransitionEngine(request_id=request_id)
