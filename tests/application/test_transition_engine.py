"""Tests for the order transition engine."""

import asyncio
from datetime import date, timedelta

import pytest

from ordercore.application.transition_engine import TransitionEngine
from ordercore.domain import DeliveryPatch, Money, Order, OrderStatus
from ordercore.domain.exceptions import (
    AlreadyCancelledError,
    ExternalUnavailableError,
    ForbiddenError,
    InvalidOrderNoteError,
    InvalidStateTransitionError,
    OrderNotFoundError,
    SyncUnconfirmedError,
    ValidationFailedError,
)
from ordercore.infrastructure.helpship_client import HelpshipClientError, HelpshipOrderStatus


def helpship_error(message: str = "Helpship unavailable") -> HelpshipClientError:
    return HelpshipClientError("org_1", message, status_code=503)


async def create_pending(engine: TransitionEngine, make_intake, **overrides):
    result = await engine.create_order(make_intake(**overrides))
    return result.order


class TestIntake:
    """Tests for order creation."""

    @pytest.mark.asyncio
    async def test_direct_store_creates_linked_pending_order(
        self, engine, make_intake, helpship, repos
    ) -> None:
        result = await engine.create_order(make_intake())

        order = result.order
        assert order.status == OrderStatus.PENDING
        assert order.helpship_order_id == "hs_100"
        assert order.phone == "0722123456"
        assert order.display_number == "VLR-00001"
        assert result.sync_error is None
        helpship.create_order.assert_awaited_once()

        customer = await repos.customers.get(order.customer_id)
        assert customer.total_orders == 1
        assert customer.total_spent.amount_cents == 10000

    @pytest.mark.asyncio
    async def test_testing_order_stays_local(self, engine, make_intake, helpship) -> None:
        result = await engine.create_order(make_intake(testing=True))

        assert result.order.status == OrderStatus.TESTING
        helpship.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_queue_store_opens_offer_window(self, engine, make_intake, helpship) -> None:
        result = await engine.create_order(make_intake(store_id="store_q"))

        order = result.order
        assert order.status == OrderStatus.QUEUE
        assert order.queue_expires_at == order.created_at + timedelta(minutes=10)
        helpship.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_helpship_failure_leaves_sync_error(
        self, engine, make_intake, helpship, repos
    ) -> None:
        helpship.create_order.side_effect = helpship_error()

        result = await engine.create_order(make_intake())

        assert result.sync_error == "Helpship unavailable"
        stored = await repos.orders.get(result.order.id)
        assert stored.status == OrderStatus.SYNC_ERROR
        assert stored.helpship_order_id is None

    @pytest.mark.asyncio
    async def test_unknown_store_rejected(self, engine, make_intake) -> None:
        with pytest.raises(ValidationFailedError):
            await engine.create_order(make_intake(store_id="missing"))

    @pytest.mark.asyncio
    async def test_store_of_other_organization_forbidden(self, engine, make_intake) -> None:
        with pytest.raises(ForbiddenError):
            await engine.create_order(make_intake(organization_id="org_2"))

    @pytest.mark.asyncio
    async def test_same_phone_reuses_customer(self, engine, make_intake) -> None:
        first = await create_pending(engine, make_intake)
        second = await create_pending(engine, make_intake, phone="0722-123-456")

        assert first.customer_id == second.customer_id
        assert second.display_number == "VLR-00002"

    @pytest.mark.asyncio
    async def test_concurrent_orders_all_count_toward_customer(
        self, engine, make_intake, repos
    ) -> None:
        orders = await asyncio.gather(
            *(create_pending(engine, make_intake) for _ in range(3))
        )

        assert len({order.customer_id for order in orders}) == 1
        customer = await repos.customers.get(orders[0].customer_id)
        assert customer.total_orders == 3
        assert customer.total_spent.amount_cents == 30000


class TestFinalize:
    """Tests for leaving the post-purchase queue."""

    @pytest.mark.asyncio
    async def test_finalize_syncs_and_is_idempotent(self, engine, make_intake, helpship) -> None:
        queued = await create_pending(engine, make_intake, store_id="store_q")

        first = await engine.finalize(queued.id)
        second = await engine.finalize(queued.id)

        assert first.order.status == OrderStatus.PENDING
        assert first.order.helpship_order_id == "hs_100"
        assert second.already_finalized
        helpship.create_order.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_finalize_creates_one_remote_order(
        self, engine, make_intake, helpship
    ) -> None:
        queued = await create_pending(engine, make_intake, store_id="store_q")

        results = await asyncio.gather(
            engine.finalize(queued.id, force=True),
            engine.finalize(queued.id, force=True),
        )

        assert sorted(r.already_finalized for r in results) == [False, True]
        helpship.create_order.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_finalize_testing_order_is_noop(self, engine, make_intake) -> None:
        testing = await create_pending(engine, make_intake, testing=True)

        result = await engine.finalize(testing.id)

        assert result.skipped
        assert result.order.status == OrderStatus.TESTING

    @pytest.mark.asyncio
    async def test_finalize_unknown_order(self, engine) -> None:
        with pytest.raises(OrderNotFoundError):
            await engine.finalize("missing")

    @pytest.mark.asyncio
    async def test_purchase_event_sent_after_finalize(
        self, engine, make_intake, dispatcher, meta_client
    ) -> None:
        queued = await create_pending(engine, make_intake, store_id="store_q")

        await engine.finalize(queued.id)
        await dispatcher.drain()

        meta_client.send_events.assert_awaited_once()
        event = meta_client.send_events.await_args.kwargs["events"][0]
        assert event["event_id"] == f"purchase_{queued.id}"


class TestPromote:
    """Tests for promoting testing orders."""

    @pytest.mark.asyncio
    async def test_promote_syncs_order(self, engine, make_intake) -> None:
        testing = await create_pending(engine, make_intake, testing=True)

        result = await engine.promote(testing.id, "org_1")

        assert result.order.status == OrderStatus.PENDING
        assert result.order.promoted_from_testing
        assert result.order.helpship_order_id == "hs_100"

    @pytest.mark.asyncio
    async def test_promote_failure_surfaces_and_leaves_sync_error(
        self, engine, make_intake, helpship, repos
    ) -> None:
        testing = await create_pending(engine, make_intake, testing=True)
        helpship.create_order.side_effect = helpship_error()

        with pytest.raises(ExternalUnavailableError):
            await engine.promote(testing.id, "org_1")

        stored = await repos.orders.get(testing.id)
        assert stored.status == OrderStatus.SYNC_ERROR

    @pytest.mark.asyncio
    async def test_promote_pending_order_rejected(self, engine, make_intake) -> None:
        order = await create_pending(engine, make_intake)
        with pytest.raises(InvalidStateTransitionError):
            await engine.promote(order.id, "org_1")


class TestHold:
    """Tests for the hold gate."""

    @pytest.mark.asyncio
    async def test_hold_requires_helpship_confirmation(
        self, engine, make_intake, helpship, repos
    ) -> None:
        order = await create_pending(engine, make_intake)
        helpship.get_order_status.return_value = HelpshipOrderStatus.PENDING

        with pytest.raises(SyncUnconfirmedError):
            await engine.hold(order.id, "client neacasă", "org_1")

        stored = await repos.orders.get(order.id)
        assert stored.status == OrderStatus.PENDING
        assert stored.order_note is None

    @pytest.mark.asyncio
    async def test_hold_and_unhold(self, engine, make_intake, helpship) -> None:
        order = await create_pending(engine, make_intake)
        helpship.get_order_status.return_value = HelpshipOrderStatus.ON_HOLD

        held = await engine.hold(order.id, "client neacasă", "org_1")
        assert held.order.status == OrderStatus.HOLD
        assert held.order.order_note == "client neacasă"
        helpship.set_hold.assert_awaited_with("hs_100")

        released = await engine.unhold(order.id, "org_1")
        assert released.order.status == OrderStatus.PENDING
        assert released.order.order_note is None
        helpship.unhold.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hold_helpship_error(self, engine, make_intake, helpship) -> None:
        order = await create_pending(engine, make_intake)
        helpship.set_hold.side_effect = helpship_error()

        with pytest.raises(SyncUnconfirmedError):
            await engine.hold(order.id, None, "org_1")

    @pytest.mark.asyncio
    async def test_hold_sync_error_order_rejected(self, engine, make_intake, helpship) -> None:
        helpship.create_order.side_effect = helpship_error()
        order = await create_pending(engine, make_intake)

        with pytest.raises(InvalidStateTransitionError):
            await engine.hold(order.id, None, "org_1")

    @pytest.mark.asyncio
    async def test_hold_unlinked_pending_order_rejected(self, engine, repos, helpship) -> None:
        order = Order.create(
            organization_id="org_1",
            store_id="store_1",
            product_name="Lampa solara",
            subtotal=Money(10000),
            full_name="Ion Popescu",
            phone="0722123456",
            county="Cluj",
            city="Cluj-Napoca",
            address="Strada Lalelelor 12",
        )
        await repos.orders.add(order)

        with pytest.raises(ValidationFailedError):
            await engine.hold(order.id, None, "org_1")
        helpship.set_hold.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hold_invalid_note_checked_first(self, engine, make_intake, helpship) -> None:
        order = await create_pending(engine, make_intake)

        with pytest.raises(InvalidOrderNoteError):
            await engine.hold(order.id, "prea lung pentru o notă", "org_1")
        helpship.set_hold.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hold_other_organization_forbidden(self, engine, make_intake) -> None:
        order = await create_pending(engine, make_intake)
        with pytest.raises(ForbiddenError):
            await engine.hold(order.id, None, "org_2")


class TestCancel:
    """Tests for cancel and uncancel."""

    @pytest.mark.asyncio
    async def test_cancel_twice_reports_already_cancelled(
        self, engine, make_intake, helpship, dispatcher
    ) -> None:
        order = await create_pending(engine, make_intake)

        result = await engine.cancel(order.id, "nu mai vrea", "Ana", "org_1")
        assert result.order.status == OrderStatus.CANCELLED
        assert result.order.canceller_name == "Ana"

        with pytest.raises(AlreadyCancelledError):
            await engine.cancel(order.id, None, None, "org_1")

        await dispatcher.drain()
        helpship.cancel_order.assert_awaited_once_with("hs_100")

    @pytest.mark.asyncio
    async def test_cancel_skips_archived_remote(
        self, engine, make_intake, helpship, dispatcher
    ) -> None:
        order = await create_pending(engine, make_intake)
        helpship.get_order_status.return_value = HelpshipOrderStatus.ARCHIVED

        await engine.cancel(order.id, organization_id="org_1")
        await dispatcher.drain()

        helpship.cancel_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_cancel_failure_does_not_fail_cancel(
        self, engine, make_intake, helpship, dispatcher
    ) -> None:
        order = await create_pending(engine, make_intake)
        helpship.cancel_order.side_effect = helpship_error()

        result = await engine.cancel(order.id, organization_id="org_1")
        await dispatcher.drain()

        assert result.order.status == OrderStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_uncancel_restores_previous_status(
        self, engine, make_intake, helpship, dispatcher
    ) -> None:
        order = await create_pending(engine, make_intake)
        await engine.schedule(order.id, date.today() + timedelta(days=3), "org_1")
        await engine.cancel(order.id, organization_id="org_1")
        await dispatcher.drain()
        helpship.get_order_status.return_value = HelpshipOrderStatus.ARCHIVED

        result = await engine.uncancel(order.id, "org_1")
        await dispatcher.drain()

        assert result.order.status == OrderStatus.SCHEDULED
        assert result.order.cancelled_from_status is None
        helpship.uncancel_order.assert_awaited_once_with("hs_100")

    @pytest.mark.asyncio
    async def test_uncancel_active_order_rejected(self, engine, make_intake) -> None:
        order = await create_pending(engine, make_intake)
        with pytest.raises(InvalidStateTransitionError):
            await engine.uncancel(order.id, "org_1")


class TestConfirmAndSchedule:
    """Tests for confirmation paths."""

    @pytest.mark.asyncio
    async def test_confirm_pushes_patch(self, engine, make_intake, helpship) -> None:
        order = await create_pending(engine, make_intake)
        patch = DeliveryPatch(city="Turda", shipping_cost=Money(1999))

        result = await engine.confirm(order.id, patch, "org_1")

        assert result.order.status == OrderStatus.CONFIRMED
        assert result.order.total.amount_cents == 11999
        helpship.update_order.assert_awaited_once_with("hs_100", patch, release_hold=True)

    @pytest.mark.asyncio
    async def test_confirm_survives_helpship_failure(self, engine, make_intake, helpship) -> None:
        order = await create_pending(engine, make_intake)
        helpship.update_order.side_effect = helpship_error()

        result = await engine.confirm(order.id, None, "org_1")

        assert result.order.status == OrderStatus.CONFIRMED
        assert "Helpship not updated" in result.message

    @pytest.mark.asyncio
    async def test_confirm_held_order_rejected(self, engine, make_intake, helpship) -> None:
        order = await create_pending(engine, make_intake)
        helpship.get_order_status.return_value = HelpshipOrderStatus.ON_HOLD
        await engine.hold(order.id, None, "org_1")

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await engine.confirm(order.id, None, "org_1")
        assert "has status 'hold'" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_schedule_in_past_rejected(self, engine, make_intake) -> None:
        order = await create_pending(engine, make_intake)
        with pytest.raises(ValidationFailedError):
            await engine.schedule(
                order.id, date(2026, 1, 1), "org_1", today=date(2026, 10, 17)
            )

    @pytest.mark.asyncio
    async def test_scheduled_confirm_releases_remote_hold(
        self, engine, make_intake, helpship
    ) -> None:
        order = await create_pending(engine, make_intake)
        await engine.schedule(order.id, date(2026, 10, 20), "org_1", today=date(2026, 10, 17))
        helpship.get_order_status.return_value = HelpshipOrderStatus.ON_HOLD

        result = await engine.scheduled_confirm(order.id)
        again = await engine.scheduled_confirm(order.id)

        assert result.order.status == OrderStatus.CONFIRMED
        assert again.skipped
        helpship.unhold.assert_awaited_once_with("hs_100")


class TestResync:
    """Tests for resync."""

    @pytest.mark.asyncio
    async def test_resync_links_failed_order(self, engine, make_intake, helpship) -> None:
        helpship.create_order.side_effect = helpship_error()
        order = await create_pending(engine, make_intake)
        helpship.create_order.side_effect = None
        helpship.create_order.return_value = "hs_200"

        result = await engine.resync(order.id, "org_1")

        assert result.order.status == OrderStatus.PENDING
        assert result.order.helpship_order_id == "hs_200"

    @pytest.mark.asyncio
    async def test_resync_linked_order_rejected(self, engine, make_intake) -> None:
        order = await create_pending(engine, make_intake)
        with pytest.raises(ValidationFailedError):
            await engine.resync(order.id, "org_1")

    @pytest.mark.asyncio
    async def test_resync_failure_keeps_sync_error(
        self, engine, make_intake, helpship, repos
    ) -> None:
        helpship.create_order.side_effect = helpship_error()
        order = await create_pending(engine, make_intake)

        with pytest.raises(ExternalUnavailableError):
            await engine.resync(order.id, "org_1")
        assert (await repos.orders.get(order.id)).status == OrderStatus.SYNC_ERROR


class TestNotesAndBulk:
    """Tests for notes and testing-order bulk operations."""

    @pytest.mark.asyncio
    async def test_set_note(self, engine, make_intake) -> None:
        order = await create_pending(engine, make_intake)

        result = await engine.set_note(order.id, " sună după 18 ", "org_1")

        assert result.order.order_note == "sună după 18"
        assert result.order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_bulk_cancel_testing_orders(self, engine, make_intake, helpship) -> None:
        for _ in range(3):
            await create_pending(engine, make_intake, testing=True)
        await create_pending(engine, make_intake, testing=True, product_sku="OTHER")

        result = await engine.cancel_testing_orders("org_1", "LAMPA-1")

        assert (result.total, result.success, result.failed) == (3, 3, 0)
        helpship.cancel_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bulk_promote_isolates_failures(self, engine, make_intake, helpship) -> None:
        for _ in range(2):
            await create_pending(engine, make_intake, testing=True)
        helpship.create_order.side_effect = ["hs_1", helpship_error()]

        result = await engine.promote_testing_orders("org_1", "LAMPA-1")

        assert (result.total, result.success, result.failed) == (2, 1, 1)
        assert result.errors[0]["error"]
