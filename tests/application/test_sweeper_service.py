"""Tests for the sweepers."""

import asyncio
from datetime import date, timedelta

import pytest

from ordercore.application.sweeper_service import SweeperService
from ordercore.domain import OrderStatus, OutboxStatus
from ordercore.infrastructure.helpship_client import HelpshipClientError
from ordercore.infrastructure.meta_client import MetaClientError


@pytest.fixture
def sweeper(repos, engine, conversions) -> SweeperService:
    return SweeperService(repositories=repos, engine=engine, conversions=conversions)


async def queue_orders(engine, make_intake, count: int = 1):
    orders = []
    for _ in range(count):
        result = await engine.create_order(make_intake(store_id="store_q"))
        orders.append(result.order)
    return orders


class ClosingFactory:
    """Client factory that records when the sweeper closes it."""

    def __init__(self, helpship, events: list[str]) -> None:
        self.helpship = helpship
        self.events = events

    async def get_client(self, organization_id: str):
        return self.helpship

    async def __aenter__(self) -> "ClosingFactory":
        return self

    async def __aexit__(self, *args: object) -> None:
        self.events.append("factory closed")


class TestFinalizeExpiredQueue:
    """Tests for the queue sweeper."""

    @pytest.mark.asyncio
    async def test_batch_jobs_finish_before_clients_close(
        self, engine, make_intake, repos, helpship, conversions, meta_client, monkeypatch
    ) -> None:
        (order,) = await queue_orders(engine, make_intake)
        events: list[str] = []

        async def send_events(*args, **kwargs) -> dict:
            await asyncio.sleep(0.01)
            events.append("event sent")
            return {"events_received": 1}

        meta_client.send_events.side_effect = send_events
        batch_sweeper = SweeperService(repositories=repos, conversions=conversions)
        monkeypatch.setattr(
            batch_sweeper, "_client_factory", lambda: ClosingFactory(helpship, events)
        )

        summary = await batch_sweeper.finalize_expired_queue(
            order.created_at + timedelta(minutes=11)
        )

        assert summary.success == 1
        assert events == ["event sent", "factory closed"]
        helpship.create_order.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_finalizes_expired_orders(self, sweeper, engine, make_intake, repos) -> None:
        orders = await queue_orders(engine, make_intake, count=2)
        now = orders[-1].created_at + timedelta(minutes=11)

        summary = await sweeper.finalize_expired_queue(now)

        assert summary.to_dict() == {"total": 2, "success": 2, "failed": 0, "errors": []}
        for order in orders:
            assert (await repos.orders.get(order.id)).status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_open_window_is_left_alone(self, sweeper, engine, make_intake) -> None:
        (order,) = await queue_orders(engine, make_intake)

        summary = await sweeper.finalize_expired_queue(order.created_at + timedelta(minutes=5))

        assert summary.total == 0

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_finalize_once(
        self, sweeper, engine, make_intake, helpship, repos
    ) -> None:
        (order,) = await queue_orders(engine, make_intake)
        now = order.created_at + timedelta(minutes=11)

        summaries = await asyncio.gather(
            sweeper.finalize_expired_queue(now),
            sweeper.finalize_expired_queue(now),
        )

        assert all(s.failed == 0 for s in summaries)
        helpship.create_order.assert_awaited_once()
        assert (await repos.orders.get(order.id)).status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_sync_failure_counted(self, sweeper, engine, make_intake, helpship) -> None:
        (order,) = await queue_orders(engine, make_intake)
        helpship.create_order.side_effect = HelpshipClientError("org_1", "timeout")

        summary = await sweeper.finalize_expired_queue(order.created_at + timedelta(minutes=11))

        assert summary.failed == 1
        assert summary.errors == [{"order_id": order.id, "error": "timeout"}]


class TestConfirmScheduled:
    """Tests for the scheduled confirmation sweeper."""

    @pytest.mark.asyncio
    async def test_confirms_due_orders_only(self, sweeper, engine, make_intake, repos) -> None:
        due = (await engine.create_order(make_intake())).order
        later = (await engine.create_order(make_intake())).order
        today = date(2026, 10, 17)
        await engine.schedule(due.id, today, "org_1", today=today)
        await engine.schedule(later.id, today + timedelta(days=2), "org_1", today=today)

        summary = await sweeper.confirm_scheduled(today)

        assert (summary.total, summary.success) == (1, 1)
        assert (await repos.orders.get(due.id)).status == OrderStatus.CONFIRMED
        assert (await repos.orders.get(later.id)).status == OrderStatus.SCHEDULED


class TestRetryConversions:
    """Tests for conversion redelivery."""

    @pytest.mark.asyncio
    async def test_failed_event_is_redelivered(
        self, sweeper, engine, make_intake, meta_client, dispatcher, repos
    ) -> None:
        (order,) = await queue_orders(engine, make_intake)
        meta_client.send_events.side_effect = MetaClientError("Service unavailable", 503)
        await engine.finalize(order.id)
        await dispatcher.drain()

        (entry,) = repos.outbox.list_all()
        assert entry.attempts == 1
        assert entry.event_id == f"purchase_{order.id}"

        not_due = await sweeper.retry_conversions(entry.created_at + timedelta(minutes=1))
        assert not_due.total == 0

        meta_client.send_events.side_effect = None
        summary = await sweeper.retry_conversions(entry.created_at + timedelta(minutes=6))

        assert (summary.total, summary.success) == (1, 1)
        assert entry.status == OutboxStatus.SENT
        assert entry.attempts == 2

    @pytest.mark.asyncio
    async def test_entry_abandoned_after_max_attempts(
        self, sweeper, engine, make_intake, meta_client, dispatcher, repos
    ) -> None:
        (order,) = await queue_orders(engine, make_intake)
        meta_client.send_events.side_effect = MetaClientError("Service unavailable", 503)
        await engine.finalize(order.id)
        await dispatcher.drain()
        (entry,) = repos.outbox.list_all()
        entry.attempts = 4

        summary = await sweeper.retry_conversions(entry.next_attempt_at)

        assert summary.failed == 1
        assert summary.errors[0]["outbox_id"] == entry.id
        assert entry.status == OutboxStatus.FAILED
