"""Tests for cron endpoints."""

from datetime import timedelta

import pytest

from ordercore.api.cron import get_service
from ordercore.application.repositories import get_repositories
from ordercore.application.sweeper_service import SweeperService
from ordercore.application.transition_engine import TransitionEngine
from ordercore.domain.base import utc_now
from ordercore.domain.state_machines import OrderStatus
from ordercore.infrastructure.helpship_client import HelpshipClientError
from ordercore.main import app

CRON_PATHS = [
    "/cron/finalize-expired-queue",
    "/cron/confirm-scheduled",
    "/cron/retry-conversions",
]


@pytest.fixture
def sweeper_override(client_factory):
    """Run sweeps through the fake Helpship factory."""
    app.dependency_overrides[get_service] = lambda: SweeperService(
        engine=TransitionEngine(client_factory=client_factory)
    )
    yield
    app.dependency_overrides.pop(get_service, None)


class TestCronAuth:
    """Cron endpoints are guarded by the cron secret, not the API key."""

    @pytest.mark.parametrize("path", CRON_PATHS)
    def test_missing_secret(self, client, path):
        response = client.post(path)

        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_api_key_is_not_cron_secret(self, client, auth_headers):
        response = client.post("/cron/finalize-expired-queue", headers=auth_headers)

        assert response.status_code == 401

    @pytest.mark.parametrize("path", CRON_PATHS)
    def test_empty_run(self, client, cron_headers, sweeper_override, path):
        response = client.post(path, headers=cron_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["results"] == {"total": 0, "success": 0, "failed": 0, "errors": []}


class TestFinalizeExpiredQueue:
    """Tests for POST /cron/finalize-expired-queue endpoint."""

    @pytest.mark.asyncio
    async def test_finalizes_expired_orders(
        self, client, cron_headers, order_payload, sweeper_override, helpship
    ):
        response = client.post("/orders", json={**order_payload, "store_id": "store_q"})
        order_id = response.json()["order"]["id"]
        client.post("/orders", json={**order_payload, "store_id": "store_q"})

        orders = get_repositories().orders
        order = await orders.get(order_id)
        order.queue_expires_at = utc_now() - timedelta(minutes=1)
        assert await orders.update(order, OrderStatus.QUEUE)

        response = client.post("/cron/finalize-expired-queue", headers=cron_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["results"]["total"] == 1
        assert data["results"]["success"] == 1
        assert data["message"] == "Processed 1 queued orders: 1 succeeded, 0 failed"
        finalized = await orders.get(order_id)
        assert finalized.status == OrderStatus.PENDING
        assert finalized.helpship_order_id == "hs_100"

    @pytest.mark.asyncio
    async def test_reports_sync_failures(
        self, client, cron_headers, order_payload, sweeper_override, helpship
    ):
        response = client.post("/orders", json={**order_payload, "store_id": "store_q"})
        order_id = response.json()["order"]["id"]
        orders = get_repositories().orders
        order = await orders.get(order_id)
        order.queue_expires_at = utc_now() - timedelta(minutes=1)
        await orders.update(order, OrderStatus.QUEUE)
        helpship.create_order.side_effect = HelpshipClientError("org_1", "timeout")

        response = client.post("/cron/finalize-expired-queue", headers=cron_headers)

        assert response.status_code == 200
        results = response.json()["results"]
        assert results["failed"] == 1
        assert results["errors"] == [{"order_id": order_id, "error": "timeout"}]
