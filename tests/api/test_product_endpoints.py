"""Tests for bulk testing-order endpoints."""

from ordercore.infrastructure.helpship_client import HelpshipClientError


def create_testing_orders(client, payload: dict, count: int) -> list[str]:
    return [
        client.post("/orders", json={**payload, "testing": True}).json()["order"]["id"]
        for _ in range(count)
    ]


class TestCancelTestingOrders:
    """Tests for POST /products/{sku}/testing-orders/cancel endpoint."""

    def test_cancel_testing_orders(self, auth_client, order_payload, helpship):
        order_ids = create_testing_orders(auth_client, order_payload, 2)
        live = auth_client.post("/orders", json=order_payload).json()["order"]

        response = auth_client.post("/products/LAMPA-1/testing-orders/cancel")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "2 of 2 testing orders cancelled"
        assert data["results"]["total"] == 2
        for order_id in order_ids:
            assert auth_client.get(f"/orders/{order_id}").json()["status"] == "cancelled"
        assert auth_client.get(f"/orders/{live['id']}").json()["status"] == "pending"
        helpship.cancel_order.assert_not_awaited()

    def test_cancel_without_testing_orders(self, auth_client):
        response = auth_client.post("/products/NONE-1/testing-orders/cancel")

        assert response.status_code == 200
        assert response.json()["results"]["total"] == 0

    def test_requires_auth(self, client):
        response = client.post("/products/LAMPA-1/testing-orders/cancel")

        assert response.status_code == 401


class TestPromoteTestingOrders:
    """Tests for POST /products/{sku}/testing-orders/promote endpoint."""

    def test_promote_testing_orders(self, auth_client, order_payload, helpship):
        order_ids = create_testing_orders(auth_client, order_payload, 2)

        response = auth_client.post("/products/LAMPA-1/testing-orders/promote")

        assert response.status_code == 200
        data = response.json()
        assert data["results"]["success"] == 2
        assert helpship.create_order.await_count == 2
        for order_id in order_ids:
            assert auth_client.get(f"/orders/{order_id}").json()["status"] == "pending"

    def test_promote_reports_failures(self, auth_client, order_payload, helpship):
        create_testing_orders(auth_client, order_payload, 2)
        helpship.create_order.side_effect = ["hs_1", HelpshipClientError("org_1", "timeout")]

        response = auth_client.post("/products/LAMPA-1/testing-orders/promote")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["results"]["success"] == 1
        assert data["results"]["failed"] == 1
        assert len(data["results"]["errors"]) == 1
