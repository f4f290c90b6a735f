"""Tests for POST /orders/check-duplicates endpoint."""

from ordercore.domain import Store


def test_check_duplicates_finds_recent_orders(auth_client, order_payload):
    first = auth_client.post("/orders", json=order_payload).json()["order"]
    second = auth_client.post(
        "/orders", json={**order_payload, "phone": "0722-123-456"}
    ).json()["order"]

    response = auth_client.post(
        "/orders/check-duplicates",
        json={"phone": "0722 123 456", "exclude_order_id": second["id"]},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["has_duplicates"] is True
    assert data["duplicate_count"] == 1
    assert data["duplicate_order_days"] == 14
    assert data["orders"][0]["id"] == first["id"]
    assert data["orders"][0]["name"] == "VLR-00001"


def test_check_duplicates_unknown_customer(auth_client):
    response = auth_client.post("/orders/check-duplicates", json={"phone": "0799 000 000"})

    assert response.status_code == 200
    data = response.json()
    assert data["has_duplicates"] is False
    assert data["orders"] == []


def test_check_duplicates_uses_store_window(auth_client, catalog):
    catalog.add_store(
        Store(id="store_short", organization_id="org_1", name="Short", duplicate_order_days=3)
    )

    response = auth_client.post(
        "/orders/check-duplicates", json={"phone": "0722123456", "store_id": "store_short"}
    )

    assert response.status_code == 200
    assert response.json()["duplicate_order_days"] == 3


def test_check_duplicates_requires_phone_or_customer(auth_client):
    response = auth_client.post("/orders/check-duplicates", json={})

    assert response.status_code == 400
    assert response.json()["error_code"] == "VALIDATION_FAILED"


def test_check_duplicates_scoped_to_organization(client, auth_headers, order_payload):
    client.post("/orders", json=order_payload)

    response = client.post(
        "/orders/check-duplicates",
        json={"phone": "0722123456"},
        headers={**auth_headers, "X-Organization-ID": "org_2"},
    )

    assert response.status_code == 200
    assert response.json()["has_duplicates"] is False


def test_check_duplicates_requires_auth(client):
    response = client.post("/orders/check-duplicates", json={"phone": "0722123456"})

    assert response.status_code == 401
