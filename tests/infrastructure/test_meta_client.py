"""Tests for the Meta Conversions API client and event builders."""

import hashlib
import json

import httpx
import pytest

from ordercore.domain import Money, Order, OrderStatus
from ordercore.infrastructure.meta_client import (
    MetaClientError,
    MetaConversionsClient,
    build_purchase_event,
    hash_value,
)


def make_order() -> Order:
    return Order.create(
        organization_id="org_1",
        store_id="store_1",
        product_name="Lampa solara",
        product_sku="LAMPA-1",
        subtotal=Money(10000),
        full_name="Ion Popescu",
        phone="0722 123 456",
        county="Cluj",
        city="Cluj-Napoca",
        address="Strada Lalelelor 12",
        status=OrderStatus.PENDING,
        fbp="fb.1.123.456",
        client_ip="203.0.113.7",
    )


def sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class TestEventBuilders:
    """Tests for purchase event construction."""

    def test_hash_normalizes(self) -> None:
        assert hash_value("  Ion ") == sha256("ion")
        assert hash_value(None) == ""

    def test_purchase_event(self) -> None:
        order = make_order()

        event = build_purchase_event(order, "https://valera.ro/lampa")

        assert event["event_name"] == "Purchase"
        assert event["event_id"] == f"purchase_{order.id}"
        assert event["event_source_url"] == "https://valera.ro/lampa"
        user_data = event["user_data"]
        assert user_data["ph"] == sha256("+40722123456")
        assert user_data["fn"] == sha256("ion")
        assert user_data["fbp"] == "fb.1.123.456"
        assert user_data["client_ip_address"] == "203.0.113.7"
        custom_data = event["custom_data"]
        assert custom_data["value"] == 100.0
        assert custom_data["currency"] == "RON"
        assert custom_data["contents"][0]["id"] == "LAMPA-1"


class TestMetaConversionsClient:
    """Tests for MetaConversionsClient.send_events."""

    @pytest.mark.asyncio
    async def test_posts_events_to_pixel(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"events_received": 1, "fbtrace_id": "abc"})

        client = MetaConversionsClient(base_url="https://graph.test", api_version="v21.0")
        client._client = httpx.AsyncClient(
            base_url="https://graph.test", transport=httpx.MockTransport(handler)
        )

        data = await client.send_events("pixel_1", "token", [{"event_name": "Purchase"}], "TEST1")

        assert data["events_received"] == 1
        request = seen[0]
        assert request.url.path == "/v21.0/pixel_1/events"
        assert request.url.params["access_token"] == "token"
        assert json.loads(request.content) == {
            "data": [{"event_name": "Purchase"}],
            "test_event_code": "TEST1",
        }
        await client.close()

    @pytest.mark.asyncio
    async def test_rejection_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "Invalid token"}})

        client = MetaConversionsClient(base_url="https://graph.test")
        client._client = httpx.AsyncClient(
            base_url="https://graph.test", transport=httpx.MockTransport(handler)
        )

        with pytest.raises(MetaClientError) as exc_info:
            await client.send_events("pixel_1", "bad", [{}])
        assert exc_info.value.status_code == 400
