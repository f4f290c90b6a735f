"""Shared fixtures for API tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from ordercore.application import transition_engine
from ordercore.application.repositories import get_repositories
from ordercore.domain import Money, Store, Upsell, UpsellType
from ordercore.infrastructure.config import settings
from ordercore.infrastructure.helpship_client import HelpshipOrderStatus
from ordercore.main import app

ORG_ID = "org_1"
STORE_ID = "store_1"
QUEUE_STORE_ID = "store_q"


@pytest.fixture(autouse=True)
def catalog(reset_state):
    """Seed the in-memory catalog with a direct and a queue store."""
    catalog = get_repositories().catalog
    catalog.add_store(Store(id=STORE_ID, organization_id=ORG_ID, name="Valera"))
    catalog.add_store(
        Store(
            id=QUEUE_STORE_ID,
            organization_id=ORG_ID,
            name="Valera Upsell",
            post_purchase_window_minutes=10,
        )
    )
    catalog.add_store(Store(id="store_other", organization_id="org_2", name="Other"))
    catalog.add_upsell(
        Upsell(
            id="ups_post",
            organization_id=ORG_ID,
            store_id=QUEUE_STORE_ID,
            title="Al doilea bec",
            price=Money(4999),
            type=UpsellType.POSTSALE,
        )
    )
    return catalog


@pytest.fixture
def helpship() -> AsyncMock:
    """Helpship client that accepts everything."""
    client = AsyncMock()
    client.create_order.return_value = "hs_100"
    client.get_order_status.return_value = HelpshipOrderStatus.PENDING
    return client


@pytest.fixture(autouse=True)
def client_factory(monkeypatch, helpship: AsyncMock) -> MagicMock:
    """Route every Helpship call to the fake client."""
    factory = MagicMock()
    factory.get_client = AsyncMock(return_value=helpship)
    factory.close_all = AsyncMock()
    monkeypatch.setattr(transition_engine, "_client_factory", factory)
    return factory


@pytest.fixture
def client():
    """Create test client without authentication."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_client():
    """Create test client with valid API key authentication."""
    with TestClient(
        app,
        headers={
            "Authorization": f"Bearer {settings.ordercore_api_key}",
            "X-Organization-ID": ORG_ID,
        },
    ) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Get authentication headers."""
    return {"Authorization": f"Bearer {settings.ordercore_api_key}"}


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.cron_secret}"}


@pytest.fixture
def order_payload() -> dict:
    """Storefront submission of a 100.00 RON order."""
    return {
        "store_id": STORE_ID,
        "product_name": "Lampa solara",
        "product_sku": "LAMPA-1",
        "subtotal": {"amount": 10000, "currency": "RON"},
        "full_name": "Ion Popescu",
        "phone": "0722 123 456",
        "county": "Cluj",
        "city": "Cluj-Napoca",
        "address": "Strada Lalelelor 12",
    }
