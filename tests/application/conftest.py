"""Fixtures for application service tests.

The Helpship and Meta clients are AsyncMocks; repositories are the
in-memory implementations.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ordercore.application.conversion_service import ConversionService
from ordercore.application.dispatcher import BackgroundDispatcher
from ordercore.application.repositories import Repositories, create_in_memory_repositories
from ordercore.application.transition_engine import OrderIntake, TransitionEngine
from ordercore.application.upsell_service import UpsellService
from ordercore.domain import Money, Store, Upsell, UpsellType
from ordercore.infrastructure.helpship_client import HelpshipOrderStatus

ORG_ID = "org_1"
STORE_ID = "store_1"
QUEUE_STORE_ID = "store_q"


@pytest.fixture
def repos() -> Repositories:
    """In-memory repositories with one direct store and one queue store."""
    repositories = create_in_memory_repositories()
    repositories.catalog.add_store(Store(id=STORE_ID, organization_id=ORG_ID, name="Valera"))
    repositories.catalog.add_store(
        Store(
            id=QUEUE_STORE_ID,
            organization_id=ORG_ID,
            name="Valera Upsell",
            post_purchase_window_minutes=10,
            meta_pixel_id="pixel_1",
            meta_access_token="meta-token",
        )
    )
    repositories.catalog.add_upsell(
        Upsell(
            id="ups_post",
            organization_id=ORG_ID,
            store_id=QUEUE_STORE_ID,
            title="Al doilea bec",
            price=Money(4999),
            type=UpsellType.POSTSALE,
            product_sku="BEC-2",
            product_name="Bec LED",
        )
    )
    repositories.catalog.add_upsell(
        Upsell(
            id="ups_pre",
            organization_id=ORG_ID,
            store_id=QUEUE_STORE_ID,
            title="Husa",
            price=Money(1500),
            type=UpsellType.PRESALE,
        )
    )
    return repositories


@pytest.fixture
def helpship() -> AsyncMock:
    """Helpship client that accepts everything."""
    client = AsyncMock()
    client.create_order.return_value = "hs_100"
    client.get_order_status.return_value = HelpshipOrderStatus.PENDING
    return client


@pytest.fixture
def client_factory(helpship: AsyncMock) -> MagicMock:
    factory = MagicMock()
    factory.get_client = AsyncMock(return_value=helpship)
    return factory


@pytest.fixture
def meta_client() -> AsyncMock:
    client = AsyncMock()
    client.send_events.return_value = {"events_received": 1}
    return client


@pytest.fixture
def dispatcher() -> BackgroundDispatcher:
    return BackgroundDispatcher(max_concurrency=5)


@pytest.fixture
def conversions(repos: Repositories, meta_client: AsyncMock) -> ConversionService:
    return ConversionService(repositories=repos, meta_client=meta_client)


@pytest.fixture
def engine(
    repos: Repositories,
    client_factory: MagicMock,
    dispatcher: BackgroundDispatcher,
    conversions: ConversionService,
) -> TransitionEngine:
    return TransitionEngine(
        repositories=repos,
        client_factory=client_factory,
        dispatcher=dispatcher,
        conversions=conversions,
    )


@pytest.fixture
def upsell_service(repos: Repositories, engine: TransitionEngine) -> UpsellService:
    return UpsellService(repositories=repos, engine=engine)


@pytest.fixture
def make_intake():
    """Build a storefront submission of a 100.00 RON order."""

    def _make(**overrides) -> OrderIntake:
        fields = {
            "store_id": STORE_ID,
            "product_name": "Lampa solara",
            "product_sku": "LAMPA-1",
            "subtotal": Money(10000),
            "full_name": "Ion Popescu",
            "phone": "0722 123 456",
            "county": "Cluj",
            "city": "Cluj-Napoca",
            "address": "Strada Lalelelor 12",
        }
        fields.update(overrides)
        return OrderIntake(**fields)

    return _make
