"""Engine behavior when Helpship misbehaves on the wire.

The engine runs against a real HelpshipClient whose transport is an
httpx.MockTransport, so malformed bodies and timeouts travel the same
path as in production.
"""

import httpx
import pytest

from ordercore.domain import OrderStatus
from ordercore.domain.entities import HelpshipEnvironment
from ordercore.domain.exceptions import SyncUnconfirmedError
from ordercore.infrastructure.credentials import HelpshipCredentials, HelpshipTokenCache
from ordercore.infrastructure.helpship_client import HelpshipClient

TOKEN_URL = "https://auth.helpship.test/connect/token"
API_URL = "https://api.helpship.test"


class FlakyHelpship:
    """Helpship stand-in that answers normally until told to fail.

    ``mode`` is one of "ok", "html" (200 with a gateway error page) or
    "timeout" (read timeout on every API call).
    """

    def __init__(self) -> None:
        self.mode = "ok"
        self.paths: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        self.paths.append((request.method, request.url.path))
        if self.mode == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if self.mode == "html":
            return httpx.Response(200, text="<html>gateway</html>")
        if request.method == "POST" and request.url.path == "/api/Order":
            return httpx.Response(200, json={"id": 555})
        if request.method == "GET" and request.url.path == "/api/Order/555":
            return httpx.Response(200, json={"statusName": "Pending"})
        return httpx.Response(200, json=[])


@pytest.fixture
def remote() -> FlakyHelpship:
    return FlakyHelpship()


@pytest.fixture
def helpship(remote: FlakyHelpship) -> HelpshipClient:
    """Real client for org_1 wired to the fake transport."""
    credentials = HelpshipCredentials(
        organization_id="org_1",
        client_id="client-1",
        client_secret="secret-1",
        token_url=TOKEN_URL,
        api_url=API_URL,
        environment=HelpshipEnvironment.DEVELOPMENT,
    )
    client = HelpshipClient(credentials, token_cache=HelpshipTokenCache())
    client._client = httpx.AsyncClient(base_url=API_URL, transport=httpx.MockTransport(remote))
    return client


class TestMalformedResponses:
    """A 2xx with a body that is not JSON is a failed call."""

    @pytest.mark.asyncio
    async def test_create_with_html_body_moves_order_to_sync_error(
        self, engine, make_intake, remote, repos
    ) -> None:
        remote.mode = "html"

        result = await engine.create_order(make_intake())

        assert result.order.status == OrderStatus.SYNC_ERROR
        assert "Malformed" in result.sync_error
        stored = await repos.orders.get(result.order.id)
        assert stored.status == OrderStatus.SYNC_ERROR
        assert stored.helpship_order_id is None

    @pytest.mark.asyncio
    async def test_hold_with_html_status_body_is_unconfirmed(
        self, engine, make_intake, remote, repos
    ) -> None:
        order = (await engine.create_order(make_intake())).order
        assert order.helpship_order_id == "555"
        remote.mode = "html"

        with pytest.raises(SyncUnconfirmedError):
            await engine.hold(order.id, "client neacasă", "org_1")

        stored = await repos.orders.get(order.id)
        assert stored.status == OrderStatus.PENDING
        assert stored.order_note is None


class TestTimeouts:
    """A timeout is handled like any other Helpship failure."""

    @pytest.mark.asyncio
    async def test_create_timeout_moves_order_to_sync_error(
        self, engine, make_intake, remote, repos
    ) -> None:
        remote.mode = "timeout"

        result = await engine.create_order(make_intake())

        assert result.order.status == OrderStatus.SYNC_ERROR
        assert "timed out" in result.sync_error

    @pytest.mark.asyncio
    async def test_hold_timeout_is_unconfirmed(self, engine, make_intake, remote, repos) -> None:
        order = (await engine.create_order(make_intake())).order
        remote.mode = "timeout"

        with pytest.raises(SyncUnconfirmedError):
            await engine.hold(order.id, None, "org_1")

        assert (await repos.orders.get(order.id)).status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_timeout_keeps_local_cancel(
        self, engine, make_intake, remote, repos, dispatcher
    ) -> None:
        order = (await engine.create_order(make_intake())).order
        remote.mode = "timeout"

        result = await engine.cancel(order.id, organization_id="org_1")
        await dispatcher.drain()

        assert result.order.status == OrderStatus.CANCELLED
        stored = await repos.orders.get(order.id)
        assert stored.status == OrderStatus.CANCELLED
        assert stored.cancelled_from_status == OrderStatus.PENDING
        assert ("GET", "/api/Order/555") in remote.paths
