"""Helpship WMS HTTP client.

Mirrors local orders into Helpship and reads back their status.
Authentication is an OAuth2 client-credentials bearer token obtained per
organization and cached in HelpshipTokenCache. Every call is bounded by
the client timeout; transport errors, timeouts and non-2xx responses all
raise HelpshipClientError.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import httpx
import structlog

from ordercore.domain.entities import DeliveryPatch, Order, OrganizationSettings
from ordercore.domain.value_objects import StreetAddress, split_full_name
from ordercore.infrastructure.config import settings
from ordercore.infrastructure.credentials import (
    HelpshipCredentials,
    HelpshipTokenCache,
    get_token_cache,
    resolve_credentials,
)

logger = structlog.get_logger()


# ============================================================================
# Helpship Types
# ============================================================================


class HelpshipOrderStatus(str, Enum):
    """Order status as reported by Helpship."""

    PENDING = "Pending"
    PACKING = "Packing"
    PACKED = "Packed"
    FULFILLED = "Fulfilled"
    INCOMPLETE = "Incomplete"
    ERROR = "Error"
    ARCHIVED = "Archived"
    ON_HOLD = "OnHold"

    @classmethod
    def from_api(cls, status: Any, status_name: Any = None) -> "HelpshipOrderStatus":
        """Parse the status from an order response.

        Helpship returns a numeric ``status`` and usually a ``statusName``;
        the name wins when present.

        Raises:
            ValueError: If neither field holds a known status.
        """
        if isinstance(status_name, str):
            for member in cls:
                if member.value.lower() == status_name.lower():
                    return member
        if isinstance(status, int) and 0 <= status < len(_STATUS_BY_CODE):
            return _STATUS_BY_CODE[status]
        raise ValueError(f"Unknown Helpship status: {status!r} ({status_name!r})")

    @property
    def code(self) -> int:
        return _STATUS_BY_CODE.index(self)


_STATUS_BY_CODE: list[HelpshipOrderStatus] = [
    HelpshipOrderStatus.PENDING,
    HelpshipOrderStatus.PACKING,
    HelpshipOrderStatus.PACKED,
    HelpshipOrderStatus.FULFILLED,
    HelpshipOrderStatus.INCOMPLETE,
    HelpshipOrderStatus.ERROR,
    HelpshipOrderStatus.ARCHIVED,
    HelpshipOrderStatus.ON_HOLD,
]


class HelpshipClientError(Exception):
    """Error from a Helpship API call."""

    def __init__(
        self,
        organization_id: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.organization_id = organization_id
        self.message = message
        self.status_code = status_code
        super().__init__(f"[helpship:{organization_id}] {message}")


# ============================================================================
# Payload Builders
# ============================================================================


def build_order_payload(order: Order, country_id: str | None = None) -> dict[str, Any]:
    """Build the create-order request body for Helpship.

    Orders are created on hold; the main product line is priced per unit
    (subtotal divided by quantity) and each upsell is its own line.

    Args:
        order: Local order to mirror.
        country_id: Helpship country GUID, if known.

    Returns:
        JSON-serializable payload.
    """
    first_name, last_name = split_full_name(order.full_name)
    street = StreetAddress.parse(order.address)
    quantity = order.quantity or 1

    order_lines: list[dict[str, Any]] = [
        {
            "name": order.product_name or order.product_sku or "Product",
            "quantity": quantity,
            "price": order.subtotal.divide(quantity).to_float(),
            "vatPercentage": 0,
            "externalSku": order.product_sku,
        }
    ]
    for line in order.upsells:
        order_lines.append(
            {
                "name": line.product_name or line.title,
                "quantity": line.quantity,
                "price": line.price.to_float(),
                "vatPercentage": 0,
                "externalSku": line.product_sku,
            }
        )

    return {
        "externalId": order.id,
        "name": order.display_number,
        "totalPrice": order.total.to_float(),
        "discountPrice": 0,
        "shippingPrice": order.shipping_cost.to_float(),
        "shippingVatPercentage": 0,
        "currency": order.total.currency,
        "mailingAddress": {
            "addressLine1": order.address,
            "street": street.street,
            "number": street.number,
            "zip": order.postal_code or "",
            "city": order.city,
            "province": order.county,
            "countryId": country_id,
            "firstName": first_name or None,
            "lastName": last_name or None,
            "name": order.full_name or None,
            "phone": order.phone or None,
        },
        "firstName": first_name or None,
        "lastName": last_name or None,
        "phone": order.phone or None,
        "isTaxPayer": False,
        "paymentProcessing": "Manual",
        "paymentStatus": "Pending",
        "status": HelpshipOrderStatus.ON_HOLD.code,
        "statusName": HelpshipOrderStatus.ON_HOLD.value,
        "orderLines": order_lines,
        "packagingType": "Envelope",
    }


def build_address_payload(current: dict[str, Any], patch: DeliveryPatch) -> dict[str, Any]:
    """Merge a delivery patch over the address Helpship currently holds."""
    if patch.full_name:
        first_name, last_name = split_full_name(patch.full_name)
    else:
        first_name = current.get("firstName")
        last_name = current.get("lastName")

    address_line = patch.address or current.get("addressLine1") or ""
    street = StreetAddress.parse(address_line)
    return {
        "firstName": first_name or None,
        "lastName": last_name or None,
        "name": patch.full_name or current.get("name"),
        "addressLine1": address_line,
        "street": street.street,
        "number": street.number or current.get("number"),
        "zip": patch.postal_code or current.get("zip"),
        "city": patch.city or current.get("city") or "",
        "province": patch.county or current.get("province") or "",
        "countryId": current.get("countryId"),
        "phone": patch.phone or current.get("phone"),
        "email": current.get("email"),
        "isTaxpayer": current.get("isTaxPayer", False),
        "lockerId": current.get("lockerId"),
    }


# ============================================================================
# Helpship HTTP Client
# ============================================================================


class HelpshipClient:
    """HTTP client for one organization's Helpship account.

    Supports use as an async context manager.
    """

    def __init__(
        self,
        credentials: HelpshipCredentials,
        token_cache: HelpshipTokenCache | None = None,
        timeout: float | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize Helpship client.

        Args:
            credentials: Resolved credentials and endpoints.
            token_cache: Shared token cache (process-wide if not provided).
            timeout: Request timeout in seconds.
            request_id: Optional request ID for correlation.
        """
        self.credentials = credentials
        self.token_cache = token_cache or get_token_cache()
        self.timeout = timeout if timeout is not None else settings.helpship_timeout_seconds
        self.request_id = request_id
        self._client: httpx.AsyncClient | None = None
        self._country_id: str | None = None
        self._country_resolved = False

    @property
    def organization_id(self) -> str:
        return self.credentials.organization_id

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.request_id:
                headers["X-Request-ID"] = self.request_id
            self._client = httpx.AsyncClient(
                base_url=self.credentials.api_url,
                timeout=self.timeout,
                headers=headers,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HelpshipClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _fetch_token(self) -> tuple[str, int]:
        """Request a new access token with the client-credentials grant."""
        if not self.credentials.is_configured:
            raise HelpshipClientError(self.organization_id, "Helpship credentials not configured")

        client = await self._get_client()
        try:
            response = await client.post(
                self.credentials.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.credentials.client_id,
                    "client_secret": self.credentials.client_secret,
                    "scope": settings.helpship_scope,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.RequestError as e:
            raise HelpshipClientError(
                self.organization_id, f"Token request failed: {str(e)}"
            ) from e

        if response.status_code != 200:
            logger.error(
                "Helpship token request failed",
                organization_id=self.organization_id,
                status_code=response.status_code,
                response_body=response.text[:200],
            )
            raise HelpshipClientError(
                self.organization_id,
                f"Failed to get access token: {response.text[:200]}",
                response.status_code,
            )

        data = self._decode(response, "token response")
        try:
            return str(data["access_token"]), int(data.get("expires_in", 3600))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(
                "Helpship token response malformed",
                organization_id=self.organization_id,
                response_body=response.text[:200],
            )
            raise HelpshipClientError(
                self.organization_id, "Token response contained no usable access_token"
            ) from e

    def _decode(self, response: httpx.Response, what: str) -> Any:
        """Parse a JSON body, treating garbage from a 2xx as a failed call."""
        try:
            return response.json()
        except ValueError as e:
            logger.warning(
                "Helpship returned a non-JSON body",
                organization_id=self.organization_id,
                path=response.request.url.path,
                response_body=response.text[:200],
            )
            raise HelpshipClientError(
                self.organization_id,
                f"Malformed {what}: {response.text[:200]}",
                response.status_code,
            ) from e

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        retry_on_unauthorized: bool = True,
    ) -> httpx.Response:
        """Send an authenticated request.

        A 401 drops the cached token and retries once with a fresh one.

        Raises:
            HelpshipClientError: On transport error, timeout or non-2xx status.
        """
        cache_key = self.credentials.cache_key
        token = await self.token_cache.get_token(cache_key, self._fetch_token)
        client = await self._get_client()

        try:
            response = await client.request(
                method,
                path,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as e:
            logger.error(
                "Helpship request failed",
                organization_id=self.organization_id,
                method=method,
                path=path,
                error=str(e),
            )
            raise HelpshipClientError(
                self.organization_id, f"Request failed: {str(e)}"
            ) from e

        if response.status_code == 401 and retry_on_unauthorized:
            await self.token_cache.invalidate(cache_key)
            return await self._request(method, path, json=json, retry_on_unauthorized=False)

        if response.status_code >= 300:
            logger.warning(
                "Helpship request rejected",
                organization_id=self.organization_id,
                method=method,
                path=path,
                status_code=response.status_code,
                response_body=response.text[:200],
            )
            raise HelpshipClientError(
                self.organization_id,
                f"{method} {path} failed: {response.text[:200]}",
                response.status_code,
            )
        return response

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_country_id(self) -> str | None:
        """Look up the Helpship GUID of the configured country.

        The result is cached for the lifetime of the client. Lookup
        failures yield None; orders are still created without it.
        """
        if self._country_resolved:
            return self._country_id

        code = settings.helpship_country_code.upper()
        try:
            response = await self._request("GET", "/api/Country")
            data = self._decode(response, "country list")
        except HelpshipClientError as e:
            logger.warning(
                "Helpship country lookup failed",
                organization_id=self.organization_id,
                error=e.message,
            )
            return None

        if isinstance(data, dict):
            data = data.get("items") or data.get("data") or []
        countries = data if isinstance(data, list) else []
        for country in countries:
            if not isinstance(country, dict):
                continue
            codes = {str(country.get(k, "")).upper() for k in ("alpha2Code", "code")}
            if code in codes:
                self._country_id = country.get("id")
                break
        self._country_resolved = True
        return self._country_id

    async def create_order(self, order: Order) -> str:
        """Create the order in Helpship and put it on hold.

        Args:
            order: Local order to mirror.

        Returns:
            Helpship order ID.

        Raises:
            HelpshipClientError: If creation fails or no ID is returned.
        """
        country_id = await self.get_country_id()
        payload = build_order_payload(order, country_id)
        response = await self._request("POST", "/api/Order", json=payload)

        data = self._decode(response, "create order response") if response.content else {}
        helpship_order_id = None
        if isinstance(data, dict):
            helpship_order_id = data.get("id") or data.get("orderId") or data.get("order_id")
        if not helpship_order_id:
            raise HelpshipClientError(
                self.organization_id,
                "Order created but response contained no order id",
                response.status_code,
            )
        helpship_order_id = str(helpship_order_id)

        logger.info(
            "Helpship order created",
            organization_id=self.organization_id,
            order_id=order.id,
            helpship_order_id=helpship_order_id,
            name=payload["name"],
        )

        # Helpship ignores the status in the create payload; hold explicitly.
        try:
            await self.set_hold(helpship_order_id)
        except HelpshipClientError as e:
            logger.warning(
                "Failed to hold newly created Helpship order",
                organization_id=self.organization_id,
                helpship_order_id=helpship_order_id,
                error=e.message,
            )
        return helpship_order_id

    async def get_order(self, helpship_order_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"/api/Order/{helpship_order_id}")
        data = self._decode(response, "order response")
        if not isinstance(data, dict):
            raise HelpshipClientError(
                self.organization_id,
                f"Unexpected order response for {helpship_order_id}",
                response.status_code,
            )
        return data

    async def get_order_status(self, helpship_order_id: str) -> HelpshipOrderStatus:
        """Read the current status of a Helpship order.

        Raises:
            HelpshipClientError: If the order cannot be read or parsed.
        """
        data = await self.get_order(helpship_order_id)
        try:
            return HelpshipOrderStatus.from_api(data.get("status"), data.get("statusName"))
        except ValueError as e:
            raise HelpshipClientError(self.organization_id, str(e)) from e

    async def set_hold(self, helpship_order_id: str) -> None:
        await self._request("POST", f"/api/Order/{helpship_order_id}/hold")

    async def unhold(self, helpship_order_id: str) -> None:
        await self._request("POST", f"/api/Order/{helpship_order_id}/unhold")

    async def cancel_order(self, helpship_order_id: str) -> None:
        await self._request("POST", "/api/order/cancel", json=[helpship_order_id])

    async def uncancel_order(self, helpship_order_id: str) -> None:
        await self._request("POST", "/api/Order/uncancel", json=[helpship_order_id])

    async def update_order(
        self,
        helpship_order_id: str,
        patch: DeliveryPatch | None = None,
        release_hold: bool = False,
    ) -> None:
        """Push delivery corrections and optionally release the hold.

        The address goes through the dedicated updateAddress endpoint,
        shipping price through the order PUT, and the status change is
        applied last.

        Raises:
            HelpshipClientError: If any step fails.
        """
        if patch is not None and not patch.is_empty():
            address_fields = (
                patch.full_name,
                patch.phone,
                patch.county,
                patch.city,
                patch.address,
                patch.postal_code,
            )
            if any(value is not None for value in address_fields):
                current = await self.get_order(helpship_order_id)
                payload = build_address_payload(current.get("mailingAddress") or {}, patch)
                await self._request(
                    "POST", f"/api/order/{helpship_order_id}/updateAddress", json=payload
                )
            if patch.shipping_cost is not None:
                await self._request(
                    "PUT",
                    f"/api/Order/{helpship_order_id}",
                    json={"shippingPrice": patch.shipping_cost.to_float()},
                )

        if release_hold:
            await self.unhold(helpship_order_id)

        logger.info(
            "Helpship order updated",
            organization_id=self.organization_id,
            helpship_order_id=helpship_order_id,
            release_hold=release_hold,
        )


# ============================================================================
# Client Factory
# ============================================================================


SettingsLoader = Callable[[str], Awaitable[OrganizationSettings | None]]


class FulfillmentClientFactory:
    """Factory for per-organization Helpship clients.

    A client is reused until ``client_ttl_seconds`` have passed since its
    credentials were resolved. The credentials are then loaded again: when
    they are unchanged the client is kept, otherwise it is retired and a new
    one is built. Retired clients may still have requests in flight, so they
    are closed only by ``close_all``.
    """

    def __init__(
        self,
        settings_loader: SettingsLoader,
        token_cache: HelpshipTokenCache | None = None,
        request_id: str | None = None,
        client_ttl_seconds: float | None = None,
    ) -> None:
        """Initialize factory.

        Args:
            settings_loader: Coroutine loading an organization's settings.
            token_cache: Shared token cache (process-wide if not provided).
            request_id: Request ID for correlation.
            client_ttl_seconds: How long resolved credentials are trusted.
        """
        self.settings_loader = settings_loader
        self.token_cache = token_cache or get_token_cache()
        self.request_id = request_id
        self.client_ttl_seconds = (
            settings.helpship_client_ttl_seconds
            if client_ttl_seconds is None
            else client_ttl_seconds
        )
        self._clients: dict[str, tuple[HelpshipClient, float]] = {}
        self._retired: list[HelpshipClient] = []
        self._lock = asyncio.Lock()

    def _fresh(self, organization_id: str) -> HelpshipClient | None:
        entry = self._clients.get(organization_id)
        if entry is None:
            return None
        client, resolved_at = entry
        if time.monotonic() - resolved_at >= self.client_ttl_seconds:
            return None
        return client

    async def get_client(self, organization_id: str) -> HelpshipClient:
        """Get the client for an organization.

        Concurrent first calls for the same organization share one client.
        """
        client = self._fresh(organization_id)
        if client is not None:
            return client

        async with self._lock:
            client = self._fresh(organization_id)
            if client is not None:
                return client

            org_settings = await self.settings_loader(organization_id)
            credentials = resolve_credentials(organization_id, org_settings)
            entry = self._clients.get(organization_id)
            if entry is not None and entry[0].credentials == credentials:
                client = entry[0]
            else:
                if entry is not None:
                    logger.info(
                        "Helpship credentials changed, replacing client",
                        organization_id=organization_id,
                    )
                    self._retired.append(entry[0])
                client = HelpshipClient(
                    credentials,
                    token_cache=self.token_cache,
                    request_id=self.request_id,
                )
            self._clients[organization_id] = (client, time.monotonic())
            return client

    async def close_all(self) -> None:
        """Close all clients, including retired ones."""
        clients = [client for client, _ in self._clients.values()] + self._retired
        self._clients.clear()
        self._retired = []
        for client in clients:
            await client.close()

    async def __aenter__(self) -> "FulfillmentClientFactory":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close_all()
