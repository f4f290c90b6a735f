"""Meta Conversions API client.

Builds server-side Purchase events for finalized orders and posts them
to the pixel's events endpoint. Customer PII is SHA-256 hashed after
trimming and lowercasing, as the API requires.
"""

import hashlib
from typing import Any

import httpx
import structlog

from ordercore.domain.entities import Order
from ordercore.domain.value_objects import split_full_name, to_international_phone
from ordercore.infrastructure.config import settings

logger = structlog.get_logger()

DEFAULT_COUNTRY = "ro"


class MetaClientError(Exception):
    """Error from a Conversions API call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"[meta] {message}")


# ============================================================================
# Event Builders
# ============================================================================


def hash_value(value: str | None) -> str:
    """Hash a PII value the way the Conversions API expects."""
    if not value:
        return ""
    normalized = value.strip().lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def build_user_data(order: Order, country: str = DEFAULT_COUNTRY) -> dict[str, Any]:
    """Build hashed user_data for an order's customer."""
    user_data: dict[str, Any] = {}

    if order.phone:
        user_data["ph"] = hash_value(to_international_phone(order.phone))

    first_name, last_name = split_full_name(order.full_name)
    if first_name:
        user_data["fn"] = hash_value(first_name)
    if last_name:
        user_data["ln"] = hash_value(last_name)

    if order.city:
        user_data["ct"] = hash_value(order.city)
    if order.county:
        user_data["st"] = hash_value(order.county)
    user_data["country"] = hash_value(country)

    # Browser identifiers and request context are sent unhashed
    if order.fbp:
        user_data["fbp"] = order.fbp
    if order.fbc:
        user_data["fbc"] = order.fbc
    if order.client_ip:
        user_data["client_ip_address"] = order.client_ip
    if order.client_user_agent:
        user_data["client_user_agent"] = order.client_user_agent

    return user_data


def build_custom_data(order: Order) -> dict[str, Any]:
    """Build custom_data with the order value and purchased contents."""
    contents: list[dict[str, Any]] = []
    if order.product_sku:
        contents.append(
            {
                "id": order.product_sku,
                "quantity": order.quantity,
                "item_price": order.subtotal.to_float(),
            }
        )
    for line in order.upsells:
        if line.product_sku:
            contents.append(
                {
                    "id": line.product_sku,
                    "quantity": line.quantity,
                    "item_price": line.price.to_float(),
                }
            )

    custom_data: dict[str, Any] = {
        "value": order.total.to_float(),
        "currency": order.total.currency,
        "content_type": "product",
        "order_id": order.id,
    }
    if contents:
        custom_data["contents"] = contents
        custom_data["num_items"] = sum(item["quantity"] for item in contents)
    return custom_data


def purchase_event_id(order_id: str) -> str:
    """Deduplication key shared with the browser pixel."""
    return f"purchase_{order_id}"


def build_purchase_event(order: Order, event_source_url: str | None = None) -> dict[str, Any]:
    """Build the Purchase event for an order.

    Args:
        order: Finalized order.
        event_source_url: Page the purchase happened on; defaults to the
            URL captured at intake.

    Returns:
        A single entry for the request's ``data`` array.
    """
    return {
        "event_name": "Purchase",
        "event_time": int(order.created_at.timestamp()),
        "event_id": purchase_event_id(order.id),
        "event_source_url": event_source_url or order.event_source_url,
        "action_source": "website",
        "user_data": build_user_data(order),
        "custom_data": build_custom_data(order),
    }


# ============================================================================
# Conversions API Client
# ============================================================================


class MetaConversionsClient:
    """HTTP client for the Graph API events endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.meta_graph_api_url).rstrip("/")
        self.api_version = api_version or settings.meta_graph_api_version
        self.timeout = timeout if timeout is not None else settings.meta_timeout_seconds
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "MetaConversionsClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def send_events(
        self,
        pixel_id: str,
        access_token: str,
        events: list[dict[str, Any]],
        test_event_code: str | None = None,
    ) -> dict[str, Any]:
        """Post events to a pixel.

        Args:
            pixel_id: Destination pixel.
            access_token: Conversions API token for the pixel.
            events: Events for the ``data`` array.
            test_event_code: Routes events to the Test Events tab when set.

        Returns:
            Parsed response body.

        Raises:
            MetaClientError: On transport error, timeout or non-2xx status.
        """
        body: dict[str, Any] = {"data": events}
        if test_event_code:
            body["test_event_code"] = test_event_code

        client = await self._get_client()
        try:
            response = await client.post(
                f"/{self.api_version}/{pixel_id}/events",
                params={"access_token": access_token},
                json=body,
            )
        except httpx.RequestError as e:
            raise MetaClientError(f"Request failed: {str(e)}") from e

        if response.status_code >= 300:
            raise MetaClientError(
                f"Conversions API rejected events: {response.text[:200]}",
                response.status_code,
            )

        data = response.json()
        logger.info(
            "Meta events sent",
            pixel_id=pixel_id,
            events_received=data.get("events_received"),
            fbtrace_id=data.get("fbtrace_id"),
        )
        return data


# Global client instance
_meta_client: MetaConversionsClient | None = None


def get_meta_client() -> MetaConversionsClient:
    """Get the process-wide Conversions API client."""
    global _meta_client
    if _meta_client is None:
        _meta_client = MetaConversionsClient()
    return _meta_client


async def close_meta_client() -> None:
    """Close the process-wide client on shutdown."""
    global _meta_client
    if _meta_client is not None:
        await _meta_client.close()
    _meta_client = None
