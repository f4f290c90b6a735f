"""Conversion notifier.

Reports finalized purchases to the Meta Conversions API. Delivery is
best effort: a failed send never fails the order operation that caused
it. The event is stored in the conversion outbox instead and redelivered
by the retry sweeper with exponential backoff.
"""

from datetime import datetime, timedelta

import structlog

from ordercore.application.repositories import Repositories, get_repositories
from ordercore.domain.base import utc_now
from ordercore.domain.entities import ConversionOutboxEntry, Order, OutboxStatus, Store
from ordercore.infrastructure.config import settings
from ordercore.infrastructure.meta_client import (
    MetaClientError,
    MetaConversionsClient,
    build_purchase_event,
    get_meta_client,
    purchase_event_id,
)

logger = structlog.get_logger()


def retry_delay(attempts: int) -> timedelta:
    """Backoff before the next delivery: 5, 15, 45, ... minutes."""
    exponent = max(attempts - 1, 0)
    return timedelta(minutes=settings.conversion_retry_base_minutes * 3**exponent)


class ConversionService:
    """Sends Purchase events and manages their redelivery."""

    def __init__(
        self,
        repositories: Repositories | None = None,
        meta_client: MetaConversionsClient | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            repositories: Repository set.
            meta_client: Conversions API client.
            request_id: Request ID for correlation.
        """
        self.repos = repositories or get_repositories()
        self.meta_client = meta_client or get_meta_client()
        self.request_id = request_id

    async def notify_purchase(self, order: Order) -> bool:
        """Send the Purchase event for an order.

        Args:
            order: Finalized order.

        Returns:
            True if delivered now, False if skipped or queued for retry.
        """
        store = await self.repos.catalog.get_store(order.store_id)
        if store is None or not store.has_conversion_tracking:
            logger.debug(
                "Conversion tracking not configured, skipping",
                order_id=order.id,
                store_id=order.store_id,
            )
            return False

        event = build_purchase_event(order, event_source_url=order.event_source_url or store.url)
        try:
            await self._send(store, event)
        except MetaClientError as e:
            now = utc_now()
            entry = ConversionOutboxEntry(
                order_id=order.id,
                store_id=store.id,
                event_id=purchase_event_id(order.id),
                payload=event,
                attempts=1,
                next_attempt_at=now + retry_delay(1),
                last_error=e.message,
            )
            await self.repos.outbox.add(entry)
            logger.warning(
                "Purchase event delivery failed, queued for retry",
                order_id=order.id,
                outbox_id=entry.id,
                error=e.message,
                request_id=self.request_id,
            )
            return False

        logger.info("Purchase event delivered", order_id=order.id, store_id=store.id)
        return True

    async def redeliver(self, entry: ConversionOutboxEntry, now: datetime | None = None) -> bool:
        """Retry one outbox entry and record the outcome.

        Args:
            entry: Pending outbox entry.
            now: Current time (defaults to now).

        Returns:
            True if the event was delivered.
        """
        now = now or utc_now()
        store = await self.repos.catalog.get_store(entry.store_id)
        if store is None or not store.has_conversion_tracking:
            entry.status = OutboxStatus.FAILED
            entry.last_error = "Conversion tracking no longer configured"
            await self.repos.outbox.save(entry)
            return False

        try:
            await self._send(store, entry.payload)
        except MetaClientError as e:
            entry.attempts += 1
            entry.last_error = e.message
            if entry.attempts >= settings.conversion_max_attempts:
                entry.status = OutboxStatus.FAILED
                logger.error(
                    "Purchase event abandoned after max attempts",
                    order_id=entry.order_id,
                    outbox_id=entry.id,
                    attempts=entry.attempts,
                    error=e.message,
                )
            else:
                entry.next_attempt_at = now + retry_delay(entry.attempts)
            await self.repos.outbox.save(entry)
            return False

        entry.attempts += 1
        entry.status = OutboxStatus.SENT
        entry.sent_at = now
        entry.last_error = None
        await self.repos.outbox.save(entry)
        logger.info(
            "Purchase event redelivered",
            order_id=entry.order_id,
            outbox_id=entry.id,
            attempts=entry.attempts,
        )
        return True

    async def _send(self, store: Store, event: dict) -> None:
        await self.meta_client.send_events(
            pixel_id=store.meta_pixel_id,
            access_token=store.meta_access_token,
            events=[event],
            test_event_code=store.meta_test_event_code,
        )


def get_conversion_service(request_id: str | None = None) -> ConversionService:
    """Get conversion service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        ConversionService instance.
    """
    return ConversionService(request_id=request_id)
