"""Scheduled sweepers.

Batch jobs triggered by cron:
- Finalize queued orders whose post-purchase window expired
- Confirm scheduled orders whose ship date arrived
- Redeliver purchase events from the conversion outbox

Each order is processed independently; one failure never stops the
batch. Running the same sweeper twice concurrently is safe because every
claim is a compare-and-set on the order status.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import date, datetime

import structlog

from ordercore.application.conversion_service import ConversionService
from ordercore.application.dispatcher import BackgroundDispatcher
from ordercore.application.repositories import Repositories, get_repositories
from ordercore.application.transition_engine import TransitionEngine
from ordercore.domain.base import utc_now
from ordercore.domain.exceptions import DomainError
from ordercore.infrastructure.config import settings
from ordercore.infrastructure.helpship_client import FulfillmentClientFactory

logger = structlog.get_logger()


@dataclass
class SweepSummary:
    """Outcome of one sweeper run."""

    total: int = 0
    success: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def record_failure(self, item_id: str, error: str, key: str = "order_id") -> None:
        self.failed += 1
        self.errors.append({key: item_id, "error": error})

    def to_dict(self) -> dict:
        return asdict(self)


class SweeperService:
    """Runs the periodic batch jobs over orders and the conversion outbox."""

    def __init__(
        self,
        repositories: Repositories | None = None,
        engine: TransitionEngine | None = None,
        conversions: ConversionService | None = None,
        dispatcher: BackgroundDispatcher | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Without an explicit engine, each run gets its own Helpship client
        factory and dispatcher so credentials are resolved once per organization
        per batch and background jobs finish before the clients close.

        Args:
            repositories: Repository set.
            engine: Transition engine to run orders through.
            conversions: Conversion notifier.
            dispatcher: Background job dispatcher.
            request_id: Request ID for correlation.
        """
        self.repos = repositories or get_repositories()
        self.engine = engine
        self.conversions = conversions
        self.dispatcher = dispatcher
        self.request_id = request_id

    @asynccontextmanager
    async def _batch(self) -> AsyncIterator[TransitionEngine]:
        """Engine for one batch.

        A batch-built engine owns its Helpship clients, so the background
        jobs it dispatched are drained before those clients are closed.
        """
        if self.engine is not None:
            yield self.engine
            return

        async with self._client_factory() as client_factory:
            engine = TransitionEngine(
                repositories=self.repos,
                client_factory=client_factory,
                dispatcher=self.dispatcher or BackgroundDispatcher(),
                conversions=self.conversions,
                request_id=self.request_id,
            )
            try:
                yield engine
            finally:
                await engine.dispatcher.drain()

    def _client_factory(self) -> FulfillmentClientFactory:
        return FulfillmentClientFactory(
            settings_loader=self.repos.catalog.get_organization_settings,
            request_id=self.request_id,
        )

    async def finalize_expired_queue(self, now: datetime | None = None) -> SweepSummary:
        """Finalize every queued order whose offer window has closed.

        An order another worker finalized first counts as a success; one
        that ended in sync_error counts as a failure.

        Args:
            now: Current time (defaults to now).

        Returns:
            SweepSummary for the batch.
        """
        now = now or utc_now()
        orders = await self.repos.orders.find_expired_queue(now)
        summary = SweepSummary(total=len(orders))
        logger.info("Finalizing expired queue orders", count=summary.total)

        async with self._batch() as engine:
            for order in orders:
                try:
                    result = await engine.finalize(order.id, force=True, now=now)
                except DomainError as e:
                    summary.record_failure(order.id, e.message)
                    logger.error("Queue finalization failed", order_id=order.id, error=e.message)
                    continue
                except Exception as e:
                    summary.record_failure(order.id, str(e))
                    logger.exception("Queue finalization crashed", order_id=order.id)
                    continue

                if result.sync_error:
                    summary.record_failure(order.id, result.sync_error)
                else:
                    summary.success += 1

        logger.info(
            "Queue finalization complete",
            total=summary.total,
            success=summary.success,
            failed=summary.failed,
        )
        return summary

    async def confirm_scheduled(self, today: date | None = None) -> SweepSummary:
        """Confirm every scheduled order whose ship date has arrived.

        Args:
            today: Current date (defaults to today, UTC).

        Returns:
            SweepSummary for the batch.
        """
        today = today or utc_now().date()
        orders = await self.repos.orders.find_due_scheduled(today)
        summary = SweepSummary(total=len(orders))
        logger.info("Confirming scheduled orders", count=summary.total, today=today.isoformat())

        async with self._batch() as engine:
            for order in orders:
                try:
                    await engine.scheduled_confirm(order.id)
                    summary.success += 1
                except DomainError as e:
                    summary.record_failure(order.id, e.message)
                    logger.error(
                        "Scheduled confirmation failed", order_id=order.id, error=e.message
                    )
                except Exception as e:
                    summary.record_failure(order.id, str(e))
                    logger.exception("Scheduled confirmation crashed", order_id=order.id)

        logger.info(
            "Scheduled confirmation complete",
            total=summary.total,
            success=summary.success,
            failed=summary.failed,
        )
        return summary

    async def retry_conversions(self, now: datetime | None = None) -> SweepSummary:
        """Redeliver due purchase events from the outbox.

        Args:
            now: Current time (defaults to now).

        Returns:
            SweepSummary keyed by outbox entry.
        """
        now = now or utc_now()
        conversions = self.conversions or ConversionService(
            repositories=self.repos, request_id=self.request_id
        )
        entries = await self.repos.outbox.find_due(now, settings.conversion_retry_batch_size)
        summary = SweepSummary(total=len(entries))

        for entry in entries:
            try:
                delivered = await conversions.redeliver(entry, now)
            except Exception as e:
                summary.record_failure(entry.id, str(e), key="outbox_id")
                logger.exception("Conversion redelivery crashed", outbox_id=entry.id)
                continue
            if delivered:
                summary.success += 1
            else:
                summary.record_failure(
                    entry.id, entry.last_error or "Not delivered", key="outbox_id"
                )

        logger.info(
            "Conversion retry complete",
            total=summary.total,
            success=summary.success,
            failed=summary.failed,
        )
        return summary


def get_sweeper_service(request_id: str | None = None) -> SweeperService:
    """Get sweeper service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        SweeperService instance.
    """
    return SweeperService(request_id=request_id)
