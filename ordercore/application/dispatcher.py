"""Background work dispatcher.

Runs fire-and-forget jobs (remote cancel/uncancel, conversion events)
after the caller has already received its response. Concurrency is
bounded by a semaphore, every task is tracked until it finishes, and
failures are logged with the job name and context instead of being lost.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from ordercore.infrastructure.config import settings

logger = structlog.get_logger()

JobFactory = Callable[[], Awaitable[Any]]


class BackgroundDispatcher:
    """Bounded pool of background asyncio tasks."""

    def __init__(self, max_concurrency: int | None = None) -> None:
        """Initialize dispatcher.

        Args:
            max_concurrency: Jobs allowed to run at once.
        """
        self.max_concurrency = max_concurrency or settings.background_max_concurrency
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, job: JobFactory, **context: Any) -> asyncio.Task:
        """Schedule a job and return immediately.

        Args:
            name: Job name used in logs.
            job: Zero-argument callable returning the coroutine to run.
            **context: Extra log fields (order_id, helpship_order_id, ...).

        Returns:
            The tracking task.
        """
        task = asyncio.create_task(self._run(name, job, context), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Background job submitted", job=name, **context)
        return task

    async def _run(self, name: str, job: JobFactory, context: dict[str, Any]) -> None:
        async with self._semaphore:
            try:
                await job()
            except Exception as e:
                logger.error(
                    "Background job failed",
                    job=name,
                    error=str(e),
                    error_type=type(e).__name__,
                    **context,
                )
            else:
                logger.info("Background job completed", job=name, **context)

    async def drain(self) -> None:
        """Wait for every submitted job, including ones submitted meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# Global dispatcher instance
_dispatcher: BackgroundDispatcher | None = None


def get_dispatcher() -> BackgroundDispatcher:
    """Get dispatcher singleton."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = BackgroundDispatcher()
    return _dispatcher


def reset_dispatcher() -> None:
    """Reset dispatcher (for testing)."""
    global _dispatcher
    _dispatcher = BackgroundDispatcher()
