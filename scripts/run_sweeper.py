#!/usr/bin/env python3
"""Run an order sweeper once.

Lets the scheduled jobs run without going through the HTTP cron
endpoints, e.g. from a container cron or by hand.

Usage:
    python scripts/run_sweeper.py finalize-queue
    python scripts/run_sweeper.py confirm-scheduled
    python scripts/run_sweeper.py retry-conversions --create-tables
"""

import argparse
import asyncio
import json

from ordercore.application.dispatcher import get_dispatcher
from ordercore.application.sweeper_service import SweepSummary, get_sweeper_service
from ordercore.application.transition_engine import close_client_factory
from ordercore.infrastructure.config import settings
from ordercore.infrastructure.database import create_tables, dispose_engine
from ordercore.infrastructure.logging_config import configure_logging
from ordercore.infrastructure.meta_client import close_meta_client

SWEEPERS = ["finalize-queue", "confirm-scheduled", "retry-conversions"]


async def run(name: str) -> SweepSummary:
    """Run one sweeper and wait for its background jobs."""
    service = get_sweeper_service()
    if name == "finalize-queue":
        summary = await service.finalize_expired_queue()
    elif name == "confirm-scheduled":
        summary = await service.confirm_scheduled()
    else:
        summary = await service.retry_conversions()

    await get_dispatcher().drain()
    return summary


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run an order sweeper once",
    )
    parser.add_argument(
        "sweeper",
        choices=SWEEPERS,
        help="Sweeper to run",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create database tables first (sql backend only)",
    )

    args = parser.parse_args()
    configure_logging()

    if args.create_tables and settings.repository_backend == "sql":
        await create_tables()

    try:
        summary = await run(args.sweeper)
    finally:
        await close_client_factory()
        await close_meta_client()
        if settings.repository_backend == "sql":
            await dispose_engine()

    print(json.dumps(summary.to_dict(), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
