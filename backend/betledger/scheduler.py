"""Periodic settlement sweeps using APScheduler."""

import asyncio
import logging
from typing import NoReturn

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from betledger.config import Settings
from betledger.database import open_store
from betledger.engine.settlement import SettlementProcessor, SettlementReport
from betledger.services.feed import create_feed_client

logger = logging.getLogger(__name__)


async def run_settlement_sweep(settings: Settings) -> list[SettlementReport]:
    """Settle every event that still has pending wagers."""
    async with open_store(settings) as store, create_feed_client(settings.feed) as feed:
        processor = SettlementProcessor(store, feed, settings.settlement)
        reports = await processor.settle_pending_events()

    settled = sum(r.wagers_settled for r in reports)
    failed = [r.event_id for r in reports if r.error]
    logger.info(f"Settlement sweep: {len(reports)} events, {settled} wagers settled")
    if failed:
        logger.warning(f"Settlement failed for events: {', '.join(failed)}")
    return reports


def settlement_job(settings: Settings) -> None:
    """Scheduler entry point. Errors are logged so the next run still fires."""
    try:
        asyncio.run(run_settlement_sweep(settings))
    except Exception as e:
        logger.error(f"Settlement sweep failed: {e}", exc_info=True)


def start_scheduler(settings: Settings) -> NoReturn:
    """Start the blocking scheduler with the settlement sweep job."""
    scheduler = BlockingScheduler()

    scheduler.add_job(
        settlement_job,
        IntervalTrigger(minutes=settings.settlement.interval_minutes),
        args=[settings],
        id="settlement-sweep",
        name="Settlement: Pending Events",
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Registered job: Settlement Sweep (every {settings.settlement.interval_minutes} min)"
    )

    try:
        logger.info("✓ Scheduler starting...")
        logger.info("Press Ctrl+C to stop\n")

        scheduler.start()

    except (KeyboardInterrupt, SystemExit):
        logger.info("\nReceived interrupt signal")
        scheduler.shutdown()
        logger.info("✓ Scheduler stopped cleanly")
