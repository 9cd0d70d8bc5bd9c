"""Job scheduler using APScheduler."""

import asyncio
import logging
from datetime import timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from matchday.config import Settings
from matchday.settlement import SettlementEngine, open_engine

logger = logging.getLogger(__name__)


def build_scheduler(engine: SettlementEngine, settings: Settings) -> AsyncIOScheduler:
    """Register the fixed-interval jobs. The poll timer is armed by the engine."""
    scheduler = AsyncIOScheduler(timezone=timezone.utc)

    scheduler.add_job(
        engine.run_ingestion,
        CronTrigger(hour=settings.scheduler.ingestion_hour_utc, minute=0, timezone=timezone.utc),
        id="daily-ingestion",
        name="Ingestion: Daily Fixtures",
        replace_existing=True,
    )
    logger.info(
        f"Registered job: Daily Ingestion (at {settings.scheduler.ingestion_hour_utc:02d}:00 UTC)"
    )

    scheduler.add_job(
        engine.run_stale_sweep,
        IntervalTrigger(minutes=settings.cancellation.sweep_interval_minutes),
        id="stale-sweep",
        name="Cancellation: Stale Event Sweep",
        replace_existing=True,
    )
    logger.info(
        f"Registered job: Stale Event Sweep (every {settings.cancellation.sweep_interval_minutes} min)"
    )

    scheduler.add_job(
        engine.close_started_events,
        IntervalTrigger(minutes=settings.scheduler.close_check_minutes),
        id="betting-close",
        name="Ledger: Close Betting at Kickoff",
        replace_existing=True,
    )
    logger.info(
        f"Registered job: Betting Close Check (every {settings.scheduler.close_check_minutes} min)"
    )

    scheduler.add_job(
        engine.cleanup_pending_bets,
        IntervalTrigger(minutes=settings.scheduler.pending_cleanup_minutes),
        id="pending-cleanup",
        name="Bets: Expired Pending Cleanup",
        replace_existing=True,
    )
    logger.info(
        f"Registered job: Pending Bet Cleanup (every {settings.scheduler.pending_cleanup_minutes} min)"
    )

    return scheduler


async def run_service(settings: Settings, serve_api: bool = False) -> None:
    """Run the scheduler (and optionally the admin API) until cancelled."""
    async with open_engine(settings) as engine:
        scheduler = build_scheduler(engine, settings)
        scheduler.start()

        if settings.scheduler.ingest_on_startup:
            await engine.run_ingestion()
        wake = await engine.start(scheduler)

        logger.info("✓ Scheduler started")
        logger.info(f"✓ {len(scheduler.get_jobs())} jobs registered")
        logger.info(f"Next resolution poll: {wake.isoformat() if wake else 'idle'}")

        try:
            if serve_api:
                import uvicorn

                from matchday.api.server import create_app

                server = uvicorn.Server(
                    uvicorn.Config(
                        create_app(engine, settings),
                        host=settings.api.host,
                        port=settings.api.port,
                        log_level="info",
                    )
                )
                await server.serve()
            else:
                await asyncio.Event().wait()
        finally:
            scheduler.shutdown(wait=False)
            logger.info("✓ Scheduler stopped cleanly")


def start_scheduler(settings: Settings, serve_api: bool = False) -> None:
    """Blocking entry point for ``python -m matchday run``."""
    try:
        logger.info("Press Ctrl+C to stop\n")
        asyncio.run(run_service(settings, serve_api=serve_api))
    except (KeyboardInterrupt, SystemExit):
        logger.info("\nReceived interrupt signal")
