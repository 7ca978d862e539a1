"""
Verification Scheduler - Holiday-Gated Cron Execution

Manages scheduled verification runs using APScheduler.

Features:
- Weekday and Saturday cron windows (WEEKDAY_CRON / SATURDAY_CRON)
- Daily holiday-cache cleanup (CACHE_CLEANUP_CRON)
- Holiday gate checked before every tick (fails open)
- RUN_ONCE mode for immediate execution
- Graceful shutdown: stop new ticks, then release the browser

Usage:
    # Scheduled mode (default)
    python -m apps.verifier

    # Run one tick and exit
    RUN_ONCE=true python -m apps.verifier
"""

import asyncio
import logging
import os
import signal
import sys
from collections.abc import Awaitable, Callable
from datetime import date
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from apps.verifier.consent import ConsentBrowser
from apps.verifier.extractor import fetch_today_visits
from apps.verifier.pipeline import JobPipeline
from utils.bpjs import BpjsClient
from utils.config import local_now, settings
from utils.db import init_schema
from utils.holidays import HolidayGate
from utils.jobs import JobStore
from utils.logging import setup_logging
from utils.notify import TelegramNotifier
from utils.schemas import Visit

logger = logging.getLogger(__name__)

VisitExtractor = Callable[[], Awaitable[list[Visit]]]


async def should_run_today(gate: HolidayGate, today: date) -> bool:
    """False only when the gate positively reports a holiday."""
    try:
        if await gate.is_holiday(today):
            holiday = await gate.get_holiday_info(today)
            logger.info(
                "Skipping scheduled job - today is an Indonesian holiday",
                extra={"date": today.isoformat(), "holiday": holiday},
            )
            return False
    except Exception as e:
        logger.error("Error checking holiday status, proceeding with job", extra={"error": str(e)})
    return True


async def run_verification_tick(
    gate: HolidayGate,
    extract: VisitExtractor,
    store: JobStore,
    pipeline: JobPipeline,
    today: date,
) -> list[int]:
    """
    One scheduled verification round: gate, extract, enqueue, process.

    Never raises; every failure is logged so the next tick still runs.

    Returns:
        Ids of the jobs enqueued (and processed) by this tick
    """
    if not await should_run_today(gate, today):
        return []

    logger.info("Running scheduled job: checking for new patients...")

    try:
        visits = await extract()
        if not visits:
            logger.info("No patients found for today in SIMRS.")
            return []

        new_ids = store.enqueue(visits)
        if not new_ids:
            logger.info("No new patients to enqueue since last check.")
            return []

        logger.info(
            "Enqueued %d new patient jobs. Processing them now.",
            len(new_ids),
            extra={"job_ids": new_ids},
        )
        await pipeline.run(new_ids)
        logger.info("Finished processing %d new jobs.", len(new_ids))
        return new_ids

    except Exception as e:
        logger.error("Scheduled job failed", extra={"error": str(e)}, exc_info=True)
        return []


class VerificationScheduler:
    """
    Scheduler for periodic verification rounds.

    Handles:
    - APScheduler setup and management
    - Cron-based scheduling of both work windows and cache cleanup
    - RUN_ONCE immediate execution
    - Signal handling for graceful shutdown
    """

    def __init__(
        self,
        gate: HolidayGate,
        store: JobStore,
        pipeline: JobPipeline,
        browser: ConsentBrowser,
        extract: VisitExtractor = fetch_today_visits,
        run_once: bool = False,
    ) -> None:
        self.gate = gate
        self.store = store
        self.pipeline = pipeline
        self.browser = browser
        self.extract = extract
        self.run_once = run_once
        self.timezone = ZoneInfo(settings.TIMEZONE)
        self.scheduler: AsyncIOScheduler | None = None
        self.shutdown_event = asyncio.Event()

        logger.info(
            "VerificationScheduler initialized",
            extra={
                "run_once": run_once,
                "weekday_cron": settings.WEEKDAY_CRON,
                "saturday_cron": settings.SATURDAY_CRON,
                "timezone": settings.TIMEZONE,
            },
        )

    async def tick(self) -> list[int]:
        return await run_verification_tick(
            self.gate, self.extract, self.store, self.pipeline, local_now().date()
        )

    async def clean_cache(self) -> None:
        logger.info("Running daily cache cleanup")
        try:
            self.gate.clean_expired_cache()
        except Exception as e:
            logger.error("Holiday cache cleanup failed", extra={"error": str(e)})

    async def log_upcoming_holidays(self) -> None:
        upcoming = await self.gate.get_upcoming_holidays()
        if upcoming:
            logger.info("Upcoming Indonesian holidays", extra={"holidays": upcoming})

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def register_jobs(self) -> AsyncIOScheduler:
        scheduler = AsyncIOScheduler(timezone=self.timezone)

        scheduler.add_job(
            self.tick,
            trigger=CronTrigger.from_crontab(settings.WEEKDAY_CRON, timezone=self.timezone),
            id="weekday_verification",
            name="Weekday BPJS verification",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.tick,
            trigger=CronTrigger.from_crontab(settings.SATURDAY_CRON, timezone=self.timezone),
            id="saturday_verification",
            name="Saturday BPJS verification",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.clean_cache,
            trigger=CronTrigger.from_crontab(settings.CACHE_CLEANUP_CRON, timezone=self.timezone),
            id="holiday_cache_cleanup",
            name="Holiday cache cleanup",
            replace_existing=True,
        )
        return scheduler

    async def shutdown(self) -> None:
        """Stop accepting ticks, release the browser, then drain notifications."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.browser.close()
        await self.pipeline.wait_for_notifications()
        logger.info("Scheduler shutdown complete")

    async def start(self) -> None:
        """
        Start scheduler or execute once.

        In scheduled mode, runs continuously until shutdown signal.
        In RUN_ONCE mode, executes one tick immediately and exits.
        """
        self.setup_signal_handlers()
        await self.clean_cache()

        if self.run_once:
            logger.info("Running in RUN_ONCE mode")
            try:
                await self.tick()
            finally:
                await self.shutdown()
            return

        logger.info("Running in scheduled mode")
        await self.log_upcoming_holidays()

        self.scheduler = self.register_jobs()
        self.scheduler.start()
        logger.info("Scheduler started")

        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            logger.info(
                "Scheduled %s",
                job.name,
                extra={"job_id": job.id, "next_run": str(next_run) if next_run is not None else None},
            )
        logger.info("Waiting for jobs...")

        await self.shutdown_event.wait()

        logger.info("Shutting down scheduler")
        await self.shutdown()


def build_scheduler(run_once: bool = False) -> VerificationScheduler:
    """Wire the verifier components together."""
    init_schema()

    store = JobStore()
    gate = HolidayGate()
    browser = ConsentBrowser()
    pipeline = JobPipeline(
        store=store,
        client=BpjsClient(),
        browser=browser,
        notifier=TelegramNotifier(),
    )
    return VerificationScheduler(gate=gate, store=store, pipeline=pipeline, browser=browser, run_once=run_once)


async def main() -> None:
    """Main entry point for scheduler."""
    setup_logging()
    run_once = os.getenv("RUN_ONCE", "false").lower() in ("true", "1", "yes")

    try:
        scheduler = build_scheduler(run_once=run_once)
        await scheduler.start()
    except Exception as e:
        logger.error("Scheduler failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
