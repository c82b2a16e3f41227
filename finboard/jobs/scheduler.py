"""
Recurring analytics scheduler.

The durable hourly job "analytics-recurring" lives in the Redis queue and
is fired by whichever worker polls first after its cron time. Its handler is
`discover_and_enqueue`: every company seen in the last 24 hours gets a
low-priority "all" refresh, staggered so the database is not hit at once.

In-process APScheduler jobs run alongside:
- recurring_fallback: re-registers the durable job every hour in case the
  registration at startup failed or the repeat entry was lost
- transaction_auto_lock: locks aged transactions every minute
- queue_clean: trims finished job history every 6 hours
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from finboard.cache.activity import ActivityTracker
from finboard.jobs.producer import AnalyticsJobProducer
from finboard.ledger.locking import TransactionLocker


logger = logging.getLogger(__name__)


def job_listener(event):
    """Log failures of in-process scheduled jobs."""
    if event.exception:
        logger.warning(f"Scheduled job '{event.job_id}' failed: {event.exception}")


class RecurringScheduler:
    """Keeps the recurring refresh registered and runs periodic maintenance."""

    def __init__(
        self,
        producer: AnalyticsJobProducer,
        tracker: ActivityTracker,
        locker: Optional[TransactionLocker] = None,
        cron: str = "0 * * * *",
        fallback_interval: timedelta = timedelta(hours=1),
        stagger_seconds: float = 0.1,
        auto_lock_interval: timedelta = timedelta(seconds=60),
        clean_interval: timedelta = timedelta(hours=6),
        clean_grace: timedelta = timedelta(hours=24),
    ):
        self.producer = producer
        self.tracker = tracker
        self.locker = locker
        self.cron = cron
        self.fallback_interval = fallback_interval
        self.stagger_seconds = stagger_seconds
        self.auto_lock_interval = auto_lock_interval
        self.clean_interval = clean_interval
        self.clean_grace = clean_grace
        self._scheduler: Optional[AsyncIOScheduler] = None

    async def ensure_scheduled(self) -> bool:
        """
        Register the durable recurring job. Idempotent.

        Returns False (after logging) when the queue backend is unreachable;
        the hourly fallback will try again.
        """
        try:
            created = await self.producer.setup_recurring_analytics(self.cron)
        except Exception as e:
            logger.error(f"Failed to register recurring analytics job: {e}")
            return False

        if created:
            logger.info(f"Recurring analytics scheduled ({self.cron})")
        return True

    async def discover_and_enqueue(self) -> int:
        """Enqueue a background refresh for every recently active company."""
        company_ids = await self.tracker.get_active_company_ids()
        if not company_ids:
            logger.info("Recurring analytics: no active companies")
            return 0

        logger.info(f"Recurring analytics: refreshing {len(company_ids)} active companies")

        for index, company_id in enumerate(company_ids):
            if index and self.stagger_seconds:
                await asyncio.sleep(self.stagger_seconds)
            await self.producer.enqueue_background_refresh(company_id)

        return len(company_ids)

    async def run_auto_lock(self):
        if self.locker is not None:
            await self.locker.run_once()

    async def clean_queue(self) -> int:
        return await self.producer.queue.clean(self.clean_grace)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self):
        """Register the durable job and start the in-process timers."""
        if self._scheduler is not None:
            return

        await self.ensure_scheduled()

        scheduler = AsyncIOScheduler()
        scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

        scheduler.add_job(
            self.ensure_scheduled,
            IntervalTrigger(seconds=self.fallback_interval.total_seconds()),
            id="recurring_fallback",
            name="Recurring Analytics Fallback",
            replace_existing=True,
        )

        if self.locker is not None:
            scheduler.add_job(
                self.run_auto_lock,
                IntervalTrigger(seconds=self.auto_lock_interval.total_seconds()),
                id="transaction_auto_lock",
                name="Transaction Auto-Lock",
                replace_existing=True,
                max_instances=1,
            )

        scheduler.add_job(
            self.clean_queue,
            IntervalTrigger(seconds=self.clean_interval.total_seconds()),
            id="queue_clean",
            name="Queue History Cleanup",
            replace_existing=True,
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info("Recurring scheduler started")

    async def stop(self):
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Recurring scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None
