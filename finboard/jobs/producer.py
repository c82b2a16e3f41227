"""
Analytics job producer.

All analytics work enters the queue through this class, which fixes the
payload shape, the retry policy and the priority class of each entry point:

- request_refresh: user clicked "refresh now" (USER_REQUESTED)
- schedule_analytics_refresh: a ledger write changed the data (NORMAL, delayed)
- enqueue_background_refresh: recurring discovery (LOW_BACKGROUND)
"""

import logging
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from finboard.errors import TransientStoreError, ValidationError
from finboard.jobs.queue import RedisJobQueue, queue_priority
from finboard.jobs.types import (
    ALL_VIEWS,
    CALCULATE_ANALYTICS,
    JOB_TYPES,
    RECURRING,
    RECURRING_JOB_NAME,
    AnalyticsJobData,
    Job,
    JobPriority,
)


logger = logging.getLogger(__name__)


class AnalyticsJobProducer:
    """Enqueues analytics jobs with the standard retry policy."""

    def __init__(
        self,
        queue: RedisJobQueue,
        attempts: int = 3,
        backoff_seconds: float = 2.0,
        recurring_cron: str = "0 * * * *",
    ):
        self.queue = queue
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.recurring_cron = recurring_cron

    async def calculate_analytics(
        self,
        company_id: str,
        analytics_type: str = ALL_VIEWS,
        user_id: str = "system",
        priority: JobPriority = JobPriority.NORMAL_MUTATION_TRIGGERED,
        delay: float = 0,
    ) -> Job:
        """
        Enqueue a recompute of one view or of all views for a company.

        Raises:
            ValidationError: Unknown analytics type
            TransientStoreError: Queue backend unreachable
        """
        if analytics_type not in JOB_TYPES or analytics_type == RECURRING:
            raise ValidationError(f"Unknown analytics type '{analytics_type}'")

        data = AnalyticsJobData(
            company_id=company_id,
            type=analytics_type,
            user_id=user_id,
            priority=queue_priority(priority),
        )
        try:
            job = await self.queue.enqueue(
                CALCULATE_ANALYTICS,
                data.to_payload(),
                priority=priority,
                delay=delay,
                attempts=self.attempts,
                backoff=self.backoff_seconds,
            )
        except RedisError as e:
            raise TransientStoreError(f"Analytics queue unavailable: {e}") from e

        logger.info(
            f"Queued analytics job {job.id} for company {company_id} "
            f"(type={analytics_type}, priority={priority.name}, delay={delay}s)"
        )
        return job

    async def request_refresh(
        self,
        company_id: str,
        analytics_type: str = ALL_VIEWS,
        user_id: str = "system",
    ) -> Job:
        """User-initiated refresh. Returns immediately with the job handle."""
        return await self.calculate_analytics(
            company_id, analytics_type, user_id, JobPriority.USER_REQUESTED
        )

    async def schedule_analytics_refresh(
        self,
        company_id: str,
        user_id: str = "system",
        delay: float = 2.0,
    ) -> Job:
        """Mutation-triggered refresh of all views, delayed to batch bursts."""
        return await self.calculate_analytics(
            company_id, ALL_VIEWS, user_id, JobPriority.NORMAL_MUTATION_TRIGGERED, delay
        )

    async def enqueue_background_refresh(self, company_id: str) -> Job:
        return await self.calculate_analytics(
            company_id, ALL_VIEWS, "system", JobPriority.LOW_BACKGROUND
        )

    async def setup_recurring_analytics(self, cron: Optional[str] = None) -> bool:
        """Register (or update) the hourly discovery job. Safe to call repeatedly."""
        data = AnalyticsJobData(company_id=None, type=RECURRING).to_payload()
        return await self.queue.register_recurring(
            RECURRING_JOB_NAME,
            cron or self.recurring_cron,
            data,
            priority=JobPriority.LOW_BACKGROUND,
        )

    async def get_queue_stats(self) -> Dict[str, Any]:
        counts = await self.queue.get_job_counts()
        recurring = await self.queue.get_recurring()
        return {
            "queue": self.queue.name,
            **counts,
            "recurring": sorted(recurring),
        }
