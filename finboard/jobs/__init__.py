"""
Background analytics jobs.

Components:
- RedisJobQueue: durable priority queue with retries and recurring entries
- AnalyticsJobProducer: the only place jobs are enqueued from
- AnalyticsWorker: asyncio consumer pool
- RecurringScheduler: hourly discovery plus maintenance timers
"""

from .types import (
    ALL_VIEWS,
    RECURRING,
    RECURRING_JOB_NAME,
    AnalyticsJobData,
    Job,
    JobPriority,
    JobStatus,
)
from .queue import RedisJobQueue, queue_priority
from .producer import AnalyticsJobProducer
from .worker import AnalyticsWorker
from .scheduler import RecurringScheduler

__all__ = [
    "ALL_VIEWS",
    "RECURRING",
    "RECURRING_JOB_NAME",
    "AnalyticsJobData",
    "Job",
    "JobPriority",
    "JobStatus",
    "RedisJobQueue",
    "queue_priority",
    "AnalyticsJobProducer",
    "AnalyticsWorker",
    "RecurringScheduler",
]
