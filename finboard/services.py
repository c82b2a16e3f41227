"""
Service wiring.

Every long-lived object is built once here and handed to its callers, so
tests can swap any piece (fakeredis, a temporary SQLite engine, a frozen
clock) without touching module globals.

Usage:
    services = build_services(get_settings())
    await services.start()
    ...
    await services.close()
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from redis.asyncio import Redis
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from finboard.analytics.engine import AggregationEngine
from finboard.cache.activity import ActivityTracker
from finboard.cache.analytics_cache import AnalyticsCache
from finboard.cache.config import CacheConfig
from finboard.cache.invalidation import AnalyticsInvalidator
from finboard.cache.redis_cache import RedisCache
from finboard.database.repository import CompanyRepository
from finboard.database.session import create_db_engine, make_session_factory
from finboard.jobs.producer import AnalyticsJobProducer
from finboard.jobs.queue import RedisJobQueue
from finboard.jobs.scheduler import RecurringScheduler
from finboard.jobs.worker import AnalyticsWorker
from finboard.ledger.departments import DepartmentCatalog
from finboard.ledger.locking import TransactionLocker
from finboard.ledger.service import TransactionService
from finboard.utils.config import Settings, get_settings


logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Container for the process-wide service graph."""
    settings: Settings
    db_engine: Engine
    session_factory: sessionmaker
    redis: Redis
    cache: RedisCache
    companies: CompanyRepository
    aggregation: AggregationEngine
    analytics_cache: AnalyticsCache
    queue: RedisJobQueue
    producer: AnalyticsJobProducer
    tracker: ActivityTracker
    invalidator: AnalyticsInvalidator
    departments: DepartmentCatalog
    transactions: TransactionService
    locker: TransactionLocker
    worker: AnalyticsWorker
    scheduler: RecurringScheduler
    owns_redis: bool = True

    async def start(self, workers: Optional[bool] = None):
        """Start the scheduler and, if enabled, the worker pool."""
        if workers is None:
            workers = self.settings.WORKERS_ENABLED

        await self.scheduler.start()
        if workers:
            await self.worker.start()

    async def close(self):
        await self.worker.stop()
        await self.scheduler.stop()
        await self.cache.close()
        if self.owns_redis:
            await self.redis.aclose()
        self.db_engine.dispose()
        logger.info("Services closed")


def build_services(
    settings: Optional[Settings] = None,
    db_engine: Optional[Engine] = None,
    redis: Optional[Redis] = None,
) -> Services:
    """
    Construct the service graph.

    Args:
        settings: Defaults to get_settings()
        db_engine: Defaults to an engine for settings.DATABASE_URL
        redis: Shared async client for cache, queue and activity tracking.
               Defaults to a client for settings.REDIS_URL.
    """
    settings = settings or get_settings()
    db_engine = db_engine or create_db_engine(settings.DATABASE_URL)
    session_factory = make_session_factory(db_engine)

    owns_redis = redis is None
    if redis is None:
        redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)

    cache_config = CacheConfig(
        redis_url=settings.REDIS_URL,
        analytics_ttl_seconds=settings.ANALYTICS_CACHE_TTL_SECONDS,
    )
    cache = RedisCache(cache_config, redis=redis)

    companies = CompanyRepository(session_factory)
    aggregation = AggregationEngine(session_factory)
    analytics_cache = AnalyticsCache(cache, aggregation, companies)

    queue = RedisJobQueue(
        redis,
        name=settings.ANALYTICS_QUEUE_NAME,
        namespace=cache_config.namespace,
        default_attempts=settings.JOB_ATTEMPTS,
        default_backoff=settings.JOB_BACKOFF_SECONDS,
        lock_duration=settings.JOB_LOCK_SECONDS,
    )
    producer = AnalyticsJobProducer(
        queue,
        attempts=settings.JOB_ATTEMPTS,
        backoff_seconds=settings.JOB_BACKOFF_SECONDS,
        recurring_cron=settings.RECURRING_CRON,
    )

    tracker = ActivityTracker(
        redis,
        namespace=cache_config.namespace,
        window=timedelta(hours=settings.ACTIVE_WINDOW_HOURS),
        expiry=timedelta(hours=settings.ACTIVE_SET_EXPIRY_HOURS),
    )
    invalidator = AnalyticsInvalidator(
        analytics_cache,
        producer,
        delay_seconds=settings.MUTATION_REFRESH_DELAY_SECONDS,
    )

    departments = DepartmentCatalog(session_factory)
    transactions = TransactionService(session_factory, invalidator, departments)
    locker = TransactionLocker(
        session_factory,
        invalidator,
        lock_after=timedelta(minutes=settings.AUTO_LOCK_AFTER_MINUTES),
    )

    scheduler = RecurringScheduler(
        producer,
        tracker,
        locker=locker,
        cron=settings.RECURRING_CRON,
        fallback_interval=timedelta(hours=settings.RECURRING_FALLBACK_HOURS),
        stagger_seconds=settings.RECURRING_STAGGER_SECONDS,
        auto_lock_interval=timedelta(seconds=settings.AUTO_LOCK_INTERVAL_SECONDS),
    )
    worker = AnalyticsWorker(
        queue,
        analytics_cache,
        discovery=scheduler.discover_and_enqueue,
        concurrency=settings.ANALYTICS_WORKER_CONCURRENCY,
    )

    return Services(
        settings=settings,
        db_engine=db_engine,
        session_factory=session_factory,
        redis=redis,
        cache=cache,
        companies=companies,
        aggregation=aggregation,
        analytics_cache=analytics_cache,
        queue=queue,
        producer=producer,
        tracker=tracker,
        invalidator=invalidator,
        departments=departments,
        transactions=transactions,
        locker=locker,
        worker=worker,
        scheduler=scheduler,
        owns_redis=owns_redis,
    )
