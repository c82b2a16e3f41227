"""
Analytics worker pool.

A fixed number of asyncio consumers pull jobs from the analytics queue:
- type "all": compute the five views in parallel and store each
- type <view>: compute and store that view only
- type "recurring": run the recurring discovery step

Exceptions go back to the queue for retry. A missing company or a malformed
payload fails the job immediately since retrying cannot help.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from finboard.cache.analytics_cache import AnalyticsCache
from finboard.errors import NotFoundError, ValidationError
from finboard.jobs.queue import RedisJobQueue
from finboard.jobs.types import ALL_VIEWS, RECURRING, AnalyticsJobData, Job


logger = logging.getLogger(__name__)


class AnalyticsWorker:
    """
    Bounded-concurrency consumer for the analytics queue.

    Usage:
        worker = AnalyticsWorker(queue, analytics_cache, discovery=scheduler.discover_and_enqueue)
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        queue: RedisJobQueue,
        analytics_cache: AnalyticsCache,
        discovery: Optional[Callable[[], Awaitable[int]]] = None,
        concurrency: int = 3,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.analytics_cache = analytics_cache
        self.discovery = discovery
        self.concurrency = concurrency
        self.poll_interval = poll_interval

        self._running = False
        self._tasks: List[asyncio.Task] = []

        # Metrics
        self.processed_count = 0
        self.failed_count = 0

    async def start(self):
        """Start the consumer tasks."""
        if self._running:
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"analytics-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Analytics worker started with concurrency {self.concurrency}")

    async def stop(self):
        """Stop consumers. Jobs already running finish first."""
        if not self._running:
            return

        self._running = False
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        logger.info(
            f"Analytics worker stopped. "
            f"Processed: {self.processed_count}, Failed: {self.failed_count}"
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def _consume(self, index: int):
        while self._running:
            try:
                handled = await self.process_next()
            except Exception as e:
                # Queue backend trouble; back off and keep the consumer alive
                logger.error(f"Worker {index} queue error: {e}")
                handled = None

            if handled is None:
                await asyncio.sleep(self.poll_interval)

    async def process_next(self) -> Optional[Job]:
        """Dequeue and run one job. Returns the job, or None if the queue was empty."""
        job = await self.queue.dequeue()
        if job is None:
            return None

        await self._run(job)
        return job

    async def _run(self, job: Job):
        data = AnalyticsJobData.from_payload(job.data)
        start = time.time()

        try:
            result = await self.process_job(job)
        except (NotFoundError, ValidationError) as e:
            self.failed_count += 1
            logger.error(
                f"Analytics job {job.id} failed: company={data.company_id}, "
                f"type={data.type}, error={e}"
            )
            await self.queue.fail(job, e, retry=False)
            return
        except Exception as e:
            self.failed_count += 1
            logger.error(
                f"Analytics job {job.id} failed: company={data.company_id}, "
                f"type={data.type}, attempt={job.attempts_made + 1}/{job.max_attempts}, "
                f"error={e}"
            )
            await self.queue.fail(job, e)
            return

        await self.queue.complete(job, result)
        self.processed_count += 1

        elapsed_ms = (time.time() - start) * 1000
        logger.info(
            f"Analytics job {job.id} completed: company={data.company_id}, "
            f"type={data.type} in {elapsed_ms:.0f}ms"
        )

    async def process_job(self, job: Job) -> Dict[str, Any]:
        """Dispatch one job by its payload type."""
        data = AnalyticsJobData.from_payload(job.data)

        if data.type == RECURRING:
            if self.discovery is None:
                raise RuntimeError("Recurring job received but no discovery step is configured")
            enqueued = await self.discovery()
            return {"type": RECURRING, "enqueued": enqueued}

        if not data.company_id:
            raise NotFoundError(f"Job {job.id} has no companyId")

        view_types = None if data.type == ALL_VIEWS else [data.type]
        stored = await self.analytics_cache.store_views(data.company_id, view_types)

        return {
            "companyId": data.company_id,
            "type": data.type,
            "views": sorted(stored),
        }
