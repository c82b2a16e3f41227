"""
Cache Invalidation Service

Keeps cached analytics from drifting away from the ledger.

Every ledger mutation (create, update, delete, auto-lock) for a company:
1. Deletes all cached views for that company (awaited)
2. Enqueues one "all" recompute job at mutation priority with a short delay,
   so a burst of writes collapses into a few recomputes

Step 1 always finishes before step 2 starts. A failed enqueue is logged and
reported in the result; it never fails the mutation that triggered it.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from finboard.cache.analytics_cache import AnalyticsCache


logger = logging.getLogger(__name__)


class CacheEvent(Enum):
    """Events that trigger analytics invalidation."""

    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTIONS_LOCKED = "transactions_locked"


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    company_id: str
    event: CacheEvent
    keys_invalidated: int
    job_enqueued: bool
    duration_ms: float
    job_id: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class AnalyticsInvalidator:
    """
    Invalidation hook for the transaction mutation path.

    `producer` is the AnalyticsJobProducer; only its
    `schedule_analytics_refresh(company_id, user_id, delay)` is used.
    """

    def __init__(
        self,
        analytics_cache: AnalyticsCache,
        producer,
        delay_seconds: float = 2.0,
    ):
        self._analytics_cache = analytics_cache
        self._producer = producer
        self.delay_seconds = delay_seconds

    async def on_transaction_mutated(
        self,
        company_id: str,
        event: CacheEvent = CacheEvent.TRANSACTION_UPDATED,
        user_id: str = "system",
    ) -> InvalidationResult:
        start = time.time()
        errors: List[str] = []

        keys = await self._analytics_cache.invalidate(company_id)

        job_id = None
        try:
            job = await self._producer.schedule_analytics_refresh(
                company_id, user_id=user_id, delay=self.delay_seconds
            )
            job_id = job.id
        except Exception as e:
            logger.error(
                f"Failed to enqueue analytics refresh for company {company_id} "
                f"after {event.value}: {e}"
            )
            errors.append(str(e))

        duration_ms = (time.time() - start) * 1000
        logger.info(
            f"Invalidation for {event.value}: company {company_id}, "
            f"{keys} keys, job {job_id or 'not enqueued'} ({duration_ms:.1f}ms)"
        )

        return InvalidationResult(
            company_id=company_id,
            event=event,
            keys_invalidated=keys,
            job_enqueued=job_id is not None,
            job_id=job_id,
            duration_ms=duration_ms,
            errors=errors,
        )
