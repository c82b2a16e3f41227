"""
Active company tracking.

Login events record the company in a Redis sorted set scored by epoch
milliseconds. The recurring refresh reads companies seen within the active
window. Members older than the expiry period are pruned on each login, and
the whole set expires if nobody logs in for that long.
"""

import logging
import time
from datetime import timedelta
from typing import Callable, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from finboard.cache.config import CacheTTL


logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ActivityTracker:
    """Sorted-set backed record of recently active companies."""

    def __init__(
        self,
        redis: Redis,
        namespace: str = "finboard",
        window: timedelta = timedelta(hours=24),
        expiry: timedelta = CacheTTL.ACTIVE_COMPANIES,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        self._redis = redis
        self.key = f"{namespace}:active_companies"
        self.window = window
        self.expiry = expiry
        self._clock_ms = clock_ms

    async def track_active_company(self, company_id: str, timestamp_ms: Optional[int] = None) -> bool:
        """
        Upsert the company with the current timestamp, drop members older than
        the expiry period and reset the set expiry.

        Best effort: a Redis failure is logged and reported as False so the
        login path never fails on it.
        """
        now = self._clock_ms()
        score = timestamp_ms if timestamp_ms is not None else now
        expiry_ms = int(self.expiry.total_seconds() * 1000)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zadd(self.key, {company_id: score})
                pipe.zremrangebyscore(self.key, "-inf", now - expiry_ms)
                pipe.expire(self.key, int(self.expiry.total_seconds()))
                await pipe.execute()
            return True
        except RedisError as e:
            logger.warning(f"Failed to track active company {company_id}: {e}")
            return False

    async def get_active_company_ids(self, window: Optional[timedelta] = None) -> List[str]:
        """Company ids seen within `window` (default: the configured active window)."""
        window = window or self.window
        since = self._clock_ms() - int(window.total_seconds() * 1000)
        members = await self._redis.zrangebyscore(self.key, since, "+inf")
        return [m.decode() if isinstance(m, bytes) else m for m in members]
