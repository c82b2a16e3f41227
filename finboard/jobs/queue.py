"""
Redis Job Queue

Durable, retryable, priority-ordered job queue shared by every process that
talks to the same Redis.

Key layout ({prefix} = "{namespace}:queue:{name}"):
- {prefix}:id          INCR counter for job ids
- {prefix}:job:{id}    HASH with the job fields
- {prefix}:waiting     ZSET, score = priority * 10**12 + id (lower runs first,
                       FIFO within a priority)
- {prefix}:delayed     ZSET, score = epoch ms when the job becomes ready
- {prefix}:active      ZSET of job ids being processed, score = lease expiry ms
- {prefix}:completed   LIST of finished job ids, newest first, capped
- {prefix}:failed      LIST of failed job ids, newest first, capped
- {prefix}:repeat      HASH recurring name -> JSON {cron, data, priority, next_run}

Delivery is at-least-once. A job is popped and leased in one transaction;
when the lease expires without complete/fail (the worker died or hung) the
job counts a stalled attempt and goes back to waiting. All handlers are
idempotent recomputations, so duplicates are harmless.
"""

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from apscheduler.triggers.cron import CronTrigger
from redis.asyncio import Redis
from redis.exceptions import WatchError

from finboard.cache.config import CacheTTL
from finboard.errors import JobRetryExhausted
from finboard.jobs.types import Job, JobPriority, JobStatus


logger = logging.getLogger(__name__)

# Lower integer runs first
PRIORITY_VALUES = {
    JobPriority.USER_REQUESTED: 1,
    JobPriority.NORMAL_MUTATION_TRIGGERED: 5,
    JobPriority.LOW_BACKGROUND: 10,
}

_PRIORITY_SPAN = 10 ** 12

KEEP_COMPLETED = 50
KEEP_FAILED = 100

DEFAULT_LOCK_DURATION = 30.0

_CLAIM_TTL_SECONDS = int(CacheTTL.RECURRING_CLAIM.total_seconds())


def queue_priority(priority: Union[JobPriority, int]) -> int:
    """Map a named priority to the integer stored in the queue."""
    if isinstance(priority, JobPriority):
        return PRIORITY_VALUES[priority]
    return int(priority)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _s(value: Any) -> Any:
    return value.decode() if isinstance(value, bytes) else value


def next_fire_ms(cron: str, after_ms: int) -> int:
    """Epoch ms of the first cron fire time strictly after `after_ms` (UTC)."""
    trigger = CronTrigger.from_crontab(cron, timezone=timezone.utc)
    after = datetime.fromtimestamp(after_ms / 1000, tz=timezone.utc) + timedelta(microseconds=1)
    fire = trigger.get_next_fire_time(None, after)
    return int(fire.timestamp() * 1000)


class RedisJobQueue:
    """
    Named queue with priorities, delays, retries and recurring jobs.

    Usage:
        queue = RedisJobQueue(redis, "analytics")
        job = await queue.enqueue("calculate-analytics", payload,
                                  priority=JobPriority.USER_REQUESTED)

        job = await queue.dequeue()
        try:
            result = await handle(job)
            await queue.complete(job, result)
        except Exception as e:
            await queue.fail(job, e)
    """

    def __init__(
        self,
        redis: Redis,
        name: str = "analytics",
        namespace: str = "finboard",
        default_attempts: int = 3,
        default_backoff: float = 2.0,
        lock_duration: float = DEFAULT_LOCK_DURATION,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        self._redis = redis
        self.name = name
        self.prefix = f"{namespace}:queue:{name}"
        self.default_attempts = default_attempts
        self.default_backoff = default_backoff
        self.lock_duration_ms = int(lock_duration * 1000)
        self._clock_ms = clock_ms

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + tuple(str(p) for p in parts))

    def _job_key(self, job_id: str) -> str:
        return self._key("job", job_id)

    @staticmethod
    def _waiting_score(priority: int, job_id: str) -> float:
        return priority * _PRIORITY_SPAN + int(job_id)

    # =========================================================================
    # Producing
    # =========================================================================

    async def enqueue(
        self,
        name: str,
        data: Dict[str, Any],
        priority: Union[JobPriority, int] = JobPriority.LOW_BACKGROUND,
        delay: float = 0,
        attempts: Optional[int] = None,
        backoff: Optional[float] = None,
    ) -> Job:
        """
        Add a job.

        Args:
            name: Job name (handler routing/observability)
            data: JSON-serialisable payload
            priority: Named priority or raw queue integer
            delay: Seconds before the job becomes eligible
            attempts: Total attempts including the first (default 3)
            backoff: Base retry delay in seconds, doubled per attempt (default 2)
        """
        job_id = str(await self._redis.incr(self._key("id")))
        now = self._clock_ms()
        delay_ms = int(delay * 1000)

        job = Job(
            id=job_id,
            name=name,
            data=data,
            priority=queue_priority(priority),
            max_attempts=attempts or self.default_attempts,
            backoff_ms=int((self.default_backoff if backoff is None else backoff) * 1000),
            status=JobStatus.DELAYED if delay_ms > 0 else JobStatus.WAITING,
            created_at=now,
        )

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._job_key(job_id), mapping=job.to_hash())
            if delay_ms > 0:
                pipe.zadd(self._key("delayed"), {job_id: now + delay_ms})
            else:
                pipe.zadd(self._key("waiting"), {job_id: self._waiting_score(job.priority, job_id)})
            await pipe.execute()

        logger.debug(
            f"Enqueued job {job_id} ({name}) on {self.name}: "
            f"priority={job.priority}, delay={delay_ms}ms"
        )
        return job

    # =========================================================================
    # Recurring jobs
    # =========================================================================

    async def register_recurring(
        self,
        name: str,
        cron: str,
        data: Dict[str, Any],
        priority: Union[JobPriority, int] = JobPriority.LOW_BACKGROUND,
    ) -> bool:
        """
        Upsert a named recurring job.

        Registering the same name again updates it in place; there is only
        ever one schedule per name. The next fire time is kept when the cron
        expression is unchanged. Returns True when the entry was created.
        """
        key = self._key("repeat")
        existing = await self._redis.hget(key, name)
        previous = json.loads(_s(existing)) if existing else None

        if previous and previous.get("cron") == cron:
            next_run = previous["next_run"]
        else:
            next_run = next_fire_ms(cron, self._clock_ms())

        entry = {
            "cron": cron,
            "data": data,
            "priority": queue_priority(priority),
            "next_run": next_run,
        }
        await self._redis.hset(key, name, json.dumps(entry))

        if previous is None:
            logger.info(f"Registered recurring job '{name}' ({cron}) on {self.name}")
        return previous is None

    async def get_recurring(self) -> Dict[str, Dict[str, Any]]:
        raw = await self._redis.hgetall(self._key("repeat"))
        return {_s(k): json.loads(_s(v)) for k, v in raw.items()}

    async def remove_recurring(self, name: str) -> bool:
        return await self._redis.hdel(self._key("repeat"), name) > 0

    async def enqueue_due_recurring(self) -> List[Job]:
        """
        Enqueue one job for every recurring entry whose fire time has passed.

        Each fire time is claimed with SET NX, so concurrent callers in
        different processes enqueue it exactly once.
        """
        now = self._clock_ms()
        enqueued = []

        for name, entry in (await self.get_recurring()).items():
            fire_at = entry["next_run"]
            if fire_at > now:
                continue

            claim_key = self._key("repeat", name, fire_at)
            claimed = await self._redis.set(claim_key, "1", nx=True, ex=_CLAIM_TTL_SECONDS)

            entry["next_run"] = next_fire_ms(entry["cron"], now)
            await self._redis.hset(self._key("repeat"), name, json.dumps(entry))

            if not claimed:
                continue

            job = await self.enqueue(name, entry["data"], priority=entry["priority"])
            logger.info(f"Recurring job '{name}' fired as job {job.id}")
            enqueued.append(job)

        return enqueued

    # =========================================================================
    # Consuming
    # =========================================================================

    async def promote_delayed(self) -> int:
        """Move due delayed jobs to the waiting set. Returns count promoted."""
        now = self._clock_ms()
        due = await self._redis.zrangebyscore(self._key("delayed"), "-inf", now)

        promoted = 0
        for raw_id in due:
            job_id = _s(raw_id)
            # Only the caller that removes the entry may promote it
            if await self._redis.zrem(self._key("delayed"), job_id) != 1:
                continue

            priority = await self._redis.hget(self._job_key(job_id), "priority")
            if priority is None:
                continue
            await self._redis.hset(self._job_key(job_id), "status", JobStatus.WAITING.value)
            await self._redis.zadd(
                self._key("waiting"),
                {job_id: self._waiting_score(int(_s(priority)), job_id)},
            )
            promoted += 1

        return promoted

    async def recover_stalled(self) -> int:
        """
        Return jobs whose lease expired to the waiting set.

        A stall counts as an attempt; a job that has used all its attempts
        is moved to the failed list instead. Returns count recovered.
        """
        now = self._clock_ms()
        expired = await self._redis.zrangebyscore(self._key("active"), "-inf", now)

        recovered = 0
        for raw_id in expired:
            job_id = _s(raw_id)
            # Only the caller that removes the lease may recover the job
            if await self._redis.zrem(self._key("active"), job_id) != 1:
                continue

            job = await self.get_job(job_id)
            if job is None:
                continue

            reason = "job stalled (lease expired)"
            if job.attempts_made + 1 >= job.max_attempts:
                await self.fail(job, reason, retry=False)
                continue

            job.attempts_made += 1
            job.failed_reason = reason
            job.status = JobStatus.WAITING
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(self._job_key(job_id), mapping=job.to_hash())
                pipe.zadd(self._key("waiting"), {job_id: self._waiting_score(job.priority, job_id)})
                await pipe.execute()

            logger.warning(
                f"Job {job_id} stalled on {self.name}, re-queued "
                f"(attempt {job.attempts_made}/{job.max_attempts})"
            )
            recovered += 1

        return recovered

    async def dequeue(self) -> Optional[Job]:
        """Pop the highest-priority ready job and lease it to the caller."""
        await self.recover_stalled()
        await self.enqueue_due_recurring()
        await self.promote_delayed()

        waiting_key = self._key("waiting")
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(waiting_key)
                    head = await pipe.zrange(waiting_key, 0, 0)
                    if not head:
                        return None

                    job_id = _s(head[0])
                    now = self._clock_ms()
                    pipe.multi()
                    pipe.zrem(waiting_key, job_id)
                    pipe.zadd(self._key("active"), {job_id: now + self.lock_duration_ms})
                    pipe.hset(self._job_key(job_id), mapping={
                        "status": JobStatus.ACTIVE.value,
                        "processed_at": str(now),
                    })
                    await pipe.execute()
                    break
                except WatchError:
                    # Another consumer changed the waiting set; retry
                    continue

        return await self.get_job(job_id)

    async def complete(self, job: Job, result: Any = None):
        job.status = JobStatus.COMPLETED
        job.finished_at = self._clock_ms()
        job.result = result

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key("active"), job.id)
            pipe.hset(self._job_key(job.id), mapping=job.to_hash())
            pipe.lpush(self._key("completed"), job.id)
            await pipe.execute()

        await self._trim(self._key("completed"), KEEP_COMPLETED)

    async def fail(self, job: Job, error: Union[BaseException, str], retry: bool = True) -> bool:
        """
        Record a failed attempt.

        Retries with exponential backoff (backoff * 2**(attempt-1)) while
        attempts remain and `retry` is set; otherwise the job is moved to the
        failed list. Returns True when a retry was scheduled.
        """
        job.attempts_made += 1
        job.failed_reason = str(error)

        if retry and job.attempts_made < job.max_attempts:
            delay_ms = job.backoff_ms * 2 ** (job.attempts_made - 1)
            job.status = JobStatus.DELAYED
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self._key("active"), job.id)
                pipe.hset(self._job_key(job.id), mapping=job.to_hash())
                pipe.zadd(self._key("delayed"), {job.id: self._clock_ms() + delay_ms})
                await pipe.execute()

            logger.warning(
                f"Job {job.id} attempt {job.attempts_made}/{job.max_attempts} failed, "
                f"retrying in {delay_ms}ms: {error}"
            )
            return True

        job.status = JobStatus.FAILED
        job.finished_at = self._clock_ms()
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key("active"), job.id)
            pipe.hset(self._job_key(job.id), mapping=job.to_hash())
            pipe.lpush(self._key("failed"), job.id)
            await pipe.execute()

        await self._trim(self._key("failed"), KEEP_FAILED)

        exhausted = JobRetryExhausted(job.id, job.attempts_made, job.failed_reason)
        logger.error(f"{exhausted} (queue={self.name}, data={job.data})")
        return False

    async def _trim(self, list_key: str, keep: int):
        overflow = await self._redis.lrange(list_key, keep, -1)
        if not overflow:
            return
        async with self._redis.pipeline(transaction=True) as pipe:
            for job_id in overflow:
                pipe.delete(self._job_key(_s(job_id)))
            pipe.ltrim(list_key, 0, keep - 1)
            await pipe.execute()

    # =========================================================================
    # Inspection and maintenance
    # =========================================================================

    async def get_job(self, job_id: str) -> Optional[Job]:
        raw = await self._redis.hgetall(self._job_key(job_id))
        if not raw:
            return None
        return Job.from_hash(job_id, {_s(k): _s(v) for k, v in raw.items()})

    async def get_job_counts(self) -> Dict[str, int]:
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.zcard(self._key("waiting"))
            pipe.zcard(self._key("active"))
            pipe.zcard(self._key("delayed"))
            pipe.llen(self._key("completed"))
            pipe.llen(self._key("failed"))
            waiting, active, delayed, completed, failed = await pipe.execute()

        return {
            "waiting": waiting,
            "active": active,
            "delayed": delayed,
            "completed": completed,
            "failed": failed,
        }

    async def clean(self, grace: timedelta = timedelta(hours=24)) -> int:
        """Drop completed/failed jobs that finished more than `grace` ago."""
        cutoff = self._clock_ms() - int(grace.total_seconds() * 1000)
        removed = 0

        for list_name in ("completed", "failed"):
            list_key = self._key(list_name)
            for raw_id in await self._redis.lrange(list_key, 0, -1):
                job_id = _s(raw_id)
                finished = await self._redis.hget(self._job_key(job_id), "finished_at")
                if finished is not None and int(_s(finished)) >= cutoff:
                    continue
                await self._redis.lrem(list_key, 0, job_id)
                await self._redis.delete(self._job_key(job_id))
                removed += 1

        if removed:
            logger.info(f"Cleaned {removed} finished jobs from {self.name}")
        return removed
