"""
Tests for recurring analytics and activity tracking.

These tests verify:
- Active company tracking (window, expiry, failure tolerance)
- Discovery enqueues low-priority refreshes for active companies only
- Durable recurring job registration is idempotent
- In-process maintenance jobs
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from finboard.cache.activity import ActivityTracker
from finboard.jobs.scheduler import RecurringScheduler
from finboard.jobs.types import RECURRING_JOB_NAME


@pytest.fixture
def scheduler(producer, tracker):
    return RecurringScheduler(producer, tracker, stagger_seconds=0)


@pytest.mark.asyncio
class TestActivityTracker:

    async def test_window_filters_stale_companies(self, tracker, clock):
        await tracker.track_active_company("company-a")
        await tracker.track_active_company("company-b", clock.ms() - 25 * 3600 * 1000)

        assert await tracker.get_active_company_ids() == ["company-a"]
        assert sorted(await tracker.get_active_company_ids(timedelta(hours=30))) == [
            "company-a", "company-b",
        ]

    async def test_repeat_login_updates_score(self, tracker, clock):
        await tracker.track_active_company("company-a", clock.ms() - 30 * 3600 * 1000)
        await tracker.track_active_company("company-a")

        assert await tracker.get_active_company_ids() == ["company-a"]

    async def test_login_prunes_members_past_expiry(self, tracker, redis, clock):
        await tracker.track_active_company("company-old")
        clock.advance(hours=49)

        await tracker.track_active_company("company-new")

        assert await redis.zscore(tracker.key, "company-old") is None
        assert await redis.zcard(tracker.key) == 1

    async def test_set_expiry(self, tracker, redis):
        await tracker.track_active_company("company-a")

        ttl = await redis.ttl(tracker.key)
        assert 47 * 3600 < ttl <= 48 * 3600

    async def test_failure_returns_false(self):
        redis = MagicMock()
        redis.pipeline.side_effect = RedisConnectionError("Connection refused")
        tracker = ActivityTracker(redis, namespace="test")

        assert await tracker.track_active_company("company-a") is False


@pytest.mark.asyncio
class TestDiscovery:

    async def test_only_active_companies_enqueued(self, scheduler, tracker, queue, clock):
        """A (seen now) is refreshed; B (seen 25h ago) is not."""
        await tracker.track_active_company("company-a")
        await tracker.track_active_company("company-b", clock.ms() - 25 * 3600 * 1000)

        assert await scheduler.discover_and_enqueue() == 1

        job = await queue.dequeue()
        assert job.data["companyId"] == "company-a"
        assert job.data["type"] == "all"
        assert job.priority == 10
        assert await queue.dequeue() is None

    async def test_no_active_companies(self, scheduler, queue):
        assert await scheduler.discover_and_enqueue() == 0
        assert (await queue.get_job_counts())["waiting"] == 0


@pytest.mark.asyncio
class TestRegistration:

    async def test_ensure_scheduled_idempotent(self, scheduler, queue):
        assert await scheduler.ensure_scheduled() is True
        assert await scheduler.ensure_scheduled() is True

        recurring = await queue.get_recurring()
        assert list(recurring) == [RECURRING_JOB_NAME]
        assert recurring[RECURRING_JOB_NAME]["cron"] == "0 * * * *"
        assert recurring[RECURRING_JOB_NAME]["data"]["type"] == "recurring"

    async def test_ensure_scheduled_backend_down(self, tracker):
        producer = MagicMock()
        producer.setup_recurring_analytics = AsyncMock(side_effect=RedisConnectionError("down"))
        scheduler = RecurringScheduler(producer, tracker)

        assert await scheduler.ensure_scheduled() is False

    async def test_queue_stats_list_recurring(self, scheduler, producer):
        await scheduler.ensure_scheduled()

        stats = await producer.get_queue_stats()

        assert stats["queue"] == "analytics"
        assert stats["recurring"] == [RECURRING_JOB_NAME]
        assert stats["waiting"] == 0


@pytest.mark.asyncio
class TestMaintenance:

    async def test_start_registers_jobs(self, producer, tracker, queue):
        locker = MagicMock()
        locker.run_once = AsyncMock()
        scheduler = RecurringScheduler(producer, tracker, locker=locker)

        await scheduler.start()
        try:
            assert scheduler.is_running
            job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
            assert job_ids == {"recurring_fallback", "transaction_auto_lock", "queue_clean"}
            assert RECURRING_JOB_NAME in await queue.get_recurring()
        finally:
            await scheduler.stop()

        assert not scheduler.is_running

    async def test_run_auto_lock_delegates(self, producer, tracker):
        locker = MagicMock()
        locker.run_once = AsyncMock(return_value={"locked": 0, "companies": []})
        scheduler = RecurringScheduler(producer, tracker, locker=locker)

        await scheduler.run_auto_lock()

        locker.run_once.assert_awaited_once()

    async def test_clean_queue(self, scheduler, queue, clock):
        await queue.enqueue("j", {})
        await queue.complete(await queue.dequeue())
        clock.advance(hours=25)

        assert await scheduler.clean_queue() == 1
