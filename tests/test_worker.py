"""
Tests for the analytics worker.

These tests verify:
- Job dispatch by payload type
- Retry vs terminal failure classification
- Consumer lifecycle (start/stop)
- The mutation -> invalidate -> recompute round trip
"""

import asyncio
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from finboard.errors import ComputationError
from finboard.jobs.types import RECURRING_JOB_NAME, AnalyticsJobData, JobStatus
from finboard.jobs.worker import AnalyticsWorker
from finboard.ledger.service import TransactionService


@pytest.fixture
def worker(queue, analytics_cache):
    return AnalyticsWorker(queue, analytics_cache, concurrency=2, poll_interval=0.01)


@pytest.mark.asyncio
class TestDispatch:

    async def test_all_stores_every_view(self, worker, producer, analytics_cache, company, queue):
        job = await producer.calculate_analytics(company.id)

        processed = await worker.process_next()

        assert processed.id == job.id
        status = await analytics_cache.get_cache_status(company.id)
        assert all(v["exists"] for v in status["views"].values())
        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.result["views"] == ["distribution", "highest", "monthly", "summary", "trends"]

    async def test_single_view(self, worker, producer, analytics_cache, company):
        await producer.calculate_analytics(company.id, "monthly")

        await worker.process_next()

        status = await analytics_cache.get_cache_status(company.id)
        cached = [name for name, v in status["views"].items() if v["exists"]]
        assert cached == ["monthly"]

    async def test_recurring_runs_discovery(self, queue, analytics_cache):
        discovery = AsyncMock(return_value=2)
        worker = AnalyticsWorker(queue, analytics_cache, discovery=discovery)
        payload = AnalyticsJobData(company_id=None, type="recurring").to_payload()
        job = await queue.enqueue(RECURRING_JOB_NAME, payload)

        await worker.process_next()

        discovery.assert_awaited_once()
        assert (await queue.get_job(job.id)).result == {"type": "recurring", "enqueued": 2}

    async def test_empty_queue(self, worker):
        assert await worker.process_next() is None


@pytest.mark.asyncio
class TestFailures:

    async def test_missing_company_not_retried(self, worker, producer, queue):
        await producer.calculate_analytics("missing-company")

        await worker.process_next()

        counts = await queue.get_job_counts()
        assert counts["failed"] == 1
        assert counts["delayed"] == 0
        assert worker.failed_count == 1

    async def test_computation_error_retried(self, worker, producer, queue, analytics_cache, company):
        job = await producer.calculate_analytics(company.id)

        with patch.object(analytics_cache, "store_views",
                          AsyncMock(side_effect=ComputationError("database unavailable"))):
            await worker.process_next()

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.DELAYED
        assert stored.attempts_made == 1
        assert stored.failed_reason == "database unavailable"

    async def test_retry_succeeds_after_backoff(self, worker, producer, queue, analytics_cache, company, clock):
        job = await producer.calculate_analytics(company.id)
        real_store = analytics_cache.store_views
        calls = []

        async def store_views(company_id, view_types=None):
            calls.append(company_id)
            if len(calls) == 1:
                raise ComputationError("timeout")
            return await real_store(company_id, view_types)

        with patch.object(analytics_cache, "store_views", store_views):
            await worker.process_next()
            clock.advance(seconds=2)
            await worker.process_next()

        assert (await queue.get_job(job.id)).status == JobStatus.COMPLETED
        assert worker.processed_count == 1

    async def test_job_abandoned_by_dead_worker_is_rerun(
        self, worker, producer, queue, analytics_cache, company, clock
    ):
        job = await producer.calculate_analytics(company.id)
        await queue.dequeue()

        clock.advance(hours=2)
        processed = await worker.process_next()

        assert processed.id == job.id
        assert (await queue.get_job(job.id)).status == JobStatus.COMPLETED
        assert (await queue.get_job_counts())["active"] == 0
        assert (await analytics_cache.get_cache_status(company.id))["status"] == "active"


@pytest.mark.asyncio
class TestLifecycle:

    async def test_start_processes_jobs_then_stops(self, worker, producer, company):
        for view in ("summary", "trends", "highest"):
            await producer.calculate_analytics(company.id, view)

        await worker.start()
        assert worker.is_running
        for _ in range(200):
            if worker.processed_count == 3:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert worker.processed_count == 3
        assert not worker.is_running

    async def test_stop_without_start(self, worker):
        await worker.stop()
        assert not worker.is_running


@pytest.mark.asyncio
class TestInvalidationRoundTrip:

    async def test_mutation_invalidates_then_recomputes(
        self, worker, session_factory, invalidator, analytics_cache, company, clock
    ):
        """A write clears the views and the delayed job restores them with fresh data."""
        service = TransactionService(session_factory, invalidator, clock=clock)
        await analytics_cache.store_views(company.id)
        before = (await analytics_cache.get_cache_status(company.id))["views"]["summary"]["cachedAt"]

        await service.create_transaction(
            company.id, "user-1", "Consulting", 400, "income", date(2024, 3, 10)
        )

        assert (await analytics_cache.get_cache_status(company.id))["status"] == "inactive"
        assert await worker.process_next() is None

        clock.advance(seconds=2)
        assert await worker.process_next() is not None

        status = await analytics_cache.get_cache_status(company.id)
        assert status["status"] == "active"
        assert status["views"]["summary"]["cachedAt"] > before
        summary = await analytics_cache.get_view(company.id, "summary")
        assert summary["totalIncome"] == 400
