"""
Tests for the analytics cache facade.

These tests verify:
- Cache-aside reads (second read is served from Redis)
- Tenant and view validation
- Cache status reporting
- Tenant-scoped invalidation
- Worker-side stores and refreshes
- Degradation when Redis is unavailable
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from finboard.analytics.types import ViewType
from finboard.cache.analytics_cache import AnalyticsCache, parse_view_type
from finboard.cache.redis_cache import RedisCache
from finboard.database.models import TransactionType
from finboard.errors import NotFoundError, ValidationError


class TestParseViewType:

    def test_known_values(self):
        assert parse_view_type("trends") is ViewType.TRENDS
        assert parse_view_type(ViewType.HIGHEST) is ViewType.HIGHEST

    def test_unknown_value(self):
        with pytest.raises(ValidationError) as exc:
            parse_view_type("forecast")
        assert "forecast" in str(exc.value)


@pytest.mark.asyncio
class TestReadPath:
    """get_view / get_overview."""

    async def test_second_read_served_from_cache(self, analytics_cache, engine, company, add_transaction):
        """Only the first call reaches the aggregation engine."""
        add_transaction(company.id, 100, TransactionType.INCOME, date(2024, 3, 1))

        with patch.object(engine, "compute", wraps=engine.compute) as compute:
            first = await analytics_cache.get_view(company.id, "summary")
            second = await analytics_cache.get_view(company.id, "summary")

        assert first == second
        assert first["totalIncome"] == 100
        assert compute.call_count == 1

    async def test_stored_value_is_envelope(self, analytics_cache, cache, company, clock):
        await analytics_cache.get_view(company.id, ViewType.MONTHLY)

        entry = await cache.get(f"test:analytics:{company.id}:monthly")

        assert entry == {"type": "monthly", "data": [], "cachedAt": clock().isoformat()}

    async def test_view_ttl_applied(self, analytics_cache, cache, company):
        await analytics_cache.get_view(company.id, "summary")

        ttl = await cache.ttl(analytics_cache.view_key(company.id, "summary"))
        assert 0 < ttl <= 1800

    async def test_unknown_company(self, analytics_cache):
        with pytest.raises(NotFoundError):
            await analytics_cache.get_view("missing-company", "summary")

    async def test_unknown_view(self, analytics_cache, company):
        with pytest.raises(ValidationError):
            await analytics_cache.get_view(company.id, "forecast")

    async def test_overview_returns_all_views(self, analytics_cache, company):
        overview = await analytics_cache.get_overview(company.id)

        assert set(overview) == {v.value for v in ViewType}
        assert overview["summary"]["transactionCount"] == 0

    async def test_overview_unknown_company(self, analytics_cache):
        with pytest.raises(NotFoundError):
            await analytics_cache.get_overview("missing-company")

    async def test_broken_redis_still_returns_data(self, cache_config, engine, companies, company, clock):
        """Redis being down degrades to direct computation."""
        redis = MagicMock()
        error = RedisConnectionError("Connection refused")
        for name in ("get", "set", "exists", "delete"):
            setattr(redis, name, AsyncMock(side_effect=error))
        analytics = AnalyticsCache(RedisCache(cache_config, redis=redis), engine, companies, clock=clock)

        summary = await analytics.get_view(company.id, "summary")

        assert summary["totalIncome"] == 0


@pytest.mark.asyncio
class TestCacheStatus:

    async def test_inactive_then_active(self, analytics_cache, company, clock):
        status = await analytics_cache.get_cache_status(company.id)

        assert status["companyId"] == company.id
        assert status["status"] == "inactive"
        assert all(v == {"exists": False} for v in status["views"].values())
        assert status["availableTypes"] == []

        await analytics_cache.get_view(company.id, "trends")
        status = await analytics_cache.get_cache_status(company.id)

        assert status["status"] == "active"
        assert status["views"]["trends"] == {"exists": True, "cachedAt": clock().isoformat()}
        assert status["views"]["summary"] == {"exists": False}
        assert status["availableTypes"] == ["trends"]

    async def test_available_types_lists_cached_views_only(self, analytics_cache, company):
        await analytics_cache.get_view(company.id, "summary")
        await analytics_cache.get_view(company.id, "highest")

        status = await analytics_cache.get_cache_status(company.id)

        assert status["availableTypes"] == ["summary", "highest"]
        assert status["views"]["monthly"] == {"exists": False}

    async def test_unknown_company(self, analytics_cache):
        with pytest.raises(NotFoundError):
            await analytics_cache.get_cache_status("missing-company")


@pytest.mark.asyncio
class TestInvalidation:

    async def test_invalidate_removes_all_views(self, analytics_cache, company):
        await analytics_cache.get_overview(company.id)

        assert await analytics_cache.invalidate(company.id) == 5
        status = await analytics_cache.get_cache_status(company.id)
        assert status["status"] == "inactive"

    async def test_prefix_tenant_untouched(self, analytics_cache, companies):
        """Invalidating 'abc' must not remove 'abc123' entries."""
        companies.create("ABC", company_id="abc")
        companies.create("ABC 123", company_id="abc123")
        await analytics_cache.store_views("abc")
        await analytics_cache.store_views("abc123")

        assert await analytics_cache.invalidate("abc") == 5

        status = await analytics_cache.get_cache_status("abc123")
        assert all(v["exists"] for v in status["views"].values())

    async def test_invalidate_empty_tenant(self, analytics_cache, company):
        assert await analytics_cache.invalidate(company.id) == 0


@pytest.mark.asyncio
class TestWritePath:

    async def test_store_all_views(self, analytics_cache, company):
        stored = await analytics_cache.store_views(company.id)

        assert set(stored) == {v.value for v in ViewType}
        status = await analytics_cache.get_cache_status(company.id)
        assert all(v["exists"] for v in status["views"].values())

    async def test_store_single_view(self, analytics_cache, company):
        stored = await analytics_cache.store_views(company.id, ["highest"])

        assert list(stored) == ["highest"]
        status = await analytics_cache.get_cache_status(company.id)
        assert status["views"]["highest"]["exists"] is True
        assert status["views"]["summary"]["exists"] is False

    async def test_store_rejects_unknown_view(self, analytics_cache, company):
        with pytest.raises(ValidationError):
            await analytics_cache.store_views(company.id, ["forecast"])

    async def test_store_unknown_company(self, analytics_cache):
        with pytest.raises(NotFoundError):
            await analytics_cache.store_views("missing-company")

    async def test_refresh_all_recomputes(self, analytics_cache, company, add_transaction, clock):
        await analytics_cache.get_view(company.id, "summary")
        add_transaction(company.id, 250, TransactionType.INCOME, date(2024, 3, 2))
        clock.advance(minutes=5)

        stored = await analytics_cache.refresh_all(company.id)

        assert stored["summary"]["totalIncome"] == 250
        status = await analytics_cache.get_cache_status(company.id)
        assert status["views"]["summary"]["cachedAt"] == clock().isoformat()

    async def test_refresh_one(self, analytics_cache, company, add_transaction):
        await analytics_cache.get_view(company.id, "summary")
        add_transaction(company.id, 80, TransactionType.EXPENSE, date(2024, 3, 2))

        data = await analytics_cache.refresh_one(company.id, "summary")

        assert data["totalExpenses"] == 80
        assert (await analytics_cache.get_view(company.id, "summary"))["totalExpenses"] == 80
