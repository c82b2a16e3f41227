"""
Analytics Cache Facade

Binds (company, view) pairs to cache keys and serves views cache-aside:
a hit returns the stored payload, a miss runs the aggregation query in a
worker thread and stores the result.

Key layout:   {namespace}:analytics:{companyId}:{viewType}
Stored value: {"type": viewType, "data": <view payload>, "cachedAt": ISO-8601}

Readers and the background workers both write this envelope, so
`get_cache_status` can always report when an entry was computed.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from finboard.analytics.engine import AggregationEngine
from finboard.analytics.types import ViewType
from finboard.cache.redis_cache import RedisCache, escape_glob
from finboard.database.repository import CompanyRepository
from finboard.errors import NotFoundError, ValidationError


logger = logging.getLogger(__name__)


def parse_view_type(value: Union[ViewType, str]) -> ViewType:
    """Coerce a path/job value to ViewType, raising ValidationError if unknown."""
    try:
        return ViewType(value)
    except ValueError:
        valid = ", ".join(v.value for v in ViewType)
        raise ValidationError(f"Unknown analytics type '{value}'. Expected one of: {valid}")


class AnalyticsCache:
    """Per-tenant analytics views with cache-aside reads and pattern invalidation."""

    def __init__(
        self,
        cache: RedisCache,
        engine: AggregationEngine,
        companies: CompanyRepository,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._cache = cache
        self._engine = engine
        self._companies = companies
        self.ttl = ttl or cache.config.analytics_ttl
        self._clock = clock

    # =========================================================================
    # Keys and envelopes
    # =========================================================================

    def view_key(self, company_id: str, view_type: Union[ViewType, str]) -> str:
        return self._cache.make_key("analytics", company_id, ViewType(view_type).value)

    def tenant_pattern(self, company_id: str) -> str:
        # Trailing ":" keeps tenant "abc" from matching "abc123"
        return self._cache.make_key("analytics", escape_glob(company_id), "*")

    def _envelope(self, view: ViewType, data: Any) -> Dict[str, Any]:
        return {
            "type": view.value,
            "data": data,
            "cachedAt": self._clock().isoformat(),
        }

    @staticmethod
    def _unwrap(entry: Any) -> Any:
        if isinstance(entry, dict) and "data" in entry and "cachedAt" in entry:
            return entry["data"]
        return entry

    # =========================================================================
    # Tenant validation and computation
    # =========================================================================

    async def ensure_company(self, company_id: str):
        """Raise NotFoundError unless the company exists."""
        if not await asyncio.to_thread(self._companies.exists, company_id):
            raise NotFoundError(f"Company {company_id} not found")

    async def _compute(self, company_id: str, view: ViewType) -> Any:
        return await asyncio.to_thread(self._engine.compute, view, company_id)

    # =========================================================================
    # Read path
    # =========================================================================

    async def get_view(self, company_id: str, view_type: Union[ViewType, str]) -> Any:
        """
        Return one analytics view, computing and caching it on a miss.

        Raises:
            NotFoundError: Company does not exist
            ValidationError: Unknown view type
        """
        view = parse_view_type(view_type)
        await self.ensure_company(company_id)
        return await self._read_through(company_id, view)

    async def get_overview(self, company_id: str) -> Dict[str, Any]:
        """All five views in one call, each served cache-aside."""
        await self.ensure_company(company_id)
        views = ViewType.all()
        results = await asyncio.gather(*(self._read_through(company_id, v) for v in views))
        return {view.value: data for view, data in zip(views, results)}

    async def _read_through(self, company_id: str, view: ViewType) -> Any:
        async def fetch():
            return self._envelope(view, await self._compute(company_id, view))

        entry = await self._cache.with_cache(
            self.view_key(company_id, view), fetch, self.ttl
        )
        return self._unwrap(entry)

    async def get_cache_status(self, company_id: str) -> Dict[str, Any]:
        """Report which views are cached for a company and when they were computed."""
        await self.ensure_company(company_id)

        views: Dict[str, Dict[str, Any]] = {}
        for view in ViewType:
            key = self.view_key(company_id, view)
            status: Dict[str, Any] = {"exists": await self._cache.exists(key)}
            if status["exists"]:
                entry = await self._cache.get(key)
                if isinstance(entry, dict) and entry.get("cachedAt"):
                    status["cachedAt"] = entry["cachedAt"]
            views[view.value] = status

        any_cached = any(status["exists"] for status in views.values())
        return {
            "companyId": company_id,
            "status": "active" if any_cached else "inactive",
            "views": views,
            "availableTypes": [name for name, status in views.items() if status["exists"]],
            "checkedAt": self._clock().isoformat(),
        }

    # =========================================================================
    # Write path
    # =========================================================================

    async def invalidate(self, company_id: str) -> int:
        """Delete every cached view for a company. Returns keys deleted."""
        count = await self._cache.delete_pattern(self.tenant_pattern(company_id))
        logger.info(f"Invalidated {count} analytics entries for company {company_id}")
        return count

    async def store_views(
        self,
        company_id: str,
        view_types: Optional[Iterable[Union[ViewType, str]]] = None,
    ) -> Dict[str, Any]:
        """
        Compute views in parallel and write their envelopes directly.

        Used by background workers. Computation errors propagate so the
        queue can retry; cache write failures are only logged.
        """
        views = [parse_view_type(v) for v in (view_types or ViewType.all())]
        await self.ensure_company(company_id)
        return await self._store(company_id, views)

    async def _store(self, company_id: str, views: List[ViewType]) -> Dict[str, Any]:
        results = await asyncio.gather(*(self._compute(company_id, v) for v in views))

        stored = {}
        for view, data in zip(views, results):
            await self._cache.set(
                self.view_key(company_id, view), self._envelope(view, data), self.ttl
            )
            stored[view.value] = data

        logger.debug(f"Stored {len(views)} analytics views for company {company_id}")
        return stored

    async def refresh_all(self, company_id: str) -> Dict[str, Any]:
        """Invalidate then recompute and store every view."""
        await self.ensure_company(company_id)
        await self.invalidate(company_id)
        return await self._store(company_id, ViewType.all())

    async def refresh_one(self, company_id: str, view_type: Union[ViewType, str]) -> Any:
        """Drop and recompute a single view."""
        view = parse_view_type(view_type)
        await self.ensure_company(company_id)
        await self._cache.delete(self.view_key(company_id, view))
        stored = await self._store(company_id, [view])
        return stored[view.value]
