"""
Finboard Caching Layer

Components:
- RedisCache: cache-aside store with compression and a circuit breaker
- AnalyticsCache: per-company analytics views on top of RedisCache
- AnalyticsInvalidator: invalidate + schedule recompute on ledger writes
- ActivityTracker: recently active companies for the recurring refresh

Usage:
    from finboard.cache import RedisCache, AnalyticsCache

    cache = RedisCache()
    analytics = AnalyticsCache(cache, engine, companies)
    summary = await analytics.get_view(company_id, "summary")
"""

from finboard.cache.config import CacheConfig, CacheTTL, get_cache_config
from finboard.cache.compression import CacheCompressor
from finboard.cache.redis_cache import RedisCache, CircuitBreaker, escape_glob
from finboard.cache.analytics_cache import AnalyticsCache, parse_view_type
from finboard.cache.activity import ActivityTracker
from finboard.cache.invalidation import (
    AnalyticsInvalidator,
    CacheEvent,
    InvalidationResult,
)

__all__ = [
    # Config
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    # Store
    "CacheCompressor",
    "RedisCache",
    "CircuitBreaker",
    "escape_glob",
    # Analytics
    "AnalyticsCache",
    "parse_view_type",
    "ActivityTracker",
    # Invalidation
    "AnalyticsInvalidator",
    "CacheEvent",
    "InvalidationResult",
]
