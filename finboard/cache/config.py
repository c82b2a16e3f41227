"""
Cache Configuration

Centralized configuration for the Redis-backed caching layer.
Settings can be overridden via environment variables.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL configuration by data type.

    Analytics views only change when a transaction is written or locked, and
    every such write invalidates the tenant's views. The TTL is therefore an
    upper bound on staleness for changes that bypass the invalidation hook.
    """

    ANALYTICS_VIEW: timedelta = timedelta(minutes=30)

    # Recurring schedule fire-time claims (one enqueue per tick)
    RECURRING_CLAIM: timedelta = timedelta(hours=2)

    # Active company set (whole key)
    ACTIVE_COMPANIES: timedelta = timedelta(hours=48)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Environment variables:
    - CACHE_NAMESPACE: Key prefix shared by cache, queue and activity keys
    - CACHE_ENABLED: Enable/disable caching globally
    - CACHE_COMPRESSION_ENABLED / CACHE_COMPRESSION_THRESHOLD
    - CACHE_CIRCUIT_BREAKER_* : Fail-fast behaviour when Redis is down
    - REDIS_URL and REDIS_* pool settings
    - ANALYTICS_CACHE_TTL_SECONDS: TTL for analytics view entries
    """

    # Cache namespace (for key prefixes)
    namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "finboard"
    ))

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: _env_bool("CACHE_ENABLED", "true"))

    # Compression
    compression_enabled: bool = field(default_factory=lambda: _env_bool(
        "CACHE_COMPRESSION_ENABLED", "true"
    ))
    compression_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_COMPRESSION_THRESHOLD",
        "1024"
    )))

    # Circuit breaker
    circuit_breaker_enabled: bool = field(default_factory=lambda: _env_bool(
        "CACHE_CIRCUIT_BREAKER_ENABLED", "true"
    ))
    circuit_breaker_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_THRESHOLD",
        "5"
    )))
    circuit_breaker_timeout: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_TIMEOUT",
        "60"
    )))

    # Redis connection
    redis_url: str = field(default_factory=lambda: os.getenv(
        "REDIS_URL",
        "redis://localhost:6379/0"
    ))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "20"
    )))
    redis_socket_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_SOCKET_TIMEOUT",
        "5"
    )))
    redis_connect_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_CONNECT_TIMEOUT",
        "5"
    )))

    # Analytics views
    analytics_ttl_seconds: int = field(default_factory=lambda: int(os.getenv(
        "ANALYTICS_CACHE_TTL_SECONDS",
        str(int(CacheTTL.ANALYTICS_VIEW.total_seconds()))
    )))

    @property
    def analytics_ttl(self) -> timedelta:
        return timedelta(seconds=self.analytics_ttl_seconds)


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
