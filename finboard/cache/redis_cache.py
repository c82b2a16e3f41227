"""
Redis Cache Implementation

Cache-aside store with:
- Automatic compression for large values
- Circuit breaker for resilience
- Namespace isolation for multi-tenant keys
- Async operations throughout
- Statistics tracking

Failure policy: the cache is an optimisation, never a dependency. Read
errors are reported as misses and write errors are logged and swallowed,
so a Redis outage degrades to direct computation instead of failing requests.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from finboard.cache.compression import (
    CacheCompressor,
    deserialize_value,
    serialize_value,
)
from finboard.cache.config import CacheConfig, get_cache_config


logger = logging.getLogger(__name__)

TTL = Union[int, timedelta, None]

_GLOB_SPECIAL = "\\*?[]"


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so `value` only matches literally."""
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in str(value))


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set)):
        return len(value) == 0
    return False


@dataclass
class CacheStats:
    """Cache operation statistics."""
    hits: int = 0
    misses: int = 0
    errors: int = 0
    bytes_written: int = 0
    bytes_read: int = 0
    bytes_saved_compression: int = 0
    latency_samples: List[float] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def avg_latency_ms(self) -> float:
        recent = self.latency_samples[-100:]
        if not recent:
            return 0.0
        return sum(recent) / len(recent) * 1000

    def record_latency(self, seconds: float):
        self.latency_samples.append(seconds)
        if len(self.latency_samples) > 1000:
            self.latency_samples = self.latency_samples[-1000:]


@dataclass
class CircuitBreakerState:
    """Circuit breaker state tracking."""
    failures: int = 0
    last_failure: float = 0.0
    is_open: bool = False
    opened_at: float = 0.0


class CircuitBreaker:
    """
    Circuit breaker for the Redis connection.

    After `threshold` consecutive failures every call fails fast for
    `timeout` seconds, then a single attempt is let through.
    """

    def __init__(self, threshold: int = 5, timeout: int = 60):
        self.threshold = threshold
        self.timeout = timeout
        self.state = CircuitBreakerState()
        self._lock = asyncio.Lock()

    async def is_available(self) -> bool:
        if not self.state.is_open:
            return True

        if time.time() - self.state.opened_at >= self.timeout:
            async with self._lock:
                self.state.is_open = False
                self.state.failures = 0
                logger.info("Circuit breaker closed, allowing requests")
            return True

        return False

    async def record_success(self):
        async with self._lock:
            self.state.failures = 0
            self.state.is_open = False

    async def record_failure(self):
        async with self._lock:
            self.state.failures += 1
            self.state.last_failure = time.time()

            if self.state.failures >= self.threshold and not self.state.is_open:
                self.state.is_open = True
                self.state.opened_at = time.time()
                logger.warning(
                    f"Circuit breaker opened after {self.state.failures} failures. "
                    f"Will retry in {self.timeout} seconds."
                )


class RedisCache:
    """
    Generic read-through cache over Redis.

    Pass `redis` to reuse an existing client (tests inject fakeredis);
    otherwise a connection pool is created lazily from `config.redis_url`.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = redis
        self._owns_client = redis is None
        self._compressor = CacheCompressor(
            enabled=self.config.compression_enabled,
            threshold=self.config.compression_threshold,
        )
        self._circuit_breaker = CircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            timeout=self.config.circuit_breaker_timeout,
        ) if self.config.circuit_breaker_enabled else None
        self._stats = CacheStats()
        self._initialized = redis is not None
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Initialize Redis connection pool."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            try:
                self._pool = ConnectionPool.from_url(
                    self.config.redis_url,
                    max_connections=self.config.redis_max_connections,
                    socket_timeout=self.config.redis_socket_timeout,
                    socket_connect_timeout=self.config.redis_connect_timeout,
                    decode_responses=False,  # We handle bytes directly
                )
                self._redis = Redis(connection_pool=self._pool)

                await self._redis.ping()
                self._initialized = True
                logger.info(f"Redis cache initialized: {self.config.redis_url}")

            except Exception as e:
                logger.error(f"Failed to initialize Redis: {e}")
                self._initialized = False
                raise

    async def close(self):
        """Close the connection pool (injected clients are left open)."""
        if self._owns_client:
            if self._redis:
                await self._redis.aclose()
            if self._pool:
                await self._pool.disconnect()
            self._initialized = False
        logger.info("Redis cache closed")

    @asynccontextmanager
    async def _with_circuit_breaker(self):
        if self._circuit_breaker and not await self._circuit_breaker.is_available():
            raise RedisConnectionError("Circuit breaker is open")

        try:
            yield
            if self._circuit_breaker:
                await self._circuit_breaker.record_success()
        except RedisError:
            if self._circuit_breaker:
                await self._circuit_breaker.record_failure()
            raise

    def make_key(self, *parts: str) -> str:
        """Create namespaced cache key."""
        return f"{self.config.namespace}:{':'.join(str(p) for p in parts)}"

    @staticmethod
    def _ttl_seconds(ttl: TTL) -> Optional[int]:
        if ttl is None:
            return None
        if isinstance(ttl, timedelta):
            return int(ttl.total_seconds())
        return int(ttl)

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def exists(self, key: str) -> bool:
        """Check if key exists. Backend errors read as "absent"."""
        if not self.config.enabled:
            return False

        try:
            await self.initialize()
            async with self._with_circuit_breaker():
                return await self._redis.exists(key) > 0
        except Exception as e:
            self._stats.errors += 1
            logger.warning(f"Cache exists error for {key}: {e}")
            return False

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns None if:
        - Key doesn't exist
        - Cache is disabled
        - Redis is unavailable
        - Deserialization fails
        """
        if not self.config.enabled:
            return None

        start_time = time.time()

        try:
            await self.initialize()
            async with self._with_circuit_breaker():
                data = await self._redis.get(key)

            self._stats.record_latency(time.time() - start_time)

            if data is None:
                self._stats.misses += 1
                return None

            self._stats.hits += 1
            self._stats.bytes_read += len(data)

            return deserialize_value(self._compressor.decompress(data))

        except RedisConnectionError:
            self._stats.errors += 1
            logger.warning("Redis unavailable, returning None")
            return None
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache get error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: TTL = None) -> bool:
        """
        Set value with optional TTL (seconds or timedelta).

        Value and expiry are written in one SET command.
        Returns True on success, False on failure.
        """
        if not self.config.enabled:
            return False

        start_time = time.time()

        try:
            compressed, stats = self._compressor.compress(serialize_value(value))
            if stats:
                self._stats.bytes_saved_compression += stats.savings

            await self.initialize()
            async with self._with_circuit_breaker():
                await self._redis.set(key, compressed, ex=self._ttl_seconds(ttl))

            self._stats.record_latency(time.time() - start_time)
            self._stats.bytes_written += len(compressed)
            return True

        except RedisConnectionError:
            self._stats.errors += 1
            logger.warning(f"Redis unavailable, cache set failed for {key}")
            return False
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete a key from cache."""
        if not self.config.enabled:
            return False

        try:
            await self.initialize()
            async with self._with_circuit_breaker():
                await self._redis.delete(key)
            return True
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache delete error for {key}: {e}")
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern. Returns count deleted."""
        if not self.config.enabled:
            return 0

        try:
            await self.initialize()
            async with self._with_circuit_breaker():
                keys = [key async for key in self._redis.scan_iter(match=pattern, count=100)]
                if not keys:
                    return 0

                deleted = await self._redis.delete(*keys)
                logger.info(f"Deleted {deleted} keys matching {pattern}")
                return deleted

        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache delete pattern error for {pattern}: {e}")
            return 0

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds. -1 if no TTL, -2 if missing or on error."""
        if not self.config.enabled:
            return -2

        try:
            await self.initialize()
            async with self._with_circuit_breaker():
                return await self._redis.ttl(key)
        except Exception:
            self._stats.errors += 1
            return -2

    async def with_cache(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: TTL = None,
    ) -> Any:
        """
        Read-through helper.

        Returns the cached value when present and non-empty. Otherwise awaits
        `fetcher`, stores its result unless None, and returns it. At most one
        write per call. No lock is taken: concurrent misses may both fetch and
        the last writer wins, which is safe because fetchers are idempotent
        reads. `fetcher` must not consult this cache itself.
        """
        if await self.exists(key):
            cached = await self.get(key)
            if not _is_empty(cached):
                return cached

        value = await fetcher()
        if value is not None:
            await self.set(key, value, ttl)
        return value

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    def get_stats(self) -> Dict:
        """Get cache statistics."""
        return {
            "enabled": self.config.enabled,
            "initialized": self._initialized,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "errors": self._stats.errors,
            "hit_rate_percent": round(self._stats.hit_rate * 100, 2),
            "avg_latency_ms": round(self._stats.avg_latency_ms, 2),
            "bytes_written": self._stats.bytes_written,
            "bytes_read": self._stats.bytes_read,
            "bytes_saved_compression": self._stats.bytes_saved_compression,
            "circuit_breaker_open": (
                self._circuit_breaker.state.is_open
                if self._circuit_breaker else False
            ),
        }

    async def health_check(self) -> Dict:
        """Perform health check."""
        if not self.config.enabled:
            return {"healthy": True, "status": "disabled"}

        try:
            await self.initialize()

            start = time.time()
            async with self._with_circuit_breaker():
                await self._redis.ping()
            latency_ms = (time.time() - start) * 1000

            return {
                "healthy": True,
                "status": "connected",
                "latency_ms": round(latency_ms, 2),
                "stats": self.get_stats(),
            }

        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "error": str(e),
                "stats": self.get_stats(),
            }
