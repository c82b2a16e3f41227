"""
Pytest Configuration and Shared Fixtures

Provides a temporary SQLite ledger, an in-memory Redis (fakeredis), a
controllable clock and the analytics services wired on top of them.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import fakeredis
import pytest

from finboard.analytics.engine import AggregationEngine
from finboard.cache.activity import ActivityTracker
from finboard.cache.analytics_cache import AnalyticsCache
from finboard.cache.config import CacheConfig
from finboard.cache.invalidation import AnalyticsInvalidator
from finboard.cache.redis_cache import RedisCache
from finboard.database import (
    CompanyRepository,
    Transaction,
    TransactionType,
    create_db_engine,
    init_db,
    make_session_factory,
    session_scope,
)
from finboard.jobs.producer import AnalyticsJobProducer
from finboard.jobs.queue import RedisJobQueue


# ============================================================================
# Clock
# ============================================================================

class MutableClock:
    """Frozen clock that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def ms(self) -> int:
        return int(self.now.replace(tzinfo=timezone.utc).timestamp() * 1000)

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2024, 3, 15, 12, 0, 0))


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def db_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'finboard_test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def companies(session_factory) -> CompanyRepository:
    return CompanyRepository(session_factory)


@pytest.fixture
def company(companies):
    return companies.create("Acme", departments=["Sales", "Engineering"])


@pytest.fixture
def add_transaction(session_factory):
    """Insert a transaction row directly, bypassing the service layer."""

    def _add(
        company_id: str,
        amount,
        tx_type: TransactionType,
        tx_date: date,
        department: Optional[str] = None,
        action: Optional[str] = None,
        name: Optional[str] = None,
        is_locked: bool = False,
        created_at: Optional[datetime] = None,
    ) -> str:
        with session_scope(session_factory) as db:
            tx = Transaction(
                name=name or f"{tx_type.value} {amount}",
                amount=Decimal(str(amount)),
                type=tx_type,
                transaction_date=tx_date,
                department=department,
                action=action,
                company_id=company_id,
                created_by="tester",
                is_locked=is_locked,
            )
            if created_at is not None:
                tx.created_at = created_at
            db.add(tx)
            db.flush()
            return tx.id

    return _add


# ============================================================================
# Redis
# ============================================================================

@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
    yield client
    await client.aclose()


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(
        namespace="test",
        enabled=True,
        compression_enabled=True,
        compression_threshold=1024,
        circuit_breaker_enabled=True,
        circuit_breaker_threshold=5,
        circuit_breaker_timeout=60,
        analytics_ttl_seconds=1800,
    )


@pytest.fixture
def cache(redis, cache_config) -> RedisCache:
    return RedisCache(cache_config, redis=redis)


# ============================================================================
# Analytics services
# ============================================================================

@pytest.fixture
def engine(session_factory, clock) -> AggregationEngine:
    return AggregationEngine(session_factory, clock=clock)


@pytest.fixture
def analytics_cache(cache, engine, companies, clock) -> AnalyticsCache:
    return AnalyticsCache(cache, engine, companies, clock=clock)


@pytest.fixture
def queue(redis, clock) -> RedisJobQueue:
    return RedisJobQueue(redis, "analytics", namespace="test", clock_ms=clock.ms)


@pytest.fixture
def producer(queue) -> AnalyticsJobProducer:
    return AnalyticsJobProducer(queue)


@pytest.fixture
def tracker(redis, clock) -> ActivityTracker:
    return ActivityTracker(redis, namespace="test", clock_ms=clock.ms)


@pytest.fixture
def invalidator(analytics_cache, producer) -> AnalyticsInvalidator:
    return AnalyticsInvalidator(analytics_cache, producer, delay_seconds=2.0)


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
