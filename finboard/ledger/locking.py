"""
Transaction auto-locking.

Transactions become immutable a few minutes after creation. Each pass locks
every aged unlocked row and then runs the analytics invalidation hook once
per affected company.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from finboard.cache.invalidation import AnalyticsInvalidator, CacheEvent
from finboard.database.models import Transaction
from finboard.database.session import session_scope


logger = logging.getLogger(__name__)


class TransactionLocker:
    """Batch job that locks aged transactions."""

    def __init__(
        self,
        session_factory: sessionmaker,
        invalidator: AnalyticsInvalidator,
        lock_after: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self._invalidator = invalidator
        self.lock_after = lock_after
        self._clock = clock

    def lock_aged(self) -> Tuple[int, List[str]]:
        """Lock rows created before the cutoff. Returns (rows locked, company ids)."""
        cutoff = self._clock() - self.lock_after

        with session_scope(self._session_factory) as db:
            rows = db.execute(
                select(Transaction.id, Transaction.company_id).where(
                    Transaction.is_locked.is_(False),
                    Transaction.created_at <= cutoff,
                )
            ).all()
            if not rows:
                return 0, []

            db.execute(
                update(Transaction)
                .where(Transaction.id.in_([row.id for row in rows]))
                .values(is_locked=True, updated_at=self._clock())
            )

        companies = sorted({row.company_id for row in rows})
        return len(rows), companies

    async def run_once(self) -> Dict[str, Any]:
        """One locking pass followed by invalidation for every affected company."""
        locked, companies = await asyncio.to_thread(self.lock_aged)
        if not locked:
            return {"locked": 0, "companies": []}

        logger.info(f"Auto-locked {locked} transactions across {len(companies)} companies")

        for company_id in companies:
            await self._invalidator.on_transaction_mutated(
                company_id, CacheEvent.TRANSACTIONS_LOCKED
            )

        return {"locked": locked, "companies": companies}
