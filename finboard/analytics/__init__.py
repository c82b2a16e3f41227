"""
Analytics computation.

Usage:
    from finboard.analytics import AggregationEngine, ViewType

    engine = AggregationEngine(session_factory)
    summary = engine.compute(ViewType.SUMMARY, company_id)
"""

from .engine import AggregationEngine, month_bucket
from .types import UNSPECIFIED, ViewType

__all__ = [
    "AggregationEngine",
    "month_bucket",
    "ViewType",
    "UNSPECIFIED",
]
