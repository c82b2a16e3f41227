"""
Aggregation Engine

Computes the five dashboard views from one company's transaction ledger.
Pure read-side computation: no caching, no scheduling, no writes.

Views:
- summary: lifetime totals, profit margin and the current month's breakdown
- monthly: per calendar month totals for the latest 12 months with activity
- trends: last 6 months with month-over-month income growth
- distribution: department and action buckets plus current-vs-previous month
- highest: top 10 income and expense transactions

Ratio convention: profit margins, growth rates and month-over-month
changes are reported as 0 whenever the denominator is 0. A 0 therefore
means either "no change" or "not applicable"; API consumers must treat
it as such.

Every method assumes the company exists. Tenant validation happens once
in the analytics cache facade before any view is computed.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Tuple, Union

from sqlalchemy import case, func, literal_column, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from finboard.analytics.types import (
    HIGHEST_LIMIT,
    MONTHLY_WINDOW,
    TRENDS_WINDOW_MONTHS,
    UNSPECIFIED,
    ViewType,
)
from finboard.database.models import Transaction, TransactionType
from finboard.database.session import session_scope
from finboard.errors import ComputationError
from finboard.utils.dates import month_key, shift_months


logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal, None]


def _num(value: Number) -> float:
    """Convert a SQL aggregate (Decimal/float/None) to a JSON float."""
    if value is None:
        return 0.0
    return float(value)


def _ratio(numerator: float, denominator: float) -> float:
    """Percentage with the 0-means-N/A convention."""
    if denominator == 0:
        return 0
    return numerator / denominator * 100


def month_bucket(column, dialect_name: str):
    """
    SQL expression truncating a date column to its YYYY-MM bucket.

    PostgreSQL: to_char(col, 'YYYY-MM')
    SQLite: strftime('%Y-%m', col)

    The format is inlined so SELECT and GROUP BY render the same expression.
    """
    if dialect_name == "postgresql":
        return func.to_char(column, literal_column("'YYYY-MM'"))
    return func.strftime(literal_column("'%Y-%m'"), column)


# Reusable aggregate expressions
_IS_INCOME = Transaction.type == TransactionType.INCOME
_IS_EXPENSE = Transaction.type == TransactionType.EXPENSE

INCOME_SUM = func.sum(case((_IS_INCOME, Transaction.amount), else_=0))
EXPENSE_SUM = func.sum(case((_IS_EXPENSE, Transaction.amount), else_=0))
INCOME_COUNT = func.sum(case((_IS_INCOME, 1), else_=0))
EXPENSE_COUNT = func.sum(case((_IS_EXPENSE, 1), else_=0))


class AggregationEngine:
    """
    Read-only analytics computations over the transactions table.

    Each call opens its own short session so several views can be computed
    concurrently from worker threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def _today(self) -> date:
        return self._clock().date()

    @staticmethod
    def _dialect(db: Session) -> str:
        return db.get_bind().dialect.name

    # =========================================================================
    # Dispatch
    # =========================================================================

    def compute(self, view_type: Union[ViewType, str], company_id: str) -> Any:
        """
        Compute a single view by name.

        Raises:
            ValueError: Unknown view type
            ComputationError: The database rejected or mangled the aggregation
        """
        view = ViewType(view_type)
        method = {
            ViewType.SUMMARY: self.summary,
            ViewType.MONTHLY: self.monthly_data,
            ViewType.TRENDS: self.trends,
            ViewType.DISTRIBUTION: self.distribution,
            ViewType.HIGHEST: self.highest_records,
        }[view]

        logger.debug(f"Computing {view.value} for company {company_id}")
        try:
            return method(company_id)
        except SQLAlchemyError as e:
            raise ComputationError(
                f"Failed to compute {view.value} for company {company_id}: {e}"
            ) from e

    # =========================================================================
    # Summary
    # =========================================================================

    def summary(self, company_id: str) -> Dict[str, Any]:
        """Lifetime totals plus the current calendar month."""
        today = self._today()

        with session_scope(self._session_factory) as db:
            income, expenses, count = db.execute(
                select(INCOME_SUM, EXPENSE_SUM, func.count(Transaction.id))
                .where(Transaction.company_id == company_id)
            ).one()

            current = self._month_totals(db, company_id, today)

        total_income = _num(income)
        total_expenses = _num(expenses)
        net_profit = total_income - total_expenses

        return {
            "totalIncome": total_income,
            "totalExpenses": total_expenses,
            "netProfit": net_profit,
            "profitMargin": _ratio(net_profit, total_income),
            "transactionCount": int(count or 0),
            "currentMonth": current,
            "calculatedAt": self._clock().isoformat(),
        }

    # =========================================================================
    # Monthly
    # =========================================================================

    def monthly_data(self, company_id: str) -> List[Dict[str, Any]]:
        """Latest 12 months that have transactions, newest first."""
        with session_scope(self._session_factory) as db:
            period = month_bucket(Transaction.transaction_date, self._dialect(db)).label("period")
            rows = db.execute(
                select(
                    period,
                    INCOME_SUM.label("income"),
                    EXPENSE_SUM.label("expenses"),
                    func.count(Transaction.id).label("transaction_count"),
                )
                .where(Transaction.company_id == company_id)
                .group_by(period)
                .order_by(period.desc())
                .limit(MONTHLY_WINDOW)
            ).all()

        result = []
        for row in rows:
            income = _num(row.income)
            expenses = _num(row.expenses)
            profit = income - expenses
            result.append({
                "month": row.period,
                "income": income,
                "expenses": expenses,
                "profit": profit,
                "transactionCount": int(row.transaction_count or 0),
                "profitMargin": _ratio(profit, income),
            })
        return result

    # =========================================================================
    # Trends
    # =========================================================================

    def trends(self, company_id: str) -> List[Dict[str, Any]]:
        """
        Income/expense per month for the last 6 months with growth rates.

        growthRate compares each month's income against the next older month
        in the series. The oldest month has nothing to compare against and
        always reports 0.
        """
        since = shift_months(self._today(), -TRENDS_WINDOW_MONTHS)

        with session_scope(self._session_factory) as db:
            period = month_bucket(Transaction.transaction_date, self._dialect(db)).label("period")
            rows = db.execute(
                select(
                    period,
                    INCOME_SUM.label("income"),
                    EXPENSE_SUM.label("expenses"),
                    INCOME_COUNT.label("income_count"),
                    EXPENSE_COUNT.label("expense_count"),
                )
                .where(
                    Transaction.company_id == company_id,
                    Transaction.transaction_date >= since,
                    Transaction.type.in_([TransactionType.INCOME, TransactionType.EXPENSE]),
                )
                .group_by(period)
            ).all()

        trends = [
            {
                "month": row.period,
                "income": _num(row.income),
                "expenses": _num(row.expenses),
                "incomeCount": int(row.income_count or 0),
                "expenseCount": int(row.expense_count or 0),
                "growthRate": 0,
            }
            for row in rows
        ]
        trends.sort(key=lambda t: t["month"], reverse=True)

        for current, previous in zip(trends, trends[1:]):
            current["growthRate"] = _ratio(
                current["income"] - previous["income"], previous["income"]
            )

        return trends

    # =========================================================================
    # Distribution
    # =========================================================================

    def distribution(self, company_id: str) -> Dict[str, Any]:
        """Department/action buckets and the month-over-month comparison."""
        today = self._today()

        with session_scope(self._session_factory) as db:
            by_department = self._bucket(db, company_id, Transaction.department, "department")
            by_action = self._bucket(db, company_id, Transaction.action, "action")

            current = self._month_totals(db, company_id, today)
            previous_day = shift_months(date(today.year, today.month, 1), -1)
            previous = self._month_totals(db, company_id, previous_day)

        return {
            "byDepartment": by_department,
            "byAction": by_action,
            "monthlyComparison": {
                "current": {"month": month_key(today), **current},
                "previous": {"month": month_key(previous_day), **previous},
                "changes": {
                    "income": _ratio(current["income"] - previous["income"], previous["income"]),
                    "expenses": _ratio(current["expenses"] - previous["expenses"], previous["expenses"]),
                    "profit": _ratio(current["profit"] - previous["profit"], abs(previous["profit"])),
                },
            },
        }

    def _bucket(self, db: Session, company_id: str, column, name: str) -> List[Dict[str, Any]]:
        label = func.coalesce(column, literal_column(f"'{UNSPECIFIED}'")).label("bucket")
        rows = db.execute(
            select(
                label,
                INCOME_SUM.label("income"),
                EXPENSE_SUM.label("expenses"),
                func.count(Transaction.id).label("count"),
            )
            .where(Transaction.company_id == company_id)
            .group_by(label)
            .order_by(label)
        ).all()

        return [
            {
                name: row.bucket,
                "income": _num(row.income),
                "expenses": _num(row.expenses),
                "count": int(row.count or 0),
            }
            for row in rows
        ]

    # =========================================================================
    # Highest records
    # =========================================================================

    def highest_records(self, company_id: str) -> Dict[str, List[Dict[str, Any]]]:
        """Top transactions by amount, income and expense separately."""
        with session_scope(self._session_factory) as db:
            highest_income = self._top(db, company_id, TransactionType.INCOME)
            highest_expense = self._top(db, company_id, TransactionType.EXPENSE)

        return {
            "highestIncome": highest_income,
            "highestExpense": highest_expense,
        }

    def _top(self, db: Session, company_id: str, tx_type: TransactionType) -> List[Dict[str, Any]]:
        rows = db.execute(
            select(
                Transaction.id,
                Transaction.name,
                Transaction.amount,
                Transaction.transaction_date,
                Transaction.department,
                Transaction.action,
            )
            .where(Transaction.company_id == company_id, Transaction.type == tx_type)
            .order_by(Transaction.amount.desc(), Transaction.id)
            .limit(HIGHEST_LIMIT)
        ).all()

        return [
            {
                "id": row.id,
                "name": row.name,
                "amount": _num(row.amount),
                "date": row.transaction_date.isoformat() if row.transaction_date else None,
                "department": row.department or UNSPECIFIED,
                "action": row.action or UNSPECIFIED,
            }
            for row in rows
        ]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _month_totals(self, db: Session, company_id: str, day: date) -> Dict[str, float]:
        """Income/expenses/profit for the calendar month containing `day`."""
        start, end = _month_range(day)
        income, expenses = db.execute(
            select(INCOME_SUM, EXPENSE_SUM).where(
                Transaction.company_id == company_id,
                Transaction.transaction_date >= start,
                Transaction.transaction_date < end,
            )
        ).one()

        income = _num(income)
        expenses = _num(expenses)
        return {
            "income": income,
            "expenses": expenses,
            "profit": income - expenses,
        }


def _month_range(day: date) -> Tuple[date, date]:
    start = date(day.year, day.month, 1)
    return start, shift_months(start, 1)
