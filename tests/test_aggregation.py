"""
Tests for the aggregation engine.

These tests verify:
- Summary totals, margins and the current month breakdown
- Monthly bucketing and the 12-month window
- Trends window and growth-rate boundaries
- Distribution buckets and month-over-month comparison
- Highest records ordering and projection
"""

from datetime import date
from unittest.mock import patch

import pytest
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError

from finboard.analytics.engine import month_bucket
from finboard.analytics.types import UNSPECIFIED, ViewType
from finboard.database.models import Transaction, TransactionType
from finboard.errors import ComputationError
from finboard.utils.dates import shift_months

INCOME = TransactionType.INCOME
EXPENSE = TransactionType.EXPENSE
TRANSFER = TransactionType.TRANSFER


# =============================================================================
# SUMMARY
# =============================================================================

class TestSummary:
    """Lifetime totals and current month."""

    def test_empty_company_returns_zeros(self, engine, company):
        """A company with no transactions reports zeros, not errors."""
        summary = engine.summary(company.id)

        assert summary["totalIncome"] == 0
        assert summary["totalExpenses"] == 0
        assert summary["netProfit"] == 0
        assert summary["profitMargin"] == 0
        assert summary["transactionCount"] == 0
        assert summary["currentMonth"] == {"income": 0, "expenses": 0, "profit": 0}

    def test_totals_and_margin(self, engine, company, add_transaction):
        """100 + 200 income and 40 expense give 260 profit at ~86.67%."""
        add_transaction(company.id, 100, INCOME, date(2024, 1, 5))
        add_transaction(company.id, 40, EXPENSE, date(2024, 1, 10))
        add_transaction(company.id, 200, INCOME, date(2024, 2, 1))

        summary = engine.summary(company.id)

        assert summary["totalIncome"] == 300
        assert summary["totalExpenses"] == 40
        assert summary["netProfit"] == 260
        assert summary["profitMargin"] == pytest.approx(86.67, abs=0.01)
        assert summary["transactionCount"] == 3

    def test_current_month_breakdown(self, engine, company, add_transaction):
        """Only transactions in the clock's calendar month count as current."""
        add_transaction(company.id, 50, INCOME, date(2024, 3, 2))
        add_transaction(company.id, 20, EXPENSE, date(2024, 3, 10))
        add_transaction(company.id, 999, INCOME, date(2024, 2, 29))

        summary = engine.summary(company.id)

        assert summary["currentMonth"] == {"income": 50, "expenses": 20, "profit": 30}

    def test_transfers_counted_not_summed(self, engine, company, add_transaction):
        """Transfers appear in the count but not in income or expenses."""
        add_transaction(company.id, 100, INCOME, date(2024, 1, 5))
        add_transaction(company.id, 500, TRANSFER, date(2024, 1, 6))

        summary = engine.summary(company.id)

        assert summary["totalIncome"] == 100
        assert summary["totalExpenses"] == 0
        assert summary["transactionCount"] == 2

    def test_scoped_to_company(self, engine, company, companies, add_transaction):
        """Another tenant's rows never leak into the summary."""
        other = companies.create("Other")
        add_transaction(other.id, 1000, INCOME, date(2024, 1, 5))

        assert engine.summary(company.id)["totalIncome"] == 0

    def test_calculated_at_uses_clock(self, engine, company, clock):
        assert engine.summary(company.id)["calculatedAt"] == clock().isoformat()


# =============================================================================
# MONTHLY
# =============================================================================

class TestMonthlyData:
    """Per-month buckets."""

    def test_latest_twelve_months_descending(self, engine, company, add_transaction):
        """13 distinct months yield the latest 12, newest first."""
        for i in range(13):
            add_transaction(company.id, 100 + i, INCOME, shift_months(date(2024, 3, 10), -i))

        months = [row["month"] for row in engine.monthly_data(company.id)]

        assert len(months) == 12
        assert months == sorted(months, reverse=True)
        assert months[0] == "2024-03"
        assert months[-1] == "2023-04"
        assert "2023-03" not in months

    def test_month_values(self, engine, company, add_transaction):
        add_transaction(company.id, 200, INCOME, date(2024, 1, 3))
        add_transaction(company.id, 50, EXPENSE, date(2024, 1, 20))
        add_transaction(company.id, 30, EXPENSE, date(2024, 1, 31))

        (january,) = engine.monthly_data(company.id)

        assert january["month"] == "2024-01"
        assert january["income"] == 200
        assert january["expenses"] == 80
        assert january["profit"] == 120
        assert january["transactionCount"] == 3
        assert january["profitMargin"] == pytest.approx(60.0)

    def test_margin_zero_without_income(self, engine, company, add_transaction):
        """A month with only expenses reports a 0 margin, not a division error."""
        add_transaction(company.id, 75, EXPENSE, date(2024, 2, 3))

        (february,) = engine.monthly_data(company.id)

        assert february["profit"] == -75
        assert february["profitMargin"] == 0


# =============================================================================
# TRENDS
# =============================================================================

class TestTrends:
    """Six-month trend series."""

    def test_window_is_six_months(self, engine, company, add_transaction):
        """Rows before (today - 6 months) are excluded, even within a kept month."""
        add_transaction(company.id, 500, INCOME, date(2023, 9, 10))
        add_transaction(company.id, 100, INCOME, date(2023, 9, 20))
        add_transaction(company.id, 900, INCOME, date(2023, 8, 1))

        trends = engine.trends(company.id)

        assert [t["month"] for t in trends] == ["2023-09"]
        assert trends[0]["income"] == 100

    def test_growth_rate_against_previous_month(self, engine, company, add_transaction):
        add_transaction(company.id, 100, INCOME, date(2024, 1, 5))
        add_transaction(company.id, 150, INCOME, date(2024, 2, 5))

        february, january = engine.trends(company.id)

        assert february["month"] == "2024-02"
        assert february["growthRate"] == pytest.approx(50.0)
        assert january["growthRate"] == 0

    def test_zero_income_earliest_month(self, engine, company, add_transaction):
        """Growth over a zero-income month is 0, never NaN or infinite."""
        add_transaction(company.id, 40, EXPENSE, date(2023, 12, 5))
        add_transaction(company.id, 100, INCOME, date(2024, 1, 5))

        january, december = engine.trends(company.id)

        assert december["income"] == 0
        assert december["growthRate"] == 0
        assert january["growthRate"] == 0

    def test_counts_by_type(self, engine, company, add_transaction):
        add_transaction(company.id, 10, INCOME, date(2024, 3, 1))
        add_transaction(company.id, 20, INCOME, date(2024, 3, 2))
        add_transaction(company.id, 5, EXPENSE, date(2024, 3, 3))
        add_transaction(company.id, 99, TRANSFER, date(2024, 3, 4))

        (march,) = engine.trends(company.id)

        assert march["incomeCount"] == 2
        assert march["expenseCount"] == 1
        assert march["income"] == 30
        assert march["expenses"] == 5


# =============================================================================
# DISTRIBUTION
# =============================================================================

class TestDistribution:
    """Department/action buckets and monthly comparison."""

    def test_null_department_is_unspecified(self, engine, company, add_transaction):
        """Rows without a department are bucketed, not dropped."""
        add_transaction(company.id, 100, INCOME, date(2024, 1, 5), department="Sales")
        add_transaction(company.id, 40, EXPENSE, date(2024, 1, 6), department=None)

        buckets = {b["department"]: b for b in engine.distribution(company.id)["byDepartment"]}

        assert set(buckets) == {"Sales", UNSPECIFIED}
        assert buckets[UNSPECIFIED]["expenses"] == 40
        assert buckets[UNSPECIFIED]["count"] == 1
        assert buckets["Sales"]["income"] == 100

    def test_action_buckets(self, engine, company, add_transaction):
        add_transaction(company.id, 100, INCOME, date(2024, 1, 5), action="invoice")
        add_transaction(company.id, 50, INCOME, date(2024, 1, 7), action="invoice")
        add_transaction(company.id, 30, EXPENSE, date(2024, 1, 8))

        buckets = {b["action"]: b for b in engine.distribution(company.id)["byAction"]}

        assert buckets["invoice"]["income"] == 150
        assert buckets["invoice"]["count"] == 2
        assert buckets[UNSPECIFIED]["expenses"] == 30

    def test_monthly_comparison(self, engine, company, add_transaction):
        add_transaction(company.id, 100, INCOME, date(2024, 2, 5))
        add_transaction(company.id, 50, EXPENSE, date(2024, 2, 6))
        add_transaction(company.id, 150, INCOME, date(2024, 3, 5))
        add_transaction(company.id, 25, EXPENSE, date(2024, 3, 6))

        comparison = engine.distribution(company.id)["monthlyComparison"]

        assert comparison["current"]["month"] == "2024-03"
        assert comparison["previous"]["month"] == "2024-02"
        assert comparison["changes"]["income"] == pytest.approx(50.0)
        assert comparison["changes"]["expenses"] == pytest.approx(-50.0)
        assert comparison["changes"]["profit"] == pytest.approx(150.0)

    def test_changes_zero_when_previous_empty(self, engine, company, add_transaction):
        add_transaction(company.id, 150, INCOME, date(2024, 3, 5))

        changes = engine.distribution(company.id)["monthlyComparison"]["changes"]

        assert changes == {"income": 0, "expenses": 0, "profit": 0}

    def test_profit_change_uses_absolute_previous(self, engine, company, add_transaction):
        """A loss last month still yields a positive change when profit improves."""
        add_transaction(company.id, 100, EXPENSE, date(2024, 2, 5))
        add_transaction(company.id, 100, INCOME, date(2024, 3, 5))
        add_transaction(company.id, 50, EXPENSE, date(2024, 3, 6))

        changes = engine.distribution(company.id)["monthlyComparison"]["changes"]

        assert changes["profit"] == pytest.approx(150.0)


# =============================================================================
# HIGHEST RECORDS
# =============================================================================

class TestHighestRecords:
    """Top transactions by amount."""

    def test_top_ten_income_excludes_expenses(self, engine, company, add_transaction):
        for i in range(1, 16):
            add_transaction(company.id, i * 100, INCOME, date(2024, 1, i))
        expense_id = add_transaction(company.id, 10000, EXPENSE, date(2024, 1, 20))

        records = engine.highest_records(company.id)
        amounts = [r["amount"] for r in records["highestIncome"]]

        assert amounts == [1500, 1400, 1300, 1200, 1100, 1000, 900, 800, 700, 600]
        assert expense_id not in {r["id"] for r in records["highestIncome"]}
        assert [r["id"] for r in records["highestExpense"]] == [expense_id]

    def test_projection_defaults(self, engine, company, add_transaction):
        add_transaction(company.id, 100, INCOME, date(2024, 1, 5), name="Invoice 7")

        (record,) = engine.highest_records(company.id)["highestIncome"]

        assert record["name"] == "Invoice 7"
        assert record["date"] == "2024-01-05"
        assert record["department"] == UNSPECIFIED
        assert record["action"] == UNSPECIFIED


# =============================================================================
# DISPATCH
# =============================================================================

class TestCompute:
    """View dispatch and error wrapping."""

    def test_compute_by_name(self, engine, company):
        assert engine.compute("summary", company.id)["transactionCount"] == 0
        assert engine.compute(ViewType.MONTHLY, company.id) == []

    def test_unknown_view(self, engine, company):
        with pytest.raises(ValueError):
            engine.compute("forecast", company.id)

    def test_database_error_becomes_computation_error(self, engine, company):
        error = OperationalError("SELECT", {}, Exception("disk I/O error"))
        with patch.object(engine, "summary", side_effect=error):
            with pytest.raises(ComputationError):
                engine.compute(ViewType.SUMMARY, company.id)

    def test_month_bucket_per_dialect(self):
        """PostgreSQL uses to_char, SQLite uses strftime."""
        pg = month_bucket(Transaction.transaction_date, "postgresql")
        lite = month_bucket(Transaction.transaction_date, "sqlite")

        assert "to_char" in str(pg.compile(dialect=postgresql.dialect()))
        assert "strftime" in str(lite.compile(dialect=sqlite.dialect()))
