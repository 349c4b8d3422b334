"""
Unit tests for the TimeSeriesAggregator.
"""

from __future__ import annotations

from typing import Optional

import pytest

from statement_mapper.aggregator import (
    TimeSeriesAggregator,
    sparkline,
    variation_percent,
)
from statement_mapper.schema import DocumentCategory, LineItem


def _item(
    code: Optional[str],
    amount: float,
    year: int = 2024,
    month: Optional[int] = None,
    raw: str = "",
    category: DocumentCategory = DocumentCategory.PYG,
) -> LineItem:
    return LineItem(
        metric_code=code,
        raw_concept=raw or (code or ""),
        category=category,
        period_year=year,
        period_month=month,
        amount=amount,
        source="doc.csv",
    )


@pytest.fixture
def aggregator() -> TimeSeriesAggregator:
    return TimeSeriesAggregator()


# ======================================================================
# Variation and sparkline
# ======================================================================

class TestVariation:
    def test_growth(self) -> None:
        assert variation_percent(400, 500) == pytest.approx(25.0)

    def test_previous_zero_is_zero(self) -> None:
        assert variation_percent(0, 500) == 0.0

    def test_negative_base_uses_absolute_value(self) -> None:
        # a loss shrinking from -200 to -100 is an improvement
        assert variation_percent(-200, -100) == pytest.approx(50.0)


class TestSparkline:
    def test_eight_points_linear(self) -> None:
        points = sparkline(0, 700)
        assert len(points) == 8
        assert points[0] == 0
        assert points[-1] == pytest.approx(700)
        assert points[1] == pytest.approx(100)

    def test_flat_when_equal(self) -> None:
        assert sparkline(50, 50, points=4) == [50, 50, 50, 50]

    def test_single_point(self) -> None:
        assert sparkline(10, 20, points=1) == [20]


# ======================================================================
# Selection
# ======================================================================

class TestSelect:
    def test_by_metric_code(self, aggregator: TimeSeriesAggregator) -> None:
        items = [_item("revenue_total", 1), _item("net_income", 2)]
        assert aggregator.select(items, metric_code="net_income") == [items[1]]

    def test_group_collects_codes_and_unmapped_patterns(
        self, aggregator: TimeSeriesAggregator
    ) -> None:
        items = [
            _item("cost_of_sales", -300),
            _item(None, -50, raw="Materias primas importadas"),
            _item(None, -20, raw="Otra partida"),
            _item("revenue_total", 1_000),
        ]
        selected = aggregator.select(items, group="variable_costs")
        assert [i.amount for i in selected] == [-300, -50]

    def test_mapped_items_judged_by_code_only(
        self, aggregator: TimeSeriesAggregator
    ) -> None:
        # mapped to cost_of_sales, so never counted as sales despite the label
        items = [_item("cost_of_sales", -300, raw="Coste de ventas")]
        assert aggregator.select(items, group="sales") == []

    def test_unknown_group(self, aggregator: TimeSeriesAggregator) -> None:
        with pytest.raises(ValueError, match="Unknown group"):
            aggregator.select([], group="nope")

    def test_exactly_one_selector(self, aggregator: TimeSeriesAggregator) -> None:
        with pytest.raises(ValueError):
            aggregator.select([])
        with pytest.raises(ValueError):
            aggregator.select([], metric_code="cash", group="sales")


# ======================================================================
# Aggregation
# ======================================================================

class TestAggregation:
    def test_aggregate_per_period(self, aggregator: TimeSeriesAggregator) -> None:
        items = [
            _item("revenue_total", 100, month=2),
            _item("revenue_total", 50, month=1),
            _item("revenue_total", 25, month=1),
        ]
        assert aggregator.aggregate(items) == {(2024, 1): 75, (2024, 2): 100}

    def test_yearly_flow_sums_months(self, aggregator: TimeSeriesAggregator) -> None:
        items = [_item("revenue_total", 100, month=m) for m in (1, 2, 3)]
        assert aggregator.yearly_totals(items) == {2024: 300}

    def test_yearly_stock_takes_latest(self, aggregator: TimeSeriesAggregator) -> None:
        items = [
            _item("cash", 100, month=1, category=DocumentCategory.BALANCE),
            _item("cash", 400, month=12, category=DocumentCategory.BALANCE),
        ]
        assert aggregator.yearly_totals(items) == {2024: 400}

    def test_compare_two_years(self, aggregator: TimeSeriesAggregator) -> None:
        items = [_item("revenue_total", 400, year=2023), _item("revenue_total", 500)]
        comparison = aggregator.compare(items)
        assert comparison is not None
        assert (comparison.previous_year, comparison.current_year) == (2023, 2024)
        assert comparison.variation_percent == pytest.approx(25.0)

    def test_compare_previous_zero(self, aggregator: TimeSeriesAggregator) -> None:
        items = [_item("revenue_total", 0, year=2023), _item("revenue_total", 500)]
        comparison = aggregator.compare(items)
        assert comparison.variation_percent == 0.0

    def test_compare_single_year(self, aggregator: TimeSeriesAggregator) -> None:
        comparison = aggregator.compare([_item("revenue_total", 500)])
        assert comparison.previous == comparison.current == 500
        assert comparison.variation_percent == 0.0

    def test_compare_empty(self, aggregator: TimeSeriesAggregator) -> None:
        assert aggregator.compare([]) is None

    def test_monthly_breakdown(self, aggregator: TimeSeriesAggregator) -> None:
        items = [
            _item("revenue_total", 100, month=1),
            _item("revenue_total", 300, month=12),
            _item("revenue_total", 999),  # annual line, no month
            _item("revenue_total", 7, year=2023, month=1),
        ]
        buckets = aggregator.monthly_breakdown(items, 2024)
        assert len(buckets) == 12
        assert buckets[0] == 100
        assert buckets[11] == 300
        assert sum(buckets) == 400


# ======================================================================
# KPI summary and analytical P&L
# ======================================================================

class TestSummary:
    def test_summary(self, aggregator: TimeSeriesAggregator) -> None:
        items = [
            _item("revenue_total", 400, year=2023),
            _item("revenue_total", 200, month=1),
            _item("revenue_total", 300, month=2),
        ]
        series = aggregator.summary(items, metric_code="revenue_total")
        assert series.key == "revenue_total"
        assert series.yearly == {2023: 400, 2024: 500}
        assert series.comparison.variation_percent == pytest.approx(25.0)
        assert len(series.sparkline) == 8
        assert series.monthly[:2] == (200, 300)

    def test_summary_without_data(self, aggregator: TimeSeriesAggregator) -> None:
        series = aggregator.summary([], group="sales")
        assert series.comparison is None
        assert series.to_dict()["sparkline"] == []


class TestAnalyticalPnl:
    def test_contribution_margin(self, aggregator: TimeSeriesAggregator) -> None:
        items = [
            _item("revenue_total", 1_000),
            _item("cost_of_sales", -400),
            _item(None, -100, raw="Mano de obra directa"),
            _item("personnel_expenses", -200),
            _item(None, -50, raw="Alquileres"),
        ]
        pnl = aggregator.analytical_pnl(items, 2024)
        assert pnl.sales == 1_000
        assert pnl.variable_costs == -500
        assert pnl.contribution_margin == 500
        assert pnl.fixed_costs == -250
        assert pnl.ebit == 250
        assert pnl.contribution_margin_percent == pytest.approx(50.0)

    def test_no_sales(self, aggregator: TimeSeriesAggregator) -> None:
        pnl = aggregator.analytical_pnl([], 2024)
        assert pnl.contribution_margin_percent is None
        assert pnl.to_dict()["contribution_margin_percent"] is None

    def test_breakeven_sales(self, aggregator: TimeSeriesAggregator) -> None:
        items = [
            _item("revenue_total", 1_000),
            _item("cost_of_sales", -600),
            _item("personnel_expenses", -200),
        ]
        pnl = aggregator.analytical_pnl(items, 2024)
        # 40% contribution margin has to cover 200 of fixed costs
        assert pnl.breakeven_sales == pytest.approx(500.0)
        assert pnl.margin_of_safety_percent == pytest.approx(50.0)
        assert pnl.to_dict()["breakeven_sales"] == 500.0

    def test_no_breakeven_without_positive_margin(
        self, aggregator: TimeSeriesAggregator
    ) -> None:
        items = [_item("revenue_total", 1_000), _item("cost_of_sales", -1_200)]
        pnl = aggregator.analytical_pnl(items, 2024)
        assert pnl.breakeven_sales is None
        assert pnl.to_dict()["margin_of_safety_percent"] is None


# ======================================================================
# Working-capital needs
# ======================================================================

class TestWorkingCapitalNeeds:
    def _balance(self, code: str, amount: float, year: int = 2024) -> LineItem:
        return _item(code, amount, year=year, category=DocumentCategory.BALANCE)

    def test_yearly_needs_and_cash_impact(self, aggregator: TimeSeriesAggregator) -> None:
        items = [
            self._balance("inventory", 100, year=2023),
            self._balance("trade_receivables", 200, year=2023),
            self._balance("trade_payables", 150, year=2023),
            self._balance("inventory", 120),
            self._balance("trade_receivables", 260),
            self._balance("trade_payables", 160),
        ]
        series = aggregator.working_capital_needs(items)
        assert series.key == "working_capital_needs"
        assert series.yearly == {2023: 150, 2024: 220}
        assert series.comparison.difference == pytest.approx(70)
        assert series.to_dict()["comparison"]["difference"] == pytest.approx(70)
        assert len(series.sparkline) == 8

    def test_incomplete_year_left_out(self, aggregator: TimeSeriesAggregator) -> None:
        items = [
            self._balance("inventory", 100, year=2023),
            self._balance("inventory", 120),
            self._balance("trade_receivables", 260),
            self._balance("trade_payables", 160),
        ]
        assert aggregator.working_capital_needs(items).yearly == {2024: 220}

    def test_no_balance_data(self, aggregator: TimeSeriesAggregator) -> None:
        series = aggregator.working_capital_needs([_item("revenue_total", 10)])
        assert series.comparison is None
        assert series.yearly == {}
