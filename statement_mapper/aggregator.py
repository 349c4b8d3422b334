"""
Time-Series Aggregator.

Period-over-period views of line items: totals per period, the
current-vs-previous comparison, a display sparkline, the monthly breakdown,
the analytical (contribution margin) P&L with its break-even point, and the
yearly working-capital needs.

Series are selected either by metric code or by a composite group.  A
composite group collects its metric codes plus any *unmapped* line whose
concept contains one of the group's patterns.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.ratio_engine import metric_value
from statement_mapper.schema import LineItem, MetricDefinition, ValueKind, metric_index

logger = get_logger("aggregator")


@dataclass(frozen=True)
class CompositeGroup:
    name: str
    metric_codes: Tuple[str, ...]
    patterns: Tuple[str, ...]


COMPOSITE_GROUPS: Dict[str, CompositeGroup] = {
    "sales": CompositeGroup(
        "sales",
        ("revenue_total",),
        ("ventas", "ingresos", "facturacion"),
    ),
    "variable_costs": CompositeGroup(
        "variable_costs",
        ("cost_of_sales",),
        ("coste de ventas", "materias primas", "mano de obra directa", "costes variables"),
    ),
    "fixed_costs": CompositeGroup(
        "fixed_costs",
        ("personnel_expenses", "other_operating_expenses", "depreciation"),
        ("gastos de personal", "alquileres", "amortizaciones", "gastos generales",
         "costes fijos"),
    ),
}

WORKING_CAPITAL_KEY = "working_capital_needs"
WORKING_CAPITAL_TERMS: Tuple[Tuple[str, int], ...] = (
    ("inventory", 1),
    ("trade_receivables", 1),
    ("trade_payables", -1),
)


@dataclass(frozen=True)
class Comparison:
    current_year: int
    previous_year: int
    current: float
    previous: float
    variation_percent: float

    @property
    def difference(self) -> float:
        return self.current - self.previous

    def to_dict(self) -> dict:
        return {
            "current_year": self.current_year,
            "previous_year": self.previous_year,
            "current": self.current,
            "previous": self.previous,
            "difference": self.difference,
            "variation_percent": round(self.variation_percent, 2),
        }


@dataclass(frozen=True)
class KpiSeries:
    """Everything a KPI card needs for one metric or group."""

    key: str
    yearly: Mapping[int, float] = field(default_factory=dict)
    comparison: Optional[Comparison] = None
    sparkline: Tuple[float, ...] = ()
    monthly: Tuple[float, ...] = ()

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "yearly": {str(y): v for y, v in self.yearly.items()},
            "comparison": self.comparison.to_dict() if self.comparison else None,
            "sparkline": [round(v, 2) for v in self.sparkline],
            "monthly": list(self.monthly),
        }


@dataclass(frozen=True)
class AnalyticalPnl:
    """Contribution-margin view of one year; costs carry their own sign."""

    period_year: int
    sales: float
    variable_costs: float
    contribution_margin: float
    fixed_costs: float
    ebit: float

    @property
    def contribution_margin_percent(self) -> Optional[float]:
        if self.sales == 0:
            return None
        return self.contribution_margin / self.sales * 100

    @property
    def breakeven_sales(self) -> Optional[float]:
        """Sales at which the contribution margin just covers fixed costs.

        ``None`` when the contribution margin is not positive: no level of
        sales reaches break-even.
        """
        margin_pct = self.contribution_margin_percent
        if margin_pct is None or margin_pct <= 0:
            return None
        return abs(self.fixed_costs) / (margin_pct / 100)

    @property
    def margin_of_safety_percent(self) -> Optional[float]:
        breakeven = self.breakeven_sales
        if breakeven is None:
            return None
        return (self.sales - breakeven) / self.sales * 100

    def to_dict(self) -> dict:
        margin_pct = self.contribution_margin_percent
        breakeven = self.breakeven_sales
        safety = self.margin_of_safety_percent
        return {
            "period_year": self.period_year,
            "sales": self.sales,
            "variable_costs": self.variable_costs,
            "contribution_margin": self.contribution_margin,
            "contribution_margin_percent": None if margin_pct is None else round(margin_pct, 2),
            "fixed_costs": self.fixed_costs,
            "ebit": self.ebit,
            "breakeven_sales": None if breakeven is None else round(breakeven, 2),
            "margin_of_safety_percent": None if safety is None else round(safety, 2),
        }


def variation_percent(previous: float, current: float) -> float:
    """``(current - previous) / |previous| * 100``; ``0`` when previous is 0."""
    if previous == 0:
        return 0.0
    return (current - previous) / abs(previous) * 100


def sparkline(previous: float, current: float, points: int = 8) -> List[float]:
    """Straight line from *previous* to *current*, both ends included.

    A display approximation only; it carries no intermediate data.
    """
    if points < 2:
        return [current]
    step = (current - previous) / (points - 1)
    return [previous + step * i for i in range(points)]


class TimeSeriesAggregator:
    """Period aggregation over line items."""

    def __init__(
        self,
        groups: Optional[Dict[str, CompositeGroup]] = None,
        definitions: Optional[Dict[str, MetricDefinition]] = None,
        normalizer: Optional[LabelNormalizer] = None,
    ) -> None:
        self._groups = groups if groups is not None else COMPOSITE_GROUPS
        self._definitions = definitions or metric_index()
        self._normalizer = normalizer or LabelNormalizer()

    @property
    def groups(self) -> Dict[str, CompositeGroup]:
        return self._groups

    # ------------------------------------------------------------------ #
    # Selection
    # ------------------------------------------------------------------ #

    def select(
        self,
        items: Sequence[LineItem],
        metric_code: Optional[str] = None,
        group: Optional[str] = None,
    ) -> List[LineItem]:
        """Items of one metric code or one composite group.

        Raises
        ------
        ValueError
            If neither (or both) selectors are given, or the group is unknown.
        """
        if (metric_code is None) == (group is None):
            raise ValueError("Pass exactly one of metric_code or group")
        if metric_code is not None:
            return [i for i in items if i.metric_code == metric_code]

        if group not in self._groups:
            raise ValueError(
                f"Unknown group {group!r}. Known groups: {sorted(self._groups)}"
            )
        spec = self._groups[group]
        patterns = [self._normalizer.normalize_label(p) for p in spec.patterns]
        selected = []
        for item in items:
            if item.is_mapped:
                if item.metric_code in spec.metric_codes:
                    selected.append(item)
                continue
            concept = f" {self._normalizer.normalize_label(item.raw_concept)} "
            if any(f" {p} " in concept for p in patterns):
                selected.append(item)
        return selected

    # ------------------------------------------------------------------ #
    # Aggregation
    # ------------------------------------------------------------------ #

    @staticmethod
    def aggregate(items: Sequence[LineItem]) -> Dict[Tuple[int, Optional[int]], float]:
        """Sum amounts per ``(year, month)``; ``month`` is ``None`` for annual lines."""
        totals: Dict[Tuple[int, Optional[int]], float] = defaultdict(float)
        for item in items:
            totals[(item.period_year, item.period_month)] += item.amount
        return dict(sorted(totals.items(), key=lambda kv: (kv[0][0], kv[0][1] or 0)))

    def yearly_totals(self, items: Sequence[LineItem]) -> Dict[int, float]:
        """One figure per year.

        Per series (metric code or raw concept), stock metrics take the
        latest snapshot of the year and flows take the annual line when one
        exists, else the sum of the months.
        """
        by_series: Dict[Tuple[str, int], List[LineItem]] = defaultdict(list)
        for item in items:
            by_series[(item.metric_code or item.raw_concept, item.period_year)].append(item)

        totals: Dict[int, float] = defaultdict(float)
        for (series, year), series_items in by_series.items():
            totals[year] += self._series_year_value(series, series_items)
        return dict(sorted(totals.items()))

    def compare(self, items: Sequence[LineItem]) -> Optional[Comparison]:
        """Compare the two most recent years; ``None`` when there is no data.

        With a single year the previous figure equals the current one.
        """
        return self._comparison(self.yearly_totals(items))

    @staticmethod
    def _comparison(yearly: Mapping[int, float]) -> Optional[Comparison]:
        if not yearly:
            return None
        years = sorted(yearly)
        current_year = years[-1]
        previous_year = years[-2] if len(years) > 1 else current_year
        current, previous = yearly[current_year], yearly[previous_year]
        return Comparison(
            current_year=current_year,
            previous_year=previous_year,
            current=current,
            previous=previous,
            variation_percent=variation_percent(previous, current),
        )

    @staticmethod
    def sparkline(previous: float, current: float, points: int = 8) -> List[float]:
        return sparkline(previous, current, points)

    @staticmethod
    def monthly_breakdown(items: Sequence[LineItem], period_year: int) -> List[float]:
        """Twelve monthly sums for *period_year*, zero-filled.

        Annual lines (no month) have no month to fall in and are left out.
        """
        buckets = [0.0] * 12
        for item in items:
            if item.period_year == period_year and item.period_month:
                buckets[item.period_month - 1] += item.amount
        return buckets

    def summary(
        self,
        items: Sequence[LineItem],
        metric_code: Optional[str] = None,
        group: Optional[str] = None,
        points: int = 8,
    ) -> KpiSeries:
        selected = self.select(items, metric_code=metric_code, group=group)
        key = metric_code or group or ""
        comparison = self.compare(selected)
        if comparison is None:
            return KpiSeries(key=key)

        logger.debug(
            "KPI %s: %d → %d, variation %.2f%%",
            key,
            comparison.previous_year,
            comparison.current_year,
            comparison.variation_percent,
        )
        return KpiSeries(
            key=key,
            yearly=self.yearly_totals(selected),
            comparison=comparison,
            sparkline=tuple(sparkline(comparison.previous, comparison.current, points)),
            monthly=tuple(self.monthly_breakdown(selected, comparison.current_year)),
        )

    def analytical_pnl(self, items: Sequence[LineItem], period_year: int) -> AnalyticalPnl:
        """Sales, variable costs, contribution margin, fixed costs and EBIT.

        Costs are expected with a negative sign, as statements report them.
        """
        def total(group: str) -> float:
            return self.yearly_totals(self.select(items, group=group)).get(period_year, 0.0)

        sales = total("sales")
        variable = total("variable_costs")
        fixed = total("fixed_costs")
        margin = sales + variable
        return AnalyticalPnl(
            period_year=period_year,
            sales=sales,
            variable_costs=variable,
            contribution_margin=margin,
            fixed_costs=fixed,
            ebit=margin + fixed,
        )

    def working_capital_needs(
        self, items: Sequence[LineItem], points: int = 8
    ) -> KpiSeries:
        """Working-capital needs per year (inventory + receivables - payables).

        Only years with all three balances are included.  The comparison's
        ``difference`` is the cash absorbed (positive) or released (negative)
        since the previous year.
        """
        codes = [code for code, _ in WORKING_CAPITAL_TERMS]
        years = sorted({i.period_year for i in items if i.metric_code in codes})
        yearly: Dict[int, float] = {}
        for year in years:
            values = [
                metric_value(items, code, year, self._definitions) for code in codes
            ]
            if any(v is None for v in values):
                continue
            yearly[year] = sum(
                sign * v for (_, sign), v in zip(WORKING_CAPITAL_TERMS, values)
            )

        comparison = self._comparison(yearly)
        if comparison is None:
            return KpiSeries(key=WORKING_CAPITAL_KEY)
        return KpiSeries(
            key=WORKING_CAPITAL_KEY,
            yearly=yearly,
            comparison=comparison,
            sparkline=tuple(sparkline(comparison.previous, comparison.current, points)),
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _series_year_value(self, series: str, items: List[LineItem]) -> float:
        annual = [i for i in items if i.period_month is None]
        if annual:
            return sum(i.amount for i in annual)
        definition = self._definitions.get(series)
        if definition is not None and definition.value_kind is ValueKind.STOCK:
            last_month = max(i.period_month or 0 for i in items)
            return sum(i.amount for i in items if i.period_month == last_month)
        return sum(i.amount for i in items)
