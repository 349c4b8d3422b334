"""
Ratio Engine.

Computes financial ratios from canonical ``LineItem``s.  Every ratio is a
declarative ``RatioFormula`` whose numerator and denominator are signed sums
of metric codes; nothing is hard-coded per ratio.

A ratio is only calculated when every referenced metric has at least one
item in the period and the denominator is non-zero.  Otherwise the result
carries ``value=None`` and ``is_calculated=False``; the engine never raises
for missing data.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from statement_mapper.logging_setup import get_logger
from statement_mapper.schema import (
    LineItem,
    MetricDefinition,
    RatioResult,
    ValueKind,
    metric_index,
)

logger = get_logger("ratio_engine")


@dataclass(frozen=True)
class RatioFormula:
    """Declarative ratio definition.

    ``numerator`` and ``denominator`` are tuples of metric codes added
    together; a code prefixed with ``-`` is subtracted.  An empty
    ``denominator`` makes the result an amount rather than a ratio.
    """

    id: str
    name: str
    category: str
    numerator: Tuple[str, ...]
    denominator: Tuple[str, ...]
    unit: str = "x"
    scale: float = 1.0
    abs_denominator: bool = False
    description: str = ""

    @property
    def codes(self) -> Tuple[str, ...]:
        return tuple(c.lstrip("-") for c in self.numerator + self.denominator)

    @property
    def formula(self) -> str:
        def side(codes: Tuple[str, ...]) -> str:
            text = ""
            for i, code in enumerate(codes):
                if code.startswith("-"):
                    text += f" - {code[1:]}"
                else:
                    text += code if i == 0 else f" + {code}"
            return f"({text})" if len(codes) > 1 else text

        if not self.denominator:
            return side(self.numerator)
        den = side(self.denominator)
        if self.abs_denominator:
            den = f"|{den}|"
        text = f"{side(self.numerator)} / {den}"
        return f"{text} * {self.scale:g}" if self.scale != 1.0 else text


RATIO_CATALOGUE: Tuple[RatioFormula, ...] = (
    # --- Liquidity ---
    RatioFormula(
        "current_ratio", "Current Ratio", "liquidity",
        ("current_assets",), ("current_liabilities",),
        description="Short-term assets available per unit of short-term debt",
    ),
    RatioFormula(
        "quick_ratio", "Quick Ratio", "liquidity",
        ("current_assets", "-inventory"), ("current_liabilities",),
        description="Current ratio excluding inventory",
    ),
    RatioFormula(
        "cash_ratio", "Cash Ratio", "liquidity",
        ("cash",), ("current_liabilities",),
    ),
    RatioFormula(
        "working_capital_needs", "Working Capital Needs", "liquidity",
        ("inventory", "trade_receivables", "-trade_payables"), (), unit="currency",
        description="Operating funds tied up in inventory and customer credit, net of supplier credit",
    ),
    RatioFormula(
        "working_capital_days", "Working Capital Needs in Days of Sales", "liquidity",
        ("inventory", "trade_receivables", "-trade_payables"), ("revenue_total",),
        unit="days", scale=365.0,
    ),
    # --- Leverage ---
    RatioFormula(
        "debt_to_equity", "Debt to Equity", "leverage",
        ("total_liabilities",), ("equity_total",), unit="%", scale=100.0,
    ),
    RatioFormula(
        "debt_to_assets", "Debt to Assets", "leverage",
        ("total_liabilities",), ("total_assets",), unit="%", scale=100.0,
    ),
    RatioFormula(
        "equity_ratio", "Equity Ratio", "leverage",
        ("equity_total",), ("total_assets",), unit="%", scale=100.0,
        description="Financial autonomy: share of assets funded by equity",
    ),
    RatioFormula(
        "financial_debt_to_equity", "Financial Debt to Equity", "leverage",
        ("total_debt",), ("equity_total",), unit="%", scale=100.0,
        description="Interest-bearing debt from the debt schedule per unit of equity",
    ),
    # --- Profitability ---
    RatioFormula(
        "roe", "Return on Equity", "profitability",
        ("net_income",), ("equity_total",), unit="%", scale=100.0,
    ),
    RatioFormula(
        "roa", "Return on Assets", "profitability",
        ("net_income",), ("total_assets",), unit="%", scale=100.0,
    ),
    RatioFormula(
        "net_margin", "Net Margin", "profitability",
        ("net_income",), ("revenue_total",), unit="%", scale=100.0,
    ),
    RatioFormula(
        "ebitda_margin", "EBITDA Margin", "profitability",
        ("ebitda",), ("revenue_total",), unit="%", scale=100.0,
    ),
    # --- Activity ---
    RatioFormula(
        "asset_turnover", "Asset Turnover", "activity",
        ("revenue_total",), ("total_assets",),
    ),
    # --- Coverage ---
    RatioFormula(
        "interest_coverage", "Interest Coverage", "coverage",
        ("ebitda",), ("financial_expenses",), abs_denominator=True,
        description="Financial expenses are usually reported as negatives",
    ),
    RatioFormula(
        "debt_service_coverage", "Debt Service Coverage", "coverage",
        ("operating_cash_flow",), ("debt_service",),
    ),
    # --- Cash flow ---
    RatioFormula(
        "cash_flow_quality", "Operating Cash Flow Quality", "cashflow",
        ("operating_cash_flow",), ("net_income",),
        description="Operating cash flow generated per unit of net income",
    ),
    RatioFormula(
        "self_financing", "Self-financing", "cashflow",
        ("operating_cash_flow",), ("capex",), unit="%", scale=100.0,
        abs_denominator=True,
    ),
)


def metric_value(
    items: Iterable[LineItem],
    metric_code: str,
    period_year: int,
    definitions: Optional[Dict[str, MetricDefinition]] = None,
) -> Optional[float]:
    """Value of one metric for one year, or ``None`` if it has no items.

    Stock metrics use the latest snapshot in the year (an item without a
    month is the year-end figure).  Flow metrics use the annual figure when
    one was reported, else the sum of the months.
    """
    definitions = definitions or metric_index()
    selected = [
        i for i in items if i.metric_code == metric_code and i.period_year == period_year
    ]
    if not selected:
        return None

    definition = definitions.get(metric_code)
    annual = [i for i in selected if i.period_month is None]
    if definition is not None and definition.value_kind is ValueKind.STOCK:
        if annual:
            return sum(i.amount for i in annual)
        last_month = max(i.period_month for i in selected)  # type: ignore[type-var]
        return sum(i.amount for i in selected if i.period_month == last_month)

    if annual:
        return sum(i.amount for i in annual)
    return sum(i.amount for i in selected)


class RatioEngine:
    """Evaluate a ratio catalogue over line items.

    Parameters
    ----------
    formulas:
        Ratio definitions; defaults to ``RATIO_CATALOGUE``.
    """

    def __init__(
        self,
        formulas: Sequence[RatioFormula] = RATIO_CATALOGUE,
        definitions: Optional[Dict[str, MetricDefinition]] = None,
    ) -> None:
        self._formulas = tuple(formulas)
        self._definitions = definitions or metric_index()

    @property
    def formulas(self) -> Tuple[RatioFormula, ...]:
        return self._formulas

    def compute(self, items: Sequence[LineItem], period_year: int) -> List[RatioResult]:
        """Evaluate every formula for *period_year*."""
        values: Dict[str, Optional[float]] = {}
        needed = {code for f in self._formulas for code in f.codes}
        for code in needed:
            values[code] = metric_value(items, code, period_year, self._definitions)

        results = [self._evaluate(f, values, period_year) for f in self._formulas]
        logger.info(
            "Computed ratios for %d: %d/%d calculated",
            period_year,
            sum(1 for r in results if r.is_calculated),
            len(results),
        )
        return results

    def compute_grouped(
        self, items: Sequence[LineItem], period_year: int
    ) -> Dict[str, List[RatioResult]]:
        """``compute`` grouped by ratio category, in catalogue order."""
        grouped: Dict[str, List[RatioResult]] = defaultdict(list)
        for result in self.compute(items, period_year):
            grouped[result.category].append(result)
        return dict(grouped)

    def compute_all(self, items: Sequence[LineItem]) -> Dict[int, List[RatioResult]]:
        """``compute`` for every year that has at least one mapped item."""
        years = sorted({i.period_year for i in items if i.is_mapped})
        return {year: self.compute(items, year) for year in years}

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _signed_sum(codes: Tuple[str, ...], values: Dict[str, Optional[float]]) -> float:
        total = 0.0
        for code in codes:
            if code.startswith("-"):
                total -= values[code[1:]] or 0.0
            else:
                total += values[code] or 0.0
        return total

    def _evaluate(
        self,
        formula: RatioFormula,
        values: Dict[str, Optional[float]],
        period_year: int,
    ) -> RatioResult:
        missing = tuple(dict.fromkeys(c for c in formula.codes if values.get(c) is None))

        value: Optional[float] = None
        if not missing:
            numerator = self._signed_sum(formula.numerator, values)
            denominator = (
                self._signed_sum(formula.denominator, values) if formula.denominator else 1.0
            )
            if formula.abs_denominator:
                denominator = abs(denominator)
            if denominator != 0:
                value = numerator / denominator * formula.scale
                if math.isnan(value) or math.isinf(value):
                    value = None
            else:
                logger.debug("%s for %d: zero denominator", formula.id, period_year)

        return RatioResult(
            name=formula.name,
            value=value,
            unit=formula.unit,
            formula_id=formula.id,
            period_year=period_year,
            is_calculated=value is not None,
            category=formula.category,
            formula=formula.formula,
            missing=missing,
        )
