"""
Unit tests for the Validator.
"""

from __future__ import annotations

import math
from typing import Optional

import pytest

from statement_mapper.config import ValidationConfig
from statement_mapper.schema import (
    DocumentCategory,
    IssueKind,
    LineItem,
    Section,
    warning,
)
from statement_mapper.validator import Validator


def _item(
    code: Optional[str] = "revenue_total",
    amount: float = 100_000,
    year: int = 2024,
    month: Optional[int] = None,
    category: DocumentCategory = DocumentCategory.PYG,
    raw: str = "",
    source: str = "doc.csv",
    **kwargs,
) -> LineItem:
    return LineItem(
        metric_code=code,
        raw_concept=raw or (code or "unmapped"),
        category=category,
        period_year=year,
        period_month=month,
        amount=amount,
        source=source,
        **kwargs,
    )


def _balance(code: Optional[str], amount: float, **kwargs) -> LineItem:
    return _item(code, amount, category=DocumentCategory.BALANCE, **kwargs)


@pytest.fixture
def validator() -> Validator:
    return Validator(config=ValidationConfig())


@pytest.fixture
def strict_validator() -> Validator:
    return Validator(config=ValidationConfig(
        required_categories=["balance"],
        required_metrics=["net_income", "current_assets"],
    ))


# ======================================================================
# Balance equation
# ======================================================================

class TestBalance:
    def test_balanced_clean(self, validator: Validator) -> None:
        items = [
            _balance("total_assets", 1_000_000),
            _balance("total_liabilities", 600_000),
            _balance("equity_total", 400_000),
        ]
        result = validator.validate(items)
        assert result.is_valid
        assert not any(i.kind is IssueKind.BALANCE for i in result.issues)

    def test_within_tolerance(self, validator: Validator) -> None:
        items = [
            _balance("total_assets", 1_000_000.4),
            _balance("total_liabilities", 600_000),
            _balance("equity_total", 400_000),
        ]
        assert validator.validate(items).is_valid

    def test_unbalanced_is_error_with_difference(self, validator: Validator) -> None:
        items = [
            _balance("total_assets", 1_000_000),
            _balance("total_liabilities", 600_000),
            _balance("equity_total", 300_000),
        ]
        result = validator.validate(items)
        assert not result.is_valid
        issue = result.errors[0]
        assert issue.kind is IssueKind.BALANCE
        assert issue.value == pytest.approx(100_000)
        assert issue.field == "2024"

    def test_subtotals_used_when_no_totals(self, validator: Validator) -> None:
        items = [
            _balance("current_assets", 850_000),
            _balance("non_current_assets", 150_000),
            _balance("current_liabilities", 420_000),
            _balance("equity_total", 580_000),
        ]
        assert validator.validate(items).is_valid

    def test_totals_win_over_details(self, validator: Validator) -> None:
        items = [
            _balance("total_assets", 1_000),
            _balance("cash", 300),  # detail, already inside the total
            _balance("total_liabilities", 400),
            _balance("equity_total", 600),
        ]
        assert validator.validate(items).is_valid

    def test_subtotal_mixed_with_other_half_details(self, validator: Validator) -> None:
        items = [
            _balance("non_current_assets", 1_000),
            _balance("inventory", 300),
            _balance("cash", 200),
            _balance("current_liabilities", 500),
            _balance("equity_total", 1_000),
        ]
        result = validator.validate(items)
        assert result.is_valid
        assert not any(i.kind is IssueKind.BALANCE for i in result.issues)

    def test_details_under_present_subtotal_not_double_counted(
        self, validator: Validator
    ) -> None:
        items = [
            _balance("current_assets", 500),
            _balance("inventory", 300),
            _balance("cash", 200),
            _balance("property_plant_equipment", 1_000),
            _balance("trade_payables", 500),
            _balance("equity_total", 1_000),
        ]
        assert validator.validate(items).is_valid

    def test_mixed_side_still_detects_imbalance(self, validator: Validator) -> None:
        items = [
            _balance("non_current_assets", 1_000),
            _balance("cash", 200),
            _balance("current_liabilities", 500),
            _balance("equity_total", 1_000),
        ]
        result = validator.validate(items)
        assert result.errors[0].value == pytest.approx(-300)

    def test_unmapped_line_counts_when_a_subtotal_is_missing(
        self, validator: Validator
    ) -> None:
        items = [
            _balance("non_current_assets", 1_000),
            _balance(None, 500, raw="Deudores varios", section=Section.ASSET),
            _balance("current_liabilities", 500),
            _balance("equity_total", 1_000),
        ]
        assert validator.validate(items).is_valid

    def test_combined_total(self, validator: Validator) -> None:
        items = [
            _balance("total_assets", 1_000),
            _balance("total_equity_and_liabilities", 1_000),
        ]
        assert validator.validate(items).is_valid

    def test_unmapped_items_count_through_section(self, validator: Validator) -> None:
        items = [
            _balance(None, 500, raw="Caja chica", section=Section.ASSET),
            _balance(None, 200, raw="Deudas varias", section=Section.LIABILITY),
            _balance(None, 300, raw="Capital", section=Section.EQUITY),
        ]
        assert validator.validate(items).is_valid

    def test_each_period_checked(self, validator: Validator) -> None:
        items = [
            _balance("total_assets", 1_000, year=2023),
            _balance("total_liabilities", 400, year=2023),
            _balance("equity_total", 600, year=2023),
            _balance("total_assets", 1_200, year=2024),
            _balance("total_liabilities", 400, year=2024),
            _balance("equity_total", 600, year=2024),
        ]
        result = validator.validate(items)
        assert [i.field for i in result.errors] == ["2024"]

    def test_missing_side_is_warning(self, validator: Validator) -> None:
        result = validator.validate([_balance("total_assets", 1_000)])
        assert result.is_valid
        assert result.warnings[0].kind is IssueKind.BALANCE

    def test_non_balance_items_ignored(self, validator: Validator) -> None:
        result = validator.validate([_item("revenue_total", 500)])
        assert not any(i.kind is IssueKind.BALANCE for i in result.issues)


# ======================================================================
# Duplicate detection
# ======================================================================

class TestDuplicates:
    def test_no_duplicates_clean(self, validator: Validator) -> None:
        items = [_item("revenue_total", 100), _item("net_income", 20)]
        assert validator.validate(items).is_valid

    def test_duplicate_detected(self, validator: Validator) -> None:
        items = [
            _item("revenue_total", 100, row=1),
            _item("revenue_total", 100, row=5),
        ]
        result = validator.validate(items)
        assert not result.is_valid
        assert result.errors[0].kind is IssueKind.DUPLICATE
        assert result.errors[0].row == 5

    def test_different_months_not_duplicates(self, validator: Validator) -> None:
        items = [_item("revenue_total", 100, month=1), _item("revenue_total", 100, month=2)]
        assert validator.validate(items).is_valid

    def test_different_sources_not_duplicates(self, validator: Validator) -> None:
        items = [_item(source="a.csv"), _item(source="b.csv")]
        assert validator.validate(items).is_valid

    def test_unmapped_keyed_by_concept(self, validator: Validator) -> None:
        items = [_item(None, raw="Partida X"), _item(None, raw="Partida X")]
        assert not validator.validate(items).is_valid

    def test_duplicate_warning_mode(self) -> None:
        validator = Validator(config=ValidationConfig(error_on_duplicate=False))
        result = validator.validate([_item(), _item()])
        assert result.is_valid
        assert result.warnings[0].kind is IssueKind.DUPLICATE


# ======================================================================
# Required categories / metrics
# ======================================================================

class TestRequired:
    def test_all_present(self, strict_validator: Validator) -> None:
        items = [
            _item("net_income", 20),
            _balance("current_assets", 850),
        ]
        schema_errors = [
            i for i in strict_validator.validate(items).errors if i.kind is IssueKind.SCHEMA
        ]
        assert schema_errors == []

    def test_missing_required(self, strict_validator: Validator) -> None:
        result = strict_validator.validate([_item("net_income", 20)])
        missing = {i.field for i in result.errors}
        assert missing == {"balance", "current_assets"}


# ======================================================================
# Numeric sanity
# ======================================================================

class TestValues:
    def test_nan_is_error(self, validator: Validator) -> None:
        result = validator.validate([_item(amount=math.nan)])
        assert not result.is_valid
        assert result.errors[0].kind is IssueKind.RANGE

    def test_huge_value_warning(self, validator: Validator) -> None:
        result = validator.validate([_item(amount=5e13)])
        assert result.is_valid
        assert any(i.kind is IssueKind.RANGE for i in result.warnings)


# ======================================================================
# Completeness and carried issues
# ======================================================================

class TestCompleteness:
    def test_only_present_categories_reported(self, validator: Validator) -> None:
        completeness = validator.completeness([_item("revenue_total", 1)])
        assert set(completeness) == {"pyg"}
        assert 0.0 < completeness["pyg"] < 100.0

    def test_unmapped_scores_zero(self, validator: Validator) -> None:
        result = validator.validate([_item(None, raw="Otra cosa")])
        assert result.completeness == {"pyg": 0.0}
        assert result.quality_score == 0.0

    def test_empty_input(self, validator: Validator) -> None:
        result = validator.validate([])
        assert result.is_valid
        assert result.quality_score == 0.0

    def test_extra_issues_carried(self, validator: Validator) -> None:
        carried = warning(IssueKind.UNMAPPED, "No metric matches label 'x'", field="x")
        result = validator.validate([_item()], extra_issues=[carried])
        assert carried in result.issues
