"""
Validation Layer.

Checks the line items of a document run *before* they are persisted or fed
to the ratio engine.

Checks performed
----------------
1. **Balance equation**: per period, Assets = Liabilities + Equity within
   ``balance_tolerance``.
2. **Duplicate detection**: one item per (metric or concept, year, month)
   per source.
3. **Required categories / metrics**: configurable, empty by default.
4. **Numeric sanity**: values must be finite and within a plausible range.
5. **Completeness**: share of each present category's metrics that were
   mapped.  Reported, never gating.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from statement_mapper.config import ValidationConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.schema import (
    DocumentCategory,
    IssueKind,
    LineItem,
    MetricDefinition,
    Section,
    ValidationIssue,
    ValidationResult,
    error,
    metric_index,
    warning,
)

logger = get_logger("validator")

COMBINED_TOTAL = "total_equity_and_liabilities"


class ValidationReport:
    """Accumulates issues during a validation pass."""

    def __init__(self) -> None:
        self.issues: list[ValidationIssue] = []

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.is_error]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if not i.is_error]

    def add(self, issue: ValidationIssue) -> None:
        self.issues.append(issue)
        if issue.is_error:
            logger.error("Validation ERROR [%s]: %s", issue.kind.value, issue.message)
        else:
            logger.warning("Validation WARNING [%s]: %s", issue.kind.value, issue.message)

    def add_error(self, kind: IssueKind, msg: str, **kwargs) -> None:
        self.add(error(kind, msg, **kwargs))

    def add_warning(self, kind: IssueKind, msg: str, **kwargs) -> None:
        self.add(warning(kind, msg, **kwargs))


class Validator:
    """Validates the ``LineItem``s of one or more sources.

    Parameters
    ----------
    config:
        Validation thresholds and behaviour flags.
    """

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        definitions: Optional[Dict[str, MetricDefinition]] = None,
    ) -> None:
        self._config = config or ValidationConfig()
        self._definitions = definitions or metric_index()

    def validate(
        self,
        items: Sequence[LineItem],
        extra_issues: Iterable[ValidationIssue] = (),
    ) -> ValidationResult:
        """Run all checks and return a ``ValidationResult``.

        ``extra_issues`` (from earlier stages) are carried through as-is
        and count towards ``is_valid``.
        """
        report = ValidationReport()
        # Earlier stages already logged their own issues
        report.issues.extend(extra_issues)

        self._check_balance(items, report)
        self._check_duplicates(items, report)
        self._check_required(items, report)
        self._check_values(items, report)

        completeness = self.completeness(items)
        quality = (
            sum(completeness.values()) / len(completeness) if completeness else 0.0
        )

        logger.info(
            "Validation complete: items=%d errors=%d warnings=%d quality=%.1f",
            len(items),
            len(report.errors),
            len(report.warnings),
            quality,
        )
        return ValidationResult(
            is_valid=report.is_valid,
            issues=tuple(report.issues),
            quality_score=quality,
            completeness=completeness,
        )

    def completeness(self, items: Sequence[LineItem]) -> Dict[str, float]:
        """Return ``{category: percent of its metrics mapped}``.

        Only categories present among *items* are reported; an input with no
        mapped item at all scores zero everywhere.
        """
        present = {i.category for i in items}
        mapped = {i.metric_code for i in items if i.is_mapped}
        result: Dict[str, float] = {}
        for category in present:
            codes = [d.code for d in self._definitions.values() if d.category is category]
            if not codes:
                continue
            hit = sum(1 for c in codes if c in mapped)
            result[category.value] = 100.0 * hit / len(codes)
        return result

    # ------------------------------------------------------------------ #
    # Individual checks
    # ------------------------------------------------------------------ #

    def _check_balance(
        self, items: Sequence[LineItem], report: ValidationReport
    ) -> None:
        """Assets = Liabilities + Equity for every balance snapshot."""
        snapshots: Dict[Tuple[int, Optional[int]], List[LineItem]] = defaultdict(list)
        for item in items:
            if item.category is DocumentCategory.BALANCE:
                snapshots[(item.period_year, item.period_month)].append(item)

        for (year, month), group in sorted(
            snapshots.items(), key=lambda kv: (kv[0][0], kv[0][1] or 0)
        ):
            period = f"{year}" if month is None else f"{year}-{month:02d}"
            assets = self._side_total(group, Section.ASSET)
            combined = [i.amount for i in group if i.metric_code == COMBINED_TOTAL]
            if combined:
                right: Optional[float] = sum(combined)
            else:
                liabilities = self._side_total(group, Section.LIABILITY)
                equity = self._side_total(group, Section.EQUITY)
                if liabilities is None and equity is None:
                    right = None
                else:
                    right = (liabilities or 0.0) + (equity or 0.0)

            if assets is None or right is None:
                report.add_warning(
                    IssueKind.BALANCE,
                    f"Balance check skipped for {period}: "
                    f"{'assets' if assets is None else 'liabilities and equity'} missing",
                    field=period,
                )
                continue

            diff = assets - right
            if abs(diff) > self._config.balance_tolerance:
                report.add_error(
                    IssueKind.BALANCE,
                    f"Balance does not square for {period}: assets {assets:,.2f} "
                    f"vs liabilities + equity {right:,.2f} (difference {diff:,.2f})",
                    field=period,
                    value=diff,
                )
            else:
                logger.debug("Balance squares for %s (difference %.2f)", period, diff)

    def _side_total(
        self, group: Sequence[LineItem], section: Section
    ) -> Optional[float]:
        """Total of one balance side.

        A side total wins outright.  Otherwise the subtotals present are
        summed together with every detail line whose own subtotal is absent.
        Unmapped lines (known only by their section) are added unless every
        subtotal of the side is present, since they may belong to any of them.
        """
        totals: List[float] = []
        subtotals: Dict[str, float] = defaultdict(float)
        details: List[Tuple[Optional[str], float]] = []
        unmapped: List[float] = []
        for item in group:
            definition = self._definitions.get(item.metric_code) if item.metric_code else None
            if definition is not None and definition.section is not None:
                if definition.section is not section:
                    continue
                if definition.level == 0:
                    totals.append(item.amount)
                elif definition.level == 1:
                    subtotals[definition.code] += item.amount
                else:
                    details.append((definition.parent, item.amount))
            elif definition is None and item.section is section:
                unmapped.append(item.amount)

        if totals:
            return sum(totals)
        if not (subtotals or details or unmapped):
            return None

        side_subtotals = {
            d.code for d in self._definitions.values()
            if d.section is section and d.level == 1
        }
        total = sum(subtotals.values())
        total += sum(amount for parent, amount in details if parent not in subtotals)
        if not side_subtotals or not side_subtotals.issubset(subtotals):
            total += sum(unmapped)
        return total

    def _check_duplicates(
        self, items: Sequence[LineItem], report: ValidationReport
    ) -> None:
        """Detect two items sharing a key within the same source."""
        seen: Dict[Tuple[str, Tuple], LineItem] = {}
        for item in items:
            key = (item.source, item.key)
            if key not in seen:
                seen[key] = item
                continue
            first = seen[key]
            code, year, month = item.key
            period = f"{year}" if month is None else f"{year}-{month:02d}"
            msg = (
                f"Duplicate line item '{code}' for {period} in {item.source!r}: "
                f"rows {first.row} and {item.row}"
            )
            if self._config.error_on_duplicate:
                report.add_error(IssueKind.DUPLICATE, msg, field=code, row=item.row)
            else:
                report.add_warning(IssueKind.DUPLICATE, msg, field=code, row=item.row)

    def _check_required(
        self, items: Sequence[LineItem], report: ValidationReport
    ) -> None:
        """Ensure every required category and metric is present."""
        categories = {i.category.value for i in items}
        for req in self._config.required_categories:
            if req not in categories:
                report.add_error(IssueKind.SCHEMA, f"Required category missing: '{req}'", field=req)

        mapped = {i.metric_code for i in items if i.is_mapped}
        for req in self._config.required_metrics:
            if req not in mapped:
                report.add_error(IssueKind.SCHEMA, f"Required metric missing: '{req}'", field=req)

    def _check_values(
        self, items: Sequence[LineItem], report: ValidationReport
    ) -> None:
        """Sanity-check individual amounts."""
        for item in items:
            name = item.metric_code or item.raw_concept
            if math.isnan(item.amount) or math.isinf(item.amount):
                report.add_error(
                    IssueKind.RANGE,
                    f"'{name}' has non-finite value: {item.amount}",
                    field=name,
                    row=item.row,
                )
                continue

            if abs(item.amount) > self._config.max_absolute_value:
                report.add_warning(
                    IssueKind.RANGE,
                    f"'{name}' value {item.amount} exceeds "
                    f"max_absolute_value ({self._config.max_absolute_value}). "
                    f"Possible unit error?",
                    field=name,
                    row=item.row,
                    value=item.amount,
                )
