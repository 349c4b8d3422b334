"""
Record Builder.

Third stage of the pipeline.  Walks the data rows of a ``RawTable`` with
the completed ``ColumnSchema`` and emits one ``LineItem`` per
amount-bearing cell:

* long layout       →  the ``amount`` column
* wide layout       →  every year-headed column
* period-per-row    →  every ``metric`` column

A row (or cell) that cannot be parsed is skipped with one warning; the rest
of the document carries on.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from statement_mapper.config import BuilderConfig
from statement_mapper.field_normalizer import NormalizationResult
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import (
    ColumnRole,
    DocumentCategory,
    IssueKind,
    LineItem,
    MetricDefinition,
    RawTable,
    ValidationIssue,
    error,
    metric_index,
    warning,
)
from statement_mapper.sniffer import parse_date_cell

logger = get_logger("record_builder")

_YEAR_RE = re.compile(r"^(?:fy\s*)?(\d{4})$", re.IGNORECASE)
_MONTH_RE = re.compile(r"^(\d{1,2})$")
_MONTH_YEAR_RE = re.compile(r"^(\d{1,2})[/.\-](\d{4})$")  # MM/YYYY
_NAMED_MONTH_YEAR_RE = re.compile(r"^([^\W\d_]+)\.?[\s\-/]*'?(\d{4}|\d{2})$")  # ene-24

MONTH_NAMES: Dict[str, int] = {
    "enero": 1, "febrero": 2, "marzo": 3, "abril": 4, "mayo": 5, "junio": 6,
    "julio": 7, "agosto": 8, "septiembre": 9, "setiembre": 9, "octubre": 10,
    "noviembre": 11, "diciembre": 12,
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11,
    "december": 12,
    "ene": 1, "jan": 1, "feb": 2, "mar": 3, "abr": 4, "apr": 4, "jun": 6,
    "jul": 7, "ago": 8, "aug": 8, "sep": 9, "sept": 9, "oct": 10, "nov": 11,
    "dic": 12, "dec": 12,
}

_label_normalizer = LabelNormalizer()


def parse_period(text: str) -> Tuple[Optional[int], Optional[int]]:
    """Parse a period cell into ``(year, month)``; either may be ``None``.

    Accepts ``YYYY-MM``, ``YYYY-MM-DD``, ``DD-MM-YYYY``, ``MM/DD/YYYY``,
    ``MM/YYYY``, a month name with a year (``ene-24``, ``Marzo 2024``),
    a bare month number or name, or a bare year.  Two-digit years are
    read as 20YY.  Anything else gives ``(None, None)``.
    """
    text = text.strip()
    if not text:
        return None, None
    parsed = parse_date_cell(text)
    if parsed:
        return parsed
    m = _YEAR_RE.match(text)
    if m:
        return int(m.group(1)), None
    m = _MONTH_YEAR_RE.match(text)
    if m:
        month = int(m.group(1))
        return (int(m.group(2)), month) if 1 <= month <= 12 else (None, None)
    m = _NAMED_MONTH_YEAR_RE.match(text)
    if m:
        month = MONTH_NAMES.get(_label_normalizer.normalize_label(m.group(1)))
        if month is None:
            return None, None
        year = int(m.group(2))
        return (year + 2000 if year < 100 else year), month
    m = _MONTH_RE.match(text)
    if m and 1 <= int(m.group(1)) <= 12:
        return None, int(m.group(1))
    month = MONTH_NAMES.get(_label_normalizer.normalize_label(text))
    return None, month


def parse_year(text: str) -> Optional[int]:
    year, _ = parse_period(text)
    return year


def _cell(row: Tuple[str, ...], col: Optional[int]) -> str:
    if col is None or col >= len(row):
        return ""
    return row[col]


class RecordBuilder:
    """Build typed ``LineItem``s from rows and a completed column schema.

    Parameters
    ----------
    config:
        Default currency and the hard row / column limits.
    """

    def __init__(
        self,
        config: Optional[BuilderConfig] = None,
        normalizer: Optional[LabelNormalizer] = None,
        definitions: Optional[Dict[str, MetricDefinition]] = None,
    ) -> None:
        self._config = config or BuilderConfig()
        self._normalizer = normalizer or LabelNormalizer()
        self._definitions = definitions or metric_index()

    def build(
        self,
        table: RawTable,
        normalization: NormalizationResult,
        source: str,
        category: DocumentCategory,
        decimal_hint: Optional[str] = None,
    ) -> Tuple[Tuple[LineItem, ...], Tuple[ValidationIssue, ...]]:
        """Return the items of one document and the row-level issues."""
        schema = normalization.schema
        issues: List[ValidationIssue] = []
        items: List[LineItem] = []

        max_cols = self._config.max_columns
        if table.width > max_cols:
            dropped = table.width - max_cols
            issues.append(
                error(
                    IssueKind.RANGE,
                    f"Dropped {dropped} column(s) beyond the limit of {max_cols}",
                )
            )

        data_rows = table.data_rows
        if len(data_rows) > self._config.max_rows:
            dropped = len(data_rows) - self._config.max_rows
            issues.append(
                error(
                    IssueKind.RANGE,
                    f"Dropped {dropped} row(s) beyond the limit of {self._config.max_rows}",
                )
            )
            data_rows = data_rows[: self._config.max_rows]

        concept_col = schema.first(ColumnRole.CONCEPT)
        section_col = schema.first(ColumnRole.SECTION)
        year_col = schema.first(ColumnRole.YEAR)
        period_col = schema.first(ColumnRole.PERIOD)
        amount_col = schema.first(ColumnRole.AMOUNT)
        currency_col = schema.first(ColumnRole.CURRENCY)
        notes_col = schema.first(ColumnRole.NOTES)

        # (column, fixed year or None, metric code, raw concept or None)
        targets: List[Tuple[int, Optional[int], Optional[str], Optional[str]]] = []
        if amount_col is not None:
            targets.append((amount_col, None, None, None))
        for col, year in sorted(schema.column_years.items()):
            targets.append((col, year, None, None))
        for col in schema.columns_with(ColumnRole.METRIC):
            targets.append((col, None, schema.column_metrics.get(col), schema.header[col]))
        targets = [t for t in targets if t[0] < max_cols]

        if not targets:
            issues.append(
                error(IssueKind.SCHEMA, "No amount-bearing column found in the header")
            )
            return (), tuple(issues)

        first_row = table.header_row_index + 1
        for offset, row in enumerate(data_rows):
            row_no = first_row + offset
            if not any(_cell(row, col) for col, _, _, _ in targets):
                continue

            period_text = _cell(row, period_col)
            if period_text and parse_period(period_text) == (None, None):
                issues.append(
                    warning(
                        IssueKind.SCHEMA,
                        f"Row {row_no}: unrecognised period {period_text!r}; row skipped",
                        row=row_no,
                        field=schema.header[period_col],
                    )
                )
                continue

            year, month = self._row_period(row, year_col, period_col)
            concept = _cell(row, concept_col)
            currency = (_cell(row, currency_col) or self._config.default_currency).upper()
            section_cell = _cell(row, section_col)
            row_section = normalization.sections.get(section_cell) if section_cell else None

            for col, fixed_year, column_code, header_concept in targets:
                raw_amount = _cell(row, col)
                if not raw_amount:
                    continue

                item_year = fixed_year if fixed_year is not None else year
                if item_year is None:
                    issues.append(
                        warning(
                            IssueKind.SCHEMA,
                            f"Row {row_no}: cannot determine the period year; row skipped",
                            row=row_no,
                        )
                    )
                    break

                if header_concept is not None:
                    raw_concept, code = header_concept, column_code
                else:
                    if not concept:
                        issues.append(
                            warning(
                                IssueKind.SCHEMA,
                                f"Row {row_no}: amount without a concept; row skipped",
                                row=row_no,
                            )
                        )
                        break
                    raw_concept = concept
                    code = normalization.concept_codes.get(concept)

                amount, value_warnings = self._normalizer.normalize_value(
                    raw_amount, decimal_hint
                )
                if amount is None:
                    issues.append(
                        warning(
                            IssueKind.SCHEMA,
                            f"Row {row_no}: {'; '.join(value_warnings)}",
                            row=row_no,
                            field=schema.header[col] if col < len(schema.header) else None,
                        )
                    )
                    continue

                definition = self._definitions.get(code) if code else None
                items.append(
                    LineItem(
                        metric_code=code,
                        raw_concept=raw_concept,
                        category=definition.category if definition else category,
                        period_year=item_year,
                        period_month=month if fixed_year is None else None,
                        amount=amount,
                        currency=currency,
                        source=source,
                        section=row_section or (definition.section if definition else None),
                        row=row_no,
                        notes=_cell(row, notes_col),
                    )
                )

        logger.info(
            "Built %d line item(s) from %d row(s) of %r (%d issue(s))",
            len(items),
            len(data_rows),
            source,
            len(issues),
        )
        return tuple(items), tuple(issues)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _row_period(
        row: Tuple[str, ...], year_col: Optional[int], period_col: Optional[int]
    ) -> Tuple[Optional[int], Optional[int]]:
        year: Optional[int] = None
        month: Optional[int] = None
        if year_col is not None:
            year = parse_year(_cell(row, year_col))
        if period_col is not None:
            period_year, month = parse_period(_cell(row, period_col))
            if year is None:
                year = period_year
        return year, month
