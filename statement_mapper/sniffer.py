"""
Schema Sniffer.

First stage of the pipeline.  Turns raw delimited text (or pre-split rows
from a workbook or an extraction service) into a ``RawTable`` and a partial
``ColumnSchema`` holding the year / period columns.

Detection steps
---------------
1. Delimiter: count ``,`` ``;`` and tab in the first non-empty line; the
   strict winner is used, ties and zero counts fall back to ``,``.  A first
   line without any delimiter (a title row) defers to the next lines of the
   scan window.
2. Header row: the first of the leading non-blank lines with at least two
   non-empty cells.
3. Year / period columns: by header keyword, or by content when at least
   half of the sampled cells are years or dates.  A header cell that is
   itself a year marks a year-per-column layout.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from statement_mapper.config import SnifferConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer, decimal_hint_for_locale
from statement_mapper.schema import (
    ColumnRole,
    ColumnSchema,
    IssueKind,
    RawTable,
    SchemaError,
    error,
)

logger = get_logger("sniffer")

CANDIDATE_DELIMITERS: Tuple[str, ...] = (",", ";", "\t")
DEFAULT_DELIMITER = ","

_YEAR_HEADER_RE = re.compile(r"\b(ano|anio|year|ejercicio)\b")
_PERIOD_HEADER_RE = re.compile(r"\b(periodo|period|mes|month|fecha|date)\b")
# Columns whose header names another role are never classified by content
_OTHER_ROLE_HEADER_RE = re.compile(
    r"\b(importe|amount|valor|value|saldo|concepto|concept|partida)\b"
)

_YEAR_CELL_RE = re.compile(r"^(\d{4})$")
_YEAR_HEADER_CELL_RE = re.compile(r"^(?:fy\s*)?(\d{4})$", re.IGNORECASE)

# (regex, year group, month group)
_DATE_PATTERNS: Tuple[Tuple[re.Pattern, int, int], ...] = (
    (re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$"), 1, 2),  # YYYY-MM-DD
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), 3, 1),  # MM/DD/YYYY
    (re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$"), 3, 2),  # DD-MM-YYYY
    (re.compile(r"^(\d{4})-(\d{1,2})$"), 1, 2),  # YYYY-MM
)


# ---------------------------------------------------------------------------
# Cell-level helpers (shared with the record builder)
# ---------------------------------------------------------------------------

def detect_delimiter(line: str) -> str:
    """Return the delimiter with the strictly highest count in *line*."""
    counts = {d: line.count(d) for d in CANDIDATE_DELIMITERS}
    best = max(counts.values())
    winners = [d for d, c in counts.items() if c == best]
    if best == 0 or len(winners) > 1:
        return DEFAULT_DELIMITER
    return winners[0]


def parse_date_cell(text: str) -> Optional[Tuple[int, int]]:
    """Return ``(year, month)`` for a date-like cell, else ``None``."""
    text = text.strip()
    for pattern, year_group, month_group in _DATE_PATTERNS:
        m = pattern.match(text)
        if m:
            month = int(m.group(month_group))
            if 1 <= month <= 12:
                return int(m.group(year_group)), month
    return None


def parse_year_cell(text: str, min_year: int, max_year: int) -> Optional[int]:
    m = _YEAR_CELL_RE.match(text.strip())
    if m:
        year = int(m.group(1))
        if min_year <= year <= max_year:
            return year
    return None


def cell_text(value: Any) -> str:
    """Render a spreadsheet / JSON cell as the stripped string a CSV holds."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SniffResult:
    """Output of the sniffer: the table plus the year/period findings."""

    table: RawTable
    schema: ColumnSchema
    detected_years: Tuple[int, ...]
    confidence: float
    decimal_hint: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "delimiter": self.table.delimiter,
            "header_row_index": self.table.header_row_index,
            "header": list(self.table.header),
            "detected_years": list(self.detected_years),
            "confidence": round(self.confidence, 2),
            **self.schema.to_dict(),
        }


# ---------------------------------------------------------------------------
# Sniffer
# ---------------------------------------------------------------------------

class SchemaSniffer:
    """Detect delimiter, header row and year/period columns.

    Parameters
    ----------
    config:
        Scan window, sample size and plausible year range.
    """

    def __init__(
        self,
        config: Optional[SnifferConfig] = None,
        normalizer: Optional[LabelNormalizer] = None,
    ) -> None:
        self._config = config or SnifferConfig()
        self._normalizer = normalizer or LabelNormalizer()

    @property
    def year_range(self) -> Tuple[int, int]:
        return (
            self._config.min_year,
            date.today().year + self._config.year_horizon,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def sniff(self, text: str, locale_hint: Optional[str] = None) -> SniffResult:
        """Sniff delimited text.

        Raises
        ------
        SchemaError
            If the text has fewer than two non-empty lines.
        """
        text = text.lstrip("\ufeff")
        lines = [ln for ln in text.splitlines() if ln.strip()]
        if len(lines) < 2:
            raise SchemaError((
                error(
                    IssueKind.SCHEMA,
                    f"Document has {len(lines)} non-empty line(s); "
                    f"a header and at least one data row are required",
                ),
            ))

        delimiter = self._choose_delimiter(lines)
        reader = csv.reader(io.StringIO("\n".join(lines)), delimiter=delimiter)
        rows = [tuple(cell.strip() for cell in row) for row in reader]

        return self._analyse(
            rows, delimiter, 0.0, decimal_hint_for_locale(locale_hint)
        )

    def sniff_rows(
        self,
        rows: Iterable[Sequence[Any]],
        confidence_penalty: float = 0.0,
        locale_hint: Optional[str] = None,
    ) -> SniffResult:
        """Sniff pre-split rows (workbook sheet, extraction service output).

        ``confidence_penalty`` is subtracted from the year confidence.
        """
        table_rows = [tuple(cell_text(c) for c in row) for row in rows]
        non_empty = [r for r in table_rows if any(r)]
        if len(non_empty) < 2:
            raise SchemaError((
                error(
                    IssueKind.SCHEMA,
                    f"Input has {len(non_empty)} non-empty row(s); "
                    f"a header and at least one data row are required",
                ),
            ))
        return self._analyse(
            table_rows, None, confidence_penalty, decimal_hint_for_locale(locale_hint)
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _choose_delimiter(self, lines: List[str]) -> str:
        window = lines[: max(1, self._config.header_scan_lines)]
        for line in window:
            if any(line.count(d) for d in CANDIDATE_DELIMITERS):
                return detect_delimiter(line)
        return DEFAULT_DELIMITER

    def _analyse(
        self,
        rows: List[Tuple[str, ...]],
        delimiter: Optional[str],
        confidence_penalty: float,
        decimal_hint: Optional[str],
    ) -> SniffResult:
        rows = [r for r in rows if any(r)]
        header_index = self._find_header(rows)
        table = RawTable(
            rows=tuple(rows), delimiter=delimiter, header_row_index=header_index
        )

        roles: Dict[int, ColumnRole] = {}
        column_years: Dict[int, int] = {}
        years: set[int] = set()
        min_year, max_year = self.year_range

        for col, header_cell in enumerate(table.header):
            m = _YEAR_HEADER_CELL_RE.match(header_cell.strip())
            if m and min_year <= int(m.group(1)) <= max_year:
                column_years[col] = int(m.group(1))
                years.add(column_years[col])
                continue

            role, col_years = self._classify_column(table, col, header_cell)
            if role is not None:
                roles[col] = role
                years.update(col_years)

        detected = tuple(sorted(years))
        confidence = self._confidence(detected, bool(roles) or bool(column_years))
        confidence = max(0.0, confidence - confidence_penalty) if detected else 0.0

        logger.info(
            "Sniffed: delimiter=%r header_row=%d columns=%d years=%s confidence=%.2f",
            delimiter,
            header_index,
            len(table.header),
            list(detected),
            confidence,
        )

        schema = ColumnSchema(
            header=table.header, roles=roles, column_years=column_years
        )
        return SniffResult(
            table=table,
            schema=schema,
            detected_years=detected,
            confidence=confidence,
            decimal_hint=decimal_hint,
        )

    def _find_header(self, rows: List[Tuple[str, ...]]) -> int:
        window = rows[: max(1, self._config.header_scan_lines)]
        for i, row in enumerate(window):
            if sum(1 for cell in row if cell) >= 2:
                return i
        return 0

    def _classify_column(
        self, table: RawTable, col: int, header_cell: str
    ) -> Tuple[Optional[ColumnRole], List[int]]:
        """Return the year/period role of a column and the years it holds."""
        header = self._normalizer.normalize_label(header_cell)
        min_year, max_year = self.year_range

        cells = [
            row[col] for row in table.data_rows if col < len(row) and row[col]
        ][: self._config.sample_rows]
        bare_years = [y for y in (parse_year_cell(c, min_year, max_year) for c in cells) if y]
        dates = [d for d in (parse_date_cell(c) for c in cells) if d]
        date_years = [y for y, _ in dates if min_year <= y <= max_year]

        if _YEAR_HEADER_RE.search(header):
            return ColumnRole.YEAR, bare_years + date_years
        if _PERIOD_HEADER_RE.search(header):
            return ColumnRole.PERIOD, date_years + bare_years
        if not cells or _OTHER_ROLE_HEADER_RE.search(header):
            return None, []

        if len(bare_years) + len(dates) >= len(cells) / 2:
            role = ColumnRole.YEAR if len(bare_years) >= len(dates) else ColumnRole.PERIOD
            logger.debug(
                "Column %d (%r) classified as %s by content", col, header_cell, role.value
            )
            return role, bare_years + date_years
        return None, []

    @staticmethod
    def _confidence(years: Tuple[int, ...], has_year_column: bool) -> float:
        if not years:
            return 0.0
        score = 0.5
        if len(years) >= 2 and years[-1] - years[0] == len(years) - 1:
            score += 0.3
        if has_year_column:
            score += 0.2
        return min(score, 1.0)
