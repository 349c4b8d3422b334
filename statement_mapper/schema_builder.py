"""
Schema Builder.

Assembles the final ``IngestionResult`` of a document run and serialises
results for downstream consumers (JSON, CSV, pandas).

Also reads the extraction service's JSON payloads into plain rows so that
pre-extracted tables go through the same sniffer as CSV uploads.
"""

from __future__ import annotations

import csv
import json
from io import StringIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from statement_mapper.logging_setup import get_logger
from statement_mapper.schema import (
    DocumentCategory,
    IngestionResult,
    LineItem,
    MappingReport,
    RatioResult,
    ValidationIssue,
)

logger = get_logger("schema_builder")

LINE_ITEM_COLUMNS = [
    "source", "category", "metric_code", "raw_concept", "section",
    "period_year", "period_month", "amount", "currency", "notes",
]


class SchemaBuilder:
    """Builds and serialises pipeline output."""

    # ------------------------------------------------------------------ #
    # Input readers
    # ------------------------------------------------------------------ #

    @staticmethod
    def read_json_rows(source: Union[str, Path, bytes]) -> List[List[Any]]:
        """Read extracted rows from a JSON file, JSON text or bytes.

        Supports three shapes:
        * Array of arrays ``[["Concepto", "Importe"], ["Ventas", 100]]``
        * Array of objects ``[{"Concepto": "Ventas", "Importe": 100}, ...]``;
          the header is the union of keys in first-seen order
        * Either of the above wrapped as ``{"rows": [...]}``
        """
        if isinstance(source, bytes):
            data = json.loads(source.decode("utf-8-sig"))
        elif isinstance(source, Path) or (
            isinstance(source, str) and not source.lstrip().startswith(("{", "["))
        ):
            with open(Path(source), encoding="utf-8") as fh:
                data = json.load(fh)
        else:
            data = json.loads(source)

        if isinstance(data, dict) and "rows" in data:
            data = data["rows"]
        if not isinstance(data, list):
            raise ValueError(f"Unsupported JSON root type: {type(data).__name__}")

        if all(isinstance(r, dict) for r in data):
            header: Dict[str, None] = {}
            for record in data:
                for key in record:
                    header.setdefault(str(key), None)
            columns = list(header)
            rows: List[List[Any]] = [columns]
            rows.extend([record.get(c) for c in columns] for record in data)
            return rows

        rows = []
        for item in data:
            if isinstance(item, (list, tuple)):
                rows.append(list(item))
            else:
                logger.warning("Skipping unrecognised JSON array element: %r", item)
        return rows

    # ------------------------------------------------------------------ #
    # Output assembly
    # ------------------------------------------------------------------ #

    @staticmethod
    def build_result(
        source: str,
        category: Optional[DocumentCategory],
        items: Sequence[LineItem] = (),
        issues: Iterable[ValidationIssue] = (),
        quality_score: float = 0.0,
        confidence: float = 0.0,
        mapping_report: Optional[MappingReport] = None,
        completeness: Optional[Mapping[str, float]] = None,
        persisted: bool = False,
        status: Optional[str] = None,
    ) -> IngestionResult:
        """Assemble the final ``IngestionResult``.

        ``status`` defaults to ``"ok"`` or ``"invalid"`` from the issues.
        """
        issues = tuple(issues)
        if status is None:
            status = "invalid" if any(i.is_error for i in issues) else "ok"
        return IngestionResult(
            source=source,
            category=category,
            items=tuple(items),
            issues=issues,
            quality_score=quality_score,
            confidence=confidence,
            mapping_report=mapping_report or MappingReport(),
            completeness=dict(completeness or {}),
            persisted=persisted,
            status=status,
        )

    @staticmethod
    def to_json(result: IngestionResult, indent: int = 2) -> str:
        """Serialise an ``IngestionResult`` to a JSON string."""
        return json.dumps(result.to_dict(), indent=indent, ensure_ascii=False)

    @staticmethod
    def line_items_to_csv(items: Iterable[LineItem]) -> str:
        """Serialise line items to CSV text."""
        buf = StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(LINE_ITEM_COLUMNS)
        for item in items:
            row = item.to_dict()
            writer.writerow(["" if row[c] is None else row[c] for c in LINE_ITEM_COLUMNS])
        return buf.getvalue()

    @staticmethod
    def ratios_to_dict(
        ratios: Union[Sequence[RatioResult], Mapping[int, Sequence[RatioResult]]],
    ) -> Dict[str, Any]:
        """Group ratios as ``{category: {formula_id: ratio}}``.

        A ``{year: ratios}`` mapping (``RatioEngine.compute_all``) is
        serialised as ``{"2024": {category: {...}}, ...}``.
        """
        if isinstance(ratios, Mapping):
            return {
                str(year): SchemaBuilder.ratios_to_dict(results)
                for year, results in sorted(ratios.items())
            }
        grouped: Dict[str, Dict[str, Any]] = {}
        for r in ratios:
            grouped.setdefault(r.category, {})[r.formula_id] = r.to_dict()
        return grouped

    @staticmethod
    def to_dataframe(items: Iterable[LineItem]) -> Any:
        """Return line items as a pandas DataFrame, one row per item."""
        try:
            import pandas as pd
        except ImportError as exc:
            raise ImportError("pandas is required to use to_dataframe") from exc

        records = [item.to_dict() for item in items]
        return pd.DataFrame.from_records(records, columns=LINE_ITEM_COLUMNS + ["row"])
