"""
Field Normalizer.

Second stage of the pipeline.  Completes the ``ColumnSchema`` started by the
sniffer and resolves every distinct label of the document:

    header cells    →  ColumnRole (or metric code for period-per-row files)
    concept cells   →  metric code via alias dictionary, then fuzzy matching
    section cells   →  Section

Labels that nothing recognises stay in the result with ``None`` and an
``unmapped`` warning; they are never dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Dict, List, Mapping, Optional, Tuple

from statement_mapper.config import MatchingConfig
from statement_mapper.fuzzy_matcher import FuzzyMatcher
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import (
    ColumnRole,
    ColumnSchema,
    DocumentCategory,
    IssueKind,
    MappingEntry,
    MappingReport,
    RawTable,
    Section,
    ValidationIssue,
    warning,
)
from statement_mapper.sniffer import SniffResult
from statement_mapper.synonym_mapper import SynonymMapper

logger = get_logger("field_normalizer")


# ---------------------------------------------------------------------------
# Document category detection
# ---------------------------------------------------------------------------

# category → (file-name patterns, characteristic content concepts)
CATEGORY_PATTERNS: Dict[DocumentCategory, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    DocumentCategory.PYG: (
        (r"cuenta.*p.*g", r"perdidas.*ganancias", r"\bpyg\b", r"\bp ?& ?g\b",
         r"resultados?", r"income.*statement", r"profit.*loss"),
        (r"cifra de negocios|ventas|ingresos|revenue|sales",
         r"gastos de personal|personnel|staff",
         r"aprovisionamientos|coste de ventas|amortizacion|cost of sales"),
    ),
    DocumentCategory.BALANCE: (
        (r"balance", r"situacion.*patrimonial", r"activo.*pasivo"),
        (r"\bactivo|\bassets?\b", r"\bpasivo|liabilities", r"patrimonio|equity"),
    ),
    DocumentCategory.CASHFLOW: (
        (r"flujos?", r"cash ?flow", r"tesoreria"),
        (r"explotacion|operativ|operating", r"efectivo|cobros?|pagos?|cash"),
    ),
    DocumentCategory.DEBT: (
        (r"pool.*deuda", r"deuda", r"prestamos", r"debt", r"financiacion"),
        (r"prestamo|poliza|leasing|loan", r"entidad|banco|bank",
         r"tipo de interes|vencimiento|cuota|maturity"),
    ),
    DocumentCategory.OPERATIONAL: (
        (r"datos.*operativos", r"operativ", r"unidades", r"produccion", r"operational"),
        (r"unidades|produccion|units", r"empleados|plantilla|headcount"),
    ),
}

NAME_WEIGHT = 0.4
CONTENT_WEIGHT = 0.6
MIN_DETECTION_SCORE = 0.3

_label_normalizer = LabelNormalizer()


def detect_category(
    filename: Optional[str], table: RawTable
) -> Tuple[DocumentCategory, float]:
    """Guess the statement type of a document.

    The file name contributes ``NAME_WEIGHT`` when any of its patterns
    matches; content contributes ``CONTENT_WEIGHT`` times the fraction of
    characteristic concepts found.  A section column means ``balance``.
    Scores below ``MIN_DETECTION_SCORE`` fall back to ``pyg``.

    Returns
    -------
    tuple[DocumentCategory, float]
        Category and its score in ``[0, 1]``.
    """
    normalise = _label_normalizer.normalize_label
    header = [normalise(h) for h in table.header]
    if any(h in ("seccion", "section", "masa patrimonial") for h in header):
        logger.info("Section column present; category=balance")
        return DocumentCategory.BALANCE, 1.0

    name = ""
    if filename:
        name = normalise(PurePath(filename).stem).replace("-", " ")
    content = " ".join(normalise(cell) for row in table.rows[:200] for cell in row)

    best, best_score = DocumentCategory.PYG, 0.0
    for category, (name_patterns, concepts) in CATEGORY_PATTERNS.items():
        score = 0.0
        if name and any(re.search(p, name) for p in name_patterns):
            score += NAME_WEIGHT
        found = sum(1 for c in concepts if re.search(c, content))
        score += CONTENT_WEIGHT * found / len(concepts)
        if score > best_score:
            best, best_score = category, score

    if best_score < MIN_DETECTION_SCORE:
        logger.info(
            "Category undetermined (best=%s, %.2f); falling back to pyg",
            best.value,
            best_score,
        )
        return DocumentCategory.PYG, best_score

    logger.info("Detected category %s (score=%.2f)", best.value, best_score)
    return best, best_score


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NormalizationResult:
    """Everything the record builder needs to turn rows into items."""

    schema: ColumnSchema
    report: MappingReport
    concept_codes: Mapping[str, Optional[str]] = field(default_factory=dict)
    sections: Mapping[str, Optional[Section]] = field(default_factory=dict)
    issues: Tuple[ValidationIssue, ...] = ()


class FieldNormalizer:
    """Resolve header roles, concept labels and section values.

    Parameters
    ----------
    synonyms:
        Alias dictionary; the first and authoritative matching layer.
    fuzzy:
        Fallback matcher, consulted only when no alias fires.
    config:
        ``enable_fuzzy`` switches the fallback off entirely.
    """

    def __init__(
        self,
        synonyms: SynonymMapper,
        fuzzy: Optional[FuzzyMatcher] = None,
        config: Optional[MatchingConfig] = None,
        normalizer: Optional[LabelNormalizer] = None,
    ) -> None:
        self._synonyms = synonyms
        self._fuzzy = fuzzy
        self._config = config or MatchingConfig()
        self._normalizer = normalizer or LabelNormalizer()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def normalize(
        self, sniff: SniffResult, category: DocumentCategory
    ) -> NormalizationResult:
        table = sniff.table
        issues: List[ValidationIssue] = []
        matched: List[MappingEntry] = []
        unmapped: List[str] = []

        roles: Dict[int, ColumnRole] = dict(sniff.schema.roles)
        column_years = dict(sniff.schema.column_years)
        pending: List[int] = []
        for col, header_cell in enumerate(table.header):
            if col in roles or col in column_years:
                continue
            role = self._synonyms.lookup_role(self._normalizer.normalize_label(header_cell))
            if role is None:
                pending.append(col)
            else:
                roles[col] = role

        column_metrics: Dict[int, Optional[str]] = {}
        has_concept = ColumnRole.CONCEPT in roles.values()
        if not has_concept and column_years and pending:
            # Concept-per-row, year-per-column layout with an untitled label column
            roles[pending.pop(0)] = ColumnRole.CONCEPT
            has_concept = True

        for col in pending:
            if has_concept or not table.header[col]:
                roles[col] = ColumnRole.UNKNOWN
                continue
            roles[col] = ColumnRole.METRIC
            entry = self._map_label(table.header[col], issues, column=col)
            column_metrics[col] = entry.metric_code if entry else None
            if entry:
                matched.append(entry)
            else:
                unmapped.append(table.header[col])

        schema = ColumnSchema(
            header=table.header,
            roles=roles,
            column_metrics=column_metrics,
            column_years=column_years,
        )

        concept_codes: Dict[str, Optional[str]] = {}
        concept_col = schema.first(ColumnRole.CONCEPT)
        if concept_col is not None:
            for label in self._distinct(table, concept_col):
                entry = self._map_label(label, issues)
                concept_codes[label] = entry.metric_code if entry else None
                if entry:
                    matched.append(entry)
                else:
                    unmapped.append(label)

        sections: Dict[str, Optional[Section]] = {}
        section_col = schema.first(ColumnRole.SECTION)
        if section_col is not None:
            for value in self._distinct(table, section_col):
                section = self._synonyms.lookup_section(
                    self._normalizer.normalize_label(value)
                )
                sections[value] = section
                if section is None:
                    issues.append(
                        warning(
                            IssueKind.SCHEMA,
                            f"Unrecognised section value: {value!r}",
                            field=value,
                        )
                    )

        for label in unmapped:
            logger.warning("UNMAPPED: %r", label)
            issues.append(
                warning(
                    IssueKind.UNMAPPED,
                    f"No metric matches label {label!r}; kept unmapped",
                    field=label,
                )
            )

        duplicates: Dict[str, Tuple[str, ...]] = {}
        if category is DocumentCategory.BALANCE:
            by_code: Dict[str, List[str]] = {}
            for entry in matched:
                by_code.setdefault(entry.metric_code, []).append(entry.raw_label)
            duplicates = {
                code: tuple(labels) for code, labels in by_code.items() if len(labels) > 1
            }
            for code, labels in duplicates.items():
                logger.warning("Metric %r reached from several labels: %s", code, labels)

        report = MappingReport(
            matched=tuple(matched),
            unmapped=tuple(unmapped),
            potential_duplicates=duplicates,
        )
        logger.info(
            "Normalized %s document: roles=%s matched=%d unmapped=%d",
            category.value,
            {i: r.value for i, r in sorted(roles.items())},
            len(matched),
            len(unmapped),
        )
        return NormalizationResult(
            schema=schema,
            report=report,
            concept_codes=concept_codes,
            sections=sections,
            issues=tuple(issues),
        )

    def map_label(self, raw_label: str) -> Optional[MappingEntry]:
        """Map a single label; exposed for callers outside a document run."""
        return self._map_label(raw_label, [])

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _map_label(
        self,
        raw_label: str,
        issues: List[ValidationIssue],
        column: Optional[int] = None,
    ) -> Optional[MappingEntry]:
        norm = self._normalizer.normalize_label(raw_label)

        hit = self._synonyms.lookup(norm)
        if hit is not None:
            return MappingEntry(
                raw_label=raw_label,
                metric_code=hit.metric_code,
                method="alias",
                pattern=hit.pattern,
                confidence=100.0,
                column=column,
            )

        if not self._config.enable_fuzzy or self._fuzzy is None:
            return None

        candidate = self._fuzzy.match(norm)
        if candidate is None:
            return None
        if candidate.is_ambiguous:
            issues.append(
                warning(
                    IssueKind.UNMAPPED,
                    f"Ambiguous fuzzy match for {raw_label!r} → "
                    f"{candidate.metric_code!r} (score={candidate.score:.1f})",
                    field=raw_label,
                )
            )
        return MappingEntry(
            raw_label=raw_label,
            metric_code=candidate.metric_code,
            method="fuzzy",
            pattern=candidate.target,
            confidence=candidate.score,
            column=column,
            ambiguous=candidate.is_ambiguous,
        )

    @staticmethod
    def _distinct(table: RawTable, col: int) -> List[str]:
        seen: Dict[str, None] = {}
        for row in table.data_rows:
            if col < len(row) and row[col]:
                seen.setdefault(row[col], None)
        return list(seen)
