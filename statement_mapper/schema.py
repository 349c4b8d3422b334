"""
Canonical metric catalogue and data models.

Defines the target catalogue (the "truth" that raw labels are mapped into)
and the typed, immutable records carried between pipeline stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class DocumentCategory(str, Enum):
    """Kind of statement a document (or a metric) belongs to."""

    BALANCE = "balance"
    PYG = "pyg"
    CASHFLOW = "cashflow"
    OPERATIONAL = "operational"
    DEBT = "debt"


class ValueKind(str, Enum):
    STOCK = "stock"  # snapshot in time
    FLOW = "flow"  # accumulated over the period


class Section(str, Enum):
    """Balance-sheet side or cash-flow activity of a line."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    OPERATING = "operating"
    INVESTING = "investing"
    FINANCING = "financing"


class ColumnRole(str, Enum):
    CONCEPT = "concept"
    SECTION = "section"
    PERIOD = "period"
    YEAR = "year"
    AMOUNT = "amount"
    CURRENCY = "currency"
    NOTES = "notes"
    METRIC = "metric"  # header is itself a metric label
    UNKNOWN = "unknown"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueKind(str, Enum):
    SCHEMA = "schema"
    BALANCE = "balance"
    DUPLICATE = "duplicate"
    RANGE = "range"
    UNMAPPED = "unmapped"
    STORAGE = "storage"


# ---------------------------------------------------------------------------
# Metric catalogue
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricDefinition:
    """One entry of the canonical metric catalogue.

    ``section``, ``level`` and ``parent`` only matter for balance metrics:
    ``level`` 0 is a side total, 1 a subtotal (current / non-current), 2 a
    detail line.  ``parent`` names the subtotal a detail line rolls up into.
    """

    code: str
    name: str
    category: DocumentCategory
    value_kind: ValueKind
    default_unit: str = "currency"
    section: Optional[Section] = None
    level: int = 2
    parent: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "category": self.category.value,
            "value_kind": self.value_kind.value,
            "default_unit": self.default_unit,
            "section": self.section.value if self.section else None,
            "level": self.level,
            "parent": self.parent,
        }


_B = DocumentCategory.BALANCE
_P = DocumentCategory.PYG
_C = DocumentCategory.CASHFLOW
_D = DocumentCategory.DEBT
_O = DocumentCategory.OPERATIONAL
_STOCK = ValueKind.STOCK
_FLOW = ValueKind.FLOW

METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    # --- Balance: assets ---
    MetricDefinition("total_assets", "Total Assets", _B, _STOCK, section=Section.ASSET, level=0),
    MetricDefinition("non_current_assets", "Non-current Assets", _B, _STOCK, section=Section.ASSET, level=1),
    MetricDefinition("current_assets", "Current Assets", _B, _STOCK, section=Section.ASSET, level=1),
    MetricDefinition("property_plant_equipment", "Property, Plant & Equipment", _B, _STOCK, section=Section.ASSET, parent="non_current_assets"),
    MetricDefinition("intangible_assets", "Intangible Assets", _B, _STOCK, section=Section.ASSET, parent="non_current_assets"),
    MetricDefinition("inventory", "Inventory", _B, _STOCK, section=Section.ASSET, parent="current_assets"),
    MetricDefinition("trade_receivables", "Trade Receivables", _B, _STOCK, section=Section.ASSET, parent="current_assets"),
    MetricDefinition("cash", "Cash and Cash Equivalents", _B, _STOCK, section=Section.ASSET, parent="current_assets"),
    # --- Balance: liabilities ---
    MetricDefinition("total_liabilities", "Total Liabilities", _B, _STOCK, section=Section.LIABILITY, level=0),
    MetricDefinition("non_current_liabilities", "Non-current Liabilities", _B, _STOCK, section=Section.LIABILITY, level=1),
    MetricDefinition("current_liabilities", "Current Liabilities", _B, _STOCK, section=Section.LIABILITY, level=1),
    MetricDefinition("long_term_debt", "Long-term Debt", _B, _STOCK, section=Section.LIABILITY, parent="non_current_liabilities"),
    MetricDefinition("short_term_debt", "Short-term Debt", _B, _STOCK, section=Section.LIABILITY, parent="current_liabilities"),
    MetricDefinition("trade_payables", "Trade Payables", _B, _STOCK, section=Section.LIABILITY, parent="current_liabilities"),
    # --- Balance: equity ---
    MetricDefinition("equity_total", "Total Equity", _B, _STOCK, section=Section.EQUITY, level=0),
    MetricDefinition("share_capital", "Share Capital", _B, _STOCK, section=Section.EQUITY),
    MetricDefinition("reserves", "Reserves & Retained Earnings", _B, _STOCK, section=Section.EQUITY),
    MetricDefinition("total_equity_and_liabilities", "Total Equity and Liabilities", _B, _STOCK, level=0),
    # --- P&L ---
    MetricDefinition("revenue_total", "Revenue", _P, _FLOW),
    MetricDefinition("other_operating_income", "Other Operating Income", _P, _FLOW),
    MetricDefinition("cost_of_sales", "Cost of Sales", _P, _FLOW),
    MetricDefinition("personnel_expenses", "Personnel Expenses", _P, _FLOW),
    MetricDefinition("other_operating_expenses", "Other Operating Expenses", _P, _FLOW),
    MetricDefinition("depreciation", "Depreciation & Amortisation", _P, _FLOW),
    MetricDefinition("ebitda", "EBITDA", _P, _FLOW),
    MetricDefinition("ebit", "Operating Profit (EBIT)", _P, _FLOW),
    MetricDefinition("financial_income", "Financial Income", _P, _FLOW),
    MetricDefinition("financial_expenses", "Financial Expenses", _P, _FLOW),
    MetricDefinition("profit_before_tax", "Profit Before Tax", _P, _FLOW),
    MetricDefinition("income_tax", "Income Tax", _P, _FLOW),
    MetricDefinition("net_income", "Net Income", _P, _FLOW),
    # --- Cash flow ---
    MetricDefinition("operating_cash_flow", "Operating Cash Flow", _C, _FLOW, section=Section.OPERATING),
    MetricDefinition("investing_cash_flow", "Investing Cash Flow", _C, _FLOW, section=Section.INVESTING),
    MetricDefinition("financing_cash_flow", "Financing Cash Flow", _C, _FLOW, section=Section.FINANCING),
    MetricDefinition("net_cash_flow", "Net Cash Flow", _C, _FLOW),
    MetricDefinition("customer_collections", "Collections from Customers", _C, _FLOW, section=Section.OPERATING),
    MetricDefinition("supplier_payments", "Payments to Suppliers", _C, _FLOW, section=Section.OPERATING),
    MetricDefinition("payroll_payments", "Payroll Payments", _C, _FLOW, section=Section.OPERATING),
    MetricDefinition("capex", "Capital Expenditure", _C, _FLOW, section=Section.INVESTING),
    # --- Debt schedule ---
    MetricDefinition("total_debt", "Total Financial Debt", _D, _STOCK),
    MetricDefinition("bank_loans", "Bank Loans", _D, _STOCK),
    MetricDefinition("leasing_debt", "Leasing", _D, _STOCK),
    MetricDefinition("credit_lines", "Credit Lines", _D, _STOCK),
    MetricDefinition("debt_service", "Debt Service", _D, _FLOW),
    # --- Operational ---
    MetricDefinition("units_sold", "Units Sold", _O, _FLOW, default_unit="units"),
    MetricDefinition("headcount", "Headcount", _O, _STOCK, default_unit="employees"),
)


def metric_index(
    definitions: Optional[Tuple[MetricDefinition, ...]] = None,
) -> Dict[str, MetricDefinition]:
    """Return ``{code: definition}`` for the given (or built-in) catalogue."""
    return {d.code: d for d in (definitions or METRIC_DEFINITIONS)}


# ---------------------------------------------------------------------------
# Pipeline records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationIssue:
    """A single problem found by any stage.  Never mutated after creation."""

    severity: Severity
    kind: IssueKind
    message: str
    field: Optional[str] = None
    row: Optional[int] = None
    value: Optional[float] = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "kind": self.kind.value,
            "message": self.message,
            "field": self.field,
            "row": self.row,
            "value": self.value,
        }


def error(kind: IssueKind, message: str, **kwargs: Any) -> ValidationIssue:
    return ValidationIssue(Severity.ERROR, kind, message, **kwargs)


def warning(kind: IssueKind, message: str, **kwargs: Any) -> ValidationIssue:
    return ValidationIssue(Severity.WARNING, kind, message, **kwargs)


class SchemaError(ValueError):
    """The document is unreadable or malformed; no later stage may run."""

    def __init__(self, issues: Tuple[ValidationIssue, ...]) -> None:
        self.issues = tuple(issues)
        super().__init__("; ".join(i.message for i in self.issues))


@dataclass(frozen=True)
class RawTable:
    """Rows of stripped string cells as sniffed from one document."""

    rows: Tuple[Tuple[str, ...], ...]
    delimiter: Optional[str]
    header_row_index: int

    @property
    def header(self) -> Tuple[str, ...]:
        return self.rows[self.header_row_index]

    @property
    def data_rows(self) -> Tuple[Tuple[str, ...], ...]:
        return self.rows[self.header_row_index + 1:]

    @property
    def width(self) -> int:
        return max((len(r) for r in self.rows), default=0)


@dataclass(frozen=True)
class ColumnSchema:
    """Role of every column of a ``RawTable``, built once per document."""

    header: Tuple[str, ...]
    roles: Mapping[int, ColumnRole] = field(default_factory=dict)
    column_metrics: Mapping[int, Optional[str]] = field(default_factory=dict)
    column_years: Mapping[int, int] = field(default_factory=dict)

    def columns_with(self, role: ColumnRole) -> list[int]:
        return sorted(i for i, r in self.roles.items() if r is role)

    def first(self, role: ColumnRole) -> Optional[int]:
        cols = self.columns_with(role)
        return cols[0] if cols else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": [
                {
                    "index": i,
                    "header": self.header[i] if i < len(self.header) else "",
                    "role": self.roles[i].value,
                    "metric_code": self.column_metrics.get(i),
                    "year": self.column_years.get(i),
                }
                for i in sorted(self.roles)
            ],
        }


@dataclass(frozen=True)
class LineItem:
    """One normalised fact: a metric's amount for a specific period."""

    metric_code: Optional[str]
    raw_concept: str
    category: DocumentCategory
    period_year: int
    amount: float
    source: str
    period_month: Optional[int] = None
    currency: str = "EUR"
    section: Optional[Section] = None
    row: Optional[int] = None
    notes: str = ""

    @property
    def key(self) -> Tuple[str, int, Optional[int]]:
        return (self.metric_code or self.raw_concept, self.period_year, self.period_month)

    @property
    def is_mapped(self) -> bool:
        return self.metric_code is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_code": self.metric_code,
            "raw_concept": self.raw_concept,
            "category": self.category.value,
            "period_year": self.period_year,
            "period_month": self.period_month,
            "amount": self.amount,
            "currency": self.currency,
            "source": self.source,
            "section": self.section.value if self.section else None,
            "row": self.row,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class RatioResult:
    """A ratio evaluated for one period; always re-derivable from items."""

    name: str
    value: Optional[float]
    unit: str
    formula_id: str
    period_year: int
    is_calculated: bool
    category: str = ""
    formula: str = ""
    missing: Tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": None if self.value is None else round(self.value, 4),
            "unit": self.unit,
            "formula_id": self.formula_id,
            "period_year": self.period_year,
            "is_calculated": self.is_calculated,
            "category": self.category,
            "formula": self.formula,
            "missing": list(self.missing),
        }


@dataclass(frozen=True)
class MappingEntry:
    """A single raw-label → metric-code decision."""

    raw_label: str
    metric_code: str
    method: str  # "alias" | "fuzzy"
    pattern: str
    confidence: float  # 0.0 – 100.0
    column: Optional[int] = None
    ambiguous: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "raw_label": self.raw_label,
            "metric_code": self.metric_code,
            "method": self.method,
            "pattern": self.pattern,
            "confidence": round(self.confidence, 2),
            "column": self.column,
            "ambiguous": self.ambiguous,
        }


@dataclass(frozen=True)
class MappingReport:
    matched: Tuple[MappingEntry, ...] = ()
    unmapped: Tuple[str, ...] = ()
    potential_duplicates: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched": [m.to_dict() for m in self.matched],
            "unmapped": list(self.unmapped),
            "potential_duplicates": {
                code: list(labels) for code, labels in self.potential_duplicates.items()
            },
        }


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    issues: Tuple[ValidationIssue, ...]
    quality_score: float
    completeness: Mapping[str, float] = field(default_factory=dict)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.is_error]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if not i.is_error]


@dataclass(frozen=True)
class IngestionResult:
    """Aggregate result of one document run."""

    source: str
    category: Optional[DocumentCategory]
    items: Tuple[LineItem, ...] = ()
    issues: Tuple[ValidationIssue, ...] = ()
    quality_score: float = 0.0
    confidence: float = 0.0
    mapping_report: MappingReport = field(default_factory=MappingReport)
    completeness: Mapping[str, float] = field(default_factory=dict)
    persisted: bool = False
    status: str = "ok"  # "ok" | "invalid" | "failed"

    @property
    def is_valid(self) -> bool:
        return not any(i.is_error for i in self.issues)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.is_error]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if not i.is_error]

    def years(self) -> list[int]:
        return sorted({i.period_year for i in self.items})

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "category": self.category.value if self.category else None,
            "status": self.status,
            "is_valid": self.is_valid,
            "persisted": self.persisted,
            "quality_score": round(self.quality_score, 2),
            "confidence": round(self.confidence, 2),
            "completeness": {k: round(v, 2) for k, v in self.completeness.items()},
            "items": [i.to_dict() for i in self.items],
            "issues": [i.to_dict() for i in self.issues],
            "mapping_report": self.mapping_report.to_dict(),
        }
