"""
Alias Dictionary Engine.

A curated, configurable mapping from commonly-seen statement label variants
(Spanish PGC and international conventions) to canonical metric codes.  The
dictionary is the **first** (and most trustworthy) matching layer; it fires
before fuzzy matching.

Design decisions
----------------
* Patterns are whole-word substrings of the normalised label, so
  ``"Total activo corriente"`` is caught by ``"activo corriente"``.
* Patterns are tried longest first (then by word count, then by declaration
  order).  ``"activo no corriente"`` therefore always beats
  ``"activo corriente"`` and ``"coste de ventas"`` beats ``"ventas"``.
* The same matching rule drives two smaller tables: balance / cash-flow
  section values and column-header roles.
* Users can extend at runtime via ``load_custom_aliases`` (JSON file) or
  ``add_alias`` / ``add_aliases``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.schema import ColumnRole, METRIC_DEFINITIONS, Section

logger = get_logger("synonym_mapper")


# ---------------------------------------------------------------------------
# Built-in alias dictionary
# ---------------------------------------------------------------------------
# Convention: key = metric code (see ``METRIC_DEFINITIONS``), value = label
# patterns.  Declaration order breaks ties between equally specific patterns.

_BUILTIN_ALIASES: Dict[str, List[str]] = {
    # --- Balance: assets ---
    "total_assets": [
        "total activo", "activo total", "total activos", "total assets",
        "assets total",
    ],
    "non_current_assets": [
        "activo no corriente", "activos no corrientes", "activo fijo",
        "non current assets", "fixed assets",
    ],
    "current_assets": [
        "activo corriente", "activos corrientes", "activo circulante",
        "current assets",
    ],
    "property_plant_equipment": [
        "inmovilizado material", "property plant and equipment",
        "property plant & equipment", "ppe",
    ],
    "intangible_assets": [
        "inmovilizado intangible", "fondo de comercio", "intangible assets",
        "intangibles", "goodwill",
    ],
    "inventory": [
        "existencias", "inventarios", "inventario", "inventories", "inventory",
    ],
    "trade_receivables": [
        "deudores comerciales", "cuentas a cobrar", "clientes", "deudores",
        "accounts receivable", "trade receivables", "receivables",
    ],
    "cash": [
        "efectivo y otros activos liquidos", "efectivo y equivalentes",
        "caja y bancos", "efectivo", "tesoreria", "caja", "bancos",
        "cash and cash equivalents", "cash & cash equivalents", "cash",
    ],
    # --- Balance: liabilities ---
    "total_liabilities": [
        "total pasivo", "pasivo total", "total pasivos", "total liabilities",
        "liabilities total",
    ],
    "non_current_liabilities": [
        "pasivo no corriente", "pasivos no corrientes",
        "non current liabilities", "long term liabilities",
    ],
    "current_liabilities": [
        "pasivo corriente", "pasivos corrientes", "pasivo circulante",
        "current liabilities", "short term liabilities",
    ],
    "long_term_debt": [
        "deudas a largo plazo", "deuda a largo plazo", "long term debt",
        "long term borrowings",
    ],
    "short_term_debt": [
        "deudas a corto plazo", "deuda a corto plazo", "short term debt",
        "short term borrowings",
    ],
    "trade_payables": [
        "acreedores comerciales", "cuentas a pagar", "proveedores",
        "acreedores", "accounts payable", "trade payables", "payables",
    ],
    # --- Balance: equity ---
    "equity_total": [
        "total patrimonio neto", "patrimonio neto", "fondos propios",
        "patrimonio", "total equity", "shareholders equity",
        "stockholders equity", "net worth", "equity",
    ],
    "share_capital": [
        "capital social", "capital suscrito", "share capital",
    ],
    "reserves": [
        "resultados de ejercicios anteriores", "reservas", "retained earnings",
        "reserves",
    ],
    "total_equity_and_liabilities": [
        "total patrimonio neto y pasivo", "patrimonio neto y pasivo",
        "pasivo y patrimonio neto", "total equity and liabilities",
        "total liabilities and equity",
    ],
    # --- P&L ---
    "revenue_total": [
        "importe neto de la cifra de negocios", "cifra de negocios",
        "ingresos por ventas", "ingresos de explotacion", "ventas netas",
        "ventas", "ingresos", "facturacion", "total revenue", "net sales",
        "revenue", "sales", "turnover",
    ],
    "other_operating_income": [
        "otros ingresos de explotacion", "otros ingresos",
        "other operating income", "other income",
    ],
    "cost_of_sales": [
        "consumo de materias primas", "coste de las ventas", "costes de ventas",
        "coste de ventas", "aprovisionamientos", "compras",
        "cost of goods sold", "cost of sales", "cogs",
    ],
    "personnel_expenses": [
        "gastos de personal", "costes de personal", "sueldos y salarios",
        "personnel expenses", "staff costs", "payroll", "salaries",
    ],
    "other_operating_expenses": [
        "otros gastos de explotacion", "gastos de explotacion",
        "servicios exteriores", "gastos generales",
        "other operating expenses", "operating expenses", "opex",
    ],
    "depreciation": [
        "amortizacion del inmovilizado", "amortizaciones", "amortizacion",
        "depreciacion", "depreciation and amortization", "depreciation",
        "amortization", "d&a",
    ],
    "ebitda": ["ebitda"],
    "ebit": [
        "resultado de explotacion", "beneficio de explotacion",
        "operating profit", "operating income", "ebit",
    ],
    "financial_income": [
        "ingresos financieros", "financial income", "interest income",
    ],
    "financial_expenses": [
        "gastos financieros", "intereses", "interest expenses",
        "interest expense", "financial expenses", "finance costs",
    ],
    "profit_before_tax": [
        "resultado antes de impuestos", "beneficio antes de impuestos",
        "profit before tax", "earnings before tax", "pbt",
    ],
    "income_tax": [
        "impuesto sobre beneficios", "impuesto de sociedades", "impuestos",
        "income tax", "tax expense",
    ],
    "net_income": [
        "resultado del ejercicio", "beneficio del ejercicio", "resultado neto",
        "beneficio neto", "profit for the year", "net income", "net profit",
        "net earnings",
    ],
    # --- Cash flow ---
    "operating_cash_flow": [
        "flujos de efectivo de las actividades de explotacion",
        "flujo de efectivo de explotacion", "flujo de caja operativo",
        "actividades de explotacion", "flujo operativo",
        "cash flow from operating activities", "operating cash flow",
        "cash from operations",
    ],
    "investing_cash_flow": [
        "flujos de efectivo de las actividades de inversion",
        "actividades de inversion", "flujo de inversion",
        "cash flow from investing activities", "investing cash flow",
    ],
    "financing_cash_flow": [
        "flujos de efectivo de las actividades de financiacion",
        "actividades de financiacion", "flujo de financiacion",
        "cash flow from financing activities", "financing cash flow",
    ],
    "net_cash_flow": [
        "aumento/disminucion neta del efectivo", "variacion neta de efectivo",
        "flujo neto", "net change in cash", "net cash flow",
    ],
    "customer_collections": [
        "cobros de clientes", "cobros a clientes", "cobro de clientes",
        "collections from customers", "customer receipts",
    ],
    "supplier_payments": [
        "pagos a proveedores", "pago a proveedores", "payments to suppliers",
        "supplier payments",
    ],
    "payroll_payments": [
        "pagos de nominas", "pago de nominas", "pago de nomina",
        "payroll payments",
    ],
    "capex": [
        "inversiones en inmovilizado", "adquisicion de inmovilizado",
        "pagos por inversiones", "capital expenditure", "capex",
    ],
    # --- Debt schedule ---
    "total_debt": [
        "deuda financiera total", "endeudamiento financiero",
        "deuda financiera", "deuda total", "total debt", "financial debt",
    ],
    "bank_loans": [
        "deudas con entidades de credito", "prestamos bancarios", "prestamos",
        "prestamo", "bank loans", "loans",
    ],
    "leasing_debt": ["arrendamiento financiero", "leasing", "renting"],
    "credit_lines": [
        "polizas de credito", "poliza de credito", "lineas de credito",
        "linea de credito", "credit lines", "credit line", "revolving",
    ],
    "debt_service": [
        "servicio de la deuda", "servicio de deuda", "cuota anual", "cuotas",
        "debt service", "debt repayment", "loan installment",
    ],
    # --- Operational ---
    "units_sold": ["unidades vendidas", "volumen de ventas", "units sold"],
    "headcount": [
        "numero de empleados", "plantilla media", "empleados", "headcount",
        "employees", "fte",
    ],
}

# Balance side (``pn`` = patrimonio neto) and cash-flow activity keywords
_SECTION_ALIASES: Dict[Section, List[str]] = {
    Section.ASSET: ["activo", "activos", "asset", "assets"],
    Section.LIABILITY: ["pasivo", "pasivos", "liability", "liabilities", "deudas"],
    Section.EQUITY: [
        "patrimonio neto", "patrimonio", "fondos propios", "pn", "equity",
        "net worth",
    ],
    Section.OPERATING: [
        "explotacion", "operativo", "operativas", "operacion", "operating",
        "operations",
    ],
    Section.INVESTING: ["inversion", "inversiones", "investing", "investment"],
    Section.FINANCING: ["financiacion", "financing", "financial"],
}

# Column-header keywords; matched at the start or end of the header only
_ROLE_ALIASES: Dict[ColumnRole, List[str]] = {
    ColumnRole.CONCEPT: [
        "concepto", "concept", "partida", "cuenta", "descripcion",
        "description", "epigrafe", "line item", "item", "account", "label",
    ],
    ColumnRole.SECTION: [
        "seccion", "section", "masa patrimonial", "bloque", "categoria",
        "category", "actividad", "tipo de flujo", "side",
    ],
    ColumnRole.PERIOD: ["periodo", "period", "mes", "month", "fecha", "date"],
    ColumnRole.YEAR: ["ano", "anio", "year", "ejercicio", "fiscal year"],
    ColumnRole.AMOUNT: [
        "importe", "amount", "valor", "value", "saldo", "monto", "cantidad",
    ],
    ColumnRole.CURRENCY: ["moneda", "currency", "divisa"],
    ColumnRole.NOTES: [
        "notas", "nota", "notes", "note", "observaciones", "comentarios",
        "comments",
    ],
}


@dataclass(frozen=True)
class AliasHit:
    """Result of a dictionary lookup."""

    metric_code: str
    pattern: str


@dataclass(frozen=True)
class _Pattern:
    text: str  # match form: normalised, hyphens as spaces
    target: object
    order: int

    @property
    def specificity(self) -> tuple:
        return (-len(self.text), -len(self.text.split()), self.order)


def _match_form(label: str) -> str:
    return " ".join(label.replace("-", " ").split())


def _contains_words(label: str, pattern: str) -> bool:
    return f" {pattern} " in f" {label} "


class SynonymMapper:
    """Dictionary-based label → metric-code mapper.

    Parameters
    ----------
    normalizer:
        An instance of ``LabelNormalizer`` used to normalise both incoming
        labels and any user-supplied aliases.
    extra_aliases:
        Optional ``{metric_code: pattern | [patterns]}`` merged in at
        construction time.
    metric_codes:
        Codes accepted by ``add_alias``; defaults to the built-in catalogue.
    """

    def __init__(
        self,
        normalizer: LabelNormalizer,
        extra_aliases: Optional[Dict[str, Union[str, List[str]]]] = None,
        metric_codes: Optional[Iterable[str]] = None,
    ) -> None:
        self._normalizer = normalizer
        self._codes = set(metric_codes or (d.code for d in METRIC_DEFINITIONS))
        self._order = 0

        self._metrics: List[_Pattern] = []
        for code, patterns in _BUILTIN_ALIASES.items():
            for p in patterns:
                self._metrics.append(self._make(p, code))
        self._sections = [
            self._make(p, section)
            for section, patterns in _SECTION_ALIASES.items()
            for p in patterns
        ]
        self._roles = [
            self._make(p, role)
            for role, patterns in _ROLE_ALIASES.items()
            for p in patterns
        ]
        self._sort()

        if extra_aliases:
            self.add_aliases(extra_aliases)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def lookup(self, normalised_label: str) -> Optional[AliasHit]:
        """Return the metric code of the most specific matching pattern.

        Parameters
        ----------
        normalised_label:
            A label that has **already** been through ``LabelNormalizer``.

        Returns
        -------
        AliasHit | None
            Metric code and the pattern that fired, or ``None``.
        """
        pat = self._first_metric(_match_form(normalised_label))
        if pat is None:
            return None
        logger.info("Alias hit: %r → %r via %r", normalised_label, pat.target, pat.text)
        return AliasHit(metric_code=str(pat.target), pattern=pat.text)

    def lookup_section(self, normalised_label: str) -> Optional[Section]:
        """Normalise a section / cash-flow category cell."""
        label = _match_form(normalised_label)
        for pat in self._sections:
            if _contains_words(label, pat.text):
                return pat.target  # type: ignore[return-value]
        return None

    def lookup_role(self, normalised_header: str) -> Optional[ColumnRole]:
        """Return the column role a header names, if any.

        Role keywords must open or close the header (``"Importe (EUR)"``,
        ``"Fiscal year"``).  A longer metric alias in the same header wins,
        so ``"Importe neto de la cifra de negocios"`` stays a metric.
        """
        label = _match_form(normalised_header)
        for pat in self._roles:
            if (
                label == pat.text
                or label.startswith(pat.text + " ")
                or label.endswith(" " + pat.text)
            ):
                metric = self._first_metric(label)
                if metric is not None and len(metric.text) > len(pat.text):
                    return None
                return pat.target  # type: ignore[return-value]
        return None

    # ------------------------------------------------------------------ #
    # Extension API
    # ------------------------------------------------------------------ #

    def add_alias(self, pattern: str, metric_code: str) -> None:
        """Register a single new alias pattern.

        Raises
        ------
        ValueError
            If ``metric_code`` is not in the metric catalogue.
        """
        if metric_code not in self._codes:
            raise ValueError(
                f"Unknown metric code {metric_code!r}. "
                f"Must be one of the catalogue codes."
            )
        new = self._make(pattern, metric_code)
        for existing in self._metrics:
            if existing.text == new.text and existing.target != metric_code:
                logger.warning(
                    "Alias %r already maps to %r; %r takes precedence on ties",
                    new.text,
                    existing.target,
                    existing.target,
                )
        self._metrics.append(new)
        self._sort()
        logger.debug("Added alias: %r → %r", new.text, metric_code)

    def add_aliases(self, mapping: Dict[str, Union[str, List[str]]]) -> None:
        """Bulk-add aliases from a ``{metric_code: pattern(s)}`` dict."""
        for code, patterns in mapping.items():
            if isinstance(patterns, str):
                patterns = [patterns]
            for p in patterns:
                self.add_alias(p, code)

    def load_custom_aliases(self, path: Path) -> int:
        """Load aliases from a JSON file (``{metric_code: [patterns]}``).

        Returns the number of patterns added.
        """
        with open(path, encoding="utf-8") as fh:
            data: Dict[str, Union[str, List[str]]] = json.load(fh)
        self.add_aliases(data)
        count = sum(1 if isinstance(v, str) else len(v) for v in data.values())
        logger.info("Loaded %d custom aliases from %s", count, path)
        return count

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def size(self) -> int:
        return len(self._metrics)

    def all_aliases(self) -> Dict[str, str]:
        """Return ``{pattern: metric_code}`` in matching order."""
        result: Dict[str, str] = {}
        for pat in self._metrics:
            result.setdefault(pat.text, str(pat.target))
        return result

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _make(self, pattern: str, target: object) -> _Pattern:
        self._order += 1
        text = _match_form(self._normalizer.normalize_label(pattern))
        return _Pattern(text=text, target=target, order=self._order)

    def _first_metric(self, label: str) -> Optional[_Pattern]:
        if not label:
            return None
        for pat in self._metrics:
            if _contains_words(label, pat.text):
                return pat
        return None

    def _sort(self) -> None:
        for table in (self._metrics, self._sections, self._roles):
            table.sort(key=lambda p: p.specificity)
