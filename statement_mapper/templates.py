"""
CSV templates.

Downloadable skeletons in the long layout the pipeline reads best, each with
four sample rows that ingest cleanly.
"""

from __future__ import annotations

import csv
import io
from typing import Dict, List, Tuple, Union

from statement_mapper.schema import DocumentCategory

_BASE_COLUMNS = ["Concepto", "Periodo", "Año", "Importe", "Moneda", "Notas"]

TEMPLATES: Dict[DocumentCategory, Tuple[List[str], List[List[str]]]] = {
    DocumentCategory.PYG: (
        _BASE_COLUMNS,
        [
            ["Ingresos por ventas", "2024-01", "2024", "125000.50", "EUR", ""],
            ["Coste de ventas", "2024-01", "2024", "-75000.00", "EUR", ""],
            ["Gastos de personal", "2024-01", "2024", "-25000.00", "EUR", ""],
            ["Amortizaciones", "2024-01", "2024", "-5000.00", "EUR", ""],
        ],
    ),
    DocumentCategory.BALANCE: (
        ["Seccion"] + _BASE_COLUMNS,
        [
            ["Activo", "Efectivo y equivalentes", "2024-01", "2024", "50000.00", "EUR", ""],
            ["Activo", "Clientes", "2024-01", "2024", "25000.00", "EUR", ""],
            ["Pasivo", "Proveedores", "2024-01", "2024", "15000.00", "EUR", ""],
            ["Patrimonio Neto", "Capital social", "2024-01", "2024", "60000.00", "EUR", ""],
        ],
    ),
    DocumentCategory.CASHFLOW: (
        ["Categoria"] + _BASE_COLUMNS,
        [
            ["Operativo", "Cobro de clientes", "2024-01", "2024", "98000.00", "EUR", ""],
            ["Operativo", "Pago a proveedores", "2024-01", "2024", "-70000.00", "EUR", ""],
            ["Operativo", "Pago de nóminas", "2024-01", "2024", "-25000.00", "EUR", ""],
            ["Inversion", "Inversiones en inmovilizado", "2024-01", "2024", "-10000.00", "EUR", ""],
        ],
    ),
    DocumentCategory.DEBT: (
        _BASE_COLUMNS,
        [
            ["Préstamos bancarios", "2024-12", "2024", "120000.00", "EUR", "Banco A, vto. 2029"],
            ["Leasing", "2024-12", "2024", "18000.00", "EUR", ""],
            ["Pólizas de crédito", "2024-12", "2024", "30000.00", "EUR", "Límite 50000"],
            ["Servicio de la deuda", "2024-12", "2024", "32000.00", "EUR", "Cuota anual"],
        ],
    ),
}


def generate_template(
    category: Union[DocumentCategory, str], delimiter: str = ","
) -> str:
    """Return a CSV template for *category*.

    Raises
    ------
    ValueError
        If no template exists for the category.
    """
    category = DocumentCategory(category)
    if category not in TEMPLATES:
        raise ValueError(
            f"No template for category {category.value!r}. "
            f"Available: {[c.value for c in TEMPLATES]}"
        )
    header, rows = TEMPLATES[category]
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=delimiter, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buf.getvalue()
