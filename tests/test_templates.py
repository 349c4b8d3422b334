"""
Tests for the downloadable CSV templates.
"""

from __future__ import annotations

import pytest

from statement_mapper.pipeline import IngestionPipeline
from statement_mapper.schema import DocumentCategory, IssueKind
from statement_mapper.templates import TEMPLATES, generate_template


@pytest.fixture(scope="module")
def pipeline() -> IngestionPipeline:
    with IngestionPipeline() as pipe:
        yield pipe


class TestGenerate:
    def test_header_and_rows(self) -> None:
        lines = generate_template("pyg").strip().split("\n")
        assert lines[0] == "Concepto,Periodo,Año,Importe,Moneda,Notas"
        assert len(lines) == 5

    def test_semicolon_delimiter(self) -> None:
        header = generate_template(DocumentCategory.BALANCE, ";").split("\n")[0]
        assert header.startswith("Seccion;Concepto;")

    def test_no_operational_template(self) -> None:
        with pytest.raises(ValueError, match="No template"):
            generate_template("operational")

    def test_unknown_category(self) -> None:
        with pytest.raises(ValueError):
            generate_template("nope")


class TestTemplatesIngestCleanly:
    @pytest.mark.parametrize("category", list(TEMPLATES))
    @pytest.mark.parametrize("delimiter", [",", ";", "\t"])
    def test_every_row_maps(
        self, pipeline: IngestionPipeline, category: DocumentCategory, delimiter: str
    ) -> None:
        text = generate_template(category, delimiter)
        result = pipeline.ingest_text(f"{category.value}-template.csv", text, category)
        assert result.status == "ok"
        assert len(result.items) == 4
        assert all(i.is_mapped for i in result.items)
        assert result.mapping_report.unmapped == ()

    def test_balance_template_squares(self, pipeline: IngestionPipeline) -> None:
        result = pipeline.ingest_text(
            "balance.csv", generate_template("balance"), DocumentCategory.BALANCE
        )
        assert not any(i.kind is IssueKind.BALANCE for i in result.issues)

    def test_pyg_template_values(self, pipeline: IngestionPipeline) -> None:
        result = pipeline.ingest_text("pyg.csv", generate_template("pyg"), "pyg")
        revenue = [i for i in result.items if i.metric_code == "revenue_total"]
        assert len(revenue) == 1
        assert revenue[0].amount == pytest.approx(125000.50)
        assert (revenue[0].period_year, revenue[0].period_month) == (2024, 1)
