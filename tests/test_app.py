"""
Tests for the Flask HTTP API.
"""

from __future__ import annotations

import logging
from io import BytesIO

import pytest

from app import create_app
from statement_mapper.config import PipelineConfig
from statement_mapper.store import InMemoryLineItemStore, StoreError

PYG_CSV = (
    "Concepto,Periodo,Año,Importe\n"
    "Ingresos por ventas,2024-01,2024,125000.50\n"
    "Gastos de personal,2024-01,2024,-40000.00\n"
)

BALANCE_CSV = (
    "Concepto,Año,Importe\n"
    "Activo corriente,2024,850000\n"
    "Pasivo corriente,2024,420000\n"
    "Patrimonio neto,2024,430000\n"
)


class UnavailableStore(InMemoryLineItemStore):
    def query_line_items(self, filter):
        raise StoreError("store offline")


@pytest.fixture
def client():
    app = create_app(config=PipelineConfig(log_level=logging.WARNING))
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


def _upload(client, text: str, filename: str, **form):
    data = {"file": (BytesIO(text.encode("utf-8")), filename), **form}
    return client.post("/api/ingest", data=data, content_type="multipart/form-data")


# ======================================================================
# Upload
# ======================================================================

class TestIngest:
    def test_upload_csv(self, client) -> None:
        response = _upload(client, PYG_CSV, "pyg.csv", category="pyg")
        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["status"] == "ok"
        assert body["persisted"] is True
        assert body["items"][0]["metric_code"] == "revenue_total"

    def test_category_detected_from_filename(self, client) -> None:
        body = _upload(client, BALANCE_CSV, "balance.csv").get_json()
        assert body["category"] == "balance"

    def test_custom_source(self, client) -> None:
        body = _upload(client, PYG_CSV, "pyg.csv", source="acme-2024").get_json()
        assert body["source"] == "acme-2024"

    def test_no_file(self, client) -> None:
        response = client.post("/api/ingest", data={}, content_type="multipart/form-data")
        assert response.status_code == 400
        assert response.get_json()["error"] == "No file uploaded"

    def test_bad_extension(self, client) -> None:
        response = _upload(client, PYG_CSV, "pyg.pdf")
        assert response.status_code == 400
        assert "Invalid file type" in response.get_json()["error"]

    def test_bad_category(self, client) -> None:
        response = _upload(client, PYG_CSV, "pyg.csv", category="nope")
        assert response.status_code == 400
        assert response.get_json()["success"] is False

    def test_invalid_document_still_200(self, client) -> None:
        body = _upload(client, "Concepto,Importe\n", "pyg.csv", category="pyg").get_json()
        assert body["success"] is False
        assert body["status"] == "invalid"


# ======================================================================
# Read side
# ======================================================================

class TestQueries:
    def test_line_items(self, client) -> None:
        _upload(client, PYG_CSV, "pyg.csv", category="pyg")
        body = client.get("/api/line-items?metric=revenue_total&year=2024").get_json()
        assert body["count"] == 1
        assert body["items"][0]["amount"] == 125000.50

    def test_line_items_csv(self, client) -> None:
        _upload(client, PYG_CSV, "pyg.csv", category="pyg")
        response = client.get("/api/line-items?format=csv")
        assert response.mimetype == "text/csv"
        assert response.get_data(as_text=True).startswith("source,category,metric_code")

    def test_bad_integer_argument(self, client) -> None:
        response = client.get("/api/line-items?year=twenty")
        assert response.status_code == 400

    def test_ratios(self, client) -> None:
        _upload(client, BALANCE_CSV, "balance.csv", category="balance")
        body = client.get("/api/ratios/2024").get_json()
        current = body["ratios"]["liquidity"]["current_ratio"]
        assert current["is_calculated"] is True
        assert current["value"] == pytest.approx(2.0238, abs=1e-4)

    def test_series(self, client) -> None:
        _upload(client, PYG_CSV, "pyg.csv", category="pyg")
        body = client.get("/api/series/revenue_total").get_json()
        assert body["yearly"] == {"2024": 125000.50}
        assert len(body["sparkline"]) == 8

    def test_unknown_series(self, client) -> None:
        assert client.get("/api/series/nope").status_code == 400

    def test_pnl(self, client) -> None:
        _upload(client, PYG_CSV, "pyg.csv", category="pyg")
        body = client.get("/api/pnl/2024").get_json()
        assert body["sales"] == 125000.50
        assert body["ebit"] == pytest.approx(85000.50)

    def test_metrics(self, client) -> None:
        body = client.get("/api/metrics").get_json()
        assert any(m["code"] == "revenue_total" for m in body)

    def test_store_unavailable(self) -> None:
        app = create_app(
            store=UnavailableStore(), config=PipelineConfig(log_level=logging.WARNING)
        )
        response = app.test_client().get("/api/line-items")
        assert response.status_code == 503
        assert "store offline" in response.get_json()["error"]


# ======================================================================
# Templates and health
# ======================================================================

class TestMisc:
    def test_template_download(self, client) -> None:
        response = client.get("/api/templates/pyg?delimiter=semicolon")
        assert response.status_code == 200
        assert "attachment" in response.headers["Content-Disposition"]
        assert response.get_data(as_text=True).startswith("Concepto;Periodo;")

    def test_template_bad_delimiter(self, client) -> None:
        assert client.get("/api/templates/pyg?delimiter=pipe").status_code == 400

    def test_template_unknown_category(self, client) -> None:
        assert client.get("/api/templates/operational").status_code == 400

    def test_health(self, client) -> None:
        body = client.get("/api/health").get_json()
        assert body["status"] == "online"
        assert body["aliases"] > 0

    def test_unknown_route_is_json(self, client) -> None:
        response = client.get("/api/nothing")
        assert response.status_code == 404
        assert response.get_json()["success"] is False
