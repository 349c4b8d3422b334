"""
Statement Mapper HTTP API.

JSON endpoints over the ingestion pipeline: upload statements, query the
normalised line items, and read ratios, KPI series and CSV templates.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename

from statement_mapper.config import PipelineConfig
from statement_mapper.pipeline import IngestionPipeline
from statement_mapper.schema import DocumentCategory
from statement_mapper.schema_builder import SchemaBuilder
from statement_mapper.store import InMemoryLineItemStore, LineItemFilter, LineItemStore, StoreError
from statement_mapper.templates import generate_template

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"csv", "txt", "tsv", "xlsx", "json"}
MAX_UPLOAD_BYTES = 16 * 1024 * 1024

_DELIMITERS = {"comma": ",", "semicolon": ";", "tab": "\t"}


# -------------------------------------------------------
# Helpers
# -------------------------------------------------------

def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def _error(message: str, status: int) -> Tuple[Response, int]:
    return jsonify({"success": False, "error": message}), status


def _int_arg(name: str) -> Optional[int]:
    value = request.args.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Query parameter '{name}' must be an integer") from None


# -------------------------------------------------------
# App Factory
# -------------------------------------------------------

def create_app(
    store: Optional[LineItemStore] = None,
    config: Optional[PipelineConfig] = None,
) -> Flask:
    """Build the Flask app around one pipeline and one store."""
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES

    store = store if store is not None else InMemoryLineItemStore()
    pipeline = IngestionPipeline(config=config, store=store)
    app.extensions["statement_pipeline"] = pipeline

    @app.errorhandler(StoreError)
    def handle_store_error(exc: StoreError):
        logger.error("Store error: %s", exc)
        return _error(str(exc), 503)

    @app.errorhandler(ValueError)
    def handle_value_error(exc: ValueError):
        return _error(str(exc), 400)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return _error(exc.description or exc.name, exc.code or 500)

    # ---------------------------------------------------
    # Write side
    # ---------------------------------------------------

    @app.route("/api/ingest", methods=["POST"])
    def api_ingest():
        if "file" not in request.files:
            return _error("No file uploaded", 400)

        file = request.files["file"]
        if not file.filename:
            return _error("No file selected", 400)
        if not allowed_file(file.filename):
            return _error(
                f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}", 400
            )

        filename = secure_filename(file.filename)
        category = request.form.get("category") or None
        if category is not None:
            DocumentCategory(category)  # ValueError → 400

        result = pipeline.ingest_bytes(
            filename,
            file.read(),
            category=category,
            source=request.form.get("source") or filename,
            locale_hint=request.form.get("locale") or None,
        )
        body: Dict[str, Any] = {"success": result.status == "ok", **result.to_dict()}
        status = 503 if result.status == "failed" else 200
        return jsonify(body), status

    # ---------------------------------------------------
    # Read side
    # ---------------------------------------------------

    @app.route("/api/line-items", methods=["GET"])
    def api_line_items():
        category = request.args.get("category")
        flt = LineItemFilter(
            source=request.args.get("source"),
            metric_code=request.args.get("metric"),
            category=DocumentCategory(category) if category else None,
            period_year=_int_arg("year"),
            period_month=_int_arg("month"),
        )
        items = pipeline.line_items(flt)
        if request.args.get("format") == "csv":
            return Response(SchemaBuilder.line_items_to_csv(items), mimetype="text/csv")
        return jsonify({"count": len(items), "items": [i.to_dict() for i in items]})

    @app.route("/api/ratios/<int:year>", methods=["GET"])
    def api_ratios(year: int):
        ratios = pipeline.compute_ratios(year, source=request.args.get("source"))
        return jsonify({
            "period_year": year,
            "ratios": SchemaBuilder.ratios_to_dict(ratios[year]),
        })

    @app.route("/api/series/<key>", methods=["GET"])
    def api_series(key: str):
        series = pipeline.series(key, source=request.args.get("source"))
        return jsonify(series.to_dict())

    @app.route("/api/pnl/<int:year>", methods=["GET"])
    def api_analytical_pnl(year: int):
        pnl = pipeline.analytical_pnl(year, source=request.args.get("source"))
        return jsonify(pnl.to_dict())

    @app.route("/api/metrics", methods=["GET"])
    def api_metrics():
        return jsonify([d.to_dict() for d in pipeline.metric_dictionary()])

    @app.route("/api/templates/<category>", methods=["GET"])
    def api_template(category: str):
        delimiter_name = request.args.get("delimiter", "comma")
        if delimiter_name not in _DELIMITERS:
            return _error(f"Unknown delimiter: {delimiter_name}", 400)
        csv_text = generate_template(category, _DELIMITERS[delimiter_name])
        return Response(
            csv_text,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={category}-template.csv"},
        )

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return jsonify({
            "status": "online",
            "version": "1.0.0",
            "aliases": pipeline.alias_count,
        })

    return app


if __name__ == "__main__":
    print("=" * 60)
    print("Statement Mapper API")
    print("http://localhost:5000")
    print("=" * 60)

    create_app().run(host="0.0.0.0", port=5000, debug=True)
