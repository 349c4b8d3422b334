"""
Pipeline Orchestrator.

The central entry point that wires together every stage:

    Raw document  →  Schema Sniffer  →  Field Normalizer  →  Record Builder
                  →  Validator  →  (store)  →  Ratio Engine / Aggregator

Usage
-----
>>> from statement_mapper.pipeline import IngestionPipeline
>>> from statement_mapper.store import InMemoryLineItemStore
>>>
>>> pipe = IngestionPipeline(store=InMemoryLineItemStore())
>>> result = pipe.ingest_text("pyg-2024.csv", open("pyg-2024.csv").read())
>>> print(result.to_dict())
"""

from __future__ import annotations

import io
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from statement_mapper.aggregator import (
    WORKING_CAPITAL_KEY,
    AnalyticalPnl,
    KpiSeries,
    TimeSeriesAggregator,
)
from statement_mapper.config import PipelineConfig
from statement_mapper.excel_reader import ExcelReader
from statement_mapper.field_normalizer import FieldNormalizer, detect_category
from statement_mapper.fuzzy_matcher import FuzzyMatcher
from statement_mapper.logging_setup import configure_logging, document_context, get_logger
from statement_mapper.normalizer import LabelNormalizer
from statement_mapper.ratio_engine import RatioEngine
from statement_mapper.record_builder import RecordBuilder
from statement_mapper.schema import (
    DocumentCategory,
    IngestionResult,
    IssueKind,
    LineItem,
    MetricDefinition,
    RatioResult,
    SchemaError,
    ValidationIssue,
    ValidationResult,
    error,
    metric_index,
    warning,
)
from statement_mapper.schema_builder import SchemaBuilder
from statement_mapper.sniffer import SchemaSniffer, SniffResult
from statement_mapper.store import (
    LineItemFilter,
    LineItemStore,
    StoreError,
    StoreTimeoutError,
)
from statement_mapper.synonym_mapper import SynonymMapper
from statement_mapper.validator import Validator

logger = get_logger("pipeline")

SPREADSHEET_SUFFIXES = {".xlsx", ".xlsm"}
JSON_SUFFIXES = {".json"}


@dataclass(frozen=True)
class DocumentInput:
    """One document of a batch; exactly one of ``text`` / ``rows`` / ``path``."""

    source: str
    text: Optional[str] = None
    rows: Optional[Sequence[Sequence[Any]]] = None
    path: Optional[Union[str, Path]] = None
    category: Optional[Union[DocumentCategory, str]] = None
    locale_hint: Optional[str] = None


class IngestionPipeline:
    """Orchestrates the full ingestion pipeline.

    Parameters
    ----------
    config:
        All tuneable knobs.  Defaults suit Spanish PGC and IFRS-style exports.
    store:
        Persistence collaborator.  Without one, results are returned but
        never written.
    extra_aliases:
        Additional ``{metric_code: patterns}`` merged into the built-in
        alias dictionary.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        store: Optional[LineItemStore] = None,
        extra_aliases: Optional[Dict[str, Union[str, List[str]]]] = None,
    ) -> None:
        self._config = config or PipelineConfig()
        self._store = store

        # Bootstrap logging before anything else
        configure_logging(level=self._config.log_level, log_file=self._config.log_file)

        # Construct stages
        self._normalizer = LabelNormalizer()
        self._synonyms = SynonymMapper(
            normalizer=self._normalizer,
            extra_aliases=extra_aliases,
        )
        if self._config.custom_alias_path:
            self._synonyms.load_custom_aliases(self._config.custom_alias_path)

        self._fuzzy = FuzzyMatcher(
            config=self._config.matching,
            targets=self._synonyms.all_aliases(),
            normalizer=self._normalizer,
        )
        self._sniffer = SchemaSniffer(self._config.sniffer, self._normalizer)
        self._field_normalizer = FieldNormalizer(
            self._synonyms, self._fuzzy, self._config.matching, self._normalizer
        )
        self._builder = RecordBuilder(self._config.builder, self._normalizer)
        self._validator = Validator(self._config.validation)
        self._ratios = RatioEngine()
        self._aggregator = TimeSeriesAggregator(normalizer=self._normalizer)

        # Collaborator calls run here so they can be abandoned on timeout
        self._store_executor = ThreadPoolExecutor(
            max_workers=max(2, self._config.max_concurrency),
            thread_name_prefix="statement-store",
        )

        logger.info(
            "Pipeline initialised: aliases=%d, fuzzy_threshold=%.1f, "
            "strict=%s, store=%s",
            self._synonyms.size,
            self._config.matching.fuzzy_threshold,
            self._config.matching.strict_mode,
            type(store).__name__ if store is not None else None,
        )

    def __enter__(self) -> "IngestionPipeline":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self._store_executor.shutdown(wait=False)

    # ------------------------------------------------------------------ #
    # Entry points (one per input format)
    # ------------------------------------------------------------------ #

    def ingest_text(
        self,
        source: str,
        text: str,
        category: Optional[Union[DocumentCategory, str]] = None,
        locale_hint: Optional[str] = None,
    ) -> IngestionResult:
        """Ingest delimited text (CSV, semicolon or tab separated)."""
        return self._run(source, lambda: self._sniffer.sniff(text, locale_hint), category)

    def ingest_rows(
        self,
        source: str,
        rows: Sequence[Sequence[Any]],
        category: Optional[Union[DocumentCategory, str]] = None,
        origin: str = "extraction",
        locale_hint: Optional[str] = None,
    ) -> IngestionResult:
        """Ingest pre-split rows.

        ``origin="extraction"`` marks rows produced by an extraction service;
        their confidence is lowered by ``extraction_confidence_penalty``.
        """
        penalty = (
            self._config.extraction_confidence_penalty if origin == "extraction" else 0.0
        )
        return self._run(
            source,
            lambda: self._sniffer.sniff_rows(rows, penalty, locale_hint),
            category,
        )

    def ingest_file(
        self,
        path: Union[str, Path],
        category: Optional[Union[DocumentCategory, str]] = None,
        source: Optional[str] = None,
        locale_hint: Optional[str] = None,
    ) -> IngestionResult:
        """Ingest a ``.csv`` / ``.txt`` / ``.tsv``, ``.json`` or ``.xlsx`` file."""
        path = Path(path)
        return self.ingest_bytes(
            path.name, path.read_bytes(), category, source or path.name, locale_hint
        )

    def ingest_bytes(
        self,
        filename: str,
        data: bytes,
        category: Optional[Union[DocumentCategory, str]] = None,
        source: Optional[str] = None,
        locale_hint: Optional[str] = None,
    ) -> IngestionResult:
        """Ingest an uploaded file's content; the suffix picks the reader."""
        source = source or filename
        suffix = Path(filename).suffix.lower()

        if suffix in SPREADSHEET_SUFFIXES:
            def sniff() -> SniffResult:
                _, rows = ExcelReader().read(io.BytesIO(data))
                return self._sniffer.sniff_rows(rows, 0.0, locale_hint)

            return self._run(source, sniff, category)

        if suffix in JSON_SUFFIXES:
            def sniff() -> SniffResult:
                try:
                    rows = SchemaBuilder.read_json_rows(data)
                except ValueError as exc:
                    raise SchemaError((
                        error(IssueKind.SCHEMA, f"Invalid JSON document: {exc}"),
                    )) from exc
                return self._sniffer.sniff_rows(
                    rows, self._config.extraction_confidence_penalty, locale_hint
                )

            return self._run(source, sniff, category)

        return self.ingest_text(source, self._decode(data), category, locale_hint)

    def ingest_batch(self, documents: Sequence[DocumentInput]) -> List[IngestionResult]:
        """Ingest several documents concurrently; results keep input order."""
        workers = max(1, min(self._config.max_concurrency, len(documents) or 1))
        logger.info("Batch of %d document(s) on %d worker(s)", len(documents), workers)
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="statement-ingest"
        ) as pool:
            futures = [pool.submit(self._ingest_document, doc) for doc in documents]
            return [f.result() for f in futures]

    # ------------------------------------------------------------------ #
    # Read side
    # ------------------------------------------------------------------ #

    def line_items(self, filter: Optional[LineItemFilter] = None) -> List[LineItem]:
        """Query the store.

        Raises
        ------
        StoreError
            If no store is configured, or the call fails or times out.
        """
        if self._store is None:
            raise StoreError("No line-item store configured")
        return self._call_store(self._store.query_line_items, filter or LineItemFilter())

    def metric_dictionary(self) -> List[MetricDefinition]:
        """The store's metric catalogue, or the built-in one without a store."""
        if self._store is None:
            return list(metric_index().values())
        return self._call_store(self._store.get_metric_dictionary)

    def compute_ratios(
        self,
        period_year: Optional[int] = None,
        items: Optional[Sequence[LineItem]] = None,
        source: Optional[str] = None,
    ) -> Dict[int, List[RatioResult]]:
        """Ratios per year from *items*, or from the store when omitted."""
        if items is None:
            items = self.line_items(LineItemFilter(source=source))
        if period_year is not None:
            return {period_year: self._ratios.compute(items, period_year)}
        return self._ratios.compute_all(items)

    def series(
        self,
        key: str,
        items: Optional[Sequence[LineItem]] = None,
        source: Optional[str] = None,
    ) -> KpiSeries:
        """KPI series for a metric code, a composite group name or
        ``"working_capital_needs"``.

        Raises
        ------
        ValueError
            If *key* is neither.
        """
        if items is None:
            items = self.line_items(LineItemFilter(source=source))
        if key in metric_index():
            return self._aggregator.summary(items, metric_code=key)
        if key in self._aggregator.groups:
            return self._aggregator.summary(items, group=key)
        if key == WORKING_CAPITAL_KEY:
            return self._aggregator.working_capital_needs(items)
        raise ValueError(f"Unknown metric code or group: {key!r}")

    def analytical_pnl(
        self,
        period_year: int,
        items: Optional[Sequence[LineItem]] = None,
        source: Optional[str] = None,
    ) -> AnalyticalPnl:
        if items is None:
            items = self.line_items(LineItemFilter(source=source))
        return self._aggregator.analytical_pnl(items, period_year)

    # ------------------------------------------------------------------ #
    # Utility
    # ------------------------------------------------------------------ #

    def add_aliases(self, mapping: Dict[str, Union[str, List[str]]]) -> None:
        """Hot-add aliases after pipeline construction."""
        self._synonyms.add_aliases(mapping)

    @property
    def alias_count(self) -> int:
        return self._synonyms.size

    @property
    def config(self) -> PipelineConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Core pipeline logic
    # ------------------------------------------------------------------ #

    def _ingest_document(self, doc: DocumentInput) -> IngestionResult:
        if doc.path is not None:
            return self.ingest_file(doc.path, doc.category, doc.source, doc.locale_hint)
        if doc.rows is not None:
            return self.ingest_rows(
                doc.source, doc.rows, doc.category, locale_hint=doc.locale_hint
            )
        return self.ingest_text(doc.source, doc.text or "", doc.category, doc.locale_hint)

    def _run(
        self,
        source: str,
        sniff: Callable[[], SniffResult],
        category: Optional[Union[DocumentCategory, str]],
    ) -> IngestionResult:
        """Execute every stage for one document."""
        with document_context(source):
            return self._run_stages(source, sniff, category)

    def _run_stages(
        self,
        source: str,
        sniff: Callable[[], SniffResult],
        category: Optional[Union[DocumentCategory, str]],
    ) -> IngestionResult:
        doc_category = DocumentCategory(category) if category is not None else None

        try:
            sniffed = sniff()
        except SchemaError as exc:
            logger.error("Schema error: %s", exc)
            return self._finish(
                SchemaBuilder.build_result(source, doc_category, issues=exc.issues)
            )

        if doc_category is None:
            doc_category, score = detect_category(source, sniffed.table)
            logger.info("Detected category %s (score %.2f)", doc_category.value, score)
        logger.info(
            "Sniffed %d column(s), delimiter %r, years %s, confidence %.2f",
            len(sniffed.schema.roles),
            sniffed.table.delimiter,
            list(sniffed.detected_years),
            sniffed.confidence,
        )

        normalization = self._field_normalizer.normalize(sniffed, doc_category)
        items, build_issues = self._builder.build(
            sniffed.table, normalization, source, doc_category, sniffed.decimal_hint
        )
        validation = self._validator.validate(
            items, extra_issues=normalization.issues + build_issues
        )

        persisted, storage_issues = self._persist(source, items, validation)
        issues = validation.issues + storage_issues

        if any(i.kind is IssueKind.STORAGE and i.is_error for i in storage_issues):
            status = "failed"
        else:
            status = "ok" if not any(i.is_error for i in issues) else "invalid"

        return self._finish(
            SchemaBuilder.build_result(
                source=source,
                category=doc_category,
                items=items,
                issues=issues,
                quality_score=validation.quality_score,
                confidence=sniffed.confidence,
                mapping_report=normalization.report,
                completeness=validation.completeness,
                persisted=persisted,
                status=status,
            )
        )

    def _persist(
        self,
        source: str,
        items: Tuple[LineItem, ...],
        validation: ValidationResult,
    ) -> Tuple[bool, Tuple[ValidationIssue, ...]]:
        """Write items according to ``persist_policy``; never raises."""
        if self._store is None:
            return False, ()

        issues: List[ValidationIssue] = []
        to_write: Sequence[LineItem] = items
        if self._config.persist_policy == "valid_rows":
            counts = Counter(i.key for i in items)
            duplicate_keys = {key for key, n in counts.items() if n > 1}
            if duplicate_keys:
                to_write = [i for i in items if i.key not in duplicate_keys]
                issues.append(
                    warning(
                        IssueKind.DUPLICATE,
                        f"Withheld {len(items) - len(to_write)} item(s) with duplicate keys",
                    )
                )
        elif not validation.is_valid:
            logger.warning(
                "Not persisting %r: %d validation error(s)", source, len(validation.errors)
            )
            return False, ()

        try:
            result = self._call_store(self._store.upsert_line_items, source, to_write)
        except StoreError as exc:
            issues.append(error(IssueKind.STORAGE, str(exc)))
            return False, tuple(issues)

        logger.info(
            "Persisted %r: written=%d replaced=%d", source, result.written, result.replaced
        )
        return True, tuple(issues)

    def _call_store(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a collaborator call with the configured timeout.

        Raises
        ------
        StoreTimeoutError
            When the call does not answer within ``store_timeout_seconds``.
            The call keeps running, so a write may still land.
        StoreError
            On any exception raised by the collaborator.
        """
        timeout = self._config.store_timeout_seconds
        future = self._store_executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as exc:
            cancelled = future.cancel()
            logger.error(
                "Store call %s timed out after %.1fs (cancelled=%s)",
                fn.__name__, timeout, cancelled,
            )
            outcome = "not started" if cancelled else "outcome unknown, it may still complete"
            raise StoreTimeoutError(
                f"Store call {fn.__name__} timed out after {timeout:g}s; {outcome}"
            ) from exc
        except StoreError:
            logger.exception("Store call %s failed", fn.__name__)
            raise
        except Exception as exc:
            logger.exception("Store call %s failed", fn.__name__)
            raise StoreError(f"Store call {fn.__name__} failed: {exc}") from exc

    def _finish(self, result: IngestionResult) -> IngestionResult:
        logger.info(
            "Pipeline complete for %r: status=%s items=%d errors=%d warnings=%d "
            "quality=%.1f",
            result.source,
            result.status,
            len(result.items),
            len(result.errors),
            len(result.warnings),
            result.quality_score,
        )

        if self._config.matching.strict_mode and result.errors:
            raise RuntimeError(
                f"Strict mode: {result.source!r} produced {len(result.errors)} "
                f"error(s):\n" + "\n".join(i.message for i in result.errors)
            )
        return result

    @staticmethod
    def _decode(data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError:
            # Spreadsheet CSV exports on Windows are often cp1252
            return data.decode("cp1252", errors="replace")
