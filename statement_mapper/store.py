"""
Line-item persistence.

The pipeline talks to storage only through the ``LineItemStore`` protocol so
that any backend can be injected.  ``InMemoryLineItemStore`` is the
thread-safe reference implementation used by the HTTP app and the tests.

Writes are replace-by-source: upserting a source discards every item it
previously held, atomically, so re-ingesting a document is idempotent.
A write that timed out may still land after the caller has given up on it;
re-ingesting the document is the way to settle its state.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from statement_mapper.logging_setup import get_logger
from statement_mapper.schema import (
    METRIC_DEFINITIONS,
    DocumentCategory,
    LineItem,
    MetricDefinition,
)

logger = get_logger("store")


class StoreError(RuntimeError):
    """A persistence call failed."""


class StoreTimeoutError(StoreError):
    """A persistence call did not answer in time.

    The call is not interrupted, so its outcome is unknown: a write may
    still complete after this is raised.
    """


@dataclass(frozen=True)
class LineItemFilter:
    """Query criteria; ``None`` fields match everything."""

    source: Optional[str] = None
    metric_code: Optional[str] = None
    category: Optional[DocumentCategory] = None
    period_year: Optional[int] = None
    period_month: Optional[int] = None

    def matches(self, item: LineItem) -> bool:
        return (
            (self.source is None or item.source == self.source)
            and (self.metric_code is None or item.metric_code == self.metric_code)
            and (self.category is None or item.category is self.category)
            and (self.period_year is None or item.period_year == self.period_year)
            and (self.period_month is None or item.period_month == self.period_month)
        )


@dataclass(frozen=True)
class UpsertResult:
    source: str
    written: int
    replaced: int

    def to_dict(self) -> dict:
        return {"source": self.source, "written": self.written, "replaced": self.replaced}


class LineItemStore(Protocol):
    def upsert_line_items(self, source: str, items: Sequence[LineItem]) -> UpsertResult:
        ...

    def query_line_items(self, filter: LineItemFilter) -> List[LineItem]:
        ...

    def get_metric_dictionary(self) -> List[MetricDefinition]:
        ...


class InMemoryLineItemStore:
    """Dictionary-backed store guarded by a lock."""

    def __init__(
        self, definitions: Sequence[MetricDefinition] = METRIC_DEFINITIONS
    ) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, Tuple[LineItem, ...]] = {}
        self._definitions = tuple(definitions)

    def upsert_line_items(self, source: str, items: Sequence[LineItem]) -> UpsertResult:
        foreign = {i.source for i in items if i.source != source}
        if foreign:
            raise StoreError(
                f"Items for source {source!r} carry other sources: {sorted(foreign)}"
            )
        with self._lock:
            replaced = len(self._items.get(source, ()))
            self._items[source] = tuple(items)
        logger.info(
            "Upserted %d item(s) for %r (replaced %d)", len(items), source, replaced
        )
        return UpsertResult(source=source, written=len(items), replaced=replaced)

    def query_line_items(self, filter: LineItemFilter) -> List[LineItem]:
        with self._lock:
            snapshot = list(self._items.values())
        return [item for items in snapshot for item in items if filter.matches(item)]

    def get_metric_dictionary(self) -> List[MetricDefinition]:
        return list(self._definitions)

    def sources(self) -> List[str]:
        with self._lock:
            return sorted(self._items)

    def delete_source(self, source: str) -> int:
        with self._lock:
            removed = self._items.pop(source, ())
        return len(removed)
