"""
Unit tests for the in-memory line-item store.
"""

from __future__ import annotations

from typing import Optional

import pytest

from statement_mapper.schema import METRIC_DEFINITIONS, DocumentCategory, LineItem
from statement_mapper.store import InMemoryLineItemStore, LineItemFilter, StoreError


def _item(
    source: str = "a.csv",
    code: Optional[str] = "revenue_total",
    year: int = 2024,
    month: Optional[int] = None,
    category: DocumentCategory = DocumentCategory.PYG,
) -> LineItem:
    return LineItem(
        metric_code=code,
        raw_concept=code or "otra",
        category=category,
        period_year=year,
        period_month=month,
        amount=1.0,
        source=source,
    )


@pytest.fixture
def store() -> InMemoryLineItemStore:
    return InMemoryLineItemStore()


# ======================================================================
# Upsert
# ======================================================================

class TestUpsert:
    def test_write_new_source(self, store: InMemoryLineItemStore) -> None:
        result = store.upsert_line_items("a.csv", [_item(), _item(code="net_income")])
        assert (result.written, result.replaced) == (2, 0)
        assert store.sources() == ["a.csv"]

    def test_replace_by_source(self, store: InMemoryLineItemStore) -> None:
        store.upsert_line_items("a.csv", [_item(), _item(code="net_income")])
        result = store.upsert_line_items("a.csv", [_item()])
        assert (result.written, result.replaced) == (1, 2)
        assert len(store.query_line_items(LineItemFilter())) == 1

    def test_other_sources_untouched(self, store: InMemoryLineItemStore) -> None:
        store.upsert_line_items("a.csv", [_item("a.csv")])
        store.upsert_line_items("b.csv", [_item("b.csv")])
        store.upsert_line_items("a.csv", [])
        assert [i.source for i in store.query_line_items(LineItemFilter())] == ["b.csv"]

    def test_foreign_source_rejected(self, store: InMemoryLineItemStore) -> None:
        with pytest.raises(StoreError):
            store.upsert_line_items("a.csv", [_item("b.csv")])
        assert store.sources() == []

    def test_delete_source(self, store: InMemoryLineItemStore) -> None:
        store.upsert_line_items("a.csv", [_item(), _item(code="net_income")])
        assert store.delete_source("a.csv") == 2
        assert store.delete_source("a.csv") == 0


# ======================================================================
# Queries
# ======================================================================

class TestQuery:
    @pytest.fixture(autouse=True)
    def _seed(self, store: InMemoryLineItemStore) -> None:
        store.upsert_line_items("a.csv", [
            _item("a.csv", "revenue_total", 2023),
            _item("a.csv", "revenue_total", 2024, month=1),
            _item("a.csv", "cash", 2024, category=DocumentCategory.BALANCE),
        ])
        store.upsert_line_items("b.csv", [_item("b.csv", None, 2024)])

    def test_empty_filter_matches_all(self, store: InMemoryLineItemStore) -> None:
        assert len(store.query_line_items(LineItemFilter())) == 4

    def test_by_source(self, store: InMemoryLineItemStore) -> None:
        assert len(store.query_line_items(LineItemFilter(source="b.csv"))) == 1

    def test_by_metric_and_year(self, store: InMemoryLineItemStore) -> None:
        items = store.query_line_items(
            LineItemFilter(metric_code="revenue_total", period_year=2024)
        )
        assert [i.period_month for i in items] == [1]

    def test_by_category(self, store: InMemoryLineItemStore) -> None:
        items = store.query_line_items(
            LineItemFilter(category=DocumentCategory.BALANCE)
        )
        assert [i.metric_code for i in items] == ["cash"]

    def test_by_month(self, store: InMemoryLineItemStore) -> None:
        assert len(store.query_line_items(LineItemFilter(period_month=1))) == 1


class TestMetricDictionary:
    def test_default_catalogue(self, store: InMemoryLineItemStore) -> None:
        assert store.get_metric_dictionary() == list(METRIC_DEFINITIONS)
