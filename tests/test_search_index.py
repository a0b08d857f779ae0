"""
Tests for the Elasticsearch adapter: startup retry with backoff, lazy
re-check after a lost connection, and response normalization.
"""

from types import SimpleNamespace

import pytest

from storefront.tools.search_index import (
    INDEX_MAPPINGS,
    SearchIndex,
    SearchUnavailable,
    build_document,
)


class TestConnection:
    def test_check_creates_index(self, settings, fake_es, clock):
        index = SearchIndex(settings, client=fake_es, clock=clock)
        assert index.check_connection() is True
        assert "products" in fake_es.indices_created
        assert fake_es.mappings == INDEX_MAPPINGS

    def test_retry_with_exponential_backoff(self, settings, fake_es, clock):
        fake_es.up = False
        index = SearchIndex(settings, client=fake_es, clock=clock)
        sleeps = []
        assert index.connect_with_retry(retries=4, delay=5.0, sleep=sleeps.append) is False
        assert sleeps == [5.0, 10.0, 20.0]
        assert index.available is False

    def test_retry_succeeds_eventually(self, settings, fake_es, clock):
        fake_es.up = False
        index = SearchIndex(settings, client=fake_es, clock=clock)

        def sleep(seconds):
            fake_es.up = True

        assert index.connect_with_retry(retries=5, delay=1.0, sleep=sleep) is True
        assert index.available is True

    def test_lazy_recheck(self, search_index, fake_es, clock):
        fake_es.up = False
        with pytest.raises(SearchUnavailable):
            search_index.count()
        assert search_index.available is False

        fake_es.up = True
        assert search_index.ensure_available() is False
        clock.advance(29)
        assert search_index.ensure_available() is False
        clock.advance(1)
        assert search_index.ensure_available() is True
        assert search_index.count() == 0


class TestNormalization:
    def test_total_as_int_or_object(self, settings, clock):
        client = SimpleNamespace(search=lambda **kw: {"hits": {"total": 3, "hits": []}})
        index = SearchIndex(settings, client=client, clock=clock)
        index.available = True
        assert index.search().total == 3

        client.search = lambda **kw: SimpleNamespace(body={"hits": {"total": {"value": 9}, "hits": []}})
        assert index.search().total == 9

    def test_suggestions_flattened_and_deduplicated(self, settings, clock):
        body = {
            "hits": {"total": {"value": 0}, "hits": []},
            "suggest": {"term_suggest": [
                {"options": [{"text": "giày"}, {"text": "giầy"}]},
                {"options": [{"text": "giày"}]},
            ]},
        }
        client = SimpleNamespace(search=lambda **kw: body)
        index = SearchIndex(settings, client=client, clock=clock)
        index.available = True
        assert index.search().suggestions == {"term_suggest": ["giày", "giầy"]}

    def test_bulk_result(self, search_index, fake_es):
        fake_es.fail_ids = {"2"}
        result = search_index.bulk_index([{"id": 1}, {"id": 2}, {"id": 3}])
        assert result.indexed == 2
        assert result.failed == [("2", "failed to parse")]

    def test_empty_bulk_is_noop(self, search_index, fake_es):
        assert search_index.bulk_index([]).indexed == 0
        assert fake_es.bulk_calls == []

    def test_get_source(self, search_index, make_product):
        product = make_product(name="Áo dài")
        assert search_index.get_source(product.id)["name"] == "Áo dài"
        assert search_index.get_source(12345) is None
        assert search_index.document_exists(product.id) is True


class TestBuildDocument:
    def test_projection(self, make_product):
        product = make_product(name="Áo dài", colors=["Đỏ"], views=2, indexed=False)
        doc = build_document(product)
        assert doc["id"] == product.id
        assert doc["name_suggest"] == "Áo dài"
        assert doc["colors"] == ["Đỏ"]
        assert doc["views"] == 2
        assert doc["deleted_at"] is None
        assert isinstance(doc["created_at"], str)
