"""
Tests for the application shell: banner, health, metrics, error handling
and configuration loading.
"""

import pytest

from storefront.config import Settings
from storefront.main import app
from storefront.metrics import MetricsCollector


class TestHealth:
    def test_root(self, client):
        data = client.get("/").json()
        assert data["status"] == "operational"

    def test_all_healthy(self, client):
        data = client.get("/health").json()
        assert data == {
            "service": "healthy",
            "database": "healthy",
            "cache": "healthy",
            "search": "healthy",
            "search_documents": 0,
        }

    def test_reports_indexed_documents(self, client, make_product):
        make_product()
        make_product(name="Quần jean")
        assert client.get("/health").json()["search_documents"] == 2

    def test_degraded_dependencies(self, client, fake_redis, fake_es, search_index):
        fake_redis.down = True
        fake_es.up = False
        search_index.available = False
        data = client.get("/health").json()
        assert data["service"] == "degraded"
        assert data["cache"].startswith("unhealthy")
        assert data["search"] == "unavailable"


class TestMetrics:
    def test_search_requests_recorded(self, client, make_product):
        make_product()
        client.get("/api/search")
        client.get("/api/search")
        summary = client.get("/metrics").json()
        assert summary["endpoints"]["search"]["total_requests"] == 2
        assert summary["cache"]["by_kind"]["search"] == {"hits": 1, "misses": 1, "hit_rate_pct": 50.0}

    def test_percentiles_need_ten_samples(self):
        collector = MetricsCollector()
        for ms in range(9):
            collector.record_latency("search", float(ms))
        assert collector.get_percentile("search", 50) is None
        collector.record_latency("search", 9.0)
        assert collector.get_percentile("search", 50) == 5.0
        assert collector.get_percentile("search", 99) == 9.0

    def test_error_rate(self):
        collector = MetricsCollector()
        collector.record_latency("reindex", 1.0)
        collector.record_latency("reindex", 1.0)
        collector.record_error("reindex")
        assert collector.get_error_rate("reindex") == 50.0


class TestErrors:
    @pytest.fixture
    def boom_route(self):
        @app.get("/_test/boom")
        def boom():
            raise RuntimeError("kaboom")
        yield
        app.router.routes[:] = [r for r in app.router.routes if getattr(r, "path", None) != "/_test/boom"]

    def test_unhandled_hidden_outside_development(self, client, boom_route):
        response = client.get("/_test/boom")
        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error", "type": "RuntimeError"}

    def test_unhandled_detail_in_development(self, client, settings, boom_route):
        settings.env = "development"
        response = client.get("/_test/boom")
        assert response.status_code == 500
        assert response.json()["detail"] == "kaboom"


class TestSettings:
    def test_yaml_then_env(self, tmp_path, monkeypatch):
        config = tmp_path / "config.yaml"
        config.write_text(
            "cache:\n  cache_ttl_search: 120\nsearch:\n  elasticsearch_index: catalog_v2\n"
        )
        monkeypatch.setenv("CACHE_TTL_SEARCH", "60")
        monkeypatch.setenv("ELASTICSEARCH_RETRY_DELAY", "0.5")
        monkeypatch.setenv("STOREFRONT_SKIP_CONNECT", "true")

        settings = Settings.from_yaml(config)
        assert settings.cache_ttl_search == 60
        assert settings.elasticsearch_index == "catalog_v2"
        assert settings.elasticsearch_retry_delay == 0.5
        assert settings.skip_connect is True

    def test_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("REINDEX_BATCH_SIZE", raising=False)
        settings = Settings.from_yaml(tmp_path / "nope.yaml")
        assert settings.reindex_batch_size == 5000
        assert settings.cache_namespace == "catalog"

    def test_is_development(self):
        assert Settings(env="development").is_development
        assert Settings(env="DEV").is_development
        assert not Settings(env="production").is_development
