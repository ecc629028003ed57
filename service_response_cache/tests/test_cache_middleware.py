"""
Unit tests for the response cache middleware and engine.
"""

import itertools
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse, RedirectResponse
from fastapi.testclient import TestClient

from shared.circuit_breaker import CircuitBreaker
from shared.config import ResponseCacheConfig
from shared.errors import CacheStoreError
from service_response_cache.app.caching import (
    CacheEntry,
    InMemoryCacheStore,
    RedisCacheStore,
    ResponseCacheEngine,
    ResponseCacheMiddleware,
    cache_directives,
)

FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []
        self.histograms = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))

    def observe_histogram(self, metric_name: str, value: float, **labels):
        self.histograms.append((metric_name, value, labels))

    def outcomes(self):
        return [labels["outcome"] for name, labels in self.counters if name == "response_cache_lookups_total"]


def build_app(engine: ResponseCacheEngine):
    """Small app exercising the directive forms; handler bodies count invocations."""
    app = FastAPI()
    app.add_middleware(ResponseCacheMiddleware, engine=engine)
    calls = itertools.count(1)
    app.state.calls = calls

    @app.get("/items/{item_id}", name="item")
    async def get_item(item_id: str):
        return PlainTextResponse(f"item {item_id} #{next(calls)}")

    @app.get("/plain")
    async def plain():
        return PlainTextResponse(f"plain #{next(calls)}")

    @app.get("/opt-out")
    @cache_directives("no-cache")
    async def opt_out():
        return PlainTextResponse(f"opt-out #{next(calls)}")

    @app.get("/moved")
    async def moved():
        next(calls)
        return RedirectResponse("/plain", status_code=302)

    @app.post("/items/{item_id}", name="item-update")
    async def update_item(item_id: str):
        return PlainTextResponse(f"updated {item_id} #{next(calls)}")

    return app


class TestResponseCacheMiddleware:
    """Test cases for ResponseCacheMiddleware with an in-memory store."""

    @pytest.fixture
    def metrics(self):
        return DummyMetrics()

    @pytest.fixture
    def store(self):
        return InMemoryCacheStore()

    @pytest.fixture
    def engine(self, store, metrics):
        return ResponseCacheEngine(
            ResponseCacheConfig.cache_everything(life=60),
            store,
            metrics=metrics,
            clock=lambda: FIXED_NOW,
        )

    @pytest.fixture
    def app(self, engine):
        return build_app(engine)

    @pytest.fixture
    def client(self, app):
        return TestClient(app)

    def test_first_request_stores_and_stamps_headers(self, client, store, metrics):
        response = client.get("/items/1")

        assert response.status_code == 200
        assert response.text == "item 1 #1"
        assert response.headers["last-modified"] == "Tue, 02 Jan 2024 03:04:05 GMT"
        assert response.headers["cache-control"] == "public"
        assert len(store) == 1
        assert metrics.outcomes() == ["miss"]
        assert ("response_cache_stores_total", {}) in metrics.counters

    def test_second_request_is_served_from_cache(self, client, metrics):
        first = client.get("/items/1")
        second = client.get("/items/1")

        assert second.text == first.text
        assert second.headers["last-modified"] == first.headers["last-modified"]
        assert second.headers["content-type"].startswith("text/plain")
        assert metrics.outcomes() == ["miss", "hit"]

    def test_distinct_parameters_are_cached_separately(self, client):
        assert client.get("/items/1").text == "item 1 #1"
        assert client.get("/items/2").text == "item 2 #2"
        assert client.get("/items/1?page=2").text == "item 1 #3"
        assert client.get("/items/1").text == "item 1 #1"

    def test_no_cache_request_regenerates(self, client, metrics):
        first = client.get("/items/1")
        fresh = client.get("/items/1", headers={"Cache-Control": "no-cache"})
        after = client.get("/items/1")

        assert fresh.text != first.text
        assert fresh.headers["cache-control"] == "public"
        assert after.text == fresh.text
        assert metrics.outcomes() == ["miss", "bypass", "hit"]

    def test_opted_out_route_passes_through(self, client, store, metrics):
        first = client.get("/opt-out")
        second = client.get("/opt-out")

        assert first.text != second.text
        assert "last-modified" not in second.headers
        assert "cache-control" not in second.headers
        assert len(store) == 0
        assert metrics.outcomes() == ["ineligible", "ineligible"]

    def test_non_200_response_is_not_stored(self, app, client, store, metrics):
        first = client.get("/moved", follow_redirects=False)
        second = client.get("/moved", follow_redirects=False)

        assert first.status_code == 302
        assert second.status_code == 302
        assert second.headers["location"] == "/plain"
        assert "last-modified" not in second.headers
        assert len(store) == 0
        assert next(app.state.calls) == 3
        assert metrics.outcomes() == ["miss", "uncacheable_status", "miss", "uncacheable_status"]

    def test_post_is_never_cached(self, client, store):
        first = client.post("/items/1")
        second = client.post("/items/1")

        assert first.text != second.text
        assert "last-modified" not in second.headers
        assert len(store) == 0

    def test_unrouted_path_passes_through(self, client, metrics):
        response = client.get("/does-not-exist")

        assert response.status_code == 404
        assert metrics.outcomes() == []

    def test_handler_duration_is_observed(self, client, metrics):
        client.get("/plain")

        assert metrics.histograms[0][0] == "response_cache_handler_duration_seconds"

    def test_existing_entry_wins_over_handler_output(self, client, store):
        """Read-or-write: an entry written by a racing request is returned verbatim."""
        entry = CacheEntry.create(b"from another worker", "text/plain", now=FIXED_NOW)
        original_has = store.has
        calls = {"count": 0}

        async def has_after_race(key):
            calls["count"] += 1
            if calls["count"] == 2:
                await store.put(key, entry, 5)
            return await original_has(key)

        store.has = has_after_race

        response = client.get("/plain")

        assert response.text == "from another worker"


class TestFailOpen:
    """Test cases for store failures."""

    @pytest.fixture
    def metrics(self):
        return DummyMetrics()

    @pytest.fixture
    def failing_store(self):
        store = AsyncMock()
        store.has.side_effect = CacheStoreError("has", "connection refused")
        store.get.side_effect = CacheStoreError("get", "connection refused")
        store.put.side_effect = CacheStoreError("put", "connection refused")
        store.forget.side_effect = CacheStoreError("forget", "connection refused")
        return store

    def make_client(self, store, metrics, breaker=None):
        engine = ResponseCacheEngine(
            ResponseCacheConfig.cache_everything(),
            store,
            metrics=metrics,
            breaker=breaker,
            clock=lambda: FIXED_NOW,
        )
        return TestClient(build_app(engine))

    def test_unreachable_store_passes_through(self, failing_store, metrics):
        client = self.make_client(failing_store, metrics)

        first = client.get("/items/1")
        second = client.get("/items/1")

        assert first.status_code == 200
        assert first.text == "item 1 #1"
        assert second.text == "item 1 #2"
        assert "last-modified" not in second.headers
        failing_store.put.assert_not_called()
        assert ("response_cache_store_errors_total", {"operation": "has"}) in metrics.counters

    def test_failed_write_is_suppressed(self, metrics):
        store = AsyncMock()
        store.has.return_value = False
        store.put.side_effect = CacheStoreError("put", "read-only replica")
        client = self.make_client(store, metrics)

        response = client.get("/items/1")

        assert response.status_code == 200
        assert response.text == "item 1 #1"
        assert "last-modified" not in response.headers
        assert ("response_cache_store_errors_total", {"operation": "put"}) in metrics.counters

    def test_failed_invalidation_still_serves_fresh_content(self, metrics):
        store = AsyncMock()
        store.has.return_value = True
        store.forget.side_effect = CacheStoreError("forget", "timeout")
        client = self.make_client(store, metrics)

        response = client.get("/items/1", headers={"Cache-Control": "no-cache"})

        assert response.status_code == 200
        assert response.text == "item 1 #1"
        store.put.assert_not_called()

    def test_open_breaker_skips_the_store(self, failing_store, metrics):
        breaker = CircuitBreaker(
            failure_threshold=1,
            recovery_timeout=300,
            expected_exception=CacheStoreError,
            name="test_store",
        )
        client = self.make_client(failing_store, metrics, breaker=breaker)

        client.get("/items/1")
        client.get("/items/1")
        client.get("/items/1")

        assert breaker.is_open()
        assert failing_store.has.await_count == 1

    def test_malformed_redis_url_passes_through(self, metrics):
        client = self.make_client(RedisCacheStore("notaurl"), metrics)

        response = client.get("/items/1")

        assert response.status_code == 200
        assert response.text == "item 1 #1"
        assert "last-modified" not in response.headers
        assert ("response_cache_store_errors_total", {"operation": "has"}) in metrics.counters
