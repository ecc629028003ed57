"""
Unit tests for CacheKeyDeriver.
"""

import pytest
from starlette.datastructures import QueryParams

from service_response_cache.app.caching.directives import RouteDescriptor
from service_response_cache.app.caching.keys import CacheKeyDeriver, DEFAULT_KEY_PREFIX


class TestCacheKeyDeriver:
    """Test cases for CacheKeyDeriver."""

    @pytest.fixture
    def deriver(self):
        return CacheKeyDeriver()

    @pytest.fixture
    def named_route(self):
        return RouteDescriptor(uri_template="/reports/{report_id}", name="report-detail")

    @pytest.fixture
    def unnamed_route(self):
        return RouteDescriptor(uri_template="/reports/{report_id}")

    def test_key_is_namespaced(self, deriver, named_route):
        key = deriver.derive_key(named_route, {"report_id": "1"})
        assert key.startswith(DEFAULT_KEY_PREFIX)
        # sha256 hex digest
        assert len(key) == len(DEFAULT_KEY_PREFIX) + 64

    def test_custom_prefix(self, named_route):
        key = CacheKeyDeriver("acme.pages.").derive_key(named_route)
        assert key.startswith("acme.pages.")

    def test_key_is_deterministic(self, deriver, named_route):
        first = deriver.derive_key(named_route, {"report_id": "1"}, {"page": "2"})
        second = deriver.derive_key(named_route, {"report_id": "1"}, {"page": "2"})
        assert first == second

    def test_query_order_does_not_matter(self, deriver, named_route):
        first = deriver.derive_key(named_route, {}, {"a": 1, "b": 2})
        second = deriver.derive_key(named_route, {}, {"b": 2, "a": 1})
        assert first == second

    def test_path_parameter_order_does_not_matter(self, deriver):
        route = RouteDescriptor(uri_template="/{region}/{year}")
        first = deriver.derive_key(route, {"region": "eu", "year": "2024"})
        second = deriver.derive_key(route, {"year": "2024", "region": "eu"})
        assert first == second

    def test_query_string_order_does_not_matter(self, deriver, named_route):
        first = deriver.derive_key(named_route, {}, QueryParams("a=1&b=2&b=3"))
        second = deriver.derive_key(named_route, {}, QueryParams("b=3&a=1&b=2"))
        assert first == second

    def test_parameter_value_changes_key(self, deriver, named_route):
        first = deriver.derive_key(named_route, {"report_id": "1"}, {"page": "1"})
        assert first != deriver.derive_key(named_route, {"report_id": "2"}, {"page": "1"})
        assert first != deriver.derive_key(named_route, {"report_id": "1"}, {"page": "2"})

    def test_repeated_query_values_are_distinguished(self, deriver, named_route):
        single = deriver.derive_key(named_route, {}, QueryParams("tag=a"))
        repeated = deriver.derive_key(named_route, {}, QueryParams("tag=a&tag=b"))
        assert single != repeated

    def test_path_and_query_parameters_do_not_collide(self, deriver, named_route):
        as_path = deriver.derive_key(named_route, {"page": "1"}, {})
        as_query = deriver.derive_key(named_route, {}, {"page": "1"})
        assert as_path != as_query

    def test_separator_characters_in_values_do_not_collide(self, deriver, named_route):
        first = deriver.derive_key(named_route, {}, {"a": "1&b=2"})
        second = deriver.derive_key(named_route, {}, {"a": "1", "b": "2"})
        assert first != second

    def test_different_routes_get_different_keys(self, deriver):
        first = RouteDescriptor(uri_template="/a")
        second = RouteDescriptor(uri_template="/b")
        assert deriver.derive_key(first) != deriver.derive_key(second)

    def test_named_route_key_survives_template_mutation(self, deriver, named_route):
        before = deriver.derive_key(named_route, {"report_id": "1"})
        named_route.uri_template = "/v2/reports/{report_id}"
        assert deriver.derive_key(named_route, {"report_id": "1"}) == before

    def test_unnamed_route_key_follows_template(self, deriver, unnamed_route):
        before = deriver.derive_key(unnamed_route, {"report_id": "1"})
        unnamed_route.uri_template = "/v2/reports/{report_id}"
        assert deriver.derive_key(unnamed_route, {"report_id": "1"}) != before

    def test_routes_sharing_a_name_share_keys(self, deriver):
        first = RouteDescriptor(uri_template="/old", name="landing")
        second = RouteDescriptor(uri_template="/new", name="landing")
        assert deriver.derive_key(first) == deriver.derive_key(second)

    def test_missing_parameters_equal_empty_parameters(self, deriver, named_route):
        assert deriver.derive_key(named_route) == deriver.derive_key(named_route, {}, [])
