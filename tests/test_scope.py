"""Tests for the scope model and resolution context."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from scopeauth.auth.context import ResolutionContext
from scopeauth.auth.metadata import ApiMetaData, RouteProviderMetaData
from scopeauth.auth.scope import Api, AuthScope, InstanceDefault, RouteProvider


@dataclass(frozen=True)
class Unnamed:
    code: int


class TestAuthScope:
    """Tests for AuthScope variants."""

    def test_instance_default_instances_are_equal(self):
        """Test every InstanceDefault equals every other and hashes the same."""
        assert InstanceDefault() == InstanceDefault()
        assert hash(InstanceDefault()) == hash(AuthScope.instance_default())

    def test_api_scope_equality_follows_payload(self):
        """Test Api scopes are equal iff their payloads are equal."""
        assert Api(ApiMetaData(name="orders")) == Api(ApiMetaData(name="orders"))
        assert hash(Api(ApiMetaData(name="orders"))) == hash(Api(ApiMetaData(name="orders")))
        assert Api(ApiMetaData(name="orders")) != Api(ApiMetaData(name="billing"))

    def test_api_never_equals_route_provider(self):
        """Test an Api and a RouteProvider with the same payload differ."""
        payload = ApiMetaData(name="shared")
        assert Api(payload) != RouteProvider(payload)
        assert Api(payload) != InstanceDefault()

    def test_none_payload_rejected(self):
        """Test scopes require a payload."""
        with pytest.raises(ValueError):
            Api(None)
        with pytest.raises(ValueError):
            RouteProvider(None)

    def test_factories(self):
        """Test the static factory helpers build the matching variants."""
        api = ApiMetaData(name="orders")
        route = RouteProviderMetaData(name="spa")
        assert AuthScope.api(api) == Api(api)
        assert AuthScope.route_provider(route) == RouteProvider(route)
        assert isinstance(AuthScope.instance_default(), InstanceDefault)

    def test_string_rendering(self):
        """Test scopes render with the payload's name."""
        assert str(InstanceDefault()) == "AuthScope.InstanceDefault"
        assert str(Api(ApiMetaData(name="orders"))) == "AuthScope.Api{apiName=orders}"
        assert str(RouteProvider(RouteProviderMetaData(name="spa"))) == "AuthScope.RouteProvider{name=spa}"

    def test_unnamed_payload_renders_unknown(self):
        """Test payloads without a name render as unknown."""
        assert str(Api(Unnamed(code=1))) == "AuthScope.Api{apiName=unknown}"


class TestResolutionContext:
    """Tests for ResolutionContext builders."""

    def test_builders_return_new_context(self):
        """Test with_* builders leave the original context unchanged."""
        base = ResolutionContext()
        updated = base.with_request_path("/api/orders").with_api_name("orders")
        assert base.request_path is None
        assert updated.request_path == "/api/orders"
        assert updated.api_name == "orders"

    def test_api_metadata_copies_name(self):
        """Test with_api_metadata fills api_name from the payload."""
        context = ResolutionContext().with_api_metadata(ApiMetaData(name="orders"))
        assert context.api_name == "orders"

    def test_route_metadata_copies_name(self):
        """Test with_route_metadata fills route_provider_name from the payload."""
        context = ResolutionContext().with_route_metadata(RouteProviderMetaData(name="spa"))
        assert context.route_provider_name == "spa"

    def test_for_path_longest_prefix(self):
        """Test for_path attaches the API with the longest matching prefix."""
        api = ApiMetaData(name="api", path_prefix="/api")
        orders = ApiMetaData(name="orders", path_prefix="/api/orders/")
        spa = RouteProviderMetaData(name="spa", path_prefix="/")

        context = ResolutionContext.for_path("/api/orders/42", apis=[api, orders], routes=[spa])

        assert context.api_metadata is orders
        assert context.api_name == "orders"
        assert context.route_metadata is spa
        assert context.request_path == "/api/orders/42"

    def test_for_path_requires_segment_boundary(self):
        """Test a prefix only matches on a path segment boundary."""
        api = ApiMetaData(name="api", path_prefix="/api")
        context = ResolutionContext.for_path("/apidocs", apis=[api])
        assert context.api_metadata is None
