from starlette.requests import Request
import pytest

from app.core.tenant_settings import TenantSettings, load_tenant_settings, parse_tenant_id
from app.services.tenant_resolver import TenantResolver


def _build_request(path: str, headers: dict[str, str] | None = None, path_params: dict | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": path.split("?", 1)[0],
        "query_string": path.split("?", 1)[1].encode() if "?" in path else b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "path_params": path_params or {},
    }
    return Request(scope)


NO_DEFAULT = TenantSettings(default_tenant_id=None)


def test_header_wins_over_query_default_and_path():
    request = _build_request(
        "/api/restaurants/4/menu?tenant_id=21",
        headers={"X-Tenant-Id": "42"},
        path_params={"tenant_id": "4"},
    )

    tenant_id = TenantResolver.resolve_tenant_id(request, TenantSettings(default_tenant_id=3))

    assert tenant_id == 42


def test_query_param_used_when_header_missing():
    request = _build_request("/api/orders?tenant_id=21")

    assert TenantResolver.resolve_tenant_id(request, TenantSettings(default_tenant_id=3)) == 21


def test_default_wins_over_path_param():
    request = _build_request("/api/restaurants/4", path_params={"restaurant_id": "4"})

    assert TenantResolver.resolve_tenant_id(request, TenantSettings(default_tenant_id=3)) == 3


def test_path_param_used_as_last_resort():
    request = _build_request("/api/restaurants/4", path_params={"restaurant_id": "4"})

    assert TenantResolver.resolve_tenant_id(request, NO_DEFAULT) == 4


def test_legacy_header_and_query_names_are_accepted():
    by_header = _build_request("/api/orders", headers={"X-Restaurant-Id": "8"})
    by_query = _build_request("/api/orders?restaurantId=9")

    assert TenantResolver.resolve_tenant_id(by_header, NO_DEFAULT) == 8
    assert TenantResolver.resolve_tenant_id(by_query, NO_DEFAULT) == 9


def test_malformed_header_falls_through_to_query():
    request = _build_request("/api/orders?tenant_id=5", headers={"X-Tenant-Id": "abc"})

    assert TenantResolver.resolve_tenant_id(request, NO_DEFAULT) == 5


def test_no_source_resolves_to_none():
    request = _build_request("/api/orders")

    assert TenantResolver.resolve_tenant_id(request, NO_DEFAULT) is None


@pytest.mark.parametrize("raw", ["", "0", "-3", "1.5", "12abc", " ", "١٢", True])
def test_parse_tenant_id_rejects_non_positive_or_non_integer(raw):
    assert parse_tenant_id(raw) is None


@pytest.mark.parametrize("raw,expected", [("7", 7), (" 12 ", 12), (15, 15)])
def test_parse_tenant_id_accepts_positive_integers(raw, expected):
    assert parse_tenant_id(raw) == expected


def test_load_tenant_settings_ignores_malformed_default():
    assert load_tenant_settings("not-a-number").default_tenant_id is None
    assert load_tenant_settings("11").default_tenant_id == 11
