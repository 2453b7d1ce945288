import pytest

from core.exceptions import InvalidRequestError, PermissionDeniedError
from database.models import RoleType
from services.luxor import LuxorError, build_query_params, resolve_endpoint, scope_to_user
from tests.conftest import auth_headers


def test_query_params_drop_selector_and_blanks():
    query = {"endpoint": "workspace", "currency": "BTC", "page": " ", "limit": "10"}
    assert build_query_params(query) == {"currency": "BTC", "limit": "10"}


def test_resolve_endpoint():
    assert resolve_endpoint("workspace", {}) == "/workspace"
    assert resolve_endpoint("active-workers", {"currency": "BTC"}) == "/pool/active-workers/BTC"

    with pytest.raises(InvalidRequestError, match="required"):
        resolve_endpoint(None, {})
    with pytest.raises(InvalidRequestError, match="Unsupported endpoint"):
        resolve_endpoint("payouts", {})
    with pytest.raises(InvalidRequestError, match="currency"):
        resolve_endpoint("hashrate-history", {})


def test_client_is_pinned_to_own_subaccount(customer):
    scoped = scope_to_user(customer, {"subaccount_names": "someone_else", "currency": "BTC"})
    assert scoped == {"subaccount_names": "alice_sub", "currency": "BTC"}


def test_admin_query_is_untouched(admin):
    params = {"subaccount_names": "bob_sub"}
    assert scope_to_user(admin, params) == params


def test_client_without_subaccount(make_user):
    user = make_user("nosub@example.com", RoleType.CLIENT)
    with pytest.raises(PermissionDeniedError):
        scope_to_user(user, {})


# ==================== API ====================

def test_proxy_forwards_scoped_query(client, customer, luxor):
    luxor.response = {"workers": [{"name": "S21-0"}]}
    response = client.get(
        "/api/v1/luxor",
        params={"endpoint": "active-workers", "currency": "BTC", "subaccount_names": "bob_sub"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"] == {"workers": [{"name": "S21-0"}]}
    assert "timestamp" in body

    path, params = luxor.calls[0]
    assert path == "/pool/active-workers/BTC"
    assert params["subaccount_names"] == "alice_sub"


def test_proxy_rejects_unknown_endpoint(client, admin, luxor):
    response = client.get("/api/v1/luxor", params={"endpoint": "payouts"}, headers=auth_headers(admin))
    assert response.status_code == 400
    assert "Unsupported endpoint" in response.json()["detail"]
    assert luxor.calls == []


def test_proxy_passes_upstream_errors_through(client, admin, luxor):
    luxor.error = LuxorError(429, "Rate limited")
    response = client.get("/api/v1/luxor", params={"endpoint": "workspace"}, headers=auth_headers(admin))
    assert response.status_code == 429
    assert response.json() == {"success": False, "error": "Rate limited"}


def test_proxy_needs_authentication(client):
    response = client.get("/api/v1/luxor", params={"endpoint": "workspace"})
    assert response.status_code in (401, 403)
