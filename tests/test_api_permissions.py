"""
tests/test_api_permissions.py -- Integration tests for the role/permission API.

Fixtures used (from conftest.py):
  api_client -- (TestClient, admin access token, admin account id); the
                catalog is seeded and the admin holds the admin role
  hasher     -- fast PasswordHasher for extra accounts

Each test that needs a non-admin caller creates one and logs it in through
the real login route, so its token is minted the same way a client's is.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import auth_header, make_account

from api.main import app

BASE = "/api/v1"


def _member(client, hasher, email: str = "member@example.com", role: str | None = None) -> tuple[int, str]:
    """Create an account, optionally grant it a seeded role, and return (id, access token)."""
    account_id = make_account(app.state.accounts, hasher, email, "password123")
    if role is not None:
        graph = app.state.graph
        graph.grant_role(account_id, graph.get_role_by_name(role).id, granted_by=None)
    resp = client.post(f"{BASE}/auth/login", json={"email": email, "password": "password123"})
    return account_id, resp.json()["access_token"]


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


def test_list_roles(api_client) -> None:
    client, token, _ = api_client
    names = [r["name"] for r in client.get(f"{BASE}/roles", headers=auth_header(token)).json()]
    assert names == ["admin", "guest", "manager", "user"]


def test_roles_require_auth(api_client) -> None:
    client, _, _ = api_client
    resp = client.get(f"{BASE}/roles")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_invalid"


def test_roles_require_permission(api_client, hasher) -> None:
    client, _, _ = api_client
    _, token = _member(client, hasher, role="user")
    resp = client.get(f"{BASE}/roles", headers=auth_header(token))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "permission_denied"


def test_role_crud(api_client) -> None:
    client, token, _ = api_client
    headers = auth_header(token)
    created = client.post(f"{BASE}/roles", json={"name": "editor", "description": "Edits"}, headers=headers)
    assert created.status_code == 201
    role_id = created.json()["id"]

    assert client.post(f"{BASE}/roles", json={"name": "editor"}, headers=headers).status_code == 409

    patched = client.patch(f"{BASE}/roles/{role_id}", json={"description": "Edits articles"}, headers=headers)
    assert patched.json()["description"] == "Edits articles"
    assert client.patch(f"{BASE}/roles/{role_id}", json={}, headers=headers).status_code == 400

    assert client.delete(f"{BASE}/roles/{role_id}", headers=headers).status_code == 204
    missing = client.get(f"{BASE}/roles/{role_id}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


def test_role_name_format(api_client) -> None:
    client, token, _ = api_client
    resp = client.post(f"{BASE}/roles", json={"name": "Bad Name!"}, headers=auth_header(token))
    assert resp.status_code == 422


def test_role_detail_lists_permissions(api_client) -> None:
    client, token, _ = api_client
    user_role = app.state.graph.get_role_by_name("user")
    body = client.get(f"{BASE}/roles/{user_role.id}", headers=auth_header(token)).json()
    assert [p["name"] for p in body["permissions"]] == ["manage_own_account"]


# ---------------------------------------------------------------------------
# Permissions and edges
# ---------------------------------------------------------------------------


def test_permission_crud_and_filter(api_client) -> None:
    client, token, _ = api_client
    headers = auth_header(token)
    created = client.post(
        f"{BASE}/permissions",
        json={"name": "write_article", "resource": "article", "action": "write"},
        headers=headers,
    )
    assert created.status_code == 201
    perm_id = created.json()["id"]

    listed = client.get(f"{BASE}/permissions", params={"resource": "article"}, headers=headers).json()
    assert [p["name"] for p in listed] == ["write_article"]

    patched = client.patch(f"{BASE}/permissions/{perm_id}", json={"action": "publish"}, headers=headers)
    assert patched.json()["action"] == "publish"

    assert client.delete(f"{BASE}/permissions/{perm_id}", headers=headers).status_code == 204
    assert client.get(f"{BASE}/permissions/{perm_id}", headers=headers).status_code == 404


def test_edge_assign_and_remove(api_client, hasher) -> None:
    client, token, _ = api_client
    headers = auth_header(token)
    role_id = client.post(f"{BASE}/roles", json={"name": "editor"}, headers=headers).json()["id"]
    perm_id = client.post(
        f"{BASE}/permissions", json={"name": "write_article", "resource": "article", "action": "write"}, headers=headers
    ).json()["id"]

    assert client.post(f"{BASE}/roles/{role_id}/permissions/{perm_id}", headers=headers).status_code == 201
    assert client.post(f"{BASE}/roles/{role_id}/permissions/{perm_id}", headers=headers).status_code == 409

    member_id, _ = _member(client, hasher)
    client.post(f"{BASE}/grants/role", json={"account_id": member_id, "role_id": role_id}, headers=headers)
    assert app.state.graph.has_permission(member_id, "article", "write") is True

    assert client.delete(f"{BASE}/roles/{role_id}/permissions/{perm_id}", headers=headers).status_code == 204
    assert app.state.graph.has_permission(member_id, "article", "write") is False
    assert client.delete(f"{BASE}/roles/{role_id}/permissions/{perm_id}", headers=headers).status_code == 404


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


def test_grant_and_revoke_role(api_client, hasher) -> None:
    client, token, _ = api_client
    headers = auth_header(token)
    member_id, member_token = _member(client, hasher)
    manager = app.state.graph.get_role_by_name("manager")

    assert client.get(f"{BASE}/roles", headers=auth_header(member_token)).status_code == 403

    resp = client.post(f"{BASE}/grants/role", json={"account_id": member_id, "role_id": manager.id}, headers=headers)
    assert resp.status_code == 200
    # The old token now works: authorization is read live, not from the token.
    assert client.get(f"{BASE}/roles", headers=auth_header(member_token)).status_code == 200

    resp = client.post(f"{BASE}/grants/role/revoke", json={"account_id": member_id, "role_id": manager.id}, headers=headers)
    assert resp.status_code == 200
    assert client.get(f"{BASE}/roles", headers=auth_header(member_token)).status_code == 403
    again = client.post(f"{BASE}/grants/role/revoke", json={"account_id": member_id, "role_id": manager.id}, headers=headers)
    assert again.status_code == 404


def test_grant_unknown_role(api_client) -> None:
    client, token, admin_id = api_client
    resp = client.post(f"{BASE}/grants/role", json={"account_id": admin_id, "role_id": 9999}, headers=auth_header(token))
    assert resp.status_code == 404


def test_grant_permission_edge(api_client, hasher) -> None:
    client, token, admin_id = api_client
    headers = auth_header(token)
    graph = app.state.graph
    member_id, _ = _member(client, hasher)
    manager = graph.get_role_by_name("manager")
    view_roles = graph.get_permission_by_name("view_roles")
    body = {"account_id": member_id, "role_id": manager.id, "permission_id": view_roles.id}

    created = client.post(f"{BASE}/grants/permission", json=body, headers=headers)
    assert created.status_code == 201
    duplicate = client.post(f"{BASE}/grants/permission", json=body, headers=headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "duplicate_grant"

    grants = client.get(f"{BASE}/accounts/{member_id}/permissions", headers=headers).json()["grants"]
    assert [(g["permission_name"], g["granted_by"], g["state"]) for g in grants] == [("view_roles", admin_id, "active")]

    assert client.post(f"{BASE}/grants/permission/revoke", json=body, headers=headers).status_code == 200
    assert client.post(f"{BASE}/grants/permission/revoke", json=body, headers=headers).status_code == 404


def test_grant_on_missing_edge(api_client) -> None:
    client, token, admin_id = api_client
    graph = app.state.graph
    body = {
        "account_id": admin_id,
        "role_id": graph.get_role_by_name("guest").id,
        "permission_id": graph.get_permission_by_name("view_roles").id,
    }
    assert client.post(f"{BASE}/grants/permission", json=body, headers=auth_header(token)).status_code == 404


def test_expiring_grant(api_client, hasher, clock) -> None:
    client, token, _ = api_client
    member_id, member_token = _member(client, hasher)
    manager = app.state.graph.get_role_by_name("manager")
    expires_at = (clock.now() + timedelta(minutes=5)).isoformat()
    client.post(
        f"{BASE}/grants/role",
        json={"account_id": member_id, "role_id": manager.id, "expires_at": expires_at},
        headers=auth_header(token),
    )
    assert client.get(f"{BASE}/roles", headers=auth_header(member_token)).status_code == 200
    clock.advance(minutes=5)
    assert client.get(f"{BASE}/roles", headers=auth_header(member_token)).status_code == 403


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def test_account_permissions_owner_or_grant_read(api_client, hasher) -> None:
    client, token, admin_id = api_client
    member_id, member_token = _member(client, hasher, role="user")

    own = client.get(f"{BASE}/accounts/{member_id}/permissions", headers=auth_header(member_token))
    assert own.status_code == 200
    assert own.json()["roles"] == ["user"]
    assert own.json()["permissions"] == ["manage_own_account"]

    other = client.get(f"{BASE}/accounts/{admin_id}/permissions", headers=auth_header(member_token))
    assert other.status_code == 403

    by_admin = client.get(f"{BASE}/accounts/{member_id}/permissions", headers=auth_header(token))
    assert by_admin.status_code == 200


@pytest.mark.parametrize(
    ("resource", "action", "allowed"),
    [("account", "manage_own", True), ("account", "delete", False), ("nothing", "read", False)],
)
def test_check(api_client, hasher, resource: str, action: str, allowed: bool) -> None:
    client, token, _ = api_client
    member_id, _ = _member(client, hasher, role="user")
    resp = client.get(
        f"{BASE}/check",
        params={"account_id": member_id, "resource": resource, "action": action},
        headers=auth_header(token),
    )
    assert resp.status_code == 200
    assert resp.json()["allowed"] is allowed
