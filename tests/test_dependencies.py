"""
tests/test_dependencies.py -- Tests for the FastAPI dependency factories in auth/dependencies.py.

Uses a throwaway FastAPI app whose state.gate is the test gate, so each
factory is exercised without the full Warden route table.
"""

from __future__ import annotations

import pytest
from conftest import auth_header
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from auth.dependencies import (
    bearer_token,
    require_ownership_or_permission,
    require_permission_name,
    require_roles,
    try_get_identity,
)
from auth.models import Identity

ALICE = Identity(account_id=5, email="alice@example.com")


@pytest.fixture
def probe(gate, graph) -> TestClient:
    app = FastAPI()
    app.state.gate = gate

    @app.get("/whoami")
    def whoami(identity: Identity | None = Depends(try_get_identity)):
        return {"account_id": identity.account_id if identity else None}

    @app.get("/editors")
    def editors(identity: Identity = Depends(require_roles("editor", "admin"))):
        return {"ok": True}

    @app.get("/articles/write")
    def write(identity: Identity = Depends(require_permission_name("write_article"))):
        return {"ok": True}

    @app.get("/accounts/{account_id}")
    def account(account_id: int, identity: Identity = Depends(require_ownership_or_permission("account", "read"))):
        return {"ok": True}

    return TestClient(app)


def _make_editor(graph) -> None:
    role = graph.create_role("editor")
    graph.assign_edge(role, graph.create_permission("write_article", "article", "write"))
    graph.grant_role(ALICE.account_id, role, granted_by=None)


def test_try_get_identity(probe: TestClient, issuer) -> None:
    assert probe.get("/whoami").json() == {"account_id": None}
    assert probe.get("/whoami", headers=auth_header("junk")).json() == {"account_id": None}
    token = issuer.issue(ALICE).access_token
    assert probe.get("/whoami", headers=auth_header(token)).json() == {"account_id": 5}


def test_require_roles(probe: TestClient, issuer, graph) -> None:
    token = issuer.issue(ALICE).access_token
    assert probe.get("/editors", headers=auth_header(token)).status_code == 403
    _make_editor(graph)
    assert probe.get("/editors", headers=auth_header(token)).status_code == 200


def test_require_permission_name(probe: TestClient, issuer, graph) -> None:
    token = issuer.issue(ALICE).access_token
    assert probe.get("/articles/write").status_code == 401
    assert probe.get("/articles/write", headers=auth_header(token)).status_code == 403
    _make_editor(graph)
    assert probe.get("/articles/write", headers=auth_header(token)).status_code == 200


def test_ownership_from_path(probe: TestClient, issuer) -> None:
    token = issuer.issue(ALICE).access_token
    assert probe.get("/accounts/5", headers=auth_header(token)).status_code == 200
    assert probe.get("/accounts/6", headers=auth_header(token)).status_code == 403


def test_expired_token_is_401(probe: TestClient, issuer, clock) -> None:
    token = issuer.issue(ALICE).access_token
    clock.advance(hours=1)
    resp = probe.get("/articles/write", headers=auth_header(token))
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"
    assert resp.json()["detail"]["code"] == "token_expired"


class _Req:
    def __init__(self, header: str | None) -> None:
        self.headers = {"Authorization": header} if header is not None else {}


@pytest.mark.parametrize(
    ("header", "expected"),
    [("Bearer abc", "abc"), ("bearer abc ", "abc"), ("Basic abc", None), ("Bearer ", None), (None, None)],
)
def test_bearer_token(header, expected) -> None:
    assert bearer_token(_Req(header)) == expected
