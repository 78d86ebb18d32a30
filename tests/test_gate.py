"""
tests/test_gate.py -- Unit tests for auth/gate.py.

The gate reads permissions live from the graph, not from the token's
permissions claim, so a revoked grant denies even a freshly minted token.
"""

from __future__ import annotations

from auth.gate import AuthorizationGate, GateDecision
from auth.models import Identity
from core.errors import ErrorCode
from rbac.store import PermissionGraph

ALICE = Identity(account_id=7, email="alice@example.com")


def _editor(graph: PermissionGraph, account_id: int = ALICE.account_id) -> int:
    role = graph.create_role("editor")
    graph.assign_edge(role, graph.create_permission("write_article", "article", "write"))
    graph.grant_role(account_id, role, granted_by=None)
    return role


def test_authenticate_valid_token(gate: AuthorizationGate, issuer) -> None:
    decision = gate.authenticate(issuer.issue(ALICE).access_token)
    assert decision.allowed is True
    assert decision.identity.account_id == ALICE.account_id


def test_authenticate_missing_token(gate: AuthorizationGate) -> None:
    for token in (None, ""):
        decision = gate.authenticate(token)
        assert decision.allowed is False
        assert decision.failure.code is ErrorCode.TOKEN_INVALID


def test_authenticate_expired_token(gate: AuthorizationGate, issuer, clock) -> None:
    token = issuer.issue(ALICE).access_token
    clock.advance(minutes=15)
    assert gate.authenticate(token).failure.code is ErrorCode.TOKEN_EXPIRED


def test_authenticate_rejects_refresh_token(gate: AuthorizationGate, issuer) -> None:
    assert gate.authenticate(issuer.issue(ALICE).refresh_token).failure.code is ErrorCode.TOKEN_INVALID


def test_optional_authenticate(gate: AuthorizationGate, issuer) -> None:
    assert gate.optional_authenticate(None) == GateDecision(allowed=True)
    assert gate.optional_authenticate("garbage") == GateDecision(allowed=True)
    decision = gate.optional_authenticate(issuer.issue(ALICE).access_token)
    assert decision.allowed is True
    assert decision.identity.email == ALICE.email


def test_require_role(gate: AuthorizationGate, graph: PermissionGraph) -> None:
    _editor(graph)
    assert gate.require_role(ALICE, ["admin", "editor"]).allowed is True
    denied = gate.require_role(ALICE, iter(["admin"]))
    assert denied.allowed is False
    assert denied.failure.code is ErrorCode.PERMISSION_DENIED
    assert denied.identity == ALICE


def test_require_permission(gate: AuthorizationGate, graph: PermissionGraph) -> None:
    _editor(graph)
    assert gate.require_permission(ALICE, "article", "write").allowed is True
    assert gate.require_permission(ALICE, "article", "delete").failure.code is ErrorCode.PERMISSION_DENIED
    assert gate.require_permission_by_name(ALICE, "write_article").allowed is True
    assert gate.require_permission_by_name(ALICE, "delete_article").allowed is False


def test_permission_claim_is_not_trusted(gate: AuthorizationGate) -> None:
    forged = Identity(account_id=ALICE.account_id, email=ALICE.email, permissions=["write_article"])
    assert gate.require_permission_by_name(forged, "write_article").allowed is False


def test_revoked_grant_denies_immediately(gate: AuthorizationGate, graph: PermissionGraph) -> None:
    role = _editor(graph)
    assert gate.require_permission(ALICE, "article", "write").allowed is True
    graph.revoke_role(ALICE.account_id, role)
    assert gate.require_permission(ALICE, "article", "write").allowed is False


def test_ownership_or_permission(gate: AuthorizationGate, graph: PermissionGraph) -> None:
    assert gate.require_ownership_or_permission(ALICE, ALICE.account_id, "account", "read").allowed is True
    assert gate.require_ownership_or_permission(ALICE, 99, "account", "read").allowed is False
    assert gate.require_ownership_or_permission(ALICE, None, "account", "read").allowed is False

    role = graph.create_role("auditor")
    graph.assign_edge(role, graph.create_permission("view_accounts", "account", "read"))
    graph.grant_role(ALICE.account_id, role, granted_by=None)
    assert gate.require_ownership_or_permission(ALICE, 99, "account", "read").allowed is True
