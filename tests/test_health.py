"""
tests/test_health.py -- Integration tests for GET /api/v1/health and the purge pass.

Covers:
  - 200 response with status, version, and app/database/cache components
  - No authentication required
  - An unreachable cache reports "degraded" instead of failing the request
  - purge_expired() removes expired rows from every store
"""

from __future__ import annotations

from datetime import timedelta

from api.main import VERSION, app, purge_expired
from core.errors import StoreUnavailable


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == VERSION
    assert data["components"] == {"app": "ok", "database": "ok", "cache": "ok"}


def test_health_no_auth_required(api_client):
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_health_degraded_when_cache_down(api_client, monkeypatch):
    client, _, _ = api_client

    def down(key):
        raise StoreUnavailable("cache store unavailable")

    monkeypatch.setattr(app.state.cache, "get", down)
    data = client.get("/api/v1/health").json()
    assert data["status"] == "degraded"
    assert data["components"]["cache"] == "error"
    assert data["components"]["database"] == "ok"


def test_purge_expired(api_client, clock):
    _, _, admin_id = api_client
    tokens = app.state.token_store
    graph = app.state.graph
    tokens.save_refresh(admin_id, "refresh-to-expire")
    manager = graph.get_role_by_name("manager")
    graph.grant_role(admin_id + 1, manager.id, granted_by=admin_id, expires_at=clock.now() + timedelta(hours=1))
    app.state.cache.set("ephemeral", "1", ttl_seconds=60)

    clock.advance(days=8)
    purge_expired(app)

    assert tokens.find_refresh("refresh-to-expire") is None
    assert graph.list_grants(admin_id + 1) == []
    assert graph.cleanup_expired_grants() == 0
    assert app.state.cache.get("ephemeral") is None
