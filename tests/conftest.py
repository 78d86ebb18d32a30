"""
tests/conftest.py -- Shared test fixtures for Warden unit and integration tests.

This module provides:
  - FixedClock: a controllable Clock; tests move time with advance()
  - engine / cache: isolated in-memory relational store and key-value cache
  - accounts, token_store, graph, issuer, hasher, sessions, guard, service,
    gate: components wired against those stores and the fixed clock
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus an admin account holding the seeded admin role

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Each engine gets a unique name so tests never see each other's rows.

DEBUG must be set before any core/auth import so get_settings() can
auto-generate the signing secrets in dev mode instead of raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any core/auth import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_components
from auth.gate import AuthorizationGate
from auth.lockout import LoginAttemptGuard
from auth.models import Account, Identity
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.sessions import SessionCache
from auth.store import AccountStore
from auth.token_store import TokenStore
from auth.tokens import TokenIssuer
from cache.store import TTLCache
from core.config import Settings
from core.database import create_db_engine
from rbac.seed import seed_catalog
from rbac.store import PermissionGraph

ACCESS_SECRET = "a" * 32 + "-access-secret-for-tests"
REFRESH_SECRET = "r" * 32 + "-refresh-secret-for-tests"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> None:
        self.current += timedelta(**delta)


# ---------------------------------------------------------------------------
# Store and component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def engine():
    eng = create_db_engine(f"sqlite:///file:warden_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield eng
    eng.dispose()


@pytest.fixture
def cache(clock: FixedClock) -> Generator[TTLCache, None, None]:
    kv = TTLCache(":memory:", clock=clock)
    yield kv
    kv.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=True,
        access_token_secret=ACCESS_SECRET,
        refresh_token_secret=REFRESH_SECRET,
        bcrypt_rounds=4,
        login_rate_limit="1000/minute",
    )


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def accounts(engine, clock: FixedClock) -> AccountStore:
    return AccountStore(engine, clock)


@pytest.fixture
def token_store(engine, clock: FixedClock) -> TokenStore:
    return TokenStore(engine, clock)


@pytest.fixture
def graph(engine, clock: FixedClock) -> PermissionGraph:
    return PermissionGraph(engine, clock)


@pytest.fixture
def issuer(clock: FixedClock) -> TokenIssuer:
    return TokenIssuer(ACCESS_SECRET, REFRESH_SECRET, clock=clock)


@pytest.fixture
def sessions(cache: TTLCache) -> SessionCache:
    return SessionCache(cache)


@pytest.fixture
def guard(cache: TTLCache) -> LoginAttemptGuard:
    return LoginAttemptGuard(cache)


@pytest.fixture
def gate(issuer: TokenIssuer, graph: PermissionGraph) -> AuthorizationGate:
    return AuthorizationGate(issuer, graph)


class RecordingNotifier:
    """Notifier that keeps every message so tests can read the raw tokens."""

    def __init__(self) -> None:
        self.sent: list[tuple] = []

    def send_verification(self, email, token, first_name=None):
        self.sent.append(("verification", email, token))

    def send_password_reset(self, email, token, first_name=None):
        self.sent.append(("reset", email, token))

    def send_password_changed(self, email, first_name=None, origin=None):
        self.sent.append(("changed", email, origin))

    def send_welcome(self, email, first_name=None):
        self.sent.append(("welcome", email))

    def last(self, kind: str) -> tuple:
        return [m for m in self.sent if m[0] == kind][-1]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(accounts, token_store, issuer, hasher, graph, sessions, guard, notifier) -> AuthService:
    return AuthService(accounts, token_store, issuer, hasher, graph, sessions, guard, notifier)


def make_account(accounts: AccountStore, hasher: PasswordHasher, email: str, password: str = "password123") -> int:
    return accounts.create_account(Account(email=email, password_digest=hasher.hash(password)))


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, engine, cache, clock: FixedClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine, cache, and clock into app.state through the same
    wire_components() the real lifespan uses.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_components(app, settings, engine, cache, clock)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client(settings, engine, cache, clock, hasher) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, admin_id) for API integration tests.

    The admin account holds the seeded admin role; token is an access token
    for it, valid for the fixed clock's current time.
    """
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(settings, engine, cache, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        graph: PermissionGraph = app.state.graph
        seed_catalog(graph)
        admin_id = make_account(app.state.accounts, hasher, ADMIN_EMAIL, ADMIN_PASSWORD)
        graph.grant_role(admin_id, graph.get_role_by_name("admin").id, granted_by=None)
        pair = app.state.issuer.issue(
            Identity(account_id=admin_id, email=ADMIN_EMAIL, permissions=graph.account_permissions(admin_id))
        )
        yield client, pair.access_token, admin_id


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
