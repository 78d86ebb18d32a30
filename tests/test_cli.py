"""
tests/test_cli.py -- Tests for the warden-admin CLI (main.py).

Each test points DATABASE_URL at a fresh SQLite file and clears the
get_settings() cache so main() builds its own engine against it.
"""

from __future__ import annotations

import pytest

import main as cli
from core.config import get_settings


@pytest.fixture(autouse=True)
def db_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": "password123")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_no_command_prints_help(capsys) -> None:
    assert cli.main([]) == 2
    assert "seed" in capsys.readouterr().out


def test_seed_is_idempotent(capsys) -> None:
    assert cli.main(["seed"]) == 0
    assert "Seeded 4 role(s), 16 permission(s)" in capsys.readouterr().out
    assert cli.main(["seed"]) == 0
    assert "Seeded 0 role(s), 0 permission(s), 0 edge(s)" in capsys.readouterr().out


def test_create_account_and_grant_role(capsys) -> None:
    cli.main(["seed"])
    assert cli.main(["create-account", "Ops@Example.com"]) == 0
    assert cli.main(["grant-role", "ops@example.com", "manager"]) == 0
    capsys.readouterr()

    assert cli.main(["permissions", "ops@example.com"]) == 0
    out = capsys.readouterr().out
    assert "manager" in out
    assert "view_accounts" in out
    assert "grant_permissions" not in out


def test_duplicate_account(capsys) -> None:
    cli.main(["create-account", "ops@example.com"])
    assert cli.main(["create-account", "ops@example.com"]) == 1
    assert "already exists" in capsys.readouterr().out


def test_mismatched_password_aborts(monkeypatch) -> None:
    answers = iter(["password123", "password124"])
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))
    with pytest.raises(SystemExit):
        cli.main(["create-account", "ops@example.com"])


def test_grant_unknown_role(capsys) -> None:
    cli.main(["seed"])
    cli.main(["create-account", "ops@example.com"])
    assert cli.main(["grant-role", "ops@example.com", "superuser"]) == 1
    assert "Unknown account" in capsys.readouterr().out


def test_revoke_role(capsys) -> None:
    cli.main(["seed"])
    cli.main(["create-account", "ops@example.com"])
    cli.main(["grant-role", "ops@example.com", "user", "--expires-days", "30"])
    assert cli.main(["revoke-role", "ops@example.com", "user"]) == 0
    assert "Revoked role 'user'" in capsys.readouterr().out
    assert cli.main(["revoke-role", "ops@example.com", "user"]) == 0
    assert "held no active grants" in capsys.readouterr().out


def test_purge(capsys) -> None:
    assert cli.main(["purge"]) == 0
    assert "Purged 0 expired token(s)" in capsys.readouterr().out
