"""
tests/test_config.py -- Unit tests for core/config.py validators.

Settings(...) keyword arguments take precedence over the environment, so each
test pins debug explicitly instead of relying on the DEBUG set by conftest.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_ACCESS = "x" * 40
GOOD_REFRESH = "y" * 40


def test_production_requires_secrets() -> None:
    with pytest.raises(ValidationError, match="ACCESS_TOKEN_SECRET is required"):
        Settings(debug=False, access_token_secret="", refresh_token_secret=GOOD_REFRESH)


def test_debug_generates_missing_secrets() -> None:
    settings = Settings(debug=True, access_token_secret="", refresh_token_secret="")
    assert len(settings.access_token_secret) == 64
    assert settings.access_token_secret != settings.refresh_token_secret


def test_short_secret_rejected_even_in_debug() -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=True, access_token_secret="short", refresh_token_secret=GOOD_REFRESH)


def test_identical_secrets_rejected() -> None:
    with pytest.raises(ValidationError, match="must differ"):
        Settings(debug=False, access_token_secret=GOOD_ACCESS, refresh_token_secret=GOOD_ACCESS)


def test_production_with_good_secrets() -> None:
    settings = Settings(debug=False, access_token_secret=GOOD_ACCESS, refresh_token_secret=GOOD_REFRESH)
    assert settings.lockout_threshold == 5
    assert settings.refresh_reuse_revokes_all is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"lockout_threshold": 0},
        {"lockout_window_seconds": 0},
        {"session_ttl_seconds": -1},
        {"bcrypt_rounds": 3},
        {"bcrypt_rounds": 32},
    ],
)
def test_policy_values_rejected(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        Settings(debug=True, access_token_secret=GOOD_ACCESS, refresh_token_secret=GOOD_REFRESH, **overrides)


def test_bad_expiry_format_only_warns(caplog) -> None:
    with caplog.at_level("WARNING", logger="warden.config"):
        Settings(debug=True, access_token_secret=GOOD_ACCESS, refresh_token_secret=GOOD_REFRESH, access_token_expires_in="15 minutes")
    assert "ACCESS_TOKEN_EXPIRES_IN" in caplog.text
