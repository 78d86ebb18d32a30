"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Warden happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Components
      never read it implicitly: the API lifespan and the CLI pass the values
      they need into each store/issuer constructor.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation at startup. Secrets,
      expiry strings, and lockout policy are checked once here rather than on
      every call.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright.

  [M7] In production mode (DEBUG not set or false), a missing signing secret
       is a hard startup failure. In dev mode a random one is generated with a
       warning; tokens will not survive a restart.

  [M8] Access and refresh secrets must differ, otherwise an access token would
       verify as a refresh token (and vice versa) at the signature layer.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
rbac/, or cache/.
"""

import logging
import re
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("warden.config")

# Same pattern as auth.tokens.parse_expiry; core/ may not import auth/.
_EXPIRY_RE = re.compile(r"^(\d+)([mhd])$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true for the secrets).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; see validate_secrets().
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    token_issuer: str = "warden-auth"
    token_audience: str = "warden-app"
    # "<int><m|h|d>". Anything else falls back to 15 minutes at issue time.
    access_token_expires_in: str = "15m"
    refresh_token_expires_in: str = "7d"

    # ------------------------------------------------------------------
    # Credentials and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    lockout_threshold: int = 5
    lockout_window_seconds: int = 15 * 60
    refresh_reuse_revokes_all: bool = True

    # ------------------------------------------------------------------
    # Sessions and one-time tokens
    # ------------------------------------------------------------------

    session_ttl_seconds: int = 24 * 60 * 60
    password_reset_ttl_seconds: int = 60 * 60
    email_verification_ttl_seconds: int = 24 * 60 * 60

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///warden.db"
    # SQLite file for the key-value cache when REDIS_URL is not set.
    cache_path: str = "warden_cache.db"
    redis_url: str = ""
    store_timeout_seconds: float = 5.0
    purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy [M6][M7][M8].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
        Production mode: refuse to start if either secret is missing.
        Both modes: reject short secrets and identical access/refresh secrets.
        """
        for field in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, field)
            if not value:
                if self.debug:
                    setattr(self, field, secrets.token_hex(32))
                    logger.warning(
                        "Using auto-generated %s. Tokens will not survive a restart.",
                        field.upper(),
                    )
                    continue
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            if len(value) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        return self

    @model_validator(mode="after")
    def validate_policy(self) -> "Settings":
        """Reject lockout/TTL values that would silently disable a protection."""
        if self.lockout_threshold < 1:
            raise ValueError("LOCKOUT_THRESHOLD must be at least 1.")
        for field in (
            "lockout_window_seconds",
            "session_ttl_seconds",
            "password_reset_ttl_seconds",
            "email_verification_ttl_seconds",
            "purge_interval_seconds",
        ):
            if getattr(self, field) <= 0:
                raise ValueError(f"{field.upper()} must be positive.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        for field in ("access_token_expires_in", "refresh_token_expires_in"):
            if not _EXPIRY_RE.match(getattr(self, field)):
                logger.warning(
                    "%s=%r is not of the form <int><m|h|d>; falling back to 15 minutes.",
                    field.upper(),
                    getattr(self, field),
                )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
