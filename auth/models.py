"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these own the shape. Mirrors rbac/models.py for the permission side.

Layer rule: no imports from api/, rbac/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Account:
    """An authenticatable principal.

    Owned by the account-management side of the system; the auth core reads it
    and only ever writes password_digest, is_verified, and last_login.
    """

    email: str
    password_digest: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    is_verified: bool = False
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RefreshTokenRecord:
    """Persisted fingerprint of one issued refresh token.

    token_digest is SHA-256 of the raw token. The raw value is returned to the
    client once and never stored.
    """

    account_id: int
    token_digest: str
    expires_at: datetime
    id: int | None = None
    is_revoked: bool = False
    device_info: str | None = None
    ip_address: str | None = None
    created_at: datetime | None = None

    def is_live(self, now: datetime) -> bool:
        return not self.is_revoked and self.expires_at > now


@dataclass
class OneTimeToken:
    """A password-reset or email-verification token. Single use."""

    account_id: int
    token_digest: str
    expires_at: datetime
    id: int | None = None
    is_used: bool = False
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds


@dataclass(frozen=True)
class Identity:
    """Verified claims of an access token -- what the gate attaches to a request."""

    account_id: int
    email: str
    permissions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RefreshClaims:
    account_id: int
    email: str
