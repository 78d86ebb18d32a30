"""
auth/tokens.py -- Token issuer: signed access/refresh JWT pairs and opaque tokens.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets and both carry a fixed issuer and audience. The
       refresh token carries only account_id and email -- it lives for days,
       so it must not freeze a permission list that may be revoked meanwhile.
       Permissions are re-read from the permission graph on every refresh.

  typ / jti: every token carries typ ("access" | "refresh") and a random jti.
       typ stops one kind being replayed as the other even if the secrets were
       misconfigured; jti guarantees two tokens minted in the same second for
       the same account never collide (the token store keys on their digest).

  Expiry: checked against the injected Clock, not python-jose's wall clock,
       so tests can move time. Signature, issuer, audience, and typ are all
       checked before expiry: a token is only reported as TokenExpired if it
       is otherwise genuine. Callers treat TokenExpired as "refresh and retry"
       and TokenInvalid as tampering.

  Opaque tokens (sessions, password reset, email verification):
       secrets.token_hex(32) gives 256 bits of entropy. Only the SHA-256 digest
       is stored, so a database leak does not yield usable tokens; bcrypt's
       slowness is unnecessary for values with that much entropy.

Layer rule: no imports from api/, rbac/, or cache/.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from datetime import timedelta

from jose import JWTError, jwt

from auth.models import Identity, RefreshClaims, TokenPair
from core.clock import Clock, SystemClock
from core.config import Settings
from core.errors import TokenExpired, TokenInvalid

logger = logging.getLogger("warden.auth.tokens")

_ALGORITHM = "HS256"
_EXPIRY_RE = re.compile(r"^(\d+)([mhd])$")
_UNIT_SECONDS = {"m": 60, "h": 60 * 60, "d": 24 * 60 * 60}
DEFAULT_EXPIRY_SECONDS = 15 * 60

ACCESS = "access"
REFRESH = "refresh"


def parse_expiry(value: str) -> int:
    """Convert "<int><m|h|d>" to seconds. Anything else yields 15 minutes."""
    match = _EXPIRY_RE.match(value or "")
    if match is None:
        return DEFAULT_EXPIRY_SECONDS
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]


def generate_secure_token() -> str:
    """Return 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def digest_token(raw: str) -> str:
    """SHA-256 hex digest used as the lookup key for stored tokens."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class TokenIssuer:
    """Mints and verifies access/refresh JWT pairs.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        pair = issuer.issue(Identity(account_id=1, email="a@example.com", permissions=["view_roles"]))
        identity = issuer.verify_access(pair.access_token)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        issuer: str = "warden-auth",
        audience: str = "warden-app",
        access_expires_in: str = "15m",
        refresh_expires_in: str = "7d",
        clock: Clock | None = None,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.issuer = issuer
        self.audience = audience
        self.access_ttl_seconds = parse_expiry(access_expires_in)
        self.refresh_ttl_seconds = parse_expiry(refresh_expires_in)
        self._clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> TokenIssuer:
        return cls(
            settings.access_token_secret,
            settings.refresh_token_secret,
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            access_expires_in=settings.access_token_expires_in,
            refresh_expires_in=settings.refresh_token_expires_in,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def issue(self, identity: Identity) -> TokenPair:
        """Mint a fresh access/refresh pair for identity."""
        access = self._encode(
            {
                "account_id": identity.account_id,
                "email": identity.email,
                "permissions": list(identity.permissions),
            },
            self._access_secret,
            self.access_ttl_seconds,
            ACCESS,
        )
        refresh = self._encode(
            {"account_id": identity.account_id, "email": identity.email},
            self._refresh_secret,
            self.refresh_ttl_seconds,
            REFRESH,
        )
        return TokenPair(access_token=access, refresh_token=refresh, expires_in=self.access_ttl_seconds)

    def _encode(self, claims: dict, secret: str, ttl_seconds: int, typ: str) -> str:
        now = self._clock.now()
        payload = {
            **claims,
            "sub": str(claims["account_id"]),
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
            "jti": secrets.token_hex(16),
            "typ": typ,
        }
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> Identity:
        """Return the verified identity. Raises TokenInvalid or TokenExpired."""
        payload = self._decode(token, self._access_secret, ACCESS)
        permissions = payload.get("permissions", [])
        if not isinstance(permissions, list) or not all(isinstance(p, str) for p in permissions):
            raise TokenInvalid("permissions claim is malformed")
        return Identity(
            account_id=payload["account_id"],
            email=payload["email"],
            permissions=permissions,
        )

    def verify_refresh(self, token: str) -> RefreshClaims:
        """Return {account_id, email}. Raises TokenInvalid or TokenExpired."""
        payload = self._decode(token, self._refresh_secret, REFRESH)
        return RefreshClaims(account_id=payload["account_id"], email=payload["email"])

    def _decode(self, token: str, secret: str, typ: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalid(f"{typ} token rejected: {exc}") from exc

        if payload.get("typ") != typ:
            raise TokenInvalid(f"expected a {typ} token")
        account_id = payload.get("account_id")
        if not isinstance(account_id, int) or isinstance(account_id, bool):
            raise TokenInvalid("account_id claim is malformed")
        if not isinstance(payload.get("email"), str):
            raise TokenInvalid("email claim is malformed")
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise TokenInvalid("exp claim is missing")
        if exp <= self._clock.now().timestamp():
            raise TokenExpired(f"{typ} token expired")
        return payload
