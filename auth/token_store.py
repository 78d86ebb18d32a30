"""
auth/token_store.py -- Persistence for refresh-token fingerprints and one-time tokens.

Pattern: Repository + Data Mapper (same as auth/store.py).

What is stored:
  refresh_tokens       -- one row per issued refresh token: SHA-256 digest,
                          expiry, revoked flag, device and origin metadata.
  password_resets      -- single-use reset tokens (1 hour by default).
  email_verifications  -- single-use verification tokens (24 hours by default).
The raw token values are never written anywhere.

Concurrency:
  There are no in-process locks. Every state transition that must happen at
  most once is a conditional UPDATE whose WHERE clause restates the
  precondition, and the caller checks rowcount:

    rotate()           UPDATE ... SET is_revoked=1
                       WHERE token_digest=:old AND is_revoked=0 AND expires_at>:now
                       then INSERT the new record, in the same transaction.
                       Two callers presenting the same refresh token both reach
                       the UPDATE, but only one matches a row; the other gets
                       rowcount 0 and inserts nothing.

    consume_*()        UPDATE ... SET is_used=1 WHERE id=:id AND is_used=0
                       -- the same idea for single-use tokens.

  "now" is always the injected clock's time, passed as a bound parameter.

Layer rule: no imports from api/, rbac/, or cache/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import OneTimeToken, RefreshTokenRecord
from auth.tokens import digest_token, generate_secure_token
from core.clock import Clock, SystemClock, from_iso, to_iso
from core.database import connect

logger = logging.getLogger("warden.auth.token_store")

DEFAULT_REFRESH_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_RESET_TTL_SECONDS = 60 * 60
DEFAULT_VERIFICATION_TTL_SECONDS = 24 * 60 * 60

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("token_digest", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("is_revoked", Integer, nullable=False, server_default="0"),
    Column("device_info", Text),
    Column("ip_address", String(45)),
    Column("created_at", String(32), nullable=False),
)


def _one_time_table(name: str) -> Table:
    return Table(
        name,
        _metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("account_id", Integer, nullable=False),
        Column("token_digest", String(64), nullable=False, unique=True),
        Column("expires_at", String(32), nullable=False),
        Column("is_used", Integer, nullable=False, server_default="0"),
        Column("created_at", String(32), nullable=False),
        Index(f"ix_{name}_account_id", "account_id"),
    )


_password_resets = _one_time_table("password_resets")
_email_verifications = _one_time_table("email_verifications")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TokenStore:
    """Repository for refresh-token records and single-use tokens.

    Usage:
        store = TokenStore(engine)
        store.save_refresh(account_id, pair.refresh_token, device="curl/8", origin="10.0.0.1")
        record = store.find_live_refresh(pair.refresh_token)
    """

    def __init__(
        self,
        engine: Engine,
        clock: Clock | None = None,
        *,
        refresh_ttl_seconds: int = DEFAULT_REFRESH_TTL_SECONDS,
        reset_ttl_seconds: int = DEFAULT_RESET_TTL_SECONDS,
        verification_ttl_seconds: int = DEFAULT_VERIFICATION_TTL_SECONDS,
    ) -> None:
        self.engine = engine
        self._clock = clock or SystemClock()
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.reset_ttl_seconds = reset_ttl_seconds
        self.verification_ttl_seconds = verification_ttl_seconds
        _metadata.create_all(self.engine)

    def _now(self) -> str:
        return to_iso(self._clock.now())

    def _expiry(self, ttl_seconds: int) -> str:
        return to_iso(self._clock.now() + timedelta(seconds=ttl_seconds))

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def save_refresh(
        self,
        account_id: int,
        raw_token: str,
        device: str | None = None,
        origin: str | None = None,
    ) -> int:
        """Persist the digest of raw_token with the configured TTL. Returns the row id."""
        with connect(self.engine, begin=True) as conn:
            return self._insert_refresh(conn, account_id, raw_token, device, origin)

    def _insert_refresh(self, conn, account_id: int, raw_token: str, device: str | None, origin: str | None) -> int:
        result = conn.execute(
            _refresh_tokens.insert().values(
                account_id=account_id,
                token_digest=digest_token(raw_token),
                expires_at=self._expiry(self.refresh_ttl_seconds),
                is_revoked=0,
                device_info=device,
                ip_address=origin,
                created_at=self._now(),
            )
        )
        return result.inserted_primary_key[0]

    def find_refresh(self, raw_token: str) -> RefreshTokenRecord | None:
        """Look up a record by digest regardless of state (used for reuse detection)."""
        with connect(self.engine) as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.token_digest == digest_token(raw_token))
            ).fetchone()
        return _row_to_refresh(row) if row is not None else None

    def find_live_refresh(self, raw_token: str) -> RefreshTokenRecord | None:
        """Return the record only if it is both un-revoked and unexpired."""
        with connect(self.engine) as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token_digest == digest_token(raw_token))
                    & (_refresh_tokens.c.is_revoked == 0)
                    & (_refresh_tokens.c.expires_at > self._now())
                )
            ).fetchone()
        return _row_to_refresh(row) if row is not None else None

    def revoke(self, raw_token: str) -> bool:
        """Mark the record revoked. True if the token is known, revoked or not."""
        with connect(self.engine, begin=True) as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(_refresh_tokens.c.token_digest == digest_token(raw_token))
                .values(is_revoked=1)
            )
        return result.rowcount > 0

    def revoke_all(self, account_id: int) -> int:
        """Revoke every outstanding refresh token of account_id. Returns rows changed."""
        with connect(self.engine, begin=True) as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.account_id == account_id) & (_refresh_tokens.c.is_revoked == 0))
                .values(is_revoked=1)
            )
        logger.info("Revoked %d refresh token(s) for account %s", result.rowcount, account_id)
        return result.rowcount

    def rotate(
        self,
        old_raw_token: str,
        new_raw_token: str,
        account_id: int,
        device: str | None = None,
        origin: str | None = None,
    ) -> bool:
        """Atomically revoke old_raw_token and persist new_raw_token.

        Returns False, writing nothing, if the old token was not live at the
        moment of the conditional revoke (already rotated, revoked, expired,
        or lost a concurrent race).
        """
        with connect(self.engine, begin=True) as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.token_digest == digest_token(old_raw_token))
                    & (_refresh_tokens.c.account_id == account_id)
                    & (_refresh_tokens.c.is_revoked == 0)
                    & (_refresh_tokens.c.expires_at > self._now())
                )
                .values(is_revoked=1)
            )
            if result.rowcount != 1:
                return False
            self._insert_refresh(conn, account_id, new_raw_token, device, origin)
        return True

    def list_live(self, account_id: int) -> list[RefreshTokenRecord]:
        """Live refresh tokens of an account, newest first (active devices view)."""
        with connect(self.engine) as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(
                    (_refresh_tokens.c.account_id == account_id)
                    & (_refresh_tokens.c.is_revoked == 0)
                    & (_refresh_tokens.c.expires_at > self._now())
                )
                .order_by(_refresh_tokens.c.created_at.desc())
            ).fetchall()
        return [_row_to_refresh(r) for r in rows]

    # ------------------------------------------------------------------
    # Single-use tokens
    # ------------------------------------------------------------------

    def create_password_reset(self, account_id: int) -> str:
        """Create a reset token and return the raw value (shown once, never stored)."""
        return self._create_one_time(_password_resets, account_id, self.reset_ttl_seconds)

    def consume_password_reset(self, raw_token: str) -> int | None:
        """Mark a live reset token used and return its account id, or None."""
        return self._consume_one_time(_password_resets, raw_token)

    def create_email_verification(self, account_id: int) -> str:
        return self._create_one_time(_email_verifications, account_id, self.verification_ttl_seconds)

    def consume_email_verification(self, raw_token: str) -> int | None:
        return self._consume_one_time(_email_verifications, raw_token)

    def find_password_reset(self, raw_token: str) -> OneTimeToken | None:
        """Look up a reset token by digest regardless of state. Read-only."""
        with connect(self.engine) as conn:
            row = conn.execute(
                _password_resets.select().where(_password_resets.c.token_digest == digest_token(raw_token))
            ).fetchone()
        return _row_to_one_time(row) if row is not None else None

    def _create_one_time(self, table: Table, account_id: int, ttl_seconds: int) -> str:
        raw = generate_secure_token()
        with connect(self.engine, begin=True) as conn:
            conn.execute(
                table.insert().values(
                    account_id=account_id,
                    token_digest=digest_token(raw),
                    expires_at=self._expiry(ttl_seconds),
                    is_used=0,
                    created_at=self._now(),
                )
            )
        return raw

    def _consume_one_time(self, table: Table, raw_token: str) -> int | None:
        with connect(self.engine, begin=True) as conn:
            row = conn.execute(
                table.select().where(
                    (table.c.token_digest == digest_token(raw_token))
                    & (table.c.is_used == 0)
                    & (table.c.expires_at > self._now())
                )
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                table.update().where((table.c.id == row.id) & (table.c.is_used == 0)).values(is_used=1)
            )
            if result.rowcount != 1:
                return None
        return row.account_id

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Delete refresh and single-use tokens past expiry. Returns rows removed.

        Storage hygiene only: every read path already excludes expired rows.
        """
        now = self._now()
        removed = 0
        with connect(self.engine, begin=True) as conn:
            for table in (_refresh_tokens, _password_resets, _email_verifications):
                removed += conn.execute(table.delete().where(table.c.expires_at <= now)).rowcount
        if removed:
            logger.info("Purged %d expired token row(s)", removed)
        return removed


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_refresh(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        account_id=row.account_id,
        token_digest=row.token_digest,
        expires_at=from_iso(row.expires_at),
        is_revoked=bool(row.is_revoked),
        device_info=row.device_info,
        ip_address=row.ip_address,
        created_at=from_iso(row.created_at),
    )


def _row_to_one_time(row) -> OneTimeToken:
    return OneTimeToken(
        id=row.id,
        account_id=row.account_id,
        token_digest=row.token_digest,
        expires_at=from_iso(row.expires_at),
        is_used=bool(row.is_used),
        created_at=from_iso(row.created_at),
    )
