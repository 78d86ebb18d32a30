"""
auth/store.py -- SQLAlchemy Core persistence for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Services and routes never touch SQL directly.

Accounts belong to the account-management side of the system. The auth core
only needs a narrow slice of it (lookup by email/id, password digest updates,
verified flag, last-login stamp), which is all this repository exposes.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Inactive accounts are invisible to get_by_email()/get_by_id(): a
  deactivated account cannot log in or refresh.

Layer rule: no imports from api/, rbac/, or cache/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import Account
from core.clock import Clock, SystemClock, from_iso, to_iso
from core.database import connect

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_digest", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore(engine)
        account_id = store.create_account(Account(email="a@example.com", password_digest=hasher.hash("pw")))
        account = store.get_by_email("a@example.com")
    """

    def __init__(self, engine: Engine, clock: Clock | None = None) -> None:
        self.engine = engine
        self._clock = clock or SystemClock()
        _metadata.create_all(self.engine)

    def _now(self) -> str:
        return to_iso(self._clock.now())

    def has_accounts(self) -> bool:
        """Return True if at least one account exists. Used by the CLI bootstrap."""
        with connect(self.engine) as conn:
            row = conn.execute(_accounts.select().limit(1)).fetchone()
        return row is not None

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers catch it as the signal that the address is taken.
        """
        now = self._now()
        with connect(self.engine, begin=True) as conn:
            result = conn.execute(
                _accounts.insert().values(
                    email=account.email,
                    password_digest=account.password_digest,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    is_verified=1 if account.is_verified else 0,
                    is_active=1 if account.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Account | None:
        """Look up an active account by exact email. Returns None if not found."""
        with connect(self.engine) as conn:
            row = conn.execute(
                _accounts.select().where((_accounts.c.email == email) & (_accounts.c.is_active == 1))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an active account by primary key. Returns None if not found."""
        with connect(self.engine) as conn:
            row = conn.execute(
                _accounts.select().where((_accounts.c.id == account_id) & (_accounts.c.is_active == 1))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_password(self, account_id: int, password_digest: str) -> bool:
        return self._update(account_id, password_digest=password_digest)

    def mark_verified(self, account_id: int) -> bool:
        return self._update(account_id, is_verified=1)

    def deactivate(self, account_id: int) -> bool:
        return self._update(account_id, is_active=0)

    def update_last_login(self, account_id: int) -> None:
        """Stamp last_login. Not an account edit, so updated_at is left alone."""
        with connect(self.engine, begin=True) as conn:
            conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(last_login=self._now()))

    def _update(self, account_id: int, **fields) -> bool:
        with connect(self.engine, begin=True) as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(updated_at=self._now(), **fields)
            )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_digest=row.password_digest,
        first_name=row.first_name,
        last_name=row.last_name,
        is_verified=bool(row.is_verified),
        is_active=bool(row.is_active),
        last_login=from_iso(row.last_login),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )
