"""
core/database.py -- Shared SQLAlchemy engine construction and error mapping.

One Engine is built at startup and handed to every repository (AccountStore,
TokenStore, PermissionGraph). Repositories own their Table definitions; this
module only owns the connection concerns they share:

  create_db_engine()  -- SQLite gets check_same_thread=False, a busy timeout,
                         and WAL mode; other URLs get pool_pre_ping.
  connect()           -- context manager around engine.connect()/begin() that
                         maps OperationalError (unreachable DB, lock timeout)
                         to StoreUnavailable. IntegrityError is left alone so
                         repositories can translate conflicts themselves.

Layer rule: core/ is the kernel. No imports from api/, auth/, rbac/, or cache/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from core.errors import StoreUnavailable

logger = logging.getLogger("warden.database")


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str, timeout_seconds: float = 5.0) -> Engine:
    """Build the process-wide Engine for db_url."""
    connect_args: dict = {}
    kwargs: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
    else:
        kwargs["pool_pre_ping"] = True
        kwargs["pool_timeout"] = timeout_seconds
    engine = create_engine(db_url, connect_args=connect_args, **kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def connect(engine: Engine, *, begin: bool = False) -> Iterator[Connection]:
    """Yield a connection; with begin=True the block runs in one transaction."""
    try:
        with engine.begin() if begin else engine.connect() as conn:
            yield conn
    except OperationalError as exc:
        logger.error("Relational store unavailable: %s", exc.orig)
        raise StoreUnavailable("relational store unavailable") from exc
