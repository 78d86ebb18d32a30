"""
auth/sessions.py -- Session cache: opaque JSON payloads keyed by (account, session id).

Key format: session:{account_id}:{session_id}

The cache backend is the sole authority on liveness. There is no expiry
timestamp inside the payload and no application-side sweep: a session whose
TTL has elapsed is simply absent.

Session ids come from secrets.token_hex(32) -- unguessable, and never derived
from the account id or the payload.

Layer rule: no imports from api/ or rbac/. Talks to the cache only through the
KeyValueCache interface.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from auth.tokens import generate_secure_token
from cache.store import KeyValueCache

logger = logging.getLogger("warden.auth.sessions")

DEFAULT_SESSION_TTL_SECONDS = 24 * 60 * 60


def _key(account_id: int, session_id: str) -> str:
    return f"session:{account_id}:{session_id}"


class SessionCache:
    def __init__(self, cache: KeyValueCache, default_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS) -> None:
        self._cache = cache
        self.default_ttl_seconds = default_ttl_seconds

    def _ttl(self, ttl_seconds: int | None) -> int:
        if ttl_seconds is None:
            return self.default_ttl_seconds
        if ttl_seconds <= 0:
            raise ValueError(f"session ttl must be positive, got {ttl_seconds}")
        return ttl_seconds

    def create(self, account_id: int, payload: Any, ttl_seconds: int | None = None) -> str:
        """Store payload and return the new session id.

        payload may be any JSON value except null, so that get() returning
        None always means the session is gone.
        """
        if payload is None:
            raise ValueError("session payload must not be None")
        ttl = self._ttl(ttl_seconds)
        session_id = generate_secure_token()
        self._cache.set(_key(account_id, session_id), json.dumps(payload), ttl_seconds=ttl)
        return session_id

    def get(self, account_id: int, session_id: str) -> Any | None:
        raw = self._cache.get(_key(account_id, session_id))
        return json.loads(raw) if raw is not None else None

    def delete(self, account_id: int, session_id: str) -> bool:
        return self._cache.delete(_key(account_id, session_id)) > 0

    def extend(self, account_id: int, session_id: str, ttl_seconds: int | None = None) -> bool:
        """Reset the TTL. False if the session no longer exists."""
        return self._cache.expire(_key(account_id, session_id), self._ttl(ttl_seconds))

    def delete_all(self, account_id: int) -> int:
        """Drop every session of account_id (logout everywhere, password reset)."""
        keys = self._cache.scan(_key(account_id, "*"))
        removed = self._cache.delete(*keys) if keys else 0
        if removed:
            logger.info("Cleared %d session(s) for account %s", removed, account_id)
        return removed
