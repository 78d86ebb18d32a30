"""
auth/lockout.py -- Login attempt guard: failed-login counters with a TTL window.

Key format: login_attempts:{email}:{origin}

Keying by (email, origin) rather than email alone means one misbehaving client
cannot lock everyone else out of an account, while a single source guessing
passwords for one account is still stopped. Guessing spread across many
origins is not covered by this guard; the per-IP route rate limit (slowapi)
is the coarse backstop for that.

Policy (defaults, both configurable):
  threshold 5   -- is_locked() is True once the counter reaches it
  window 900 s  -- every failure resets the counter's TTL to the window, so a
                   lock lifts 15 minutes after the *last* failure
A successful login deletes the counter.

is_locked() and get_attempts() only read; they never touch the counter.
"""

from __future__ import annotations

import logging

from cache.store import KeyValueCache

logger = logging.getLogger("warden.auth.lockout")

DEFAULT_THRESHOLD = 5
DEFAULT_WINDOW_SECONDS = 15 * 60


class LoginAttemptGuard:
    def __init__(
        self,
        cache: KeyValueCache,
        threshold: int = DEFAULT_THRESHOLD,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        self._cache = cache
        self.threshold = threshold
        self.window_seconds = window_seconds

    @staticmethod
    def _key(email: str, origin: str | None) -> str:
        return f"login_attempts:{email.lower()}:{origin or 'unknown'}"

    def record_attempt(self, email: str, origin: str | None, success: bool) -> None:
        key = self._key(email, origin)
        if success:
            self._cache.delete(key)
            return
        attempts = self._cache.incr(key, ttl_seconds=self.window_seconds)
        if attempts == self.threshold:
            logger.warning("Login locked for %s after %d failed attempts", email, attempts)

    def get_attempts(self, email: str, origin: str | None) -> int:
        raw = self._cache.get(self._key(email, origin))
        return int(raw) if raw is not None else 0

    def is_locked(self, email: str, origin: str | None) -> bool:
        return self.get_attempts(email, origin) >= self.threshold
