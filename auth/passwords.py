"""
auth/passwords.py -- Credential verifier: one-way password hashing with bcrypt.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

Cost: 12 rounds by default (BCRYPT_ROUNDS). Tests lower it to 4; bcrypt's
floor. The cost is embedded in every digest, so changing it only affects newly
hashed passwords.

Timing equalization [C1]: PasswordHasher keeps a dummy digest computed once at
construction. AuthService verifies against it when an email is unknown, so
response time does not reveal whether an account exists.

Layer rule: no imports from api/, rbac/, or cache/.
"""

from __future__ import annotations

import bcrypt

from core.errors import CredentialFormatError

DEFAULT_ROUNDS = 12
_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_MAX_BYTES]


class PasswordHasher:
    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self._dummy_digest = self.hash("warden_timing_dummy")

    def hash(self, password: str) -> str:
        """Return a salted bcrypt digest of password.

        Only the first 72 bytes count (bcrypt limit); newer bcrypt releases
        raise instead of truncating, so the input is cut here.
        """
        return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, digest: str) -> bool:
        """Return True if password matches digest.

        Raises CredentialFormatError if digest is not a bcrypt digest at all;
        a well-formed digest that does not match returns False.
        """
        try:
            return bcrypt.checkpw(_encode(password), digest.encode("utf-8"))
        except ValueError as exc:
            raise CredentialFormatError("stored password digest is not a valid bcrypt hash") from exc

    def verify_dummy(self, password: str) -> None:
        """Burn one bcrypt verification's worth of time. Result is discarded."""
        self.verify(password, self._dummy_digest)
