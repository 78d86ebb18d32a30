"""
core/errors.py -- Closed error taxonomy for Warden.

Two shapes, one vocabulary:

  ErrorCode     -- the closed set of failure kinds. Every failure that crosses a
                   component boundary is tagged with exactly one of these.

  AuthFailure   -- a *value* describing an expected, recoverable outcome (wrong
                   password, locked account, expired token, missing grant).
                   Returned, never raised.

  WardenError   -- base *exception* for the few kinds that are raised: token
                   verification failures (converted to AuthFailure by the gate
                   and the service), duplicate catalog names, and unexpected
                   infrastructure failures (store unreachable, malformed
                   digest). The API layer maps every code to an HTTP status in
                   one place (api/main.py).

Layer rule: core/ is the kernel. No imports from api/, auth/, rbac/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REVOKED = "token_revoked"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    DUPLICATE_NAME = "duplicate_name"
    DUPLICATE_GRANT = "duplicate_grant"
    STORE_UNAVAILABLE = "store_unavailable"
    CREDENTIAL_FORMAT = "credential_format"


# Client-facing messages: no attempt counts, no hint
# whether an email exists.
MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_CREDENTIALS: "Invalid email or password.",
    ErrorCode.ACCOUNT_LOCKED: "Too many failed login attempts. Try again later.",
    ErrorCode.TOKEN_INVALID: "Token is invalid.",
    ErrorCode.TOKEN_EXPIRED: "Token has expired.",
    ErrorCode.TOKEN_REVOKED: "Token has been revoked.",
    ErrorCode.PERMISSION_DENIED: "You do not have permission to perform this action.",
    ErrorCode.NOT_FOUND: "Resource not found.",
    ErrorCode.DUPLICATE_NAME: "A record with that name already exists.",
    ErrorCode.DUPLICATE_GRANT: "That grant already exists.",
    ErrorCode.STORE_UNAVAILABLE: "A backing store is temporarily unavailable.",
    ErrorCode.CREDENTIAL_FORMAT: "Stored credential is malformed.",
}


@dataclass(frozen=True)
class AuthFailure:
    """An expected failure, returned as a value."""

    code: ErrorCode

    @property
    def message(self) -> str:
        return MESSAGES[self.code]


class WardenError(Exception):
    """Base class for raised failures. Subclasses pin the error code."""

    code: ErrorCode = ErrorCode.STORE_UNAVAILABLE

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or MESSAGES[self.code])
        self.detail = detail

    def to_failure(self) -> AuthFailure:
        return AuthFailure(self.code)


class TokenInvalid(WardenError):
    code = ErrorCode.TOKEN_INVALID


class TokenExpired(WardenError):
    code = ErrorCode.TOKEN_EXPIRED


class NotFound(WardenError):
    code = ErrorCode.NOT_FOUND


class DuplicateName(WardenError):
    code = ErrorCode.DUPLICATE_NAME


class StoreUnavailable(WardenError):
    code = ErrorCode.STORE_UNAVAILABLE


class CredentialFormatError(WardenError):
    code = ErrorCode.CREDENTIAL_FORMAT
