"""
api/errors.py -- ErrorCode -> HTTP status mapping.

The single place where the closed error taxonomy meets HTTP. Route handlers
turn returned AuthFailure values into HTTPException via failure_exception();
raised WardenError subclasses reach the exception handler in api/main.py,
which uses the same table.

ACCOUNT_LOCKED maps to 429 with no hint of how many attempts remain.
"""

from __future__ import annotations

from fastapi import HTTPException

from core.errors import AuthFailure, ErrorCode

HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.ACCOUNT_LOCKED: 429,
    ErrorCode.TOKEN_INVALID: 401,
    ErrorCode.TOKEN_EXPIRED: 401,
    ErrorCode.TOKEN_REVOKED: 401,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.DUPLICATE_NAME: 409,
    ErrorCode.DUPLICATE_GRANT: 409,
    ErrorCode.STORE_UNAVAILABLE: 503,
    ErrorCode.CREDENTIAL_FORMAT: 500,
}


def failure_exception(failure: AuthFailure, status_code: int | None = None) -> HTTPException:
    """Build the HTTPException for an expected failure.

    status_code overrides the table, e.g. 400 for a spent one-time token
    where 401 would wrongly suggest re-authenticating.
    """
    return HTTPException(
        status_code=status_code or HTTP_STATUS[failure.code],
        detail={"code": failure.code.value, "message": failure.message},
    )
