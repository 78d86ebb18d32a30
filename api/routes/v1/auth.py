"""
api/routes/v1/auth.py -- Authentication and account recovery REST endpoints.

Routes:
  POST /api/v1/auth/register              -- create an account; sends verification token
  POST /api/v1/auth/login                 -- password login; returns access + refresh token
  POST /api/v1/auth/refresh               -- rotate a refresh token into a new pair
  POST /api/v1/auth/logout                -- revoke one refresh token (requires auth)
  POST /api/v1/auth/logout-all            -- revoke every refresh token and session (requires auth)
  GET  /api/v1/auth/me                    -- current identity with live roles/permissions
  GET  /api/v1/auth/sessions              -- live refresh tokens (signed-in devices)
  POST /api/v1/auth/change-password       -- requires auth and the current password
  POST /api/v1/auth/forgot-password       -- always 200, whether or not the email exists
  POST /api/v1/auth/reset-password        -- consume a reset token
  POST /api/v1/auth/verify-email          -- consume a verification token
  POST /api/v1/auth/resend-verification   -- always 200

Security:
  Login, register, forgot-password, and resend-verification are rate-limited
  per IP (LOGIN_RATE_LIMIT). Per-account lockout is separate and lives in
  AuthService.
  Wrong email and wrong password return the same error.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.errors import failure_exception
from api.limiter import limiter, login_rate_limit
from api.models import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    SessionRow,
    TokenResponse,
    VerifyEmailRequest,
)
from auth.dependencies import get_identity
from auth.models import Identity, TokenPair
from auth.service import AuthService
from core.errors import AuthFailure, ErrorCode

# Auth policy:
# - register, login, refresh, forgot/reset-password, verify-email, resend-verification: public
# - logout, logout-all, me, sessions, change-password: requires auth (get_identity)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _origin(request: Request) -> str | None:
    return request.client.host if request.client else None


def _device(request: Request) -> str | None:
    agent = request.headers.get("User-Agent")
    return agent[:255] if agent else None


def _token_response(pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=pair.expires_in,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)
@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create an unverified account. 409 if the email is taken."""
    account_id = _service(request).register(body.email, body.password, body.first_name, body.last_name)
    if account_id is None:
        raise HTTPException(
            status_code=409,
            detail={"code": ErrorCode.DUPLICATE_NAME.value, "message": "An account with that email already exists."},
        )
    return RegisterResponse(account_id=account_id, email=body.email)


@limiter.limit(login_rate_limit)
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    401 for bad credentials (unknown email or wrong password alike), 429 while
    the (email, origin) pair is locked out.
    """
    result = _service(request).attempt_login(body.email, body.password, _device(request), _origin(request))
    if result.failure is not None:
        exc = failure_exception(result.failure)
        exc.headers = {"Cache-Control": "no-store"}
        raise exc
    return _token_response(result.tokens)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a live refresh token for a new pair. The presented token is spent."""
    result = _service(request).attempt_refresh(body.refresh_token)
    if result.failure is not None:
        raise failure_exception(result.failure)
    return _token_response(result.tokens)


@limiter.limit(login_rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    _service(request).forgot_password(body.email)
    return MessageResponse(message="If the account exists, a password reset link has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    if not _service(request).reset_password(body.token, body.new_password, _origin(request)):
        raise failure_exception(AuthFailure(ErrorCode.TOKEN_INVALID), status_code=400)
    return MessageResponse(message="Password has been reset. Please log in again.")


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, body: VerifyEmailRequest) -> MessageResponse:
    if not _service(request).verify_email(body.token):
        raise failure_exception(AuthFailure(ErrorCode.TOKEN_INVALID), status_code=400)
    return MessageResponse(message="Email verified.")


@limiter.limit(login_rate_limit)
@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    _service(request).resend_verification(body.email)
    return MessageResponse(message="If the account exists and is unverified, a verification link has been sent.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshRequest, identity: Identity = Depends(get_identity)) -> MessageResponse:
    """Revoke one refresh token of the caller. Idempotent."""
    service = _service(request)
    record = service.tokens.find_refresh(body.refresh_token)
    if record is not None and record.account_id == identity.account_id:
        service.logout(body.refresh_token)
    return MessageResponse(message="Logged out.")


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, identity: Identity = Depends(get_identity)) -> MessageResponse:
    revoked = _service(request).logout_all(identity.account_id)
    return MessageResponse(message=f"Logged out of {revoked} session(s).")


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, identity: Identity = Depends(get_identity)) -> MeResponse:
    """Current account with roles and permissions as of now, not as of token issue."""
    service = _service(request)
    account = service.accounts.get_by_id(identity.account_id)
    if account is None:
        raise failure_exception(AuthFailure(ErrorCode.TOKEN_INVALID))
    graph = request.app.state.graph
    return MeResponse(
        account_id=account.id,
        email=account.email,
        first_name=account.first_name,
        last_name=account.last_name,
        is_verified=account.is_verified,
        roles=graph.account_roles(account.id),
        permissions=graph.account_permissions(account.id),
    )


@router.get("/auth/sessions", response_model=list[SessionRow])
def sessions(request: Request, identity: Identity = Depends(get_identity)) -> list[SessionRow]:
    records = _service(request).tokens.list_live(identity.account_id)
    return [
        SessionRow(
            id=r.id,
            device_info=r.device_info,
            ip_address=r.ip_address,
            created_at=r.created_at,
            expires_at=r.expires_at,
        )
        for r in records
    ]


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_identity),
) -> MessageResponse:
    """Change the caller's password. Every refresh token and session is revoked."""
    failure = _service(request).change_password(
        identity.account_id, body.current_password, body.new_password, _origin(request)
    )
    if failure is not None:
        raise failure_exception(failure, status_code=400 if failure.code is ErrorCode.INVALID_CREDENTIALS else None)
    return MessageResponse(message="Password changed. Please log in again.")
