"""
auth/dependencies.py -- FastAPI Depends() helpers around the AuthorizationGate.

The token is read from the Authorization: Bearer <token> header. The gate
instance is taken from request.app.state.gate, wired in the API lifespan.

try_get_identity() is the soft variant (returns None on failure).
get_identity() wraps it and raises HTTP 401 if unauthenticated.
require_roles() / require_permission() / require_permission_name() /
require_ownership_or_permission() are dependency factories that
authenticate first (401) and then authorize (403).

On success the verified Identity is attached to request.state.identity.

Layer rule: no imports from api/, rbac/, or cache/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.gate import AuthorizationGate, GateDecision
from auth.models import Identity
from core.errors import AuthFailure, ErrorCode

_UNAUTHENTICATED = {ErrorCode.TOKEN_INVALID, ErrorCode.TOKEN_EXPIRED, ErrorCode.TOKEN_REVOKED}


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header[:7].lower() == "bearer ":
        return header[7:].strip() or None
    return None


def _gate(request: Request) -> AuthorizationGate:
    return request.app.state.gate


def _enforce(request: Request, decision: GateDecision) -> Identity:
    """Return the identity of an allowed decision, raise 401/403 otherwise."""
    if decision.allowed and decision.identity is not None:
        request.state.identity = decision.identity
        return decision.identity
    failure = decision.failure or AuthFailure(ErrorCode.TOKEN_INVALID)
    detail = {"code": failure.code.value, "message": failure.message}
    if failure.code in _UNAUTHENTICATED:
        raise HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})
    raise HTTPException(status_code=403, detail=detail)


def try_get_identity(request: Request) -> Identity | None:
    """Authenticate if a valid bearer token is present; never raises."""
    decision = _gate(request).optional_authenticate(bearer_token(request))
    if decision.identity is not None:
        request.state.identity = decision.identity
    return decision.identity


def get_identity(request: Request) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_identity)): ...
    """
    return _enforce(request, _gate(request).authenticate(bearer_token(request)))


def require_roles(*roles: str) -> Callable[..., Identity]:
    """Dependency: the caller must currently hold at least one of roles."""

    def dependency(request: Request, identity: Identity = Depends(get_identity)) -> Identity:
        return _enforce(request, _gate(request).require_role(identity, roles))

    return dependency


def require_permission(resource: str, action: str) -> Callable[..., Identity]:
    """Dependency: the caller must currently hold resource:action."""

    def dependency(request: Request, identity: Identity = Depends(get_identity)) -> Identity:
        return _enforce(request, _gate(request).require_permission(identity, resource, action))

    return dependency


def require_permission_name(permission_name: str) -> Callable[..., Identity]:
    def dependency(request: Request, identity: Identity = Depends(get_identity)) -> Identity:
        return _enforce(request, _gate(request).require_permission_by_name(identity, permission_name))

    return dependency


def require_ownership_or_permission(resource: str, action: str) -> Callable[..., Identity]:
    """Dependency: the caller owns the target (path param id/account_id) or holds resource:action."""

    def dependency(request: Request, identity: Identity = Depends(get_identity)) -> Identity:
        raw = request.path_params.get("account_id", request.path_params.get("id"))
        try:
            resource_id = int(raw) if raw is not None else None
        except (TypeError, ValueError):
            resource_id = None
        return _enforce(
            request,
            _gate(request).require_ownership_or_permission(identity, resource_id, resource, action),
        )

    return dependency
