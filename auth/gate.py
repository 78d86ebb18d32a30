"""
auth/gate.py -- Authorization gate: turns a bearer token into an allow/deny decision.

Framework-neutral. auth/dependencies.py adapts it to FastAPI; anything else
(a CLI, a worker) can call it directly.

Every method returns a GateDecision and never raises for an expected outcome:
  allowed=True   -> identity is set, failure is None
  allowed=False  -> failure carries the ErrorCode; identity is set when the
                    caller was authenticated but not authorized

Authentication failures are TOKEN_INVALID / TOKEN_EXPIRED; authorization
failures are always PERMISSION_DENIED. Adapters map the first group to 401
and the second to 403.

Authorization is checked against the PermissionChecker at call time, never
against the permissions claim frozen into the access token, so a revoked or
expired grant stops working before the token does.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional, Protocol

from auth.models import Identity
from auth.tokens import TokenIssuer
from core.errors import AuthFailure, ErrorCode, TokenExpired, TokenInvalid

logger = logging.getLogger("warden.auth.gate")


class PermissionChecker(Protocol):
    def has_permission(self, account_id: int, resource: str, action: str) -> bool: ...
    def has_permission_by_name(self, account_id: int, permission_name: str) -> bool: ...
    def has_role(self, account_id: int, role_name: str) -> bool: ...
    def account_permissions(self, account_id: int) -> list[str]: ...


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    identity: Optional[Identity] = None
    failure: Optional[AuthFailure] = None

    @classmethod
    def allow(cls, identity: Optional[Identity]) -> GateDecision:
        return cls(allowed=True, identity=identity)

    @classmethod
    def deny(cls, code: ErrorCode, identity: Optional[Identity] = None) -> GateDecision:
        return cls(allowed=False, identity=identity, failure=AuthFailure(code))


class AuthorizationGate:
    def __init__(self, issuer: TokenIssuer, checker: PermissionChecker) -> None:
        self.issuer = issuer
        self.checker = checker

    def authenticate(self, token: Optional[str]) -> GateDecision:
        """Verify an access token. A missing token is TOKEN_INVALID."""
        if not token:
            return GateDecision.deny(ErrorCode.TOKEN_INVALID)
        try:
            identity = self.issuer.verify_access(token)
        except TokenExpired:
            return GateDecision.deny(ErrorCode.TOKEN_EXPIRED)
        except TokenInvalid as exc:
            logger.debug("Rejected access token: %s", exc.detail)
            return GateDecision.deny(ErrorCode.TOKEN_INVALID)
        return GateDecision.allow(identity)

    def optional_authenticate(self, token: Optional[str]) -> GateDecision:
        """Always allowed. identity is set only if token is present and valid."""
        decision = self.authenticate(token)
        return GateDecision.allow(decision.identity if decision.allowed else None)

    def require_role(self, identity: Identity, roles: Iterable[str]) -> GateDecision:
        """Allowed if the account currently holds any one of roles."""
        roles = list(roles)
        if any(self.checker.has_role(identity.account_id, role) for role in roles):
            return GateDecision.allow(identity)
        return self._denied(identity, f"role in {roles}")

    def require_permission(self, identity: Identity, resource: str, action: str) -> GateDecision:
        if self.checker.has_permission(identity.account_id, resource, action):
            return GateDecision.allow(identity)
        return self._denied(identity, f"{resource}:{action}")

    def require_permission_by_name(self, identity: Identity, permission_name: str) -> GateDecision:
        if self.checker.has_permission_by_name(identity.account_id, permission_name):
            return GateDecision.allow(identity)
        return self._denied(identity, permission_name)

    def require_ownership_or_permission(
        self,
        identity: Identity,
        resource_id: Optional[int],
        resource: str,
        action: str,
    ) -> GateDecision:
        """Allowed for the owner of resource_id, otherwise only with resource:action."""
        if resource_id is not None and resource_id == identity.account_id:
            return GateDecision.allow(identity)
        return self.require_permission(identity, resource, action)

    def _denied(self, identity: Identity, wanted: str) -> GateDecision:
        logger.info("Denied account %s: missing %s", identity.account_id, wanted)
        return GateDecision.deny(ErrorCode.PERMISSION_DENIED, identity)
