"""
rbac/models.py -- Domain dataclasses for the permission graph.

Roles and Permissions are independent catalogs. RolePermission is the
many-to-many edge between them. AccountGrant attaches an account to one edge,
never to a bare role or permission, so every grant reads as "account A holds
permission P via role R".

Catalog entries are soft-deleted (is_active=False) and never removed.

Layer rule: no imports from api/, auth/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class GrantState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class Role:
    name: str
    id: int | None = None
    description: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Permission:
    name: str
    resource: str
    action: str
    id: int | None = None
    description: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RolePermission:
    role_id: int
    permission_id: int
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class AccountGrant:
    """One account's hold on one role-permission edge.

    State model: ACTIVE -> EXPIRED (time passes expires_at) or REVOKED
    (is_active cleared). Both are terminal. Note that cleanup_expired_grants()
    also clears is_active on expired rows, so a purged expired grant reads as
    REVOKED; either way it never authorizes anything again.
    """

    account_id: int
    role_permission_id: int
    id: int | None = None
    granted_by: int | None = None
    granted_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool = True

    def state(self, now: datetime) -> GrantState:
        if not self.is_active:
            return GrantState.REVOKED
        if self.expires_at is not None and self.expires_at <= now:
            return GrantState.EXPIRED
        return GrantState.ACTIVE


@dataclass(frozen=True)
class GrantView:
    """A grant joined with the names it resolves to, for admin listings."""

    grant_id: int
    role_permission_id: int
    role_name: str
    permission_name: str
    resource: str
    action: str
    granted_by: int | None
    granted_at: datetime | None
    expires_at: datetime | None
    state: GrantState
