"""
api/routes/v1/permissions.py -- Role/permission catalog and grant management endpoints.

Routes (all require auth; the permission each needs is listed):
  GET    /api/v1/roles                                   role:read
  GET    /api/v1/roles/{id}                              role:read
  POST   /api/v1/roles                                   role:create
  PATCH  /api/v1/roles/{id}                              role:update
  DELETE /api/v1/roles/{id}                              role:delete   (soft delete)
  GET    /api/v1/permissions                             permission:read
  GET    /api/v1/permissions/{id}                        permission:read
  POST   /api/v1/permissions                             permission:create
  PATCH  /api/v1/permissions/{id}                        permission:update
  DELETE /api/v1/permissions/{id}                        permission:delete   (soft delete)
  POST   /api/v1/roles/{role_id}/permissions/{perm_id}   role:update
  DELETE /api/v1/roles/{role_id}/permissions/{perm_id}   role:update
  POST   /api/v1/grants/role                             grant:create
  POST   /api/v1/grants/role/revoke                      grant:delete
  POST   /api/v1/grants/permission                       grant:create
  POST   /api/v1/grants/permission/revoke                grant:delete
  GET    /api/v1/accounts/{account_id}/permissions       owner, or grant:read
  GET    /api/v1/check                                   grant:read

Every check goes through the authorization gate at request time, so a grant
revoked a second ago is already refused even if the caller's access token
still lists the permission.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.errors import failure_exception
from api.models import (
    AccountPermissionsResponse,
    CreatedResponse,
    EdgeGrantRequest,
    GrantResponse,
    MessageResponse,
    PermissionCheckResponse,
    PermissionCreate,
    PermissionPatch,
    PermissionResponse,
    RoleCreate,
    RoleDetailResponse,
    RoleGrantRequest,
    RolePatch,
    RoleResponse,
)
from auth.dependencies import require_ownership_or_permission, require_permission
from auth.models import Identity
from core.errors import AuthFailure, ErrorCode, NotFound
from rbac.models import Permission, Role
from rbac.store import PermissionGraph

router = APIRouter()


def _graph(request: Request) -> PermissionGraph:
    return request.app.state.graph


def _role_response(role: Role) -> RoleResponse:
    return RoleResponse(id=role.id, name=role.name, description=role.description, created_at=role.created_at)


def _permission_response(permission: Permission) -> PermissionResponse:
    return PermissionResponse(
        id=permission.id,
        name=permission.name,
        resource=permission.resource,
        action=permission.action,
        description=permission.description,
        created_at=permission.created_at,
    )


def _no_changes() -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"code": "no_changes", "message": "No fields to update."},
    )


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, identity: Identity = Depends(require_permission("role", "read"))) -> list[RoleResponse]:
    return [_role_response(r) for r in _graph(request).list_roles()]


@router.get("/roles/{id}", response_model=RoleDetailResponse)
def get_role(
    request: Request,
    id: int,
    identity: Identity = Depends(require_permission("role", "read")),
) -> RoleDetailResponse:
    graph = _graph(request)
    role = graph.get_role(id)
    if role is None:
        raise NotFound(f"role {id}")
    return RoleDetailResponse(
        **_role_response(role).model_dump(),
        permissions=[_permission_response(p) for p in graph.role_permissions(id)],
    )


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    identity: Identity = Depends(require_permission("role", "create")),
) -> RoleResponse:
    """Create a role. 409 if the name is already used, even by a deactivated role."""
    graph = _graph(request)
    role_id = graph.create_role(body.name, body.description)
    return _role_response(graph.get_role(role_id))


@router.patch("/roles/{id}", response_model=RoleResponse)
def update_role(
    request: Request,
    id: int,
    body: RolePatch,
    identity: Identity = Depends(require_permission("role", "update")),
) -> RoleResponse:
    graph = _graph(request)
    if graph.get_role(id) is None:
        raise NotFound(f"role {id}")
    if not graph.update_role(id, name=body.name, description=body.description):
        raise _no_changes()
    return _role_response(graph.get_role(id))


@router.delete("/roles/{id}", status_code=204)
def delete_role(
    request: Request,
    id: int,
    identity: Identity = Depends(require_permission("role", "delete")),
) -> Response:
    """Deactivate a role. Grants through it stop authorizing immediately."""
    graph = _graph(request)
    if graph.get_role(id) is None:
        raise NotFound(f"role {id}")
    graph.deactivate_role(id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(
    request: Request,
    resource: Optional[str] = Query(default=None, max_length=100),
    identity: Identity = Depends(require_permission("permission", "read")),
) -> list[PermissionResponse]:
    return [_permission_response(p) for p in _graph(request).list_permissions(resource)]


@router.get("/permissions/{id}", response_model=PermissionResponse)
def get_permission(
    request: Request,
    id: int,
    identity: Identity = Depends(require_permission("permission", "read")),
) -> PermissionResponse:
    permission = _graph(request).get_permission(id)
    if permission is None:
        raise NotFound(f"permission {id}")
    return _permission_response(permission)


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
def create_permission(
    request: Request,
    body: PermissionCreate,
    identity: Identity = Depends(require_permission("permission", "create")),
) -> PermissionResponse:
    graph = _graph(request)
    permission_id = graph.create_permission(body.name, body.resource, body.action, body.description)
    return _permission_response(graph.get_permission(permission_id))


@router.patch("/permissions/{id}", response_model=PermissionResponse)
def update_permission(
    request: Request,
    id: int,
    body: PermissionPatch,
    identity: Identity = Depends(require_permission("permission", "update")),
) -> PermissionResponse:
    graph = _graph(request)
    if graph.get_permission(id) is None:
        raise NotFound(f"permission {id}")
    updated = graph.update_permission(
        id, name=body.name, description=body.description, resource=body.resource, action=body.action
    )
    if not updated:
        raise _no_changes()
    return _permission_response(graph.get_permission(id))


@router.delete("/permissions/{id}", status_code=204)
def delete_permission(
    request: Request,
    id: int,
    identity: Identity = Depends(require_permission("permission", "delete")),
) -> Response:
    graph = _graph(request)
    if graph.get_permission(id) is None:
        raise NotFound(f"permission {id}")
    graph.deactivate_permission(id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Role-permission edges
# ---------------------------------------------------------------------------


@router.post("/roles/{role_id}/permissions/{permission_id}", response_model=CreatedResponse, status_code=201)
def assign_edge(
    request: Request,
    role_id: int,
    permission_id: int,
    identity: Identity = Depends(require_permission("role", "update")),
) -> CreatedResponse:
    graph = _graph(request)
    if graph.get_role(role_id) is None or graph.get_permission(permission_id) is None:
        raise NotFound("role or permission")
    edge_id = graph.assign_edge(role_id, permission_id)
    if edge_id is None:
        raise HTTPException(
            status_code=409,
            detail={"code": ErrorCode.DUPLICATE_NAME.value, "message": "The role already has that permission."},
        )
    return CreatedResponse(id=edge_id)


@router.delete("/roles/{role_id}/permissions/{permission_id}", status_code=204)
def remove_edge(
    request: Request,
    role_id: int,
    permission_id: int,
    identity: Identity = Depends(require_permission("role", "update")),
) -> Response:
    """Disconnect a role from a permission; grants on the edge are deactivated."""
    if not _graph(request).remove_edge(role_id, permission_id):
        raise NotFound("role-permission edge")
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


@router.post("/grants/role", response_model=MessageResponse)
def grant_role(
    request: Request,
    body: RoleGrantRequest,
    identity: Identity = Depends(require_permission("grant", "create")),
) -> MessageResponse:
    """Grant every permission of a role. Permissions already held are skipped."""
    if not _graph(request).grant_role(body.account_id, body.role_id, identity.account_id, body.expires_at):
        raise NotFound(f"role {body.role_id}")
    return MessageResponse(message="Role granted.")


@router.post("/grants/role/revoke", response_model=MessageResponse)
def revoke_role(
    request: Request,
    body: RoleGrantRequest,
    identity: Identity = Depends(require_permission("grant", "delete")),
) -> MessageResponse:
    if not _graph(request).revoke_role(body.account_id, body.role_id):
        raise NotFound("active grants for that role")
    return MessageResponse(message="Role revoked.")


@router.post("/grants/permission", response_model=CreatedResponse, status_code=201)
def grant_permission(
    request: Request,
    body: EdgeGrantRequest,
    identity: Identity = Depends(require_permission("grant", "create")),
) -> CreatedResponse:
    graph = _graph(request)
    edge_id = graph.get_edge_id(body.role_id, body.permission_id)
    if edge_id is None:
        raise NotFound("role-permission edge")
    grant_id = graph.grant(body.account_id, edge_id, identity.account_id, body.expires_at)
    if grant_id is None:
        raise failure_exception(AuthFailure(ErrorCode.DUPLICATE_GRANT))
    return CreatedResponse(id=grant_id)


@router.post("/grants/permission/revoke", response_model=MessageResponse)
def revoke_permission(
    request: Request,
    body: EdgeGrantRequest,
    identity: Identity = Depends(require_permission("grant", "delete")),
) -> MessageResponse:
    graph = _graph(request)
    edge_id = graph.get_edge_id(body.role_id, body.permission_id)
    if edge_id is None or not graph.revoke(body.account_id, edge_id):
        raise NotFound("active grant")
    return MessageResponse(message="Permission revoked.")


@router.get("/accounts/{account_id}/permissions", response_model=AccountPermissionsResponse)
def account_permissions(
    request: Request,
    account_id: int,
    identity: Identity = Depends(require_ownership_or_permission("grant", "read")),
) -> AccountPermissionsResponse:
    """Effective roles, permissions, and active grants of an account."""
    graph = _graph(request)
    grants = [
        GrantResponse(
            grant_id=g.grant_id,
            role_permission_id=g.role_permission_id,
            role_name=g.role_name,
            permission_name=g.permission_name,
            resource=g.resource,
            action=g.action,
            granted_by=g.granted_by,
            granted_at=g.granted_at,
            expires_at=g.expires_at,
            state=g.state.value,
        )
        for g in graph.list_grants(account_id)
    ]
    return AccountPermissionsResponse(
        account_id=account_id,
        roles=graph.account_roles(account_id),
        permissions=graph.account_permissions(account_id),
        grants=grants,
    )


@router.get("/check", response_model=PermissionCheckResponse)
def check_permission(
    request: Request,
    account_id: int = Query(gt=0),
    resource: str = Query(min_length=1, max_length=100),
    action: str = Query(min_length=1, max_length=50),
    identity: Identity = Depends(require_permission("grant", "read")),
) -> PermissionCheckResponse:
    allowed = _graph(request).has_permission(account_id, resource, action)
    return PermissionCheckResponse(account_id=account_id, resource=resource, action=action, allowed=allowed)
