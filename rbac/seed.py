"""
rbac/seed.py -- Default role/permission catalog.

seed_catalog() is idempotent: existing roles, permissions, and edges are left
alone, so it is safe to run on every deploy.

  admin    -- every permission below
  manager  -- read access plus account updates and own-account management
  user     -- own-account management only
  guest    -- no permissions
"""

from __future__ import annotations

import logging

from rbac.store import PermissionGraph

logger = logging.getLogger("warden.rbac.seed")

ROLES: list[tuple[str, str]] = [
    ("admin", "System administrator"),
    ("manager", "Manager"),
    ("user", "Regular user"),
    ("guest", "Guest"),
]

# (name, resource, action, description)
PERMISSIONS: list[tuple[str, str, str, str]] = [
    ("view_accounts", "account", "read", "List accounts"),
    ("create_account", "account", "create", "Create accounts"),
    ("update_account", "account", "update", "Update accounts"),
    ("delete_account", "account", "delete", "Delete accounts"),
    ("manage_own_account", "account", "manage_own", "Manage one's own account"),
    ("view_roles", "role", "read", "List roles"),
    ("create_role", "role", "create", "Create roles"),
    ("update_role", "role", "update", "Update roles"),
    ("delete_role", "role", "delete", "Delete roles"),
    ("view_permissions", "permission", "read", "List permissions"),
    ("create_permission", "permission", "create", "Create permissions"),
    ("update_permission", "permission", "update", "Update permissions"),
    ("delete_permission", "permission", "delete", "Delete permissions"),
    ("grant_permissions", "grant", "create", "Grant permissions to accounts"),
    ("revoke_permissions", "grant", "delete", "Revoke permissions from accounts"),
    ("view_user_permissions", "grant", "read", "View an account's permissions"),
]

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "admin": [name for name, *_ in PERMISSIONS],
    "manager": [
        "view_accounts",
        "update_account",
        "manage_own_account",
        "view_roles",
        "view_permissions",
        "view_user_permissions",
    ],
    "user": ["manage_own_account"],
    "guest": [],
}


def seed_catalog(graph: PermissionGraph) -> dict[str, int]:
    """Create any missing default roles, permissions, and edges.

    Entries that exist but were soft-deleted stay deleted: they are neither
    recreated nor reactivated, and no edges are added to them.

    Returns counts of what was created: {"roles": n, "permissions": n, "edges": n}.
    """
    created = {"roles": 0, "permissions": 0, "edges": 0}

    role_ids: dict[str, int] = {}
    for name, description in ROLES:
        role = graph.get_role_by_name(name, include_inactive=True)
        if role is None:
            role_ids[name] = graph.create_role(name, description)
            created["roles"] += 1
        elif role.is_active:
            role_ids[name] = role.id

    permission_ids: dict[str, int] = {}
    for name, resource, action, description in PERMISSIONS:
        permission = graph.get_permission_by_name(name, include_inactive=True)
        if permission is None:
            permission_ids[name] = graph.create_permission(name, resource, action, description)
            created["permissions"] += 1
        elif permission.is_active:
            permission_ids[name] = permission.id

    for role_name, permission_names in ROLE_PERMISSIONS.items():
        if role_name not in role_ids:
            continue
        for permission_name in permission_names:
            if permission_name not in permission_ids:
                continue
            if graph.assign_edge(role_ids[role_name], permission_ids[permission_name]) is not None:
                created["edges"] += 1

    logger.info(
        "Seeded catalog: %d role(s), %d permission(s), %d edge(s) created",
        created["roles"],
        created["permissions"],
        created["edges"],
    )
    return created
