"""
rbac/store.py -- The permission graph: roles, permissions, edges, and account grants.

Pattern: Repository + Data Mapper over SQLAlchemy Core, same as auth/store.py.

Authorization rule (the one invariant everything else serves):
  An account holds a permission iff some grant row
    - belongs to the account,
    - is_active = 1,
    - has expires_at NULL or later than *now* (injected clock),
    - points at an edge whose permission AND role are both active.
  Expired grants stop counting the moment they expire. cleanup_expired_grants()
  only tidies the flag afterwards; correctness never waits for it.

Grant uniqueness:
  At most one *active* grant per (account, edge). Enforced twice: a caller-level
  check inside the insert transaction, and a partial unique index on
  (account_id, role_permission_id) WHERE is_active = 1 for the race the check
  cannot see. Before checking, grant() moves any expired-but-flagged grant on
  the same edge to its terminal state, so an expired grant never blocks a new one.

Soft deletion:
  Roles and permissions are deactivated, never deleted; the authorization
  queries join through both, so deactivating either one disables every grant
  that reaches it without touching grant rows.

Layer rule: no imports from api/, auth/, or cache/.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from core.clock import Clock, SystemClock, from_iso, to_iso
from core.database import connect
from core.errors import DuplicateName
from rbac.models import AccountGrant, GrantView, Permission, Role

logger = logging.getLogger("warden.rbac")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("resource", String(100), nullable=False, index=True),
    Column("action", String(50), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_edges = Table(
    "role_permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False, index=True),
    Column("permission_id", Integer, ForeignKey("permissions.id"), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
)

# role_permission_id carries no FK: grant rows outlive a removed edge as audit history.
_grants = Table(
    "account_grants",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("role_permission_id", Integer, nullable=False, index=True),
    Column("granted_by", Integer),
    Column("granted_at", String(32), nullable=False),
    Column("expires_at", String(32), index=True),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Index(
        "uq_account_grants_active",
        "account_id",
        "role_permission_id",
        unique=True,
        sqlite_where=text("is_active = 1"),
        postgresql_where=text("is_active = 1"),
    ),
)

# grants -> edges -> permissions, roles
_grant_graph = _grants.join(_edges, _grants.c.role_permission_id == _edges.c.id).join(
    _permissions, _edges.c.permission_id == _permissions.c.id
).join(_roles, _edges.c.role_id == _roles.c.id)


def _live_grant(now: str):
    """WHERE fragment: grant is active and unexpired at now."""
    return (_grants.c.is_active == 1) & or_(_grants.c.expires_at.is_(None), _grants.c.expires_at > now)


def _effective(account_id: int, now: str):
    """WHERE fragment: grants of account_id that currently authorize something."""
    return (
        (_grants.c.account_id == account_id)
        & _live_grant(now)
        & (_permissions.c.is_active == 1)
        & (_roles.c.is_active == 1)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PermissionGraph:
    """Repository and query engine for the role/permission graph.

    Satisfies the PermissionChecker protocol used by the authorization gate
    (has_permission, has_permission_by_name, has_role, account_permissions).

    Usage:
        graph = PermissionGraph(engine)
        editor = graph.create_role("editor")
        write = graph.create_permission("write_article", "article", "write")
        graph.assign_edge(editor, write)
        graph.grant_role(account_id=42, role_id=editor, granted_by=1)
        graph.has_permission(42, "article", "write")   # True
    """

    def __init__(self, engine: Engine, clock: Clock | None = None) -> None:
        self.engine = engine
        self._clock = clock or SystemClock()
        _metadata.create_all(self.engine)

    def _now(self) -> str:
        return to_iso(self._clock.now())

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, name: str, description: str | None = None) -> int:
        """Insert a role. Raises DuplicateName if the name is taken (active or not)."""
        now = self._now()
        with connect(self.engine, begin=True) as conn:
            if conn.execute(select(_roles.c.id).where(_roles.c.name == name)).first() is not None:
                raise DuplicateName(f"role {name!r} already exists")
            try:
                result = conn.execute(
                    _roles.insert().values(name=name, description=description, created_at=now, updated_at=now)
                )
            except IntegrityError as exc:
                raise DuplicateName(f"role {name!r} already exists") from exc
        logger.info("Created role %r", name)
        return result.inserted_primary_key[0]

    def get_role(self, role_id: int) -> Role | None:
        """Active role by id. Returns None if missing or deactivated."""
        with connect(self.engine) as conn:
            row = conn.execute(_roles.select().where((_roles.c.id == role_id) & (_roles.c.is_active == 1))).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str, include_inactive: bool = False) -> Role | None:
        stmt = _roles.select().where(_roles.c.name == name)
        if not include_inactive:
            stmt = stmt.where(_roles.c.is_active == 1)
        with connect(self.engine) as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with connect(self.engine) as conn:
            rows = conn.execute(_roles.select().where(_roles.c.is_active == 1).order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role_id: int, name: str | None = None, description: str | None = None) -> bool:
        """Rename/redescribe a role. False if nothing to change or role missing."""
        fields = {k: v for k, v in (("name", name), ("description", description)) if v is not None}
        if not fields:
            return False
        return self._update(_roles, role_id, fields, "role")

    def deactivate_role(self, role_id: int) -> bool:
        """Soft-delete a role. Every grant reaching it stops authorizing immediately."""
        return self._update(_roles, role_id, {"is_active": 0}, "role")

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, name: str, resource: str, action: str, description: str | None = None) -> int:
        """Insert a permission. Raises DuplicateName if the name is taken.

        (resource, action) pairs need not be unique; name must be.
        """
        now = self._now()
        with connect(self.engine, begin=True) as conn:
            if conn.execute(select(_permissions.c.id).where(_permissions.c.name == name)).first() is not None:
                raise DuplicateName(f"permission {name!r} already exists")
            try:
                result = conn.execute(
                    _permissions.insert().values(
                        name=name,
                        resource=resource,
                        action=action,
                        description=description,
                        created_at=now,
                        updated_at=now,
                    )
                )
            except IntegrityError as exc:
                raise DuplicateName(f"permission {name!r} already exists") from exc
        logger.info("Created permission %r (%s:%s)", name, resource, action)
        return result.inserted_primary_key[0]

    def get_permission(self, permission_id: int) -> Permission | None:
        with connect(self.engine) as conn:
            row = conn.execute(
                _permissions.select().where((_permissions.c.id == permission_id) & (_permissions.c.is_active == 1))
            ).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_name(self, name: str, include_inactive: bool = False) -> Permission | None:
        stmt = _permissions.select().where(_permissions.c.name == name)
        if not include_inactive:
            stmt = stmt.where(_permissions.c.is_active == 1)
        with connect(self.engine) as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self, resource: str | None = None) -> list[Permission]:
        stmt = _permissions.select().where(_permissions.c.is_active == 1)
        if resource is not None:
            stmt = stmt.where(_permissions.c.resource == resource)
        stmt = stmt.order_by(_permissions.c.resource, _permissions.c.action, _permissions.c.name)
        with connect(self.engine) as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_permission(r) for r in rows]

    def update_permission(
        self,
        permission_id: int,
        name: str | None = None,
        description: str | None = None,
        resource: str | None = None,
        action: str | None = None,
    ) -> bool:
        fields = {
            k: v
            for k, v in (("name", name), ("description", description), ("resource", resource), ("action", action))
            if v is not None
        }
        if not fields:
            return False
        return self._update(_permissions, permission_id, fields, "permission")

    def deactivate_permission(self, permission_id: int) -> bool:
        return self._update(_permissions, permission_id, {"is_active": 0}, "permission")

    def _update(self, table: Table, row_id: int, fields: dict, kind: str) -> bool:
        try:
            with connect(self.engine, begin=True) as conn:
                result = conn.execute(
                    table.update().where(table.c.id == row_id).values(updated_at=self._now(), **fields)
                )
        except IntegrityError as exc:
            raise DuplicateName(f"{kind} {fields.get('name')!r} already exists") from exc
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def assign_edge(self, role_id: int, permission_id: int) -> int | None:
        """Connect a role to a permission. Returns the edge id, or None if it already exists."""
        try:
            with connect(self.engine, begin=True) as conn:
                result = conn.execute(
                    _edges.insert().values(role_id=role_id, permission_id=permission_id, created_at=self._now())
                )
        except IntegrityError:
            return None
        return result.inserted_primary_key[0]

    def get_edge_id(self, role_id: int, permission_id: int) -> int | None:
        with connect(self.engine) as conn:
            return conn.execute(
                select(_edges.c.id).where((_edges.c.role_id == role_id) & (_edges.c.permission_id == permission_id))
            ).scalar()

    def remove_edge(self, role_id: int, permission_id: int) -> bool:
        """Disconnect a role from a permission.

        Active grants on the edge are deactivated first, in the same
        transaction; the grant rows themselves are kept.
        """
        with connect(self.engine, begin=True) as conn:
            edge_id = conn.execute(
                select(_edges.c.id).where((_edges.c.role_id == role_id) & (_edges.c.permission_id == permission_id))
            ).scalar()
            if edge_id is None:
                return False
            conn.execute(
                _grants.update()
                .where((_grants.c.role_permission_id == edge_id) & (_grants.c.is_active == 1))
                .values(is_active=0)
            )
            conn.execute(_edges.delete().where(_edges.c.id == edge_id))
        return True

    def role_permissions(self, role_id: int) -> list[Permission]:
        """Active permissions attached to role_id."""
        stmt = (
            select(_permissions)
            .select_from(_permissions.join(_edges, _edges.c.permission_id == _permissions.c.id))
            .where((_edges.c.role_id == role_id) & (_permissions.c.is_active == 1))
            .order_by(_permissions.c.resource, _permissions.c.action, _permissions.c.name)
        )
        with connect(self.engine) as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_permission(r) for r in rows]

    def permission_roles(self, permission_id: int) -> list[Role]:
        """Active roles that carry permission_id."""
        stmt = (
            select(_roles)
            .select_from(_roles.join(_edges, _edges.c.role_id == _roles.c.id))
            .where((_edges.c.permission_id == permission_id) & (_roles.c.is_active == 1))
            .order_by(_roles.c.name)
        )
        with connect(self.engine) as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_role(r) for r in rows]

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def grant(
        self,
        account_id: int,
        edge_id: int,
        granted_by: int | None,
        expires_at: datetime | None = None,
    ) -> int | None:
        """Grant one edge to an account. None if an active grant already exists."""
        with connect(self.engine, begin=True) as conn:
            return self._grant_edge(conn, account_id, edge_id, granted_by, expires_at)

    def _grant_edge(
        self,
        conn: Connection,
        account_id: int,
        edge_id: int,
        granted_by: int | None,
        expires_at: datetime | None,
    ) -> int | None:
        now = self._now()
        same = (_grants.c.account_id == account_id) & (_grants.c.role_permission_id == edge_id)
        # Expired grants are terminal: clear their flag so they cannot block a new grant.
        conn.execute(
            _grants.update()
            .where(same & (_grants.c.is_active == 1) & _grants.c.expires_at.is_not(None) & (_grants.c.expires_at <= now))
            .values(is_active=0)
        )
        if conn.execute(select(_grants.c.id).where(same & (_grants.c.is_active == 1))).first() is not None:
            return None
        try:
            with conn.begin_nested():
                result = conn.execute(
                    _grants.insert().values(
                        account_id=account_id,
                        role_permission_id=edge_id,
                        granted_by=granted_by,
                        granted_at=now,
                        expires_at=to_iso(expires_at) if expires_at is not None else None,
                        is_active=1,
                    )
                )
        except IntegrityError:
            return None
        return result.inserted_primary_key[0]

    def revoke(self, account_id: int, edge_id: int) -> bool:
        """Revoke the account's active grant on edge_id. False if there was none."""
        with connect(self.engine, begin=True) as conn:
            result = conn.execute(
                _grants.update()
                .where(
                    (_grants.c.account_id == account_id)
                    & (_grants.c.role_permission_id == edge_id)
                    & (_grants.c.is_active == 1)
                )
                .values(is_active=0)
            )
        return result.rowcount > 0

    def grant_role(
        self,
        account_id: int,
        role_id: int,
        granted_by: int | None,
        expires_at: datetime | None = None,
    ) -> bool:
        """Grant every current edge of role_id (to active permissions) to the account.

        All-or-nothing: the edges are granted in one transaction, and any
        failure other than "already granted" rolls the whole role back. Edges
        the account already holds are skipped. Returns False if the role does
        not exist or is inactive.
        """
        with connect(self.engine, begin=True) as conn:
            role_active = conn.execute(
                select(_roles.c.id).where((_roles.c.id == role_id) & (_roles.c.is_active == 1))
            ).first()
            if role_active is None:
                return False
            edge_ids = conn.execute(
                select(_edges.c.id)
                .select_from(_edges.join(_permissions, _edges.c.permission_id == _permissions.c.id))
                .where((_edges.c.role_id == role_id) & (_permissions.c.is_active == 1))
                .order_by(_edges.c.id)
            ).scalars().all()
            created = sum(
                1 for edge_id in edge_ids if self._grant_edge(conn, account_id, edge_id, granted_by, expires_at) is not None
            )
        logger.info(
            "Granted role %s to account %s: %d new grant(s), %d already held (by %s)",
            role_id,
            account_id,
            created,
            len(edge_ids) - created,
            granted_by,
        )
        return True

    def revoke_role(self, account_id: int, role_id: int) -> bool:
        """Deactivate, in one statement, every active grant of the account on role_id's edges."""
        role_edges = select(_edges.c.id).where(_edges.c.role_id == role_id).scalar_subquery()
        with connect(self.engine, begin=True) as conn:
            result = conn.execute(
                _grants.update()
                .where(
                    (_grants.c.account_id == account_id)
                    & (_grants.c.is_active == 1)
                    & _grants.c.role_permission_id.in_(role_edges)
                )
                .values(is_active=0)
            )
        logger.info("Revoked role %s from account %s (%d grant(s))", role_id, account_id, result.rowcount)
        return result.rowcount > 0

    def list_grants(self, account_id: int, include_inactive: bool = False) -> list[GrantView]:
        """Grants of an account with role/permission names and their current state."""
        stmt = (
            select(
                _grants,
                _roles.c.name.label("role_name"),
                _permissions.c.name.label("permission_name"),
                _permissions.c.resource,
                _permissions.c.action,
            )
            .select_from(_grant_graph)
            .where(_grants.c.account_id == account_id)
            .order_by(_grants.c.granted_at.desc())
        )
        if not include_inactive:
            stmt = stmt.where(_live_grant(self._now()))
        now = self._clock.now()
        with connect(self.engine) as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_grant_view(r, now) for r in rows]

    def cleanup_expired_grants(self) -> int:
        """Clear is_active on grants past expiry. Hygiene only; queries already ignore them."""
        now = self._now()
        with connect(self.engine, begin=True) as conn:
            result = conn.execute(
                _grants.update()
                .where((_grants.c.is_active == 1) & _grants.c.expires_at.is_not(None) & (_grants.c.expires_at <= now))
                .values(is_active=0)
            )
        if result.rowcount:
            logger.info("Deactivated %d expired grant(s)", result.rowcount)
        return result.rowcount

    # ------------------------------------------------------------------
    # Authorization queries
    # ------------------------------------------------------------------

    def has_permission(self, account_id: int, resource: str, action: str) -> bool:
        return self._exists(
            _effective(account_id, self._now()) & (_permissions.c.resource == resource) & (_permissions.c.action == action)
        )

    def has_permission_by_name(self, account_id: int, permission_name: str) -> bool:
        return self._exists(_effective(account_id, self._now()) & (_permissions.c.name == permission_name))

    def has_role(self, account_id: int, role_name: str) -> bool:
        return self._exists(_effective(account_id, self._now()) & (_roles.c.name == role_name))

    def _exists(self, where) -> bool:
        stmt = select(func.count()).select_from(_grant_graph).where(where)
        with connect(self.engine) as conn:
            return (conn.execute(stmt).scalar() or 0) > 0

    def account_permissions(self, account_id: int) -> list[str]:
        """Names of the permissions the account currently holds, sorted."""
        stmt = (
            select(_permissions.c.name)
            .distinct()
            .select_from(_grant_graph)
            .where(_effective(account_id, self._now()))
            .order_by(_permissions.c.name)
        )
        with connect(self.engine) as conn:
            return list(conn.execute(stmt).scalars().all())

    def account_roles(self, account_id: int) -> list[str]:
        stmt = (
            select(_roles.c.name)
            .distinct()
            .select_from(_grant_graph)
            .where(_effective(account_id, self._now()))
            .order_by(_roles.c.name)
        )
        with connect(self.engine) as conn:
            return list(conn.execute(stmt).scalars().all())


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        is_active=bool(row.is_active),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        resource=row.resource,
        action=row.action,
        description=row.description,
        is_active=bool(row.is_active),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )


def _row_to_grant(row) -> AccountGrant:
    return AccountGrant(
        id=row.id,
        account_id=row.account_id,
        role_permission_id=row.role_permission_id,
        granted_by=row.granted_by,
        granted_at=from_iso(row.granted_at),
        expires_at=from_iso(row.expires_at),
        is_active=bool(row.is_active),
    )


def _row_to_grant_view(row, now: datetime) -> GrantView:
    grant = _row_to_grant(row)
    return GrantView(
        grant_id=grant.id,
        role_permission_id=grant.role_permission_id,
        role_name=row.role_name,
        permission_name=row.permission_name,
        resource=row.resource,
        action=row.action,
        granted_by=grant.granted_by,
        granted_at=grant.granted_at,
        expires_at=grant.expires_at,
        state=grant.state(now),
    )
