from __future__ import annotations

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cockpit.errors import Conflict, NotFound, Unauthorized, ValidationFailed
from cockpit.models import USER_ROLES, Permission, Role, RolePermission, User, UserRoleAssignment
from cockpit.rbac.permissions import Principal

log = structlog.get_logger(__name__)

# (resource, action, description)
PERMISSION_CATALOG: list[tuple[str, str, str]] = [
  ("admin", "access", "Open the admin panel"),
  ("admin", "manage_users", "Create, deactivate, delete users and change their roles"),
  ("admin", "manage_roles", "Create and edit roles and their permissions"),
  ("tasks", "create", "Create tasks"),
  ("tasks", "read", "View tasks"),
  ("tasks", "update", "Edit tasks"),
  ("tasks", "delete", "Delete tasks"),
  ("tasks", "export", "Export task lists"),
  ("notifications", "read", "Read own notifications"),
  ("alerts", "check", "Trigger the deadline/overdue alert scan"),
]

SYSTEM_ROLES: dict[str, tuple[str, list[tuple[str, str]]]] = {
  "ADMIN": ("Full access to every feature", [(r, a) for r, a, _ in PERMISSION_CATALOG]),
  "MANAGER": (
    "Manages tasks and reviews team progress",
    [
      ("admin", "access"),
      ("tasks", "create"),
      ("tasks", "read"),
      ("tasks", "update"),
      ("tasks", "delete"),
      ("tasks", "export"),
      ("notifications", "read"),
      ("alerts", "check"),
    ],
  ),
  "USER": (
    "Works on own tasks",
    [("tasks", "create"), ("tasks", "read"), ("tasks", "update"), ("notifications", "read")],
  ),
  "VIEWER": ("Read-only access", [("tasks", "read"), ("notifications", "read")]),
}

SYSTEM_ROLE_IMMUTABLE = "System roles cannot be modified"


def _role_query():
  return select(Role).options(selectinload(Role.permissions).selectinload(RolePermission.permission))


async def ensure_catalog(db: AsyncSession) -> None:
  """Idempotently seed the permission catalog and the system roles."""
  res = await db.execute(select(Permission))
  by_pair = {(p.resource, p.action): p for p in res.scalars().all()}
  for resource, action, description in PERMISSION_CATALOG:
    if (resource, action) not in by_pair:
      p = Permission(name=f"{resource}:{action}", resource=resource, action=action, description=description)
      db.add(p)
      by_pair[(resource, action)] = p
  await db.flush()

  for name, (description, pairs) in SYSTEM_ROLES.items():
    rres = await db.execute(select(Role).where(Role.name == name))
    role = rres.scalar_one_or_none()
    if role is not None:
      continue
    role = Role(name=name, description=description, is_system=True)
    db.add(role)
    await db.flush()
    for pair in pairs:
      db.add(RolePermission(role_id=role.id, permission_id=by_pair[pair].id))
  await db.flush()


async def load_principal(db: AsyncSession, user_id: str) -> Principal | None:
  res = await db.execute(
    select(User)
    .where(User.id == user_id)
    .options(
      selectinload(User.role_assignments)
      .selectinload(UserRoleAssignment.role)
      .selectinload(Role.permissions)
      .selectinload(RolePermission.permission)
    )
    .execution_options(populate_existing=True)
  )
  u = res.scalar_one_or_none()
  if u is None:
    return None
  return Principal.from_user(u)


async def list_roles(db: AsyncSession) -> list[Role]:
  res = await db.execute(_role_query().order_by(Role.name.asc()))
  return list(res.scalars().all())


async def list_permissions(db: AsyncSession) -> list[Permission]:
  res = await db.execute(select(Permission).order_by(Permission.resource.asc(), Permission.action.asc()))
  return list(res.scalars().all())


async def get_role(db: AsyncSession, role_id: str) -> Role:
  res = await db.execute(_role_query().where(Role.id == role_id).execution_options(populate_existing=True))
  role = res.scalar_one_or_none()
  if role is None:
    raise NotFound("Role not found")
  return role


async def _ensure_name_free(db: AsyncSession, name: str, *, exclude_id: str | None = None) -> None:
  q = select(Role.id).where(Role.name == name)
  if exclude_id:
    q = q.where(Role.id != exclude_id)
  if (await db.execute(q)).scalar_one_or_none():
    raise Conflict("Role with this name already exists")


async def create_role(db: AsyncSession, *, name: str | None, description: str | None) -> Role:
  clean = (name or "").strip()
  if not clean:
    raise ValidationFailed("Role name is required")
  await _ensure_name_free(db, clean)
  role = Role(name=clean, description=(description or "").strip() or None, is_system=False)
  db.add(role)
  await db.flush()
  log.info("rbac.role.created", role_id=role.id, name=clean)
  return await get_role(db, role.id)


async def update_role(db: AsyncSession, role_id: str, *, name: str | None, description: str | None, fields_set: set[str]) -> Role:
  role = await get_role(db, role_id)
  if role.is_system:
    raise Unauthorized(SYSTEM_ROLE_IMMUTABLE)
  if "name" in fields_set:
    clean = (name or "").strip()
    if not clean:
      raise ValidationFailed("Role name is required")
    if clean != role.name:
      await _ensure_name_free(db, clean, exclude_id=role.id)
      role.name = clean
  if "description" in fields_set:
    role.description = (description or "").strip() or None
  await db.flush()
  return await get_role(db, role.id)


async def set_role_permissions(db: AsyncSession, role_id: str, permission_ids: list[str]) -> Role:
  role = await get_role(db, role_id)
  if role.is_system:
    raise Unauthorized(SYSTEM_ROLE_IMMUTABLE)
  wanted = list(dict.fromkeys(permission_ids))
  if wanted:
    res = await db.execute(select(Permission.id).where(Permission.id.in_(wanted)))
    known = set(res.scalars().all())
    unknown = [pid for pid in wanted if pid not in known]
    if unknown:
      raise ValidationFailed("Unknown permission id", extra={"permissionIds": unknown})
  await db.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
  for pid in wanted:
    db.add(RolePermission(role_id=role.id, permission_id=pid))
  await db.flush()
  log.info("rbac.role.permissions_replaced", role_id=role.id, count=len(wanted))
  return await get_role(db, role.id)


async def delete_role(db: AsyncSession, role_id: str) -> None:
  role = await get_role(db, role_id)
  if role.is_system:
    raise Unauthorized(SYSTEM_ROLE_IMMUTABLE)
  await db.execute(delete(UserRoleAssignment).where(UserRoleAssignment.role_id == role.id))
  await db.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
  await db.execute(delete(Role).where(Role.id == role.id))
  log.info("rbac.role.deleted", role_id=role_id)


async def grant_primary_assignment(db: AsyncSession, user: User, *, assigned_by: str | None = None) -> bool:
  """Attach the assignment matching ``user.role`` to a freshly created user, if that Role exists."""
  res = await db.execute(select(Role.id).where(Role.name == user.role))
  role_id = res.scalar_one_or_none()
  if role_id is None:
    log.warning("rbac.role.missing", role=user.role, user_id=user.id)
    return False
  db.add(UserRoleAssignment(user_id=user.id, role_id=role_id, assigned_by=assigned_by))
  await db.flush()
  return True


async def assign_role(db: AsyncSession, *, user_id: str, role_name: str, assigned_by: str | None) -> User:
  """
  Set a user's primary role and keep the assignment table in lockstep.

  The user ends up with exactly one assignment, pointing at the Role row named
  after the enum value. When no such Role row exists nothing is written.
  """
  if role_name not in USER_ROLES:
    raise ValidationFailed("Invalid role")
  ures = await db.execute(select(User).where(User.id == user_id))
  user = ures.scalar_one_or_none()
  if user is None:
    raise NotFound("User not found")
  rres = await db.execute(select(Role).where(Role.name == role_name))
  role = rres.scalar_one_or_none()
  if role is None:
    raise NotFound(f"Role '{role_name}' is not defined")

  user.role = role_name
  await db.execute(delete(UserRoleAssignment).where(UserRoleAssignment.user_id == user.id))
  db.add(UserRoleAssignment(user_id=user.id, role_id=role.id, assigned_by=assigned_by))
  await db.flush()
  log.info("rbac.role.assigned", user_id=user.id, role=role_name, assigned_by=assigned_by)
  return user
