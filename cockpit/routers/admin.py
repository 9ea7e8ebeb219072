from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cockpit.accounts.tokens import issue_verification, revoke_sessions
from cockpit.deps import get_db, require_permission
from cockpit.errors import Conflict, NotFound, ValidationFailed
from cockpit.mail import send_verification_email
from cockpit.models import (
  USER_ROLES,
  Activity,
  AlertPreference,
  Comment,
  Notification,
  Subtask,
  Task,
  User,
  UserRoleAssignment,
  utcnow,
)
from cockpit.rbac import store
from cockpit.rbac.permissions import Principal, can_access_admin, can_manage_roles, can_manage_users
from cockpit.schemas import (
  AdminUserCreateIn,
  AdminUserOut,
  PermissionOut,
  RoleAssignmentOut,
  RoleCreateIn,
  RoleOut,
  RolePermissionsIn,
  RoleUpdateIn,
  UserIdIn,
  UserRoleIn,
  UserStatusIn,
)
from cockpit.security import hash_password, normalize_email, password_errors, validate_email

router = APIRouter(prefix="/admin", tags=["admin"])
log = structlog.get_logger(__name__)


def _admin_user_out(u: User) -> AdminUserOut:
  return AdminUserOut(
    id=u.id,
    email=u.email,
    name=u.name,
    role=u.role,
    isActive=bool(u.is_active),
    emailVerified=u.email_verified,
    createdAt=u.created_at,
    failedLoginAttempts=int(u.failed_login_attempts or 0),
    lockedUntil=u.locked_until,
    roleAssignments=[
      RoleAssignmentOut(id=a.id, roleId=a.role_id, roleName=a.role.name, assignedBy=a.assigned_by, assignedAt=a.assigned_at)
      for a in u.role_assignments
    ],
  )


def _permission_out(p) -> PermissionOut:
  return PermissionOut(id=p.id, name=p.name, resource=p.resource, action=p.action, description=p.description)


def _role_out(r) -> RoleOut:
  perms = sorted((rp.permission for rp in r.permissions), key=lambda p: (p.resource, p.action))
  return RoleOut(
    id=r.id,
    name=r.name,
    description=r.description,
    isSystem=bool(r.is_system),
    permissions=[_permission_out(p) for p in perms],
    createdAt=r.created_at,
  )


async def _load_user(db: AsyncSession, user_id: str) -> User:
  res = await db.execute(
    select(User)
    .where(User.id == user_id)
    .options(selectinload(User.role_assignments).selectinload(UserRoleAssignment.role))
    .execution_options(populate_existing=True)
  )
  u = res.scalar_one_or_none()
  if u is None:
    raise NotFound("User not found")
  return u


# Users


@router.get("/users", response_model=list[AdminUserOut])
async def list_users(
  principal: Principal = Depends(require_permission(can_access_admin)),
  db: AsyncSession = Depends(get_db),
) -> list[AdminUserOut]:
  res = await db.execute(
    select(User)
    .options(selectinload(User.role_assignments).selectinload(UserRoleAssignment.role))
    .order_by(User.created_at.desc())
  )
  return [_admin_user_out(u) for u in res.scalars().all()]


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(
  payload: AdminUserCreateIn,
  principal: Principal = Depends(require_permission(can_manage_users)),
  db: AsyncSession = Depends(get_db),
) -> dict:
  if not (payload.name or "").strip() or not payload.email or not payload.password:
    raise ValidationFailed("Name, email, and password are required")
  if not validate_email(payload.email):
    raise ValidationFailed("Please enter a valid email address")
  errs = password_errors(payload.password)
  if errs:
    raise ValidationFailed(errs[0])
  if payload.role not in USER_ROLES:
    raise ValidationFailed("Invalid role")
  email = normalize_email(payload.email)
  if (await db.execute(select(User.id).where(User.email == email))).scalar_one_or_none():
    raise Conflict("User with this email already exists")

  u = User(
    email=email,
    name=payload.name.strip(),
    password_hash=hash_password(payload.password),
    role="USER",
    is_active=True,
    email_verified=utcnow() if payload.emailVerified else None,
  )
  token = None if payload.emailVerified else issue_verification(u)
  db.add(u)
  await db.flush()
  await store.assign_role(db, user_id=u.id, role_name=payload.role, assigned_by=principal.id)
  await db.commit()
  log.info("admin.user.created", user_id=u.id, role=payload.role, actor_id=principal.id)

  message = "User created successfully."
  if token:
    sent = await send_verification_email(u.email, token, u.name)
    if sent.success:
      message = "User created successfully. Verification email sent."
    else:
      log.warning("admin.user.verification_email_failed", user_id=u.id, error=sent.error)
  u = await _load_user(db, u.id)
  return {"message": message, "user": _admin_user_out(u).model_dump(mode="json")}


@router.delete("/users")
async def delete_user(
  userId: str | None = Query(default=None),
  principal: Principal = Depends(require_permission(can_manage_users)),
  db: AsyncSession = Depends(get_db),
) -> dict:
  if not userId:
    raise ValidationFailed("User ID is required")
  if userId == principal.id:
    raise ValidationFailed("Cannot delete your own account")
  u = (await db.execute(select(User).where(User.id == userId))).scalar_one_or_none()
  if u is None:
    raise NotFound("User not found")

  owned = select(Task.id).where(Task.owner_id == u.id)
  # Children first; nothing relies on database-level cascades.
  await db.execute(delete(Notification).where(or_(Notification.user_id == u.id, Notification.task_id.in_(owned))))
  await db.execute(delete(Comment).where(or_(Comment.user_id == u.id, Comment.task_id.in_(owned))))
  await db.execute(delete(Activity).where(or_(Activity.user_id == u.id, Activity.task_id.in_(owned))))
  await db.execute(delete(Subtask).where(Subtask.task_id.in_(owned)))
  await db.execute(delete(Task).where(Task.owner_id == u.id))
  await db.execute(delete(AlertPreference).where(AlertPreference.user_id == u.id))
  await db.execute(delete(UserRoleAssignment).where(UserRoleAssignment.user_id == u.id))
  await db.execute(update(UserRoleAssignment).where(UserRoleAssignment.assigned_by == u.id).values(assigned_by=None))
  await revoke_sessions(db, u.id)
  await db.execute(delete(User).where(User.id == u.id))
  await db.commit()
  log.info("admin.user.deleted", user_id=userId, actor_id=principal.id)
  return {"message": "User deleted successfully"}


@router.put("/users/role")
async def update_user_role(
  payload: UserRoleIn,
  principal: Principal = Depends(require_permission(can_manage_users)),
  db: AsyncSession = Depends(get_db),
) -> dict:
  if not payload.userId or not payload.role:
    raise ValidationFailed("User ID and role are required")
  await store.assign_role(db, user_id=payload.userId, role_name=payload.role, assigned_by=principal.id)
  await db.commit()
  return {"message": "User role updated successfully"}


@router.put("/users/status")
async def update_user_status(
  payload: UserStatusIn,
  principal: Principal = Depends(require_permission(can_manage_users)),
  db: AsyncSession = Depends(get_db),
) -> dict:
  if not payload.userId or payload.isActive is None:
    raise ValidationFailed("User ID and isActive status are required")
  if payload.userId == principal.id and not payload.isActive:
    raise ValidationFailed("Cannot deactivate your own account")
  u = (await db.execute(select(User).where(User.id == payload.userId))).scalar_one_or_none()
  if u is None:
    raise NotFound("User not found")
  u.is_active = bool(payload.isActive)
  if not u.is_active:
    await revoke_sessions(db, u.id)
  await db.commit()
  log.info("admin.user.status", user_id=u.id, is_active=u.is_active, actor_id=principal.id)
  return {"message": f"User {'activated' if u.is_active else 'deactivated'} successfully"}


@router.post("/users/verify")
async def verify_user(
  payload: UserIdIn,
  principal: Principal = Depends(require_permission(can_manage_users)),
  db: AsyncSession = Depends(get_db),
) -> dict:
  if not payload.userId:
    raise ValidationFailed("User ID is required")
  u = (await db.execute(select(User).where(User.id == payload.userId))).scalar_one_or_none()
  if u is None:
    raise NotFound("User not found")
  if u.email_verified is None:
    u.email_verified = utcnow()
  u.is_active = True
  u.verification_token = None
  u.verification_token_expires_at = None
  await db.commit()
  log.info("admin.user.verified", user_id=u.id, actor_id=principal.id)
  return {"message": "User verified successfully"}


# Roles


@router.get("/roles", response_model=list[RoleOut])
async def list_roles(
  principal: Principal = Depends(require_permission(can_manage_roles)),
  db: AsyncSession = Depends(get_db),
) -> list[RoleOut]:
  return [_role_out(r) for r in await store.list_roles(db)]


@router.post("/roles", status_code=status.HTTP_201_CREATED)
async def create_role(
  payload: RoleCreateIn,
  principal: Principal = Depends(require_permission(can_manage_roles)),
  db: AsyncSession = Depends(get_db),
) -> dict:
  role = await store.create_role(db, name=payload.name, description=payload.description)
  await db.commit()
  return {"message": "Role created successfully", "role": _role_out(role).model_dump(mode="json")}


@router.put("/roles/{role_id}", response_model=RoleOut)
async def update_role(
  role_id: str,
  payload: RoleUpdateIn,
  principal: Principal = Depends(require_permission(can_manage_roles)),
  db: AsyncSession = Depends(get_db),
) -> RoleOut:
  role = await store.update_role(
    db,
    role_id,
    name=payload.name,
    description=payload.description,
    fields_set=set(payload.model_fields_set),
  )
  await db.commit()
  return _role_out(role)


@router.put("/roles/{role_id}/permissions", response_model=RoleOut)
async def set_role_permissions(
  role_id: str,
  payload: RolePermissionsIn,
  principal: Principal = Depends(require_permission(can_manage_roles)),
  db: AsyncSession = Depends(get_db),
) -> RoleOut:
  role = await store.set_role_permissions(db, role_id, payload.permissionIds)
  await db.commit()
  return _role_out(role)


@router.delete("/roles/{role_id}")
async def delete_role(
  role_id: str,
  principal: Principal = Depends(require_permission(can_manage_roles)),
  db: AsyncSession = Depends(get_db),
) -> dict:
  await store.delete_role(db, role_id)
  await db.commit()
  return {"message": "Role deleted successfully"}


@router.get("/permissions", response_model=list[PermissionOut])
async def list_permissions(
  principal: Principal = Depends(require_permission(can_manage_roles)),
  db: AsyncSession = Depends(get_db),
) -> list[PermissionOut]:
  return [_permission_out(p) for p in await store.list_permissions(db)]
