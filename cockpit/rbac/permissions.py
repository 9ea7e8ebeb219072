"""
Permission resolution.

A principal is authorized for ``(resource, action)`` when its primary role is
ADMIN, or when any of its role assignments grants that exact pair. There are
no deny rules: assignments only ever add capabilities.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable

from cockpit.models import User

ADMIN = "ADMIN"
MANAGER = "MANAGER"


@dataclass(frozen=True)
class AssignedRole:
  role_id: str
  name: str
  permissions: frozenset[tuple[str, str]] = frozenset()


@dataclass(frozen=True)
class Principal:
  id: str
  email: str
  name: str | None
  role: str
  is_active: bool = True
  assignments: tuple[AssignedRole, ...] = field(default_factory=tuple)

  @classmethod
  def from_user(cls, user: User) -> "Principal":
    """Build from a User whose role_assignments -> role -> permissions are loaded."""
    assigned: list[AssignedRole] = []
    for a in user.role_assignments:
      pairs = frozenset((rp.permission.resource, rp.permission.action) for rp in a.role.permissions)
      assigned.append(AssignedRole(role_id=a.role.id, name=a.role.name, permissions=pairs))
    return cls(
      id=user.id,
      email=user.email,
      name=user.name,
      role=user.role,
      is_active=bool(user.is_active),
      assignments=tuple(assigned),
    )


def is_admin(principal: Principal) -> bool:
  return principal.role == ADMIN


def is_manager(principal: Principal) -> bool:
  return principal.role in (MANAGER, ADMIN)


def authorize(principal: Principal, resource: str, action: str) -> bool:
  if is_admin(principal):
    return True
  return any((resource, action) in a.permissions for a in principal.assignments)


def has_any_permission(principal: Principal, pairs: Iterable[tuple[str, str]]) -> bool:
  return any(authorize(principal, resource, action) for resource, action in pairs)


def can_manage_users(principal: Principal) -> bool:
  return authorize(principal, "admin", "manage_users") or is_admin(principal)


def can_manage_roles(principal: Principal) -> bool:
  return authorize(principal, "admin", "manage_roles") or is_admin(principal)


def can_access_admin(principal: Principal) -> bool:
  return authorize(principal, "admin", "access") or is_admin(principal)


def can_check_alerts(principal: Principal) -> bool:
  return authorize(principal, "alerts", "check") or is_admin(principal)


PrincipalCheck = Callable[[Principal], bool]
