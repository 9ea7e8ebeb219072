from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field
from pydantic import field_validator

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

Priority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
Status = Literal["TODO", "IN_PROGRESS", "IN_REVIEW", "DONE", "BLOCKED", "CANCELLED"]
Risk = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]


def _parse_dt_utc(value: object) -> object:
  """Accept datetimes, ISO strings and bare dates; naive values are taken as UTC."""
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


# Auth


class RegisterIn(BaseModel):
  email: str | None = None
  password: str | None = None
  name: str | None = None


class RegisterOut(BaseModel):
  message: str
  userId: str


class LoginIn(BaseModel):
  email: str = Field(default="", max_length=320)
  password: str = Field(default="", max_length=200)


class TokenIn(BaseModel):
  token: str | None = None


class ResendVerificationIn(BaseModel):
  email: str | None = None
  token: str | None = None


class ForgotPasswordIn(BaseModel):
  email: str | None = None


class ResetPasswordIn(BaseModel):
  token: str | None = None
  password: str | None = None


class RoleAssignmentOut(BaseModel):
  id: str
  roleId: str
  roleName: str
  assignedBy: str | None = None
  assignedAt: datetime


class UserOut(BaseModel):
  id: str
  email: str
  name: str | None = None
  role: str
  isActive: bool = True
  emailVerified: datetime | None = None
  createdAt: datetime | None = None


class AdminUserOut(UserOut):
  failedLoginAttempts: int = 0
  lockedUntil: datetime | None = None
  roleAssignments: list[RoleAssignmentOut] = []


# Admin


class AdminUserCreateIn(BaseModel):
  name: str | None = None
  email: str | None = None
  password: str | None = None
  role: str = "USER"
  emailVerified: bool = False


class UserRoleIn(BaseModel):
  userId: str | None = None
  role: str | None = None


class UserStatusIn(BaseModel):
  userId: str | None = None
  isActive: bool | None = None


class UserIdIn(BaseModel):
  userId: str | None = None


class PermissionOut(BaseModel):
  id: str
  name: str
  resource: str
  action: str
  description: str | None = None


class RoleOut(BaseModel):
  id: str
  name: str
  description: str | None = None
  isSystem: bool = False
  permissions: list[PermissionOut] = []
  createdAt: datetime | None = None


class RoleCreateIn(BaseModel):
  name: str | None = Field(default=None, max_length=120)
  description: str | None = Field(default=None, max_length=2000)


class RoleUpdateIn(BaseModel):
  name: str | None = Field(default=None, max_length=120)
  description: str | None = Field(default=None, max_length=2000)


class RolePermissionsIn(BaseModel):
  permissionIds: list[str] = []


# Tasks


class TaskCreateIn(BaseModel):
  title: str | None = Field(default=None, max_length=500)
  description: str | None = None
  area: str | None = Field(default=None, max_length=200)
  subArea: str | None = Field(default=None, max_length=200)
  endProduct: str | None = Field(default=None, max_length=500)
  ownerId: str | None = None
  priority: Priority = "MEDIUM"
  status: Status = "TODO"
  acceptanceCriteria: str | None = None
  dueDate: datetime | None = None
  startDate: datetime | None = None
  effort: int | None = Field(default=None, ge=0)
  risk: Risk | None = None

  @field_validator("dueDate", "startDate", mode="before")
  @classmethod
  def _dates_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = None
  area: str | None = Field(default=None, min_length=1, max_length=200)
  subArea: str | None = Field(default=None, max_length=200)
  endProduct: str | None = Field(default=None, max_length=500)
  ownerId: str | None = None
  priority: Priority | None = None
  status: Status | None = None
  acceptanceCriteria: str | None = None
  dueDate: datetime | None = None
  startDate: datetime | None = None
  effort: int | None = Field(default=None, ge=0)
  risk: Risk | None = None

  @field_validator("dueDate", "startDate", mode="before")
  @classmethod
  def _dates_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskOut(BaseModel):
  id: str
  title: str
  description: str | None = None
  area: str
  subArea: str | None = None
  endProduct: str | None = None
  ownerId: str
  ownerName: str | None = None
  priority: str
  status: str
  acceptanceCriteria: str | None = None
  dueDate: datetime | None = None
  startDate: datetime | None = None
  effort: int | None = None
  risk: str | None = None
  createdAt: datetime
  updatedAt: datetime


class TaskSearchIn(BaseModel):
  query: str | None = None
  status: list[Status] = []
  priority: list[Priority] = []
  area: str | None = None
  ownerName: str | None = None
  createdFrom: datetime | None = None
  createdTo: datetime | None = None
  limit: int = Field(default=100, ge=1, le=500)

  @field_validator("createdFrom", "createdTo", mode="before")
  @classmethod
  def _dates_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class SubtaskCreateIn(BaseModel):
  title: str | None = Field(default=None, max_length=500)
  description: str | None = None


class SubtaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = None
  completed: bool | None = None


class SubtaskOut(BaseModel):
  id: str
  taskId: str
  title: str
  description: str | None = None
  completed: bool = False
  createdAt: datetime
  updatedAt: datetime


class CommentCreateIn(BaseModel):
  content: str | None = Field(default=None, max_length=20000)


class CommentOut(BaseModel):
  id: str
  taskId: str
  userId: str
  userName: str | None = None
  content: str
  createdAt: datetime


class ActivityOut(BaseModel):
  id: str
  type: str
  message: str
  taskId: str | None = None
  userId: str | None = None
  payload: dict = {}
  createdAt: datetime


# Notifications


class NotificationOut(BaseModel):
  id: str
  type: str
  title: str
  message: str
  taskId: str | None = None
  taskTitle: str | None = None
  isRead: bool = False
  isSent: bool = False
  createdAt: datetime


class NotificationListOut(BaseModel):
  notifications: list[NotificationOut]
  unreadCount: int
  total: int


class NotificationActionIn(BaseModel):
  notificationIds: list[str] | None = None
  action: str | None = None


# Alerts


class AlertPassOut(BaseModel):
  created: int = 0
  skipped: int = 0
  ok: bool = True
  error: str | None = None


class AlertCheckOut(BaseModel):
  ok: bool
  checkedAt: datetime
  deadline: AlertPassOut
  overdue: AlertPassOut


class AlertPreferenceIn(BaseModel):
  type: Literal["deadline"] = "deadline"
  isEnabled: bool = True
  advanceDays: int = Field(default=1, ge=0, le=365)


class AlertPreferenceUpdateIn(BaseModel):
  isEnabled: bool | None = None
  advanceDays: int | None = Field(default=None, ge=0, le=365)


class AlertPreferenceOut(BaseModel):
  id: str
  userId: str
  type: str
  isEnabled: bool
  advanceDays: int
  createdAt: datetime
