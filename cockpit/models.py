from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
  JSON,
  Boolean,
  DateTime,
  ForeignKey,
  Index,
  Integer,
  String,
  Text,
  TypeDecorator,
  UniqueConstraint,
  text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

USER_ROLES = ("ADMIN", "MANAGER", "USER", "VIEWER")
TASK_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "URGENT")
TASK_STATUSES = ("TODO", "IN_PROGRESS", "IN_REVIEW", "DONE", "BLOCKED", "CANCELLED")
TASK_RISKS = ("LOW", "MEDIUM", "HIGH", "CRITICAL")

NOTIFICATION_DEADLINE = "deadline_alert"
NOTIFICATION_OVERDUE = "overdue_task"


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _uuid() -> str:
  return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
  """Timezone-aware datetime that always round-trips as UTC (SQLite drops tzinfo)."""

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if dialect.name == "sqlite":
      return value.replace(tzinfo=None)
    return value

  def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  name: Mapped[str | None] = mapped_column(String, nullable=True)
  password_hash: Mapped[str] = mapped_column(String, nullable=False)
  role: Mapped[str] = mapped_column(String, nullable=False, default="USER")
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  email_verified: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
  failed_login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
  reset_token: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  reset_token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
  verification_token: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  verification_token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

  role_assignments: Mapped[list["UserRoleAssignment"]] = relationship(
    back_populates="user",
    foreign_keys="UserRoleAssignment.user_id",
  )


class Session(Base):
  __tablename__ = "sessions"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  created_ip: Mapped[str | None] = mapped_column(String, nullable=True)
  user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
  expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class Role(Base):
  __tablename__ = "roles"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

  permissions: Mapped[list["RolePermission"]] = relationship(back_populates="role")


class Permission(Base):
  __tablename__ = "permissions"
  __table_args__ = (UniqueConstraint("resource", "action", name="ux_permissions_resource_action"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  resource: Mapped[str] = mapped_column(String, nullable=False)
  action: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class RolePermission(Base):
  __tablename__ = "role_permissions"
  __table_args__ = (UniqueConstraint("role_id", "permission_id", name="ux_role_permissions_role_permission"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  role_id: Mapped[str] = mapped_column(String(36), ForeignKey("roles.id"), nullable=False, index=True)
  permission_id: Mapped[str] = mapped_column(String(36), ForeignKey("permissions.id"), nullable=False)

  role: Mapped[Role] = relationship(back_populates="permissions")
  permission: Mapped[Permission] = relationship()


class UserRoleAssignment(Base):
  __tablename__ = "user_role_assignments"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  role_id: Mapped[str] = mapped_column(String(36), ForeignKey("roles.id"), nullable=False)
  assigned_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  assigned_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

  user: Mapped[User] = relationship(back_populates="role_assignments", foreign_keys=[user_id])
  role: Mapped[Role] = relationship()


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  area: Mapped[str] = mapped_column(String, nullable=False)
  sub_area: Mapped[str | None] = mapped_column(String, nullable=True)
  end_product: Mapped[str | None] = mapped_column(String, nullable=True)
  owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  priority: Mapped[str] = mapped_column(String, nullable=False, default="MEDIUM")
  status: Mapped[str] = mapped_column(String, nullable=False, default="TODO")
  acceptance_criteria: Mapped[str | None] = mapped_column(Text, nullable=True)
  due_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
  start_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
  effort: Mapped[int | None] = mapped_column(Integer, nullable=True)
  risk: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

  owner: Mapped[User] = relationship()


class Subtask(Base):
  __tablename__ = "subtasks"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)


class Comment(Base):
  __tablename__ = "comments"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
  content: Mapped[str] = mapped_column(Text, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class Activity(Base):
  __tablename__ = "activities"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  type: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  task_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=True, index=True)
  user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class Notification(Base):
  __tablename__ = "notifications"
  __table_args__ = (
    Index(
      "ux_notifications_unread_user_task_type",
      "user_id",
      "task_id",
      "type",
      unique=True,
      postgresql_where=text("is_read = false"),
      sqlite_where=text("is_read = 0"),
    ),
  )

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  task_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=True)
  type: Mapped[str] = mapped_column(String, nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  is_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

  task: Mapped[Task | None] = relationship()


class AlertPreference(Base):
  __tablename__ = "alert_preferences"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  type: Mapped[str] = mapped_column(String, nullable=False, default="deadline")
  is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  advance_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)
