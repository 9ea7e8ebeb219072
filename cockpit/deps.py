from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Cookie, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cockpit.db import SessionLocal
from cockpit.errors import Forbidden, Unauthorized
from cockpit.models import Session as DbSession, User
from cockpit.rbac.permissions import Principal, PrincipalCheck
from cockpit.rbac.store import load_principal
from cockpit.security import SESSION_COOKIE_NAME


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


async def get_current_user(
  db: AsyncSession = Depends(get_db),
  session_id: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> User:
  """Resolve the session cookie to an active user."""
  if not session_id:
    raise Unauthorized("Not authenticated")
  row = (
    await db.execute(
      select(DbSession.expires_at, User).join(User, User.id == DbSession.user_id).where(DbSession.id == session_id)
    )
  ).first()
  if row is None:
    raise Unauthorized("Invalid session")
  expires_at, user = row
  if expires_at <= datetime.now(timezone.utc):
    raise Unauthorized("Session expired")
  if not user.is_active:
    raise Forbidden("User disabled")
  return user


async def get_principal(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> Principal:
  principal = await load_principal(db, user.id)
  if principal is None:
    raise Unauthorized("Invalid session")
  return principal


def require_permission(check: PrincipalCheck):
  """Dependency factory: resolve the principal and reject it unless ``check`` passes."""

  async def _dep(principal: Principal = Depends(get_principal)) -> Principal:
    if not check(principal):
      raise Unauthorized("Unauthorized")
    return principal

  return _dep


def client_ip(request: Request) -> str:
  return request.client.host if request.client else "unknown"
