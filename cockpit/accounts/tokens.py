"""
Password-reset and email-verification token lifecycle.

Only SHA-256 digests of the tokens are stored on the user row; the raw token
is returned to the caller once so it can be emailed. Nothing here commits.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cockpit.config import settings
from cockpit.errors import ValidationFailed
from cockpit.models import Session as DbSession, User
from cockpit.security import hash_password, new_token, normalize_email, password_errors, token_digest

log = structlog.get_logger(__name__)

INVALID_RESET_TOKEN = "Invalid or expired reset token"
INVALID_VERIFICATION_TOKEN = "Invalid verification token"
EXPIRED_VERIFICATION_TOKEN = "Verification token has expired"


def _now(now: datetime | None) -> datetime:
  return now or datetime.now(timezone.utc)


async def _user_by_email(db: AsyncSession, email: str | None) -> User | None:
  e = normalize_email(email)
  if not e:
    return None
  res = await db.execute(select(User).where(User.email == e))
  return res.scalar_one_or_none()


async def revoke_sessions(db: AsyncSession, user_id: str) -> None:
  await db.execute(delete(DbSession).where(DbSession.user_id == user_id))


# Password reset


async def request_password_reset(db: AsyncSession, email: str | None, *, now: datetime | None = None) -> tuple[User, str] | None:
  """
  Issue a reset token for the account behind ``email``.

  Returns ``(user, raw_token)`` or None for an unknown address. Callers must
  answer both cases identically.
  """
  u = await _user_by_email(db, email)
  if u is None:
    log.info("auth.password_reset.unknown_email")
    return None
  raw = new_token()
  u.reset_token = token_digest(raw)
  u.reset_token_expires_at = _now(now) + timedelta(minutes=settings.password_reset_ttl_minutes)
  await db.flush()
  log.info("auth.password_reset.requested", user_id=u.id)
  return u, raw


async def user_for_reset_token(db: AsyncSession, token: str | None, *, now: datetime | None = None) -> User:
  """Resolve a live reset token. Missing and expired tokens fail the same way."""
  if not (token or "").strip():
    raise ValidationFailed(INVALID_RESET_TOKEN)
  res = await db.execute(select(User).where(User.reset_token == token_digest(token)))
  u = res.scalar_one_or_none()
  if u is None or u.reset_token_expires_at is None or u.reset_token_expires_at <= _now(now):
    raise ValidationFailed(INVALID_RESET_TOKEN)
  return u


async def reset_password(db: AsyncSession, token: str | None, new_password: str | None, *, now: datetime | None = None) -> User:
  if not new_password:
    raise ValidationFailed("Password is required")
  errs = password_errors(new_password)
  if errs:
    raise ValidationFailed(errs[0])
  n = _now(now)
  u = await user_for_reset_token(db, token, now=n)
  u.password_hash = hash_password(new_password)
  u.reset_token = None
  u.reset_token_expires_at = None
  u.failed_login_attempts = 0
  u.locked_until = None
  # Proving control of the mailbox counts as verification.
  if u.email_verified is None:
    u.email_verified = n
  await revoke_sessions(db, u.id)
  await db.flush()
  log.info("auth.password_reset.completed", user_id=u.id)
  return u


# Email verification


def issue_verification(user: User, *, now: datetime | None = None) -> str:
  raw = new_token()
  user.verification_token = token_digest(raw)
  user.verification_token_expires_at = _now(now) + timedelta(hours=settings.verification_ttl_hours)
  return raw


async def verify_email(db: AsyncSession, token: str | None, *, now: datetime | None = None) -> tuple[User, bool]:
  """
  Consume a verification token.

  Returns ``(user, newly_verified)``; an already verified account is a no-op.
  """
  if not (token or "").strip():
    raise ValidationFailed("Verification token is required")
  n = _now(now)
  res = await db.execute(select(User).where(User.verification_token == token_digest(token)))
  u = res.scalar_one_or_none()
  if u is None:
    raise ValidationFailed(INVALID_VERIFICATION_TOKEN)
  if u.email_verified is not None:
    return u, False
  if u.verification_token_expires_at is not None and u.verification_token_expires_at <= n:
    raise ValidationFailed(EXPIRED_VERIFICATION_TOKEN)
  u.email_verified = n
  # The digest stays so a second click on the same link resolves to a no-op.
  u.verification_token_expires_at = None
  await db.flush()
  log.info("auth.email.verified", user_id=u.id)
  return u, True


async def resend_verification(
  db: AsyncSession,
  *,
  email: str | None = None,
  token: str | None = None,
  now: datetime | None = None,
) -> tuple[User, str] | None:
  """
  Re-issue a verification token, found by email or by a previous token.

  Returns None when there is nothing to send: unknown account or already
  verified. The expiry restarts from now.
  """
  if not normalize_email(email) and not (token or "").strip():
    raise ValidationFailed("Email or token is required")
  u = await _user_by_email(db, email)
  if u is None and (token or "").strip():
    res = await db.execute(select(User).where(User.verification_token == token_digest(token)))
    u = res.scalar_one_or_none()
  if u is None or u.email_verified is not None:
    return None
  raw = issue_verification(u, now=now)
  await db.flush()
  log.info("auth.email.verification_reissued", user_id=u.id)
  return u, raw
