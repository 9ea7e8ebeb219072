"""
Sign-in guard: lockout after repeated failures and the email-verified gate.

The helpers mutate the ORM ``User`` in place and never commit; the caller owns
the transaction. ``now`` is injectable so the state machine is testable
without a clock.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import structlog

from cockpit.config import settings
from cockpit.models import User
from cockpit.security import verify_password

log = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


class SignInRejected(Exception):
  def __init__(self, *, code: str, message: str, status_code: int = 401, remaining_minutes: int | None = None) -> None:
    super().__init__(message)
    self.code = code
    self.message = message
    self.status_code = status_code
    self.remaining_minutes = remaining_minutes

  def detail(self) -> str | dict:
    if self.code == "invalid_credentials":
      return self.message
    out: dict = {"code": self.code, "message": self.message}
    if self.remaining_minutes is not None:
      out["remainingMinutes"] = self.remaining_minutes
    return out


def _now(now: datetime | None) -> datetime:
  return now or datetime.now(timezone.utc)


def remaining_lock_minutes(user: User, *, now: datetime | None = None) -> int:
  """Whole minutes (rounded up) until the lock lifts; 0 when not locked."""
  n = _now(now)
  if user.locked_until is None or user.locked_until <= n:
    return 0
  return math.ceil((user.locked_until - n).total_seconds() / 60)


def _locked_rejection(minutes: int) -> SignInRejected:
  unit = "minute" if minutes == 1 else "minutes"
  return SignInRejected(
    code="account_locked",
    message=f"Account temporarily locked due to too many failed login attempts. Try again in {minutes} {unit}.",
    remaining_minutes=minutes,
  )


def check_not_locked(user: User, *, now: datetime | None = None) -> None:
  n = _now(now)
  minutes = remaining_lock_minutes(user, now=n)
  if minutes > 0:
    raise _locked_rejection(minutes)
  if user.locked_until is not None:
    # Lock expired: start counting afresh.
    user.locked_until = None
    user.failed_login_attempts = 0


def register_failure(user: User, *, now: datetime | None = None) -> bool:
  """Count a failed password check. Returns True when this failure locked the account."""
  n = _now(now)
  user.failed_login_attempts = int(user.failed_login_attempts or 0) + 1
  if user.failed_login_attempts >= settings.login_lockout_threshold:
    user.locked_until = n + timedelta(minutes=settings.login_lockout_minutes)
    log.warning("auth.login.locked", user_id=user.id, attempts=user.failed_login_attempts)
    return True
  return False


def register_success(user: User) -> None:
  if user.failed_login_attempts:
    user.failed_login_attempts = 0
  user.locked_until = None


def attempt_sign_in(user: User | None, password: str, *, now: datetime | None = None) -> User:
  """
  Run one sign-in attempt through the guard.

  Order matters: the lock is checked before anything else so a locked account
  never reaches the password check, and the verified/active gates do not
  count as failed attempts. Raises SignInRejected; mutations to ``user`` must
  be committed by the caller on both outcomes.
  """
  n = _now(now)
  if user is None:
    raise SignInRejected(code="invalid_credentials", message=INVALID_CREDENTIALS)
  check_not_locked(user, now=n)
  if not user.is_active:
    raise SignInRejected(code="user_disabled", message="User disabled", status_code=403)
  if user.email_verified is None:
    raise SignInRejected(
      code="email_not_verified",
      message="Please verify your email address before signing in.",
    )
  if not verify_password(password, user.password_hash):
    if register_failure(user, now=n):
      raise _locked_rejection(settings.login_lockout_minutes)
    raise SignInRejected(code="invalid_credentials", message=INVALID_CREDENTIALS)
  register_success(user)
  return user
