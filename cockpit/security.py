from __future__ import annotations

import hashlib
import hmac
import re
import secrets
from datetime import datetime, timedelta, timezone

from passlib.context import CryptContext

from cockpit.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_COOKIE_NAME = "vc_session"
SESSION_TTL_DAYS = 14

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# (rule, message) pairs checked in order; the first failing message is reported.
_PASSWORD_RULES: list[tuple[re.Pattern[str], str]] = [
  (re.compile(r"^.{8,}$", re.S), "Password must be at least 8 characters long"),
  (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
  (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
  (re.compile(r"[0-9]"), "Password must contain at least one number"),
  (re.compile(r"[^A-Za-z0-9]"), "Password must contain at least one special character"),
]


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  if not password_hash:
    return False
  return pwd_context.verify(password, password_hash)


def normalize_email(email: str | None) -> str:
  return (email or "").strip().lower()


def validate_email(email: str | None) -> bool:
  return bool(_EMAIL_RE.match(normalize_email(email)))


def password_errors(password: str | None) -> list[str]:
  pw = password or ""
  return [msg for rule, msg in _PASSWORD_RULES if not rule.search(pw)]


def new_session_expires_at() -> datetime:
  return datetime.now(timezone.utc) + timedelta(days=SESSION_TTL_DAYS)


def new_token() -> str:
  return secrets.token_urlsafe(32)


def token_digest(token: str) -> str:
  # Keyed so a leaked users table cannot be matched against guessed tokens.
  key = (settings.app_secret or "").encode("utf-8")
  return hmac.new(key, (token or "").strip().encode("utf-8"), hashlib.sha256).hexdigest()
