from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

import structlog

from cockpit.config import settings

log = structlog.get_logger(__name__)

BRAND = "VOI Cockpit"


@dataclass(frozen=True)
class EmailResult:
  success: bool
  error: str | None = None


def _send_sync(*, to_addr: str, subject: str, body: str) -> None:
  m = EmailMessage()
  m["Subject"] = subject
  m["From"] = f"{BRAND} <{settings.smtp_from}>"
  m["To"] = to_addr
  m.set_content(body)
  with smtplib.SMTP(host=settings.smtp_host, port=int(settings.smtp_port), timeout=15) as s:
    s.ehlo()
    if settings.smtp_starttls:
      s.starttls()
      s.ehlo()
    if settings.smtp_username and settings.smtp_password:
      s.login(settings.smtp_username, settings.smtp_password)
    s.send_message(m)


async def send_email(*, to_addr: str, subject: str, body: str) -> EmailResult:
  """Send one plain-text email. Never raises: failures come back in the result."""
  if settings.dev_email_capture or not settings.smtp_configured():
    log.info("mail.captured", to=to_addr, subject=subject, body=body)
    return EmailResult(success=True)
  try:
    await asyncio.to_thread(_send_sync, to_addr=to_addr, subject=subject, body=body)
  except (smtplib.SMTPException, OSError) as e:
    log.error("mail.send_failed", to=to_addr, subject=subject, error=str(e))
    return EmailResult(success=False, error=str(e))
  log.info("mail.sent", to=to_addr, subject=subject)
  return EmailResult(success=True)


def _base_url() -> str:
  return (settings.public_base_url or "http://localhost:3000").strip().rstrip("/")


def _greeting(name: str | None) -> str:
  return f"Hello {name}," if name else "Hello,"


async def send_verification_email(email: str, token: str, name: str | None = None) -> EmailResult:
  url = f"{_base_url()}/auth/verify-email?token={token}"
  return await send_email(
    to_addr=email,
    subject=f"Verify your email address - {BRAND}",
    body=(
      f"{_greeting(name)}\n\n"
      f"Thank you for registering with {BRAND}. Please verify your email address to complete your registration:\n\n"
      f"{url}\n\n"
      f"This link will expire in {settings.verification_ttl_hours} hours. "
      "If you didn't create an account, please ignore this email."
    ),
  )


async def send_password_reset_email(email: str, token: str, name: str | None = None) -> EmailResult:
  url = f"{_base_url()}/auth/reset-password?token={token}"
  return await send_email(
    to_addr=email,
    subject=f"Reset your password - {BRAND}",
    body=(
      f"{_greeting(name)}\n\n"
      "A password reset was requested for your account.\n\n"
      f"Reset link: {url}\n\n"
      f"This link will expire in {settings.password_reset_ttl_minutes} minutes. "
      "If you did not request this, you can ignore this email."
    ),
  )


async def send_welcome_email(email: str, name: str | None = None) -> EmailResult:
  return await send_email(
    to_addr=email,
    subject=f"Welcome to {BRAND}",
    body=(
      f"{_greeting(name)}\n\n"
      f"Your email address is verified and your {BRAND} account is ready.\n\n"
      f"Sign in: {_base_url()}/auth/signin"
    ),
  )
