from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cockpit.accounts.guard import SignInRejected, attempt_sign_in
from cockpit.accounts.tokens import (
  issue_verification,
  request_password_reset,
  reset_password as reset_password_with_token,
  resend_verification as reissue_verification,
  user_for_reset_token,
  verify_email as consume_verification,
)
from cockpit.config import settings
from cockpit.deps import client_ip, get_current_user, get_db
from cockpit.errors import Conflict, ValidationFailed
from cockpit.mail import send_password_reset_email, send_verification_email, send_welcome_email
from cockpit.models import Session as DbSession, User
from cockpit.rate_limit import rate_limit_or_429
from cockpit.rbac.store import grant_primary_assignment
from cockpit.schemas import (
  ForgotPasswordIn,
  LoginIn,
  RegisterIn,
  RegisterOut,
  ResendVerificationIn,
  ResetPasswordIn,
  TokenIn,
  UserOut,
)
from cockpit.security import (
  SESSION_COOKIE_NAME,
  SESSION_TTL_DAYS,
  hash_password,
  new_session_expires_at,
  normalize_email,
  password_errors,
  validate_email,
)

router = APIRouter(prefix="/auth", tags=["auth"])
log = structlog.get_logger(__name__)

RESET_REQUESTED = "If an account with that email exists, we've sent a password reset link."


def user_out(u: User) -> UserOut:
  return UserOut(
    id=u.id,
    email=u.email,
    name=u.name,
    role=u.role,
    isActive=bool(u.is_active),
    emailVerified=u.email_verified,
    createdAt=u.created_at,
  )


def _dev_token(out: dict, token: str | None) -> dict:
  # Local development: hand the token back when mail is only captured to the log.
  if token and settings.dev_email_capture:
    out["token"] = token
  return out


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_db)) -> dict:
  if not payload.email or not payload.password or not (payload.name or "").strip():
    raise ValidationFailed("Name, email, and password are required")
  if not validate_email(payload.email):
    raise ValidationFailed("Please enter a valid email address")
  errs = password_errors(payload.password)
  if errs:
    raise ValidationFailed(errs[0])

  email = normalize_email(payload.email)
  existing = await db.execute(select(User.id).where(User.email == email))
  if existing.scalar_one_or_none():
    raise Conflict("An account with this email already exists")

  u = User(email=email, name=payload.name.strip(), password_hash=hash_password(payload.password), role="USER", is_active=True)
  token = issue_verification(u)
  db.add(u)
  await db.flush()
  await grant_primary_assignment(db, u)
  await db.commit()
  log.info("auth.register", user_id=u.id)

  sent = await send_verification_email(u.email, token, u.name)
  if not sent.success:
    log.warning("auth.register.verification_email_failed", user_id=u.id, error=sent.error)
  out = RegisterOut(
    message="Registration successful. Please check your email to verify your account.",
    userId=u.id,
  ).model_dump()
  return _dev_token(out, token)


@router.post("/login", response_model=UserOut)
async def login(payload: LoginIn, request: Request, response: Response, db: AsyncSession = Depends(get_db)) -> UserOut:
  ip = client_ip(request)
  rate_limit_or_429(key=f"auth:login:ip:{ip}", limit=int(settings.rate_limit_login_ip_per_minute))

  email = normalize_email(payload.email)
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  try:
    attempt_sign_in(u, payload.password)
  except SignInRejected as e:
    # Counter and lock changes must survive the rejection.
    await db.commit()
    log.info("auth.login.rejected", code=e.code, ip=ip)
    raise

  s = DbSession(
    user_id=u.id,
    expires_at=new_session_expires_at(),
    created_ip=ip,
    user_agent=request.headers.get("user-agent"),
  )
  db.add(s)
  await db.commit()
  log.info("auth.login.success", user_id=u.id)

  response.set_cookie(
    key=SESSION_COOKIE_NAME,
    value=s.id,
    httponly=True,
    secure=settings.cookie_secure,
    samesite="lax",
    domain=settings.cookie_domain or None,
    max_age=int(SESSION_TTL_DAYS * 86400),
    expires=s.expires_at,
    path="/",
  )
  return user_out(u)


@router.post("/logout")
async def logout(
  response: Response,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  await db.execute(delete(DbSession).where(DbSession.user_id == user.id))
  response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
  await db.commit()
  return {"ok": True}


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)) -> UserOut:
  return user_out(user)


@router.post("/verify-email")
async def verify_email(payload: TokenIn, db: AsyncSession = Depends(get_db)) -> dict:
  u, newly = await consume_verification(db, payload.token)
  if not newly:
    return {"message": "Email is already verified"}
  await db.commit()
  sent = await send_welcome_email(u.email, u.name)
  if not sent.success:
    log.warning("auth.verify.welcome_email_failed", user_id=u.id, error=sent.error)
  return {"message": "Email verified successfully! You can now sign in to your account."}


@router.post("/resend-verification")
async def resend_verification(payload: ResendVerificationIn, request: Request, db: AsyncSession = Depends(get_db)) -> dict:
  rate_limit_or_429(key=f"auth:verify:resend:ip:{client_ip(request)}", limit=int(settings.rate_limit_password_reset_ip_per_minute))
  issued = await reissue_verification(db, email=payload.email, token=payload.token)
  if issued is None:
    return {"message": "Verification email sent successfully!"}
  u, token = issued
  await db.commit()
  sent = await send_verification_email(u.email, token, u.name)
  if not sent.success:
    log.warning("auth.verify.resend_email_failed", user_id=u.id, error=sent.error)
  return _dev_token({"message": "Verification email sent successfully!"}, token)


@router.post("/forgot-password")
async def forgot_password(payload: ForgotPasswordIn, request: Request, db: AsyncSession = Depends(get_db)) -> dict:
  ip = client_ip(request)
  rate_limit_or_429(key=f"auth:pwreset:req:ip:{ip}", limit=int(settings.rate_limit_password_reset_ip_per_minute))
  if not (payload.email or "").strip():
    raise ValidationFailed("Email is required")
  if not validate_email(payload.email):
    raise ValidationFailed("Please enter a valid email address")
  email = normalize_email(payload.email)
  rate_limit_or_429(key=f"auth:pwreset:req:email:{email}", limit=int(settings.rate_limit_password_reset_email_per_minute))

  issued = await request_password_reset(db, email)
  if issued is None:
    return {"message": RESET_REQUESTED}
  u, token = issued
  await db.commit()
  sent = await send_password_reset_email(u.email, token, u.name)
  if not sent.success:
    log.warning("auth.password_reset.email_failed", user_id=u.id, error=sent.error)
  return _dev_token({"message": RESET_REQUESTED}, token)


@router.post("/validate-reset-token")
async def validate_reset_token(payload: TokenIn, db: AsyncSession = Depends(get_db)) -> dict:
  u = await user_for_reset_token(db, payload.token)
  return {"message": "Reset token is valid", "email": u.email}


@router.post("/reset-password")
async def reset_password(payload: ResetPasswordIn, request: Request, db: AsyncSession = Depends(get_db)) -> dict:
  rate_limit_or_429(key=f"auth:pwreset:confirm:ip:{client_ip(request)}", limit=int(settings.rate_limit_password_reset_ip_per_minute))
  if not payload.token or not payload.password:
    raise ValidationFailed("Token and password are required")
  await reset_password_with_token(db, payload.token, payload.password)
  await db.commit()
  return {"message": "Password reset successfully! You can now sign in with your new password."}
