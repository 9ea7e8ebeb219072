from __future__ import annotations

import asyncio

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from cockpit.accounts.guard import SignInRejected
from cockpit.alerts.scanner import run_alert_scan
from cockpit.config import settings
from cockpit.db import SessionLocal
from cockpit.errors import AppError, app_error_handler, request_validation_handler, unexpected_error_handler
from cockpit.logging import configure_logging
from cockpit.rbac.store import ensure_catalog
from cockpit.routers.admin import router as admin_router
from cockpit.routers.alerts import router as alerts_router
from cockpit.routers.auth import router as auth_router
from cockpit.routers.notifications import router as notifications_router
from cockpit.routers.tasks import router as tasks_router

configure_logging()
log = structlog.get_logger(__name__)

app = FastAPI(title="VOI Cockpit API", version="0.1.0")

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unexpected_error_handler)


@app.exception_handler(SignInRejected)
async def _sign_in_rejected_handler(_: Request, exc: SignInRejected) -> JSONResponse:
  return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail()})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

app.include_router(auth_router)
app.include_router(admin_router)
app.include_router(tasks_router)
app.include_router(notifications_router)
app.include_router(alerts_router)


@app.middleware("http")
async def _security_headers_middleware(request, call_next):
  response = await call_next(request)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}


_alert_loop_task: asyncio.Task | None = None


def _is_test_db() -> bool:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  return "test" in db_name


async def _alert_scan_loop() -> None:
  while True:
    await asyncio.sleep(max(60, int(settings.alert_scan_interval_seconds)))
    try:
      async with SessionLocal() as db:
        # Pass failures are logged and reported by the scanner itself.
        await run_alert_scan(db)
    except Exception:
      # Keep the loop alive across database outages.
      log.exception("alerts.loop_iteration_failed")


@app.on_event("startup")
async def _startup() -> None:
  global _alert_loop_task
  if _is_test_db():
    return
  if not settings.app_secret or settings.app_secret.strip().lower() in {"dev-secret-change-me", "replace_with_strong_random_secret"}:
    raise RuntimeError("APP_SECRET is required and must not be a placeholder")
  async with SessionLocal() as db:
    await ensure_catalog(db)
    await db.commit()
  if settings.alert_scan_enabled and _alert_loop_task is None:
    _alert_loop_task = asyncio.create_task(_alert_scan_loop())
    log.info("alerts.loop_started", interval_seconds=settings.alert_scan_interval_seconds)


@app.on_event("shutdown")
async def _shutdown() -> None:
  global _alert_loop_task
  task, _alert_loop_task = _alert_loop_task, None
  if task is None:
    return
  task.cancel()
  try:
    await task
  except asyncio.CancelledError:
    pass
  log.info("alerts.loop_stopped")
