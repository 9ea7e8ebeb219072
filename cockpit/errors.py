from __future__ import annotations

from typing import Any

import structlog
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

log = structlog.get_logger(__name__)


class AppError(Exception):
  status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
  code: str = "unexpected"

  def __init__(self, message: str, *, code: str | None = None, extra: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.message = message
    if code:
      self.code = code
    self.extra = extra or {}

  def detail(self) -> str | dict[str, Any]:
    if not self.extra and self.code == type(self).code:
      return self.message
    return {"code": self.code, "message": self.message, **self.extra}


class Unauthorized(AppError):
  status_code = status.HTTP_401_UNAUTHORIZED
  code = "unauthorized"


class Forbidden(AppError):
  status_code = status.HTTP_403_FORBIDDEN
  code = "forbidden"


class ValidationFailed(AppError):
  status_code = status.HTTP_400_BAD_REQUEST
  code = "validation"


class NotFound(AppError):
  status_code = status.HTTP_404_NOT_FOUND
  code = "not_found"


class Conflict(AppError):
  status_code = status.HTTP_409_CONFLICT
  code = "conflict"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
  if exc.status_code >= 500:
    log.error("request.failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
  return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail()})


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
  log.exception("request.unhandled", path=request.url.path, error=str(exc))
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Internal server error"})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Malformed bodies and params are client errors like any other ``ValidationFailed``."""
  errors = exc.errors()
  first = errors[0] if errors else {}
  field = ".".join(p for p in first.get("loc", ()) if isinstance(p, str) and p not in ("body", "query", "path"))
  message = first.get("msg") or "Invalid request"
  log.info("request.invalid", path=request.url.path, field=field or None, error=message)
  return JSONResponse(
    status_code=status.HTTP_400_BAD_REQUEST,
    content={"detail": f"{field}: {message}" if field else message},
  )
