from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cockpit.alerts.scanner import PassResult, ScanReport, run_alert_scan
from cockpit.deps import get_current_user, get_db, require_permission
from cockpit.errors import NotFound
from cockpit.models import AlertPreference, User
from cockpit.rbac.permissions import Principal, can_check_alerts
from cockpit.schemas import (
  AlertCheckOut,
  AlertPassOut,
  AlertPreferenceIn,
  AlertPreferenceOut,
  AlertPreferenceUpdateIn,
)

router = APIRouter(prefix="/alerts", tags=["alerts"])


def _pass_out(p: PassResult) -> AlertPassOut:
  return AlertPassOut(created=p.created, skipped=p.skipped, ok=p.ok, error=p.error)


def _report_out(r: ScanReport) -> AlertCheckOut:
  return AlertCheckOut(ok=r.ok, checkedAt=r.checked_at, deadline=_pass_out(r.deadline), overdue=_pass_out(r.overdue))


def _pref_out(p: AlertPreference) -> AlertPreferenceOut:
  return AlertPreferenceOut(
    id=p.id,
    userId=p.user_id,
    type=p.type,
    isEnabled=bool(p.is_enabled),
    advanceDays=int(p.advance_days),
    createdAt=p.created_at,
  )


async def _check(db: AsyncSession) -> JSONResponse:
  report = await run_alert_scan(db)
  body = _report_out(report).model_dump(mode="json")
  if not report.ok:
    body["detail"] = "Failed to check alerts"
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)
  body["message"] = "Alerts checked successfully"
  return JSONResponse(status_code=status.HTTP_200_OK, content=body)


@router.post("/check")
async def check_alerts(
  principal: Principal = Depends(require_permission(can_check_alerts)),
  db: AsyncSession = Depends(get_db),
) -> JSONResponse:
  return await _check(db)


@router.get("/check")
async def check_alerts_get(
  principal: Principal = Depends(require_permission(can_check_alerts)),
  db: AsyncSession = Depends(get_db),
) -> JSONResponse:
  return await _check(db)


@router.get("/preferences", response_model=list[AlertPreferenceOut])
async def list_preferences(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[AlertPreferenceOut]:
  res = await db.execute(
    select(AlertPreference).where(AlertPreference.user_id == user.id).order_by(AlertPreference.created_at.asc())
  )
  return [_pref_out(p) for p in res.scalars().all()]


@router.post("/preferences", response_model=AlertPreferenceOut, status_code=status.HTTP_201_CREATED)
async def create_preference(
  payload: AlertPreferenceIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> AlertPreferenceOut:
  p = AlertPreference(user_id=user.id, type=payload.type, is_enabled=payload.isEnabled, advance_days=payload.advanceDays)
  db.add(p)
  await db.commit()
  return _pref_out(p)


async def _own_preference(db: AsyncSession, pref_id: str, user_id: str) -> AlertPreference:
  res = await db.execute(select(AlertPreference).where(AlertPreference.id == pref_id, AlertPreference.user_id == user_id))
  p = res.scalar_one_or_none()
  if p is None:
    raise NotFound("Alert preference not found")
  return p


@router.put("/preferences/{pref_id}", response_model=AlertPreferenceOut)
async def update_preference(
  pref_id: str,
  payload: AlertPreferenceUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> AlertPreferenceOut:
  p = await _own_preference(db, pref_id, user.id)
  if payload.isEnabled is not None:
    p.is_enabled = payload.isEnabled
  if payload.advanceDays is not None:
    p.advance_days = payload.advanceDays
  await db.commit()
  return _pref_out(p)


@router.delete("/preferences/{pref_id}")
async def delete_preference(
  pref_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  p = await _own_preference(db, pref_id, user.id)
  await db.delete(p)
  await db.commit()
  return {"ok": True}
