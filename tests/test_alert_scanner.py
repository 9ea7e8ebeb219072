from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update

from conftest import ADMIN_EMAIL, login, make_admin, make_user
from cockpit.alerts import scanner
from cockpit.alerts.scanner import (
  DEADLINE_TITLE,
  OVERDUE_TITLE,
  alert_tz,
  days_overdue,
  run_alert_scan,
)
from cockpit.config import settings
from cockpit.db import SessionLocal
from cockpit.models import AlertPreference, Notification, Task

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
UTC = timezone.utc


async def _task(owner_id: str, title: str, due: datetime | None, status: str = "TODO") -> str:
  async with SessionLocal() as db:
    t = Task(title=title, area="Ops", owner_id=owner_id, due_date=due, status=status)
    db.add(t)
    await db.commit()
    return t.id


async def _pref(user_id: str, advance: int, *, enabled: bool = True, created_at: datetime | None = None) -> str:
  async with SessionLocal() as db:
    p = AlertPreference(user_id=user_id, type="deadline", is_enabled=enabled, advance_days=advance)
    if created_at is not None:
      p.created_at = created_at
    db.add(p)
    await db.commit()
    return p.id


async def _scan(now: datetime = NOW, tz=UTC):
  async with SessionLocal() as db:
    return await run_alert_scan(db, now=now, tz=tz)


async def _notifications(type: str | None = None) -> list[Notification]:
  async with SessionLocal() as db:
    q = select(Notification).order_by(Notification.created_at.asc())
    if type:
      q = q.where(Notification.type == type)
    return list((await db.execute(q)).scalars().all())


@pytest.mark.anyio
async def test_days_overdue_counts_from_start_of_today() -> None:
  assert days_overdue(datetime(2025, 3, 9, 9, 0, tzinfo=UTC), NOW, UTC) == 1
  assert days_overdue(datetime(2025, 3, 8, 9, 0, tzinfo=UTC), NOW, UTC) == 2
  assert days_overdue(datetime(2025, 3, 9, 0, 0, tzinfo=UTC), NOW, UTC) == 1
  assert days_overdue(datetime(2025, 3, 10, 8, 0, tzinfo=UTC), NOW, UTC) == 1
  plus3 = timezone(timedelta(hours=3))
  # 2025-03-09 22:00 UTC is already 2025-03-10 01:00 at +03:00.
  assert days_overdue(datetime(2025, 3, 9, 22, 0, tzinfo=UTC), NOW, plus3) == 1
  # Local midnight at +03:00 is 2025-03-09 21:00 UTC.
  assert days_overdue(datetime(2025, 3, 9, 20, 0, tzinfo=UTC), NOW, plus3) == 1
  assert days_overdue(datetime(2025, 3, 9, 20, 0, tzinfo=UTC), NOW, UTC) == 1
  assert days_overdue(datetime(2025, 3, 8, 20, 0, tzinfo=UTC), NOW, plus3) == 2
  assert days_overdue(datetime(2025, 3, 8, 20, 0, tzinfo=UTC), NOW, UTC) == 2
  assert days_overdue(datetime(2025, 3, 8, 0, 0, tzinfo=UTC), NOW, plus3) == 2


@pytest.mark.anyio
async def test_alert_tz_names() -> None:
  assert alert_tz("UTC") is timezone.utc
  assert alert_tz(" utc ") is timezone.utc
  assert alert_tz(None) is alert_tz(settings.alert_timezone)


@pytest.mark.anyio
async def test_deadline_alert_for_task_due_tomorrow_is_created_once() -> None:
  uid = await make_user("deadline@example.com")
  await _pref(uid, 1)
  task_id = await _task(uid, "Ship report", datetime(2025, 3, 11, 17, 0, tzinfo=UTC))
  await _task(uid, "Later", datetime(2025, 3, 13, 17, 0, tzinfo=UTC))

  report = await _scan()
  assert report.ok
  assert report.deadline.created == 1

  rows = await _notifications(scanner.NOTIFICATION_DEADLINE)
  assert len(rows) == 1
  assert rows[0].user_id == uid
  assert rows[0].task_id == task_id
  assert rows[0].title == DEADLINE_TITLE
  assert rows[0].message == 'Task "Ship report" is due tomorrow'
  assert rows[0].is_read is False

  again = await _scan()
  assert again.deadline.created == 0
  assert again.deadline.skipped == 1
  assert len(await _notifications(scanner.NOTIFICATION_DEADLINE)) == 1


@pytest.mark.anyio
async def test_deadline_window_covers_whole_local_day() -> None:
  uid = await make_user("bounds@example.com")
  await _pref(uid, 1)
  first = await _task(uid, "Tomorrow midnight", datetime(2025, 3, 11, 0, 0, tzinfo=UTC))
  last = await _task(uid, "Tomorrow last second", datetime(2025, 3, 11, 23, 59, 59, tzinfo=UTC))
  await _task(uid, "Day after midnight", datetime(2025, 3, 12, 0, 0, tzinfo=UTC))

  report = await _scan()
  assert report.deadline.created == 2
  rows = await _notifications(scanner.NOTIFICATION_DEADLINE)
  assert {r.task_id for r in rows} == {first, last}


@pytest.mark.anyio
async def test_deadline_window_follows_alert_timezone() -> None:
  plus3 = timezone(timedelta(hours=3))
  uid = await make_user("offset@example.com")
  await _pref(uid, 1)
  # Tomorrow at +03:00 runs from 2025-03-10 21:00 to 2025-03-11 21:00 UTC.
  opens = await _task(uid, "Local midnight", datetime(2025, 3, 10, 21, 0, tzinfo=UTC))
  await _task(uid, "Still today locally", datetime(2025, 3, 10, 20, 59, tzinfo=UTC))
  await _task(uid, "Day after locally", datetime(2025, 3, 11, 21, 0, tzinfo=UTC))

  report = await _scan(tz=plus3)
  assert report.deadline.created == 1
  rows = await _notifications(scanner.NOTIFICATION_DEADLINE)
  assert [r.task_id for r in rows] == [opens]


@pytest.mark.anyio
async def test_deadline_uses_oldest_enabled_preference() -> None:
  uid = await make_user("advance@example.com")
  await _pref(uid, 7, enabled=False, created_at=NOW - timedelta(days=30))
  await _pref(uid, 3, created_at=NOW - timedelta(days=20))
  await _pref(uid, 1, created_at=NOW - timedelta(days=10))
  await _task(uid, "Three out", datetime(2025, 3, 13, 9, 0, tzinfo=UTC))
  await _task(uid, "Tomorrow", datetime(2025, 3, 11, 9, 0, tzinfo=UTC))
  await _task(uid, "Week out", datetime(2025, 3, 17, 9, 0, tzinfo=UTC))

  report = await _scan()
  assert report.deadline.created == 1
  rows = await _notifications(scanner.NOTIFICATION_DEADLINE)
  assert [r.message for r in rows] == ['Task "Three out" is due in 3 days']


@pytest.mark.anyio
async def test_deadline_skips_done_tasks_and_users_without_preference() -> None:
  with_pref = await make_user("pref@example.com")
  without = await make_user("nopref@example.com")
  await _pref(with_pref, 1)
  await _task(with_pref, "Finished", datetime(2025, 3, 11, 9, 0, tzinfo=UTC), status="DONE")
  await _task(without, "Unwatched", datetime(2025, 3, 11, 9, 0, tzinfo=UTC))

  report = await _scan()
  assert report.deadline.created == 0
  assert await _notifications(scanner.NOTIFICATION_DEADLINE) == []


@pytest.mark.anyio
async def test_overdue_messages_and_done_tasks() -> None:
  uid = await make_user("late@example.com")
  await _task(uid, "Yesterday", datetime(2025, 3, 9, 9, 0, tzinfo=UTC))
  await _task(uid, "Two back", datetime(2025, 3, 8, 9, 0, tzinfo=UTC))
  await _task(uid, "Done late", datetime(2025, 3, 1, 9, 0, tzinfo=UTC), status="DONE")
  await _task(uid, "Tomorrow", datetime(2025, 3, 11, 9, 0, tzinfo=UTC))
  await _task(uid, "No date", None)

  report = await _scan()
  assert report.ok
  assert report.overdue.created == 2
  rows = await _notifications(scanner.NOTIFICATION_OVERDUE)
  assert {r.message for r in rows} == {
    'Task "Yesterday" is 1 day overdue',
    'Task "Two back" is 2 days overdue',
  }
  assert all(r.title == OVERDUE_TITLE and r.user_id == uid for r in rows)


@pytest.mark.anyio
async def test_reading_an_alert_allows_a_new_one() -> None:
  uid = await make_user("reread@example.com")
  await _task(uid, "Stale", datetime(2025, 3, 9, 9, 0, tzinfo=UTC))
  await _scan()
  async with SessionLocal() as db:
    await db.execute(update(Notification).values(is_read=True))
    await db.commit()

  report = await _scan(NOW + timedelta(days=1))
  assert report.overdue.created == 1
  rows = await _notifications(scanner.NOTIFICATION_OVERDUE)
  assert [r.is_read for r in rows] == [True, False]
  assert rows[1].message == 'Task "Stale" is 2 days overdue'


@pytest.mark.anyio
async def test_failing_pass_keeps_earlier_alerts_and_other_pass_runs(monkeypatch) -> None:
  uid = await make_user("partial@example.com")
  await _pref(uid, 1)
  await _task(uid, "First", datetime(2025, 3, 11, 8, 0, tzinfo=UTC))
  await _task(uid, "Second", datetime(2025, 3, 11, 9, 0, tzinfo=UTC))
  await _task(uid, "Overdue", datetime(2025, 3, 9, 9, 0, tzinfo=UTC))

  real = scanner.deadline_message
  calls = {"n": 0}

  def flaky(title: str, advance_days: int) -> str:
    calls["n"] += 1
    if calls["n"] > 1:
      raise RuntimeError("render failed")
    return real(title, advance_days)

  monkeypatch.setattr(scanner, "deadline_message", flaky)
  report = await _scan()

  assert not report.ok
  assert report.deadline.ok is False
  assert report.deadline.created == 1
  assert report.deadline.error == "render failed"
  assert report.overdue.ok is True
  assert report.overdue.created == 1
  assert [r.message for r in await _notifications(scanner.NOTIFICATION_DEADLINE)] == ['Task "First" is due tomorrow']


@pytest.mark.anyio
async def test_check_endpoint_permissions(client: AsyncClient) -> None:
  await make_admin()
  await make_user("manager@example.com", role="MANAGER")
  await make_user("worker@example.com")

  await login(client, "worker@example.com")
  assert (await client.post("/alerts/check")).status_code == 401

  await login(client, "manager@example.com")
  r = await client.get("/alerts/check")
  assert r.status_code == 200, r.text

  await login(client, ADMIN_EMAIL)
  r = await client.post("/alerts/check")
  assert r.status_code == 200, r.text
  body = r.json()
  assert body["ok"] is True
  assert body["message"] == "Alerts checked successfully"
  assert set(body) >= {"checkedAt", "deadline", "overdue"}


@pytest.mark.anyio
async def test_check_endpoint_creates_overdue_alerts(client: AsyncClient) -> None:
  admin_id = await make_admin()
  await _task(admin_id, "Behind", datetime.now(timezone.utc) - timedelta(days=3))
  await login(client, ADMIN_EMAIL)
  r = await client.post("/alerts/check")
  assert r.status_code == 200, r.text
  assert r.json()["overdue"]["created"] == 1

  r = await client.get("/notifications")
  assert r.status_code == 200, r.text
  assert r.json()["unreadCount"] == 1
  assert r.json()["notifications"][0]["taskTitle"] == "Behind"


@pytest.mark.anyio
async def test_check_endpoint_reports_failure(client: AsyncClient, monkeypatch) -> None:
  admin_id = await make_admin()
  await _task(admin_id, "Behind", datetime.now(timezone.utc) - timedelta(days=3))

  def broken(title: str, days: int) -> str:
    raise RuntimeError("boom")

  monkeypatch.setattr(scanner, "overdue_message", broken)
  await login(client, ADMIN_EMAIL)
  r = await client.post("/alerts/check")
  assert r.status_code == 500, r.text
  body = r.json()
  assert body["detail"] == "Failed to check alerts"
  assert body["overdue"]["ok"] is False
  assert body["deadline"]["ok"] is True


@pytest.mark.anyio
async def test_alert_preferences_crud(client: AsyncClient) -> None:
  await make_user("prefs@example.com")
  await make_user("other@example.com")
  await login(client, "prefs@example.com")

  r = await client.post("/alerts/preferences", json={"type": "deadline", "isEnabled": True, "advanceDays": 2})
  assert r.status_code == 201, r.text
  pref = r.json()
  assert pref["advanceDays"] == 2

  r = await client.post("/alerts/preferences", json={"type": "deadline", "advanceDays": -1})
  assert r.status_code == 400

  r = await client.put(f"/alerts/preferences/{pref['id']}", json={"isEnabled": False})
  assert r.status_code == 200, r.text
  assert r.json()["isEnabled"] is False
  assert r.json()["advanceDays"] == 2

  r = await client.get("/alerts/preferences")
  assert [p["id"] for p in r.json()] == [pref["id"]]

  await login(client, "other@example.com")
  assert (await client.get("/alerts/preferences")).json() == []
  assert (await client.delete(f"/alerts/preferences/{pref['id']}")).status_code == 404

  await login(client, "prefs@example.com")
  assert (await client.delete(f"/alerts/preferences/{pref['id']}")).status_code == 200
  assert (await client.get("/alerts/preferences")).json() == []
