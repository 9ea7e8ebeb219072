"""
Deadline and overdue alert scan.

Two independent passes turn task state into ``Notification`` rows:

- deadline: per user with an enabled "deadline" preference, their open tasks
  due exactly ``advance_days`` local calendar days from today.
- overdue: every open task whose due date falls before the end of today.

A user never holds two unread notifications of the same type for the same
task. Each insert commits on its own, so a failure part-way through a pass
keeps the rows already written; the other pass still runs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cockpit.config import settings
from cockpit.models import NOTIFICATION_DEADLINE, NOTIFICATION_OVERDUE, AlertPreference, Notification, Task

log = structlog.get_logger(__name__)

DEADLINE_TITLE = "Task Deadline Approaching"
OVERDUE_TITLE = "Task Overdue"

_DAY = timedelta(days=1)


@dataclass
class PassResult:
  created: int = 0
  skipped: int = 0
  ok: bool = True
  error: str | None = None


@dataclass
class ScanReport:
  checked_at: datetime
  deadline: PassResult = field(default_factory=PassResult)
  overdue: PassResult = field(default_factory=PassResult)

  @property
  def ok(self) -> bool:
    return self.deadline.ok and self.overdue.ok


def alert_tz(name: str | None = None) -> tzinfo:
  n = (name or settings.alert_timezone or "UTC").strip()
  if n.upper() == "UTC":
    return timezone.utc
  return ZoneInfo(n)


def local_today(now: datetime, tz: tzinfo) -> date:
  return now.astimezone(tz).date()


def day_start(d: date, tz: tzinfo) -> datetime:
  """Midnight of ``d`` in ``tz``, expressed in UTC."""
  return datetime.combine(d, time.min, tzinfo=tz).astimezone(timezone.utc)


def days_overdue(due: datetime, now: datetime, tz: tzinfo) -> int:
  """Whole days from ``due`` to the start of today; anything due today counts as 1."""
  start = day_start(local_today(now, tz), tz)
  return max(1, math.ceil((start - due) / _DAY))


def deadline_message(title: str, advance_days: int) -> str:
  when = "tomorrow" if advance_days == 1 else f"in {advance_days} days"
  return f'Task "{title}" is due {when}'


def overdue_message(title: str, days: int) -> str:
  return f'Task "{title}" is {days} day{"" if days == 1 else "s"} overdue'


async def _unread_exists(db: AsyncSession, *, user_id: str, task_id: str, type: str) -> bool:
  res = await db.execute(
    select(Notification.id)
    .where(
      Notification.user_id == user_id,
      Notification.task_id == task_id,
      Notification.type == type,
      Notification.is_read.is_(False),
    )
    .limit(1)
  )
  return res.scalar_one_or_none() is not None


async def create_alert_once(db: AsyncSession, *, user_id: str, task_id: str, type: str, title: str, message: str) -> bool:
  """
  Insert one unread alert unless an equal unread one exists. Commits.

  Returns False when skipped. A concurrent insert that wins the race trips the
  partial unique index and is treated as a skip.
  """
  if await _unread_exists(db, user_id=user_id, task_id=task_id, type=type):
    return False
  db.add(Notification(user_id=user_id, task_id=task_id, type=type, title=title, message=message, is_read=False, is_sent=False))
  try:
    await db.commit()
  except IntegrityError:
    await db.rollback()
    log.info("alerts.duplicate_race", user_id=user_id, task_id=task_id, type=type)
    return False
  return True


async def run_deadline_pass(db: AsyncSession, *, now: datetime, tz: tzinfo) -> PassResult:
  out = PassResult()
  try:
    pres = await db.execute(
      select(AlertPreference.user_id, AlertPreference.advance_days)
      .where(AlertPreference.type == "deadline", AlertPreference.is_enabled.is_(True))
      .order_by(AlertPreference.created_at.asc(), AlertPreference.id.asc())
    )
    # Oldest enabled preference wins per user.
    advance_by_user: dict[str, int] = {}
    for user_id, advance in pres.all():
      advance_by_user.setdefault(user_id, int(advance or 0) or 1)

    today = local_today(now, tz)
    for user_id, advance in advance_by_user.items():
      target = today + timedelta(days=advance)
      tres = await db.execute(
        select(Task.id, Task.title)
        .where(
          Task.owner_id == user_id,
          Task.status != "DONE",
          Task.due_date.is_not(None),
          Task.due_date >= day_start(target, tz),
          Task.due_date < day_start(target + timedelta(days=1), tz),
        )
        .order_by(Task.due_date.asc())
      )
      for task_id, title in tres.all():
        created = await create_alert_once(
          db,
          user_id=user_id,
          task_id=task_id,
          type=NOTIFICATION_DEADLINE,
          title=DEADLINE_TITLE,
          message=deadline_message(title, advance),
        )
        if created:
          out.created += 1
        else:
          out.skipped += 1
  except Exception as e:
    await db.rollback()
    log.exception("alerts.deadline_pass_failed", created=out.created)
    out.ok = False
    out.error = str(e) or type(e).__name__
  return out


async def run_overdue_pass(db: AsyncSession, *, now: datetime, tz: tzinfo) -> PassResult:
  out = PassResult()
  try:
    end_of_today = day_start(local_today(now, tz) + timedelta(days=1), tz)
    tres = await db.execute(
      select(Task.id, Task.title, Task.owner_id, Task.due_date)
      .where(Task.status != "DONE", Task.due_date.is_not(None), Task.due_date < end_of_today)
      .order_by(Task.due_date.asc())
    )
    for task_id, title, owner_id, due in tres.all():
      created = await create_alert_once(
        db,
        user_id=owner_id,
        task_id=task_id,
        type=NOTIFICATION_OVERDUE,
        title=OVERDUE_TITLE,
        message=overdue_message(title, days_overdue(due, now, tz)),
      )
      if created:
        out.created += 1
      else:
        out.skipped += 1
  except Exception as e:
    await db.rollback()
    log.exception("alerts.overdue_pass_failed", created=out.created)
    out.ok = False
    out.error = str(e) or type(e).__name__
  return out


async def run_alert_scan(db: AsyncSession, *, now: datetime | None = None, tz: tzinfo | None = None) -> ScanReport:
  now = now or datetime.now(timezone.utc)
  tz = tz or alert_tz()
  report = ScanReport(checked_at=now)
  report.deadline = await run_deadline_pass(db, now=now, tz=tz)
  report.overdue = await run_overdue_pass(db, now=now, tz=tz)
  log.info(
    "alerts.scan",
    ok=report.ok,
    deadline_created=report.deadline.created,
    deadline_skipped=report.deadline.skipped,
    overdue_created=report.overdue.created,
    overdue_skipped=report.overdue.skipped,
  )
  return report
