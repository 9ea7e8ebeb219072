from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cockpit.deps import get_current_user, get_db
from cockpit.errors import Conflict, ValidationFailed
from cockpit.models import Notification, User
from cockpit.schemas import NotificationActionIn, NotificationListOut, NotificationOut

router = APIRouter(prefix="/notifications", tags=["notifications"])

ACTIONS = ("markRead", "markUnread", "delete")


def _notification_out(n: Notification) -> NotificationOut:
  return NotificationOut(
    id=n.id,
    type=n.type,
    title=n.title,
    message=n.message,
    taskId=n.task_id,
    taskTitle=(n.task.title if n.task else None),
    isRead=bool(n.is_read),
    isSent=bool(n.is_sent),
    createdAt=n.created_at,
  )


@router.get("", response_model=NotificationListOut)
async def list_notifications(
  unreadOnly: bool = Query(default=False),
  limit: int = Query(default=50, ge=1, le=500),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NotificationListOut:
  q = select(Notification).where(Notification.user_id == user.id)
  if unreadOnly:
    q = q.where(Notification.is_read.is_(False))
  res = await db.execute(
    q.options(selectinload(Notification.task)).order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
  )
  rows = res.scalars().all()

  unread = await db.execute(
    select(func.count()).select_from(Notification).where(Notification.user_id == user.id, Notification.is_read.is_(False))
  )
  total = await db.execute(select(func.count()).select_from(Notification).where(Notification.user_id == user.id))
  return NotificationListOut(
    notifications=[_notification_out(n) for n in rows],
    unreadCount=int(unread.scalar_one()),
    total=int(total.scalar_one()),
  )


async def _would_duplicate_unread(db: AsyncSession, n: Notification) -> bool:
  res = await db.execute(
    select(Notification.id)
    .where(
      Notification.user_id == n.user_id,
      Notification.task_id == n.task_id,
      Notification.type == n.type,
      Notification.is_read.is_(False),
      Notification.id != n.id,
    )
    .limit(1)
  )
  return res.scalar_one_or_none() is not None


@router.post("")
async def update_notifications(
  payload: NotificationActionIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  ids = [i for i in (payload.notificationIds or []) if i]
  if not ids:
    raise ValidationFailed("Invalid notification IDs")
  if payload.action not in ACTIONS:
    raise ValidationFailed("Invalid action")

  scope = (Notification.user_id == user.id, Notification.id.in_(ids))
  if payload.action == "markRead":
    res = await db.execute(update(Notification).where(*scope).values(is_read=True))
    await db.commit()
    return {"message": "Notifications marked as read", "updated": int(res.rowcount or 0)}

  if payload.action == "delete":
    res = await db.execute(delete(Notification).where(*scope))
    await db.commit()
    return {"message": "Notifications deleted", "deleted": int(res.rowcount or 0)}

  res = await db.execute(select(Notification).where(*scope, Notification.is_read.is_(True)))
  rows = res.scalars().all()
  seen: set[tuple] = set()
  for n in rows:
    key = (n.task_id, n.type)
    if n.task_id is not None and (key in seen or await _would_duplicate_unread(db, n)):
      raise Conflict("An unread notification for this task already exists")
    seen.add(key)
    n.is_read = False
  try:
    await db.commit()
  except IntegrityError:
    await db.rollback()
    raise Conflict("An unread notification for this task already exists")
  return {"message": "Notifications marked as unread", "updated": len(rows)}
