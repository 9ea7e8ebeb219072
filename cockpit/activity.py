from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from cockpit.models import Activity

ACTIVITY_TYPES = ("created", "updated", "deleted", "status_changed", "commented", "subtask_added")


async def write_activity(
  db: AsyncSession,
  *,
  type: str,
  message: str,
  task_id: str | None = None,
  user_id: str | None = None,
  payload: dict[str, Any] | None = None,
) -> Activity:
  a = Activity(
    type=type,
    message=message,
    task_id=task_id,
    user_id=user_id,
    payload=jsonable_encoder(payload or {}),
  )
  db.add(a)
  return a
