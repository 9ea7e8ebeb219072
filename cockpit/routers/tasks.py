from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cockpit.activity import write_activity
from cockpit.deps import get_current_user, get_db
from cockpit.errors import NotFound, ValidationFailed
from cockpit.models import Activity, Comment, Notification, Subtask, Task, User
from cockpit.schemas import (
  ActivityOut,
  CommentCreateIn,
  CommentOut,
  SubtaskCreateIn,
  SubtaskOut,
  SubtaskUpdateIn,
  TaskCreateIn,
  TaskOut,
  TaskSearchIn,
  TaskUpdateIn,
)

router = APIRouter(tags=["tasks"])

# API field -> model attribute for partial updates.
_TASK_FIELDS = {
  "title": "title",
  "description": "description",
  "area": "area",
  "subArea": "sub_area",
  "endProduct": "end_product",
  "priority": "priority",
  "status": "status",
  "acceptanceCriteria": "acceptance_criteria",
  "dueDate": "due_date",
  "startDate": "start_date",
  "effort": "effort",
  "risk": "risk",
}


def task_out(t: Task) -> TaskOut:
  return TaskOut(
    id=t.id,
    title=t.title,
    description=t.description,
    area=t.area,
    subArea=t.sub_area,
    endProduct=t.end_product,
    ownerId=t.owner_id,
    ownerName=(t.owner.name if t.owner else None),
    priority=t.priority,
    status=t.status,
    acceptanceCriteria=t.acceptance_criteria,
    dueDate=t.due_date,
    startDate=t.start_date,
    effort=t.effort,
    risk=t.risk,
    createdAt=t.created_at,
    updatedAt=t.updated_at,
  )


def _subtask_out(s: Subtask) -> SubtaskOut:
  return SubtaskOut(
    id=s.id,
    taskId=s.task_id,
    title=s.title,
    description=s.description,
    completed=bool(s.completed),
    createdAt=s.created_at,
    updatedAt=s.updated_at,
  )


def _activity_out(a: Activity) -> ActivityOut:
  return ActivityOut(
    id=a.id,
    type=a.type,
    message=a.message,
    taskId=a.task_id,
    userId=a.user_id,
    payload=a.payload or {},
    createdAt=a.created_at,
  )


async def _get_task(db: AsyncSession, task_id: str) -> Task:
  res = await db.execute(
    select(Task).where(Task.id == task_id).options(selectinload(Task.owner)).execution_options(populate_existing=True)
  )
  t = res.scalar_one_or_none()
  if t is None:
    raise NotFound("Task not found")
  return t


async def _require_owner(db: AsyncSession, owner_id: str | None) -> str:
  if not owner_id:
    raise ValidationFailed("Owner is required")
  res = await db.execute(select(User.id).where(User.id == owner_id))
  if res.scalar_one_or_none() is None:
    raise ValidationFailed("Invalid owner selected")
  return owner_id


@router.get("/tasks", response_model=list[TaskOut])
async def list_tasks(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[TaskOut]:
  res = await db.execute(select(Task).options(selectinload(Task.owner)).order_by(Task.created_at.desc()))
  return [task_out(t) for t in res.scalars().all()]


@router.post("/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def create_task(payload: TaskCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  owner_id = await _require_owner(db, payload.ownerId)
  if not (payload.title or "").strip() or not (payload.area or "").strip():
    raise ValidationFailed("Title and Area are required")
  t = Task(
    title=payload.title.strip(),
    description=payload.description,
    area=payload.area.strip(),
    sub_area=payload.subArea,
    end_product=payload.endProduct,
    owner_id=owner_id,
    priority=payload.priority,
    status=payload.status,
    acceptance_criteria=payload.acceptanceCriteria,
    due_date=payload.dueDate,
    start_date=payload.startDate,
    effort=payload.effort,
    risk=payload.risk,
  )
  db.add(t)
  await db.flush()
  await write_activity(db, type="created", message=f'Task "{t.title}" was created', task_id=t.id, user_id=user.id)
  await db.commit()
  return task_out(await _get_task(db, t.id))


@router.post("/tasks/search", response_model=list[TaskOut])
async def search_tasks(payload: TaskSearchIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[TaskOut]:
  """Search the caller's own tasks."""
  q = select(Task).join(User, User.id == Task.owner_id).where(Task.owner_id == user.id)
  text = (payload.query or "").strip()
  if text:
    like = f"%{text}%"
    q = q.where(
      or_(
        Task.title.ilike(like),
        Task.description.ilike(like),
        Task.area.ilike(like),
        Task.sub_area.ilike(like),
        User.name.ilike(like),
      )
    )
  if payload.status:
    q = q.where(Task.status.in_(payload.status))
  if payload.priority:
    q = q.where(Task.priority.in_(payload.priority))
  if (payload.area or "").strip():
    q = q.where(Task.area.ilike(f"%{payload.area.strip()}%"))
  if (payload.ownerName or "").strip():
    q = q.where(User.name.ilike(f"%{payload.ownerName.strip()}%"))
  if payload.createdFrom:
    q = q.where(Task.created_at >= payload.createdFrom)
  if payload.createdTo:
    q = q.where(Task.created_at <= payload.createdTo)
  res = await db.execute(q.options(selectinload(Task.owner)).order_by(Task.created_at.desc()).limit(payload.limit))
  return [task_out(t) for t in res.scalars().all()]


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  return task_out(await _get_task(db, task_id))


@router.put("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await _get_task(db, task_id)
  fields = payload.model_fields_set
  changes: list[str] = []

  if "ownerId" in fields and payload.ownerId != t.owner_id:
    t.owner_id = await _require_owner(db, payload.ownerId)
    changes.append("owner changed")
  for api_name, attr in _TASK_FIELDS.items():
    if api_name not in fields:
      continue
    value = getattr(payload, api_name)
    if api_name in ("title", "area", "priority", "status") and value is None:
      raise ValidationFailed(f"{api_name} cannot be empty")
    if getattr(t, attr) == value:
      continue
    setattr(t, attr, value)
    if api_name in ("title", "status", "priority"):
      changes.append(f'{api_name} changed to "{value}"')

  if changes:
    kind = "status_changed" if len(changes) == 1 and changes[0].startswith("status") else "updated"
    await write_activity(
      db,
      type=kind,
      message=f'Task "{t.title}" was updated: {", ".join(changes)}',
      task_id=t.id,
      user_id=user.id,
      payload={"changes": changes},
    )
  await db.commit()
  return task_out(await _get_task(db, t.id))


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  t = await _get_task(db, task_id)
  title = t.title
  await db.execute(delete(Notification).where(Notification.task_id == t.id))
  await db.execute(delete(Comment).where(Comment.task_id == t.id))
  await db.execute(delete(Activity).where(Activity.task_id == t.id))
  await db.execute(delete(Subtask).where(Subtask.task_id == t.id))
  await db.execute(delete(Task).where(Task.id == t.id))
  await write_activity(db, type="deleted", message=f'Task "{title}" was deleted', user_id=user.id, payload={"taskId": task_id})
  await db.commit()
  return {"message": "Task deleted successfully"}


# Subtasks


@router.get("/tasks/{task_id}/subtasks", response_model=list[SubtaskOut])
async def list_subtasks(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[SubtaskOut]:
  await _get_task(db, task_id)
  res = await db.execute(select(Subtask).where(Subtask.task_id == task_id).order_by(Subtask.created_at.asc()))
  return [_subtask_out(s) for s in res.scalars().all()]


@router.post("/tasks/{task_id}/subtasks", response_model=SubtaskOut, status_code=status.HTTP_201_CREATED)
async def create_subtask(
  task_id: str,
  payload: SubtaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> SubtaskOut:
  t = await _get_task(db, task_id)
  if not (payload.title or "").strip():
    raise ValidationFailed("Title is required")
  s = Subtask(task_id=t.id, title=payload.title.strip(), description=payload.description)
  db.add(s)
  await db.flush()
  await write_activity(
    db,
    type="subtask_added",
    message=f'Subtask "{s.title}" was added to task "{t.title}"',
    task_id=t.id,
    user_id=user.id,
    payload={"subtaskId": s.id},
  )
  await db.commit()
  return _subtask_out(s)


async def _get_subtask(db: AsyncSession, subtask_id: str) -> Subtask:
  res = await db.execute(select(Subtask).where(Subtask.id == subtask_id))
  s = res.scalar_one_or_none()
  if s is None:
    raise NotFound("Subtask not found")
  return s


@router.patch("/subtasks/{subtask_id}", response_model=SubtaskOut)
async def update_subtask(
  subtask_id: str,
  payload: SubtaskUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> SubtaskOut:
  s = await _get_subtask(db, subtask_id)
  fields = payload.model_fields_set
  if "title" in fields and payload.title is not None:
    s.title = payload.title.strip()
  if "description" in fields:
    s.description = payload.description
  if "completed" in fields and payload.completed is not None:
    s.completed = payload.completed
  await db.commit()
  await db.refresh(s)
  return _subtask_out(s)


@router.delete("/subtasks/{subtask_id}")
async def delete_subtask(subtask_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  s = await _get_subtask(db, subtask_id)
  await db.delete(s)
  await db.commit()
  return {"ok": True}


# Comments


@router.get("/tasks/{task_id}/comments", response_model=list[CommentOut])
async def list_comments(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[CommentOut]:
  await _get_task(db, task_id)
  res = await db.execute(
    select(Comment, User.name)
    .join(User, User.id == Comment.user_id)
    .where(Comment.task_id == task_id)
    .order_by(Comment.created_at.desc())
  )
  return [
    CommentOut(id=c.id, taskId=c.task_id, userId=c.user_id, userName=name, content=c.content, createdAt=c.created_at)
    for c, name in res.all()
  ]


@router.post("/tasks/{task_id}/comments", response_model=CommentOut, status_code=status.HTTP_201_CREATED)
async def create_comment(
  task_id: str,
  payload: CommentCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> CommentOut:
  t = await _get_task(db, task_id)
  content = (payload.content or "").strip()
  if not content:
    raise ValidationFailed("Content is required")
  c = Comment(task_id=t.id, user_id=user.id, content=content)
  db.add(c)
  await db.flush()
  await write_activity(
    db,
    type="commented",
    message=f'{user.name or user.email} commented on task "{t.title}"',
    task_id=t.id,
    user_id=user.id,
    payload={"commentId": c.id},
  )
  await db.commit()
  return CommentOut(id=c.id, taskId=c.task_id, userId=c.user_id, userName=user.name, content=c.content, createdAt=c.created_at)


@router.get("/activities", response_model=list[ActivityOut])
async def list_activities(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[ActivityOut]:
  res = await db.execute(select(Activity).order_by(Activity.created_at.desc()).limit(50))
  return [_activity_out(a) for a in res.scalars().all()]
