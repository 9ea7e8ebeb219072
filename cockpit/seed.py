from __future__ import annotations

import asyncio
import os
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog
from sqlalchemy import select

from cockpit.activity import write_activity
from cockpit.db import SessionLocal
from cockpit.logging import configure_logging
from cockpit.models import AlertPreference, Subtask, Task, User
from cockpit.rbac.store import assign_role, ensure_catalog
from cockpit.security import hash_password, password_errors

log = structlog.get_logger(__name__)

# (email, name, role)
SAMPLE_USERS = [
  ("anderson@example.com", "Anderson Meta", "MANAGER"),
  ("boris@example.com", "Boris Toma", "USER"),
  ("vladimir@example.com", "Vladimir Medic", "USER"),
]

# (title, area, owner email, priority, status, due in days, subtasks)
SAMPLE_TASKS = [
  (
    "Implement user authentication system",
    "Backend Development",
    "anderson@example.com",
    "HIGH",
    "IN_PROGRESS",
    7,
    ["Configure session handling", "Create login/signup endpoints", "Implement password reset"],
  ),
  ("Design task management UI", "Frontend Development", "boris@example.com", "MEDIUM", "TODO", 14, ["Wireframes", "Component library"]),
  ("Set up real-time updates", "Backend Development", "vladimir@example.com", "LOW", "TODO", 21, []),
  ("Database schema optimization", "Backend Development", "anderson@example.com", "MEDIUM", "IN_REVIEW", 3, []),
  ("Implement testing framework", "Quality Assurance", "boris@example.com", "HIGH", "TODO", 1, []),
  ("Set up CI/CD pipeline", "DevOps", "vladimir@example.com", "URGENT", "BLOCKED", -2, []),
]


def _bootstrap_password(env_key: str) -> tuple[str, bool]:
  configured = (os.getenv(env_key) or "").strip()
  if configured:
    return configured, False
  # token_urlsafe alone may miss a character class required by the password policy.
  return f"{secrets.token_urlsafe(14)}Aa1!", True


async def _ensure_user(db, *, email: str, name: str, role: str, password: str) -> tuple[User, bool]:
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if u is not None:
    return u, False
  u = User(
    email=email,
    name=name,
    role="USER",
    password_hash=hash_password(password),
    is_active=True,
    email_verified=datetime.now(timezone.utc),
  )
  db.add(u)
  await db.flush()
  await assign_role(db, user_id=u.id, role_name=role, assigned_by=None)
  return u, True


async def seed(*, with_samples: bool | None = None) -> None:
  if with_samples is None:
    with_samples = (os.getenv("SEED_SAMPLE_DATA") or "").strip().lower() in ("1", "true", "yes", "y")
  boot_lines: list[str] = []
  async with SessionLocal() as db:
    await ensure_catalog(db)

    admin_email = (os.getenv("SEED_ADMIN_EMAIL") or "admin@voicockpit.local").strip().lower()
    admin_password, generated = _bootstrap_password("SEED_ADMIN_PASSWORD")
    errs = password_errors(admin_password)
    if errs:
      raise SystemExit(f"SEED_ADMIN_PASSWORD rejected: {errs[0]}")
    admin, created = await _ensure_user(db, email=admin_email, name="Admin", role="ADMIN", password=admin_password)
    if created:
      boot_lines.append(f"{admin_email}={admin_password} (generated={str(generated).lower()})")

    if with_samples:
      now = datetime.now(timezone.utc)
      users: dict[str, User] = {}
      for email, name, role in SAMPLE_USERS:
        password, _ = _bootstrap_password("SEED_SAMPLE_PASSWORD")
        u, created = await _ensure_user(db, email=email, name=name, role=role, password=password)
        users[email] = u
        if created:
          boot_lines.append(f"{email}={password}")
          db.add(AlertPreference(user_id=u.id, type="deadline", is_enabled=True, advance_days=1))

      existing = await db.execute(select(Task.id).limit(1))
      if existing.scalar_one_or_none() is None:
        for title, area, owner_email, priority, status, due_in, subtasks in SAMPLE_TASKS:
          t = Task(
            title=title,
            area=area,
            owner_id=users[owner_email].id,
            priority=priority,
            status=status,
            due_date=now + timedelta(days=due_in),
            start_date=now,
          )
          db.add(t)
          await db.flush()
          await write_activity(db, type="created", message=f'Task "{title}" was created', task_id=t.id, user_id=admin.id)
          for st in subtasks:
            db.add(Subtask(task_id=t.id, title=st))

    await db.commit()

  if boot_lines:
    out_dir = Path(os.getenv("BOOTSTRAP_CREDENTIALS_DIR", "data"))
    out_dir.mkdir(parents=True, exist_ok=True)
    out_file = out_dir / "bootstrap_credentials.txt"
    stamp = datetime.now(timezone.utc).isoformat()
    out_file.write_text(f"[{stamp}]\n" + "\n".join(boot_lines) + "\n", encoding="utf-8")
    log.info("seed.credentials_written", path=str(out_file), accounts=len(boot_lines))
  log.info("seed.done", samples=with_samples)


def main() -> None:
  configure_logging()
  asyncio.run(seed())


if __name__ == "__main__":
  main()
