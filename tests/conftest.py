from __future__ import annotations

import os
from datetime import datetime, timezone

# Must be set before cockpit.config is imported.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./cockpit_test.db")
os.environ.setdefault("DEV_EMAIL_CAPTURE", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select, update

from cockpit.config import settings
from cockpit.db import SessionLocal, engine
from cockpit.main import app
from cockpit.models import Base, User
from cockpit.rate_limit import limiter
from cockpit.rbac.store import assign_role, ensure_catalog
from cockpit.security import hash_password

PASSWORD = "Passw0rd!"
ADMIN_EMAIL = "admin@voicockpit.test"

_schema_ready = False


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  global _schema_ready
  limiter.reset_prefix("auth:")
  async with engine.begin() as conn:
    if not _schema_ready:
      await conn.run_sync(Base.metadata.drop_all)
      await conn.run_sync(Base.metadata.create_all)
      _schema_ready = True
    for table in reversed(Base.metadata.sorted_tables):
      await conn.execute(table.delete())
  async with SessionLocal() as db:
    await ensure_catalog(db)
    await db.commit()
  await engine.dispose()


@pytest.fixture(autouse=True)
async def _clean_between_tests() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. cockpit_test.db)."
    )
  await _reset_db()
  yield
  await engine.dispose()


@pytest.fixture
async def client() -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def make_user(
  email: str,
  password: str = PASSWORD,
  *,
  role: str | None = "USER",
  name: str | None = None,
  verified: bool = True,
  active: bool = True,
) -> str:
  """Insert a user directly. ``role=None`` leaves the user without any role assignment."""
  async with SessionLocal() as db:
    u = User(
      email=email,
      name=name or email.split("@", 1)[0].title(),
      password_hash=hash_password(password),
      role="USER",
      is_active=active,
      email_verified=datetime.now(timezone.utc) if verified else None,
      failed_login_attempts=0,
    )
    db.add(u)
    await db.flush()
    if role is not None:
      await assign_role(db, user_id=u.id, role_name=role, assigned_by=None)
    await db.commit()
    return u.id


async def make_admin() -> str:
  return await make_user(ADMIN_EMAIL, role="ADMIN", name="Admin")


async def login(client: AsyncClient, email: str, password: str = PASSWORD) -> dict:
  res = await client.post("/auth/login", json={"email": email, "password": password})
  assert res.status_code == 200, res.text
  cookie = res.headers.get("set-cookie")
  assert cookie and "vc_session=" in cookie
  return res.json()


async def seeded_user_id(email: str) -> str:
  async with SessionLocal() as db:
    res = await db.execute(select(User).where(User.email == email))
    u = res.scalar_one()
    return u.id


async def get_user(email: str) -> User:
  async with SessionLocal() as db:
    res = await db.execute(select(User).where(User.email == email))
    return res.scalar_one()


async def set_user(email: str, **values) -> None:
  async with SessionLocal() as db:
    await db.execute(update(User).where(User.email == email).values(**values))
    await db.commit()
