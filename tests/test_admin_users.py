from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import delete, select

from conftest import ADMIN_EMAIL, PASSWORD, get_user, login, make_admin, make_user
from cockpit.db import SessionLocal
from cockpit.models import (
  Activity,
  AlertPreference,
  Comment,
  Notification,
  Role,
  RolePermission,
  Session as DbSession,
  Task,
  UserRoleAssignment,
)


async def _assignments(user_id: str) -> list[tuple[str, str | None]]:
  async with SessionLocal() as db:
    res = await db.execute(
      select(Role.name, UserRoleAssignment.assigned_by)
      .join(Role, Role.id == UserRoleAssignment.role_id)
      .where(UserRoleAssignment.user_id == user_id)
    )
    return [(name, by) for name, by in res.all()]


@pytest.mark.anyio
async def test_role_change_keeps_assignment_in_lockstep(client: AsyncClient) -> None:
  admin_id = await make_admin()
  uid = await make_user("promote@example.com")
  assert await _assignments(uid) == [("USER", None)]
  await login(client, ADMIN_EMAIL)

  r = await client.put("/admin/users/role", json={"userId": uid, "role": "MANAGER"})
  assert r.status_code == 200, r.text
  assert (await get_user("promote@example.com")).role == "MANAGER"
  assert await _assignments(uid) == [("MANAGER", admin_id)]

  r = await client.put("/admin/users/role", json={"userId": uid, "role": "VIEWER"})
  assert r.status_code == 200, r.text
  assert await _assignments(uid) == [("VIEWER", admin_id)]


@pytest.mark.anyio
async def test_role_change_rejects_bad_input(client: AsyncClient) -> None:
  await make_admin()
  uid = await make_user("bad-role@example.com")
  await login(client, ADMIN_EMAIL)

  r = await client.put("/admin/users/role", json={"userId": uid})
  assert r.status_code == 400
  r = await client.put("/admin/users/role", json={"userId": uid, "role": "OVERLORD"})
  assert r.status_code == 400
  r = await client.put("/admin/users/role", json={"userId": "missing", "role": "USER"})
  assert r.status_code == 404
  assert await _assignments(uid) == [("USER", None)]


@pytest.mark.anyio
async def test_role_change_without_matching_role_row_writes_nothing(client: AsyncClient) -> None:
  await make_admin()
  uid = await make_user("desync@example.com")
  async with SessionLocal() as db:
    viewer_id = (await db.execute(select(Role.id).where(Role.name == "VIEWER"))).scalar_one()
    await db.execute(delete(RolePermission).where(RolePermission.role_id == viewer_id))
    await db.execute(delete(Role).where(Role.id == viewer_id))
    await db.commit()
  await login(client, ADMIN_EMAIL)

  r = await client.put("/admin/users/role", json={"userId": uid, "role": "VIEWER"})
  assert r.status_code == 404, r.text
  assert (await get_user("desync@example.com")).role == "USER"
  assert await _assignments(uid) == [("USER", None)]


@pytest.mark.anyio
async def test_admin_creates_user_with_role(client: AsyncClient) -> None:
  admin_id = await make_admin()
  await login(client, ADMIN_EMAIL)

  r = await client.post(
    "/admin/users",
    json={"name": "Mona", "email": "Mona@Example.com", "password": PASSWORD, "role": "MANAGER", "emailVerified": True},
  )
  assert r.status_code == 201, r.text
  user = r.json()["user"]
  assert user["email"] == "mona@example.com"
  assert user["role"] == "MANAGER"
  assert user["emailVerified"] is not None
  assert [a["roleName"] for a in user["roleAssignments"]] == ["MANAGER"]
  assert await _assignments(user["id"]) == [("MANAGER", admin_id)]

  r = await client.post("/admin/users", json={"name": "Mona", "email": "mona@example.com", "password": PASSWORD})
  assert r.status_code == 409

  r = await client.post("/admin/users", json={"name": "Nope", "email": "nope@example.com"})
  assert r.status_code == 400

  r = await client.post("/admin/users", json={"name": "Unverified", "email": "unv@example.com", "password": PASSWORD})
  assert r.status_code == 201, r.text
  assert r.json()["user"]["emailVerified"] is None
  assert (await get_user("unv@example.com")).verification_token is not None


@pytest.mark.anyio
async def test_list_users_includes_assignments(client: AsyncClient) -> None:
  await make_admin()
  await make_user("listed@example.com", role="VIEWER")
  await login(client, ADMIN_EMAIL)
  r = await client.get("/admin/users")
  assert r.status_code == 200, r.text
  by_email = {u["email"]: u for u in r.json()}
  assert [a["roleName"] for a in by_email["listed@example.com"]["roleAssignments"]] == ["VIEWER"]


@pytest.mark.anyio
async def test_manager_can_view_but_not_manage_users(client: AsyncClient) -> None:
  await make_user("boss@example.com", role="MANAGER")
  target = await make_user("target@example.com")
  await login(client, "boss@example.com")

  assert (await client.get("/admin/users")).status_code == 200
  r = await client.put("/admin/users/status", json={"userId": target, "isActive": False})
  assert r.status_code == 401
  assert (await get_user("target@example.com")).is_active is True


@pytest.mark.anyio
async def test_deactivate_revokes_sessions_and_blocks_login(client: AsyncClient) -> None:
  admin_id = await make_admin()
  uid = await make_user("off@example.com")
  async with SessionLocal() as db:
    db.add(DbSession(user_id=uid, expires_at=datetime.now(timezone.utc) + timedelta(days=1)))
    await db.commit()
  await login(client, ADMIN_EMAIL)

  r = await client.put("/admin/users/status", json={"userId": admin_id, "isActive": False})
  assert r.status_code == 400
  assert r.json()["detail"] == "Cannot deactivate your own account"

  r = await client.put("/admin/users/status", json={"userId": uid, "isActive": False})
  assert r.status_code == 200, r.text
  assert r.json()["message"] == "User deactivated successfully"
  async with SessionLocal() as db:
    assert (await db.execute(select(DbSession).where(DbSession.user_id == uid))).first() is None

  r = await client.post("/auth/login", json={"email": "off@example.com", "password": PASSWORD})
  assert r.status_code == 403

  await login(client, ADMIN_EMAIL)
  r = await client.put("/admin/users/status", json={"userId": uid, "isActive": True})
  assert r.status_code == 200
  await login(client, "off@example.com")


@pytest.mark.anyio
async def test_admin_verify_user(client: AsyncClient) -> None:
  await make_admin()
  uid = await make_user("pending@example.com", verified=False, active=False)
  await login(client, ADMIN_EMAIL)
  r = await client.post("/admin/users/verify", json={"userId": uid})
  assert r.status_code == 200, r.text
  u = await get_user("pending@example.com")
  assert u.email_verified is not None
  assert u.is_active is True
  await login(client, "pending@example.com")


@pytest.mark.anyio
async def test_delete_user_cascades(client: AsyncClient) -> None:
  admin_id = await make_admin()
  uid = await make_user("gone@example.com")
  other = await make_user("stays@example.com")
  async with SessionLocal() as db:
    t = Task(title="Owned", area="Ops", owner_id=uid)
    kept = Task(title="Other", area="Ops", owner_id=other)
    db.add_all([t, kept])
    await db.flush()
    db.add_all(
      [
        Comment(task_id=kept.id, user_id=uid, content="hi"),
        Comment(task_id=t.id, user_id=other, content="on owned"),
        Activity(type="created", message="x", task_id=t.id, user_id=uid, payload={}),
        Notification(user_id=uid, task_id=t.id, type="overdue_task", title="T", message="M"),
        Notification(user_id=other, task_id=t.id, type="overdue_task", title="T", message="M"),
        AlertPreference(user_id=uid, type="deadline", is_enabled=True, advance_days=1),
      ]
    )
    await db.commit()
    kept_id = kept.id
  await login(client, ADMIN_EMAIL)

  r = await client.delete("/admin/users")
  assert r.status_code == 400
  r = await client.delete("/admin/users", params={"userId": admin_id})
  assert r.status_code == 400
  assert r.json()["detail"] == "Cannot delete your own account"
  r = await client.delete("/admin/users", params={"userId": "missing"})
  assert r.status_code == 404

  r = await client.delete("/admin/users", params={"userId": uid})
  assert r.status_code == 200, r.text

  async with SessionLocal() as db:
    assert (await db.execute(select(Task).where(Task.owner_id == uid))).first() is None
    assert (await db.execute(select(Task).where(Task.id == kept_id))).scalar_one().title == "Other"
    assert (await db.execute(select(Comment))).first() is None
    assert (await db.execute(select(Notification))).first() is None
    assert (await db.execute(select(AlertPreference))).first() is None
    assert (await db.execute(select(UserRoleAssignment).where(UserRoleAssignment.user_id == uid))).first() is None


@pytest.mark.anyio
async def test_malformed_admin_bodies_are_bad_requests(client: AsyncClient) -> None:
  await make_admin()
  uid = await make_user("shape@example.com")
  await login(client, ADMIN_EMAIL)

  r = await client.put("/admin/users/status", json={"userId": uid, "isActive": "maybe"})
  assert r.status_code == 400, r.text
  assert r.json()["detail"].startswith("isActive: ")
  assert (await get_user("shape@example.com")).is_active is True

  r = await client.post("/admin/roles", json={"name": 123})
  assert r.status_code == 400, r.text
  assert r.json()["detail"].startswith("name: ")

  r = await client.post("/admin/roles", content=b"{not json", headers={"Content-Type": "application/json"})
  assert r.status_code == 400, r.text
  assert isinstance(r.json()["detail"], str)
