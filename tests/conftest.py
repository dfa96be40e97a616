from __future__ import annotations

import os
import sys
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./collabtodo_test.db")
os.environ.setdefault("BACKGROUND_JOBS_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete, select

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

from collabtodo.config import settings
from collabtodo.db import SessionLocal, engine
from collabtodo.main import app
from collabtodo.models import (
  Base,
  Notification,
  Session,
  Task,
  TaskActivity,
  TaskAttachment,
  TaskComment,
  TodoList,
  TodoListMember,
  User,
)
from collabtodo.rate_limit import limiter


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  limiter.reset_prefix("auth:")
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  async with SessionLocal() as db:
    await db.execute(delete(Notification))
    await db.execute(delete(TaskComment))
    await db.execute(delete(TaskActivity))
    await db.execute(delete(TaskAttachment))
    # Subtasks reference their parent; drop children first.
    await db.execute(delete(Task).where(Task.parent_task_id.is_not(None)))
    await db.execute(delete(Task))
    await db.execute(delete(TodoListMember))
    await db.execute(delete(TodoList))
    await db.execute(delete(Session))
    await db.execute(delete(User))
    await db.commit()
  await engine.dispose()


@pytest.fixture(autouse=True)
async def _clean_between_tests(anyio_backend) -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. collabtodo_test)."
    )
  await _reset_db()
  yield
  await _reset_db()


@pytest.fixture
async def client() -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


class FakeSocket:
  def __init__(self) -> None:
    self.sent: list[dict] = []

  async def send_json(self, data) -> None:
    self.sent.append(data)

  async def close(self, code: int = 1000, reason: str | None = None) -> None:
    pass

  def events(self) -> list[str]:
    return [m["event"] for m in self.sent]


async def register(client: AsyncClient, name: str, *, password: str = "secret123") -> dict:
  """Registers and logs in `name`; returns {"id", "email", "token", "headers"}."""
  email = f"{name.lower()}@example.com"
  res = await client.post("/auth/register", json={"name": name, "email": email, "password": password})
  assert res.status_code == 201, res.text
  login = await client.post("/auth/login", json={"email": email, "password": password})
  assert login.status_code == 200, login.text
  token = login.json()["token"]
  return {"id": res.json()["id"], "email": email, "token": token, "headers": {"Authorization": f"Bearer {token}"}}


async def create_list(client: AsyncClient, owner: dict, name: str = "Groceries") -> dict:
  res = await client.post("/todo-lists", json={"name": name}, headers=owner["headers"])
  assert res.status_code == 201, res.text
  return res.json()


async def add_collaborator(client: AsyncClient, owner: dict, todo_list: dict, user: dict) -> dict:
  res = await client.post(
    f"/todo-lists/{todo_list['id']}/collaborators",
    json={"userId": user["id"]},
    headers=owner["headers"],
  )
  assert res.status_code == 200, res.text
  return res.json()


async def notifications_of(user_id: str, *, type: str | None = None) -> list[Notification]:
  async with SessionLocal() as db:
    q = select(Notification).where(Notification.user_id == user_id)
    if type:
      q = q.where(Notification.type == type)
    res = await db.execute(q.order_by(Notification.created_at.asc()))
    return list(res.scalars().all())
