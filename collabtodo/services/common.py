from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.access import ListMembership
from collabtodo.errors import InvalidRequest, NotFound
from collabtodo.models import TodoList, TodoListMember, User

T = TypeVar("T")

MEMBER_COLLABORATOR = "collaborator"
MEMBER_PENDING = "pending"


def require_id(value: str | None, *, label: str) -> str:
  raw = (value or "").strip()
  try:
    return str(uuid.UUID(raw))
  except ValueError:
    raise InvalidRequest(f"Invalid {label} id") from None


@dataclass
class Page(Generic[T]):
  items: list[T]
  page: int
  limit: int
  total: int

  @property
  def pages(self) -> int:
    return math.ceil(self.total / self.limit) if self.limit else 0

  def pagination(self) -> dict[str, int]:
    return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


def clamp_page(page: int, limit: int, *, max_limit: int = 100) -> tuple[int, int]:
  return max(1, int(page)), max(1, min(int(limit), max_limit))


async def get_user(db: AsyncSession, user_id: str, *, label: str = "User") -> User:
  res = await db.execute(select(User).where(User.id == require_id(user_id, label=label.lower())))
  u = res.scalar_one_or_none()
  if not u:
    raise NotFound(f"{label} not found")
  return u


async def get_todo_list(db: AsyncSession, todo_list_id: str) -> TodoList:
  res = await db.execute(select(TodoList).where(TodoList.id == require_id(todo_list_id, label="todo list")))
  todo_list = res.scalar_one_or_none()
  if not todo_list:
    raise NotFound("Todo list not found")
  return todo_list


async def load_membership(db: AsyncSession, todo_list: TodoList) -> ListMembership:
  res = await db.execute(
    select(TodoListMember.user_id, TodoListMember.status).where(TodoListMember.todo_list_id == todo_list.id)
  )
  rows = res.all()
  return ListMembership(
    list_id=todo_list.id,
    owner_id=todo_list.owner_id,
    collaborator_ids=frozenset(uid for uid, st in rows if st == MEMBER_COLLABORATOR),
    pending_ids=frozenset(uid for uid, st in rows if st == MEMBER_PENDING),
  )
