from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
  """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

  def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UUIDStr = UUID(as_uuid=False).with_variant(String(36), "sqlite")
JSONDoc = JSONB().with_variant(JSON(), "sqlite")


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=lambda: str(uuid.uuid4()))
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  password_hash: Mapped[str] = mapped_column(String, nullable=False)
  avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Session(Base):
  __tablename__ = "sessions"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=lambda: str(uuid.uuid4()))
  user_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=False, index=True)
  token_hash: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  created_ip: Mapped[str | None] = mapped_column(String, nullable=True)
  user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class TodoList(Base):
  __tablename__ = "todo_lists"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=lambda: str(uuid.uuid4()))
  name: Mapped[str] = mapped_column(String(50), nullable=False)
  owner_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=False, index=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class TodoListMember(Base):
  __tablename__ = "todo_list_members"
  __table_args__ = (UniqueConstraint("todo_list_id", "user_id", name="ux_todo_list_member"),)

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=lambda: str(uuid.uuid4()))
  todo_list_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("todo_lists.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=False, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False)  # collaborator | pending
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=lambda: str(uuid.uuid4()))
  todo_list_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("todo_lists.id"), nullable=False, index=True)
  parent_task_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("tasks.id"), nullable=True, index=True)
  title: Mapped[str] = mapped_column(String(200), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  priority: Mapped[str] = mapped_column(String, nullable=False, default="MEDIUM")  # LOW | MEDIUM | HIGH | URGENT
  status: Mapped[str] = mapped_column(String, nullable=False, default="TODO")  # TODO | IN_PROGRESS | REVIEW | DONE
  tags: Mapped[list[str]] = mapped_column(JSONDoc, nullable=False, default=list)
  due_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  completed_by_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=True)
  assigned_to_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=True, index=True)
  assigned_by_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=True)
  assigned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  created_by_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=False, index=True)
  is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
  deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  deleted_by_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class TaskComment(Base):
  __tablename__ = "task_comments"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=lambda: str(uuid.uuid4()))
  task_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("tasks.id"), nullable=False, index=True)
  author_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class TaskActivity(Base):
  __tablename__ = "task_activity"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=lambda: str(uuid.uuid4()))
  task_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("tasks.id"), nullable=False, index=True)
  actor_id: Mapped[str | None] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=True)
  action: Mapped[str] = mapped_column(String, nullable=False)  # CREATED | UPDATED | COMPLETED | ASSIGNED | COMMENTED | ATTACHED
  details: Mapped[dict[str, Any]] = mapped_column(JSONDoc, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class TaskAttachment(Base):
  __tablename__ = "task_attachments"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=lambda: str(uuid.uuid4()))
  task_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("tasks.id"), nullable=False, index=True)
  filename: Mapped[str] = mapped_column(String, nullable=False)
  mime: Mapped[str | None] = mapped_column(String, nullable=True)
  size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  url: Mapped[str] = mapped_column(String, nullable=False)
  uploaded_by_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Notification(Base):
  __tablename__ = "notifications"

  id: Mapped[str] = mapped_column(UUIDStr, primary_key=True, default=lambda: str(uuid.uuid4()))
  user_id: Mapped[str] = mapped_column(UUIDStr, ForeignKey("users.id"), nullable=False, index=True)
  type: Mapped[str] = mapped_column(String, nullable=False)
  title: Mapped[str] = mapped_column(String(100), nullable=False)
  message: Mapped[str] = mapped_column(String(500), nullable=False)
  data: Mapped[dict[str, Any]] = mapped_column(JSONDoc, nullable=False, default=dict)
  priority: Mapped[str] = mapped_column(String, nullable=False, default="MEDIUM")  # LOW | MEDIUM | HIGH
  is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False, index=True)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
