from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import field_validator, model_validator


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

TaskPriority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
TaskStatus = Literal["TODO", "IN_PROGRESS", "REVIEW", "DONE"]
TASK_PRIORITIES: tuple[str, ...] = ("LOW", "MEDIUM", "HIGH", "URGENT")
TASK_STATUSES: tuple[str, ...] = ("TODO", "IN_PROGRESS", "REVIEW", "DONE")
TAG_MAX_LENGTH = 40


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def _normalize_email(value: object) -> object:
  if not isinstance(value, str):
    return value
  s = value.strip().lower()
  if "@" not in s or s.startswith("@") or s.endswith("@"):
    raise ValueError("invalid email address")
  return s


def _clean_tags(value: list[str] | None) -> list[str] | None:
  if value is None:
    return None
  out: list[str] = []
  for raw in value:
    t = (raw or "").strip()
    if not t:
      continue
    if len(t) > TAG_MAX_LENGTH:
      raise ValueError(f"tag must be at most {TAG_MAX_LENGTH} characters")
    if t not in out:
      out.append(t)
  return out


class UserOut(BaseModel):
  id: str
  email: str
  name: str
  avatarUrl: str | None = None
  createdAt: datetime


class UserPublicOut(BaseModel):
  id: str
  name: str
  avatarUrl: str | None = None


class RegisterIn(BaseModel):
  name: str = Field(min_length=1, max_length=50)
  email: str = Field(min_length=3, max_length=254)
  password: str = Field(min_length=6, max_length=128)

  @field_validator("email", mode="before")
  @classmethod
  def _email(cls, v: object) -> object:
    return _normalize_email(v)

  @field_validator("name")
  @classmethod
  def _name(cls, v: str) -> str:
    s = v.strip()
    if not s:
      raise ValueError("name is required")
    return s


class LoginIn(BaseModel):
  email: str
  password: str


class LoginOut(BaseModel):
  token: str
  expiresAt: datetime
  user: UserOut


class UserUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=50)
  avatarUrl: str | None = Field(default=None, max_length=500)


class PasswordChangeIn(BaseModel):
  currentPassword: str
  newPassword: str = Field(min_length=6, max_length=128)


class PaginationOut(BaseModel):
  page: int
  limit: int
  total: int
  pages: int


class TodoListCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=50)

  @field_validator("name")
  @classmethod
  def _name(cls, v: str) -> str:
    s = v.strip()
    if not s:
      raise ValueError("name is required")
    return s


class TodoListUpdateIn(TodoListCreateIn):
  pass


class TodoListOut(BaseModel):
  id: str
  name: str
  ownerId: str
  collaborators: list[str] = []
  pendingCollaborators: list[str] = []
  taskIds: list[str] = []
  role: Literal["owner", "collaborator"] | None = None
  createdAt: datetime
  updatedAt: datetime


class TodoListPageOut(BaseModel):
  todoLists: list[TodoListOut]
  pagination: PaginationOut


class CollaboratorIn(BaseModel):
  userId: str | None = None
  email: str | None = None

  @field_validator("email", mode="before")
  @classmethod
  def _email(cls, v: object) -> object:
    if v is None or (isinstance(v, str) and not v.strip()):
      return None
    return _normalize_email(v)

  @model_validator(mode="after")
  def _one_of(self) -> "CollaboratorIn":
    if not self.userId and not self.email:
      raise ValueError("userId or email is required")
    return self


class MemberOut(BaseModel):
  userId: str
  name: str
  email: str
  avatarUrl: str | None = None
  role: Literal["owner", "collaborator", "pending"]


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1, max_length=200)
  description: str = Field(default="", max_length=1000)
  dueDate: datetime | None = None
  priority: TaskPriority = "MEDIUM"
  status: TaskStatus = "TODO"
  tags: list[str] = []
  assignedTo: str | None = None
  parentTask: str | None = None

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)

  @field_validator("tags")
  @classmethod
  def _tags(cls, v: list[str]) -> list[str]:
    return _clean_tags(v) or []

  @field_validator("title")
  @classmethod
  def _title(cls, v: str) -> str:
    s = v.strip()
    if not s:
      raise ValueError("title is required")
    return s


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=1000)
  dueDate: datetime | None = None
  priority: TaskPriority | None = None
  status: TaskStatus | None = None
  tags: list[str] | None = None
  assignedTo: str | None = None

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)

  @field_validator("tags")
  @classmethod
  def _tags(cls, v: list[str] | None) -> list[str] | None:
    return _clean_tags(v)


class TaskQuery(BaseModel):
  page: int = 1
  limit: int = 10
  includeCompleted: bool = True
  status: TaskStatus | None = None
  priority: TaskPriority | None = None
  assignedTo: str | None = None
  search: str | None = None
  sortBy: Literal["createdAt", "updatedAt", "dueDate", "priority", "title", "status"] = "createdAt"
  sortOrder: Literal["asc", "desc"] = "desc"


class CommentIn(BaseModel):
  text: str = Field(min_length=1, max_length=500)


class AttachmentIn(BaseModel):
  filename: str = Field(min_length=1, max_length=255)
  mime: str | None = Field(default=None, max_length=255)
  sizeBytes: int = Field(default=0, ge=0)
  url: str = Field(min_length=1, max_length=2000)


class CommentOut(BaseModel):
  id: str
  authorId: str
  text: str
  createdAt: datetime


class ActivityOut(BaseModel):
  id: str
  action: str
  actorId: str | None = None
  details: dict[str, Any] = {}
  createdAt: datetime


class AttachmentOut(BaseModel):
  id: str
  filename: str
  mime: str | None = None
  sizeBytes: int
  url: str
  uploadedBy: str
  createdAt: datetime


class TaskOut(BaseModel):
  id: str
  todoListId: str
  title: str
  description: str
  priority: TaskPriority
  status: TaskStatus
  tags: list[str] = []
  dueDate: datetime | None = None
  completed: bool
  completedAt: datetime | None = None
  completedBy: str | None = None
  assignedTo: str | None = None
  assignedBy: str | None = None
  assignedAt: datetime | None = None
  createdBy: str
  parentTask: str | None = None
  subTasks: list[str] = []
  isOverdue: bool = False
  isDeleted: bool = False
  deletedAt: datetime | None = None
  createdAt: datetime
  updatedAt: datetime


class TaskDetailOut(TaskOut):
  comments: list[CommentOut] = []
  activityLog: list[ActivityOut] = []
  attachments: list[AttachmentOut] = []


class TaskPageOut(BaseModel):
  tasks: list[TaskOut]
  pagination: PaginationOut


class TaskStatsOut(BaseModel):
  total: int
  completed: int
  pending: int
  overdue: int
  byStatus: dict[str, int]
  byPriority: dict[str, int]


class NotificationOut(BaseModel):
  id: str
  userId: str
  type: str
  title: str
  message: str
  data: dict[str, Any] = {}
  priority: str
  isRead: bool
  isArchived: bool
  expiresAt: datetime | None = None
  createdAt: datetime
  updatedAt: datetime


class NotificationPageOut(BaseModel):
  notifications: list[NotificationOut]
  pagination: PaginationOut
  unreadCount: int


class UnreadCountOut(BaseModel):
  unreadCount: int
