from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.errors import InvalidRequest, NotFound
from collabtodo.models import Notification, User
from collabtodo.realtime.registry import SessionRegistry
from collabtodo.services.common import Page, clamp_page, require_id

logger = logging.getLogger("collabtodo.notifications.service")

NOTIFICATION_TYPES = frozenset(
  {
    "TODO_LIST_DELETED",
    "COLLABORATOR_ADDED",
    "COLLABORATOR_KICKED",
    "COLLABORATOR_LEFT",
    "JOIN_REQUEST_ACCEPTED",
    "JOIN_REQUEST_REJECTED",
    "JOIN_REQUEST_SENT",
    "REQUEST_TO_JOIN",
    "TASK_ASSIGNED",
    "TASK_COMPLETED",
    "TASK_UPDATED",
    "TASK_DELETED",
    "TODO_LIST_SHARED",
    "CUSTOM",
  }
)
NOTIFICATION_PRIORITIES = ("LOW", "MEDIUM", "HIGH")
TITLE_MAX_LENGTH = 100
MESSAGE_MAX_LENGTH = 500


@dataclass(frozen=True)
class NotificationDraft:
  user_id: str
  type: str
  title: str
  message: str
  data: dict[str, Any] = field(default_factory=dict)
  priority: str = "MEDIUM"
  expires_at: datetime | None = None


@dataclass
class NotificationPage(Page[Notification]):
  unread_count: int = 0


def notification_data(
  *,
  todo_list_id: str | None = None,
  task_id: str | None = None,
  from_user_id: str | None = None,
  metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
  return {"todoListId": todo_list_id, "taskId": task_id, "fromUserId": from_user_id, "metadata": dict(metadata or {})}


def live_payload(n: Notification) -> dict[str, Any]:
  return {
    "id": n.id,
    "type": n.type,
    "title": n.title,
    "message": n.message,
    "priority": n.priority,
    "data": n.data,
    "createdAt": n.created_at,
  }


def _validate(draft: NotificationDraft) -> None:
  if draft.type not in NOTIFICATION_TYPES:
    raise InvalidRequest(f"Unknown notification type: {draft.type}")
  if draft.priority not in NOTIFICATION_PRIORITIES:
    raise InvalidRequest(f"Unknown notification priority: {draft.priority}")
  if not (draft.title or "").strip() or len(draft.title) > TITLE_MAX_LENGTH:
    raise InvalidRequest(f"Notification title must be 1-{TITLE_MAX_LENGTH} characters")
  if not (draft.message or "").strip() or len(draft.message) > MESSAGE_MAX_LENGTH:
    raise InvalidRequest(f"Notification message must be 1-{MESSAGE_MAX_LENGTH} characters")


class NotificationEngine:
  """
  Persists notification records and mirrors them to the owner's live connections.

  The database write is authoritative; live pushes are attempted after commit and their
  failures are logged, never raised.
  """

  def __init__(self, registry: SessionRegistry) -> None:
    self.registry = registry

  async def notify(
    self,
    db: AsyncSession,
    *,
    user_id: str,
    type: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
    priority: str = "MEDIUM",
    expires_at: datetime | None = None,
  ) -> Notification:
    draft = NotificationDraft(
      user_id=user_id,
      type=type,
      title=title,
      message=message,
      data=dict(data or {}),
      priority=priority,
      expires_at=expires_at,
    )
    created = await self.notify_bulk(db, [draft])
    return created[0]

  async def notify_bulk(self, db: AsyncSession, drafts: list[NotificationDraft]) -> list[Notification]:
    if not drafts:
      return []
    for d in drafts:
      _validate(d)
    user_ids = {require_id(d.user_id, label="user") for d in drafts}
    res = await db.execute(select(User.id).where(User.id.in_(user_ids)))
    if user_ids - set(res.scalars().all()):
      raise NotFound("User not found")

    rows = [
      Notification(
        user_id=require_id(d.user_id, label="user"),
        type=d.type,
        title=d.title,
        message=d.message,
        data=d.data,
        priority=d.priority,
        expires_at=d.expires_at,
      )
      for d in drafts
    ]
    db.add_all(rows)
    await db.commit()

    for n in rows:
      await self._push(n.user_id, "notification", live_payload(n))
    return rows

  async def list_notifications(
    self,
    db: AsyncSession,
    *,
    user_id: str,
    page: int = 1,
    limit: int = 10,
    unread_only: bool = False,
  ) -> NotificationPage:
    page, limit = clamp_page(page, limit)
    where = [Notification.user_id == user_id, Notification.is_archived.is_(False)]
    if unread_only:
      where.append(Notification.is_read.is_(False))
    total = await db.scalar(select(func.count()).select_from(Notification).where(*where))
    res = await db.execute(
      select(Notification)
      .where(*where)
      .order_by(Notification.created_at.desc(), Notification.id.desc())
      .offset((page - 1) * limit)
      .limit(limit)
    )
    return NotificationPage(
      items=list(res.scalars().all()),
      page=page,
      limit=limit,
      total=int(total or 0),
      unread_count=await self.unread_count(db, user_id=user_id),
    )

  async def unread_count(self, db: AsyncSession, *, user_id: str) -> int:
    n = await db.scalar(
      select(func.count()).select_from(Notification).where(Notification.user_id == user_id, Notification.is_read.is_(False))
    )
    return int(n or 0)

  async def _owned(self, db: AsyncSession, *, user_id: str, notification_id: str) -> Notification:
    res = await db.execute(
      select(Notification).where(
        Notification.id == require_id(notification_id, label="notification"),
        Notification.user_id == user_id,
      )
    )
    n = res.scalar_one_or_none()
    if not n:
      raise NotFound("Notification not found")
    return n

  async def mark_read(self, db: AsyncSession, *, user_id: str, notification_id: str) -> Notification:
    n = await self._owned(db, user_id=user_id, notification_id=notification_id)
    if not n.is_read:
      n.is_read = True
      await db.commit()
    unread = await self.unread_count(db, user_id=user_id)
    await self._push(user_id, "notification_read", {"notificationId": n.id, "unreadCount": unread})
    return n

  async def mark_all_read(self, db: AsyncSession, *, user_id: str) -> int:
    res = await db.execute(
      update(Notification)
      .where(Notification.user_id == user_id, Notification.is_read.is_(False))
      .values(is_read=True)
    )
    await db.commit()
    await self._push(user_id, "all_notifications_read", {"unreadCount": 0})
    return int(res.rowcount or 0)

  async def archive(self, db: AsyncSession, *, user_id: str, notification_id: str) -> Notification:
    n = await self._owned(db, user_id=user_id, notification_id=notification_id)
    if not n.is_archived:
      n.is_archived = True
      await db.commit()
    return n

  async def delete(self, db: AsyncSession, *, user_id: str, notification_id: str) -> None:
    n = await self._owned(db, user_id=user_id, notification_id=notification_id)
    notification_id = n.id
    await db.delete(n)
    await db.commit()
    unread = await self.unread_count(db, user_id=user_id)
    await self._push(user_id, "notification_deleted", {"notificationId": notification_id, "unreadCount": unread})

  async def delete_all(self, db: AsyncSession, *, user_id: str) -> int:
    res = await db.execute(
      delete(Notification).where(Notification.user_id == user_id, Notification.is_archived.is_(False))
    )
    await db.commit()
    deleted = int(res.rowcount or 0)
    unread = await self.unread_count(db, user_id=user_id)
    await self._push(
      user_id,
      "notification_deleted",
      {"notificationId": None, "deletedCount": deleted, "unreadCount": unread},
    )
    return deleted

  async def purge_expired(self, db: AsyncSession, *, now: datetime | None = None) -> int:
    cutoff = now or datetime.now(timezone.utc)
    res = await db.execute(
      delete(Notification).where(Notification.expires_at.is_not(None), Notification.expires_at < cutoff)
    )
    await db.commit()
    return int(res.rowcount or 0)

  async def _push(self, user_id: str, event: str, data: dict[str, Any]) -> None:
    try:
      await self.registry.emit_to_user(user_id, event, data)
    except Exception:
      logger.exception("Failed to push %s to user %s", event, user_id)
