from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.deps import get_current_user, get_db, get_notifier
from collabtodo.models import Notification, User
from collabtodo.notifications.service import NotificationEngine
from collabtodo.schemas import NotificationOut, NotificationPageOut, PaginationOut, UnreadCountOut

router = APIRouter(prefix="/notifications", tags=["notifications"])


def notification_out(n: Notification) -> NotificationOut:
  return NotificationOut(
    id=n.id,
    userId=n.user_id,
    type=n.type,
    title=n.title,
    message=n.message,
    data=n.data or {},
    priority=n.priority,
    isRead=bool(n.is_read),
    isArchived=bool(n.is_archived),
    expiresAt=n.expires_at,
    createdAt=n.created_at,
    updatedAt=n.updated_at,
  )


@router.get("", response_model=NotificationPageOut)
async def list_notifications(
  page: int = Query(default=1, ge=1),
  limit: int = Query(default=10, ge=1, le=100),
  unreadOnly: bool = False,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> NotificationPageOut:
  p = await notifier.list_notifications(db, user_id=user.id, page=page, limit=limit, unread_only=unreadOnly)
  return NotificationPageOut(
    notifications=[notification_out(n) for n in p.items],
    pagination=PaginationOut(**p.pagination()),
    unreadCount=p.unread_count,
  )


@router.get("/unread-count", response_model=UnreadCountOut)
async def unread_count(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> UnreadCountOut:
  return UnreadCountOut(unreadCount=await notifier.unread_count(db, user_id=user.id))


@router.patch("/mark-all-read")
async def mark_all_read(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> dict:
  updated = await notifier.mark_all_read(db, user_id=user.id)
  return {"ok": True, "updated": updated}


@router.patch("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
  notification_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> NotificationOut:
  return notification_out(await notifier.mark_read(db, user_id=user.id, notification_id=notification_id))


@router.patch("/{notification_id}/archive", response_model=NotificationOut)
async def archive(
  notification_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> NotificationOut:
  return notification_out(await notifier.archive(db, user_id=user.id, notification_id=notification_id))


# Declared before /{notification_id} so "bulk" is not taken as an id.
@router.delete("/bulk")
async def delete_all(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> dict:
  deleted = await notifier.delete_all(db, user_id=user.id)
  return {"ok": True, "deleted": deleted}


@router.delete("/{notification_id}")
async def delete_notification(
  notification_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> dict:
  await notifier.delete(db, user_id=user.id, notification_id=notification_id)
  return {"ok": True}
