from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.models import Task, TaskActivity, TaskAttachment, TaskComment

logger = logging.getLogger("collabtodo.services.cleanup")


async def purge_tombstoned_tasks(db: AsyncSession, *, retention_days: int = 30, now: datetime | None = None) -> int:
  """
  Physically remove tasks soft-deleted more than `retention_days` ago.

  Comments, activity entries and attachment metadata of those tasks go with them.
  """
  cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=max(0, int(retention_days)))
  res = await db.execute(
    select(Task.id).where(Task.is_deleted.is_(True), Task.deleted_at.is_not(None), Task.deleted_at <= cutoff)
  )
  task_ids = list(res.scalars().all())
  if not task_ids:
    return 0

  await db.execute(update(Task).where(Task.parent_task_id.in_(task_ids)).values(parent_task_id=None))
  await db.execute(delete(TaskComment).where(TaskComment.task_id.in_(task_ids)))
  await db.execute(delete(TaskActivity).where(TaskActivity.task_id.in_(task_ids)))
  await db.execute(delete(TaskAttachment).where(TaskAttachment.task_id.in_(task_ids)))
  await db.execute(delete(Task).where(Task.id.in_(task_ids)))
  await db.commit()
  logger.info("Purged %d tombstoned tasks older than %s", len(task_ids), cutoff.isoformat())
  return len(task_ids)
