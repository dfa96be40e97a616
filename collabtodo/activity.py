from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.models import TaskActivity

ACTIVITY_ACTIONS = ("CREATED", "UPDATED", "COMPLETED", "ASSIGNED", "COMMENTED", "ATTACHED")


async def write_activity(
  db: AsyncSession,
  *,
  task_id: str,
  action: str,
  actor_id: str | None,
  details: dict[str, Any] | None = None,
) -> TaskActivity:
  if action not in ACTIVITY_ACTIONS:
    raise ValueError(f"unknown activity action: {action}")
  entry = TaskActivity(
    task_id=task_id,
    actor_id=actor_id,
    action=action,
    details=jsonable_encoder(details or {}),
  )
  db.add(entry)
  return entry
