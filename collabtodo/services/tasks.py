from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.access import ListMembership, can_complete_task, can_mutate_task
from collabtodo.activity import write_activity
from collabtodo.errors import Forbidden, InvalidRequest, NotFound
from collabtodo.models import Task, TaskActivity, TaskAttachment, TaskComment, TodoList, TodoListMember, User
from collabtodo.notifications import events
from collabtodo.notifications.service import NotificationEngine
from collabtodo.schemas import (
  TASK_PRIORITIES,
  TASK_STATUSES,
  ActivityOut,
  AttachmentIn,
  AttachmentOut,
  CommentOut,
  TaskCreateIn,
  TaskDetailOut,
  TaskOut,
  TaskQuery,
  TaskStatsOut,
  TaskUpdateIn,
)
from collabtodo.services.common import MEMBER_COLLABORATOR, Page, clamp_page, get_user, require_id
from collabtodo.services.todo_lists import require_list_access

logger = logging.getLogger("collabtodo.services.tasks")

_PRIORITY_RANK = case(
  {p: i for i, p in enumerate(TASK_PRIORITIES)},
  value=Task.priority,
  else_=-1,
)
_SORT_COLUMNS = {
  "createdAt": Task.created_at,
  "updatedAt": Task.updated_at,
  "dueDate": Task.due_date,
  "priority": _PRIORITY_RANK,
  "title": Task.title,
  "status": Task.status,
}


def _now() -> datetime:
  return datetime.now(timezone.utc)


def is_overdue(t: Task, *, now: datetime | None = None) -> bool:
  return bool(t.due_date and not t.completed and t.due_date < (now or _now()))


async def _subtask_ids(db: AsyncSession, parent_ids: list[str]) -> dict[str, list[str]]:
  if not parent_ids:
    return {}
  res = await db.execute(
    select(Task.parent_task_id, Task.id)
    .where(Task.parent_task_id.in_(parent_ids), Task.is_deleted.is_(False))
    .order_by(Task.created_at.asc(), Task.id.asc())
  )
  out: dict[str, list[str]] = {}
  for parent_id, child_id in res.all():
    out.setdefault(parent_id, []).append(child_id)
  return out


def _task_out(t: Task, sub_tasks: list[str], *, now: datetime | None = None) -> TaskOut:
  return TaskOut(
    id=t.id,
    todoListId=t.todo_list_id,
    title=t.title,
    description=t.description or "",
    priority=t.priority,
    status=t.status,
    tags=list(t.tags or []),
    dueDate=t.due_date,
    completed=bool(t.completed),
    completedAt=t.completed_at,
    completedBy=t.completed_by_id,
    assignedTo=t.assigned_to_id,
    assignedBy=t.assigned_by_id,
    assignedAt=t.assigned_at,
    createdBy=t.created_by_id,
    parentTask=t.parent_task_id,
    subTasks=sub_tasks,
    isOverdue=is_overdue(t, now=now),
    isDeleted=bool(t.is_deleted),
    deletedAt=t.deleted_at,
    createdAt=t.created_at,
    updatedAt=t.updated_at,
  )


async def tasks_out(db: AsyncSession, tasks: list[Task]) -> list[TaskOut]:
  subs = await _subtask_ids(db, [t.id for t in tasks])
  now = _now()
  return [_task_out(t, subs.get(t.id, []), now=now) for t in tasks]


async def task_detail(db: AsyncSession, t: Task) -> TaskDetailOut:
  base = (await tasks_out(db, [t]))[0]
  cres = await db.execute(
    select(TaskComment).where(TaskComment.task_id == t.id).order_by(TaskComment.created_at.asc(), TaskComment.id.asc())
  )
  ares = await db.execute(
    select(TaskActivity).where(TaskActivity.task_id == t.id).order_by(TaskActivity.created_at.asc(), TaskActivity.id.asc())
  )
  fres = await db.execute(
    select(TaskAttachment)
    .where(TaskAttachment.task_id == t.id)
    .order_by(TaskAttachment.created_at.asc(), TaskAttachment.id.asc())
  )
  return TaskDetailOut(
    **base.model_dump(),
    comments=[CommentOut(id=c.id, authorId=c.author_id, text=c.body, createdAt=c.created_at) for c in cres.scalars().all()],
    activityLog=[
      ActivityOut(id=a.id, action=a.action, actorId=a.actor_id, details=a.details or {}, createdAt=a.created_at)
      for a in ares.scalars().all()
    ],
    attachments=[
      AttachmentOut(
        id=f.id,
        filename=f.filename,
        mime=f.mime,
        sizeBytes=f.size_bytes,
        url=f.url,
        uploadedBy=f.uploaded_by_id,
        createdAt=f.created_at,
      )
      for f in fres.scalars().all()
    ],
  )


async def _load_task(db: AsyncSession, todo_list: TodoList, task_id: str) -> Task:
  res = await db.execute(select(Task).where(Task.id == require_id(task_id, label="task"), Task.is_deleted.is_(False)))
  t = res.scalar_one_or_none()
  if not t or t.todo_list_id != todo_list.id:
    raise NotFound("Task not found in this todo list")
  return t


async def _task_context(
  db: AsyncSession, *, actor: User, todo_list_id: str, task_id: str
) -> tuple[TodoList, ListMembership, Task]:
  todo_list, membership = await require_list_access(db, actor_id=actor.id, todo_list_id=todo_list_id)
  t = await _load_task(db, todo_list, task_id)
  return todo_list, membership, t


async def _validate_parent(db: AsyncSession, todo_list: TodoList, parent_task_id: str) -> str:
  pid = require_id(parent_task_id, label="parent task")
  res = await db.execute(select(Task).where(Task.id == pid))
  parent = res.scalar_one_or_none()
  if not parent or parent.is_deleted:
    raise InvalidRequest("Parent task not found")
  if parent.todo_list_id != todo_list.id:
    raise InvalidRequest("Parent task must belong to the same todo list")
  if parent.parent_task_id:
    raise InvalidRequest("Subtasks cannot have subtasks of their own")
  return parent.id


async def create_task(
  db: AsyncSession,
  notifier: NotificationEngine,
  *,
  actor: User,
  todo_list_id: str,
  payload: TaskCreateIn,
) -> TaskDetailOut:
  todo_list, _ = await require_list_access(db, actor_id=actor.id, todo_list_id=todo_list_id)
  assignee = await get_user(db, payload.assignedTo, label="Assignee") if payload.assignedTo else None
  parent_id = await _validate_parent(db, todo_list, payload.parentTask) if payload.parentTask else None

  t = Task(
    todo_list_id=todo_list.id,
    parent_task_id=parent_id,
    title=payload.title,
    description=(payload.description or "").strip(),
    priority=payload.priority,
    status=payload.status,
    tags=list(payload.tags),
    due_date=payload.dueDate,
    created_by_id=actor.id,
  )
  if assignee is not None:
    t.assigned_to_id = assignee.id
    t.assigned_by_id = actor.id
    t.assigned_at = _now()
  db.add(t)
  await db.flush()
  await write_activity(
    db,
    task_id=t.id,
    action="CREATED",
    actor_id=actor.id,
    details={"title": t.title, "priority": t.priority, "status": t.status},
  )
  await db.commit()

  if assignee is not None:
    await events.task_assigned(notifier, task=t, todo_list=todo_list, actor=actor)
  return await task_detail(db, t)


async def update_task(
  db: AsyncSession,
  notifier: NotificationEngine,
  *,
  actor: User,
  todo_list_id: str,
  task_id: str,
  payload: TaskUpdateIn,
) -> TaskDetailOut:
  todo_list, membership, t = await _task_context(db, actor=actor, todo_list_id=todo_list_id, task_id=task_id)
  if not can_mutate_task(actor.id, membership, t):
    raise Forbidden("Only the task creator or the list owner can modify this task")

  fields = payload.model_fields_set
  changes: dict[str, dict[str, Any]] = {}

  def _apply(key: str, attr: str, new: Any) -> None:
    old = getattr(t, attr)
    if old != new:
      changes[key] = {"from": old, "to": new}
      setattr(t, attr, new)

  if "title" in fields and payload.title is not None:
    title = payload.title.strip()
    if not title:
      raise InvalidRequest("Title cannot be empty")
    _apply("title", "title", title)
  if "description" in fields:
    _apply("description", "description", (payload.description or "").strip())
  if "dueDate" in fields:
    _apply("dueDate", "due_date", payload.dueDate)
  if "priority" in fields and payload.priority is not None:
    _apply("priority", "priority", payload.priority)
  if "status" in fields and payload.status is not None:
    _apply("status", "status", payload.status)
  if "tags" in fields:
    _apply("tags", "tags", list(payload.tags or []))

  previous_assignee = t.assigned_to_id
  newly_assigned: str | None = None
  if "assignedTo" in fields:
    target = (payload.assignedTo or "").strip()
    if not target:
      if t.assigned_to_id:
        changes["assignedTo"] = {"from": t.assigned_to_id, "to": None}
        t.assigned_to_id = None
        t.assigned_by_id = None
        t.assigned_at = None
    else:
      assignee = await get_user(db, target, label="Assignee")
      if assignee.id != t.assigned_to_id:
        changes["assignedTo"] = {"from": t.assigned_to_id, "to": assignee.id}
        t.assigned_to_id = assignee.id
        t.assigned_by_id = actor.id
        t.assigned_at = _now()
        newly_assigned = assignee.id

  if changes:
    await write_activity(db, task_id=t.id, action="UPDATED", actor_id=actor.id, details={"changes": changes})
  if newly_assigned:
    await write_activity(
      db,
      task_id=t.id,
      action="ASSIGNED",
      actor_id=actor.id,
      details={"assignedTo": newly_assigned, "previousAssignee": previous_assignee},
    )
  await db.commit()

  if newly_assigned:
    await events.task_assigned(notifier, task=t, todo_list=todo_list, actor=actor)
  await events.task_updated(
    notifier,
    task=t,
    todo_list=todo_list,
    actor=actor,
    user_ids=events.recipients([t.created_by_id, t.assigned_to_id, previous_assignee], exclude=[newly_assigned]),
    changed_fields=sorted(changes),
  )
  return await task_detail(db, t)


async def complete_task(
  db: AsyncSession,
  notifier: NotificationEngine,
  *,
  actor: User,
  todo_list_id: str,
  task_id: str,
) -> TaskDetailOut:
  todo_list, _, t = await _task_context(db, actor=actor, todo_list_id=todo_list_id, task_id=task_id)
  if not can_complete_task(actor.id, t):
    raise Forbidden("Only the assignee can complete this task")

  previous_status = t.status
  if t.completed:
    t.completed = False
    t.completed_at = None
    t.completed_by_id = None
    t.status = "TODO"
    await write_activity(
      db,
      task_id=t.id,
      action="UPDATED",
      actor_id=actor.id,
      details={"changes": {"completed": {"from": True, "to": False}, "status": {"from": previous_status, "to": "TODO"}}},
    )
    await db.commit()
    return await task_detail(db, t)

  t.completed = True
  t.completed_at = _now()
  t.completed_by_id = actor.id
  t.status = "DONE"
  await write_activity(db, task_id=t.id, action="COMPLETED", actor_id=actor.id, details={"previousStatus": previous_status})
  await db.commit()
  # Unassigned tasks report back to their creator.
  await events.task_completed(
    notifier, task=t, todo_list=todo_list, actor=actor, user_ids=[t.assigned_to_id or t.created_by_id]
  )
  return await task_detail(db, t)


async def delete_task(
  db: AsyncSession,
  notifier: NotificationEngine,
  *,
  actor: User,
  todo_list_id: str,
  task_id: str,
) -> int:
  todo_list, membership, t = await _task_context(db, actor=actor, todo_list_id=todo_list_id, task_id=task_id)
  if not can_mutate_task(actor.id, membership, t):
    raise Forbidden("Only the task creator or the list owner can delete this task")

  res = await db.execute(
    update(Task)
    .where(or_(Task.id == t.id, Task.parent_task_id == t.id), Task.is_deleted.is_(False))
    .values(is_deleted=True, deleted_at=_now(), deleted_by_id=actor.id)
    .execution_options(synchronize_session=False)
  )
  await db.commit()
  await db.refresh(t)
  logger.info("Task %s tombstoned by %s (%d rows)", t.id, actor.id, res.rowcount or 0)
  await events.task_deleted(notifier, task=t, todo_list=todo_list, actor=actor)
  return int(res.rowcount or 0)


async def add_comment(
  db: AsyncSession,
  notifier: NotificationEngine,
  *,
  actor: User,
  todo_list_id: str,
  task_id: str,
  text: str,
) -> TaskDetailOut:
  todo_list, membership, t = await _task_context(db, actor=actor, todo_list_id=todo_list_id, task_id=task_id)
  body = (text or "").strip()
  if not body:
    raise InvalidRequest("Comment cannot be empty")
  db.add(TaskComment(task_id=t.id, author_id=actor.id, body=body))
  await write_activity(db, task_id=t.id, action="COMMENTED", actor_id=actor.id, details={"comment": body})
  await db.commit()
  await events.task_commented(
    notifier,
    task=t,
    todo_list=todo_list,
    actor=actor,
    user_ids=[membership.owner_id, *sorted(membership.collaborator_ids)],
    comment=body,
  )
  return await task_detail(db, t)


async def add_attachment(
  db: AsyncSession,
  *,
  actor: User,
  todo_list_id: str,
  task_id: str,
  payload: AttachmentIn,
) -> TaskDetailOut:
  _, _, t = await _task_context(db, actor=actor, todo_list_id=todo_list_id, task_id=task_id)
  att = TaskAttachment(
    task_id=t.id,
    filename=payload.filename.strip(),
    mime=payload.mime,
    size_bytes=payload.sizeBytes,
    url=payload.url.strip(),
    uploaded_by_id=actor.id,
  )
  db.add(att)
  await db.flush()
  await write_activity(
    db,
    task_id=t.id,
    action="ATTACHED",
    actor_id=actor.id,
    details={"attachmentId": att.id, "filename": att.filename},
  )
  await db.commit()
  return await task_detail(db, t)


async def get_task(db: AsyncSession, *, actor: User, todo_list_id: str, task_id: str) -> TaskDetailOut:
  _, _, t = await _task_context(db, actor=actor, todo_list_id=todo_list_id, task_id=task_id)
  return await task_detail(db, t)


def _ordering(sort_by: str, sort_order: str) -> list:
  col = _SORT_COLUMNS.get(sort_by, Task.created_at)
  primary = col.asc() if sort_order == "asc" else col.desc()
  if sort_by == "dueDate":
    primary = primary.nulls_last()
  return [primary, Task.id.asc()]


async def _page(db: AsyncSession, where: list, *, page: int, limit: int, order_by: list) -> Page[TaskOut]:
  page, limit = clamp_page(page, limit)
  total = await db.scalar(select(func.count()).select_from(Task).where(*where))
  res = await db.execute(select(Task).where(*where).order_by(*order_by).offset((page - 1) * limit).limit(limit))
  return Page(items=await tasks_out(db, list(res.scalars().all())), page=page, limit=limit, total=int(total or 0))


async def list_tasks(db: AsyncSession, *, actor: User, todo_list_id: str, query: TaskQuery) -> Page[TaskOut]:
  todo_list, _ = await require_list_access(db, actor_id=actor.id, todo_list_id=todo_list_id)
  where = [Task.todo_list_id == todo_list.id, Task.is_deleted.is_(False), Task.parent_task_id.is_(None)]
  if not query.includeCompleted:
    where.append(Task.completed.is_(False))
  if query.status:
    where.append(Task.status == query.status)
  if query.priority:
    where.append(Task.priority == query.priority)
  if query.assignedTo:
    where.append(Task.assigned_to_id == require_id(query.assignedTo, label="assignee"))
  if query.search and query.search.strip():
    needle = f"%{query.search.strip()}%"
    where.append(or_(Task.title.ilike(needle), Task.description.ilike(needle)))
  return await _page(db, where, page=query.page, limit=query.limit, order_by=_ordering(query.sortBy, query.sortOrder))


async def list_my_tasks(
  db: AsyncSession,
  *,
  actor: User,
  page: int = 1,
  limit: int = 10,
  include_completed: bool = False,
  status: str | None = None,
  priority: str | None = None,
) -> Page[TaskOut]:
  where = [Task.assigned_to_id == actor.id, Task.is_deleted.is_(False)]
  if not include_completed:
    where.append(Task.completed.is_(False))
  if status:
    where.append(Task.status == status)
  if priority:
    where.append(Task.priority == priority)
  return await _page(db, where, page=page, limit=limit, order_by=_ordering("dueDate", "asc"))


async def list_overdue_tasks(db: AsyncSession, *, actor: User) -> list[TaskOut]:
  res = await db.execute(
    select(Task)
    .where(
      or_(Task.assigned_to_id == actor.id, Task.created_by_id == actor.id),
      Task.is_deleted.is_(False),
      Task.completed.is_(False),
      Task.due_date.is_not(None),
      Task.due_date < _now(),
    )
    .order_by(Task.due_date.asc(), Task.id.asc())
  )
  return await tasks_out(db, list(res.scalars().all()))


async def _visible_list_ids(db: AsyncSession, actor_id: str) -> list[str]:
  owned = await db.execute(select(TodoList.id).where(TodoList.owner_id == actor_id))
  shared = await db.execute(
    select(TodoListMember.todo_list_id).where(
      TodoListMember.user_id == actor_id, TodoListMember.status == MEMBER_COLLABORATOR
    )
  )
  return sorted({*owned.scalars().all(), *shared.scalars().all()})


async def task_stats(db: AsyncSession, *, actor: User, todo_list_id: str | None = None) -> TaskStatsOut:
  if todo_list_id:
    todo_list, _ = await require_list_access(db, actor_id=actor.id, todo_list_id=todo_list_id)
    list_ids = [todo_list.id]
  else:
    list_ids = await _visible_list_ids(db, actor.id)

  by_status = {s: 0 for s in TASK_STATUSES}
  by_priority = {p: 0 for p in TASK_PRIORITIES}
  if not list_ids:
    return TaskStatsOut(total=0, completed=0, pending=0, overdue=0, byStatus=by_status, byPriority=by_priority)

  live = [Task.todo_list_id.in_(list_ids), Task.is_deleted.is_(False)]
  total = int(await db.scalar(select(func.count()).select_from(Task).where(*live)) or 0)
  completed = int(await db.scalar(select(func.count()).select_from(Task).where(*live, Task.completed.is_(True))) or 0)
  overdue = int(
    await db.scalar(
      select(func.count())
      .select_from(Task)
      .where(*live, Task.completed.is_(False), Task.due_date.is_not(None), Task.due_date < _now())
    )
    or 0
  )
  for key, n in (await db.execute(select(Task.status, func.count()).where(*live).group_by(Task.status))).all():
    by_status[key] = int(n)
  for key, n in (await db.execute(select(Task.priority, func.count()).where(*live).group_by(Task.priority))).all():
    by_priority[key] = int(n)
  return TaskStatsOut(
    total=total,
    completed=completed,
    pending=total - completed,
    overdue=overdue,
    byStatus=by_status,
    byPriority=by_priority,
  )
