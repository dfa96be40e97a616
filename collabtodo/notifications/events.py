from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from collabtodo.db import SessionLocal
from collabtodo.models import Notification, Task, TodoList, User
from collabtodo.notifications.service import NotificationDraft, NotificationEngine, notification_data

logger = logging.getLogger("collabtodo.notifications.events")


def recipients(candidates: Iterable[str | None], *, exclude: Iterable[str | None] = ()) -> list[str]:
  """De-duplicated user ids in first-seen order, without blanks and excluded ids."""
  skip = {x for x in exclude if x}
  out: list[str] = []
  for uid in candidates:
    if uid and uid not in skip and uid not in out:
      out.append(uid)
  return out


async def dispatch(notifier: NotificationEngine, drafts: list[NotificationDraft]) -> list[Notification]:
  # Runs after the domain write committed, in its own session; failures are logged only.
  if not drafts:
    return []
  try:
    async with SessionLocal() as db:
      return await notifier.notify_bulk(db, drafts)
  except Exception:
    logger.exception("Failed to send %s notification to %d user(s)", drafts[0].type, len(drafts))
    return []


def _fan_out(
  user_ids: Iterable[str],
  *,
  type: str,
  title: str,
  message: str,
  priority: str = "MEDIUM",
  data: dict[str, Any],
) -> list[NotificationDraft]:
  return [
    NotificationDraft(user_id=uid, type=type, title=title, message=message, data=data, priority=priority)
    for uid in user_ids
  ]


async def todo_list_deleted(
  notifier: NotificationEngine,
  *,
  todo_list: TodoList,
  actor: User,
  collaborator_ids: Iterable[str],
) -> list[Notification]:
  drafts = _fan_out(
    recipients(collaborator_ids, exclude=[actor.id]),
    type="TODO_LIST_DELETED",
    title="Todo List Deleted",
    message=f'"{todo_list.name}" has been deleted by {actor.name}',
    data=notification_data(
      todo_list_id=todo_list.id,
      from_user_id=actor.id,
      metadata={"todoListName": todo_list.name},
    ),
  )
  return await dispatch(notifier, drafts)


async def collaborator_added(
  notifier: NotificationEngine, *, todo_list: TodoList, actor: User, user_id: str
) -> list[Notification]:
  drafts = _fan_out(
    [user_id],
    type="COLLABORATOR_ADDED",
    title="Added to Todo List",
    message=f'You have been added to "{todo_list.name}" by {actor.name}',
    data=notification_data(todo_list_id=todo_list.id, from_user_id=actor.id),
  )
  return await dispatch(notifier, drafts)


async def collaborator_kicked(
  notifier: NotificationEngine, *, todo_list: TodoList, actor: User, user_id: str
) -> list[Notification]:
  drafts = _fan_out(
    [user_id],
    type="COLLABORATOR_KICKED",
    title="Kicked from Todo List",
    message=f'You have been removed from "{todo_list.name}" by {actor.name}',
    priority="HIGH",
    data=notification_data(todo_list_id=todo_list.id, from_user_id=actor.id),
  )
  return await dispatch(notifier, drafts)


async def collaborator_left(
  notifier: NotificationEngine, *, todo_list: TodoList, actor: User
) -> list[Notification]:
  drafts = _fan_out(
    [todo_list.owner_id],
    type="COLLABORATOR_LEFT",
    title="Collaborator Left",
    message=f'{actor.name} has left "{todo_list.name}"',
    priority="LOW",
    data=notification_data(todo_list_id=todo_list.id, from_user_id=actor.id),
  )
  return await dispatch(notifier, drafts)


async def join_requested(
  notifier: NotificationEngine, *, todo_list: TodoList, actor: User
) -> list[Notification]:
  data = notification_data(todo_list_id=todo_list.id, from_user_id=actor.id)
  drafts = [
    NotificationDraft(
      user_id=todo_list.owner_id,
      type="REQUEST_TO_JOIN",
      title="Request to Join",
      message=f'{actor.name} has asked to join "{todo_list.name}"',
      data=data,
    ),
    NotificationDraft(
      user_id=actor.id,
      type="JOIN_REQUEST_SENT",
      title="Join Request Sent",
      message=f'Your request to join "{todo_list.name}" is waiting for approval',
      priority="LOW",
      data=data,
    ),
  ]
  return await dispatch(notifier, drafts)


async def join_request_decided(
  notifier: NotificationEngine,
  *,
  todo_list: TodoList,
  actor: User,
  user_id: str,
  accepted: bool,
) -> list[Notification]:
  if accepted:
    type_, title, message = (
      "JOIN_REQUEST_ACCEPTED",
      "Join Request Accepted",
      f'Your request to join "{todo_list.name}" was accepted by {actor.name}',
    )
  else:
    type_, title, message = (
      "JOIN_REQUEST_REJECTED",
      "Join Request Rejected",
      f'Your request to join "{todo_list.name}" was declined by {actor.name}',
    )
  drafts = _fan_out(
    [user_id],
    type=type_,
    title=title,
    message=message,
    data=notification_data(todo_list_id=todo_list.id, from_user_id=actor.id),
  )
  return await dispatch(notifier, drafts)


def _task_data(task: Task, todo_list: TodoList, actor: User, **metadata: Any) -> dict[str, Any]:
  return notification_data(
    todo_list_id=todo_list.id,
    task_id=task.id,
    from_user_id=actor.id,
    metadata={"taskTitle": task.title, **metadata},
  )


async def task_assigned(
  notifier: NotificationEngine, *, task: Task, todo_list: TodoList, actor: User
) -> list[Notification]:
  drafts = _fan_out(
    recipients([task.assigned_to_id], exclude=[actor.id]),
    type="TASK_ASSIGNED",
    title="Task Assigned",
    message=f'You have been assigned to "{task.title}" in "{todo_list.name}" by {actor.name}',
    data=_task_data(task, todo_list, actor),
  )
  return await dispatch(notifier, drafts)


async def task_updated(
  notifier: NotificationEngine,
  *,
  task: Task,
  todo_list: TodoList,
  actor: User,
  user_ids: Iterable[str],
  changed_fields: list[str],
) -> list[Notification]:
  drafts = _fan_out(
    recipients(user_ids, exclude=[actor.id]),
    type="TASK_UPDATED",
    title="Task Updated",
    message=f'"{task.title}" in "{todo_list.name}" was updated by {actor.name}',
    data=_task_data(task, todo_list, actor, changedFields=changed_fields),
  )
  return await dispatch(notifier, drafts)


async def task_commented(
  notifier: NotificationEngine,
  *,
  task: Task,
  todo_list: TodoList,
  actor: User,
  user_ids: Iterable[str],
  comment: str,
) -> list[Notification]:
  drafts = _fan_out(
    recipients(user_ids, exclude=[actor.id]),
    type="TASK_UPDATED",
    title="New Comment",
    message=f'{actor.name} commented on "{task.title}" in "{todo_list.name}"',
    priority="LOW",
    data=_task_data(task, todo_list, actor, event="comment", comment=comment[:200]),
  )
  return await dispatch(notifier, drafts)


async def task_completed(
  notifier: NotificationEngine,
  *,
  task: Task,
  todo_list: TodoList,
  actor: User,
  user_ids: Iterable[str],
) -> list[Notification]:
  drafts = _fan_out(
    recipients(user_ids, exclude=[actor.id]),
    type="TASK_COMPLETED",
    title="Task Completed",
    message=f'"{task.title}" in "{todo_list.name}" was completed by {actor.name}',
    data=_task_data(task, todo_list, actor),
  )
  return await dispatch(notifier, drafts)


async def task_deleted(
  notifier: NotificationEngine, *, task: Task, todo_list: TodoList, actor: User
) -> list[Notification]:
  drafts = _fan_out(
    recipients([task.assigned_to_id], exclude=[actor.id]),
    type="TASK_DELETED",
    title="Task Deleted",
    message=f'"{task.title}" in "{todo_list.name}" was deleted by {actor.name}',
    data=_task_data(task, todo_list, actor),
  )
  return await dispatch(notifier, drafts)
