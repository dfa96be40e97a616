from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.deps import get_current_user, get_db, get_notifier
from collabtodo.models import User
from collabtodo.notifications.service import NotificationEngine
from collabtodo.schemas import (
  AttachmentIn,
  CommentIn,
  PaginationOut,
  TaskCreateIn,
  TaskDetailOut,
  TaskOut,
  TaskPageOut,
  TaskPriority,
  TaskQuery,
  TaskStatsOut,
  TaskStatus,
  TaskUpdateIn,
)
from collabtodo.services import tasks as svc

router = APIRouter(tags=["tasks"])


@router.get("/todo-lists/{todo_list_id}/tasks", response_model=TaskPageOut)
async def list_tasks(
  todo_list_id: str,
  page: int = Query(default=1, ge=1),
  limit: int = Query(default=10, ge=1, le=100),
  includeCompleted: bool = True,
  status: TaskStatus | None = None,
  priority: TaskPriority | None = None,
  assignedTo: str | None = None,
  search: str | None = None,
  sortBy: Literal["createdAt", "updatedAt", "dueDate", "priority", "title", "status"] = "createdAt",
  sortOrder: Literal["asc", "desc"] = "desc",
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskPageOut:
  query = TaskQuery(
    page=page,
    limit=limit,
    includeCompleted=includeCompleted,
    status=status,
    priority=priority,
    assignedTo=assignedTo,
    search=search,
    sortBy=sortBy,
    sortOrder=sortOrder,
  )
  p = await svc.list_tasks(db, actor=user, todo_list_id=todo_list_id, query=query)
  return TaskPageOut(tasks=p.items, pagination=PaginationOut(**p.pagination()))


@router.post("/todo-lists/{todo_list_id}/tasks", response_model=TaskDetailOut, status_code=201)
async def create_task(
  todo_list_id: str,
  payload: TaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> TaskDetailOut:
  return await svc.create_task(db, notifier, actor=user, todo_list_id=todo_list_id, payload=payload)


@router.get("/todo-lists/{todo_list_id}/tasks/{task_id}", response_model=TaskDetailOut)
async def get_task(
  todo_list_id: str,
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskDetailOut:
  return await svc.get_task(db, actor=user, todo_list_id=todo_list_id, task_id=task_id)


@router.patch("/todo-lists/{todo_list_id}/tasks/{task_id}", response_model=TaskDetailOut)
async def update_task(
  todo_list_id: str,
  task_id: str,
  payload: TaskUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> TaskDetailOut:
  return await svc.update_task(db, notifier, actor=user, todo_list_id=todo_list_id, task_id=task_id, payload=payload)


@router.post("/todo-lists/{todo_list_id}/tasks/{task_id}/complete", response_model=TaskDetailOut)
async def complete_task(
  todo_list_id: str,
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> TaskDetailOut:
  return await svc.complete_task(db, notifier, actor=user, todo_list_id=todo_list_id, task_id=task_id)


@router.delete("/todo-lists/{todo_list_id}/tasks/{task_id}")
async def delete_task(
  todo_list_id: str,
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> dict:
  deleted = await svc.delete_task(db, notifier, actor=user, todo_list_id=todo_list_id, task_id=task_id)
  return {"ok": True, "deleted": deleted}


@router.post("/todo-lists/{todo_list_id}/tasks/{task_id}/comments", response_model=TaskDetailOut, status_code=201)
async def add_comment(
  todo_list_id: str,
  task_id: str,
  payload: CommentIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> TaskDetailOut:
  return await svc.add_comment(db, notifier, actor=user, todo_list_id=todo_list_id, task_id=task_id, text=payload.text)


@router.post("/todo-lists/{todo_list_id}/tasks/{task_id}/attachments", response_model=TaskDetailOut, status_code=201)
async def add_attachment(
  todo_list_id: str,
  task_id: str,
  payload: AttachmentIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskDetailOut:
  return await svc.add_attachment(db, actor=user, todo_list_id=todo_list_id, task_id=task_id, payload=payload)


@router.get("/tasks/mine", response_model=TaskPageOut)
async def list_my_tasks(
  page: int = Query(default=1, ge=1),
  limit: int = Query(default=10, ge=1, le=100),
  includeCompleted: bool = False,
  status: TaskStatus | None = None,
  priority: TaskPriority | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskPageOut:
  p = await svc.list_my_tasks(
    db,
    actor=user,
    page=page,
    limit=limit,
    include_completed=includeCompleted,
    status=status,
    priority=priority,
  )
  return TaskPageOut(tasks=p.items, pagination=PaginationOut(**p.pagination()))


@router.get("/tasks/overdue", response_model=list[TaskOut])
async def list_overdue_tasks(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[TaskOut]:
  return await svc.list_overdue_tasks(db, actor=user)


@router.get("/tasks/stats", response_model=TaskStatsOut)
async def task_stats(
  listId: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskStatsOut:
  return await svc.task_stats(db, actor=user, todo_list_id=listId)
