from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.deps import get_current_user, get_db, get_notifier
from collabtodo.models import User
from collabtodo.notifications.service import NotificationEngine
from collabtodo.schemas import (
  CollaboratorIn,
  MemberOut,
  PaginationOut,
  TodoListCreateIn,
  TodoListOut,
  TodoListPageOut,
  TodoListUpdateIn,
)
from collabtodo.services import todo_lists as svc

router = APIRouter(prefix="/todo-lists", tags=["todo-lists"])


@router.get("", response_model=TodoListPageOut)
async def list_todo_lists(
  page: int = Query(default=1, ge=1),
  limit: int = Query(default=10, ge=1, le=100),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TodoListPageOut:
  p = await svc.list_todo_lists(db, actor=user, page=page, limit=limit)
  return TodoListPageOut(todoLists=p.items, pagination=PaginationOut(**p.pagination()))


@router.post("", response_model=TodoListOut, status_code=201)
async def create_todo_list(
  payload: TodoListCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TodoListOut:
  return await svc.create_todo_list(db, actor=user, name=payload.name)


@router.get("/{todo_list_id}", response_model=TodoListOut)
async def get_todo_list(
  todo_list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TodoListOut:
  return await svc.get_todo_list_detail(db, actor=user, todo_list_id=todo_list_id)


@router.patch("/{todo_list_id}", response_model=TodoListOut)
async def update_todo_list(
  todo_list_id: str,
  payload: TodoListUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TodoListOut:
  return await svc.update_todo_list(db, actor=user, todo_list_id=todo_list_id, name=payload.name)


@router.delete("/{todo_list_id}")
async def delete_todo_list(
  todo_list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> dict:
  await svc.delete_todo_list(db, notifier, actor=user, todo_list_id=todo_list_id)
  return {"ok": True}


@router.get("/{todo_list_id}/collaborators", response_model=list[MemberOut])
async def list_collaborators(
  todo_list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[MemberOut]:
  return await svc.list_collaborators(db, actor=user, todo_list_id=todo_list_id)


@router.post("/{todo_list_id}/collaborators", response_model=TodoListOut)
async def add_collaborator(
  todo_list_id: str,
  payload: CollaboratorIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> TodoListOut:
  return await svc.add_collaborator(
    db,
    notifier,
    actor=user,
    todo_list_id=todo_list_id,
    user_id=payload.userId,
    email=payload.email,
  )


@router.delete("/{todo_list_id}/collaborators/{user_id}", response_model=TodoListOut)
async def kick_collaborator(
  todo_list_id: str,
  user_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> TodoListOut:
  return await svc.kick_collaborator(db, notifier, actor=user, todo_list_id=todo_list_id, user_id=user_id)


@router.post("/{todo_list_id}/leave")
async def leave_todo_list(
  todo_list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> dict:
  await svc.leave_todo_list(db, notifier, actor=user, todo_list_id=todo_list_id)
  return {"ok": True}


@router.post("/{todo_list_id}/join", status_code=202)
async def join_todo_list(
  todo_list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> dict:
  await svc.join_todo_list(db, notifier, actor=user, todo_list_id=todo_list_id)
  return {"ok": True, "status": "pending"}


@router.get("/{todo_list_id}/join-requests", response_model=list[MemberOut])
async def list_join_requests(
  todo_list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[MemberOut]:
  return await svc.list_join_requests(db, actor=user, todo_list_id=todo_list_id)


@router.post("/{todo_list_id}/join-requests/{user_id}/approve", response_model=TodoListOut)
async def approve_join_request(
  todo_list_id: str,
  user_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> TodoListOut:
  return await svc.approve_join_request(db, notifier, actor=user, todo_list_id=todo_list_id, user_id=user_id)


@router.post("/{todo_list_id}/join-requests/{user_id}/reject", response_model=TodoListOut)
async def reject_join_request(
  todo_list_id: str,
  user_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  notifier: NotificationEngine = Depends(get_notifier),
) -> TodoListOut:
  return await svc.reject_join_request(db, notifier, actor=user, todo_list_id=todo_list_id, user_id=user_id)
