from __future__ import annotations

import logging

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.access import ListMembership, can_access_list, can_manage_collaborators
from collabtodo.errors import Conflict, Forbidden, InvalidRequest, NotFound
from collabtodo.models import Task, TaskActivity, TaskAttachment, TaskComment, TodoList, TodoListMember, User
from collabtodo.notifications import events
from collabtodo.notifications.service import NotificationEngine
from collabtodo.schemas import MemberOut, TodoListOut
from collabtodo.services.common import (
  MEMBER_COLLABORATOR,
  MEMBER_PENDING,
  Page,
  clamp_page,
  get_todo_list,
  get_user,
  load_membership,
  require_id,
)

logger = logging.getLogger("collabtodo.services.todo_lists")


async def todo_list_out(
  db: AsyncSession,
  todo_list: TodoList,
  *,
  actor_id: str,
  membership: ListMembership | None = None,
) -> TodoListOut:
  membership = membership or await load_membership(db, todo_list)
  res = await db.execute(
    select(Task.id)
    .where(Task.todo_list_id == todo_list.id, Task.is_deleted.is_(False))
    .order_by(Task.created_at.asc(), Task.id.asc())
  )
  role = None
  if actor_id == todo_list.owner_id:
    role = "owner"
  elif actor_id in membership.collaborator_ids:
    role = "collaborator"
  return TodoListOut(
    id=todo_list.id,
    name=todo_list.name,
    ownerId=todo_list.owner_id,
    collaborators=sorted(membership.collaborator_ids),
    pendingCollaborators=sorted(membership.pending_ids) if role == "owner" else [],
    taskIds=list(res.scalars().all()),
    role=role,
    createdAt=todo_list.created_at,
    updatedAt=todo_list.updated_at,
  )


async def require_list_access(db: AsyncSession, *, actor_id: str, todo_list_id: str) -> tuple[TodoList, ListMembership]:
  todo_list = await get_todo_list(db, todo_list_id)
  membership = await load_membership(db, todo_list)
  if not can_access_list(actor_id, membership):
    raise Forbidden("No access to this todo list")
  return todo_list, membership


async def _require_owner(db: AsyncSession, *, actor_id: str, todo_list_id: str) -> tuple[TodoList, ListMembership]:
  todo_list = await get_todo_list(db, todo_list_id)
  membership = await load_membership(db, todo_list)
  if not can_manage_collaborators(actor_id, membership):
    raise Forbidden("Only the todo list owner can do this")
  return todo_list, membership


async def _members_out(db: AsyncSession, roles: dict[str, str]) -> list[MemberOut]:
  if not roles:
    return []
  res = await db.execute(select(User).where(User.id.in_(list(roles))))
  users = {u.id: u for u in res.scalars().all()}
  order = {"owner": 0, "collaborator": 1, "pending": 2}
  out = [
    MemberOut(userId=u.id, name=u.name, email=u.email, avatarUrl=u.avatar_url, role=roles[u.id])
    for u in users.values()
  ]
  out.sort(key=lambda m: (order[m.role], m.name.lower(), m.userId))
  return out


async def create_todo_list(db: AsyncSession, *, actor: User, name: str) -> TodoListOut:
  todo_list = TodoList(name=name.strip(), owner_id=actor.id)
  db.add(todo_list)
  await db.commit()
  logger.info("Todo list %s created by %s", todo_list.id, actor.id)
  return await todo_list_out(db, todo_list, actor_id=actor.id)


async def list_todo_lists(db: AsyncSession, *, actor: User, page: int = 1, limit: int = 10) -> Page[TodoListOut]:
  page, limit = clamp_page(page, limit)
  shared = select(TodoListMember.todo_list_id).where(
    TodoListMember.user_id == actor.id, TodoListMember.status == MEMBER_COLLABORATOR
  )
  visible = or_(TodoList.owner_id == actor.id, TodoList.id.in_(shared))
  total = await db.scalar(select(func.count()).select_from(TodoList).where(visible))
  res = await db.execute(
    select(TodoList)
    .where(visible)
    .order_by(TodoList.created_at.desc(), TodoList.id.desc())
    .offset((page - 1) * limit)
    .limit(limit)
  )
  items = [await todo_list_out(db, tl, actor_id=actor.id) for tl in res.scalars().all()]
  return Page(items=items, page=page, limit=limit, total=int(total or 0))


async def get_todo_list_detail(db: AsyncSession, *, actor: User, todo_list_id: str) -> TodoListOut:
  todo_list, membership = await require_list_access(db, actor_id=actor.id, todo_list_id=todo_list_id)
  return await todo_list_out(db, todo_list, actor_id=actor.id, membership=membership)


async def update_todo_list(db: AsyncSession, *, actor: User, todo_list_id: str, name: str) -> TodoListOut:
  todo_list, membership = await _require_owner(db, actor_id=actor.id, todo_list_id=todo_list_id)
  todo_list.name = name.strip()
  await db.commit()
  return await todo_list_out(db, todo_list, actor_id=actor.id, membership=membership)


async def _delete_list_everything(db: AsyncSession, todo_list_id: str) -> None:
  task_ids = select(Task.id).where(Task.todo_list_id == todo_list_id)
  await db.execute(delete(TaskComment).where(TaskComment.task_id.in_(task_ids)))
  await db.execute(delete(TaskActivity).where(TaskActivity.task_id.in_(task_ids)))
  await db.execute(delete(TaskAttachment).where(TaskAttachment.task_id.in_(task_ids)))
  await db.execute(update(Task).where(Task.todo_list_id == todo_list_id).values(parent_task_id=None))
  await db.execute(delete(Task).where(Task.todo_list_id == todo_list_id))
  await db.execute(delete(TodoListMember).where(TodoListMember.todo_list_id == todo_list_id))
  await db.execute(delete(TodoList).where(TodoList.id == todo_list_id))


async def delete_todo_list(db: AsyncSession, notifier: NotificationEngine, *, actor: User, todo_list_id: str) -> None:
  todo_list, membership = await _require_owner(db, actor_id=actor.id, todo_list_id=todo_list_id)
  # Collaborators are notified while the membership rows still exist.
  await events.todo_list_deleted(
    notifier,
    todo_list=todo_list,
    actor=actor,
    collaborator_ids=sorted(membership.collaborator_ids),
  )
  await _delete_list_everything(db, todo_list.id)
  await db.commit()
  logger.info("Todo list %s deleted by %s", todo_list.id, actor.id)


async def _find_target(db: AsyncSession, *, user_id: str | None, email: str | None) -> User:
  if user_id:
    return await get_user(db, user_id)
  if not email:
    raise InvalidRequest("userId or email is required")
  res = await db.execute(select(User).where(User.email == email.strip().lower()))
  u = res.scalar_one_or_none()
  if not u:
    raise NotFound("User not found")
  return u


async def add_collaborator(
  db: AsyncSession,
  notifier: NotificationEngine,
  *,
  actor: User,
  todo_list_id: str,
  user_id: str | None = None,
  email: str | None = None,
) -> TodoListOut:
  todo_list, membership = await _require_owner(db, actor_id=actor.id, todo_list_id=todo_list_id)
  target = await _find_target(db, user_id=user_id, email=email)
  if target.id == todo_list.owner_id:
    raise Conflict("You cannot add yourself as a collaborator")
  if target.id in membership.collaborator_ids:
    raise Conflict("User is already a collaborator")

  if target.id in membership.pending_ids:
    res = await db.execute(
      update(TodoListMember)
      .where(
        TodoListMember.todo_list_id == todo_list.id,
        TodoListMember.user_id == target.id,
        TodoListMember.status == MEMBER_PENDING,
      )
      .values(status=MEMBER_COLLABORATOR)
    )
    if res.rowcount == 0:
      await db.rollback()
      raise Conflict("Membership changed concurrently; retry")
    await db.commit()
  else:
    db.add(TodoListMember(todo_list_id=todo_list.id, user_id=target.id, status=MEMBER_COLLABORATOR))
    try:
      await db.commit()
    except IntegrityError:
      await db.rollback()
      raise Conflict("User is already a collaborator") from None

  await events.collaborator_added(notifier, todo_list=todo_list, actor=actor, user_id=target.id)
  return await todo_list_out(db, todo_list, actor_id=actor.id)


async def kick_collaborator(
  db: AsyncSession,
  notifier: NotificationEngine,
  *,
  actor: User,
  todo_list_id: str,
  user_id: str,
) -> TodoListOut:
  todo_list, _ = await _require_owner(db, actor_id=actor.id, todo_list_id=todo_list_id)
  target_id = require_id(user_id, label="user")
  res = await db.execute(
    delete(TodoListMember).where(
      TodoListMember.todo_list_id == todo_list.id,
      TodoListMember.user_id == target_id,
      TodoListMember.status == MEMBER_COLLABORATOR,
    )
  )
  if res.rowcount == 0:
    await db.rollback()
    raise NotFound("Collaborator not found in this todo list")
  await db.commit()
  await events.collaborator_kicked(notifier, todo_list=todo_list, actor=actor, user_id=target_id)
  return await todo_list_out(db, todo_list, actor_id=actor.id)


async def leave_todo_list(db: AsyncSession, notifier: NotificationEngine, *, actor: User, todo_list_id: str) -> None:
  todo_list = await get_todo_list(db, todo_list_id)
  if actor.id == todo_list.owner_id:
    raise Conflict("The owner cannot leave their own todo list")
  res = await db.execute(
    delete(TodoListMember).where(
      TodoListMember.todo_list_id == todo_list.id,
      TodoListMember.user_id == actor.id,
      TodoListMember.status == MEMBER_COLLABORATOR,
    )
  )
  if res.rowcount == 0:
    await db.rollback()
    raise NotFound("You are not a collaborator of this todo list")
  await db.commit()
  await events.collaborator_left(notifier, todo_list=todo_list, actor=actor)


async def join_todo_list(db: AsyncSession, notifier: NotificationEngine, *, actor: User, todo_list_id: str) -> None:
  todo_list = await get_todo_list(db, todo_list_id)
  membership = await load_membership(db, todo_list)
  if actor.id == todo_list.owner_id:
    raise Conflict("You already own this todo list")
  if actor.id in membership.collaborator_ids:
    raise Conflict("You are already a collaborator")
  if actor.id in membership.pending_ids:
    raise Conflict("Join request already pending")
  db.add(TodoListMember(todo_list_id=todo_list.id, user_id=actor.id, status=MEMBER_PENDING))
  try:
    await db.commit()
  except IntegrityError:
    await db.rollback()
    raise Conflict("Join request already pending") from None
  await events.join_requested(notifier, todo_list=todo_list, actor=actor)


async def _decide_join_request(
  db: AsyncSession,
  notifier: NotificationEngine,
  *,
  actor: User,
  todo_list_id: str,
  user_id: str,
  accept: bool,
) -> TodoListOut:
  todo_list, _ = await _require_owner(db, actor_id=actor.id, todo_list_id=todo_list_id)
  requester_id = require_id(user_id, label="user")
  pending = (
    TodoListMember.todo_list_id == todo_list.id,
    TodoListMember.user_id == requester_id,
    TodoListMember.status == MEMBER_PENDING,
  )
  if accept:
    res = await db.execute(update(TodoListMember).where(*pending).values(status=MEMBER_COLLABORATOR))
  else:
    res = await db.execute(delete(TodoListMember).where(*pending))
  if res.rowcount == 0:
    await db.rollback()
    raise NotFound("Join request not found")
  await db.commit()
  await events.join_request_decided(notifier, todo_list=todo_list, actor=actor, user_id=requester_id, accepted=accept)
  return await todo_list_out(db, todo_list, actor_id=actor.id)


async def approve_join_request(
  db: AsyncSession, notifier: NotificationEngine, *, actor: User, todo_list_id: str, user_id: str
) -> TodoListOut:
  return await _decide_join_request(db, notifier, actor=actor, todo_list_id=todo_list_id, user_id=user_id, accept=True)


async def reject_join_request(
  db: AsyncSession, notifier: NotificationEngine, *, actor: User, todo_list_id: str, user_id: str
) -> TodoListOut:
  return await _decide_join_request(db, notifier, actor=actor, todo_list_id=todo_list_id, user_id=user_id, accept=False)


async def list_collaborators(db: AsyncSession, *, actor: User, todo_list_id: str) -> list[MemberOut]:
  todo_list, membership = await require_list_access(db, actor_id=actor.id, todo_list_id=todo_list_id)
  roles = {uid: "collaborator" for uid in membership.collaborator_ids}
  roles[todo_list.owner_id] = "owner"
  return await _members_out(db, roles)


async def list_join_requests(db: AsyncSession, *, actor: User, todo_list_id: str) -> list[MemberOut]:
  _, membership = await _require_owner(db, actor_id=actor.id, todo_list_id=todo_list_id)
  return await _members_out(db, {uid: "pending" for uid in membership.pending_ids})
