from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Cookie, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.db import SessionLocal
from collabtodo.errors import Unauthenticated
from collabtodo.models import Session as DbSession, User
from collabtodo.notifications.service import NotificationEngine
from collabtodo.security import SESSION_COOKIE_NAME, bearer_token, session_token_hash


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


async def resolve_session_user(db: AsyncSession, token: str | None) -> User:
  if not token:
    raise Unauthenticated("No token provided")
  res = await db.execute(select(DbSession).where(DbSession.token_hash == session_token_hash(token)))
  s = res.scalar_one_or_none()
  if not s:
    raise Unauthenticated("Invalid token")
  if s.expires_at < datetime.now(timezone.utc):
    raise Unauthenticated("Session expired")
  ures = await db.execute(select(User).where(User.id == s.user_id))
  u = ures.scalar_one_or_none()
  if not u:
    raise Unauthenticated("User not found")
  return u


async def get_current_user(
  request: Request,
  db: AsyncSession = Depends(get_db),
  session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> User:
  token = bearer_token(request.headers.get("authorization")) or session_token
  return await resolve_session_user(db, token)


def get_notifier(request: Request) -> NotificationEngine:
  return request.app.state.notifier


def client_ip(request: Request) -> str | None:
  return request.client.host if request.client else None
