from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.config import settings
from collabtodo.deps import client_ip, get_current_user, get_db
from collabtodo.errors import Conflict
from collabtodo.models import Session as DbSession, User
from collabtodo.rate_limit import limiter
from collabtodo.schemas import LoginIn, LoginOut, RegisterIn, UserOut
from collabtodo.security import (
  SESSION_COOKIE_NAME,
  hash_password,
  new_session_expires_at,
  new_session_token,
  session_token_hash,
  verify_password,
)

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("collabtodo.routers.auth")


def user_out(u: User) -> UserOut:
  return UserOut(id=u.id, email=u.email, name=u.name, avatarUrl=u.avatar_url, createdAt=u.created_at)


def _rate_limit_or_429(*, key: str, limit: int, window_seconds: int) -> None:
  allowed, retry_after = limiter.hit(key, limit=limit, window_seconds=window_seconds)
  if allowed:
    return
  raise HTTPException(
    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    detail={"code": "rate_limited", "message": "Too many requests", "retryAfterSeconds": retry_after},
    headers={"Retry-After": str(retry_after)},
  )


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterIn, request: Request, db: AsyncSession = Depends(get_db)) -> UserOut:
  ip = client_ip(request) or "unknown"
  _rate_limit_or_429(key=f"auth:register:ip:{ip}", limit=int(settings.rate_limit_register_ip_per_minute), window_seconds=60)

  existing = await db.execute(select(User.id).where(User.email == payload.email))
  if existing.scalar_one_or_none():
    raise Conflict("Email already registered")
  u = User(email=payload.email, name=payload.name, password_hash=hash_password(payload.password))
  db.add(u)
  try:
    await db.commit()
  except IntegrityError:
    await db.rollback()
    raise Conflict("Email already registered") from None
  logger.info("Registered user %s", u.id)
  return user_out(u)


@router.post("/login", response_model=LoginOut)
async def login(payload: LoginIn, request: Request, response: Response, db: AsyncSession = Depends(get_db)) -> LoginOut:
  ip = client_ip(request) or "unknown"
  email_key = (payload.email or "").strip().lower()
  _rate_limit_or_429(key=f"auth:login:ip:{ip}", limit=int(settings.rate_limit_login_ip_per_minute), window_seconds=60)
  if email_key:
    _rate_limit_or_429(key=f"auth:login:email:{email_key}", limit=int(settings.rate_limit_login_email_per_minute), window_seconds=60)

  res = await db.execute(select(User).where(User.email == email_key))
  u = res.scalar_one_or_none()
  if not u or not verify_password(payload.password, u.password_hash):
    logger.info("Failed login for %s from %s", email_key, ip)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

  token = new_session_token()
  s = DbSession(
    user_id=u.id,
    token_hash=session_token_hash(token),
    expires_at=new_session_expires_at(),
    created_ip=client_ip(request),
    user_agent=request.headers.get("user-agent"),
  )
  db.add(s)
  await db.commit()

  response.set_cookie(
    key=SESSION_COOKIE_NAME,
    value=token,
    httponly=True,
    secure=settings.cookie_secure,
    samesite="lax",
    domain=settings.cookie_domain or None,
    max_age=int(settings.session_ttl_hours) * 3600,
    expires=s.expires_at,
    path="/",
  )
  return LoginOut(token=token, expiresAt=s.expires_at, user=user_out(u))


@router.post("/logout")
async def logout(
  response: Response,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  # best-effort: delete all sessions for user
  await db.execute(delete(DbSession).where(DbSession.user_id == user.id))
  await db.commit()
  response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
  return {"ok": True}


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)) -> UserOut:
  return user_out(user)
