from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from collabtodo.deps import get_current_user, get_db
from collabtodo.models import Session as DbSession, User
from collabtodo.routers.auth import user_out
from collabtodo.schemas import PasswordChangeIn, UserOut, UserPublicOut, UserUpdateIn
from collabtodo.security import hash_password, verify_password
from collabtodo.services.common import get_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserOut)
async def get_profile(user: User = Depends(get_current_user)) -> UserOut:
  return user_out(user)


@router.patch("/me", response_model=UserOut)
async def update_profile(
  payload: UserUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> UserOut:
  res = await db.execute(select(User).where(User.id == user.id))
  u = res.scalar_one()
  if payload.name is not None:
    name = payload.name.strip()
    if not name:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name cannot be empty")
    u.name = name
  if "avatarUrl" in payload.model_fields_set:
    u.avatar_url = (payload.avatarUrl or "").strip() or None
  await db.commit()
  return user_out(u)


@router.post("/me/password")
async def change_password(
  payload: PasswordChangeIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  res = await db.execute(select(User).where(User.id == user.id))
  u = res.scalar_one()
  if not verify_password(payload.currentPassword, u.password_hash):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
  if verify_password(payload.newPassword, u.password_hash):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="New password must differ from the current one")
  u.password_hash = hash_password(payload.newPassword)
  # Other devices must sign in again.
  await db.execute(delete(DbSession).where(DbSession.user_id == u.id))
  await db.commit()
  return {"ok": True}


@router.get("/{user_id}", response_model=UserPublicOut)
async def get_public_profile(
  user_id: str,
  _: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> UserPublicOut:
  u = await get_user(db, user_id)
  return UserPublicOut(id=u.id, name=u.name, avatarUrl=u.avatar_url)
