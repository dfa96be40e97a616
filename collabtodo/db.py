from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from collabtodo.config import settings


def _engine_kwargs(url: str) -> dict:
  # aiosqlite connections are bound to the loop that opened them.
  if url.startswith("sqlite"):
    return {"poolclass": NullPool}
  return {"pool_pre_ping": True}


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
