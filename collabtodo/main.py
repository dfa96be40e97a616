from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from collabtodo.config import settings
from collabtodo.db import SessionLocal
from collabtodo.errors import DomainError
from collabtodo.notifications.service import NotificationEngine
from collabtodo.realtime.registry import SessionRegistry
from collabtodo.routers.auth import router as auth_router
from collabtodo.routers.live import router as live_router
from collabtodo.routers.notifications import router as notifications_router
from collabtodo.routers.tasks import router as tasks_router
from collabtodo.routers.todo_lists import router as todo_lists_router
from collabtodo.routers.users import router as users_router
from collabtodo.services.cleanup import purge_tombstoned_tasks

logger = logging.getLogger("collabtodo.main")


def _is_test_db() -> bool:
  try:
    db_name = settings.database_url.rsplit("/", 1)[-1]
    return "test" in db_name
  except Exception:
    return False


def _parse_hhmm_utc(s: str) -> tuple[int, int]:
  txt = (s or "").strip()
  parts = txt.split(":")
  if len(parts) != 2:
    return (1, 0)
  try:
    hh = max(0, min(23, int(parts[0])))
    mm = max(0, min(59, int(parts[1])))
    return (hh, mm)
  except ValueError:
    return (1, 0)


def _seconds_until_next_utc(hh: int, mm: int, *, now: datetime | None = None) -> float:
  now = now or datetime.now(tz=timezone.utc)
  target = now.replace(hour=hh, minute=mm, second=0, microsecond=0)
  if target <= now:
    target = target + timedelta(days=1)
  return max(1.0, (target - now).total_seconds())


async def _purge_expired_notifications(notifier: NotificationEngine) -> int:
  async with SessionLocal() as db:
    return await notifier.purge_expired(db)


async def _task_purge_daily_loop() -> None:
  hh, mm = _parse_hhmm_utc(settings.task_purge_time_utc)
  while True:
    await asyncio.sleep(_seconds_until_next_utc(hh, mm))
    async with SessionLocal() as db:
      try:
        await purge_tombstoned_tasks(db, retention_days=settings.task_tombstone_retention_days)
      except Exception:
        logger.exception("Tombstoned task purge failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
  logging.basicConfig(level=settings.log_level.upper())
  registry: SessionRegistry = app.state.realtime
  notifier: NotificationEngine = app.state.notifier
  jobs: list[asyncio.Task] = []

  if not _is_test_db():
    if not settings.app_secret or settings.app_secret.strip().lower() in {"dev-secret-change-me", "replace_with_strong_random_secret"}:
      raise RuntimeError("APP_SECRET is required and must not be a placeholder")
  if settings.background_jobs_enabled:
    registry.start(
      stats_interval_seconds=settings.server_stats_interval_seconds,
      purge_interval_seconds=settings.notification_purge_interval_seconds,
      purge_expired=lambda: _purge_expired_notifications(notifier),
    )
    jobs.append(asyncio.create_task(_task_purge_daily_loop()))
  logger.info("Collab Todo API %s started", settings.app_version)

  yield

  for job in jobs:
    job.cancel()
  await asyncio.gather(*jobs, return_exceptions=True)
  await registry.stop()
  logger.info("Collab Todo API stopped")


def create_app() -> FastAPI:
  app = FastAPI(
    lifespan=lifespan,
    title="Collab Todo API",
    version="0.1.0",
    docs_url="/docs" if settings.api_docs_enabled else None,
    redoc_url="/redoc" if settings.api_docs_enabled else None,
    openapi_url="/openapi.json" if settings.api_docs_enabled else None,
  )
  registry = SessionRegistry()
  app.state.realtime = registry
  app.state.notifier = NotificationEngine(registry)

  @app.exception_handler(DomainError)
  async def _domain_error_handler(_: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

  app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list(),
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
  )
  app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

  @app.middleware("http")
  async def _security_headers_middleware(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response

  app.include_router(auth_router)
  app.include_router(users_router)
  app.include_router(todo_lists_router)
  app.include_router(tasks_router)
  app.include_router(notifications_router)
  app.include_router(live_router)

  @app.get("/health")
  async def health() -> dict:
    return {"ok": True, "liveConnections": registry.connection_count()}

  @app.get("/version")
  async def version() -> dict:
    return {"version": settings.app_version, "buildSha": settings.build_sha}

  return app


app = create_app()
