from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import anyio
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from collabtodo.config import settings
from collabtodo.db import SessionLocal
from collabtodo.deps import resolve_session_user
from collabtodo.errors import Unauthenticated
from collabtodo.models import User
from collabtodo.realtime.registry import LiveConnection, SessionRegistry, live_timestamp
from collabtodo.security import bearer_token

router = APIRouter(tags=["live"])
logger = logging.getLogger("collabtodo.routers.live")


class _BadFrame(ValueError):
  pass


async def _authenticate(websocket: WebSocket) -> User:
  token = bearer_token(websocket.headers.get("authorization")) or websocket.query_params.get("token")
  async with SessionLocal() as db:
    return await resolve_session_user(db, token)


def _list_id(data: Any) -> str:
  if isinstance(data, str) and data.strip():
    return data.strip()
  if isinstance(data, dict):
    v = data.get("todoListId")
    if isinstance(v, str) and v.strip():
      return v.strip()
  raise _BadFrame("todoListId is required")


async def _receive_text(websocket: WebSocket) -> str:
  message = await websocket.receive()
  if message["type"] == "websocket.disconnect":
    raise WebSocketDisconnect(code=message.get("code", 1000))
  if message.get("text") is not None:
    return message["text"]
  return (message.get("bytes") or b"").decode("utf-8", errors="replace")


async def _handle(registry: SessionRegistry, conn: LiveConnection, event: str, data: Any) -> None:
  if event == "join_list":
    await registry.join_list(conn, _list_id(data))
  elif event == "leave_list":
    await registry.leave_list(conn, _list_id(data))
  elif event == "task_update":
    body = data if isinstance(data, dict) else {}
    await registry.relay_task_update(
      conn,
      todo_list_id=_list_id(body),
      task_id=body.get("taskId"),
      action=body.get("action"),
      task_data=body.get("taskData"),
    )
  elif event == "typing":
    body = data if isinstance(data, dict) else {}
    await registry.relay_typing(conn, todo_list_id=_list_id(body), is_typing=bool(body.get("isTyping")))
  elif event == "notification_ack":
    notification_id = data.get("notificationId") if isinstance(data, dict) else data
    logger.info("User %s acknowledged notification %s", conn.user_id, notification_id)
  elif event == "get_online_users":
    list_id = _list_id(data)
    users = registry.online_users(list_id)
    await registry.send(conn, "online_users", {"todoListId": list_id, "users": users, "count": len(users)})
  elif event == "ping":
    await registry.send(conn, "pong", {"timestamp": live_timestamp()})
  else:
    raise _BadFrame(f"Unknown event: {event}")


@router.websocket("/ws")
async def live(websocket: WebSocket) -> None:
  registry: SessionRegistry = websocket.app.state.realtime
  try:
    user = await _authenticate(websocket)
  except Unauthenticated as e:
    logger.info("Rejected live handshake: %s", e.message)
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=f"Authentication error: {e.message}")
    return

  await websocket.accept()
  conn = await registry.open(websocket, user_id=user.id, username=user.name)
  reason = "client disconnect"
  try:
    while True:
      try:
        raw = await asyncio.wait_for(_receive_text(websocket), timeout=float(settings.live_heartbeat_timeout_seconds))
      except asyncio.TimeoutError:
        reason = "ping timeout"
        await websocket.close(code=status.WS_1000_NORMAL_CLOSURE, reason=reason)
        break
      try:
        frame = json.loads(raw)
      except ValueError:
        await registry.send(conn, "error", {"message": "Malformed frame"})
        continue
      if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        await registry.send(conn, "error", {"message": "Frame must be an object with an event name"})
        continue
      try:
        await _handle(registry, conn, frame["event"], frame.get("data"))
      except _BadFrame as e:
        await registry.send(conn, "error", {"message": str(e)})
  except WebSocketDisconnect:
    pass
  finally:
    # A cancelled handler must still announce the disconnect to its rooms.
    with anyio.CancelScope(shield=True):
      await registry.close(conn, reason=reason)
