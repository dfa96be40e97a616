from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger("collabtodo.realtime")

USER_ROOM_PREFIX = "user_"
LIST_ROOM_PREFIX = "todoList_"


class LiveSocket(Protocol):
  async def send_json(self, data: Any) -> None: ...

  async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


def user_room(user_id: str) -> str:
  return f"{USER_ROOM_PREFIX}{user_id}"


def list_room(todo_list_id: str) -> str:
  return f"{LIST_ROOM_PREFIX}{todo_list_id}"


def live_timestamp() -> str:
  return datetime.now(timezone.utc).isoformat()


@dataclass
class LiveConnection:
  id: str
  user_id: str
  username: str
  socket: LiveSocket
  connected_at: datetime
  rooms: set[str] = field(default_factory=set)

  def list_ids(self) -> list[str]:
    return sorted(r[len(LIST_ROOM_PREFIX) :] for r in self.rooms if r.startswith(LIST_ROOM_PREFIX))


class SessionRegistry:
  """
  In-memory registry of live connections for one process.

  A user may hold several connections at once (one per device/tab); pushes addressed to a
  user fan out to all of them. Rooms map a name (`user_<id>` or `todoList_<id>`) to the ids of
  the connections currently in it. Nothing here is durable.
  """

  def __init__(self) -> None:
    self._connections: dict[str, LiveConnection] = {}
    self._by_user: dict[str, set[str]] = {}
    self._rooms: dict[str, set[str]] = {}
    self._jobs: list[asyncio.Task] = []

  # connection lifecycle

  async def open(self, socket: LiveSocket, *, user_id: str, username: str) -> LiveConnection:
    conn = LiveConnection(
      id=str(uuid.uuid4()),
      user_id=user_id,
      username=username,
      socket=socket,
      connected_at=datetime.now(timezone.utc),
    )
    self._connections[conn.id] = conn
    self._by_user.setdefault(user_id, set()).add(conn.id)
    self._join(conn, user_room(user_id))
    logger.info("Live connection %s opened for user %s", conn.id, user_id)
    await self.send(
      conn,
      "connection_status",
      {"status": "connected", "userId": user_id, "connectionId": conn.id, "timestamp": live_timestamp()},
    )
    return conn

  async def close(self, conn: LiveConnection, *, reason: str) -> None:
    if conn.id not in self._connections:
      return
    list_ids = conn.list_ids()
    self._drop(conn)
    logger.info("Live connection %s closed for user %s (%s)", conn.id, conn.user_id, reason)
    for list_id in list_ids:
      await self.broadcast(
        list_room(list_id),
        "user_disconnected",
        {"userId": conn.user_id, "username": conn.username, "reason": reason, "timestamp": live_timestamp()},
      )

  def _drop(self, conn: LiveConnection) -> None:
    self._connections.pop(conn.id, None)
    ids = self._by_user.get(conn.user_id)
    if ids is not None:
      ids.discard(conn.id)
      if not ids:
        del self._by_user[conn.user_id]
    for room in list(conn.rooms):
      self._leave(conn, room)

  def _join(self, conn: LiveConnection, room: str) -> None:
    conn.rooms.add(room)
    self._rooms.setdefault(room, set()).add(conn.id)

  def _leave(self, conn: LiveConnection, room: str) -> None:
    conn.rooms.discard(room)
    members = self._rooms.get(room)
    if members is None:
      return
    members.discard(conn.id)
    if not members:
      del self._rooms[room]

  # client events

  async def join_list(self, conn: LiveConnection, todo_list_id: str) -> None:
    self._join(conn, list_room(todo_list_id))
    await self.broadcast(
      list_room(todo_list_id),
      "user_joined_list",
      {"userId": conn.user_id, "username": conn.username, "todoListId": todo_list_id, "timestamp": live_timestamp()},
      exclude=conn.id,
    )

  async def leave_list(self, conn: LiveConnection, todo_list_id: str) -> None:
    self._leave(conn, list_room(todo_list_id))
    await self.broadcast(
      list_room(todo_list_id),
      "user_left_list",
      {"userId": conn.user_id, "username": conn.username, "todoListId": todo_list_id, "timestamp": live_timestamp()},
      exclude=conn.id,
    )

  async def relay_task_update(
    self,
    conn: LiveConnection,
    *,
    todo_list_id: str,
    task_id: str | None,
    action: str | None,
    task_data: Any,
  ) -> int:
    return await self.broadcast(
      list_room(todo_list_id),
      "task_updated",
      {
        "taskId": task_id,
        "action": action,
        "taskData": task_data,
        "updatedBy": {"userId": conn.user_id, "username": conn.username},
        "timestamp": live_timestamp(),
      },
      exclude=conn.id,
    )

  async def relay_typing(self, conn: LiveConnection, *, todo_list_id: str, is_typing: bool) -> int:
    return await self.broadcast(
      list_room(todo_list_id),
      "user_typing",
      {"userId": conn.user_id, "username": conn.username, "isTyping": bool(is_typing), "timestamp": live_timestamp()},
      exclude=conn.id,
    )

  def online_users(self, todo_list_id: str) -> list[dict[str, str]]:
    out: list[dict[str, str]] = []
    for conn_id in sorted(self._rooms.get(list_room(todo_list_id), set())):
      conn = self._connections.get(conn_id)
      if conn is not None:
        out.append({"userId": conn.user_id, "username": conn.username, "connectionId": conn.id})
    return out

  # delivery

  async def send(self, conn: LiveConnection, event: str, data: Any) -> bool:
    try:
      await conn.socket.send_json({"event": event, "data": jsonable_encoder(data)})
      return True
    except Exception:
      logger.warning("Dropped %s for live connection %s", event, conn.id, exc_info=True)
      return False

  async def broadcast(self, room: str, event: str, data: Any, *, exclude: str | None = None) -> int:
    delivered = 0
    for conn_id in list(self._rooms.get(room, set())):
      if conn_id == exclude:
        continue
      conn = self._connections.get(conn_id)
      if conn is not None and await self.send(conn, event, data):
        delivered += 1
    return delivered

  async def emit_to_user(self, user_id: str, event: str, data: Any) -> int:
    return await self.broadcast(user_room(user_id), event, data)

  async def emit_all(self, event: str, data: Any) -> int:
    delivered = 0
    for conn in list(self._connections.values()):
      if await self.send(conn, event, data):
        delivered += 1
    return delivered

  # introspection

  def connection_count(self) -> int:
    return len(self._connections)

  def user_count(self) -> int:
    return len(self._by_user)

  def is_online(self, user_id: str) -> bool:
    return bool(self._by_user.get(user_id))

  def room_members(self, room: str) -> set[str]:
    return set(self._rooms.get(room, set()))

  # process-wide jobs

  def start(
    self,
    *,
    stats_interval_seconds: float,
    purge_interval_seconds: float,
    purge_expired: Callable[[], Awaitable[int]] | None = None,
  ) -> None:
    if self._jobs:
      return
    self._jobs.append(asyncio.create_task(self._server_stats_loop(stats_interval_seconds)))
    if purge_expired is not None:
      self._jobs.append(asyncio.create_task(self._purge_loop(purge_interval_seconds, purge_expired)))

  async def stop(self) -> None:
    for job in self._jobs:
      job.cancel()
    await asyncio.gather(*self._jobs, return_exceptions=True)
    self._jobs.clear()
    for conn in list(self._connections.values()):
      try:
        await conn.socket.close(code=1001, reason="server shutdown")
      except Exception:
        logger.debug("Live connection %s already gone at shutdown", conn.id)
      self._drop(conn)

  def server_stats(self) -> dict[str, Any]:
    return {"totalConnections": self.connection_count(), "totalUsers": self.user_count(), "timestamp": live_timestamp()}

  async def _server_stats_loop(self, interval: float) -> None:
    while True:
      await asyncio.sleep(max(1.0, float(interval)))
      await self.emit_all("server_stats", self.server_stats())

  async def _purge_loop(self, interval: float, purge_expired: Callable[[], Awaitable[int]]) -> None:
    while True:
      await asyncio.sleep(max(1.0, float(interval)))
      try:
        removed = await purge_expired()
      except Exception:
        logger.exception("Expired notification purge failed")
        continue
      if removed:
        logger.info("Purged %d expired notifications", removed)
