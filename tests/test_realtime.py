from __future__ import annotations

import json
from types import SimpleNamespace

import anyio
import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient
from starlette.websockets import WebSocketDisconnect

from collabtodo.config import settings
from collabtodo.main import app
from collabtodo.realtime.registry import SessionRegistry, list_room, user_room
from collabtodo.routers.live import live
from tests.conftest import FakeSocket, register

LIST_ID = "11111111-1111-1111-1111-111111111111"


@pytest.mark.anyio
async def test_open_registers_user_room_and_greets() -> None:
  registry = SessionRegistry()
  sock = FakeSocket()
  conn = await registry.open(sock, user_id="u1", username="Alice")

  assert registry.is_online("u1")
  assert registry.room_members(user_room("u1")) == {conn.id}
  greeting = sock.sent[0]
  assert greeting["event"] == "connection_status"
  assert greeting["data"]["status"] == "connected"
  assert greeting["data"]["connectionId"] == conn.id
  assert greeting["data"]["timestamp"].endswith("+00:00")


@pytest.mark.anyio
async def test_join_list_broadcasts_to_peers_only() -> None:
  registry = SessionRegistry()
  a_sock, b_sock = FakeSocket(), FakeSocket()
  a = await registry.open(a_sock, user_id="u1", username="Alice")
  b = await registry.open(b_sock, user_id="u2", username="Bob")

  await registry.join_list(a, LIST_ID)
  await registry.join_list(b, LIST_ID)

  assert a_sock.events() == ["connection_status", "user_joined_list"]
  assert a_sock.sent[-1]["data"]["userId"] == "u2"
  assert a_sock.sent[-1]["data"]["todoListId"] == LIST_ID
  assert b_sock.events() == ["connection_status"]

  users = registry.online_users(LIST_ID)
  assert sorted(u["userId"] for u in users) == ["u1", "u2"]

  await registry.leave_list(b, LIST_ID)
  assert a_sock.events()[-1] == "user_left_list"
  assert registry.room_members(list_room(LIST_ID)) == {a.id}


@pytest.mark.anyio
async def test_relays_exclude_sender() -> None:
  registry = SessionRegistry()
  a_sock, b_sock = FakeSocket(), FakeSocket()
  a = await registry.open(a_sock, user_id="u1", username="Alice")
  b = await registry.open(b_sock, user_id="u2", username="Bob")
  await registry.join_list(a, LIST_ID)
  await registry.join_list(b, LIST_ID)

  delivered = await registry.relay_task_update(
    b, todo_list_id=LIST_ID, task_id="t1", action="updated", task_data={"title": "Milk"}
  )
  assert delivered == 1
  relayed = a_sock.sent[-1]
  assert relayed["event"] == "task_updated"
  assert relayed["data"]["updatedBy"] == {"userId": "u2", "username": "Bob"}
  assert relayed["data"]["taskData"] == {"title": "Milk"}

  await registry.relay_typing(a, todo_list_id=LIST_ID, is_typing=True)
  assert b_sock.sent[-1]["event"] == "user_typing"
  assert b_sock.sent[-1]["data"]["isTyping"] is True
  assert a_sock.sent[-1]["event"] == "task_updated"


@pytest.mark.anyio
async def test_close_announces_disconnect_to_list_rooms() -> None:
  registry = SessionRegistry()
  a_sock, b_sock = FakeSocket(), FakeSocket()
  a = await registry.open(a_sock, user_id="u1", username="Alice")
  b = await registry.open(b_sock, user_id="u2", username="Bob")
  await registry.join_list(a, LIST_ID)
  await registry.join_list(b, LIST_ID)

  await registry.close(b, reason="client disconnect")
  assert not registry.is_online("u2")
  assert a_sock.sent[-1]["event"] == "user_disconnected"
  assert a_sock.sent[-1]["data"]["reason"] == "client disconnect"
  assert [u["userId"] for u in registry.online_users(LIST_ID)] == ["u1"]

  # Closing twice is a no-op.
  await registry.close(b, reason="again")
  assert a_sock.events().count("user_disconnected") == 1


@pytest.mark.anyio
async def test_multi_device_fan_out_and_stats() -> None:
  registry = SessionRegistry()
  phone, laptop, other = FakeSocket(), FakeSocket(), FakeSocket()
  await registry.open(phone, user_id="u1", username="Alice")
  await registry.open(laptop, user_id="u1", username="Alice")
  await registry.open(other, user_id="u2", username="Bob")

  assert await registry.emit_to_user("u1", "ping_test", {"n": 1}) == 2
  assert other.events() == ["connection_status"]
  assert registry.connection_count() == 3
  assert registry.user_count() == 2

  assert await registry.emit_all("server_stats", registry.server_stats()) == 3
  stats = other.sent[-1]["data"]
  assert (stats["totalConnections"], stats["totalUsers"]) == (3, 2)


def test_handshake_without_token_is_rejected() -> None:
  client = TestClient(app)
  with pytest.raises(WebSocketDisconnect) as exc:
    with client.websocket_connect("/ws") as ws:
      ws.receive_json()
  assert exc.value.code == 1008
  assert app.state.realtime.connection_count() == 0


def test_handshake_with_bad_token_is_rejected() -> None:
  client = TestClient(app)
  with pytest.raises(WebSocketDisconnect) as exc:
    with client.websocket_connect("/ws?token=ct_not-a-session") as ws:
      ws.receive_json()
  assert exc.value.code == 1008
  assert app.state.realtime.connection_count() == 0


def _register(client: TestClient, name: str) -> dict:
  email = f"{name.lower()}@example.com"
  res = client.post("/auth/register", json={"name": name, "email": email, "password": "secret123"})
  assert res.status_code == 201, res.text
  login = client.post("/auth/login", json={"email": email, "password": "secret123"})
  assert login.status_code == 200, login.text
  return {"id": res.json()["id"], "token": login.json()["token"]}


def test_live_session_round_trip() -> None:
  with TestClient(app) as client:
    alice = _register(client, "Alice")
    bob = _register(client, "Bob")
    with client.websocket_connect(f"/ws?token={alice['token']}") as a_ws:
      hello = a_ws.receive_json()
      assert hello["event"] == "connection_status"
      assert hello["data"]["userId"] == alice["id"]

      with client.websocket_connect("/ws", headers={"Authorization": f"Bearer {bob['token']}"}) as b_ws:
        assert b_ws.receive_json()["event"] == "connection_status"

        a_ws.send_json({"event": "join_list", "data": LIST_ID})
        a_ws.send_json({"event": "ping"})
        assert a_ws.receive_json()["event"] == "pong"
        b_ws.send_json({"event": "join_list", "data": {"todoListId": LIST_ID}})
        joined = a_ws.receive_json()
        assert joined["event"] == "user_joined_list"
        assert joined["data"]["userId"] == bob["id"]

        b_ws.send_json({"event": "get_online_users", "data": {"todoListId": LIST_ID}})
        online = b_ws.receive_json()
        assert online["event"] == "online_users"
        assert online["data"]["count"] == 2

        b_ws.send_json({"event": "task_update", "data": {"todoListId": LIST_ID, "taskId": "t1", "action": "created"}})
        relayed = a_ws.receive_json()
        assert relayed["event"] == "task_updated"
        assert relayed["data"]["updatedBy"]["userId"] == bob["id"]

        b_ws.send_json({"event": "ping"})
        assert b_ws.receive_json()["event"] == "pong"

        b_ws.send_json({"event": "dance"})
        err = b_ws.receive_json()
        assert err["event"] == "error"
        assert "dance" in err["data"]["message"]

        b_ws.send_text("not json")
        assert b_ws.receive_json()["event"] == "error"

      gone = a_ws.receive_json()
      assert gone["event"] == "user_disconnected"
      assert gone["data"]["userId"] == bob["id"]


def test_idle_connection_times_out() -> None:
  original = settings.live_heartbeat_timeout_seconds
  settings.live_heartbeat_timeout_seconds = 0.2
  try:
    with TestClient(app) as client:
      alice = _register(client, "Alice")
      with client.websocket_connect(f"/ws?token={alice['token']}") as ws:
        assert ws.receive_json()["event"] == "connection_status"
        with pytest.raises(WebSocketDisconnect):
          ws.receive_json()
      assert app.state.realtime.connection_count() == 0
  finally:
    settings.live_heartbeat_timeout_seconds = original


class _YieldingSocket(FakeSocket):
  async def send_json(self, data) -> None:
    await anyio.sleep(0)
    self.sent.append(data)


class _StalledSocket(FakeSocket):
  """Joins a list on its first frame, then never sends another."""

  def __init__(self, registry: SessionRegistry, token: str) -> None:
    super().__init__()
    self.app = SimpleNamespace(state=SimpleNamespace(realtime=registry))
    self.headers = {"authorization": f"Bearer {token}"}
    self.query_params: dict[str, str] = {}
    self._frames = [{"type": "websocket.receive", "text": json.dumps({"event": "join_list", "data": LIST_ID})}]

  async def accept(self) -> None:
    pass

  async def receive(self) -> dict:
    if self._frames:
      return self._frames.pop(0)
    await anyio.sleep_forever()


@pytest.mark.anyio
async def test_cancelled_handler_still_announces_disconnect(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  registry = SessionRegistry()
  peer_sock = _YieldingSocket()
  peer = await registry.open(peer_sock, user_id="u-peer", username="Peer")
  await registry.join_list(peer, LIST_ID)

  with anyio.fail_after(5):
    async with anyio.create_task_group() as tg:
      tg.start_soon(live, _StalledSocket(registry, alice["token"]))
      while len(registry.room_members(list_room(LIST_ID))) < 2:
        await anyio.sleep(0.01)
      tg.cancel_scope.cancel()

  assert registry.room_members(list_room(LIST_ID)) == {peer.id}
  gone = peer_sock.sent[-1]
  assert gone["event"] == "user_disconnected"
  assert gone["data"]["userId"] == alice["id"]
