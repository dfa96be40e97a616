from __future__ import annotations

import pytest
from httpx import AsyncClient

from tests.conftest import add_collaborator, create_list, notifications_of, register


@pytest.mark.anyio
async def test_create_and_list_todo_lists_with_roles(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  groceries = await create_list(client, alice, "Groceries")
  await create_list(client, bob, "Chores")
  await add_collaborator(client, alice, groceries, bob)

  res = await client.get("/todo-lists", headers=bob["headers"])
  assert res.status_code == 200, res.text
  body = res.json()
  assert body["pagination"]["total"] == 2
  roles = {tl["name"]: tl["role"] for tl in body["todoLists"]}
  assert roles == {"Groceries": "collaborator", "Chores": "owner"}

  res = await client.get("/todo-lists", headers=alice["headers"])
  assert [tl["name"] for tl in res.json()["todoLists"]] == ["Groceries"]


@pytest.mark.anyio
async def test_non_member_cannot_read_list(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  eve = await register(client, "Eve")
  groceries = await create_list(client, alice)

  res = await client.get(f"/todo-lists/{groceries['id']}", headers=eve["headers"])
  assert res.status_code == 403, res.text

  res = await client.get("/todo-lists/not-a-uuid", headers=alice["headers"])
  assert res.status_code == 400, res.text
  res = await client.get("/todo-lists/00000000-0000-0000-0000-000000000000", headers=alice["headers"])
  assert res.status_code == 404, res.text


@pytest.mark.anyio
async def test_requests_without_session_are_rejected(client: AsyncClient) -> None:
  res = await client.get("/todo-lists")
  assert res.status_code == 401
  assert res.json()["detail"] == "No token provided"

  res = await client.get("/todo-lists", headers={"Authorization": "Bearer ct_bogus"})
  assert res.status_code == 401
  assert res.json()["detail"] == "Invalid token"


@pytest.mark.anyio
async def test_only_owner_renames_list(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  groceries = await create_list(client, alice)
  await add_collaborator(client, alice, groceries, bob)

  res = await client.patch(f"/todo-lists/{groceries['id']}", json={"name": "Weekly shop"}, headers=bob["headers"])
  assert res.status_code == 403, res.text
  res = await client.patch(f"/todo-lists/{groceries['id']}", json={"name": "Weekly shop"}, headers=alice["headers"])
  assert res.status_code == 200, res.text
  assert res.json()["name"] == "Weekly shop"


@pytest.mark.anyio
async def test_add_then_kick_restores_collaborators(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  groceries = await create_list(client, alice)
  before = groceries["collaborators"]

  added = await add_collaborator(client, alice, groceries, bob)
  assert added["collaborators"] == [bob["id"]]
  added_notes = await notifications_of(bob["id"], type="COLLABORATOR_ADDED")
  assert len(added_notes) == 1

  res = await client.delete(f"/todo-lists/{groceries['id']}/collaborators/{bob['id']}", headers=alice["headers"])
  assert res.status_code == 200, res.text
  assert res.json()["collaborators"] == before
  kicked = await notifications_of(bob["id"], type="COLLABORATOR_KICKED")
  assert len(kicked) == 1
  assert kicked[0].priority == "HIGH"

  res = await client.delete(f"/todo-lists/{groceries['id']}/collaborators/{bob['id']}", headers=alice["headers"])
  assert res.status_code == 404, res.text


@pytest.mark.anyio
async def test_owner_cannot_become_collaborator(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  groceries = await create_list(client, alice)

  res = await client.post(
    f"/todo-lists/{groceries['id']}/collaborators", json={"userId": alice["id"]}, headers=alice["headers"]
  )
  assert res.status_code == 409, res.text

  await add_collaborator(client, alice, groceries, bob)
  res = await client.post(
    f"/todo-lists/{groceries['id']}/collaborators", json={"email": bob["email"]}, headers=alice["headers"]
  )
  assert res.status_code == 409, res.text

  res = await client.get(f"/todo-lists/{groceries['id']}", headers=alice["headers"])
  body = res.json()
  assert alice["id"] not in body["collaborators"]
  assert alice["id"] not in body["pendingCollaborators"]


@pytest.mark.anyio
async def test_collaborator_cannot_manage_collaborators(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  carol = await register(client, "Carol")
  groceries = await create_list(client, alice)
  await add_collaborator(client, alice, groceries, bob)

  res = await client.post(
    f"/todo-lists/{groceries['id']}/collaborators", json={"userId": carol["id"]}, headers=bob["headers"]
  )
  assert res.status_code == 403, res.text


@pytest.mark.anyio
async def test_delete_list_notifies_each_collaborator_once(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  others = [await register(client, name) for name in ("Bob", "Carol", "Dave")]
  groceries = await create_list(client, alice)
  for u in others:
    await add_collaborator(client, alice, groceries, u)
  task = await client.post(f"/todo-lists/{groceries['id']}/tasks", json={"title": "Buy milk"}, headers=alice["headers"])
  assert task.status_code == 201, task.text

  res = await client.delete(f"/todo-lists/{groceries['id']}", headers=others[0]["headers"])
  assert res.status_code == 403, res.text

  res = await client.delete(f"/todo-lists/{groceries['id']}", headers=alice["headers"])
  assert res.status_code == 200, res.text

  for u in others:
    notes = await notifications_of(u["id"], type="TODO_LIST_DELETED")
    assert len(notes) == 1
    assert notes[0].data["metadata"]["todoListName"] == "Groceries"
  assert await notifications_of(alice["id"], type="TODO_LIST_DELETED") == []

  res = await client.get(f"/todo-lists/{groceries['id']}", headers=alice["headers"])
  assert res.status_code == 404


@pytest.mark.anyio
async def test_join_request_approve_flow(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  groceries = await create_list(client, alice)

  res = await client.post(f"/todo-lists/{groceries['id']}/join", headers=bob["headers"])
  assert res.status_code == 202, res.text
  res = await client.post(f"/todo-lists/{groceries['id']}/join", headers=bob["headers"])
  assert res.status_code == 409, res.text

  assert len(await notifications_of(alice["id"], type="REQUEST_TO_JOIN")) == 1
  assert len(await notifications_of(bob["id"], type="JOIN_REQUEST_SENT")) == 1

  # Pending users do not get access yet.
  res = await client.get(f"/todo-lists/{groceries['id']}", headers=bob["headers"])
  assert res.status_code == 403

  res = await client.get(f"/todo-lists/{groceries['id']}/join-requests", headers=alice["headers"])
  assert [m["userId"] for m in res.json()] == [bob["id"]]

  res = await client.post(f"/todo-lists/{groceries['id']}/join-requests/{bob['id']}/approve", headers=alice["headers"])
  assert res.status_code == 200, res.text
  body = res.json()
  assert body["collaborators"] == [bob["id"]]
  assert body["pendingCollaborators"] == []
  assert len(await notifications_of(bob["id"], type="JOIN_REQUEST_ACCEPTED")) == 1

  res = await client.get(f"/todo-lists/{groceries['id']}/collaborators", headers=bob["headers"])
  assert [(m["userId"], m["role"]) for m in res.json()] == [(alice["id"], "owner"), (bob["id"], "collaborator")]


@pytest.mark.anyio
async def test_join_request_reject_flow(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  groceries = await create_list(client, alice)
  await client.post(f"/todo-lists/{groceries['id']}/join", headers=bob["headers"])

  res = await client.post(f"/todo-lists/{groceries['id']}/join-requests/{bob['id']}/reject", headers=alice["headers"])
  assert res.status_code == 200, res.text
  assert res.json()["pendingCollaborators"] == []
  assert len(await notifications_of(bob["id"], type="JOIN_REQUEST_REJECTED")) == 1

  res = await client.post(f"/todo-lists/{groceries['id']}/join-requests/{bob['id']}/reject", headers=alice["headers"])
  assert res.status_code == 404


@pytest.mark.anyio
async def test_owner_cannot_join_own_list(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  groceries = await create_list(client, alice)
  res = await client.post(f"/todo-lists/{groceries['id']}/join", headers=alice["headers"])
  assert res.status_code == 409


@pytest.mark.anyio
async def test_adding_pending_user_promotes_them(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  groceries = await create_list(client, alice)
  await client.post(f"/todo-lists/{groceries['id']}/join", headers=bob["headers"])

  body = await add_collaborator(client, alice, groceries, bob)
  assert body["collaborators"] == [bob["id"]]
  assert body["pendingCollaborators"] == []


@pytest.mark.anyio
async def test_leave_list(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")
  groceries = await create_list(client, alice)
  await add_collaborator(client, alice, groceries, bob)

  res = await client.post(f"/todo-lists/{groceries['id']}/leave", headers=alice["headers"])
  assert res.status_code == 409, res.text

  res = await client.post(f"/todo-lists/{groceries['id']}/leave", headers=bob["headers"])
  assert res.status_code == 200, res.text
  left = await notifications_of(alice["id"], type="COLLABORATOR_LEFT")
  assert len(left) == 1
  assert left[0].priority == "LOW"

  res = await client.post(f"/todo-lists/{groceries['id']}/leave", headers=bob["headers"])
  assert res.status_code == 404, res.text
