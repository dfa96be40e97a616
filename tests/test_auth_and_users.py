from __future__ import annotations

import pytest
from httpx import AsyncClient

from collabtodo.security import SESSION_COOKIE_NAME
from tests.conftest import register


@pytest.mark.anyio
async def test_register_rejects_duplicate_email(client: AsyncClient) -> None:
  await register(client, "Alice")
  res = await client.post("/auth/register", json={"name": "Other", "email": "ALICE@example.com", "password": "secret123"})
  assert res.status_code == 409, res.text


@pytest.mark.anyio
async def test_login_sets_cookie_and_cookie_authenticates(client: AsyncClient) -> None:
  await client.post("/auth/register", json={"name": "Alice", "email": "alice@example.com", "password": "secret123"})
  res = await client.post("/auth/login", json={"email": "alice@example.com", "password": "secret123"})
  assert res.status_code == 200, res.text
  assert f"{SESSION_COOKIE_NAME}=" in res.headers.get("set-cookie", "")
  assert res.json()["token"].startswith("ct_")

  me = await client.get("/auth/me", cookies={SESSION_COOKIE_NAME: res.json()["token"]})
  assert me.status_code == 200, me.text
  assert me.json()["email"] == "alice@example.com"

  bad = await client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong"})
  assert bad.status_code == 401


@pytest.mark.anyio
async def test_logout_revokes_sessions(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  res = await client.post("/auth/logout", headers=alice["headers"])
  assert res.status_code == 200, res.text
  res = await client.get("/auth/me", headers=alice["headers"])
  assert res.status_code == 401


@pytest.mark.anyio
async def test_profile_update_and_public_profile(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  bob = await register(client, "Bob")

  res = await client.patch("/users/me", json={"name": "Alice A.", "avatarUrl": "https://img.example/a.png"}, headers=alice["headers"])
  assert res.status_code == 200, res.text
  assert res.json()["name"] == "Alice A."

  res = await client.get(f"/users/{alice['id']}", headers=bob["headers"])
  assert res.status_code == 200, res.text
  assert res.json() == {"id": alice["id"], "name": "Alice A.", "avatarUrl": "https://img.example/a.png"}

  res = await client.get("/users/00000000-0000-0000-0000-000000000000", headers=bob["headers"])
  assert res.status_code == 404


@pytest.mark.anyio
async def test_password_change_signs_out_everywhere(client: AsyncClient) -> None:
  alice = await register(client, "Alice")
  res = await client.post(
    "/users/me/password", json={"currentPassword": "nope", "newPassword": "another123"}, headers=alice["headers"]
  )
  assert res.status_code == 400

  res = await client.post(
    "/users/me/password", json={"currentPassword": "secret123", "newPassword": "another123"}, headers=alice["headers"]
  )
  assert res.status_code == 200, res.text
  res = await client.get("/auth/me", headers=alice["headers"])
  assert res.status_code == 401

  res = await client.post("/auth/login", json={"email": alice["email"], "password": "another123"})
  assert res.status_code == 200, res.text


@pytest.mark.anyio
async def test_health_and_version(client: AsyncClient) -> None:
  res = await client.get("/health")
  assert res.status_code == 200
  assert res.json()["ok"] is True
  res = await client.get("/version")
  assert set(res.json()) == {"version", "buildSha"}
