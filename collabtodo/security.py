from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from passlib.context import CryptContext

from collabtodo.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_COOKIE_NAME = "ct_session"


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  return pwd_context.verify(password, password_hash)


def new_session_token() -> str:
  return "ct_" + secrets.token_urlsafe(32)


def session_token_hash(token: str) -> str:
  # Keyed hash so DB leaks don't allow offline token matching.
  key = (settings.app_secret or "").encode("utf-8")
  msg = (token or "").strip().encode("utf-8")
  return hmac.new(key, msg, hashlib.sha256).hexdigest()


def new_session_expires_at() -> datetime:
  return datetime.now(timezone.utc) + timedelta(hours=max(1, int(settings.session_ttl_hours)))


def bearer_token(authorization: str | None) -> str | None:
  if not authorization or not authorization.lower().startswith("bearer "):
    return None
  token = authorization.split(" ", 1)[1].strip()
  return token or None
