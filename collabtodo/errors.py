from __future__ import annotations


class DomainError(Exception):
  status_code = 400

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class NotFound(DomainError):
  status_code = 404


class Forbidden(DomainError):
  status_code = 403


class Conflict(DomainError):
  status_code = 409


class InvalidRequest(DomainError):
  status_code = 400


class Unauthenticated(DomainError):
  status_code = 401
