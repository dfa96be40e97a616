from __future__ import annotations

from dataclasses import dataclass, field

from collabtodo.models import Task


@dataclass(frozen=True)
class ListMembership:
  """Ownership and membership snapshot of one todo list."""

  list_id: str
  owner_id: str
  collaborator_ids: frozenset[str] = field(default_factory=frozenset)
  pending_ids: frozenset[str] = field(default_factory=frozenset)

  def member_ids(self) -> set[str]:
    return {self.owner_id, *self.collaborator_ids}


def can_access_list(actor_id: str, membership: ListMembership) -> bool:
  return actor_id == membership.owner_id or actor_id in membership.collaborator_ids


def can_mutate_task(actor_id: str, membership: ListMembership, task: Task) -> bool:
  return actor_id == membership.owner_id or actor_id == task.created_by_id


def can_complete_task(actor_id: str, task: Task) -> bool:
  return not task.assigned_to_id or task.assigned_to_id == actor_id


def can_manage_collaborators(actor_id: str, membership: ListMembership) -> bool:
  return actor_id == membership.owner_id
