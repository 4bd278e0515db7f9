"""
Actor roles and the resolver protocol used for privileged operations.

Rollback and post-lock corrections are gated on the actor's
role.  The kernel only depends on the RoleResolver protocol; the concrete
resolver is built from configuration (royalty_config.bridges) or injected
by the embedding application.
"""

from enum import Enum
from typing import Protocol
from uuid import UUID


class ActorRole(str, Enum):
    """Authority levels, in ascending order of privilege."""

    CREATOR = "creator"
    REVIEWER = "reviewer"
    ADMINISTRATOR = "administrator"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def has_authority(self, required: "ActorRole") -> bool:
        return self.rank >= required.rank


_ROLE_RANK = {
    ActorRole.CREATOR: 0,
    ActorRole.REVIEWER: 1,
    ActorRole.ADMINISTRATOR: 2,
}


class RoleResolver(Protocol):
    """Resolves an actor_id to their role."""

    def resolve_role(self, actor_id: UUID) -> ActorRole: ...


class StaticRoleResolver:
    """
    Resolver backed by a fixed set of administrator ids.

    Every other actor is a REVIEWER.
    """

    def __init__(self, administrator_ids: frozenset[UUID] | set[UUID] = frozenset()):
        self._administrators = frozenset(administrator_ids)

    def resolve_role(self, actor_id: UUID) -> ActorRole:
        if actor_id in self._administrators:
            return ActorRole.ADMINISTRATOR
        return ActorRole.REVIEWER
