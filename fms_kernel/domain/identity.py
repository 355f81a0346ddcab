"""
Actor identity supplied by the external identity provider.

The kernel never authenticates.  The request entry point resolves the
caller's user id and role names once and hands an ``ActorContext`` to every
ledger, workflow and payment call; the kernel only authorizes against it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

ADMINISTRATOR_ROLE = "administrator"


@dataclass(frozen=True)
class ActorContext:
    """Authenticated caller: user id plus the role names they hold."""

    user_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, user_id: UUID, *roles: str) -> ActorContext:
        return cls(user_id=user_id, roles=frozenset(roles))

    def has_role(self, role_name: str) -> bool:
        return role_name in self.roles

    def can_act_as(self, role_name: str, administrator_role: str = ADMINISTRATOR_ROLE) -> bool:
        """True if the actor holds ``role_name`` or the administrator role."""
        return role_name in self.roles or administrator_role in self.roles
