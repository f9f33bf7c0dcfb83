"""Acting user and role checks.

Authentication happens upstream; this service only receives the actor id and
its role memberships (see ``routers/deps.py`` for the header mapping).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from benefit_ledger.core.errors import AuthorizationError, ValidationError
from benefit_ledger.models.constants import Role


@dataclass(frozen=True)
class Actor:
    id: Optional[str]
    roles: FrozenSet[Role] = field(default_factory=frozenset)

    def has_role(self, role: Role) -> bool:
        return role in self.roles


def parse_roles(raw: Optional[str]) -> FrozenSet[Role]:
    """Parse a comma separated role list; unknown roles fail fast."""
    roles = set()
    for part in (raw or "").split(","):
        part = part.strip().lower()
        if not part:
            continue
        try:
            roles.add(Role(part))
        except ValueError:
            raise ValidationError(
                f"unknown role '{part}'", {"allowed": [r.value for r in Role]}
            ) from None
    return frozenset(roles)


def build_actor(actor_id: Optional[str], roles: Iterable[Role] = ()) -> Actor:
    actor_id = (actor_id or "").strip() or None
    return Actor(id=actor_id, roles=frozenset(roles))


def require_identity(actor: Actor) -> str:
    if not actor.id:
        raise AuthorizationError("actor identity required")
    return actor.id


def require_role(actor: Actor, role: Role, action: str) -> str:
    actor_id = require_identity(actor)
    if not actor.has_role(role):
        raise AuthorizationError(
            f"role '{role.value}' required to {action.replace('_', ' ')}",
            {"action": action, "required_role": role.value},
        )
    return actor_id
