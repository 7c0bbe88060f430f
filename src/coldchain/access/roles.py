"""Role registry: which principals may perform which operations.

Authorisation is a set-membership check over (principal, role) pairs.
A principal may hold several roles. The carrier role is implicit: it is
the carrier named on a shipment, not an entry in this registry.

Invariants enforced:
- Blank principals cannot be assigned roles.
- require() is the only authorisation gate; it never mutates.
"""

from __future__ import annotations

import enum
from typing import Iterable

from coldchain.errors import AuthorizationError, ValidationError


class Role(str, enum.Enum):
    """Capabilities a principal can hold."""
    ADMIN = "admin"
    OPERATOR = "operator"
    SENSOR = "sensor"
    SENDER = "sender"


def parse_role(value: str) -> Role:
    try:
        return Role(value.strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown role {value!r}: expected one of {[r.value for r in Role]}"
        ) from None


class RoleRegistry:
    """Registry of role assignments.

    Thread-safety: this class is not thread-safe. The service serialises
    all access under its own lock.
    """

    def __init__(self) -> None:
        self._assignments: dict[str, set[Role]] = {}

    def has_role(self, principal: str, role: Role) -> bool:
        return role in self._assignments.get(principal, ())

    def require(self, principal: str, role: Role) -> None:
        """Raise AuthorizationError unless principal holds role."""
        if not self.has_role(principal, role):
            raise AuthorizationError(principal, f"role {role.value}")

    def assign(self, role: Role, principal: str) -> bool:
        """Add (principal, role). Returns False if it was already present."""
        canonical = principal.strip() if isinstance(principal, str) else ""
        if not canonical:
            raise ValidationError("Cannot assign a role to a blank principal")
        held = self._assignments.setdefault(canonical, set())
        if role in held:
            return False
        held.add(role)
        return True

    def unassign(self, role: Role, principal: str) -> bool:
        """Remove (principal, role). Returns False if it was not present."""
        held = self._assignments.get(principal)
        if not held or role not in held:
            return False
        held.discard(role)
        if not held:
            del self._assignments[principal]
        return True

    def roles_of(self, principal: str) -> frozenset[Role]:
        return frozenset(self._assignments.get(principal, ()))

    def principals_with(self, role: Role) -> list[str]:
        return sorted(p for p, roles in self._assignments.items() if role in roles)

    def assignments(self) -> Iterable[tuple[str, Role]]:
        for principal in sorted(self._assignments):
            for role in sorted(self._assignments[principal], key=lambda r: r.value):
                yield principal, role

    @property
    def count(self) -> int:
        return sum(len(r) for r in self._assignments.values())
