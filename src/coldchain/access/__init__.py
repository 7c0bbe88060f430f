"""Access control: role assignments and authorisation checks."""

from coldchain.access.roles import Role, RoleRegistry, parse_role

__all__ = ["Role", "RoleRegistry", "parse_role"]
