"""
Permission vocabulary and role resolution.

Permission names are a closed enum; the exact upper-case strings are part of
the wire contract.  ADMINISTRATOR is a wildcard: a member holding it is
treated as holding every permission.

resolve_effective_permissions() and resolve_rank() are pure functions of the
member and the community's role list, so the moderation engine can call them
on either persisted or freshly constructed ORM objects.
"""

from collections.abc import Iterable
from enum import Enum

from parley.core.errors import ValidationError


class Permission(str, Enum):
    ADMINISTRATOR = "ADMINISTRATOR"
    MANAGE_CHANNELS = "MANAGE_CHANNELS"
    MANAGE_ROLES = "MANAGE_ROLES"
    MANAGE_MESSAGES = "MANAGE_MESSAGES"
    KICK_MEMBERS = "KICK_MEMBERS"
    BAN_MEMBERS = "BAN_MEMBERS"
    SEND_MESSAGES = "SEND_MESSAGES"
    READ_MESSAGES = "READ_MESSAGES"
    CONNECT = "CONNECT"
    SPEAK = "SPEAK"
    MUTE_MEMBERS = "MUTE_MEMBERS"
    DEAFEN_MEMBERS = "DEAFEN_MEMBERS"
    MOVE_MEMBERS = "MOVE_MEMBERS"


ALL_PERMISSIONS: frozenset[Permission] = frozenset(Permission)

# Granted to the default role of every new community.
DEFAULT_ROLE_PERMISSIONS: tuple[Permission, ...] = (
    Permission.SEND_MESSAGES,
    Permission.READ_MESSAGES,
    Permission.CONNECT,
    Permission.SPEAK,
)


def parse_permissions(names: Iterable[str]) -> frozenset[Permission]:
    """Convert raw permission strings, rejecting anything outside the vocabulary."""
    parsed: set[Permission] = set()
    invalid: list[str] = []
    for name in names:
        try:
            parsed.add(Permission(name))
        except ValueError:
            invalid.append(str(name))
    if invalid:
        raise ValidationError(f"Invalid permissions: {', '.join(invalid)}")
    return frozenset(parsed)


def _assigned_roles(member, community_roles: Iterable) -> list:
    assigned_ids = {role.id for role in member.roles}
    return [role for role in community_roles if role.id in assigned_ids]


def resolve_effective_permissions(member, community_roles: Iterable) -> frozenset[Permission]:
    """Union of permissions across the member's roles; ADMINISTRATOR expands to all."""
    granted: set[Permission] = set()
    for role in _assigned_roles(member, community_roles):
        granted |= role.permission_set
    if Permission.ADMINISTRATOR in granted:
        return ALL_PERMISSIONS
    return frozenset(granted)


def resolve_rank(member, community_roles: Iterable) -> int:
    """Highest position among the member's roles that exist in the community, else 0."""
    positions = [role.position for role in _assigned_roles(member, community_roles)]
    return max(positions, default=0)


def has_any(granted: frozenset[Permission], *required: Permission) -> bool:
    if Permission.ADMINISTRATOR in granted:
        return True
    return any(p in granted for p in required)
