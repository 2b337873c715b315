"""
Moderation authority engine.

authorize() is the single place that decides whether an actor may perform a
moderation or role action inside a server.  Rules are evaluated in order and
the first applicable one wins:

  1. The owner is allowed, subject only to the action sanity checks
     (no self-targeting of kick/ban/timeout/warn, default role untouchable,
     no duplicate ban, owner's own roles cannot be removed).
  2. The owner can never be the target.
  3. Kick/ban/timeout/warn on yourself is denied.  Editing your own roles is
     allowed and skips the rank comparison.
  4. The actor must be a member.
  5. The actor must hold the action's permission (ADMINISTRATOR implies all).
  6. The target's rank must be strictly below the actor's.  Equal rank blocks.
  7. Action-specific checks: duplicate ban, role at/above the actor's rank,
     default role protection, permission escalation through role edits.

The engine never mutates anything; it returns a Decision and the caller
applies the mutation only when decision.allowed is true.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from parley.config import settings
from parley.core.errors import AuthorizationError, ConflictError, DenyReason, ValidationError
from parley.core.permissions import Permission, has_any, resolve_effective_permissions, resolve_rank


class ModerationAction(str, Enum):
    KICK = "kick"
    BAN = "ban"
    UNBAN = "unban"
    TIMEOUT = "timeout"
    REMOVE_TIMEOUT = "remove_timeout"
    WARN = "warn"
    ROLE_ASSIGN = "role_assign"
    ROLE_REMOVE = "role_remove"
    ROLE_CREATE = "role_create"
    ROLE_UPDATE = "role_update"
    ROLE_DELETE = "role_delete"


# Any one of the listed permissions is sufficient.
REQUIRED_PERMISSIONS: dict[ModerationAction, tuple[Permission, ...]] = {
    ModerationAction.KICK: (Permission.KICK_MEMBERS,),
    ModerationAction.BAN: (Permission.BAN_MEMBERS,),
    ModerationAction.UNBAN: (Permission.BAN_MEMBERS,),
    ModerationAction.TIMEOUT: (Permission.MUTE_MEMBERS,),
    ModerationAction.REMOVE_TIMEOUT: (Permission.MUTE_MEMBERS,),
    ModerationAction.WARN: (Permission.MANAGE_MESSAGES, Permission.KICK_MEMBERS),
    ModerationAction.ROLE_ASSIGN: (Permission.MANAGE_ROLES,),
    ModerationAction.ROLE_REMOVE: (Permission.MANAGE_ROLES,),
    ModerationAction.ROLE_CREATE: (Permission.MANAGE_ROLES,),
    ModerationAction.ROLE_UPDATE: (Permission.MANAGE_ROLES,),
    ModerationAction.ROLE_DELETE: (Permission.MANAGE_ROLES,),
}

# Actions that may never target the actor, owner included.
SELF_DENIED = frozenset(
    {
        ModerationAction.KICK,
        ModerationAction.BAN,
        ModerationAction.UNBAN,
        ModerationAction.TIMEOUT,
        ModerationAction.REMOVE_TIMEOUT,
        ModerationAction.WARN,
    }
)

# Actions that compare the target's rank with the actor's.  Unban targets a
# ban record rather than a membership, so it has no rank to compare.
RANKED = frozenset(
    {
        ModerationAction.KICK,
        ModerationAction.BAN,
        ModerationAction.TIMEOUT,
        ModerationAction.REMOVE_TIMEOUT,
        ModerationAction.WARN,
        ModerationAction.ROLE_ASSIGN,
        ModerationAction.ROLE_REMOVE,
    }
)

ROLE_MEMBER_ACTIONS = frozenset({ModerationAction.ROLE_ASSIGN, ModerationAction.ROLE_REMOVE})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)


ALLOW = Decision(allowed=True)


def authorize(
    actor_id: int,
    server,
    action: ModerationAction,
    *,
    target_id: int | None = None,
    roles: Iterable = (),
    permissions: Iterable[Permission] | None = None,
    position: int | None = None,
) -> Decision:
    """
    Decide whether actor_id may perform action in server.

    target_id is the affected user for member actions.  roles carries the
    roles being assigned/removed (ROLE_ASSIGN / ROLE_REMOVE) or the role being
    edited (ROLE_UPDATE / ROLE_DELETE).  permissions is the permission set a
    ROLE_CREATE / ROLE_UPDATE would write, or None when unchanged; position
    is the new position a ROLE_UPDATE would write, or None.
    """
    roles = list(roles)
    requested = frozenset(permissions) if permissions is not None else None
    targets_self = target_id is not None and target_id == actor_id

    # 1. owner
    if server.is_owner(actor_id):
        if targets_self and action in SELF_DENIED:
            return Decision.deny(DenyReason.CANNOT_TARGET_SELF)
        if action == ModerationAction.ROLE_REMOVE and targets_self:
            return Decision.deny(DenyReason.CANNOT_TARGET_OWNER)
        return _action_checks(server, action, target_id, roles, requested, position, owner=True)

    # 2. owner as target
    if target_id is not None and server.is_owner(target_id):
        return Decision.deny(DenyReason.CANNOT_TARGET_OWNER)

    # 3. self-targeting
    if targets_self and action in SELF_DENIED:
        return Decision.deny(DenyReason.CANNOT_TARGET_SELF)

    # 4. membership
    actor = server.member(actor_id)
    if actor is None:
        return Decision.deny(DenyReason.NOT_A_MEMBER)

    # 5. permission
    granted = resolve_effective_permissions(actor, server.roles)
    if not has_any(granted, *REQUIRED_PERMISSIONS[action]):
        return Decision.deny(DenyReason.INSUFFICIENT_PERMISSIONS)

    # 6. rank
    actor_rank = resolve_rank(actor, server.roles)
    if action in RANKED and not targets_self:
        target = server.member(target_id) if target_id is not None else None
        target_rank = resolve_rank(target, server.roles) if target is not None else 0
        if target_rank >= actor_rank:
            return Decision.deny(DenyReason.RANK_TOO_LOW)

    # 7. action specifics
    return _action_checks(
        server,
        action,
        target_id,
        roles,
        requested,
        position,
        owner=False,
        actor_rank=actor_rank,
        granted=granted,
    )


def _action_checks(
    server,
    action: ModerationAction,
    target_id: int | None,
    roles: list,
    requested: frozenset | None,
    position: int | None,
    *,
    owner: bool,
    actor_rank: int = 0,
    granted: frozenset = frozenset(),
) -> Decision:
    if action == ModerationAction.BAN:
        if any(ban.user_id == target_id for ban in server.bans):
            return Decision.deny(DenyReason.ALREADY_BANNED)

    elif action in ROLE_MEMBER_ACTIONS:
        if any(role.is_default for role in roles):
            return Decision.deny(DenyReason.DEFAULT_ROLE_PROTECTED)
        if not owner and any(role.position >= actor_rank for role in roles):
            return Decision.deny(DenyReason.ROLE_ABOVE_RANK)

    elif action == ModerationAction.ROLE_DELETE:
        if any(role.is_default for role in roles):
            return Decision.deny(DenyReason.DEFAULT_ROLE_PROTECTED)
        if not owner and any(role.position >= actor_rank for role in roles):
            return Decision.deny(DenyReason.ROLE_ABOVE_RANK)

    elif action in (ModerationAction.ROLE_CREATE, ModerationAction.ROLE_UPDATE):
        if (requested is not None or position is not None) and any(role.is_default for role in roles):
            return Decision.deny(DenyReason.DEFAULT_ROLE_PROTECTED)
        if not owner:
            if action == ModerationAction.ROLE_UPDATE and any(role.position >= actor_rank for role in roles):
                return Decision.deny(DenyReason.ROLE_ABOVE_RANK)
            if position is not None and position >= actor_rank:
                return Decision.deny(DenyReason.ROLE_ABOVE_RANK)
            if requested is not None and Permission.ADMINISTRATOR not in granted and not requested <= granted:
                return Decision.deny(DenyReason.PERMISSION_ESCALATION)

    return ALLOW


def enforce(decision: Decision) -> None:
    """Raise the error matching a denied decision; return silently on allow."""
    if decision.allowed:
        return
    if decision.reason == DenyReason.ALREADY_BANNED:
        raise ConflictError("User is already banned")
    raise AuthorizationError(decision.reason)


# ── Timeouts ──────────────────────────────────────────────────────────────────


def validate_timeout_duration(minutes) -> int:
    """Reject durations outside the configured inclusive bounds."""
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValidationError("Timeout duration must be an integer number of minutes")
    if not settings.TIMEOUT_MIN_MINUTES <= minutes <= settings.TIMEOUT_MAX_MINUTES:
        raise ValidationError(
            f"Timeout duration must be between {settings.TIMEOUT_MIN_MINUTES} "
            f"and {settings.TIMEOUT_MAX_MINUTES} minutes"
        )
    return minutes


def timeout_expiry(start: datetime, minutes: int) -> datetime:
    return start + timedelta(minutes=minutes)


def authorize_permission(actor_id: int, server, *required: Permission) -> Decision:
    """
    Gate for non-targeted actions (creating channels, posting, reading the
    audit log...).  Same owner bypass and membership rules as authorize();
    any one of required suffices.
    """
    if server.is_owner(actor_id):
        return ALLOW
    actor = server.member(actor_id)
    if actor is None:
        return Decision.deny(DenyReason.NOT_A_MEMBER)
    if required and not has_any(resolve_effective_permissions(actor, server.roles), *required):
        return Decision.deny(DenyReason.INSUFFICIENT_PERMISSIONS)
    return ALLOW


def active_timeout(server, user_id: int, now: datetime | None = None):
    """The user's unexpired timeout in server, or None.  Expiry is evaluated here, at read time."""
    for record in server.timeouts:
        if record.user_id == user_id and record.is_active(now):
            return record
    return None
