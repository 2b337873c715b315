"""
Role management and member role assignment.

Role-list changes on a membership touch roles_updated_at so the UPDATE of the
membership row carries its version check.  A concurrent change to the same
member's roles therefore fails with TransientStoreError instead of silently
overwriting; routes retry the whole operation with run_with_store_retry().
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from parley.core.errors import ConflictError, NotFoundError, ValidationError
from parley.core.moderation import ModerationAction, authorize, authorize_permission, enforce
from parley.core.permissions import parse_permissions
from parley.models.role import Role, member_roles
from parley.models.server import Server
from parley.models.user import User
from parley.services.moderation_service import record_audit
from parley.services.retry import commit

logger = logging.getLogger(__name__)

ROLE_NAME_MAX = 100

ACTION_ADD = "add"
ACTION_REMOVE = "remove"
ACTION_SET = "set"
MEMBER_ROLE_ACTIONS = (ACTION_ADD, ACTION_REMOVE, ACTION_SET)


def _clean_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Role name is required")
    if len(name) > ROLE_NAME_MAX:
        raise ValidationError(f"Role name must be at most {ROLE_NAME_MAX} characters")
    return name


def _check_name_free(server: Server, name: str, exclude_role_id: int | None = None) -> None:
    lowered = name.lower()
    for role in server.roles:
        if role.id != exclude_role_id and role.name.lower() == lowered:
            raise ConflictError("A role with this name already exists")


def get_role(db: Session, server: Server, role_id: int) -> Role:
    role = db.query(Role).filter(Role.id == role_id, Role.server_id == server.id).first()
    if role is None:
        raise NotFoundError("Role not found")
    return role


def _resolve_roles(server: Server, role_ids) -> list[Role]:
    by_id = {role.id: role for role in server.roles}
    missing = [rid for rid in role_ids if rid not in by_id]
    if missing:
        raise NotFoundError(f"Role not found: {', '.join(str(rid) for rid in missing)}")
    return [by_id[rid] for rid in dict.fromkeys(role_ids)]


def list_roles(db: Session, server: Server, actor: User) -> list[tuple[Role, int]]:
    """Roles by position (highest first) with their member counts."""
    enforce(authorize_permission(actor.id, server))
    counts = dict(
        db.query(member_roles.c.role_id, func.count(member_roles.c.membership_id))
        .group_by(member_roles.c.role_id)
        .all()
    )
    roles = sorted(server.roles, key=lambda r: (-r.position, r.id))
    return [(role, counts.get(role.id, 0)) for role in roles]


def create_role(
    db: Session,
    server: Server,
    actor: User,
    name: str,
    permissions=(),
    color: str | None = None,
    mentionable: bool = True,
) -> Role:
    name = _clean_name(name)
    requested = parse_permissions(permissions or ())
    enforce(authorize(actor.id, server, ModerationAction.ROLE_CREATE, permissions=requested))
    _check_name_free(server, name)

    position = max((role.position for role in server.roles), default=0) + 1
    role = Role(server_id=server.id, name=name, position=position, mentionable=mentionable)
    if color:
        role.color = color
    role.set_permissions(requested)
    db.add(role)
    db.flush()
    record_audit(
        db,
        server,
        ModerationAction.ROLE_CREATE.value,
        actor.id,
        role.id,
        details={"name": name, "permissions": role.permissions, "position": position},
    )
    commit(db)
    db.refresh(role)
    return role


def update_role(db: Session, server: Server, actor: User, role: Role, changes: dict) -> Role:
    """Apply the provided fields (name, color, permissions, mentionable, position)."""
    requested = parse_permissions(changes["permissions"]) if changes.get("permissions") is not None else None
    position = changes.get("position")
    enforce(
        authorize(
            actor.id,
            server,
            ModerationAction.ROLE_UPDATE,
            roles=[role],
            permissions=requested,
            position=position,
        )
    )
    if changes.get("name") is not None:
        name = _clean_name(changes["name"])
        _check_name_free(server, name, exclude_role_id=role.id)
        role.name = name
    if changes.get("color") is not None:
        role.color = changes["color"]
    if changes.get("mentionable") is not None:
        role.mentionable = changes["mentionable"]
    if requested is not None:
        role.set_permissions(requested)
    if position is not None:
        role.position = position

    record_audit(
        db,
        server,
        ModerationAction.ROLE_UPDATE.value,
        actor.id,
        role.id,
        details={k: v for k, v in changes.items() if v is not None},
    )
    commit(db)
    db.refresh(role)
    return role


def delete_role(db: Session, server: Server, actor: User, role: Role) -> None:
    """Delete a role.  Its member_roles rows go in the same transaction."""
    enforce(authorize(actor.id, server, ModerationAction.ROLE_DELETE, roles=[role]))
    role_id, name = role.id, role.name
    db.delete(role)
    record_audit(db, server, ModerationAction.ROLE_DELETE.value, actor.id, role_id, details={"name": name})
    commit(db)


def _touch(membership) -> None:
    membership.roles_updated_at = datetime.now(timezone.utc)


def get_member_roles(db: Session, server: Server, actor: User, target_id: int) -> list[Role]:
    enforce(authorize_permission(actor.id, server))
    membership = server.member(target_id)
    if membership is None:
        raise NotFoundError("Member not found")
    return sorted(membership.roles, key=lambda r: (-r.position, r.id))


def update_member_roles(db: Session, server: Server, actor: User, target_id: int, action: str, role_ids) -> list[Role]:
    """
    add / remove / set the target's roles.

    set replaces the assignable roles and always keeps the default role.
    """
    if action not in MEMBER_ROLE_ACTIONS:
        raise ValidationError(f"Invalid action. Must be one of: {', '.join(MEMBER_ROLE_ACTIONS)}")
    requested = _resolve_roles(server, role_ids)
    membership = server.member(target_id)
    if membership is None:
        raise NotFoundError("Member not found")

    current = {role.id for role in membership.roles}
    if action == ACTION_ADD:
        to_add, to_remove = [r for r in requested if r.id not in current], []
        enforce(authorize(actor.id, server, ModerationAction.ROLE_ASSIGN, target_id=target_id, roles=requested))
    elif action == ACTION_REMOVE:
        to_add, to_remove = [], [r for r in requested if r.id in current]
        enforce(authorize(actor.id, server, ModerationAction.ROLE_REMOVE, target_id=target_id, roles=requested))
    else:
        wanted = {role.id for role in requested if not role.is_default}
        to_add = [r for r in requested if r.id in wanted and r.id not in current]
        to_remove = [r for r in membership.roles if not r.is_default and r.id not in wanted]
        if to_add:
            enforce(authorize(actor.id, server, ModerationAction.ROLE_ASSIGN, target_id=target_id, roles=to_add))
        if to_remove:
            enforce(authorize(actor.id, server, ModerationAction.ROLE_REMOVE, target_id=target_id, roles=to_remove))
        if not to_add and not to_remove:
            # Still an authorization question even when nothing changes.
            enforce(authorize(actor.id, server, ModerationAction.ROLE_ASSIGN, target_id=target_id))

    for role in to_add:
        membership.roles.append(role)
    for role in to_remove:
        membership.roles.remove(role)
    _touch(membership)
    record_audit(
        db,
        server,
        ModerationAction.ROLE_ASSIGN.value if action != ACTION_REMOVE else ModerationAction.ROLE_REMOVE.value,
        actor.id,
        target_id,
        details={
            "action": action,
            "added": [r.id for r in to_add],
            "removed": [r.id for r in to_remove],
        },
    )
    commit(db)
    return sorted(membership.roles, key=lambda r: (-r.position, r.id))
