"""
Community lifecycle: creation, membership by invite, leaving.

Functions take a Session, mutate, commit, and return what the route needs to
build its response and its fanout.  None of them emit realtime events.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.config import settings
from parley.core.errors import AuthorizationError, ConflictError, DenyReason, NotFoundError, ValidationError
from parley.core.moderation import authorize_permission, enforce
from parley.core.permissions import DEFAULT_ROLE_PERMISSIONS, Permission
from parley.models.channel import CHANNEL_TEXT, CHANNEL_VOICE, Channel
from parley.models.role import Role
from parley.models.server import Server, generate_invite_code
from parley.models.server_membership import ServerMembership
from parley.models.user import User
from parley.services.retry import commit

logger = logging.getLogger(__name__)


def get_server(db: Session, server_id: int) -> Server:
    server = db.query(Server).filter(Server.id == server_id).first()
    if server is None:
        raise NotFoundError("Server not found")
    return server


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


def member_server_ids(db: Session, user_id: int) -> list[int]:
    rows = db.query(ServerMembership.server_id).filter(ServerMembership.user_id == user_id).all()
    return [server_id for (server_id,) in rows]


def list_user_servers(db: Session, user: User) -> list[Server]:
    return (
        db.query(Server)
        .join(ServerMembership, ServerMembership.server_id == Server.id)
        .filter(ServerMembership.user_id == user.id)
        .order_by(Server.id)
        .all()
    )


def create_server(db: Session, owner: User, name: str, description: str | None = None, icon_url: str | None = None):
    """
    Create a community owned by owner.

    Also creates the default role (position 0) and a "general" text channel
    plus a "General" voice channel.  The owner becomes the first member.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Server name is required")

    server = Server(name=name, description=description, icon_url=icon_url, owner_id=owner.id)
    db.add(server)
    db.flush()  # get server.id before adding children

    default_role = Role(server_id=server.id, name=settings.DEFAULT_ROLE_NAME, position=0, is_default=True)
    default_role.set_permissions(DEFAULT_ROLE_PERMISSIONS)
    db.add(default_role)

    membership = ServerMembership(server_id=server.id, user_id=owner.id)
    membership.roles.append(default_role)
    db.add(membership)

    db.add(Channel(name="general", type=CHANNEL_TEXT, server_id=server.id, created_by=owner.id))
    db.add(Channel(name="General", type=CHANNEL_VOICE, server_id=server.id, created_by=owner.id))

    commit(db)
    db.refresh(server)
    logger.info("Server %s created by user %s", server.id, owner.id)
    return server


def regenerate_invite(db: Session, server: Server, actor: User) -> str:
    enforce(authorize_permission(actor.id, server, Permission.MANAGE_CHANNELS))
    server.invite_code = generate_invite_code()
    commit(db)
    return server.invite_code


def join_by_invite(db: Session, user: User, invite_code: str) -> tuple[Server, dict]:
    """Add user to the server behind invite_code.  Returns (server, member-joined notice)."""
    server = db.query(Server).filter(Server.invite_code == invite_code).first()
    if server is None:
        raise NotFoundError("Invalid invite code")
    if any(ban.user_id == user.id for ban in server.bans):
        raise AuthorizationError(DenyReason.BANNED, "You are banned from this server")
    if server.member(user.id) is not None:
        raise ConflictError("Already a member of this server")

    joined_at = datetime.now(timezone.utc)
    membership = ServerMembership(server_id=server.id, user_id=user.id, joined_at=joined_at)
    if server.default_role is not None:
        membership.roles.append(server.default_role)
    db.add(membership)
    try:
        commit(db)
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Already a member of this server") from exc

    notice = {
        "server_id": server.id,
        "server": server.summary(),
        "user_id": user.id,
        "user": user.summary(),
        "timestamp": joined_at.isoformat(),
    }
    logger.info("User %s joined server %s", user.id, server.id)
    return server, notice


def leave_server(db: Session, server: Server, user: User) -> None:
    if server.is_owner(user.id):
        raise AuthorizationError(DenyReason.CANNOT_TARGET_OWNER, "The server owner cannot leave the server")
    membership = server.member(user.id)
    if membership is None:
        raise AuthorizationError(DenyReason.NOT_A_MEMBER)
    db.delete(membership)
    commit(db)
    logger.info("User %s left server %s", user.id, server.id)
