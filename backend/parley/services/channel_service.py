import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.core.errors import AuthorizationError, ConflictError, DenyReason, NotFoundError, ValidationError
from parley.core.moderation import active_timeout, authorize_permission, enforce
from parley.core.permissions import Permission
from parley.models.channel import CHANNEL_TEXT, VALID_CHANNEL_TYPES, Channel
from parley.models.message import Message
from parley.models.server import Server
from parley.models.user import User
from parley.services.retry import commit

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


def get_channel(db: Session, server: Server, channel_id: int) -> Channel:
    """
    Fetch a channel and verify it belongs to the given server, so a member of
    one server cannot reach another server's channels by guessing ids.
    """
    channel = db.query(Channel).filter(Channel.id == channel_id, Channel.server_id == server.id).first()
    if channel is None:
        raise NotFoundError("Channel not found")
    return channel


def list_channels(db: Session, server: Server, actor: User) -> list[Channel]:
    enforce(authorize_permission(actor.id, server))
    return db.query(Channel).filter(Channel.server_id == server.id).order_by(Channel.id).all()


def create_channel(
    db: Session, server: Server, actor: User, name: str, type: str = CHANNEL_TEXT, topic: str | None = None
) -> Channel:
    if type not in VALID_CHANNEL_TYPES:
        raise ValidationError(f"Invalid channel type: {type}")
    enforce(authorize_permission(actor.id, server, Permission.MANAGE_CHANNELS))
    if any(c.name == name for c in server.channels):
        raise ConflictError("A channel with this name already exists in the server")

    channel = Channel(name=name, type=type, topic=topic, server_id=server.id, created_by=actor.id)
    db.add(channel)
    try:
        commit(db)
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("A channel with this name already exists in the server") from exc
    db.refresh(channel)
    logger.info("Channel %s (%s) created in server %s", channel.id, type, server.id)
    return channel


def delete_channel(db: Session, server: Server, actor: User, channel: Channel) -> None:
    enforce(authorize_permission(actor.id, server, Permission.MANAGE_CHANNELS))
    db.delete(channel)
    commit(db)


def post_message(db: Session, server: Server, channel: Channel, author: User, content: str) -> Message:
    """Post to a text channel.  Timed-out members cannot post until the timeout lapses."""
    content = (content or "").strip()
    if not content:
        raise ValidationError("Message content is required")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message content exceeds {MAX_MESSAGE_LENGTH} characters")
    if channel.type != CHANNEL_TEXT:
        raise ValidationError("Messages can only be posted to text channels")

    enforce(authorize_permission(author.id, server, Permission.SEND_MESSAGES))
    current = active_timeout(server, author.id)
    if current is not None:
        raise AuthorizationError(
            DenyReason.TIMED_OUT, f"You are timed out until {current.timeout_until.isoformat()}"
        )

    message = Message(content=content, user_id=author.id, channel_id=channel.id)
    db.add(message)
    commit(db)
    db.refresh(message)
    return message


def list_messages(
    db: Session,
    server: Server,
    channel: Channel,
    actor: User,
    limit: int = 50,
    before_id: int | None = None,
) -> list[Message]:
    """Newest `limit` messages before before_id, returned oldest first."""
    enforce(authorize_permission(actor.id, server, Permission.READ_MESSAGES))
    query = db.query(Message).filter(
        Message.channel_id == channel.id,
        Message.is_deleted == False,  # noqa: E712
    )
    if before_id is not None:
        query = query.filter(Message.id < before_id)
    messages = query.order_by(Message.id.desc()).limit(limit).all()
    return list(reversed(messages))
