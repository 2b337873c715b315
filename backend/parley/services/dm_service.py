"""
Direct-message conversations.

A conversation is keyed by the unordered pair of its two users, stored as
(low id, high id) under the unique_dm_pair constraint.  resolve_conversation()
relies on that constraint for exactly-once creation: when two first contacts
race, the loser's INSERT fails and it re-reads the winner's row.

append_message() writes the message and moves the conversation's
last_message / last_activity in one transaction, so the pointer and the
timestamp always describe the same, newest message.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.core.errors import (
    AuthorizationError,
    DenyReason,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from parley.models.dm_conversation import DMConversation, DMMessage, ordered_pair
from parley.models.user import User
from parley.services.retry import commit
from parley.services.social_service import blocked_between

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 2000


def _find_conversation(db: Session, low: int, high: int) -> DMConversation | None:
    return db.query(DMConversation).filter(DMConversation.user1_id == low, DMConversation.user2_id == high).first()


def resolve_conversation(db: Session, user_a_id: int, user_b_id: int) -> DMConversation:
    """Return the conversation for {a, b}, creating it on first contact."""
    if user_a_id == user_b_id:
        raise ValidationError("Cannot start a conversation with yourself")
    low, high = ordered_pair(user_a_id, user_b_id)

    conversation = _find_conversation(db, low, high)
    if conversation is not None:
        return conversation

    conversation = DMConversation(user1_id=low, user2_id=high, last_activity=datetime.now(timezone.utc))
    db.add(conversation)
    try:
        commit(db)
    except IntegrityError:
        # Another request created the pair first; use its row.
        db.rollback()
        conversation = _find_conversation(db, low, high)
        if conversation is None:
            raise TransientStoreError("Conversation could not be resolved, please retry")
        return conversation
    db.refresh(conversation)
    logger.info("DM conversation %s created for users %s/%s", conversation.id, low, high)
    return conversation


def list_conversations(db: Session, user: User) -> list[DMConversation]:
    return (
        db.query(DMConversation)
        .filter(or_(DMConversation.user1_id == user.id, DMConversation.user2_id == user.id))
        .order_by(DMConversation.last_activity.desc(), DMConversation.id.desc())
        .all()
    )


def get_conversation(db: Session, conversation_id: int, user: User) -> DMConversation:
    conversation = db.query(DMConversation).filter(DMConversation.id == conversation_id).first()
    if conversation is None:
        raise NotFoundError("Conversation not found")
    if not conversation.has_participant(user.id):
        raise AuthorizationError(DenyReason.NOT_A_PARTICIPANT, "You are not a participant in this conversation")
    return conversation


def _clean_content(content: str | None) -> str:
    content = (content or "").strip()
    if not content:
        raise ValidationError("Message cannot be empty")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_CONTENT_LENGTH} characters")
    return content


def append_message(db: Session, conversation: DMConversation, author: User, content: str) -> DMMessage:
    content = _clean_content(content)
    if not conversation.has_participant(author.id):
        raise AuthorizationError(DenyReason.NOT_A_PARTICIPANT, "You are not a participant in this conversation")
    if blocked_between(db, author.id, conversation.other_user_id(author.id)):
        raise AuthorizationError(DenyReason.BLOCKED, "You cannot message this user")

    message = DMMessage(
        conversation_id=conversation.id,
        author_id=author.id,
        content=content,
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    conversation.last_message = message
    conversation.last_activity = message.created_at
    commit(db)
    db.refresh(message)
    return message


def list_messages(
    db: Session,
    conversation: DMConversation,
    limit: int = 50,
    before_id: int | None = None,
) -> list[DMMessage]:
    """Visible messages, oldest first, at most limit of the newest before before_id."""
    query = db.query(DMMessage).filter(
        DMMessage.conversation_id == conversation.id,
        DMMessage.is_deleted == False,  # noqa: E712
    )
    if before_id is not None:
        query = query.filter(DMMessage.id < before_id)
    messages = query.order_by(DMMessage.created_at.desc(), DMMessage.id.desc()).limit(limit).all()
    messages.reverse()
    return messages


def _own_message(db: Session, message_id: int, user: User) -> DMMessage:
    message = (
        db.query(DMMessage)
        .filter(DMMessage.id == message_id, DMMessage.is_deleted == False)  # noqa: E712
        .first()
    )
    if message is None:
        raise NotFoundError("Message not found")
    if message.author_id != user.id:
        raise AuthorizationError(DenyReason.INSUFFICIENT_PERMISSIONS, "You can only modify your own messages")
    return message


def edit_message(db: Session, message_id: int, user: User, content: str) -> DMMessage:
    content = _clean_content(content)
    message = _own_message(db, message_id, user)
    message.content = content
    message.is_edited = True
    message.edited_at = datetime.now(timezone.utc)
    commit(db)
    db.refresh(message)
    return message


def delete_message(db: Session, message_id: int, user: User) -> DMMessage:
    """Soft delete: the row stays, flagged and hidden from listings."""
    message = _own_message(db, message_id, user)
    message.is_deleted = True
    message.deleted_at = datetime.now(timezone.utc)
    commit(db)
    db.refresh(message)
    return message


def mark_read(
    db: Session,
    conversation: DMConversation,
    reader: User,
    message_ids: list[int] | None = None,
) -> tuple[list[int], datetime]:
    """
    Mark the other participant's unread messages as read.

    Only the recipient can mark a message read; the reader's own messages are
    never touched.  Returns (ids marked, read_at).
    """
    read_at = datetime.now(timezone.utc)
    query = db.query(DMMessage).filter(
        DMMessage.conversation_id == conversation.id,
        DMMessage.author_id != reader.id,
        DMMessage.is_read == False,  # noqa: E712
        DMMessage.is_deleted == False,  # noqa: E712
    )
    if message_ids:
        query = query.filter(DMMessage.id.in_(message_ids))
    messages = query.all()
    for message in messages:
        message.is_read = True
        message.read_at = read_at
    if messages:
        commit(db)
    return [m.id for m in messages], read_at


def unread_count(db: Session, conversation: DMConversation, user: User) -> int:
    return (
        db.query(DMMessage)
        .filter(
            DMMessage.conversation_id == conversation.id,
            DMMessage.author_id != user.id,
            DMMessage.is_read == False,  # noqa: E712
            DMMessage.is_deleted == False,  # noqa: E712
        )
        .count()
    )
