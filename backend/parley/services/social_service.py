"""Friends and blocks."""

import logging
from datetime import datetime, timezone

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.core.errors import AuthorizationError, ConflictError, DenyReason, NotFoundError, ValidationError
from parley.models.social import REQUEST_ACCEPTED, REQUEST_DECLINED, REQUEST_PENDING, FriendRequest, Friendship, UserBlock
from parley.models.user import User
from parley.services.retry import commit

logger = logging.getLogger(__name__)


def _other_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
    if user is None:
        raise NotFoundError("User not found")
    return user


def _pair_filter(column_a, column_b, a: int, b: int):
    return or_(and_(column_a == a, column_b == b), and_(column_a == b, column_b == a))


# ── Blocks ────────────────────────────────────────────────────────────────────


def is_blocked_by(db: Session, blocker_id: int, blocked_id: int) -> bool:
    return (
        db.query(UserBlock).filter(UserBlock.blocker_id == blocker_id, UserBlock.blocked_id == blocked_id).first()
        is not None
    )


def blocked_between(db: Session, a: int, b: int) -> bool:
    return db.query(UserBlock).filter(_pair_filter(UserBlock.blocker_id, UserBlock.blocked_id, a, b)).first() is not None


def block_user(db: Session, user: User, target_id: int) -> UserBlock:
    """Block target_id.  Any friendship or pending request between the two is dropped."""
    if target_id == user.id:
        raise ValidationError("You cannot block yourself")
    _other_user(db, target_id)
    if is_blocked_by(db, user.id, target_id):
        raise ConflictError("User is already blocked")

    block = UserBlock(blocker_id=user.id, blocked_id=target_id)
    db.add(block)
    db.query(Friendship).filter(_pair_filter(Friendship.user_id, Friendship.friend_id, user.id, target_id)).delete(
        synchronize_session="fetch"
    )
    now = datetime.now(timezone.utc)
    pending = (
        db.query(FriendRequest)
        .filter(
            _pair_filter(FriendRequest.from_user_id, FriendRequest.to_user_id, user.id, target_id),
            FriendRequest.status == REQUEST_PENDING,
        )
        .all()
    )
    for request in pending:
        request.status = REQUEST_DECLINED
        request.responded_at = now
    try:
        commit(db)
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("User is already blocked") from exc
    logger.info("User %s blocked user %s", user.id, target_id)
    return block


def unblock_user(db: Session, user: User, target_id: int) -> None:
    block = db.query(UserBlock).filter(UserBlock.blocker_id == user.id, UserBlock.blocked_id == target_id).first()
    if block is None:
        raise NotFoundError("User is not blocked")
    db.delete(block)
    commit(db)


def list_blocked(db: Session, user: User) -> list[User]:
    blocks = db.query(UserBlock).filter(UserBlock.blocker_id == user.id).order_by(UserBlock.id).all()
    return [block.blocked for block in blocks]


# ── Friends ───────────────────────────────────────────────────────────────────


def friend_ids(db: Session, user_id: int) -> list[int]:
    rows = db.query(Friendship.friend_id).filter(Friendship.user_id == user_id).all()
    return [friend_id for (friend_id,) in rows]


def are_friends(db: Session, a: int, b: int) -> bool:
    return db.query(Friendship).filter(Friendship.user_id == a, Friendship.friend_id == b).first() is not None


def list_friends(db: Session, user: User) -> list[User]:
    friendships = db.query(Friendship).filter(Friendship.user_id == user.id).order_by(Friendship.id).all()
    return [f.friend for f in friendships]


def send_friend_request(db: Session, user: User, target_id: int) -> FriendRequest:
    if target_id == user.id:
        raise ValidationError("You cannot send a friend request to yourself")
    _other_user(db, target_id)
    if blocked_between(db, user.id, target_id):
        raise AuthorizationError(DenyReason.BLOCKED, "Cannot send a friend request to this user")
    if are_friends(db, user.id, target_id):
        raise ConflictError("You are already friends with this user")
    pending = (
        db.query(FriendRequest)
        .filter(
            _pair_filter(FriendRequest.from_user_id, FriendRequest.to_user_id, user.id, target_id),
            FriendRequest.status == REQUEST_PENDING,
        )
        .first()
    )
    if pending is not None:
        raise ConflictError("A friend request is already pending between you and this user")

    request = FriendRequest(from_user_id=user.id, to_user_id=target_id, status=REQUEST_PENDING)
    db.add(request)
    commit(db)
    db.refresh(request)
    return request


def list_friend_requests(db: Session, user: User) -> tuple[list[FriendRequest], list[FriendRequest]]:
    """(incoming, outgoing) pending requests."""
    incoming = (
        db.query(FriendRequest)
        .filter(FriendRequest.to_user_id == user.id, FriendRequest.status == REQUEST_PENDING)
        .order_by(FriendRequest.id)
        .all()
    )
    outgoing = (
        db.query(FriendRequest)
        .filter(FriendRequest.from_user_id == user.id, FriendRequest.status == REQUEST_PENDING)
        .order_by(FriendRequest.id)
        .all()
    )
    return incoming, outgoing


def _incoming_request(db: Session, user: User, request_id: int) -> FriendRequest:
    request = (
        db.query(FriendRequest)
        .filter(
            FriendRequest.id == request_id,
            FriendRequest.to_user_id == user.id,
            FriendRequest.status == REQUEST_PENDING,
        )
        .first()
    )
    if request is None:
        raise NotFoundError("Friend request not found")
    return request


def accept_friend_request(db: Session, user: User, request_id: int) -> FriendRequest:
    request = _incoming_request(db, user, request_id)
    request.status = REQUEST_ACCEPTED
    request.responded_at = datetime.now(timezone.utc)
    db.add(Friendship(user_id=user.id, friend_id=request.from_user_id))
    db.add(Friendship(user_id=request.from_user_id, friend_id=user.id))
    try:
        commit(db)
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("You are already friends with this user") from exc
    return request


def decline_friend_request(db: Session, user: User, request_id: int) -> FriendRequest:
    request = _incoming_request(db, user, request_id)
    request.status = REQUEST_DECLINED
    request.responded_at = datetime.now(timezone.utc)
    commit(db)
    return request


def remove_friend(db: Session, user: User, friend_id: int) -> None:
    removed = (
        db.query(Friendship)
        .filter(_pair_filter(Friendship.user_id, Friendship.friend_id, user.id, friend_id))
        .delete(synchronize_session="fetch")
    )
    if not removed:
        raise NotFoundError("Friend not found")
    commit(db)
