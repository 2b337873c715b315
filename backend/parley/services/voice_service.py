"""
Voice and call sessions.

Lifecycle: a session is created by its first join, stays active while it has
at least one participant, and ends the moment the last participant leaves
(is_active=False, ended_at stamped).  Ended sessions are kept.

Every join/leave touches the session's updated_at so the session row's
version check serializes concurrent membership changes.  A clash surfaces as
TransientStoreError and the route retries the whole step.

A dm session has exactly two possible participants, fixed at creation; a
channel session admits any member with CONNECT, up to max_participants.

A voice channel has at most one active session, enforced by the partial
unique index uq_voice_active_channel.  When two first joiners race, the
loser's INSERT fails, surfaces as TransientStoreError, and its retry joins
the winner's session.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.config import settings
from parley.core.errors import (
    AuthorizationError,
    ConflictError,
    DenyReason,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from parley.core.events import SIGNAL_TYPES
from parley.core.moderation import authorize_permission, enforce
from parley.core.permissions import Permission
from parley.models.channel import CHANNEL_VOICE, Channel
from parley.models.dm_conversation import ordered_pair
from parley.models.user import User
from parley.models.voice_session import SESSION_CHANNEL, SESSION_DM, STATE_FIELDS, VoiceParticipant, VoiceSession
from parley.services.retry import commit
from parley.services.social_service import blocked_between

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_session(db: Session, session_key: str) -> VoiceSession:
    session = db.query(VoiceSession).filter(VoiceSession.session_key == session_key).first()
    if session is None:
        raise NotFoundError("Voice session not found")
    return session


def _commit_membership_change(db: Session) -> None:
    try:
        commit(db)
    except IntegrityError as exc:
        # Concurrent join of the same user; the retry takes the rejoin path.
        db.rollback()
        raise TransientStoreError("Voice session changed concurrently, please retry") from exc


# ── Lifecycle ─────────────────────────────────────────────────────────────────


def join(
    db: Session,
    session: VoiceSession,
    user_id: int,
    peer_id: str | None = None,
    socket_id: str | None = None,
) -> VoiceParticipant:
    """
    Add user_id to the session.

    Idempotent per user: a rejoin refreshes the signaling ids and join time of
    the existing participant record instead of adding a second one.
    """
    if not session.is_active:
        raise ConflictError("Voice session has ended")
    if session.type == SESSION_DM and user_id not in session.participant_ids:
        raise AuthorizationError(DenyReason.NOT_A_PARTICIPANT, "You are not a participant in this call")

    now = _now()
    participant = session.participant(user_id)
    if participant is not None:
        participant.peer_id = peer_id
        participant.socket_id = socket_id
        participant.joined_at = now
    else:
        if len(session.active_users) >= session.max_participants:
            raise ConflictError("Voice session is full")
        participant = VoiceParticipant(user_id=user_id, joined_at=now, peer_id=peer_id, socket_id=socket_id)
        session.active_users.append(participant)
    session.updated_at = now
    _commit_membership_change(db)
    db.refresh(session)
    return session.participant(user_id)


def update_state(db: Session, session: VoiceSession, user_id: int, partial: dict) -> VoiceParticipant | None:
    """Merge the provided state flags into the participant.  Returns None if user_id is not in the session."""
    participant = session.participant(user_id)
    if participant is None:
        return None
    changes = {field: bool(partial[field]) for field in STATE_FIELDS if partial.get(field) is not None}
    if not changes:
        return participant
    for field, value in changes.items():
        setattr(participant, field, value)
    commit(db)
    return participant


def _end(session: VoiceSession, now: datetime) -> None:
    session.active_users.clear()
    session.is_active = False
    session.ended_at = now
    session.updated_at = now


def leave(db: Session, session: VoiceSession, user_id: int) -> VoiceSession:
    """Remove user_id; the session ends when nobody is left."""
    participant = session.participant(user_id)
    if participant is None:
        raise AuthorizationError(DenyReason.NOT_A_PARTICIPANT, "You are not in this voice session")

    now = _now()
    session.active_users.remove(participant)
    session.updated_at = now
    if not session.active_users:
        _end(session, now)
        logger.info("Voice session %s ended", session.session_key)
    _commit_membership_change(db)
    db.refresh(session)
    return session


def signal(session: VoiceSession, sender_id: int, target_id: int, signal_type: str) -> None:
    """Validate a WebRTC signaling hop.  Both ends must be active participants."""
    if signal_type not in SIGNAL_TYPES:
        raise ValidationError(f"Invalid signal type. Must be one of: {', '.join(SIGNAL_TYPES)}")
    if session.participant(sender_id) is None:
        raise AuthorizationError(DenyReason.NOT_A_PARTICIPANT, "You are not in this voice session")
    if session.participant(target_id) is None:
        raise NotFoundError("Target user is not in this voice session")


# ── Channel sessions ──────────────────────────────────────────────────────────


def active_channel_session(db: Session, channel_id: int) -> VoiceSession | None:
    return (
        db.query(VoiceSession)
        .filter(
            VoiceSession.type == SESSION_CHANNEL,
            VoiceSession.channel_id == channel_id,
            VoiceSession.is_active == True,  # noqa: E712
        )
        .first()
    )


def join_channel(
    db: Session,
    channel: Channel,
    user: User,
    peer_id: str | None = None,
    socket_id: str | None = None,
) -> tuple[VoiceSession, VoiceParticipant]:
    """Join the channel's live session, creating it if nobody is connected."""
    if channel.type != CHANNEL_VOICE:
        raise ValidationError("Channel is not a voice channel")
    enforce(authorize_permission(user.id, channel.server, Permission.CONNECT))

    session = active_channel_session(db, channel.id)
    if session is None:
        session = VoiceSession(
            session_key=f"channel_{channel.id}_{uuid.uuid4().hex[:12]}",
            type=SESSION_CHANNEL,
            channel_id=channel.id,
            server_id=channel.server_id,
            created_by_id=user.id,
            max_participants=settings.VOICE_MAX_PARTICIPANTS,
        )
        db.add(session)
        try:
            db.flush()
        except IntegrityError as exc:
            # Another first joiner opened the channel's session in the meantime;
            # the retry finds it and joins it instead.
            db.rollback()
            raise TransientStoreError("Voice session changed concurrently, please retry") from exc
        logger.info("Voice session %s created for channel %s", session.session_key, channel.id)
    participant = join(db, session, user.id, peer_id=peer_id, socket_id=socket_id)
    return session, participant


# ── DM calls ──────────────────────────────────────────────────────────────────


def active_dm_call(db: Session, a: int, b: int) -> VoiceSession | None:
    low, high = ordered_pair(a, b)
    return (
        db.query(VoiceSession)
        .filter(
            and_(
                VoiceSession.type == SESSION_DM,
                VoiceSession.participant1_id == low,
                VoiceSession.participant2_id == high,
                VoiceSession.is_active == True,  # noqa: E712
            )
        )
        .first()
    )


def initiate_dm_call(
    db: Session,
    caller: User,
    recipient: User,
    is_video_call: bool = False,
    peer_id: str | None = None,
    socket_id: str | None = None,
) -> VoiceSession:
    """Create a dm session with the caller as its first participant."""
    if recipient.id == caller.id:
        raise ValidationError("You cannot call yourself")
    if blocked_between(db, caller.id, recipient.id):
        raise AuthorizationError(DenyReason.BLOCKED, "You cannot call this user")
    if active_dm_call(db, caller.id, recipient.id) is not None:
        raise ConflictError("There is already an active call between you and this user")

    low, high = ordered_pair(caller.id, recipient.id)
    session = VoiceSession(
        session_key=f"dm_call_{low}_{high}_{uuid.uuid4().hex[:12]}",
        type=SESSION_DM,
        participant1_id=low,
        participant2_id=high,
        is_video_call=is_video_call,
        created_by_id=caller.id,
        max_participants=2,
    )
    db.add(session)
    db.flush()
    join(db, session, caller.id, peer_id=peer_id, socket_id=socket_id)
    logger.info("DM call %s initiated by user %s", session.session_key, caller.id)
    return session


def _require_dm_participant(session: VoiceSession, user_id: int) -> None:
    if session.type != SESSION_DM:
        raise ValidationError("Not a DM call")
    if user_id not in session.participant_ids:
        raise AuthorizationError(DenyReason.NOT_A_PARTICIPANT, "You are not a participant in this call")


def accept_dm_call(
    db: Session,
    session: VoiceSession,
    user: User,
    peer_id: str | None = None,
    socket_id: str | None = None,
) -> VoiceParticipant:
    _require_dm_participant(session, user.id)
    return join(db, session, user.id, peer_id=peer_id, socket_id=socket_id)


def end_dm_call(db: Session, session: VoiceSession, user: User) -> VoiceSession:
    """Decline or hang up.  Either participant ends the call for both."""
    _require_dm_participant(session, user.id)
    if not session.is_active:
        raise ConflictError("Call has already ended")
    _end(session, _now())
    _commit_membership_change(db)
    db.refresh(session)
    logger.info("DM call %s ended by user %s", session.session_key, user.id)
    return session
