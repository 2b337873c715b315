"""
Voice REST API: channel voice sessions and 1-on-1 DM calls.

Endpoints:
  POST   /api/voice/sessions                      join (or start) a voice channel's session
  GET    /api/voice/sessions/{session_id}         session with its active participants
  POST   /api/voice/sessions/{session_id}/join    rejoin / refresh signaling ids
  PATCH  /api/voice/sessions/{session_id}/state   mute, deafen, video, screen share
  POST   /api/voice/sessions/{session_id}/leave   leave; the last one out ends the session
  POST   /api/voice/sessions/{session_id}/signal  relay offer / answer / ice-candidate
  POST   /api/voice/dm-calls                      call another user
  POST   /api/voice/dm-calls/{session_id}/accept
  POST   /api/voice/dm-calls/{session_id}/decline
  POST   /api/voice/dm-calls/{session_id}/end
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, get_fanout
from parley.core import events
from parley.core.errors import AuthorizationError, DenyReason, NotFoundError
from parley.core.moderation import authorize_permission, enforce
from parley.core.permissions import Permission
from parley.database import get_db
from parley.models.channel import Channel
from parley.models.user import User
from parley.models.voice_session import SESSION_CHANNEL, VoiceSession
from parley.schemas.voice import (
    DMCallCreate,
    SignalingIds,
    SignalRequest,
    VoiceJoin,
    VoiceParticipantResponse,
    VoiceSessionResponse,
    VoiceStateUpdate,
)
from parley.services import fanout, voice_service
from parley.services.community_service import get_server, get_user
from parley.services.fanout import NotificationFanout
from parley.services.retry import run_with_store_retry

router = APIRouter(prefix="/voice", tags=["voice"])


def _session_response(session: VoiceSession) -> VoiceSessionResponse:
    return VoiceSessionResponse.model_validate(session)


def _check_can_view(db: Session, session: VoiceSession, user: User) -> None:
    if session.type == SESSION_CHANNEL:
        if session.server_id is None:
            raise NotFoundError("Voice session not found")
        enforce(authorize_permission(user.id, get_server(db, session.server_id)))
    elif user.id not in session.participant_ids:
        raise AuthorizationError(DenyReason.NOT_A_PARTICIPANT, "You are not a participant in this call")


def _joined_payload(session: VoiceSession, user: User, participant) -> dict:
    return {
        "session_id": session.session_key,
        "channel_id": session.channel_id,
        "user": user.summary(),
        "participant": participant.to_dict(),
    }


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/sessions", response_model=VoiceSessionResponse)
async def join_voice_channel(
    data: VoiceJoin,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> VoiceSessionResponse:
    """Join the live session of a voice channel, creating it if the channel is empty."""

    def _join():
        channel = db.query(Channel).filter(Channel.id == data.channel_id).first()
        if channel is None:
            raise NotFoundError("Channel not found")
        return voice_service.join_channel(db, channel, current_user, peer_id=data.peer_id, socket_id=data.socket_id)

    session, participant = run_with_store_retry(db, _join)
    await notifier.emit(
        fanout.voice_event(
            events.VOICE_USER_JOINED, session, current_user.id, _joined_payload(session, current_user, participant)
        )
    )
    return _session_response(session)


@router.get("/sessions/{session_id}", response_model=VoiceSessionResponse)
async def get_voice_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> VoiceSessionResponse:
    session = voice_service.get_session(db, session_id)
    _check_can_view(db, session, current_user)
    return _session_response(session)


@router.post("/sessions/{session_id}/join", response_model=VoiceSessionResponse)
async def rejoin_voice_session(
    session_id: str,
    data: SignalingIds,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> VoiceSessionResponse:
    """Join an existing session by id.  Joining twice refreshes the signaling ids."""

    def _join():
        session = voice_service.get_session(db, session_id)
        if session.type == SESSION_CHANNEL:
            enforce(authorize_permission(current_user.id, get_server(db, session.server_id), Permission.CONNECT))
        participant = voice_service.join(db, session, current_user.id, peer_id=data.peer_id, socket_id=data.socket_id)
        return session, participant

    session, participant = run_with_store_retry(db, _join)
    await notifier.emit(
        fanout.voice_event(
            events.VOICE_USER_JOINED, session, current_user.id, _joined_payload(session, current_user, participant)
        )
    )
    return _session_response(session)


@router.patch("/sessions/{session_id}/state", response_model=VoiceParticipantResponse | None)
async def update_voice_state(
    session_id: str,
    data: VoiceStateUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
):
    """Merge the provided flags.  A user who is not in the session gets null back and nothing changes."""

    def _update():
        session = voice_service.get_session(db, session_id)
        return session, voice_service.update_state(db, session, current_user.id, data.model_dump(exclude_unset=True))

    session, participant = run_with_store_retry(db, _update)
    if participant is None:
        return None
    payload = {"session_id": session.session_key, "user_id": current_user.id, **participant.to_dict()}
    await notifier.emit(fanout.voice_event(events.VOICE_STATE_UPDATE, session, current_user.id, payload))
    return VoiceParticipantResponse.model_validate(participant)


@router.post("/sessions/{session_id}/leave", response_model=VoiceSessionResponse)
async def leave_voice_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> VoiceSessionResponse:
    def _leave():
        return voice_service.leave(db, voice_service.get_session(db, session_id), current_user.id)

    session = run_with_store_retry(db, _leave)
    payload = {
        "session_id": session.session_key,
        "channel_id": session.channel_id,
        "user_id": current_user.id,
        "session_ended": not session.is_active,
    }
    emissions = fanout.voice_event(events.VOICE_USER_LEFT, session, current_user.id, payload)
    if session.type != SESSION_CHANNEL and not session.is_active:
        emissions += fanout.voice_event(events.DM_CALL_ENDED, session, current_user.id, payload)
    await notifier.emit(emissions)
    return _session_response(session)


@router.post("/sessions/{session_id}/signal", status_code=204)
async def relay_signal(
    session_id: str,
    data: SignalRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> None:
    """Forward a WebRTC signaling message to one other participant."""
    session = voice_service.get_session(db, session_id)
    voice_service.signal(session, current_user.id, data.target_user_id, data.type)
    await notifier.emit(
        fanout.call_signal(session.session_key, current_user, data.target_user_id, data.type, data.signal)
    )


# ---------------------------------------------------------------------------
# DM calls
# ---------------------------------------------------------------------------


def _call_payload(session: VoiceSession, user: User) -> dict:
    return {
        "session_id": session.session_key,
        "is_video_call": session.is_video_call,
        "user": user.summary(),
    }


@router.post("/dm-calls", response_model=VoiceSessionResponse, status_code=201)
async def start_dm_call(
    data: DMCallCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> VoiceSessionResponse:
    recipient = get_user(db, data.recipient_id)
    session = run_with_store_retry(
        db,
        voice_service.initiate_dm_call,
        db,
        current_user,
        recipient,
        is_video_call=data.is_video_call,
        peer_id=data.peer_id,
        socket_id=data.socket_id,
    )
    await notifier.emit(fanout.to_user(recipient.id, events.DM_CALL_INCOMING, _call_payload(session, current_user)))
    return _session_response(session)


@router.post("/dm-calls/{session_id}/accept", response_model=VoiceSessionResponse)
async def accept_dm_call(
    session_id: str,
    data: SignalingIds | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> VoiceSessionResponse:
    ids = data or SignalingIds()

    def _accept():
        session = voice_service.get_session(db, session_id)
        voice_service.accept_dm_call(db, session, current_user, peer_id=ids.peer_id, socket_id=ids.socket_id)
        return session

    session = run_with_store_retry(db, _accept)
    await notifier.emit(
        fanout.voice_event(events.DM_CALL_ACCEPTED, session, current_user.id, _call_payload(session, current_user))
    )
    return _session_response(session)


async def _finish_call(db: Session, session_id: str, user: User, notifier: NotificationFanout, event: str):
    def _end():
        return voice_service.end_dm_call(db, voice_service.get_session(db, session_id), user)

    session = run_with_store_retry(db, _end)
    await notifier.emit(fanout.voice_event(event, session, user.id, _call_payload(session, user)))
    return _session_response(session)


@router.post("/dm-calls/{session_id}/decline", response_model=VoiceSessionResponse)
async def decline_dm_call(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> VoiceSessionResponse:
    """Declining ends the call for both sides."""
    return await _finish_call(db, session_id, current_user, notifier, events.DM_CALL_DECLINED)


@router.post("/dm-calls/{session_id}/end", response_model=VoiceSessionResponse)
async def end_dm_call(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> VoiceSessionResponse:
    return await _finish_call(db, session_id, current_user, notifier, events.DM_CALL_ENDED)
