"""
Notification fanout: turns one committed state change into realtime emissions.

The module-level functions are pure: each maps a domain event to a list of
Emission(room, event, payload) and never touches the network, so the mapping
can be tested without sockets.  NotificationFanout.emit() publishes a list of
emissions through the injected RealtimeChannel.

Rules the callers rely on:
  - emit() is only called after the mutation it describes has been committed.
  - A failed publish is logged at WARNING and dropped; it never propagates
    back into the request that made the mutation.
  - Paired emissions (personal notice + community broadcast, dm-received +
    dm-sent) are built from one payload dict so the two views cannot differ.
"""

import logging
from collections.abc import Iterable
from typing import NamedTuple

from parley.core import events
from parley.core.events import channel_room, server_room, user_room
from parley.services.realtime import RealtimeChannel

logger = logging.getLogger(__name__)


class Emission(NamedTuple):
    room: str
    event: str
    payload: dict


def _iso(value) -> str | None:
    return value.isoformat() if value else None


# ── Payload bodies ────────────────────────────────────────────────────────────


def channel_message_body(message) -> dict:
    return {
        "id": message.id,
        "channel_id": message.channel_id,
        "content": message.content,
        "author": message.user.summary(),
        "created_at": _iso(message.created_at),
        "edited_at": _iso(message.edited_at),
    }


def dm_message_body(message) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "author": message.author.summary(),
        "content": message.content,
        "created_at": _iso(message.created_at),
        "is_edited": message.is_edited,
        "edited_at": _iso(message.edited_at),
        "is_read": message.is_read,
    }


# ── Event → recipients ────────────────────────────────────────────────────────


def channel_message(message, server_id: int) -> list[Emission]:
    payload = channel_message_body(message)
    payload["server_id"] = server_id
    return [Emission(channel_room(message.channel_id), events.MESSAGE_NEW, payload)]


def direct_message(message, sender, recipient_id: int) -> list[Emission]:
    """dm-received to the recipient and dm-sent to the sender, sharing one body."""
    body = dm_message_body(message)
    return [
        Emission(
            user_room(recipient_id),
            events.DM_RECEIVED,
            {"conversation_id": message.conversation_id, "message": body, "sender": sender.summary()},
        ),
        Emission(
            user_room(sender.id),
            events.DM_SENT,
            {"conversation_id": message.conversation_id, "message": body, "recipient_id": recipient_id},
        ),
    ]


def dm_changed(event: str, message, conversation) -> list[Emission]:
    """dm-edited / dm-deleted go to both participants."""
    payload = {"conversation_id": conversation.id, "message_id": message.id}
    if event == events.DM_EDITED:
        payload["content"] = message.content
        payload["edited_at"] = _iso(message.edited_at)
    elif event == events.DM_DELETED:
        payload["deleted_at"] = _iso(message.deleted_at)
    return [Emission(user_room(uid), event, payload) for uid in conversation.participant_ids]


def dm_read(conversation, reader_id: int, message_ids: list[int], read_at) -> list[Emission]:
    """Read receipts go to the other participant (the authors of the messages)."""
    if not message_ids:
        return []
    payload = {
        "conversation_id": conversation.id,
        "reader_id": reader_id,
        "message_ids": message_ids,
        "read_at": _iso(read_at),
    }
    return [Emission(user_room(conversation.other_user_id(reader_id)), events.DM_READ, payload)]


def dm_typing(conversation, user, typing: bool) -> list[Emission]:
    event = events.DM_USER_TYPING if typing else events.DM_USER_STOPPED_TYPING
    payload = {"conversation_id": conversation.id, "user_id": user.id, "username": user.username}
    return [Emission(user_room(conversation.other_user_id(user.id)), event, payload)]


# personal notice, community broadcast
MEMBER_EVENTS: dict[str, tuple[str, str]] = {
    "join": (events.MEMBER_JOINED, events.MEMBER_JOINED),
    "kick": (events.KICKED_FROM_SERVER, events.MEMBER_KICKED),
    "ban": (events.BANNED_FROM_SERVER, events.MEMBER_BANNED),
    "timeout": (events.TIMEOUT_APPLIED, events.MEMBER_TIMEOUT),
    "warn": (events.WARNING_RECEIVED, events.MEMBER_WARNED),
}


def member_event(kind: str, notice: dict) -> list[Emission]:
    """
    Personal notice to the affected user plus a broadcast to the community room.

    notice must carry server_id and user_id; both emissions receive the same
    fields (reason, timestamp, ...) taken from the committed record.
    """
    personal_event, broadcast_event = MEMBER_EVENTS[kind]
    return [
        Emission(user_room(notice["user_id"]), personal_event, dict(notice)),
        Emission(server_room(notice["server_id"]), broadcast_event, dict(notice)),
    ]


def status_change(user, status: str, server_ids: Iterable[int], friend_ids: Iterable[int]) -> list[Emission]:
    """Every community room the user is in, plus every friend's personal room."""
    payload = {"user_id": user.id, "username": user.username, "status": status}
    emissions = [Emission(server_room(sid), events.USER_STATUS_UPDATED, payload) for sid in sorted(set(server_ids))]
    emissions += [
        Emission(user_room(fid), events.FRIEND_STATUS_UPDATED, payload) for fid in sorted(set(friend_ids))
    ]
    return emissions


def call_signal(session_key: str, sender, target_id: int, signal_type: str, signal) -> list[Emission]:
    """WebRTC signaling is unicast to the named target only."""
    payload = {
        "session_id": session_key,
        "type": signal_type,
        "signal": signal,
        "from_user_id": sender.id,
        "from_username": sender.username,
    }
    return [Emission(user_room(target_id), events.WEBRTC_SIGNAL, payload)]


def voice_event(event: str, session, actor_id: int, payload: dict) -> list[Emission]:
    """
    Channel sessions broadcast to the community room; DM sessions go to the
    other fixed participant's personal room.
    """
    if session.server_id is not None and session.channel_id is not None:
        return [Emission(server_room(session.server_id), event, payload)]
    return [Emission(user_room(uid), event, payload) for uid in session.participant_ids if uid != actor_id]


def to_user(user_id: int, event: str, payload: dict) -> list[Emission]:
    return [Emission(user_room(user_id), event, payload)]


# ── Delivery ──────────────────────────────────────────────────────────────────


class NotificationFanout:
    def __init__(self, channel: RealtimeChannel) -> None:
        self._channel = channel

    async def emit(self, emissions: Iterable[Emission]) -> int:
        """Publish each emission; returns how many the channel accepted."""
        accepted = 0
        for emission in emissions:
            try:
                await self._channel.publish(emission.room, emission.event, emission.payload)
                accepted += 1
            except Exception as exc:
                logger.warning("fanout: dropped %s for %s: %s", emission.event, emission.room, exc)
        return accepted

    async def subscribe(self, user_id: int, room: str) -> None:
        try:
            await self._channel.add_user_to_room(user_id, room)
        except Exception as exc:
            logger.warning("fanout: could not add user %s to %s: %s", user_id, room, exc)

    async def unsubscribe(self, user_id: int, room: str) -> None:
        try:
            await self._channel.remove_user_from_room(user_id, room)
        except Exception as exc:
            logger.warning("fanout: could not remove user %s from %s: %s", user_id, room, exc)
