"""
The /ws realtime socket.

Protocol:
  1. Client sends {"type": "auth", "token": "<jwt>"} as its first frame.
  2. Server answers "authenticated" and places the socket in user:<id> and
     in server:<id> for every community the user belongs to.
  3. Client frames carry their fields at the top level next to "type":
       join-channel     {"channel_id": 1}
       leave-channel    {"channel_id": 1}
       dm-typing-start  {"conversation_id": 1}
       dm-typing-stop   {"conversation_id": 1}
       update-status    {"status": "away"}
       presence-heartbeat
     Server frames are always {"type": <event>, "data": {...}}.

Going online when the first socket of a user connects and offline when the
last one closes is published through the fanout like any other status change.
"""

import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from parley.core import events
from parley.core.errors import AuthorizationError, NotFoundError, ParleyError, ValidationError
from parley.core.events import channel_room, server_room
from parley.core.moderation import authorize_permission, enforce
from parley.core.permissions import Permission
from parley.models.channel import Channel
from parley.models.user import User
from parley.redis import presence as presence_mgr
from parley.services import dm_service, fanout, presence_service
from parley.services.auth_service import get_user_from_token
from parley.services.community_service import member_server_ids
from parley.services.fanout import NotificationFanout
from parley.services.realtime import RealtimeChannel
from parley.websocket.manager import ConnectionManager

logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


async def _authenticate(websocket: WebSocket, db: Session) -> User | None:
    """Expect the first message to be {"type": "auth", "token": "<jwt>"}."""
    await websocket.accept()  # must accept before receive_text()
    try:
        raw = await websocket.receive_text()
        data = json.loads(raw)
    except (WebSocketDisconnect, json.JSONDecodeError):
        await websocket.close(code=POLICY_VIOLATION)
        return None

    if not isinstance(data, dict) or data.get("type") != events.CLIENT_AUTH:
        await websocket.close(code=POLICY_VIOLATION)
        return None

    user = get_user_from_token(str(data.get("token", "")), db)
    if user is None:
        await websocket.close(code=POLICY_VIOLATION)
        return None
    return user


def _int_field(data: dict, name: str) -> int:
    try:
        return int(data[name])
    except (KeyError, TypeError, ValueError):
        raise ValidationError(f"{name} is required and must be an integer") from None


class RealtimeSession:
    """One authenticated socket and the frames it may send."""

    def __init__(
        self,
        websocket: WebSocket,
        socket_id: str,
        user: User,
        db: Session,
        connections: ConnectionManager,
        notifier: NotificationFanout,
    ) -> None:
        self.websocket = websocket
        self.socket_id = socket_id
        self.user = user
        self.db = db
        self.connections = connections
        self.notifier = notifier

    async def handle(self, data: dict[str, Any]) -> None:
        event_type = data.get("type")
        if event_type == events.CLIENT_JOIN_CHANNEL:
            await self.join_channel(_int_field(data, "channel_id"))
        elif event_type == events.CLIENT_LEAVE_CHANNEL:
            channel_id = _int_field(data, "channel_id")
            self.connections.leave(self.socket_id, channel_room(channel_id))
            await self.connections.send_personal(self.websocket, events.CHANNEL_LEFT, {"channel_id": channel_id})
        elif event_type in (events.CLIENT_DM_TYPING_START, events.CLIENT_DM_TYPING_STOP):
            conversation = dm_service.get_conversation(self.db, _int_field(data, "conversation_id"), self.user)
            typing = event_type == events.CLIENT_DM_TYPING_START
            await self.notifier.emit(fanout.dm_typing(conversation, self.user, typing))
        elif event_type == events.CLIENT_UPDATE_STATUS:
            emissions = await presence_service.change_status(self.db, self.user, str(data.get("status", "")))
            await self.notifier.emit(emissions)
        elif event_type == events.CLIENT_HEARTBEAT:
            await presence_mgr.heartbeat(self.user.id)
        else:
            raise ValidationError(f"Unknown event type: {event_type!r}")

    async def join_channel(self, channel_id: int) -> None:
        """Subscribe to channel:<id>.  Requires READ_MESSAGES in the channel's community."""
        channel = self.db.query(Channel).filter(Channel.id == channel_id).first()
        if channel is None:
            raise NotFoundError("Channel not found")
        enforce(authorize_permission(self.user.id, channel.server, Permission.READ_MESSAGES))
        self.connections.join(self.socket_id, channel_room(channel_id))
        await self.connections.send_personal(
            self.websocket, events.CHANNEL_JOINED, {"channel_id": channel_id, "server_id": channel.server_id}
        )

    async def send_error(self, exc: ParleyError) -> None:
        payload = {"detail": exc.message, "code": exc.code}
        if isinstance(exc, AuthorizationError):
            payload["reason"] = exc.reason.value
        await self.connections.send_personal(self.websocket, events.ERROR, payload)


async def _publish_status(db: Session, user: User, status: str, notifier: NotificationFanout) -> None:
    await notifier.emit(await presence_service.change_status(db, user, status))


async def realtime_ws_handler(
    websocket: WebSocket,
    db: Session,
    connections: ConnectionManager,
    realtime: RealtimeChannel,
) -> None:
    """Full lifecycle handler for a /ws connection."""
    user = await _authenticate(websocket, db)
    if user is None:
        return

    notifier = NotificationFanout(realtime)
    first_socket = not connections.is_user_connected(user.id)
    socket_id = connections.connect(websocket, user.id)
    for server_id in member_server_ids(db, user.id):
        connections.join(socket_id, server_room(server_id))
    session = RealtimeSession(websocket, socket_id, user, db, connections, notifier)

    try:
        await connections.send_personal(
            websocket, events.AUTHENTICATED, {"user": user.summary(), "socket_id": socket_id}
        )
        if first_socket:
            await _publish_status(db, user, "online", notifier)

        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(data, dict):
                continue

            try:
                await session.handle(data)
            except ParleyError as exc:
                await session.send_error(exc)
            except WebSocketDisconnect:
                raise
            except Exception as exc:
                logger.error(
                    "Error handling event %r from user %s: %s", data.get("type"), user.id, exc, exc_info=True
                )

    except WebSocketDisconnect:
        pass
    finally:
        connections.disconnect(socket_id)
        if not connections.is_user_connected(user.id):
            await _publish_status(db, user, presence_mgr.OFFLINE, notifier)
