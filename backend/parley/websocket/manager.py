import json
import logging
import uuid
from collections import defaultdict

from fastapi import WebSocket

from parley.core.events import user_room

logger = logging.getLogger(__name__)


def frame(event: str, payload: dict) -> str:
    """Wire format of every server → client message."""
    return json.dumps({"type": event, "data": payload}, default=str)


class ConnectionManager:
    """Tracks the WebSockets connected to this worker and the rooms they sit in.

    Each accepted socket gets a socket_id.  Rooms are plain strings
    (user:<id>, server:<id>, channel:<id>); a socket is always in its own
    user room and may join any number of others.  A user with several tabs
    open has several sockets in the same user room.
    """

    def __init__(self) -> None:
        # socket_id -> WebSocket
        self._sockets: dict[str, WebSocket] = {}
        # socket_id -> user_id
        self._owners: dict[str, int] = {}
        # room -> {socket_id}
        self._rooms: dict[str, set[str]] = defaultdict(set)
        # socket_id -> {room}
        self._joined: dict[str, set[str]] = defaultdict(set)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def connect(self, websocket: WebSocket, user_id: int) -> str:
        """Register an already-accepted WebSocket and place it in its user room."""
        socket_id = uuid.uuid4().hex
        self._sockets[socket_id] = websocket
        self._owners[socket_id] = user_id
        self.join(socket_id, user_room(user_id))
        logger.info("WebSocket %s connected (user %s)", socket_id, user_id)
        return socket_id

    def disconnect(self, socket_id: str) -> None:
        for room in self._joined.pop(socket_id, set()):
            members = self._rooms.get(room)
            if members is not None:
                members.discard(socket_id)
                if not members:
                    del self._rooms[room]
        self._sockets.pop(socket_id, None)
        user_id = self._owners.pop(socket_id, None)
        logger.info("WebSocket %s disconnected (user %s)", socket_id, user_id)

    def is_user_connected(self, user_id: int) -> bool:
        return bool(self._rooms.get(user_room(user_id)))

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def join(self, socket_id: str, room: str) -> None:
        if socket_id not in self._sockets:
            return
        self._rooms[room].add(socket_id)
        self._joined[socket_id].add(room)

    def leave(self, socket_id: str, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(socket_id)
            if not members:
                del self._rooms[room]
        self._joined.get(socket_id, set()).discard(room)

    def join_user(self, user_id: int, room: str) -> None:
        """Put every socket of user_id into room."""
        for socket_id in list(self._rooms.get(user_room(user_id), ())):
            self.join(socket_id, room)

    def leave_user(self, user_id: int, room: str) -> None:
        for socket_id in list(self._rooms.get(user_room(user_id), ())):
            self.leave(socket_id, room)

    def room_sockets(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    def rooms_of(self, socket_id: str) -> set[str]:
        return set(self._joined.get(socket_id, ()))

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def emit(self, room: str, event: str, payload: dict) -> int:
        """Send an event to every socket in room.  Returns the number delivered.

        Sockets that fail to receive are assumed dead and dropped.
        """
        text = frame(event, payload)
        delivered = 0
        dead: list[str] = []
        for socket_id in list(self._rooms.get(room, ())):
            ws = self._sockets.get(socket_id)
            if ws is None:
                continue
            try:
                await ws.send_text(text)
                delivered += 1
            except Exception:
                dead.append(socket_id)
        for socket_id in dead:
            self.disconnect(socket_id)
        return delivered

    async def send_personal(self, websocket: WebSocket, event: str, payload: dict) -> None:
        await websocket.send_text(frame(event, payload))
