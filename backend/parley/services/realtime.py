"""
Realtime channel: the room-addressed publish primitive the fanout writes to.

Three implementations share one interface:

  NullRealtimeChannel   drops everything (realtime unavailable, CLI tools).
  LocalRealtimeChannel  delivers straight to this worker's ConnectionManager.
  RedisRealtimeChannel  publishes to a Redis pub/sub channel; a relay task in
                        every worker delivers each message to its own sockets,
                        so a user connected to worker B hears events raised on
                        worker A.

The channel is built once in the app lifespan, stored on app.state and handed
to request handlers through a FastAPI dependency.  Nothing else holds a
reference to it.

Delivery is best-effort, at most once per connected socket.  There is no
acknowledgement and no replay: a user who is not connected misses the event.
"""

import asyncio
import json
import logging

from parley.redis import client as redis_client
from parley.redis.keys import realtime_channel
from parley.websocket.manager import ConnectionManager

logger = logging.getLogger(__name__)


class RealtimeChannel:
    """Interface.  publish() may raise; the fanout treats any error as a dropped event."""

    async def publish(self, room: str, event: str, payload: dict) -> None:
        raise NotImplementedError

    async def add_user_to_room(self, user_id: int, room: str) -> None:
        """Subscribe every connected socket of user_id to room."""
        raise NotImplementedError

    async def remove_user_from_room(self, user_id: int, room: str) -> None:
        raise NotImplementedError

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class NullRealtimeChannel(RealtimeChannel):
    async def publish(self, room: str, event: str, payload: dict) -> None:
        logger.debug("realtime disabled, dropping %s for %s", event, room)

    async def add_user_to_room(self, user_id: int, room: str) -> None:
        return None

    async def remove_user_from_room(self, user_id: int, room: str) -> None:
        return None


class LocalRealtimeChannel(RealtimeChannel):
    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections

    async def publish(self, room: str, event: str, payload: dict) -> None:
        await self._connections.emit(room, event, payload)

    async def add_user_to_room(self, user_id: int, room: str) -> None:
        self._connections.join_user(user_id, room)

    async def remove_user_from_room(self, user_id: int, room: str) -> None:
        self._connections.leave_user(user_id, room)


# Relay message kinds
_OP_EMIT = "emit"
_OP_JOIN = "join"
_OP_LEAVE = "leave"


class RedisRealtimeChannel(RealtimeChannel):
    """Pub/sub relay.  Room membership changes travel over the same channel as events."""

    def __init__(self, redis, connections: ConnectionManager) -> None:
        self._redis = redis
        self._connections = connections
        self._pubsub = None
        self._task: asyncio.Task | None = None

    async def _send(self, message: dict) -> None:
        await redis_client.publish(realtime_channel(), json.dumps(message, default=str))

    async def publish(self, room: str, event: str, payload: dict) -> None:
        await self._send({"op": _OP_EMIT, "room": room, "event": event, "payload": payload})

    async def add_user_to_room(self, user_id: int, room: str) -> None:
        await self._send({"op": _OP_JOIN, "user_id": user_id, "room": room})

    async def remove_user_from_room(self, user_id: int, room: str) -> None:
        await self._send({"op": _OP_LEAVE, "user_id": user_id, "room": room})

    async def start(self) -> None:
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(realtime_channel())
        self._task = asyncio.create_task(self._relay())
        logger.info("Realtime relay subscribed to %s", realtime_channel())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(realtime_channel())
            await self._pubsub.aclose()
            self._pubsub = None

    async def _relay(self) -> None:
        async for message in self._pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                await self.deliver(json.loads(message["data"]))
            except Exception as exc:
                logger.warning("realtime relay failed to deliver message: %s", exc)

    async def deliver(self, message: dict) -> None:
        """Apply one relayed message to this worker's sockets."""
        op = message.get("op")
        if op == _OP_EMIT:
            await self._connections.emit(message["room"], message["event"], message["payload"])
        elif op == _OP_JOIN:
            self._connections.join_user(int(message["user_id"]), message["room"])
        elif op == _OP_LEAVE:
            self._connections.leave_user(int(message["user_id"]), message["room"])
        else:
            logger.warning("realtime relay: unknown op %r", op)


def build_realtime_channel(connections: ConnectionManager) -> RealtimeChannel:
    """Redis relay when Redis is up, otherwise in-process delivery."""
    redis = redis_client.get_redis()
    if redis is None:
        return LocalRealtimeChannel(connections)
    return RedisRealtimeChannel(redis, connections)
