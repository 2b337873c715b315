"""
Tests for the fanout mapping, the connection manager and the realtime
channel implementations.  No sockets or Redis: fake websockets record the
frames they are sent.
"""

import json
from types import SimpleNamespace

import pytest

from parley.core import events
from parley.services import fanout
from parley.services.fanout import Emission, NotificationFanout
from parley.services.realtime import LocalRealtimeChannel, NullRealtimeChannel, RedisRealtimeChannel
from parley.websocket.manager import ConnectionManager


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


class FailingChannel(NullRealtimeChannel):
    async def publish(self, room, event, payload):
        raise ConnectionError("redis down")


def _user(user_id: int, username: str):
    return SimpleNamespace(id=user_id, username=username, avatar_url=None, summary=lambda: {"id": user_id})


# ---------------------------------------------------------------------------
# Pure mapping
# ---------------------------------------------------------------------------


class TestFanoutMapping:
    def test_member_event_pairs_share_fields(self):
        notice = {"server_id": 5, "user_id": 9, "reason": "spam", "timestamp": "t"}
        personal, broadcast = fanout.member_event("ban", notice)
        assert personal == Emission("user:9", events.BANNED_FROM_SERVER, notice)
        assert broadcast == Emission("server:5", events.MEMBER_BANNED, notice)
        assert personal.payload is not broadcast.payload

    def test_status_change_rooms(self):
        emissions = fanout.status_change(_user(1, "alice"), "away", [3, 2, 3], [7])
        assert [(e.room, e.event) for e in emissions] == [
            ("server:2", events.USER_STATUS_UPDATED),
            ("server:3", events.USER_STATUS_UPDATED),
            ("user:7", events.FRIEND_STATUS_UPDATED),
        ]

    def test_dm_read_skips_empty(self):
        conversation = SimpleNamespace(id=1, other_user_id=lambda uid: 2)
        assert fanout.dm_read(conversation, 1, [], None) == []

    def test_dm_typing_goes_to_other_participant(self):
        conversation = SimpleNamespace(id=4, other_user_id=lambda uid: 8)
        (emission,) = fanout.dm_typing(conversation, _user(3, "alice"), typing=False)
        assert emission.room == "user:8"
        assert emission.event == events.DM_USER_STOPPED_TYPING

    def test_voice_event_routing(self):
        channel_session = SimpleNamespace(server_id=1, channel_id=2, participant_ids=())
        dm_session = SimpleNamespace(server_id=None, channel_id=None, participant_ids=(4, 6))
        assert [e.room for e in fanout.voice_event("x", channel_session, 4, {})] == ["server:1"]
        assert [e.room for e in fanout.voice_event("x", dm_session, 4, {})] == ["user:6"]

    def test_call_signal_is_unicast(self):
        (emission,) = fanout.call_signal("s1", _user(1, "alice"), 2, "offer", {"sdp": "v"})
        assert emission.room == "user:2"
        assert emission.payload["from_user_id"] == 1


class TestNotificationFanout:
    async def test_failed_publish_is_dropped(self):
        notifier = NotificationFanout(FailingChannel())
        accepted = await notifier.emit([Emission("user:1", "e", {}), Emission("user:2", "e", {})])
        assert accepted == 0

    async def test_null_channel_accepts(self):
        notifier = NotificationFanout(NullRealtimeChannel())
        assert await notifier.emit(fanout.to_user(1, "e", {})) == 1


# ---------------------------------------------------------------------------
# ConnectionManager
# ---------------------------------------------------------------------------


class TestConnectionManager:
    async def test_emit_reaches_room_members_only(self):
        manager = ConnectionManager()
        a, b = FakeWebSocket(), FakeWebSocket()
        sa = manager.connect(a, 1)
        manager.connect(b, 2)
        manager.join(sa, "server:9")

        delivered = await manager.emit("server:9", "member-joined", {"user_id": 3})
        assert delivered == 1
        assert a.sent == [{"type": "member-joined", "data": {"user_id": 3}}]
        assert b.sent == []

    async def test_join_user_covers_every_socket(self):
        manager = ConnectionManager()
        tab1, tab2 = FakeWebSocket(), FakeWebSocket()
        manager.connect(tab1, 1)
        manager.connect(tab2, 1)
        manager.join_user(1, "server:4")
        assert await manager.emit("server:4", "e", {}) == 2

        manager.leave_user(1, "server:4")
        assert await manager.emit("server:4", "e", {}) == 0

    async def test_dead_socket_dropped(self):
        manager = ConnectionManager()
        socket_id = manager.connect(FakeWebSocket(fail=True), 1)
        assert await manager.emit("user:1", "e", {}) == 0
        assert manager.rooms_of(socket_id) == set()
        assert not manager.is_user_connected(1)

    def test_disconnect_cleans_rooms(self):
        manager = ConnectionManager()
        socket_id = manager.connect(FakeWebSocket(), 1)
        manager.join(socket_id, "channel:3")
        manager.disconnect(socket_id)
        assert manager.room_sockets("channel:3") == set()
        assert not manager.is_user_connected(1)


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class TestLocalChannel:
    async def test_publish_and_membership(self):
        manager = ConnectionManager()
        ws = FakeWebSocket()
        manager.connect(ws, 1)
        channel = LocalRealtimeChannel(manager)

        await channel.add_user_to_room(1, "server:2")
        await channel.publish("server:2", "member-kicked", {"user_id": 5})
        await channel.remove_user_from_room(1, "server:2")
        await channel.publish("server:2", "member-kicked", {"user_id": 6})
        assert ws.sent == [{"type": "member-kicked", "data": {"user_id": 5}}]


class TestRedisChannel:
    async def test_publish_sends_relay_message(self, monkeypatch):
        from parley.services import realtime as realtime_mod

        published = []

        async def fake_publish(channel, message):
            published.append((channel, json.loads(message)))

        monkeypatch.setattr(realtime_mod.redis_client, "publish", fake_publish)
        channel = RedisRealtimeChannel(redis=None, connections=ConnectionManager())
        await channel.publish("user:1", "dm-received", {"x": 1})
        await channel.add_user_to_room(1, "server:2")

        assert published[0][1] == {"op": "emit", "room": "user:1", "event": "dm-received", "payload": {"x": 1}}
        assert published[1][1] == {"op": "join", "user_id": 1, "room": "server:2"}

    async def test_deliver_applies_to_local_sockets(self):
        manager = ConnectionManager()
        ws = FakeWebSocket()
        manager.connect(ws, 1)
        channel = RedisRealtimeChannel(redis=None, connections=manager)

        await channel.deliver({"op": "join", "user_id": "1", "room": "channel:7"})
        await channel.deliver({"op": "emit", "room": "channel:7", "event": "new-message", "payload": {"id": 1}})
        await channel.deliver({"op": "leave", "user_id": 1, "room": "channel:7"})
        await channel.deliver({"op": "emit", "room": "channel:7", "event": "new-message", "payload": {"id": 2}})
        await channel.deliver({"op": "bogus"})
        assert ws.sent == [{"type": "new-message", "data": {"id": 1}}]

    async def test_publish_without_redis_raises(self):
        channel = RedisRealtimeChannel(redis=None, connections=ConnectionManager())
        with pytest.raises(ConnectionError):
            await channel.publish("user:1", "e", {})
