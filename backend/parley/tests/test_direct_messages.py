"""Tests for DM conversation resolution, messages and read receipts."""

import pytest
from fastapi.testclient import TestClient

from parley.core import events
from parley.core.errors import AuthorizationError, DenyReason, ValidationError
from parley.models.dm_conversation import DMConversation
from parley.models.user import User
from parley.services import dm_service
from parley.tests.conftest import make_user


def _user(db, username: str) -> User:
    user = User(username=username, email=f"{username}@example.com", hashed_password="x")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


class TestResolveConversation:
    def test_same_conversation_in_either_order(self, db):
        alice, bob = _user(db, "alice"), _user(db, "bob")
        first = dm_service.resolve_conversation(db, alice.id, bob.id)
        second = dm_service.resolve_conversation(db, bob.id, alice.id)
        assert first.id == second.id
        assert (first.user1_id, first.user2_id) == (alice.id, bob.id)
        assert db.query(DMConversation).count() == 1

    def test_repeated_resolution_is_idempotent(self, db):
        alice, bob = _user(db, "alice"), _user(db, "bob")
        ids = {dm_service.resolve_conversation(db, bob.id, alice.id).id for _ in range(3)}
        assert len(ids) == 1

    def test_self_conversation_rejected(self, db):
        alice = _user(db, "alice")
        with pytest.raises(ValidationError):
            dm_service.resolve_conversation(db, alice.id, alice.id)

    def test_append_moves_last_message(self, db):
        alice, bob = _user(db, "alice"), _user(db, "bob")
        conversation = dm_service.resolve_conversation(db, alice.id, bob.id)
        first = dm_service.append_message(db, conversation, alice, "one")
        second = dm_service.append_message(db, conversation, bob, "two")

        db.refresh(conversation)
        assert conversation.last_message_id == second.id
        assert conversation.last_activity >= second.created_at >= first.created_at

    def test_non_participant_cannot_append(self, db):
        alice, bob, eve = _user(db, "alice"), _user(db, "bob"), _user(db, "eve")
        conversation = dm_service.resolve_conversation(db, alice.id, bob.id)
        with pytest.raises(AuthorizationError) as exc:
            dm_service.append_message(db, conversation, eve, "hi")
        assert exc.value.reason == DenyReason.NOT_A_PARTICIPANT


@pytest.fixture()
def pair(client: TestClient):
    alice_headers, alice_id = make_user(client, "alice")
    bob_headers, bob_id = make_user(client, "bob")
    resp = client.post("/api/dms", json={"user_id": bob_id}, headers=alice_headers)
    assert resp.status_code == 200
    return {
        "alice": (alice_headers, alice_id),
        "bob": (bob_headers, bob_id),
        "cid": resp.json()["id"],
    }


def _send(client, pair, who: str, content: str):
    headers, _ = pair[who]
    return client.post(f"/api/dms/{pair['cid']}/messages", json={"content": content}, headers=headers)


class TestConversationApi:
    def test_open_is_idempotent_from_both_sides(self, client, pair):
        bob_headers, _ = pair["bob"]
        _, alice_id = pair["alice"]
        resp = client.post("/api/dms", json={"user_id": alice_id}, headers=bob_headers)
        assert resp.json()["id"] == pair["cid"]
        assert resp.json()["other_user"]["id"] == alice_id
        assert resp.json()["last_message"] is None

    def test_open_with_unknown_user(self, client, pair):
        alice_headers, _ = pair["alice"]
        assert client.post("/api/dms", json={"user_id": 999}, headers=alice_headers).status_code == 404

    def test_list_shows_last_message_and_unread(self, client, pair):
        _send(client, pair, "alice", "hello")
        _send(client, pair, "alice", "again")
        bob_headers, _ = pair["bob"]
        conversations = client.get("/api/dms", headers=bob_headers).json()
        assert len(conversations) == 1
        assert conversations[0]["last_message"]["content"] == "again"
        assert conversations[0]["unread_count"] == 2

    def test_outsider_cannot_read(self, client, pair):
        eve_headers, _ = make_user(client, "eve")
        resp = client.get(f"/api/dms/{pair['cid']}/messages", headers=eve_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "not_a_participant"


class TestMessagesApi:
    def test_send_emits_received_and_sent_with_one_body(self, client, pair, realtime):
        _, alice_id = pair["alice"]
        _, bob_id = pair["bob"]
        resp = _send(client, pair, "alice", "  hi bob ")
        assert resp.status_code == 201
        assert resp.json()["content"] == "hi bob"

        received = realtime.events(events.DM_RECEIVED)
        sent = realtime.events(events.DM_SENT)
        assert [room for room, _ in received] == [f"user:{bob_id}"]
        assert [room for room, _ in sent] == [f"user:{alice_id}"]
        assert received[0][1]["message"] == sent[0][1]["message"]
        assert received[0][1]["sender"]["id"] == alice_id
        assert sent[0][1]["recipient_id"] == bob_id

    def test_empty_message_rejected(self, client, pair, realtime):
        assert _send(client, pair, "alice", "   ").status_code == 422
        assert realtime.events(events.DM_RECEIVED) == []

    def test_blocked_user_cannot_message(self, client, pair):
        bob_headers, _ = pair["bob"]
        _, alice_id = pair["alice"]
        assert client.post(f"/api/users/{alice_id}/block", headers=bob_headers).status_code == 204
        for who in ("alice", "bob"):
            resp = _send(client, pair, who, "hi")
            assert resp.status_code == 403
            assert resp.json()["code"] == "blocked"

    def test_history_oldest_first(self, client, pair):
        for i in range(4):
            _send(client, pair, "alice" if i % 2 == 0 else "bob", f"m{i}")
        alice_headers, _ = pair["alice"]
        messages = client.get(f"/api/dms/{pair['cid']}/messages", params={"limit": 3}, headers=alice_headers).json()
        assert [m["content"] for m in messages] == ["m1", "m2", "m3"]

    def test_only_author_edits(self, client, pair, realtime):
        message_id = _send(client, pair, "alice", "draft").json()["id"]
        bob_headers, bob_id = pair["bob"]
        alice_headers, alice_id = pair["alice"]

        resp = client.patch(f"/api/dms/messages/{message_id}", json={"content": "hack"}, headers=bob_headers)
        assert resp.status_code == 403

        resp = client.patch(f"/api/dms/messages/{message_id}", json={"content": "final"}, headers=alice_headers)
        assert resp.status_code == 200
        assert resp.json()["is_edited"] is True
        rooms = {room for room, _ in realtime.events(events.DM_EDITED)}
        assert rooms == {f"user:{alice_id}", f"user:{bob_id}"}

    def test_delete_hides_message(self, client, pair):
        message_id = _send(client, pair, "alice", "oops").json()["id"]
        alice_headers, _ = pair["alice"]
        bob_headers, _ = pair["bob"]

        assert client.delete(f"/api/dms/messages/{message_id}", headers=bob_headers).status_code == 403
        assert client.delete(f"/api/dms/messages/{message_id}", headers=alice_headers).status_code == 204
        assert client.get(f"/api/dms/{pair['cid']}/messages", headers=bob_headers).json() == []
        conversations = client.get("/api/dms", headers=bob_headers).json()
        assert conversations[0]["last_message"] is None
        assert client.delete(f"/api/dms/messages/{message_id}", headers=alice_headers).status_code == 404


class TestReadReceipts:
    def test_mark_read_notifies_author(self, client, pair, realtime):
        first = _send(client, pair, "alice", "one").json()["id"]
        second = _send(client, pair, "alice", "two").json()["id"]
        bob_headers, bob_id = pair["bob"]
        _, alice_id = pair["alice"]

        resp = client.post(f"/api/dms/{pair['cid']}/read", headers=bob_headers)
        assert resp.status_code == 200
        assert sorted(resp.json()["message_ids"]) == [first, second]

        receipts = realtime.events(events.DM_READ)
        assert [room for room, _ in receipts] == [f"user:{alice_id}"]
        assert receipts[0][1]["reader_id"] == bob_id

    def test_own_messages_are_not_marked(self, client, pair, realtime):
        _send(client, pair, "alice", "one")
        alice_headers, _ = pair["alice"]
        resp = client.post(f"/api/dms/{pair['cid']}/read", headers=alice_headers)
        assert resp.json()["message_ids"] == []
        assert realtime.events(events.DM_READ) == []

    def test_mark_selected_ids(self, client, pair):
        first = _send(client, pair, "alice", "one").json()["id"]
        _send(client, pair, "alice", "two")
        bob_headers, _ = pair["bob"]
        resp = client.post(f"/api/dms/{pair['cid']}/read", json={"message_ids": [first]}, headers=bob_headers)
        assert resp.json()["message_ids"] == [first]
        assert client.get("/api/dms", headers=bob_headers).json()[0]["unread_count"] == 1
