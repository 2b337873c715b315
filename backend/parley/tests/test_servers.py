"""Tests for community lifecycle: create, join by invite, leave."""

from fastapi.testclient import TestClient

from parley.core import events
from parley.models.channel import Channel
from parley.tests.conftest import auth_headers, create_server, join_server, make_user


class TestCreateServer:
    def test_create_returns_owner_view(self, client: TestClient):
        headers = auth_headers(client)
        server = create_server(client, headers, "Guild")
        assert server["name"] == "Guild"
        assert server["is_owner"] is True
        assert server["member_count"] == 1
        assert server["invite_code"]

    def test_default_channels_created(self, client: TestClient, db):
        headers = auth_headers(client)
        server = create_server(client, headers)
        channels = db.query(Channel).filter(Channel.server_id == server["id"]).order_by(Channel.id).all()
        assert [(c.name, c.type) for c in channels] == [("general", "text"), ("General", "voice")]

    def test_blank_name_rejected(self, client: TestClient):
        headers = auth_headers(client)
        resp = client.post("/api/servers", json={"name": "   "}, headers=headers)
        assert resp.status_code == 422

    def test_requires_auth(self, client: TestClient):
        resp = client.post("/api/servers", json={"name": "Guild"})
        assert resp.status_code == 401

    def test_owner_subscribed_to_server_room(self, client: TestClient, realtime):
        headers, user_id = make_user(client, "founder")
        server = create_server(client, headers)
        assert (user_id, f"server:{server['id']}") in realtime.joins

    def test_list_my_servers(self, client: TestClient):
        headers = auth_headers(client)
        create_server(client, headers, "One")
        create_server(client, headers, "Two")
        resp = client.get("/api/servers", headers=headers)
        assert [s["name"] for s in resp.json()] == ["One", "Two"]


class TestJoin:
    def test_join_by_invite(self, client: TestClient, realtime):
        owner_headers, _ = make_user(client, "owner")
        member_headers, member_id = make_user(client, "joiner")
        server = create_server(client, owner_headers)

        joined = join_server(client, member_headers, server)
        assert joined["id"] == server["id"]
        assert joined["is_owner"] is False
        assert joined["member_count"] == 2

        rooms = [room for room, _ in realtime.events(events.MEMBER_JOINED)]
        assert rooms == [f"user:{member_id}", f"server:{server['id']}"]
        assert all(p["user_id"] == member_id for _, p in realtime.events(events.MEMBER_JOINED))
        assert (member_id, f"server:{server['id']}") in realtime.joins

    def test_already_member_conflict(self, client: TestClient):
        owner_headers, _ = make_user(client, "owner")
        server = create_server(client, owner_headers)
        resp = client.post(f"/api/servers/join/{server['invite_code']}", headers=owner_headers)
        assert resp.status_code == 409

    def test_invalid_invite(self, client: TestClient):
        headers = auth_headers(client)
        resp = client.post("/api/servers/join/nope", headers=headers)
        assert resp.status_code == 404

    def test_regenerated_invite_replaces_old(self, client: TestClient):
        owner_headers, _ = make_user(client, "owner")
        member_headers, _ = make_user(client, "joiner")
        server = create_server(client, owner_headers)

        resp = client.post(f"/api/servers/{server['id']}/invite/regenerate", headers=owner_headers)
        assert resp.status_code == 200
        new_code = resp.json()["invite_code"]
        assert new_code != server["invite_code"]
        assert client.post(f"/api/servers/join/{server['invite_code']}", headers=member_headers).status_code == 404
        assert client.post(f"/api/servers/join/{new_code}", headers=member_headers).status_code == 200

    def test_member_cannot_regenerate_invite(self, client: TestClient):
        owner_headers, _ = make_user(client, "owner")
        member_headers, _ = make_user(client, "joiner")
        server = create_server(client, owner_headers)
        join_server(client, member_headers, server)
        resp = client.post(f"/api/servers/{server['id']}/invite/regenerate", headers=member_headers)
        assert resp.status_code == 403


class TestMembership:
    def test_non_member_cannot_view(self, client: TestClient):
        owner_headers, _ = make_user(client, "owner")
        outsider_headers, _ = make_user(client, "outsider")
        server = create_server(client, owner_headers)
        resp = client.get(f"/api/servers/{server['id']}", headers=outsider_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "not_a_member"

    def test_owner_flag_follows_viewer(self, client: TestClient):
        owner_headers, owner_id = make_user(client, "owner")
        member_headers, _ = make_user(client, "joiner")
        server = create_server(client, owner_headers)
        join_server(client, member_headers, server)

        as_owner = client.get(f"/api/servers/{server['id']}", headers=owner_headers)
        as_member = client.get(f"/api/servers/{server['id']}", headers=member_headers)
        assert as_owner.status_code == as_member.status_code == 200
        assert as_owner.json()["is_owner"] is True
        assert as_member.json()["is_owner"] is False
        assert as_member.json()["owner_id"] == owner_id
        assert as_member.json()["member_count"] == 2

    def test_members_list(self, client: TestClient):
        owner_headers, owner_id = make_user(client, "owner")
        member_headers, member_id = make_user(client, "joiner")
        server = create_server(client, owner_headers)
        join_server(client, member_headers, server)

        members = client.get(f"/api/servers/{server['id']}/members", headers=member_headers).json()
        assert [m["user"]["id"] for m in members] == [owner_id, member_id]
        assert [m["is_owner"] for m in members] == [True, False]
        assert all(len(m["role_ids"]) == 1 for m in members)

    def test_unknown_server(self, client: TestClient):
        headers = auth_headers(client)
        assert client.get("/api/servers/999", headers=headers).status_code == 404


class TestLeave:
    def test_member_leaves(self, client: TestClient, realtime):
        owner_headers, _ = make_user(client, "owner")
        member_headers, member_id = make_user(client, "joiner")
        server = create_server(client, owner_headers)
        join_server(client, member_headers, server)

        resp = client.post(f"/api/servers/{server['id']}/leave", headers=member_headers)
        assert resp.status_code == 204
        assert (member_id, f"server:{server['id']}") in realtime.leaves
        assert client.get("/api/servers", headers=member_headers).json() == []

    def test_owner_cannot_leave(self, client: TestClient):
        owner_headers, _ = make_user(client, "owner")
        server = create_server(client, owner_headers)
        resp = client.post(f"/api/servers/{server['id']}/leave", headers=owner_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "cannot_target_owner"
