"""Tests for the moderation endpoints and the notices they publish."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from parley.core import events
from parley.models.moderation import AuditLogEntry, ServerBan, ServerTimeout, ServerWarning
from parley.tests.conftest import assign_roles, create_role, create_server, join_server, make_user


@pytest.fixture()
def setup(client: TestClient):
    """Owner, M1 holding "Mod" {KICK_MEMBERS}, M2 with the default role only."""
    owner_headers, owner_id = make_user(client, "owner")
    m1_headers, m1_id = make_user(client, "member1")
    m2_headers, m2_id = make_user(client, "member2")
    server = create_server(client, owner_headers)
    join_server(client, m1_headers, server)
    join_server(client, m2_headers, server)
    mod = create_role(client, owner_headers, server["id"], "Mod", ["KICK_MEMBERS"])
    assign_roles(client, owner_headers, server["id"], m1_id, [mod["id"]])
    return {
        "server": server,
        "sid": server["id"],
        "owner": (owner_headers, owner_id),
        "m1": (m1_headers, m1_id),
        "m2": (m2_headers, m2_id),
    }


def _general_channel(client: TestClient, headers: dict, server_id: int) -> int:
    channels = client.get(f"/api/servers/{server_id}/channels", headers=headers).json()
    return next(c["id"] for c in channels if c["name"] == "general")


class TestKick:
    def test_mod_kicks_member(self, client, setup, realtime):
        m1_headers, _ = setup["m1"]
        _, m2_id = setup["m2"]
        sid = setup["sid"]

        resp = client.post(f"/api/servers/{sid}/members/{m2_id}/kick", json={"reason": "spam"}, headers=m1_headers)
        assert resp.status_code == 200
        assert resp.json()["reason"] == "spam"

        members = client.get(f"/api/servers/{sid}/members", headers=m1_headers).json()
        assert m2_id not in [m["user"]["id"] for m in members]

        personal = realtime.events(events.KICKED_FROM_SERVER)
        broadcast = realtime.events(events.MEMBER_KICKED)
        assert [room for room, _ in personal] == [f"user:{m2_id}"]
        assert [room for room, _ in broadcast] == [f"server:{sid}"]
        assert personal[0][1]["reason"] == broadcast[0][1]["reason"] == "spam"
        assert personal[0][1]["timestamp"] == broadcast[0][1]["timestamp"]
        assert (m2_id, f"server:{sid}") in realtime.leaves

    def test_member_cannot_kick_mod(self, client, setup):
        m2_headers, _ = setup["m2"]
        _, m1_id = setup["m1"]
        resp = client.post(f"/api/servers/{setup['sid']}/members/{m1_id}/kick", headers=m2_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "insufficient_permissions"
        assert resp.json()["reason"] == "insufficient permissions"

    def test_mod_cannot_kick_owner(self, client, setup):
        m1_headers, _ = setup["m1"]
        _, owner_id = setup["owner"]
        resp = client.post(f"/api/servers/{setup['sid']}/members/{owner_id}/kick", headers=m1_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "cannot_target_owner"

    def test_cannot_kick_self(self, client, setup):
        m1_headers, m1_id = setup["m1"]
        resp = client.post(f"/api/servers/{setup['sid']}/members/{m1_id}/kick", headers=m1_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "cannot_target_self"

    def test_denied_kick_changes_nothing(self, client, setup, realtime):
        m2_headers, _ = setup["m2"]
        _, m1_id = setup["m1"]
        client.post(f"/api/servers/{setup['sid']}/members/{m1_id}/kick", headers=m2_headers)
        members = client.get(f"/api/servers/{setup['sid']}/members", headers=m2_headers).json()
        assert m1_id in [m["user"]["id"] for m in members]
        assert realtime.events(events.MEMBER_KICKED) == []


class TestBan:
    def test_duplicate_ban_is_conflict_with_single_record(self, client, setup, db):
        owner_headers, _ = setup["owner"]
        _, m2_id = setup["m2"]
        sid = setup["sid"]

        first = client.post(f"/api/servers/{sid}/members/{m2_id}/ban", json={"reason": "raid"}, headers=owner_headers)
        assert first.status_code == 200
        second = client.post(f"/api/servers/{sid}/members/{m2_id}/ban", headers=owner_headers)
        assert second.status_code == 409

        assert db.query(ServerBan).filter(ServerBan.server_id == sid, ServerBan.user_id == m2_id).count() == 1
        bans = client.get(f"/api/servers/{sid}/bans", headers=owner_headers).json()
        assert [b["user_id"] for b in bans] == [m2_id]

    def test_banned_user_cannot_rejoin(self, client, setup):
        owner_headers, _ = setup["owner"]
        m2_headers, m2_id = setup["m2"]
        client.post(f"/api/servers/{setup['sid']}/members/{m2_id}/ban", headers=owner_headers)
        resp = client.post(f"/api/servers/join/{setup['server']['invite_code']}", headers=m2_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "banned"

    def test_ban_non_member(self, client, setup):
        owner_headers, _ = setup["owner"]
        _, outsider_id = make_user(client, "outsider")
        resp = client.post(f"/api/servers/{setup['sid']}/members/{outsider_id}/ban", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.json()["reason"] == "No reason provided"

    def test_ban_unknown_user(self, client, setup):
        owner_headers, _ = setup["owner"]
        resp = client.post(f"/api/servers/{setup['sid']}/members/9999/ban", headers=owner_headers)
        assert resp.status_code == 404

    def test_ban_emits_pair(self, client, setup, realtime):
        owner_headers, _ = setup["owner"]
        _, m2_id = setup["m2"]
        client.post(f"/api/servers/{setup['sid']}/members/{m2_id}/ban", headers=owner_headers)
        assert [room for room, _ in realtime.events(events.BANNED_FROM_SERVER)] == [f"user:{m2_id}"]
        assert [room for room, _ in realtime.events(events.MEMBER_BANNED)] == [f"server:{setup['sid']}"]

    def test_unban(self, client, setup):
        owner_headers, _ = setup["owner"]
        _, m2_id = setup["m2"]
        sid = setup["sid"]
        client.post(f"/api/servers/{sid}/members/{m2_id}/ban", headers=owner_headers)
        assert client.delete(f"/api/servers/{sid}/bans/{m2_id}", headers=owner_headers).status_code == 204
        assert client.delete(f"/api/servers/{sid}/bans/{m2_id}", headers=owner_headers).status_code == 404

    def test_mod_without_ban_permission(self, client, setup):
        m1_headers, _ = setup["m1"]
        _, m2_id = setup["m2"]
        resp = client.post(f"/api/servers/{setup['sid']}/members/{m2_id}/ban", headers=m1_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "insufficient_permissions"


class TestTimeout:
    def test_duration_above_max_rejected_before_write(self, client, setup, db):
        owner_headers, _ = setup["owner"]
        _, m2_id = setup["m2"]
        resp = client.post(
            f"/api/servers/{setup['sid']}/members/{m2_id}/timeout", json={"duration": 40321}, headers=owner_headers
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_error"
        assert db.query(ServerTimeout).count() == 0

    def test_max_duration_accepted(self, client, setup, realtime):
        owner_headers, _ = setup["owner"]
        _, m2_id = setup["m2"]
        resp = client.post(
            f"/api/servers/{setup['sid']}/members/{m2_id}/timeout", json={"duration": 40320}, headers=owner_headers
        )
        assert resp.status_code == 200
        data = resp.json()
        start = datetime.fromisoformat(data["timeout_at"])
        until = datetime.fromisoformat(data["timeout_until"])
        assert until - start == timedelta(minutes=40320)
        assert realtime.events(events.TIMEOUT_APPLIED)[0][1]["duration_minutes"] == 40320
        assert realtime.events(events.MEMBER_TIMEOUT)

    def test_new_timeout_replaces_old(self, client, setup, db):
        owner_headers, _ = setup["owner"]
        _, m2_id = setup["m2"]
        url = f"/api/servers/{setup['sid']}/members/{m2_id}/timeout"
        client.post(url, json={"duration": 10}, headers=owner_headers)
        client.post(url, json={"duration": 20}, headers=owner_headers)
        records = db.query(ServerTimeout).filter(ServerTimeout.user_id == m2_id).all()
        assert [r.duration_minutes for r in records] == [20]

    def test_timed_out_member_cannot_post(self, client, setup):
        owner_headers, _ = setup["owner"]
        m2_headers, m2_id = setup["m2"]
        sid = setup["sid"]
        channel_id = _general_channel(client, owner_headers, sid)
        client.post(f"/api/servers/{sid}/members/{m2_id}/timeout", json={"duration": 5}, headers=owner_headers)

        resp = client.post(
            f"/api/servers/{sid}/channels/{channel_id}/messages", json={"content": "hi"}, headers=m2_headers
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "timed_out"

        assert client.delete(f"/api/servers/{sid}/members/{m2_id}/timeout", headers=owner_headers).status_code == 204
        resp = client.post(
            f"/api/servers/{sid}/channels/{channel_id}/messages", json={"content": "hi"}, headers=m2_headers
        )
        assert resp.status_code == 201

    def test_expired_timeout_lapses_and_purges(self, client, setup, db):
        from parley.models.server import Server
        from parley.services.moderation_service import purge_expired_timeouts

        owner_headers, _ = setup["owner"]
        _, m2_id = setup["m2"]
        client.post(f"/api/servers/{setup['sid']}/members/{m2_id}/timeout", json={"duration": 5}, headers=owner_headers)
        db.expire_all()
        server = db.get(Server, setup["sid"])
        later = datetime.now(timezone.utc) + timedelta(minutes=6)

        assert not server.timeouts[0].is_active(later)
        assert purge_expired_timeouts(db, server) == 0
        assert purge_expired_timeouts(db, server, now=later) == 1
        assert db.query(ServerTimeout).count() == 0

    def test_remove_missing_timeout(self, client, setup):
        owner_headers, _ = setup["owner"]
        _, m2_id = setup["m2"]
        resp = client.delete(f"/api/servers/{setup['sid']}/members/{m2_id}/timeout", headers=owner_headers)
        assert resp.status_code == 404


class TestWarn:
    def test_warn_without_reason_counts_up(self, client, setup, db, realtime):
        m1_headers, _ = setup["m1"]
        m2_headers, m2_id = setup["m2"]
        sid = setup["sid"]
        url = f"/api/servers/{sid}/members/{m2_id}/warn"

        first = client.post(url, headers=m1_headers)
        assert first.status_code == 200
        assert first.json()["warning"]["reason"] == "No reason provided"
        assert first.json()["warning_count"] == 1

        second = client.post(url, json={"reason": "   "}, headers=m1_headers)
        assert second.json()["warning_count"] == 2
        assert db.query(ServerWarning).filter(ServerWarning.user_id == m2_id).count() == 2

        own = client.get(f"/api/servers/{sid}/members/{m2_id}/warnings", headers=m2_headers).json()
        assert own["count"] == 2
        assert {w["reason"] for w in own["warnings"]} == {"No reason provided"}

        personal = realtime.events(events.WARNING_RECEIVED)
        assert [p["warning_count"] for _, p in personal] == [1, 2]
        assert len(realtime.events(events.MEMBER_WARNED)) == 2

    def test_member_cannot_read_others_warnings(self, client, setup):
        m2_headers, _ = setup["m2"]
        _, m1_id = setup["m1"]
        resp = client.get(f"/api/servers/{setup['sid']}/members/{m1_id}/warnings", headers=m2_headers)
        assert resp.status_code == 403


class TestAuditLog:
    def test_owner_reads_audit_log(self, client, setup, db):
        owner_headers, _ = setup["owner"]
        m1_headers, _ = setup["m1"]
        _, m2_id = setup["m2"]
        sid = setup["sid"]
        client.post(f"/api/servers/{sid}/members/{m2_id}/kick", json={"reason": "bye"}, headers=m1_headers)

        entries = client.get(f"/api/servers/{sid}/audit-log", headers=owner_headers).json()
        actions = [e["action"] for e in entries]
        assert "kick" in actions
        assert "role_create" in actions
        kick = next(e for e in entries if e["action"] == "kick")
        assert kick["target_id"] == m2_id
        assert kick["reason"] == "bye"
        assert db.query(AuditLogEntry).filter(AuditLogEntry.action == "kick").count() == 1

    def test_moderator_without_admin_denied(self, client, setup):
        m1_headers, _ = setup["m1"]
        resp = client.get(f"/api/servers/{setup['sid']}/audit-log", headers=m1_headers)
        assert resp.status_code == 403
