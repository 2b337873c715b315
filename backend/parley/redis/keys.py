"""
Namespaced Redis key helpers.

Every key and pub/sub channel is prefixed with SERVER_DOMAIN so several
deployments can share one Redis without colliding.

Presence is global (a user is online/offline deployment-wide, not per
community).  Realtime rooms (user:<id>, server:<id>, channel:<id>) are relayed
between workers over a single pub/sub channel; the room name travels inside
the message body.
"""

from parley.config import settings

# ── Presence (global, not server-scoped) ────────────────────────────────────


def presence_key(user_id: int) -> str:
    return f"{settings.SERVER_DOMAIN}:presence:{user_id}"


# ── Realtime relay ───────────────────────────────────────────────────────────


def realtime_channel() -> str:
    return f"{settings.SERVER_DOMAIN}:realtime"
