"""
Live presence in Redis.

Each connected user has one string key, presence_key(user_id), holding one of
ONLINE_STATUSES and expiring after REDIS_PRESENCE_TTL seconds unless the
client keeps sending heartbeats.  There is no "offline" value in Redis: a
missing or expired key reads back as offline, and going offline deletes it.

Every helper degrades quietly.  With Redis disabled or failing, writes are
skipped and reads report offline; the durable copy on users.status stays
authoritative for anything that must survive.
"""

import logging
from typing import Dict, List

from parley.config import settings
from parley.redis.client import get_redis
from parley.redis.keys import presence_key

logger = logging.getLogger(__name__)

OFFLINE = "offline"
ONLINE_STATUSES = {"online", "away", "busy", "dnd"}
VALID_STATUSES = ONLINE_STATUSES | {OFFLINE}


def _or_offline(value) -> str:
    return value or OFFLINE


async def set_online(user_id: int, status: str = "online") -> None:
    if status not in ONLINE_STATUSES:
        logger.warning("refusing to store presence %r for user %s", status, user_id)
        return
    r = get_redis()
    if r is None:
        return
    try:
        await r.setex(presence_key(user_id), settings.REDIS_PRESENCE_TTL, status)
    except Exception as exc:
        logger.warning("could not store presence for user %s: %s", user_id, exc)


async def set_offline(user_id: int) -> None:
    r = get_redis()
    if r is None:
        return
    try:
        await r.delete(presence_key(user_id))
    except Exception as exc:
        logger.warning("could not clear presence for user %s: %s", user_id, exc)


async def set_status(user_id: int, status: str) -> None:
    """Store any of VALID_STATUSES; offline clears the key."""
    if status == OFFLINE:
        await set_offline(user_id)
        return
    await set_online(user_id, status)


async def heartbeat(user_id: int) -> None:
    """Push the expiry out again.  A user whose key already lapsed stays offline."""
    r = get_redis()
    if r is None:
        return
    try:
        await r.expire(presence_key(user_id), settings.REDIS_PRESENCE_TTL)
    except Exception as exc:
        logger.warning("presence heartbeat for user %s failed: %s", user_id, exc)


async def get_status(user_id: int) -> str:
    r = get_redis()
    if r is None:
        return OFFLINE
    try:
        return _or_offline(await r.get(presence_key(user_id)))
    except Exception as exc:
        logger.warning("presence lookup for user %s failed: %s", user_id, exc)
        return OFFLINE


async def get_bulk_status(user_ids: List[int]) -> Dict[int, str]:
    """Statuses for several users, fetched in one pipeline round trip."""
    if not user_ids:
        return {}
    fallback = dict.fromkeys(user_ids, OFFLINE)
    r = get_redis()
    if r is None:
        return fallback
    try:
        pipe = r.pipeline()
        for uid in user_ids:
            pipe.get(presence_key(uid))
        values = await pipe.execute()
    except Exception as exc:
        logger.warning("bulk presence lookup failed: %s", exc)
        return fallback
    return {uid: _or_offline(value) for uid, value in zip(user_ids, values)}
