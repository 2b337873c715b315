"""
Status changes.

The chosen status is persisted on the user row and mirrored into Redis
presence (with TTL).  The returned emissions go to every community the user
belongs to and to every friend; the caller publishes them after this returns.
"""

import logging

from sqlalchemy.orm import Session

from parley.core.errors import ValidationError
from parley.models.user import User
from parley.redis import presence as presence_mgr
from parley.services import fanout
from parley.services.community_service import member_server_ids
from parley.services.retry import commit
from parley.services.social_service import friend_ids

logger = logging.getLogger(__name__)


async def change_status(db: Session, user: User, status: str) -> list[fanout.Emission]:
    if status not in presence_mgr.VALID_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(sorted(presence_mgr.VALID_STATUSES))}")
    if user.status != status:
        user.status = status
        commit(db)
    await presence_mgr.set_status(user.id, status)
    return fanout.status_change(user, status, member_server_ids(db, user.id), friend_ids(db, user.id))
