"""
Presence endpoints.

Reads come from Redis and report "offline" whenever Redis has nothing.
Writes go through presence_service so the durable users.status column and
the realtime broadcast stay in step with the live key.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, get_fanout
from parley.core.errors import ValidationError
from parley.database import get_db
from parley.models.user import User
from parley.redis import presence
from parley.schemas.presence import BulkPresenceResponse, PresenceResponse, StatusUpdate
from parley.services import presence_service
from parley.services.community_service import get_user
from parley.services.fanout import NotificationFanout

router = APIRouter(prefix="/users", tags=["presence"])
bulk_router = APIRouter(prefix="/presence", tags=["presence"])

MAX_BULK_IDS = 200


def _parse_ids(raw: str) -> list[int]:
    parts = [part.strip() for part in raw.split(",")]
    try:
        ids = [int(part) for part in parts if part]
    except ValueError:
        raise ValidationError("ids must be comma-separated integers") from None
    if len(ids) > MAX_BULK_IDS:
        raise ValidationError(f"Too many ids (max {MAX_BULK_IDS})")
    return ids


@router.get("/me/presence", response_model=PresenceResponse)
async def get_my_presence(current_user: User = Depends(get_current_user)):
    return PresenceResponse(user_id=current_user.id, status=await presence.get_status(current_user.id))


@router.post("/me/status", response_model=PresenceResponse)
async def set_my_status(
    body: StatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
):
    """Persist the status and tell every shared community and every friend."""
    await notifier.emit(await presence_service.change_status(db, current_user, body.status))
    return PresenceResponse(user_id=current_user.id, status=body.status)


@router.get("/{user_id}/presence", response_model=PresenceResponse)
async def get_user_presence(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    target = get_user(db, user_id)
    return PresenceResponse(user_id=target.id, status=await presence.get_status(target.id))


@bulk_router.get("/bulk", response_model=BulkPresenceResponse)
async def get_bulk_presence(
    ids: str = Query(..., description="Comma-separated user ids, e.g. 1,2,3"),
    current_user: User = Depends(get_current_user),
):
    return BulkPresenceResponse(statuses=await presence.get_bulk_status(_parse_ids(ids)))
