from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, get_fanout
from parley.core import events
from parley.database import get_db
from parley.models.user import User
from parley.schemas.social import FriendRequestList, FriendRequestResponse
from parley.schemas.user import UserResponse, UserSummary
from parley.services import fanout, social_service
from parley.services.community_service import get_user as fetch_user
from parley.services.fanout import NotificationFanout

router = APIRouter(prefix="/users", tags=["users"])


# ---------------------------------------------------------------------------
# Friends
# ---------------------------------------------------------------------------


@router.get("/me/friends", response_model=list[UserSummary])
async def list_friends(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[UserSummary]:
    return [UserSummary.model_validate(u) for u in social_service.list_friends(db, current_user)]


@router.delete("/me/friends/{friend_id}", status_code=204)
async def remove_friend(
    friend_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> None:
    social_service.remove_friend(db, current_user, friend_id)
    await notifier.emit(fanout.to_user(friend_id, events.FRIEND_REMOVED, {"user_id": current_user.id}))


@router.get("/me/friend-requests", response_model=FriendRequestList)
async def list_friend_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> FriendRequestList:
    incoming, outgoing = social_service.list_friend_requests(db, current_user)
    return FriendRequestList(
        incoming=[FriendRequestResponse.model_validate(r) for r in incoming],
        outgoing=[FriendRequestResponse.model_validate(r) for r in outgoing],
    )


@router.post("/{user_id}/friend-request", response_model=FriendRequestResponse, status_code=201)
async def send_friend_request(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> FriendRequestResponse:
    request = social_service.send_friend_request(db, current_user, user_id)
    response = FriendRequestResponse.model_validate(request)
    await notifier.emit(
        fanout.to_user(user_id, events.FRIEND_REQUEST_RECEIVED, response.model_dump(mode="json"))
    )
    return response


@router.post("/me/friend-requests/{request_id}/accept", response_model=FriendRequestResponse)
async def accept_friend_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> FriendRequestResponse:
    request = social_service.accept_friend_request(db, current_user, request_id)
    response = FriendRequestResponse.model_validate(request)
    await notifier.emit(
        fanout.to_user(request.from_user_id, events.FRIEND_REQUEST_ACCEPTED, response.model_dump(mode="json"))
    )
    return response


@router.post("/me/friend-requests/{request_id}/decline", response_model=FriendRequestResponse)
async def decline_friend_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationFanout = Depends(get_fanout),
) -> FriendRequestResponse:
    request = social_service.decline_friend_request(db, current_user, request_id)
    response = FriendRequestResponse.model_validate(request)
    await notifier.emit(
        fanout.to_user(request.from_user_id, events.FRIEND_REQUEST_DECLINED, {"request_id": request.id})
    )
    return response


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


@router.get("/me/blocked", response_model=list[UserSummary])
async def list_blocked(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[UserSummary]:
    return [UserSummary.model_validate(u) for u in social_service.list_blocked(db, current_user)]


@router.post("/{user_id}/block", status_code=204)
async def block_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    """Block a user. Any friendship between the two is removed."""
    social_service.block_user(db, current_user, user_id)


@router.delete("/{user_id}/block", status_code=204)
async def unblock_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    social_service.unblock_user(db, current_user, user_id)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserResponse:
    return UserResponse.model_validate(fetch_user(db, user_id))
