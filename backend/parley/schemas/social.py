from datetime import datetime

from pydantic import BaseModel

from parley.schemas.user import UserSummary


class FriendRequestResponse(BaseModel):
    id: int
    from_user: UserSummary
    to_user: UserSummary
    status: str
    created_at: datetime | None = None
    responded_at: datetime | None = None

    model_config = {"from_attributes": True}


class FriendRequestList(BaseModel):
    incoming: list[FriendRequestResponse]
    outgoing: list[FriendRequestResponse]
