from datetime import datetime

from pydantic import BaseModel, Field

from parley.schemas.user import UserSummary


class ServerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    icon_url: str | None = Field(None, max_length=500)


class ServerResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    icon_url: str | None = None
    owner_id: int
    invite_code: str
    created_at: datetime
    # Filled in per request; not columns
    member_count: int | None = None
    is_owner: bool = False

    model_config = {"from_attributes": True}


class MemberResponse(BaseModel):
    user: UserSummary
    role_ids: list[int]
    joined_at: datetime | None = None
    is_owner: bool = False


class InviteResponse(BaseModel):
    invite_code: str
