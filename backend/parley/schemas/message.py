from datetime import datetime

from pydantic import BaseModel, Field

from parley.schemas.user import UserSummary


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)


class MessageResponse(BaseModel):
    id: int
    content: str
    user_id: int
    channel_id: int
    created_at: datetime | None = None
    edited_at: datetime | None = None
    user: UserSummary

    model_config = {"from_attributes": True}


class MessageList(BaseModel):
    messages: list[MessageResponse]
    limit: int
