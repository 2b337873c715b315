from datetime import datetime

from pydantic import BaseModel, Field

from parley.schemas.user import UserSummary


class ConversationCreate(BaseModel):
    user_id: int


class DMMessageCreate(BaseModel):
    content: str = Field(..., max_length=2000)


class DMMessageUpdate(BaseModel):
    content: str = Field(..., max_length=2000)


class DMMessageResponse(BaseModel):
    id: int
    conversation_id: int
    author_id: int
    author: UserSummary
    content: str
    created_at: datetime
    is_edited: bool
    edited_at: datetime | None = None
    is_read: bool
    read_at: datetime | None = None

    model_config = {"from_attributes": True}


class ConversationResponse(BaseModel):
    id: int
    other_user: UserSummary
    last_message: DMMessageResponse | None = None
    last_activity: datetime
    unread_count: int = 0


class MarkReadRequest(BaseModel):
    # None marks every unread message from the other participant.
    message_ids: list[int] | None = None


class MarkReadResponse(BaseModel):
    message_ids: list[int]
    read_at: datetime
