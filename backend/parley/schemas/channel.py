from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class ChannelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    type: Literal["text", "voice"] = "text"
    topic: str | None = Field(None, max_length=500)

    @field_validator("name")
    @classmethod
    def name_lowercase_alphanumeric(cls, v: str) -> str:
        if not v.replace("-", "").isalnum():
            raise ValueError("Channel name must be alphanumeric with optional hyphens")
        return v.lower()


class ChannelResponse(BaseModel):
    id: int
    server_id: int
    name: str
    type: str
    topic: str | None = None
    created_by: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
