from typing import Literal

from pydantic import BaseModel


class StatusUpdate(BaseModel):
    status: Literal["online", "away", "busy", "dnd", "offline"]


class PresenceResponse(BaseModel):
    user_id: int
    status: str


class BulkPresenceResponse(BaseModel):
    statuses: dict[int, str]
