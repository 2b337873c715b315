from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class SignalingIds(BaseModel):
    peer_id: str | None = Field(None, max_length=200)
    socket_id: str | None = Field(None, max_length=200)


class VoiceJoin(SignalingIds):
    channel_id: int


class VoiceStateUpdate(BaseModel):
    is_muted: bool | None = None
    is_deafened: bool | None = None
    is_video_enabled: bool | None = None
    is_screen_sharing: bool | None = None


class SignalRequest(BaseModel):
    type: Literal["offer", "answer", "ice-candidate"]
    target_user_id: int
    signal: Any


class DMCallCreate(SignalingIds):
    recipient_id: int
    is_video_call: bool = False


class VoiceParticipantResponse(BaseModel):
    user_id: int
    joined_at: datetime
    is_muted: bool
    is_deafened: bool
    is_video_enabled: bool
    is_screen_sharing: bool
    peer_id: str | None = None
    socket_id: str | None = None

    model_config = {"from_attributes": True}


class VoiceSessionResponse(BaseModel):
    session_id: str = Field(validation_alias="session_key")
    type: str
    channel_id: int | None = None
    server_id: int | None = None
    participant_ids: list[int] = []
    is_video_call: bool = False
    is_active: bool
    active_users: list[VoiceParticipantResponse]
    started_at: datetime | None = None
    ended_at: datetime | None = None

    model_config = {"from_attributes": True, "populate_by_name": True}
