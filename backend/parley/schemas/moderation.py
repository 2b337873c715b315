from datetime import datetime

from pydantic import BaseModel, Field


class ModerationRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class TimeoutRequest(ModerationRequest):
    # Bounds are enforced by the moderation engine so the error carries the
    # configured limits.
    duration: int


class BanResponse(BaseModel):
    id: int
    user_id: int
    banned_by_id: int
    reason: str
    banned_at: datetime

    model_config = {"from_attributes": True}


class TimeoutResponse(BaseModel):
    id: int
    user_id: int
    timed_out_by_id: int
    reason: str
    duration_minutes: int
    timeout_at: datetime
    timeout_until: datetime

    model_config = {"from_attributes": True}


class WarningResponse(BaseModel):
    id: int
    user_id: int
    warned_by_id: int
    reason: str
    warned_at: datetime

    model_config = {"from_attributes": True}


class WarningList(BaseModel):
    warnings: list[WarningResponse]
    count: int


class AuditLogResponse(BaseModel):
    id: int
    action: str
    executor_id: int
    target_id: int | None = None
    reason: str | None = None
    details: dict
    created_at: datetime

    model_config = {"from_attributes": True}


class WarnResult(BaseModel):
    warning: WarningResponse
    warning_count: int


class KickResult(BaseModel):
    user_id: int
    reason: str
    timestamp: datetime
