from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class RoleCreate(BaseModel):
    name: str = Field(..., max_length=100)
    color: str | None = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")
    # Validated against the permission vocabulary by the service, so an
    # unknown name is reported with the offending values.
    permissions: list[str] = []
    mentionable: bool = True


class RoleUpdate(BaseModel):
    name: str | None = Field(None, max_length=100)
    color: str | None = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")
    permissions: list[str] | None = None
    mentionable: bool | None = None
    position: int | None = Field(None, ge=0)


class RoleResponse(BaseModel):
    id: int
    server_id: int
    name: str
    color: str
    permissions: list[str]
    position: int
    mentionable: bool
    is_default: bool
    created_at: datetime | None = None
    member_count: int | None = None

    model_config = {"from_attributes": True}


class MemberRolesUpdate(BaseModel):
    action: Literal["add", "remove", "set"]
    role_ids: list[int]
