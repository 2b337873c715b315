from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

PASSWORD_SPECIALS = set("!@#$%^&*()_+-=[]{}|;:,.<>?")


class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=20)
    email: EmailStr


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str) -> str:
        # letters, digits and underscores; stored lowercase
        if not v.replace("_", "").isalnum():
            raise ValueError("Username must be alphanumeric with optional underscores")
        return v.lower()

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        chars = set(v)
        if not any(c.isdigit() for c in chars):
            raise ValueError("Password must contain at least one number")
        if not chars & PASSWORD_SPECIALS:
            raise ValueError("Password must contain at least one special character")
        return v


class UserLogin(BaseModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str) -> str:
        return v.lower()


class UserResponse(UserBase):
    id: int
    avatar_url: str | None = None
    display_name: str | None = None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    """Public view of another user: no email."""

    id: int
    username: str
    avatar_url: str | None = None
    display_name: str | None = None
    status: str

    model_config = {"from_attributes": True}


class Token(BaseModel):
    """Issued by register and login.  expires_in is in seconds."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
