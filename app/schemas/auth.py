"""Registration and login payloads."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.schemas.users import PublicUser

LOGIN_PATTERN = r"^[A-Za-z0-9_.-]+$"


class UserCreate(BaseModel):
    """Registration form. Logins are matched exactly, so only trimmed ASCII is accepted."""

    login: str = Field(..., min_length=3, max_length=64, pattern=LOGIN_PATTERN)
    password: str = Field(..., min_length=8, max_length=128, repr=False)
    display_name: str | None = Field(default=None, max_length=128)

    @field_validator("display_name")
    @classmethod
    def blank_display_name_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class UserRead(PublicUser):
    created_at: datetime


class LoginRequest(BaseModel):
    login: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=128, repr=False)


class Token(BaseModel):
    """Bearer token issued by ``POST /auth/login``."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Seconds until the token expires")
