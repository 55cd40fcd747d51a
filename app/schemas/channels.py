"""Schemas for channels and their memberships."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator

from app.models import ChannelRole, ChannelVisibility
from app.schemas.users import PublicUser


class ChannelCreate(BaseModel):
    """Payload for creating a public or private channel."""

    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    description: constr(strip_whitespace=True, max_length=1000) | None = None
    visibility: ChannelVisibility = ChannelVisibility.PUBLIC

    @field_validator("visibility")
    @classmethod
    def reject_direct(cls, value: ChannelVisibility) -> ChannelVisibility:
        if value is ChannelVisibility.DIRECT:
            raise ValueError("Direct channels are created through /channels/direct")
        return value


class ChannelUpdate(BaseModel):
    """Payload for renaming a channel or changing its description."""

    name: constr(strip_whitespace=True, min_length=1, max_length=255) | None = None
    description: constr(strip_whitespace=True, max_length=1000) | None = None


class ChannelRead(BaseModel):
    """Serialized representation of a channel."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    visibility: ChannelVisibility
    is_private: bool
    creator_id: int
    created_at: datetime
    updated_at: datetime


class ChannelSearchResult(ChannelRead):
    """Channel returned by search, flagged with the caller's membership."""

    is_member: bool = False


class ChannelMemberRead(BaseModel):
    """Membership entry with the member's public profile."""

    user: PublicUser
    role: ChannelRole
    joined_at: datetime
    is_online: bool = False


class JoinedChannels(BaseModel):
    channel_ids: list[int] = Field(default_factory=list)


class DirectChannelRequest(BaseModel):
    """Payload for opening a direct channel with another user."""

    user_id: int = Field(..., ge=1)
