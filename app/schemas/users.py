"""Schemas related to user profiles and online status."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class PublicUser(BaseModel):
    """Minimal public-facing user information."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    login: str
    display_name: str | None = None
    avatar_url: str | None = None


class UserStatusRead(PublicUser):
    """User with the derived online flag and last activity."""

    is_online: bool = False
    last_seen_at: datetime | None = None
