"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import MessageType
from app.schemas.users import PublicUser


class MessageReactionSummary(BaseModel):
    """Aggregated reaction information for a message."""

    emoji: str = Field(..., description="Emoji identifier, e.g. 👍 or :thumbsup:")
    count: int = Field(..., ge=0, description="Total reactions with the emoji")
    reacted: bool = Field(
        default=False,
        description="Indicates whether the current user added this reaction",
    )
    user_ids: list[int] = Field(
        default_factory=list,
        description="Identifiers of users who added this reaction",
    )


class MessageAttachmentRead(BaseModel):
    """Serialized representation of a message attachment."""

    id: int
    channel_id: int
    message_id: int
    file_name: str
    content_type: str | None
    file_size: int
    download_url: str
    created_at: datetime


class MessageRead(BaseModel):
    """Serialized representation of a chat message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    channel_id: int
    author_id: int | None
    author: PublicUser | None = None
    parent_message_id: int | None = None
    content: str
    type: MessageType = MessageType.TEXT
    thread_reply_count: int = 0
    last_reply_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    edited_at: datetime | None = None
    attachments: list[MessageAttachmentRead] = []
    reactions: list[MessageReactionSummary] = []


class MessagePage(BaseModel):
    """Offset page of messages, newest first."""

    items: list[MessageRead]
    total: int
    limit: int
    offset: int


class MessageUpdate(BaseModel):
    """Payload for editing the content of a message."""

    content: str = Field(..., min_length=1)


class ReactionRequest(BaseModel):
    """Payload for toggling a reaction."""

    emoji: str = Field(..., min_length=1, max_length=50)


class ReactionToggleResponse(BaseModel):
    """Outcome of a reaction toggle and the resulting aggregate."""

    message: str
    state: str
    reactions: list[MessageReactionSummary]
