"""Pydantic schemas for API payloads."""

from .auth import LoginRequest, Token, UserCreate, UserRead
from .channels import (
    ChannelCreate,
    ChannelMemberRead,
    ChannelRead,
    ChannelSearchResult,
    ChannelUpdate,
    DirectChannelRequest,
    JoinedChannels,
)
from .messages import (
    MessageAttachmentRead,
    MessagePage,
    MessageReactionSummary,
    MessageRead,
    MessageUpdate,
    ReactionRequest,
    ReactionToggleResponse,
)
from .notifications import MarkedRead, NotificationPage, NotificationRead
from .users import PublicUser, UserStatusRead

__all__ = [
    "LoginRequest",
    "Token",
    "UserCreate",
    "UserRead",
    "ChannelCreate",
    "ChannelMemberRead",
    "ChannelRead",
    "ChannelSearchResult",
    "ChannelUpdate",
    "DirectChannelRequest",
    "JoinedChannels",
    "MessageAttachmentRead",
    "MessagePage",
    "MessageReactionSummary",
    "MessageRead",
    "MessageUpdate",
    "ReactionRequest",
    "ReactionToggleResponse",
    "MarkedRead",
    "NotificationPage",
    "NotificationRead",
    "PublicUser",
    "UserStatusRead",
]
