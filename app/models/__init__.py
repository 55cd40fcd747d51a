"""Database models package."""

from .base import Base
from .chat import (
    Channel,
    ChannelMember,
    Message,
    MessageAttachment,
    MessageReaction,
    Notification,
    User,
)
from .enums import ChannelRole, ChannelVisibility, MessageType, NotificationType

__all__ = [
    "Base",
    "User",
    "Channel",
    "ChannelMember",
    "Message",
    "MessageAttachment",
    "MessageReaction",
    "Notification",
    "ChannelRole",
    "ChannelVisibility",
    "MessageType",
    "NotificationType",
]
