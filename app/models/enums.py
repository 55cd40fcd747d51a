from __future__ import annotations

from enum import Enum


class ChannelVisibility(str, Enum):
    """Who can discover and join a channel."""

    PUBLIC = "public"
    PRIVATE = "private"
    DIRECT = "direct"


class ChannelRole(str, Enum):
    """Roles that a user can have inside a channel."""

    ADMIN = "admin"
    MEMBER = "member"


class MessageType(str, Enum):
    """Kinds of messages a member can post."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class NotificationType(str, Enum):
    """Kinds of notifications delivered to a user."""

    THREAD_REPLY = "thread_reply"
    DIRECT_MESSAGE = "direct_message"
