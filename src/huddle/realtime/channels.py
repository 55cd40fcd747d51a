"""Logical broadcast channel names and subscription authorization results."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChannelKind(str, Enum):
    """Kinds of logical broadcast channels."""

    CHANNEL = "private-channel"
    PRESENCE = "presence-channel"
    USER = "private-user"
    ONLINE = "presence-online"


ONLINE_CHANNEL = ChannelKind.ONLINE.value
GLOBAL_SCOPE = "global"

_NAME_PATTERN = re.compile(r"^(private-channel|presence-channel|private-user)\.(\d+)$")


class ChannelNameError(ValueError):
    """Raised when a string is not a known logical channel name."""


@dataclass(frozen=True, slots=True)
class ChannelTarget:
    kind: ChannelKind
    resource_id: int | None = None

    @property
    def name(self) -> str:
        if self.resource_id is None:
            return self.kind.value
        return f"{self.kind.value}.{self.resource_id}"

    @property
    def is_presence(self) -> bool:
        return self.kind in (ChannelKind.PRESENCE, ChannelKind.ONLINE)

    @property
    def presence_scope(self) -> str | None:
        """Presence scope tracked for this channel, if it is a presence channel."""

        if self.kind is ChannelKind.ONLINE:
            return GLOBAL_SCOPE
        if self.kind is ChannelKind.PRESENCE:
            return channel_scope(self.resource_id)
        return None


def channel_topic(channel_id: int) -> str:
    return f"{ChannelKind.CHANNEL.value}.{channel_id}"


def presence_topic(channel_id: int) -> str:
    return f"{ChannelKind.PRESENCE.value}.{channel_id}"


def user_topic(user_id: int) -> str:
    return f"{ChannelKind.USER.value}.{user_id}"


def channel_scope(channel_id: int | None) -> str:
    return f"channel:{channel_id}"


def parse_channel_name(name: str) -> ChannelTarget:
    if name == ONLINE_CHANNEL:
        return ChannelTarget(ChannelKind.ONLINE)
    match = _NAME_PATTERN.match(name or "")
    if match is None:
        raise ChannelNameError(f"Unknown broadcast channel '{name}'")
    return ChannelTarget(ChannelKind(match.group(1)), int(match.group(2)))


class AuthorizationDecision(str, Enum):
    ALLOW = "allow"
    ALLOW_WITH_METADATA = "allow-with-metadata"
    DENY = "deny"


@dataclass(frozen=True, slots=True)
class ChannelAuthorization:
    """Outcome of the subscription authorization callback."""

    decision: AuthorizationDecision
    metadata: dict[str, Any] | None = field(default=None)

    @property
    def allowed(self) -> bool:
        return self.decision is not AuthorizationDecision.DENY

    @classmethod
    def allow(cls, metadata: dict[str, Any] | None = None) -> "ChannelAuthorization":
        if metadata is None:
            return cls(AuthorizationDecision.ALLOW)
        return cls(AuthorizationDecision.ALLOW_WITH_METADATA, dict(metadata))

    @classmethod
    def deny(cls) -> "ChannelAuthorization":
        return cls(AuthorizationDecision.DENY)


__all__ = [
    "AuthorizationDecision",
    "ChannelAuthorization",
    "ChannelKind",
    "ChannelNameError",
    "ChannelTarget",
    "GLOBAL_SCOPE",
    "ONLINE_CHANNEL",
    "channel_scope",
    "channel_topic",
    "parse_channel_name",
    "presence_topic",
    "user_topic",
]
