"""Closed set of events delivered over logical broadcast channels.

Each event is a pydantic model tagged by its ``event`` field so producers and
clients share one schema per event name.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from app.schemas.channels import ChannelRead
from app.schemas.messages import MessageReactionSummary, MessageRead
from app.schemas.notifications import NotificationRead


class EventUser(BaseModel):
    """Public identity attached to membership, presence and typing events."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    avatar_url: str | None = None


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: str

    def envelope(self, channel_name: str) -> dict[str, Any]:
        """Frame sent to websocket subscribers."""

        return {
            "type": "event",
            "channel": channel_name,
            "event": self.event,
            "data": self.model_dump(mode="json", exclude={"event"}),
        }


class MessageSent(_Event):
    event: Literal["message.sent"] = "message.sent"
    message: MessageRead


class MessageUpdated(_Event):
    event: Literal["message.updated"] = "message.updated"
    message: MessageRead


class MessageDeleted(_Event):
    event: Literal["message.deleted"] = "message.deleted"
    channel_id: int
    message_id: int
    parent_message_id: int | None = None
    parent_thread_reply_count: int | None = None


class ReactionToggled(_Event):
    event: Literal["reaction.toggled"] = "reaction.toggled"
    channel_id: int
    message_id: int
    user_id: int
    emoji: str
    state: Literal["added", "removed"]
    reactions: list[MessageReactionSummary]


class ChannelUpdated(_Event):
    event: Literal["channel.updated"] = "channel.updated"
    channel: ChannelRead


class ChannelDeleted(_Event):
    event: Literal["channel.deleted"] = "channel.deleted"
    channel_id: int


class ChannelUserJoined(_Event):
    event: Literal["channel.user.joined"] = "channel.user.joined"
    channel_id: int
    user: EventUser


class ChannelUserLeft(_Event):
    event: Literal["channel.user.left"] = "channel.user.left"
    channel_id: int
    user: EventUser


class NotificationCreated(_Event):
    event: Literal["notification.created"] = "notification.created"
    notification: NotificationRead


class PresenceSnapshot(_Event):
    event: Literal["presence.snapshot"] = "presence.snapshot"
    scope: str
    sequence: int
    members: list[EventUser]


class PresenceJoined(_Event):
    event: Literal["presence.joined"] = "presence.joined"
    scope: str
    sequence: int
    member: EventUser


class PresenceLeft(_Event):
    event: Literal["presence.left"] = "presence.left"
    scope: str
    sequence: int
    member: EventUser


class TypingUpdated(_Event):
    event: Literal["typing"] = "typing"
    channel_id: int
    users: list[EventUser]
    expires_in: float


BroadcastEvent = Annotated[
    Union[
        MessageSent,
        MessageUpdated,
        MessageDeleted,
        ReactionToggled,
        ChannelUpdated,
        ChannelDeleted,
        ChannelUserJoined,
        ChannelUserLeft,
        NotificationCreated,
        PresenceSnapshot,
        PresenceJoined,
        PresenceLeft,
        TypingUpdated,
    ],
    Field(discriminator="event"),
]

EVENT_NAMES: frozenset[str] = frozenset(
    {
        "message.sent",
        "message.updated",
        "message.deleted",
        "reaction.toggled",
        "channel.updated",
        "channel.deleted",
        "channel.user.joined",
        "channel.user.left",
        "notification.created",
        "presence.snapshot",
        "presence.joined",
        "presence.left",
        "typing",
    }
)

_event_adapter: TypeAdapter[BroadcastEvent] = TypeAdapter(BroadcastEvent)


def parse_event(event_name: str, data: dict[str, Any]) -> BroadcastEvent:
    """Rebuild an event from the ``event``/``data`` pair of an envelope."""

    return _event_adapter.validate_python({"event": event_name, **data})
