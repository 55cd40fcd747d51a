"""Channel access policy.

The ``can_*`` predicates are side-effect free and only read membership data.
The ``ensure_*`` helpers turn a failed predicate into an error. A channel is
visible to a user when it is public or the user is a member; denials on a
channel the caller cannot see are reported as ``NotFound`` with the same
detail as a missing channel so private channel ids cannot be probed.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from huddle.realtime.channels import (
    ChannelAuthorization,
    ChannelKind,
    ChannelNameError,
    parse_channel_name,
)

from app.core.errors import Conflict, Forbidden, NotFound
from app.models import Channel, ChannelRole, ChannelVisibility, Message, User
from app.services import membership

CHANNEL_NOT_FOUND = "Channel not found"
MESSAGE_NOT_FOUND = "Message not found"


def can_subscribe(db: Session, user_id: int, channel: Channel) -> bool:
    return membership.is_member(db, channel.id, user_id)


def can_read(db: Session, user_id: int, channel: Channel) -> bool:
    return membership.is_member(db, channel.id, user_id)


def can_post(db: Session, user_id: int, channel: Channel) -> bool:
    return membership.is_member(db, channel.id, user_id)


def can_join(db: Session, user_id: int, channel: Channel) -> bool:
    return channel.visibility is ChannelVisibility.PUBLIC and not membership.is_member(
        db, channel.id, user_id
    )


def can_moderate(db: Session, user_id: int, message: Message) -> bool:
    """Author, channel admin or channel creator may remove a message."""

    if message.author_id == user_id:
        return True
    channel = message.channel
    if channel.creator_id == user_id:
        return True
    return membership.role_of(db, channel.id, user_id) is ChannelRole.ADMIN


def can_update_channel(user_id: int, channel: Channel) -> bool:
    return channel.creator_id == user_id


def can_delete_channel(user_id: int, channel: Channel) -> bool:
    return channel.creator_id == user_id


def is_visible(db: Session, user_id: int, channel: Channel) -> bool:
    return channel.visibility is ChannelVisibility.PUBLIC or membership.is_member(
        db, channel.id, user_id
    )


def _deny(db: Session, user_id: int, channel: Channel, detail: str) -> None:
    if not is_visible(db, user_id, channel):
        raise NotFound(CHANNEL_NOT_FOUND)
    raise Forbidden(detail)


def load_channel(db: Session, channel_id: int) -> Channel:
    channel = db.get(Channel, channel_id)
    if channel is None:
        raise NotFound(CHANNEL_NOT_FOUND)
    return channel


def load_channel_for(db: Session, channel_id: int, user_id: int) -> Channel:
    """Fetch a channel, reporting channels the user cannot see as missing."""

    channel = load_channel(db, channel_id)
    if not is_visible(db, user_id, channel):
        raise NotFound(CHANNEL_NOT_FOUND)
    return channel


def load_message(db: Session, message_id: int, user_id: int) -> Message:
    """Fetch a live message, hiding messages of channels the user cannot see."""

    message = db.get(Message, message_id)
    if message is None or message.is_deleted:
        raise NotFound(MESSAGE_NOT_FOUND)
    if not is_visible(db, user_id, message.channel):
        raise NotFound(MESSAGE_NOT_FOUND)
    return message


def ensure_can_read(db: Session, user_id: int, channel: Channel) -> None:
    if not can_read(db, user_id, channel):
        _deny(db, user_id, channel, "You are not a member of this channel")


def ensure_can_post(db: Session, user_id: int, channel: Channel) -> None:
    if not can_post(db, user_id, channel):
        _deny(db, user_id, channel, "You are not a member of this channel")


def ensure_can_subscribe(db: Session, user_id: int, channel: Channel) -> None:
    if not can_subscribe(db, user_id, channel):
        _deny(db, user_id, channel, "You are not a member of this channel")


def ensure_can_join(db: Session, user_id: int, channel: Channel) -> None:
    if can_join(db, user_id, channel):
        return
    if membership.is_member(db, channel.id, user_id):
        raise Conflict("You are already a member of this channel")
    _deny(db, user_id, channel, "This channel cannot be joined")


def ensure_can_moderate(db: Session, user_id: int, message: Message) -> None:
    if not can_moderate(db, user_id, message):
        _deny(db, user_id, message.channel, "You cannot delete this message")


def ensure_can_update_channel(db: Session, user_id: int, channel: Channel) -> None:
    if not can_update_channel(user_id, channel):
        _deny(db, user_id, channel, "Only the channel creator can update this channel")


def ensure_can_delete_channel(db: Session, user_id: int, channel: Channel) -> None:
    if not can_delete_channel(user_id, channel):
        _deny(db, user_id, channel, "Only the channel creator can delete this channel")


def authorize_channel(db: Session, user: User, channel_name: str) -> ChannelAuthorization:
    """Decide whether *user* may subscribe to a logical broadcast channel."""

    try:
        target = parse_channel_name(channel_name)
    except ChannelNameError:
        return ChannelAuthorization.deny()

    if target.kind is ChannelKind.USER:
        return ChannelAuthorization.allow() if target.resource_id == user.id else ChannelAuthorization.deny()

    metadata = {"id": user.id, "name": user.name, "avatar_url": user.avatar_url}
    if target.kind is ChannelKind.ONLINE:
        return ChannelAuthorization.allow(metadata)

    channel = db.get(Channel, target.resource_id)
    if channel is None or not can_subscribe(db, user.id, channel):
        return ChannelAuthorization.deny()
    if target.kind is ChannelKind.PRESENCE:
        return ChannelAuthorization.allow(metadata)
    return ChannelAuthorization.allow()
