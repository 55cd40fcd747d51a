"""Publish committed chat state changes to realtime subscribers."""

from __future__ import annotations

from typing import Iterable

from huddle.realtime import get_dispatcher, get_presence_coordinator
from huddle.realtime.channels import channel_scope, channel_topic, user_topic
from huddle.realtime.events import (
    ChannelDeleted,
    ChannelUpdated,
    ChannelUserJoined,
    ChannelUserLeft,
    EventUser,
    MessageDeleted,
    MessageSent,
    MessageUpdated,
    NotificationCreated,
    ReactionToggled,
)

from app.models import Channel, Notification, User
from app.schemas import ChannelRead, MessageRead, NotificationRead
from app.services.messages import DeletedMessage
from app.services.reactions import ReactionToggleResult


def to_event_user(user: User) -> EventUser:
    return EventUser(id=user.id, name=user.name, avatar_url=user.avatar_url)


async def publish_message_sent(message: MessageRead, *, actor_id: int) -> None:
    await get_dispatcher().publish(
        channel_topic(message.channel_id), MessageSent(message=message), exclude_user=actor_id
    )


async def publish_message_updated(message: MessageRead, *, actor_id: int) -> None:
    await get_dispatcher().publish(
        channel_topic(message.channel_id), MessageUpdated(message=message), exclude_user=actor_id
    )


async def publish_message_deleted(deleted: DeletedMessage, *, actor_id: int) -> None:
    event = MessageDeleted(
        channel_id=deleted.channel_id,
        message_id=deleted.message_id,
        parent_message_id=deleted.parent_message_id,
        parent_thread_reply_count=deleted.parent_thread_reply_count,
    )
    await get_dispatcher().publish(channel_topic(deleted.channel_id), event, exclude_user=actor_id)


async def publish_reaction_toggled(
    channel_id: int,
    message_id: int,
    emoji: str,
    result: ReactionToggleResult,
    *,
    actor_id: int,
) -> None:
    event = ReactionToggled(
        channel_id=channel_id,
        message_id=message_id,
        user_id=actor_id,
        emoji=emoji,
        state=result.state.value,
        reactions=result.reactions,
    )
    await get_dispatcher().publish(channel_topic(channel_id), event, exclude_user=actor_id)


async def publish_channel_updated(channel: Channel, *, actor_id: int) -> None:
    event = ChannelUpdated(channel=ChannelRead.model_validate(channel))
    await get_dispatcher().publish(channel_topic(channel.id), event, exclude_user=actor_id)


async def publish_channel_deleted(channel_id: int, member_ids: Iterable[int]) -> None:
    """Tell former members; the channel feed itself no longer authorizes anyone."""

    await get_presence_coordinator().forget_scope(channel_scope(channel_id))
    dispatcher = get_dispatcher()
    event = ChannelDeleted(channel_id=channel_id)
    for user_id in sorted(member_ids):
        await dispatcher.publish(user_topic(user_id), event)


async def publish_member_joined(channel_id: int, user: User) -> None:
    event = ChannelUserJoined(channel_id=channel_id, user=to_event_user(user))
    await get_dispatcher().publish(channel_topic(channel_id), event, exclude_user=user.id)


async def publish_member_left(channel_id: int, user: User) -> None:
    """Take the former member off the channel roster, then announce the leave."""

    await get_presence_coordinator().evict(channel_scope(channel_id), user.id)
    event = ChannelUserLeft(channel_id=channel_id, user=to_event_user(user))
    await get_dispatcher().publish(channel_topic(channel_id), event, exclude_user=user.id)


async def publish_notifications(notifications: Iterable[Notification]) -> None:
    dispatcher = get_dispatcher()
    for notification in notifications:
        event = NotificationCreated(notification=NotificationRead.model_validate(notification))
        await dispatcher.publish(user_topic(notification.user_id), event)
