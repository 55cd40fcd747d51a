"""Channel lifecycle: creation, edits, deletion, joins and direct channels."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import false, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import Forbidden, NotFound, ValidationFailed
from app.core.storage import delete_stored
from app.models import (
    Channel,
    ChannelMember,
    ChannelRole,
    ChannelVisibility,
    MessageAttachment,
    User,
)
from app.services import access, membership

logger = logging.getLogger(__name__)

SEARCH_MIN_LENGTH = 2
SEARCH_MAX_LENGTH = 100


@dataclass(slots=True)
class DeletedChannel:
    channel_id: int
    member_ids: set[int]
    removed_blobs: int


def create_channel(
    db: Session,
    creator: User,
    *,
    name: str,
    description: str | None = None,
    visibility: ChannelVisibility = ChannelVisibility.PUBLIC,
) -> Channel:
    """Create a public or private channel with its creator as admin."""

    if visibility is ChannelVisibility.DIRECT:
        raise ValidationFailed("Direct channels are opened with another user, not created")
    channel = Channel(
        name=name,
        description=description,
        visibility=visibility,
        creator_id=creator.id,
    )
    channel.members.append(ChannelMember(user_id=creator.id, role=ChannelRole.ADMIN))
    db.add(channel)
    db.commit()
    db.refresh(channel)
    return channel


def update_channel(
    db: Session,
    channel: Channel,
    user: User,
    *,
    name: str | None = None,
    description: str | None = None,
) -> Channel:
    access.ensure_can_update_channel(db, user.id, channel)
    if name is not None:
        channel.name = name
    if description is not None:
        channel.description = description
    db.commit()
    db.refresh(channel)
    return channel


def delete_channel(db: Session, channel: Channel, user: User) -> DeletedChannel:
    """Delete a channel and everything under it, then drop attachment blobs."""

    access.ensure_can_delete_channel(db, user.id, channel)
    members = membership.member_ids(db, channel.id)
    blob_paths = list(
        db.execute(
            select(MessageAttachment.storage_path).where(MessageAttachment.channel_id == channel.id)
        ).scalars()
    )
    channel_id = channel.id
    db.delete(channel)
    db.commit()
    removed = delete_stored(blob_paths)
    logger.info("Channel %s deleted; removed %s attachment blobs", channel_id, removed)
    return DeletedChannel(channel_id=channel_id, member_ids=members, removed_blobs=removed)


def join_channel(db: Session, channel: Channel, user: User) -> ChannelMember:
    access.ensure_can_join(db, user.id, channel)
    return membership.add_member(db, channel, user.id)


def leave_channel(db: Session, channel: Channel, user: User) -> None:
    access.ensure_can_read(db, user.id, channel)
    if channel.visibility is ChannelVisibility.DIRECT:
        raise Forbidden("Direct channels cannot be left")
    membership.remove_member(db, channel, user.id)


def list_channels(
    db: Session,
    user_id: int,
    *,
    visibility: ChannelVisibility | None = None,
) -> list[Channel]:
    """Channels the user belongs to, optionally filtered by visibility."""

    stmt = (
        select(Channel)
        .join(ChannelMember, ChannelMember.channel_id == Channel.id)
        .where(ChannelMember.user_id == user_id)
        .order_by(Channel.name, Channel.id)
    )
    if visibility is not None:
        stmt = stmt.where(Channel.visibility == visibility)
    return list(db.execute(stmt).scalars())


def joined_channel_ids(db: Session, user_id: int) -> list[int]:
    stmt = (
        select(ChannelMember.channel_id)
        .where(ChannelMember.user_id == user_id)
        .order_by(ChannelMember.channel_id)
    )
    return list(db.execute(stmt).scalars())


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_channels(
    db: Session,
    user_id: int,
    query: str,
    *,
    limit: int,
) -> list[tuple[Channel, bool]]:
    """Name or description search over channels the user can see, flagged with membership."""

    term = (query or "").strip()
    if not SEARCH_MIN_LENGTH <= len(term) <= SEARCH_MAX_LENGTH:
        raise ValidationFailed(
            f"Search query must be between {SEARCH_MIN_LENGTH} and {SEARCH_MAX_LENGTH} characters"
        )
    joined = set(joined_channel_ids(db, user_id))
    pattern = f"%{_escape_like(term)}%"
    stmt = (
        select(Channel)
        .where(
            or_(
                Channel.name.ilike(pattern, escape="\\"),
                Channel.description.ilike(pattern, escape="\\"),
            ),
            or_(
                Channel.visibility == ChannelVisibility.PUBLIC,
                Channel.id.in_(joined) if joined else false(),
            ),
            Channel.visibility != ChannelVisibility.DIRECT,
        )
        .order_by(Channel.name, Channel.id)
        .limit(limit)
    )
    return [(channel, channel.id in joined) for channel in db.execute(stmt).scalars()]


def _find_direct(db: Session, first_id: int, second_id: int) -> Channel | None:
    stmt = select(Channel).where(
        Channel.direct_user_a_id == first_id,
        Channel.direct_user_b_id == second_id,
    )
    return db.execute(stmt).scalar_one_or_none()


def get_or_create_direct_channel(db: Session, user: User, other_user_id: int) -> tuple[Channel, bool]:
    """Return the direct channel between two users, creating it at most once.

    The pair is stored normalized (lower id first) under a unique constraint;
    if a concurrent request created it first, the existing row is returned.
    """

    if other_user_id == user.id:
        raise ValidationFailed("Cannot open a direct channel with yourself")
    other = db.get(User, other_user_id)
    if other is None:
        raise NotFound("User not found")

    first_id, second_id = sorted((user.id, other.id))
    existing = _find_direct(db, first_id, second_id)
    if existing is not None:
        return existing, False

    channel = Channel(
        name=f"DM: {user.name} & {other.name}",
        description=f"Direct messages between {user.name} and {other.name}",
        visibility=ChannelVisibility.DIRECT,
        creator_id=user.id,
        direct_user_a_id=first_id,
        direct_user_b_id=second_id,
    )
    channel.members.append(ChannelMember(user_id=user.id, role=ChannelRole.ADMIN))
    channel.members.append(ChannelMember(user_id=other.id, role=ChannelRole.MEMBER))
    db.add(channel)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _find_direct(db, first_id, second_id)
        if existing is None:
            raise
        return existing, False
    db.refresh(channel)
    return channel, True
