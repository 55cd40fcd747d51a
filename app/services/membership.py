"""Durable (channel, user) membership records."""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.core.errors import Conflict, Forbidden, NotFound
from app.models import Channel, ChannelMember, ChannelRole

logger = logging.getLogger(__name__)


def get_membership(db: Session, channel_id: int, user_id: int) -> ChannelMember | None:
    """Return membership entry for the given user and channel if it exists."""

    stmt = select(ChannelMember).where(
        ChannelMember.channel_id == channel_id,
        ChannelMember.user_id == user_id,
    )
    return db.execute(stmt).scalar_one_or_none()


def is_member(db: Session, channel_id: int, user_id: int) -> bool:
    return get_membership(db, channel_id, user_id) is not None


def role_of(db: Session, channel_id: int, user_id: int) -> ChannelRole | None:
    stmt = select(ChannelMember.role).where(
        ChannelMember.channel_id == channel_id,
        ChannelMember.user_id == user_id,
    )
    return db.execute(stmt).scalar_one_or_none()


def member_ids(db: Session, channel_id: int) -> set[int]:
    stmt = select(ChannelMember.user_id).where(ChannelMember.channel_id == channel_id)
    return set(db.execute(stmt).scalars())


def list_members(db: Session, channel_id: int) -> list[ChannelMember]:
    stmt = (
        select(ChannelMember)
        .options(joinedload(ChannelMember.user))
        .where(ChannelMember.channel_id == channel_id)
        .order_by(ChannelMember.joined_at, ChannelMember.id)
    )
    return list(db.execute(stmt).scalars())


def add_member(
    db: Session,
    channel: Channel,
    user_id: int,
    role: ChannelRole = ChannelRole.MEMBER,
) -> ChannelMember:
    """Insert a membership row.

    The unique constraint on (channel_id, user_id) decides between concurrent
    inserts for the same pair; the losing insert raises ``Conflict``.
    """

    membership = ChannelMember(channel_id=channel.id, user_id=user_id, role=role)
    db.add(membership)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("Duplicate membership rejected", extra={"channel_id": channel.id, "user_id": user_id})
        raise Conflict("User is already a member of this channel") from None
    db.refresh(membership)
    return membership


def remove_member(db: Session, channel: Channel, user_id: int) -> None:
    """Delete a membership row. The channel creator can never be removed."""

    if user_id == channel.creator_id:
        raise Forbidden("The channel creator cannot leave the channel")

    result = db.execute(
        delete(ChannelMember)
        .where(ChannelMember.channel_id == channel.id, ChannelMember.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise NotFound("Membership not found")
    db.commit()
