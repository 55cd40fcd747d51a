"""Per-user notifications for thread replies and direct messages."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models import (
    Channel,
    ChannelVisibility,
    Message,
    Notification,
    NotificationType,
    User,
)
from app.services import membership


def _preview(content: str, limit: int = 140) -> str:
    return content if len(content) <= limit else content[: limit - 1] + "…"


def notify_for_message(
    db: Session,
    message: Message,
    channel: Channel,
    author: User,
    parent: Message | None,
) -> list[Notification]:
    """Stage notifications produced by *message*; the caller commits."""

    payload = {
        "channel_id": channel.id,
        "channel_name": channel.name,
        "message_id": message.id,
        "author_id": author.id,
        "author_name": author.name,
        "preview": _preview(message.content),
    }
    created: list[Notification] = []

    if parent is not None and parent.author_id is not None and parent.author_id != author.id:
        created.append(
            Notification(
                user_id=parent.author_id,
                type=NotificationType.THREAD_REPLY,
                data={**payload, "parent_message_id": parent.id},
            )
        )
    elif parent is None and channel.visibility is ChannelVisibility.DIRECT:
        for user_id in membership.member_ids(db, channel.id):
            if user_id == author.id:
                continue
            created.append(
                Notification(user_id=user_id, type=NotificationType.DIRECT_MESSAGE, data=dict(payload))
            )

    db.add_all(created)
    return created


def list_notifications(
    db: Session,
    user_id: int,
    *,
    read: bool | None = None,
    page: int = 1,
    per_page: int = 15,
) -> tuple[list[Notification], int]:
    conditions = [Notification.user_id == user_id]
    if read is True:
        conditions.append(Notification.read_at.is_not(None))
    elif read is False:
        conditions.append(Notification.read_at.is_(None))
    total = db.execute(select(func.count(Notification.id)).where(*conditions)).scalar_one()
    items = db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(per_page)
        .offset((page - 1) * per_page)
    ).scalars()
    return list(items), int(total)


def mark_as_read(db: Session, user_id: int, notification_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFound("Notification not found")
    if notification.read_at is None:
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_as_read(db: Session, user_id: int) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read_at.is_(None))
        .values(read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0
