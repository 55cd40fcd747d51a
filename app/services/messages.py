"""Message and thread engine.

Reply counters are maintained with SQL expressions in the same transaction
as the reply insert or soft delete, so ``thread_reply_count`` on a root always
equals the number of its live replies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from fastapi import UploadFile
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.errors import Forbidden, NotFound, ValidationFailed
from app.core.storage import StoredFile, delete_stored, store_upload
from app.models import (
    Channel,
    Message,
    MessageAttachment,
    MessageType,
    Notification,
    User,
)
from app.monitoring.metrics import chat_messages_total
from app.services import access
from app.services.notifications import notify_for_message

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass(slots=True)
class PostedMessage:
    message: Message
    parent: Message | None = None
    notifications: list[Notification] = field(default_factory=list)


@dataclass(slots=True)
class DeletedMessage:
    channel_id: int
    message_id: int
    parent_message_id: int | None
    parent_thread_reply_count: int | None


def _clean_content(content: str | None) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationFailed("Message content is required")
    if len(text) > settings.chat_message_max_length:
        raise ValidationFailed(
            f"Message content exceeds {settings.chat_message_max_length} characters"
        )
    return text


def _load_parent(db: Session, channel: Channel, parent_id: int) -> Message:
    parent = db.get(Message, parent_id)
    if parent is None or parent.is_deleted or parent.channel_id != channel.id:
        raise NotFound("Parent message not found")
    if parent.parent_message_id is not None:
        raise ValidationFailed("Replies can only be posted to a top-level message")
    return parent


async def post_message(
    db: Session,
    channel: Channel,
    author: User,
    content: str | None,
    *,
    parent_id: int | None = None,
    message_type: MessageType = MessageType.TEXT,
    uploads: Sequence[UploadFile] = (),
) -> PostedMessage:
    """Create a message, optionally as a reply and with attachments.

    Attachment blobs are written before the transaction opens; if the
    transaction fails they are removed so no row ever references a missing
    blob and no blob outlives a failed message.
    """

    access.ensure_can_post(db, author.id, channel)
    text = _clean_content(content)
    if len(uploads) > settings.max_attachments_per_message:
        raise ValidationFailed(
            f"A message can carry at most {settings.max_attachments_per_message} attachments"
        )
    parent = _load_parent(db, channel, parent_id) if parent_id is not None else None

    stored: list[StoredFile] = []
    try:
        for upload in uploads:
            stored.append(await store_upload(channel.id, upload))
    except (ValidationFailed, OSError):
        delete_stored(item.relative_path for item in stored)
        raise

    message = Message(
        channel_id=channel.id,
        author_id=author.id,
        parent_message_id=parent.id if parent is not None else None,
        content=text,
        type=message_type,
    )
    for item in stored:
        message.attachments.append(
            MessageAttachment(
                channel_id=channel.id,
                file_name=item.file_name,
                content_type=item.content_type,
                file_size=item.file_size,
                storage_path=item.relative_path,
            )
        )
    db.add(message)

    try:
        db.flush()
        if parent is not None:
            db.execute(
                update(Message)
                .where(Message.id == parent.id)
                .values(
                    thread_reply_count=Message.thread_reply_count + 1,
                    last_reply_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
        notifications = notify_for_message(db, message, channel, author, parent)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        delete_stored(item.relative_path for item in stored)
        logger.exception("Failed to persist message in channel %s", channel.id)
        raise

    db.refresh(message)
    if parent is not None:
        db.refresh(parent)
    for notification in notifications:
        db.refresh(notification)
    chat_messages_total.labels("reply" if parent is not None else "message").inc()
    return PostedMessage(message=message, parent=parent, notifications=notifications)


def edit_message(db: Session, message: Message, user: User, content: str | None) -> Message:
    """Replace the content of a message. Only its author may do this."""

    if message.is_deleted:
        raise NotFound(access.MESSAGE_NOT_FOUND)
    if message.author_id != user.id:
        raise Forbidden("You can only edit your own messages")
    message.content = _clean_content(content)
    message.edited_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(message)
    return message


def delete_message(db: Session, message: Message, user: User) -> DeletedMessage:
    """Soft-delete a message, drop its attachments and fix the parent counter."""

    if message.is_deleted:
        raise NotFound(access.MESSAGE_NOT_FOUND)
    access.ensure_can_moderate(db, user.id, message)

    # Only the delete that flips deleted_at adjusts the parent counter.
    flipped = db.execute(
        update(Message)
        .where(Message.id == message.id, Message.deleted_at.is_(None))
        .values(deleted_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount == 0:
        db.rollback()
        raise NotFound(access.MESSAGE_NOT_FOUND)

    blob_paths = [attachment.storage_path for attachment in message.attachments]
    message.attachments.clear()
    parent_id = message.parent_message_id
    if parent_id is not None:
        db.execute(
            update(Message)
            .where(Message.id == parent_id)
            .values(
                thread_reply_count=case(
                    (Message.thread_reply_count > 0, Message.thread_reply_count - 1),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    delete_stored(blob_paths)

    parent_count: int | None = None
    if parent_id is not None:
        parent_count = db.execute(
            select(Message.thread_reply_count).where(Message.id == parent_id)
        ).scalar_one_or_none()
    return DeletedMessage(
        channel_id=message.channel_id,
        message_id=message.id,
        parent_message_id=parent_id,
        parent_thread_reply_count=parent_count,
    )


def list_messages(
    db: Session,
    channel: Channel,
    *,
    parent_id: int | None = None,
    limit: int,
    offset: int = 0,
) -> tuple[list[Message], int]:
    """Return live messages newest first: top-level ones, or one thread's replies."""

    conditions = [Message.channel_id == channel.id, Message.deleted_at.is_(None)]
    if parent_id is None:
        conditions.append(Message.parent_message_id.is_(None))
    else:
        conditions.append(Message.parent_message_id == parent_id)

    total = db.execute(select(func.count(Message.id)).where(*conditions)).scalar_one()
    stmt = (
        select(Message)
        .options(
            selectinload(Message.author),
            selectinload(Message.attachments),
            selectinload(Message.reactions),
        )
        .where(*conditions)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(db.execute(stmt).scalars()), int(total)
