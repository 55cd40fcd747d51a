"""Channel-specific API endpoints."""

from __future__ import annotations

from typing import Sequence

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from huddle.realtime import get_presence_coordinator
from huddle.realtime.events import TypingUpdated
from huddle.realtime.presence import NotPresentError

from app.api.deps import get_current_user
from app.config import get_settings
from app.core import build_download_url, resolve_path
from app.core.errors import Conflict, NotFound
from app.database import get_db
from app.models import ChannelVisibility, Message, MessageAttachment, MessageType, User
from app.schemas import (
    ChannelCreate,
    ChannelMemberRead,
    ChannelRead,
    ChannelSearchResult,
    ChannelUpdate,
    DirectChannelRequest,
    JoinedChannels,
    MessageAttachmentRead,
    MessagePage,
    MessageRead,
    PublicUser,
)
from app.services import access, chat_events, membership
from app.services import channels as channel_service
from app.services import messages as message_service
from app.services.reactions import summarize_reactions
from app.services.users import is_online

router = APIRouter(prefix="/channels", tags=["channels"])

settings = get_settings()


def _serialize_attachment(attachment: MessageAttachment) -> MessageAttachmentRead:
    return MessageAttachmentRead(
        id=attachment.id,
        channel_id=attachment.channel_id,
        message_id=attachment.message_id,
        file_name=attachment.file_name,
        content_type=attachment.content_type,
        file_size=attachment.file_size,
        download_url=build_download_url(attachment.channel_id, attachment.id),
        created_at=attachment.created_at,
    )


def serialize_message(message: Message, current_user_id: int | None) -> MessageRead:
    """Build the public representation of *message* as seen by *current_user_id*."""

    return MessageRead(
        id=message.id,
        channel_id=message.channel_id,
        author_id=message.author_id,
        author=PublicUser.model_validate(message.author) if message.author is not None else None,
        parent_message_id=message.parent_message_id,
        content=message.content,
        type=message.type,
        thread_reply_count=message.thread_reply_count,
        last_reply_at=message.last_reply_at,
        created_at=message.created_at,
        updated_at=message.updated_at,
        edited_at=message.edited_at,
        attachments=[_serialize_attachment(item) for item in message.attachments],
        reactions=summarize_reactions(message.reactions, current_user_id),
    )


def _normalize_uploads(files: list[UploadFile] | UploadFile | None) -> list[UploadFile]:
    if files is None:
        return []
    if isinstance(files, (list, tuple)):
        return list(files)
    return [files]


@router.get("", response_model=list[ChannelRead])
def list_channels(
    channel_type: ChannelVisibility | None = Query(default=None, alias="type"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ChannelRead]:
    """Return the channels the current user belongs to."""

    channels = channel_service.list_channels(db, current_user.id, visibility=channel_type)
    return [ChannelRead.model_validate(channel) for channel in channels]


@router.post("", response_model=ChannelRead, status_code=status.HTTP_201_CREATED)
def create_channel(
    payload: ChannelCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChannelRead:
    """Create a public or private channel owned by the current user."""

    channel = channel_service.create_channel(
        db,
        current_user,
        name=payload.name,
        description=payload.description,
        visibility=payload.visibility,
    )
    return ChannelRead.model_validate(channel)


@router.get("/search", response_model=list[ChannelSearchResult])
def search_channels(
    query: str = Query(..., description="Part of a channel name or description"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ChannelSearchResult]:
    results = channel_service.search_channels(
        db, current_user.id, query, limit=settings.channel_search_limit
    )
    return [
        ChannelSearchResult(**ChannelRead.model_validate(channel).model_dump(), is_member=joined)
        for channel, joined in results
    ]


@router.get("/joined", response_model=JoinedChannels)
def joined_channels(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> JoinedChannels:
    return JoinedChannels(channel_ids=channel_service.joined_channel_ids(db, current_user.id))


@router.post("/direct", response_model=ChannelRead)
def open_direct_channel(
    payload: DirectChannelRequest,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChannelRead:
    """Return the direct channel with another user, creating it on first use."""

    channel, created = channel_service.get_or_create_direct_channel(db, current_user, payload.user_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return ChannelRead.model_validate(channel)


@router.get("/{channel_id}", response_model=ChannelRead)
def show_channel(
    channel_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChannelRead:
    channel = access.load_channel(db, channel_id)
    access.ensure_can_read(db, current_user.id, channel)
    return ChannelRead.model_validate(channel)


@router.put("/{channel_id}", response_model=ChannelRead)
async def update_channel(
    channel_id: int,
    payload: ChannelUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChannelRead:
    channel = access.load_channel(db, channel_id)
    channel = channel_service.update_channel(
        db, channel, current_user, name=payload.name, description=payload.description
    )
    await chat_events.publish_channel_updated(channel, actor_id=current_user.id)
    return ChannelRead.model_validate(channel)


@router.delete("/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_channel(
    channel_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete a channel with its messages, memberships and attachment files."""

    channel = access.load_channel(db, channel_id)
    deleted = channel_service.delete_channel(db, channel, current_user)
    await chat_events.publish_channel_deleted(deleted.channel_id, deleted.member_ids)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{channel_id}/join", response_model=ChannelRead)
async def join_channel(
    channel_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ChannelRead:
    channel = access.load_channel(db, channel_id)
    channel_service.join_channel(db, channel, current_user)
    await chat_events.publish_member_joined(channel.id, current_user)
    return ChannelRead.model_validate(channel)


@router.post("/{channel_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_channel(
    channel_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    channel = access.load_channel(db, channel_id)
    channel_service.leave_channel(db, channel, current_user)
    await chat_events.publish_member_left(channel.id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{channel_id}/members", response_model=list[ChannelMemberRead])
def list_channel_members(
    channel_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ChannelMemberRead]:
    channel = access.load_channel(db, channel_id)
    access.ensure_can_read(db, current_user.id, channel)
    live = get_presence_coordinator().online_user_ids()
    return [
        ChannelMemberRead(
            user=PublicUser.model_validate(entry.user),
            role=entry.role,
            joined_at=entry.joined_at,
            is_online=is_online(entry.user, live),
        )
        for entry in membership.list_members(db, channel.id)
    ]


@router.get("/{channel_id}/messages", response_model=MessagePage)
def list_channel_messages(
    channel_id: int,
    parent_message_id: int | None = Query(default=None),
    limit: int = Query(default=settings.chat_history_default_limit, ge=1, le=settings.chat_history_max_limit),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessagePage:
    """Return a page of top-level messages, or the replies of one thread."""

    channel = access.load_channel(db, channel_id)
    access.ensure_can_read(db, current_user.id, channel)
    items, total = message_service.list_messages(
        db, channel, parent_id=parent_message_id, limit=limit, offset=offset
    )
    return MessagePage(
        items=[serialize_message(message, current_user.id) for message in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/{channel_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def create_message(
    channel_id: int,
    content: str = Form(""),
    message_type: MessageType = Form(default=MessageType.TEXT, alias="type"),
    parent_message_id: int | None = Form(default=None),
    files: list[UploadFile] | UploadFile | None = File(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Create a message, optionally as a thread reply, with file attachments."""

    channel = access.load_channel(db, channel_id)
    uploads: Sequence[UploadFile] = _normalize_uploads(files)
    posted = await message_service.post_message(
        db,
        channel,
        current_user,
        content,
        parent_id=parent_message_id,
        message_type=message_type,
        uploads=uploads,
    )
    await chat_events.publish_message_sent(serialize_message(posted.message, None), actor_id=current_user.id)
    if posted.parent is not None:
        await chat_events.publish_message_updated(
            serialize_message(posted.parent, None), actor_id=current_user.id
        )
    await chat_events.publish_notifications(posted.notifications)
    return serialize_message(posted.message, current_user.id)


@router.get("/{channel_id}/attachments/{attachment_id}/download")
def download_attachment(
    channel_id: int,
    attachment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FileResponse:
    """Return the raw file for an attachment."""

    channel = access.load_channel(db, channel_id)
    access.ensure_can_read(db, current_user.id, channel)

    attachment = db.get(MessageAttachment, attachment_id)
    if attachment is None or attachment.channel_id != channel.id:
        raise NotFound("Attachment not found")

    file_path = resolve_path(attachment.storage_path)
    return FileResponse(
        file_path,
        media_type=attachment.content_type or "application/octet-stream",
        filename=attachment.file_name,
    )


@router.post("/{channel_id}/typing", response_model=TypingUpdated)
async def signal_typing(
    channel_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TypingUpdated:
    """Mark the current user as typing; the mark expires unless refreshed."""

    channel = access.load_channel(db, channel_id)
    access.ensure_can_post(db, current_user.id, channel)
    try:
        return await get_presence_coordinator().set_typing(
            channel.id, chat_events.to_event_user(current_user)
        )
    except NotPresentError as exc:
        raise Conflict("Subscribe to the channel presence feed before typing") from exc
