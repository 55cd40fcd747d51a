"""HTTP endpoints for editing, deleting and reacting to chat messages."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.api.channels import serialize_message
from app.api.deps import get_current_user
from app.database import get_db
from app.models import User
from app.schemas import (
    MessageReactionSummary,
    MessageRead,
    MessageUpdate,
    ReactionRequest,
    ReactionToggleResponse,
)
from app.services import access, chat_events
from app.services import messages as message_service
from app.services import reactions as reaction_service

router = APIRouter(prefix="/messages", tags=["messages"])


@router.put("/{message_id}", response_model=MessageRead)
async def update_message(
    message_id: int,
    payload: MessageUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Edit message content."""

    message = access.load_message(db, message_id, current_user.id)
    message = message_service.edit_message(db, message, current_user, payload.content)
    await chat_events.publish_message_updated(serialize_message(message, None), actor_id=current_user.id)
    return serialize_message(message, current_user.id)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    """Soft-delete a message and remove its attachments."""

    message = access.load_message(db, message_id, current_user.id)
    deleted = message_service.delete_message(db, message, current_user)
    await chat_events.publish_message_deleted(deleted, actor_id=current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{message_id}/reactions", response_model=ReactionToggleResponse)
async def toggle_reaction(
    message_id: int,
    payload: ReactionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ReactionToggleResponse:
    """Add the reaction if the user has not reacted with this emoji, else remove it."""

    message = access.load_message(db, message_id, current_user.id)
    emoji = payload.emoji.strip()
    result = reaction_service.toggle_reaction(db, message, current_user.id, emoji)
    await chat_events.publish_reaction_toggled(
        message.channel_id, message.id, emoji, result, actor_id=current_user.id
    )
    return ReactionToggleResponse(
        message=f"Reaction {result.state.value}",
        state=result.state.value,
        reactions=result.reactions,
    )


@router.get("/{message_id}/reactions", response_model=list[MessageReactionSummary])
def list_reactions(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MessageReactionSummary]:
    message = access.load_message(db, message_id, current_user.id)
    access.ensure_can_read(db, current_user.id, message.channel)
    return reaction_service.list_reactions(db, message.id, current_user.id)
