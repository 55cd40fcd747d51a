"""Emoji reaction toggling and aggregation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import Conflict, NotFound, ValidationFailed
from app.models import Message, MessageReaction
from app.monitoring.metrics import chat_reaction_toggles_total
from app.schemas.messages import MessageReactionSummary
from app.services import access

logger = logging.getLogger(__name__)

MAX_EMOJI_LENGTH = 50


class ReactionState(str, Enum):
    ADDED = "added"
    REMOVED = "removed"


@dataclass(slots=True)
class ReactionToggleResult:
    state: ReactionState
    reactions: list[MessageReactionSummary]


def summarize_reactions(
    reactions: Iterable[MessageReaction],
    current_user_id: int | None,
) -> list[MessageReactionSummary]:
    """Group reactions by emoji, keeping the order each emoji first appeared in."""

    grouped: dict[str, list[int]] = {}
    for reaction in sorted(reactions, key=lambda item: item.id or 0):
        grouped.setdefault(reaction.emoji, []).append(reaction.user_id)
    return [
        MessageReactionSummary(
            emoji=emoji,
            count=len(user_ids),
            reacted=current_user_id in user_ids if current_user_id is not None else False,
            user_ids=user_ids,
        )
        for emoji, user_ids in grouped.items()
    ]


def list_reactions(db: Session, message_id: int, current_user_id: int | None) -> list[MessageReactionSummary]:
    reactions = db.execute(
        select(MessageReaction).where(MessageReaction.message_id == message_id)
    ).scalars()
    return summarize_reactions(reactions, current_user_id)


def toggle_reaction(
    db: Session,
    message: Message,
    user_id: int,
    emoji: str,
    *,
    max_attempts: int = 3,
) -> ReactionToggleResult:
    """Flip the presence of ``(message, user, emoji)``.

    The delete is tried first; when it removes nothing the row is inserted and
    a unique violation (a concurrent toggle won the insert) restarts the loop.
    """

    emoji = (emoji or "").strip()
    if not emoji or len(emoji) > MAX_EMOJI_LENGTH:
        raise ValidationFailed(f"Emoji must be between 1 and {MAX_EMOJI_LENGTH} characters")
    if message.is_deleted:
        raise NotFound(access.MESSAGE_NOT_FOUND)
    access.ensure_can_read(db, user_id, message.channel)

    state: ReactionState | None = None
    for attempt in range(max_attempts):
        result = db.execute(
            delete(MessageReaction)
            .where(
                MessageReaction.message_id == message.id,
                MessageReaction.user_id == user_id,
                MessageReaction.emoji == emoji,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            db.commit()
            state = ReactionState.REMOVED
            break

        db.add(MessageReaction(message_id=message.id, user_id=user_id, emoji=emoji))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.debug(
                "Concurrent reaction toggle on message %s (attempt %s)", message.id, attempt + 1
            )
            continue
        state = ReactionState.ADDED
        break

    if state is None:
        raise Conflict("Reaction changed concurrently, please retry")

    chat_reaction_toggles_total.labels(state.value).inc()
    return ReactionToggleResult(state=state, reactions=list_reactions(db, message.id, user_id))
