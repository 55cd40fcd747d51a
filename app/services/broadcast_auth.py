"""Bridge between the realtime dispatcher and the channel access policy."""

from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session

from huddle.realtime.channels import ChannelAuthorization

from app.models import User
from app.services import access


class PolicyAuthorizer:
    """Callable ``(user_id, channel_name) -> ChannelAuthorization``.

    Each check opens a short-lived session so the dispatcher always sees the
    committed membership state, e.g. right after a member leaves.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def __call__(self, user_id: int, channel_name: str) -> ChannelAuthorization:
        db = self._session_factory()
        try:
            user = db.get(User, user_id)
            if user is None:
                return ChannelAuthorization.deny()
            return access.authorize_channel(db, user, channel_name)
        finally:
            db.close()
