"""Derived online status and last-seen bookkeeping."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import User
from app.schemas.users import UserStatusRead

settings = get_settings()


def online_window() -> timedelta:
    return timedelta(minutes=settings.online_window_minutes)


def is_online(user: User, live_user_ids: Iterable[int]) -> bool:
    """A user is online while connected, or shortly after last being seen."""

    return user.id in set(live_user_ids) or user.seen_within(online_window())


def to_status(user: User, live_user_ids: Iterable[int]) -> UserStatusRead:
    return UserStatusRead(
        id=user.id,
        login=user.login,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        is_online=is_online(user, live_user_ids),
        last_seen_at=user.last_seen_at,
    )


def list_online_users(db: Session, live_user_ids: Iterable[int]) -> list[User]:
    live = set(live_user_ids)
    cutoff = datetime.now(timezone.utc) - online_window()
    conditions = [User.last_seen_at >= cutoff]
    if live:
        conditions.append(User.id.in_(live))
    stmt = select(User).where(or_(*conditions)).order_by(User.login)
    return list(db.execute(stmt).scalars())


def touch_last_seen(db: Session, user_id: int) -> None:
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(last_seen_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.commit()
