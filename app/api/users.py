"""Current user profile and online listing."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from huddle.realtime import get_presence_coordinator

from app.api.deps import get_current_user
from app.database import get_db
from app.models import User
from app.schemas import UserStatusRead
from app.services.users import list_online_users, to_status

router = APIRouter(tags=["users"])


@router.get("/user", response_model=UserStatusRead)
def read_current_user(current_user: User = Depends(get_current_user)) -> UserStatusRead:
    """Return the authenticated user with the derived online flag."""

    return to_status(current_user, get_presence_coordinator().online_user_ids())


@router.get("/users/online", response_model=list[UserStatusRead])
def read_online_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[UserStatusRead]:
    live = get_presence_coordinator().online_user_ids()
    return [to_status(user, live) for user in list_online_users(db, live)]
