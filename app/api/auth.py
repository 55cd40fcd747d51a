"""Registration and token issuance."""

from datetime import timedelta

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.errors import Conflict, Unauthenticated
from app.core.security import create_access_token, get_password_hash, verify_password
from app.database import get_db
from app.models import User
from app.schemas import LoginRequest, Token, UserCreate, UserRead

router = APIRouter()
settings = get_settings()

LOGIN_TAKEN = "Login is already taken"


def _find_by_login(db: Session, login: str) -> User | None:
    return db.execute(select(User).where(User.login == login)).scalar_one_or_none()


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register_user(user_in: UserCreate, db: Session = Depends(get_db)) -> User:
    if _find_by_login(db, user_in.login) is not None:
        raise Conflict(LOGIN_TAKEN)

    user = User(
        login=user_in.login,
        display_name=user_in.display_name,
        hashed_password=get_password_hash(user_in.password),
    )
    db.add(user)
    # Two registrations for the same login can both pass the lookup above.
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(LOGIN_TAKEN) from None
    db.refresh(user)
    return user


@router.post("/login", response_model=Token)
def login_user(credentials: LoginRequest, db: Session = Depends(get_db)) -> Token:
    """Exchange a login and password for a bearer token."""

    user = _find_by_login(db, credentials.login)
    if user is None or not verify_password(credentials.password, user.hashed_password):
        raise Unauthenticated("Incorrect login or password")

    lifetime = timedelta(minutes=settings.access_token_expire_minutes)
    return Token(
        access_token=create_access_token({"sub": str(user.id)}, expires_delta=lifetime),
        expires_in=int(lifetime.total_seconds()),
    )
