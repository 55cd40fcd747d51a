"""Notification inbox endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.config import get_settings
from app.database import get_db
from app.models import User
from app.schemas import MarkedRead, NotificationPage, NotificationRead
from app.services import notifications as notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])
settings = get_settings()


@router.get("", response_model=NotificationPage)
def list_notifications(
    read: bool | None = Query(default=None, description="Filter by read state; omit to list all"),
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationPage:
    per_page = settings.notifications_page_size
    items, total = notification_service.list_notifications(
        db,
        current_user.id,
        read=read,
        page=page,
        per_page=per_page,
    )
    return NotificationPage(
        items=[NotificationRead.model_validate(item) for item in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/mark-all-read", response_model=MarkedRead)
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MarkedRead:
    return MarkedRead(updated=notification_service.mark_all_as_read(db, current_user.id))


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationRead:
    notification = notification_service.mark_as_read(db, current_user.id, notification_id)
    return NotificationRead.model_validate(notification)
