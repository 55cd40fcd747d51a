"""Schemas for user notifications."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.models import NotificationType


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: NotificationType
    data: dict[str, Any]
    read_at: datetime | None = None
    created_at: datetime


class NotificationPage(BaseModel):
    items: list[NotificationRead]
    total: int
    page: int
    per_page: int


class MarkedRead(BaseModel):
    updated: int
