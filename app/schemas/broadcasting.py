"""Schemas for the broadcast subscription authorization endpoint."""

from typing import Any

from pydantic import BaseModel, Field

from huddle.realtime.channels import AuthorizationDecision


class BroadcastAuthRequest(BaseModel):
    channel_name: str = Field(..., min_length=1, max_length=128)


class BroadcastAuthResponse(BaseModel):
    channel_name: str
    decision: AuthorizationDecision
    channel_data: dict[str, Any] | None = None
