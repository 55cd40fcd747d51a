"""Subscription authorization for realtime clients."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.errors import Forbidden
from app.database import get_db
from app.models import User
from app.schemas.broadcasting import BroadcastAuthRequest, BroadcastAuthResponse
from app.services.access import authorize_channel

router = APIRouter(prefix="/broadcasting", tags=["broadcasting"])


@router.post("/auth", response_model=BroadcastAuthResponse)
def authorize_subscription(
    payload: BroadcastAuthRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BroadcastAuthResponse:
    """Tell a client whether it may subscribe to ``channel_name``.

    Presence channels also return the member metadata shown to other
    subscribers.
    """

    authorization = authorize_channel(db, current_user, payload.channel_name)
    if not authorization.allowed:
        raise Forbidden("Subscription denied")
    return BroadcastAuthResponse(
        channel_name=payload.channel_name,
        decision=authorization.decision,
        channel_data=authorization.metadata,
    )
