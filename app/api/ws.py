"""WebSocket endpoint for realtime channel subscriptions."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from sqlalchemy.exc import SQLAlchemyError

from huddle.realtime import get_dispatcher, get_presence_coordinator
from huddle.realtime.channels import GLOBAL_SCOPE, ChannelNameError, parse_channel_name, presence_topic
from huddle.realtime.dispatcher import SubscriptionDenied, safe_send_json
from huddle.realtime.events import EventUser
from huddle.realtime.managers import presence_channel_for
from huddle.realtime.presence import NotPresentError

from app.api.deps import get_user_from_token
from app.config import get_settings
from app.database import get_db_session
from app.models import User
from app.monitoring.metrics import realtime_connections
from app.services.chat_events import to_event_user
from app.services.users import touch_last_seen

router = APIRouter(tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _resolve_user(websocket: WebSocket) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        with get_db_session() as db:
            user = get_user_from_token(token, db)
            db.expunge(user)
            return user
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


async def _send_error(websocket: WebSocket, detail: str, **extra: Any) -> None:
    await safe_send_json(websocket, {"type": "error", "detail": detail, **extra})


def _record_last_seen(user_id: int) -> None:
    try:
        with get_db_session() as db:
            touch_last_seen(db, user_id)
    except SQLAlchemyError:
        logger.warning("Failed to update last_seen_at for user %s", user_id, exc_info=True)


class RealtimeSession:
    """Per-connection state: the member identity and the presence scopes it holds."""

    def __init__(self, websocket: WebSocket, member: EventUser) -> None:
        self.websocket = websocket
        self.member = member
        self.scopes: set[str] = set()
        self.dispatcher = get_dispatcher()
        self.presence = get_presence_coordinator()

    async def open(self) -> None:
        await self.presence.mark_present(GLOBAL_SCOPE, self.member, self.websocket)
        self.scopes.add(GLOBAL_SCOPE)

    async def close(self) -> None:
        await self.dispatcher.drop_connection(self.websocket)
        for scope in list(self.scopes):
            await self.presence.mark_absent(scope, self.member.id, self.websocket)
        self.scopes.clear()

    async def handle(self, payload: dict[str, Any]) -> None:
        message_type = payload.get("type")
        if message_type == "subscribe":
            await self.subscribe(payload.get("channel"))
        elif message_type == "unsubscribe":
            await self.unsubscribe(payload.get("channel"))
        elif message_type == "heartbeat":
            await self.heartbeat()
        elif message_type == "typing":
            await self.typing(payload.get("channel_id"))
        elif message_type == "ping":
            await safe_send_json(self.websocket, {"type": "pong"})
        elif message_type == "pong":
            return
        else:
            await _send_error(self.websocket, "Unsupported message type")

    async def heartbeat(self) -> None:
        """Refresh every held scope, dropping channel scopes the user can no longer see."""

        for scope in list(self.scopes):
            if scope != GLOBAL_SCOPE:
                channel_name = presence_channel_for(scope)
                if not self.dispatcher.authorize(self.member.id, channel_name).allowed:
                    await self.revoke(scope, channel_name)
                    continue
            await self.presence.heartbeat(scope, self.member, self.websocket)
        await safe_send_json(self.websocket, {"type": "heartbeat_ack"})

    async def revoke(self, scope: str, channel_name: str) -> None:
        self.scopes.discard(scope)
        await self.dispatcher.unsubscribe(channel_name, self.websocket)
        await self.presence.evict(scope, self.member.id)
        await safe_send_json(
            self.websocket,
            {"type": "unsubscribed", "channel": channel_name, "reason": "access_revoked"},
        )

    async def subscribe(self, channel_name: Any) -> None:
        if not isinstance(channel_name, str):
            await _send_error(self.websocket, "Channel name is required")
            return
        try:
            target = parse_channel_name(channel_name)
        except ChannelNameError:
            await _send_error(self.websocket, "Unknown channel", channel=channel_name)
            return
        try:
            await self.dispatcher.subscribe(channel_name, self.member.id, self.websocket)
        except SubscriptionDenied:
            await _send_error(self.websocket, "Subscription denied", channel=channel_name)
            return
        await safe_send_json(self.websocket, {"type": "subscribed", "channel": channel_name})

        scope = target.presence_scope
        if scope is None:
            return
        snapshot = await self.presence.mark_present(scope, self.member, self.websocket)
        self.scopes.add(scope)
        await self.dispatcher.send_to(self.websocket, channel_name, snapshot)
        if scope != GLOBAL_SCOPE:
            typing = await self.presence.typing_snapshot(target.resource_id)
            await self.dispatcher.send_to(self.websocket, channel_name, typing)

    async def unsubscribe(self, channel_name: Any) -> None:
        if not isinstance(channel_name, str):
            await _send_error(self.websocket, "Channel name is required")
            return
        await self.dispatcher.unsubscribe(channel_name, self.websocket)
        try:
            scope = parse_channel_name(channel_name).presence_scope
        except ChannelNameError:
            scope = None
        # The global scope follows the connection, not the subscription.
        if scope is not None and scope != GLOBAL_SCOPE and scope in self.scopes:
            self.scopes.discard(scope)
            await self.presence.mark_absent(scope, self.member.id, self.websocket)
        await safe_send_json(self.websocket, {"type": "unsubscribed", "channel": channel_name})

    async def typing(self, channel_id: Any) -> None:
        try:
            channel_id = int(channel_id)
        except (TypeError, ValueError):
            await _send_error(self.websocket, "channel_id is required")
            return
        if not self.dispatcher.authorize(self.member.id, presence_topic(channel_id)).allowed:
            await _send_error(self.websocket, "Typing denied", channel_id=channel_id)
            return
        try:
            await self.presence.set_typing(channel_id, self.member)
        except NotPresentError:
            await _send_error(
                self.websocket, "Subscribe to the channel presence feed before typing", channel_id=channel_id
            )


@router.websocket("/ws")
async def websocket_realtime(websocket: WebSocket) -> None:
    """Multiplex logical channel subscriptions over a single socket."""

    user = await _resolve_user(websocket)
    if user is None:
        return

    await websocket.accept()
    realtime_connections.labels("client").inc()
    session = RealtimeSession(websocket, to_event_user(user))
    _record_last_seen(user.id)
    try:
        await session.open()
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_receive_timeout_seconds,
            ping_interval_seconds=settings.websocket_ping_interval_seconds,
        ):
            if not raw_message:
                continue
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid payload")
                continue
            if not isinstance(payload, dict):
                await _send_error(websocket, "Invalid payload")
                continue
            await session.handle(payload)
    finally:
        await session.close()
        realtime_connections.labels("client").dec()
        _record_last_seen(user.id)
