"""Fan committed state changes out to subscribers of logical channels."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import (
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
    realtime_subscriptions_denied_total,
)

from .channels import ChannelAuthorization, ChannelNameError, parse_channel_name
from .events import BroadcastEvent
from .transport import BROADCAST_TOPIC, RedisTransport, Subscription, TransportUnavailableError

logger = logging.getLogger(__name__)

Authorizer = Callable[[int, str], ChannelAuthorization]


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send *data* if the socket is still open; report whether it was sent."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Failed to send websocket message: %s", exc)
        return False


class SubscriptionDenied(Exception):
    """Raised when the access policy rejects a subscription attempt."""

    def __init__(self, channel_name: str) -> None:
        super().__init__(f"Subscription to '{channel_name}' denied")
        self.channel_name = channel_name


@dataclass(eq=False, slots=True)
class Subscriber:
    """One websocket subscribed to one logical channel."""

    channel_name: str
    user_id: int
    websocket: WebSocket
    authorization: ChannelAuthorization


def _kind(channel_name: str) -> str:
    try:
        return parse_channel_name(channel_name).kind.value
    except ChannelNameError:
        return "unknown"


class BroadcastDispatcher:
    """Deliver events to authorized subscribers on this node and relay to others.

    Each delivery re-runs the authorizer for the receiving user, so a user
    who lost access since subscribing is dropped instead of served.
    """

    def __init__(
        self,
        transport: RedisTransport | None,
        *,
        node_id: str,
        authorizer: Authorizer | None = None,
    ) -> None:
        self._transport = transport
        self._node_id = node_id
        self._authorizer = authorizer
        self._subscribers: dict[str, set[Subscriber]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._subscription: Subscription | None = None
        self._publish_warning_logged = False

    @property
    def node_id(self) -> str:
        return self._node_id

    def configure(self, authorizer: Authorizer | None) -> None:
        self._authorizer = authorizer

    def authorize(self, user_id: int, channel_name: str) -> ChannelAuthorization:
        if self._authorizer is None:
            return ChannelAuthorization.deny()
        return self._authorizer(user_id, channel_name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._transport is None or not self._transport.configured:
            logger.info("No realtime broker configured; broadcasts stay on this node")
            return

        async def handle(message: dict[str, Any]) -> None:
            if message.get("origin") == self._node_id:
                return
            channel_name = message.get("channel")
            envelope = message.get("envelope")
            if not isinstance(channel_name, str) or not isinstance(envelope, dict):
                return
            await self._deliver_local(channel_name, envelope, message.get("exclude_user"))
            realtime_events_total.labels(_kind(channel_name), "in", envelope.get("event", "")).inc()

        try:
            self._subscription = await self._transport.subscribe(BROADCAST_TOPIC, handle)
        except TransportUnavailableError:
            logger.warning(
                "Realtime backend unavailable; broadcasts will be limited to this instance",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            self._subscription = None

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        async with self._lock:
            for channel_name, bucket in self._subscribers.items():
                realtime_subscriptions.labels(_kind(channel_name)).dec(len(bucket))
            self._subscribers.clear()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    async def subscribe(self, channel_name: str, user_id: int, websocket: WebSocket) -> Subscriber:
        """Register *websocket* on *channel_name* if the access policy allows it."""

        authorization = self.authorize(user_id, channel_name)
        if not authorization.allowed:
            realtime_subscriptions_denied_total.labels(_kind(channel_name)).inc()
            raise SubscriptionDenied(channel_name)
        subscriber = Subscriber(channel_name, user_id, websocket, authorization)
        async with self._lock:
            bucket = self._subscribers[channel_name]
            for existing in bucket:
                if existing.websocket is websocket:
                    return existing
            bucket.add(subscriber)
        realtime_subscriptions.labels(_kind(channel_name)).inc()
        return subscriber

    async def unsubscribe(self, channel_name: str, websocket: WebSocket) -> Subscriber | None:
        async with self._lock:
            return self._remove_locked(channel_name, websocket)

    async def drop_connection(self, websocket: WebSocket) -> list[Subscriber]:
        """Remove every subscription held by *websocket*."""

        removed: list[Subscriber] = []
        async with self._lock:
            for channel_name in list(self._subscribers):
                subscriber = self._remove_locked(channel_name, websocket)
                if subscriber is not None:
                    removed.append(subscriber)
        return removed

    def _remove_locked(self, channel_name: str, websocket: WebSocket) -> Subscriber | None:
        bucket = self._subscribers.get(channel_name)
        if not bucket:
            return None
        for subscriber in list(bucket):
            if subscriber.websocket is websocket:
                bucket.discard(subscriber)
                if not bucket:
                    self._subscribers.pop(channel_name, None)
                realtime_subscriptions.labels(_kind(channel_name)).dec()
                return subscriber
        return None

    def subscribers(self, channel_name: str) -> list[Subscriber]:
        return list(self._subscribers.get(channel_name, ()))

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    async def publish(
        self,
        channel_name: str,
        event: BroadcastEvent,
        *,
        exclude_user: int | None = None,
    ) -> int:
        """Deliver *event* on *channel_name*; returns local deliveries.

        Delivery is at-most-once: subscribers that are disconnected or fail
        authorization simply miss the event.
        """

        envelope = event.envelope(channel_name)
        delivered = await self._deliver_local(channel_name, envelope, exclude_user)
        realtime_events_total.labels(_kind(channel_name), "out", event.event).inc()
        await self._relay(channel_name, envelope, exclude_user)
        return delivered

    async def send_to(self, websocket: WebSocket, channel_name: str, event: BroadcastEvent) -> bool:
        """Deliver *event* to a single socket, e.g. a snapshot after subscribe."""

        return await safe_send_json(websocket, event.envelope(channel_name))

    async def _deliver_local(
        self,
        channel_name: str,
        envelope: dict[str, Any],
        exclude_user: int | None,
    ) -> int:
        subscribers = self.subscribers(channel_name)
        decisions: dict[int, bool] = {}
        revoked: list[Subscriber] = []
        delivered = 0
        for subscriber in subscribers:
            if exclude_user is not None and subscriber.user_id == exclude_user:
                continue
            allowed = decisions.get(subscriber.user_id)
            if allowed is None:
                try:
                    allowed = self.authorize(subscriber.user_id, channel_name).allowed
                except Exception:
                    logger.exception(
                        "Authorization check failed while delivering on %s", channel_name
                    )
                    continue
                decisions[subscriber.user_id] = allowed
            if not allowed:
                revoked.append(subscriber)
                continue
            if await safe_send_json(subscriber.websocket, envelope):
                delivered += 1

        if revoked:
            async with self._lock:
                for subscriber in revoked:
                    self._remove_locked(channel_name, subscriber.websocket)
            for subscriber in revoked:
                await safe_send_json(
                    subscriber.websocket,
                    {"type": "unsubscribed", "channel": channel_name, "reason": "access_revoked"},
                )
        return delivered

    async def _relay(self, channel_name: str, envelope: dict[str, Any], exclude_user: int | None) -> None:
        if self._transport is None or not self._transport.configured:
            return
        message = {
            "origin": self._node_id,
            "channel": channel_name,
            "envelope": envelope,
            "exclude_user": exclude_user,
        }
        try:
            await self._transport.publish(BROADCAST_TOPIC, message)
        except TransportUnavailableError:
            if not self._publish_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while broadcasting %s update; operating in local-only mode",
                    envelope.get("event"),
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._publish_warning_logged = True
            realtime_publish_errors_total.labels(_kind(channel_name), "redis", "unavailable").inc()
        else:
            self._publish_warning_logged = False


__all__ = [
    "Authorizer",
    "BroadcastDispatcher",
    "Subscriber",
    "SubscriptionDenied",
    "safe_send_json",
]
