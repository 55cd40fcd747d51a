"""Process-wide realtime singletons and their lifecycle."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from app.config import get_settings

from .channels import GLOBAL_SCOPE, ONLINE_CHANNEL, presence_topic
from .dispatcher import Authorizer, BroadcastDispatcher
from .events import PresenceJoined, PresenceLeft, TypingUpdated
from .presence import PresenceCoordinator
from .transport import BrokerConfig, RedisTransport, TransportUnavailableError

logger = logging.getLogger(__name__)


def presence_channel_for(scope: str) -> str:
    """Logical channel on which presence events of *scope* are published."""

    if scope == GLOBAL_SCOPE:
        return ONLINE_CHANNEL
    return presence_topic(int(scope.split(":", 1)[1]))


def bind_coordinator(coordinator: PresenceCoordinator, dispatcher: BroadcastDispatcher) -> None:
    """Route presence and typing changes from *coordinator* through *dispatcher*."""

    async def relay_presence(event: PresenceJoined | PresenceLeft, exclude_user: Optional[int]) -> None:
        await dispatcher.publish(presence_channel_for(event.scope), event, exclude_user=exclude_user)

    async def relay_typing(event: TypingUpdated, exclude_user: Optional[int]) -> None:
        await dispatcher.publish(presence_topic(event.channel_id), event, exclude_user=exclude_user)

    coordinator.set_listeners(on_presence=relay_presence, on_typing=relay_typing)


settings = get_settings()

_node_id = settings.realtime_node_id or uuid.uuid4().hex

transport = RedisTransport(
    BrokerConfig(
        redis_url=settings.realtime_redis_url,
        prefix=settings.realtime_namespace,
        node_id=_node_id,
    )
)
dispatcher = BroadcastDispatcher(transport, node_id=_node_id)
presence = PresenceCoordinator(
    heartbeat_timeout=float(settings.realtime_presence_timeout_seconds),
    typing_ttl=float(settings.realtime_typing_ttl_seconds),
)
bind_coordinator(presence, dispatcher)


def configure_realtime(*, authorizer: Authorizer) -> None:
    """Install the subscription authorizer backed by the access policy."""

    dispatcher.configure(authorizer)


async def startup_realtime() -> None:
    try:
        await transport.start()
    except TransportUnavailableError:
        logger.warning(
            "Realtime backend unavailable during startup; continuing without cross-node sync",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return
    await dispatcher.start()


async def shutdown_realtime() -> None:
    await presence.close()
    await dispatcher.stop()
    await transport.stop()


def get_dispatcher() -> BroadcastDispatcher:
    return dispatcher


def get_presence_coordinator() -> PresenceCoordinator:
    return presence


__all__ = [
    "bind_coordinator",
    "configure_realtime",
    "get_dispatcher",
    "get_presence_coordinator",
    "presence_channel_for",
    "shutdown_realtime",
    "startup_realtime",
]
