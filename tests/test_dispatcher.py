from __future__ import annotations

import logging
from typing import Any

import pytest

from app.monitoring.metrics import realtime_publish_errors_total, realtime_subscriptions_denied_total
from huddle.realtime.channels import ChannelAuthorization
from huddle.realtime.dispatcher import BroadcastDispatcher, SubscriptionDenied
from huddle.realtime.events import ChannelDeleted, EventUser, PresenceJoined, parse_event
from huddle.realtime.managers import bind_coordinator
from huddle.realtime.presence import PresenceCoordinator
from huddle.realtime.transport import BrokerConfig, RedisTransport

from conftest import DummyWebSocket


class FailingRedis:
    async def publish(self, channel: str, payload: str) -> None:  # pragma: no cover - used in tests
        raise ConnectionError("boom")


class TableAuthorizer:
    """Authorizer backed by a mutable set of (user_id, channel_name) grants."""

    def __init__(self, *grants: tuple[int, str]) -> None:
        self.grants = set(grants)

    def __call__(self, user_id: int, channel_name: str) -> ChannelAuthorization:
        if (user_id, channel_name) in self.grants:
            return ChannelAuthorization.allow()
        return ChannelAuthorization.deny()


@pytest.fixture(autouse=True)
def reset_publish_error_metrics() -> None:
    samples = realtime_publish_errors_total._samples
    samples.clear()
    yield
    samples.clear()


def _event(channel_id: int = 1) -> ChannelDeleted:
    return ChannelDeleted(channel_id=channel_id)


@pytest.mark.anyio("asyncio")
async def test_subscribe_denied_by_policy():
    dispatcher = BroadcastDispatcher(None, node_id="node", authorizer=TableAuthorizer())
    before = realtime_subscriptions_denied_total._samples.get(("private-channel",), 0.0)

    with pytest.raises(SubscriptionDenied):
        await dispatcher.subscribe("private-channel.1", 7, DummyWebSocket())

    assert realtime_subscriptions_denied_total._samples[("private-channel",)] == before + 1
    assert dispatcher.subscribers("private-channel.1") == []


@pytest.mark.anyio("asyncio")
async def test_dispatcher_without_authorizer_denies_everything():
    dispatcher = BroadcastDispatcher(None, node_id="node")

    with pytest.raises(SubscriptionDenied):
        await dispatcher.subscribe("presence-online", 1, DummyWebSocket())


@pytest.mark.anyio("asyncio")
async def test_publish_excludes_actor_and_reaches_others():
    channel = "private-channel.1"
    dispatcher = BroadcastDispatcher(
        None, node_id="node", authorizer=TableAuthorizer((1, channel), (2, channel))
    )
    actor, other = DummyWebSocket(), DummyWebSocket()
    await dispatcher.subscribe(channel, 1, actor)
    await dispatcher.subscribe(channel, 2, other)

    delivered = await dispatcher.publish(channel, _event(), exclude_user=1)

    assert delivered == 1
    assert actor.sent == []
    assert other.sent == [
        {"type": "event", "channel": channel, "event": "channel.deleted", "data": {"channel_id": 1}}
    ]
    frame = other.sent[0]
    assert parse_event(frame["event"], frame["data"]) == _event()


@pytest.mark.anyio("asyncio")
async def test_subscribe_twice_from_same_socket_is_idempotent():
    channel = "private-user.3"
    dispatcher = BroadcastDispatcher(None, node_id="node", authorizer=TableAuthorizer((3, channel)))
    websocket = DummyWebSocket()

    first = await dispatcher.subscribe(channel, 3, websocket)
    second = await dispatcher.subscribe(channel, 3, websocket)

    assert first is second
    assert await dispatcher.publish(channel, _event()) == 1
    assert len(websocket.sent) == 1


@pytest.mark.anyio("asyncio")
async def test_revoked_subscriber_is_dropped_on_delivery():
    channel = "private-channel.5"
    authorizer = TableAuthorizer((1, channel), (2, channel))
    dispatcher = BroadcastDispatcher(None, node_id="node", authorizer=authorizer)
    kept, revoked = DummyWebSocket(), DummyWebSocket()
    await dispatcher.subscribe(channel, 1, kept)
    await dispatcher.subscribe(channel, 2, revoked)

    authorizer.grants.discard((2, channel))
    delivered = await dispatcher.publish(channel, _event(5))

    assert delivered == 1
    assert revoked.events("channel.deleted") == []
    assert revoked.sent == [{"type": "unsubscribed", "channel": channel, "reason": "access_revoked"}]
    assert [subscriber.user_id for subscriber in dispatcher.subscribers(channel)] == [1]


@pytest.mark.anyio("asyncio")
async def test_drop_connection_removes_all_subscriptions():
    grants = [(1, "private-channel.1"), (1, "private-user.1")]
    dispatcher = BroadcastDispatcher(None, node_id="node", authorizer=TableAuthorizer(*grants))
    websocket = DummyWebSocket()
    for _user_id, channel in grants:
        await dispatcher.subscribe(channel, 1, websocket)

    removed = await dispatcher.drop_connection(websocket)

    assert sorted(subscriber.channel_name for subscriber in removed) == [
        "private-channel.1",
        "private-user.1",
    ]
    assert dispatcher.subscribers("private-channel.1") == []


@pytest.mark.anyio("asyncio")
async def test_publish_connection_error_logs_warning_once_and_delivers_locally(caplog):
    channel = "private-channel.42"
    transport = RedisTransport(BrokerConfig(redis_url="redis://example"))
    transport._redis = FailingRedis()  # type: ignore[assignment]
    dispatcher = BroadcastDispatcher(transport, node_id="node", authorizer=TableAuthorizer((1, channel)))
    websocket = DummyWebSocket()
    await dispatcher.subscribe(channel, 1, websocket)

    with caplog.at_level(logging.WARNING):
        await dispatcher.publish(channel, _event(42))
        await dispatcher.publish(channel, _event(42))

    warnings = [
        record
        for record in caplog.records
        if record.levelno == logging.WARNING and "local-only mode" in record.getMessage()
    ]
    assert len(warnings) == 1
    assert len(websocket.events("channel.deleted")) == 2
    assert realtime_publish_errors_total._samples[("private-channel", "redis", "unavailable")] == 2
    if transport._recovery_task is not None:
        transport._recovery_task.cancel()


@pytest.mark.anyio("asyncio")
async def test_relayed_envelope_skips_own_origin_and_honours_exclusion():
    channel = "private-channel.9"
    handlers: list[Any] = []

    class RecordingTransport:
        configured = True

        async def subscribe(self, topic, handler):
            handlers.append(handler)
            return None

    dispatcher = BroadcastDispatcher(
        RecordingTransport(),  # type: ignore[arg-type]
        node_id="node-a",
        authorizer=TableAuthorizer((1, channel), (2, channel)),
    )
    await dispatcher.start()
    first, second = DummyWebSocket(), DummyWebSocket()
    await dispatcher.subscribe(channel, 1, first)
    await dispatcher.subscribe(channel, 2, second)
    envelope = _event(9).envelope(channel)

    (handle,) = handlers
    await handle({"origin": "node-a", "channel": channel, "envelope": envelope, "exclude_user": None})
    assert first.sent == [] and second.sent == []

    await handle({"origin": "node-b", "channel": channel, "envelope": envelope, "exclude_user": 2})
    assert first.sent == [envelope]
    assert second.sent == []


@pytest.mark.anyio("asyncio")
async def test_presence_changes_are_published_on_presence_channels():
    dispatcher = BroadcastDispatcher(
        None,
        node_id="node",
        authorizer=TableAuthorizer((2, "presence-online"), (2, "presence-channel.4")),
    )
    coordinator = PresenceCoordinator(heartbeat_timeout=30, typing_ttl=5)
    bind_coordinator(coordinator, dispatcher)
    watcher = DummyWebSocket()
    await dispatcher.subscribe("presence-online", 2, watcher)
    await dispatcher.subscribe("presence-channel.4", 2, watcher)
    alice = EventUser(id=1, name="Alice")

    await coordinator.mark_present("global", alice, "conn-1")
    await coordinator.mark_present("channel:4", alice, "conn-1")
    await coordinator.set_typing(4, alice)

    joined = watcher.events("presence.joined")
    assert [frame["channel"] for frame in joined] == ["presence-online", "presence-channel.4"]
    assert parse_event("presence.joined", joined[0]["data"]) == PresenceJoined(
        scope="global", sequence=1, member=alice
    )
    (typing,) = watcher.events("typing")
    assert typing["data"]["users"] == [{"id": 1, "name": "Alice", "avatar_url": None}]

    await coordinator.close()
