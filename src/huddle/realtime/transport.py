"""Redis pub/sub transport used to fan broadcast events out to other nodes."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

from app.monitoring.metrics import realtime_transport_restarts_total

logger = logging.getLogger(__name__)

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_RECOVERY_BASE_DELAY = 0.5
_RECOVERY_MAX_DELAY = 30.0

BROADCAST_TOPIC = "broadcast"

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class BrokerConfig:
    """Configuration used for wiring the realtime transport layer."""

    redis_url: str | None
    prefix: str = "huddle.realtime"
    node_id: str | None = None


class TransportUnavailableError(RuntimeError):
    """Raised when the broker is not configured or cannot be reached."""


class Subscription:
    """Handle returned when subscribing to a broker topic."""

    def __init__(self, name: str, cleanup: Callable[[], Awaitable[None]]) -> None:
        self._name = name
        self._cleanup = cleanup

    @property
    def name(self) -> str:
        return self._name

    async def close(self) -> None:
        await self._cleanup()


@dataclass(slots=True)
class _SubscriptionState:
    topic: str
    channel: str
    handler: MessageHandler
    task: asyncio.Task[Any] | None = None
    pubsub: Any | None = None
    active: bool = True
    suspending: bool = False


class RedisTransport:
    """Publish and subscribe JSON payloads over Redis, recovering from drops."""

    def __init__(self, config: BrokerConfig) -> None:
        self._config = config
        self._redis: redis_asyncio.Redis | None = None
        self._states: list[_SubscriptionState] = []
        self._recovery_lock = asyncio.Lock()
        self._recovery_task: asyncio.Task[Any] | None = None

    @property
    def node_id(self) -> str | None:
        return self._config.node_id

    @property
    def configured(self) -> bool:
        return bool(self._config.redis_url)

    async def start(self) -> None:
        if self._config.redis_url and self._redis is None:
            await self._connect()

    async def stop(self) -> None:
        for state in list(self._states):
            await self._close_state(state)
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recovery_task
            self._recovery_task = None
        if self._redis is not None:
            await self._redis.close()
            self._redis = None

    async def _connect(self) -> None:
        client = redis_asyncio.from_url(
            self._config.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except _REDIS_ERRORS + (OSError,) as exc:
            await client.close()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        self._redis = client

    def _channel(self, topic: str) -> str:
        prefix = self._config.prefix.rstrip(".")
        return f"{prefix}.{topic}" if prefix else topic

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        if self._redis is None:
            if not self.configured:
                raise TransportUnavailableError("Redis backend is not configured")
            await self.start()
        channel = self._channel(topic)
        try:
            await self._redis.publish(channel, json.dumps(payload))
        except _REDIS_ERRORS as exc:
            self._trigger_recovery("publish_failed")
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        logger.debug("Published realtime payload", extra={"channel": channel})

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    async def subscribe(self, topic: str, handler: MessageHandler) -> Subscription:
        if self._redis is None:
            if not self.configured:
                raise TransportUnavailableError("Redis backend is not configured")
            await self.start()
        state = _SubscriptionState(topic=topic, channel=self._channel(topic), handler=handler)
        self._states.append(state)
        try:
            await self._attach_reader(state)
        except TransportUnavailableError:
            await self._close_state(state)
            self._trigger_recovery("subscribe_failed")
            raise

        async def cleanup() -> None:
            await self._close_state(state)

        return Subscription(state.channel, cleanup)

    async def _attach_reader(self, state: _SubscriptionState) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not configured")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(state.channel)
        except _REDIS_ERRORS as exc:
            await pubsub.close()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        state.pubsub = pubsub

        async def reader() -> None:
            try:
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    raw = message.get("data")
                    if not isinstance(raw, str):
                        continue
                    try:
                        payload = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("Discarded malformed realtime payload", extra={"channel": state.channel})
                        continue
                    await state.handler(payload)
            finally:
                with contextlib.suppress(*_REDIS_ERRORS):
                    await pubsub.unsubscribe(state.channel)
                with contextlib.suppress(*_REDIS_ERRORS):
                    await pubsub.close()

        task = asyncio.create_task(reader(), name=f"realtime-redis-{state.channel}")
        state.task = task
        task.add_done_callback(lambda finished: asyncio.create_task(self._on_reader_done(state, finished)))

    async def _pause_state(self, state: _SubscriptionState) -> None:
        state.suspending = True
        task = state.task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        state.task = None
        state.pubsub = None
        state.suspending = False

    async def _close_state(self, state: _SubscriptionState) -> None:
        state.active = False
        await self._pause_state(state)
        if state in self._states:
            self._states.remove(state)

    async def _on_reader_done(self, state: _SubscriptionState, task: asyncio.Task[Any]) -> None:
        state.task = None
        state.pubsub = None
        if not state.active or state.suspending or task.cancelled():
            return
        exc = task.exception()
        logger.warning(
            "Redis subscription reader stopped; scheduling recovery",
            exc_info=exc,
            extra={"channel": state.channel},
        )
        self._trigger_recovery("reader_stopped")

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    def _trigger_recovery(self, reason: str) -> None:
        if not self.configured:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        logger.info("Scheduling Redis realtime recovery", extra={"reason": reason})
        self._recovery_task = asyncio.create_task(self._recovery_runner(reason), name="realtime-redis-recovery")

    async def _recovery_runner(self, reason: str) -> None:
        attempt = 0
        while True:
            await asyncio.sleep(min(_RECOVERY_BASE_DELAY * (2**attempt), _RECOVERY_MAX_DELAY))
            try:
                await self._restart(reason)
            except TransportUnavailableError:
                attempt += 1
                logger.warning(
                    "Redis realtime recovery attempt failed",
                    extra={"attempt": attempt, "reason": reason},
                )
                continue
            break
        self._recovery_task = None

    async def _restart(self, reason: str) -> None:
        async with self._recovery_lock:
            for state in list(self._states):
                await self._pause_state(state)
            if self._redis is not None:
                with contextlib.suppress(*_REDIS_ERRORS):
                    await self._redis.close()
                self._redis = None
            await self._connect()
            for state in [state for state in self._states if state.active]:
                await self._attach_reader(state)

        realtime_transport_restarts_total.labels("redis", reason).inc()
        logger.info("Redis realtime backend recovered", extra={"reason": reason, "subscriptions": len(self._states)})


__all__ = [
    "BROADCAST_TOPIC",
    "BrokerConfig",
    "RedisTransport",
    "Subscription",
    "TransportUnavailableError",
]
