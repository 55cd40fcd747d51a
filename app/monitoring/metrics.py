"""Metric definitions for the realtime layer and the chat API."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events processed by the dispatcher.",
    label_names=("topic", "direction", "event"),
)

realtime_publish_errors_total = registry.counter(
    "realtime_publish_errors_total",
    "Realtime events that could not be handed to the cross-node broker.",
    label_names=("topic", "backend", "reason"),
)

realtime_subscriptions_denied_total = registry.counter(
    "realtime_subscriptions_denied_total",
    "Subscription attempts rejected by the channel access policy.",
    label_names=("kind",),
)

realtime_transport_restarts_total = registry.counter(
    "realtime_transport_restarts_total",
    "Number of times the broker connection was re-established.",
    label_names=("backend", "reason"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_subscriptions = registry.gauge(
    "realtime_channel_subscriptions",
    "Number of active logical channel subscriptions on this node.",
    label_names=("kind",),
)

chat_messages_total = registry.counter(
    "chat_messages_total",
    "Messages accepted by the message engine.",
    label_names=("kind",),
)

chat_reaction_toggles_total = registry.counter(
    "chat_reaction_toggles_total",
    "Reaction toggles by resulting state.",
    label_names=("state",),
)
