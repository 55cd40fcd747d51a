"""Realtime delivery: logical channels, presence and typing, broadcast fan-out."""

from .managers import (  # noqa: F401
    configure_realtime,
    get_dispatcher,
    get_presence_coordinator,
    shutdown_realtime,
    startup_realtime,
)

__all__ = [
    "configure_realtime",
    "startup_realtime",
    "shutdown_realtime",
    "get_dispatcher",
    "get_presence_coordinator",
]
