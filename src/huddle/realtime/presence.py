"""Ephemeral presence and typing state with server-side expiry.

Presence is tracked per scope (``"global"`` or ``"channel:{id}"``). A user is
present in a scope while at least one of their connections is subscribed and
heartbeats keep arriving; otherwise a per-(scope, user) timer expires the
entry. Typing is tracked per channel and only accepted from users present in
that channel's scope; each signal re-arms a per-(channel, user) timer and the
entry disappears when it fires. Clients never send a stop signal.

Every scope carries a sequence number. Snapshots report the sequence they
were taken at and each join/leave event carries its own, which lets a client
merge a snapshot with events that raced it (see :class:`RosterReplica`).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from typing import Optional, Union

from .channels import GLOBAL_SCOPE, channel_scope
from .events import EventUser, PresenceJoined, PresenceLeft, PresenceSnapshot, TypingUpdated

logger = logging.getLogger(__name__)

PresenceEvent = Union[PresenceJoined, PresenceLeft]
PresenceListener = Callable[[PresenceEvent, Optional[int]], Awaitable[None]]
TypingListener = Callable[[TypingUpdated, Optional[int]], Awaitable[None]]


class NotPresentError(RuntimeError):
    """Raised when a typing signal arrives from a user absent from the channel."""


@dataclass(slots=True)
class _PresenceEntry:
    member: EventUser
    connections: set[Hashable] = field(default_factory=set)
    timer: asyncio.Task[None] | None = None


@dataclass(slots=True)
class _Roster:
    # Kept after it empties so a scope's sequence never restarts; only a
    # deleted channel's roster is dropped (see forget_scope).
    sequence: int = 0
    entries: dict[int, _PresenceEntry] = field(default_factory=dict)

    def members(self) -> list[EventUser]:
        members = [entry.member for entry in self.entries.values()]
        members.sort(key=lambda member: (member.name.lower(), member.id))
        return members


@dataclass(slots=True)
class _TypingEntry:
    member: EventUser
    timer: asyncio.Task[None] | None = None


def _cancel(task: asyncio.Task[None] | None) -> None:
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()


class PresenceCoordinator:
    """Track who is present and who is typing, expiring stale entries."""

    def __init__(
        self,
        *,
        heartbeat_timeout: float,
        typing_ttl: float,
        on_presence: PresenceListener | None = None,
        on_typing: TypingListener | None = None,
    ) -> None:
        self._heartbeat_timeout = heartbeat_timeout
        self._typing_ttl = typing_ttl
        self._on_presence = on_presence
        self._on_typing = on_typing
        self._rosters: dict[str, _Roster] = {}
        self._typing: dict[int, dict[int, _TypingEntry]] = {}
        self._lock = asyncio.Lock()

    @property
    def typing_ttl(self) -> float:
        return self._typing_ttl

    def set_listeners(
        self,
        *,
        on_presence: PresenceListener | None = None,
        on_typing: TypingListener | None = None,
    ) -> None:
        self._on_presence = on_presence
        self._on_typing = on_typing

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------
    async def mark_present(
        self, scope: str, member: EventUser, connection: Hashable
    ) -> PresenceSnapshot:
        """Register *connection* for *member* in *scope* and refresh its timer.

        Used both for the initial subscribe and for heartbeats. Returns the
        roster snapshot taken after the change.
        """

        event: PresenceJoined | None = None
        async with self._lock:
            roster = self._rosters.setdefault(scope, _Roster())
            entry = roster.entries.get(member.id)
            if entry is None:
                roster.sequence += 1
                entry = _PresenceEntry(member=member)
                roster.entries[member.id] = entry
                event = PresenceJoined(scope=scope, sequence=roster.sequence, member=member)
            else:
                entry.member = member
            entry.connections.add(connection)
            _cancel(entry.timer)
            entry.timer = asyncio.create_task(
                self._expire_presence(scope, member.id, self._heartbeat_timeout),
                name=f"presence-expiry-{scope}-{member.id}",
            )
            snapshot = PresenceSnapshot(scope=scope, sequence=roster.sequence, members=roster.members())

        if event is not None:
            await self._emit_presence(event, exclude_user=member.id)
        return snapshot

    async def heartbeat(self, scope: str, member: EventUser, connection: Hashable) -> None:
        await self.mark_present(scope, member, connection)

    async def mark_absent(self, scope: str, user_id: int, connection: Hashable) -> bool:
        """Drop *connection*; the user leaves once no connection remains."""

        async with self._lock:
            roster = self._rosters.get(scope)
            entry = roster.entries.get(user_id) if roster else None
            if entry is None:
                return False
            entry.connections.discard(connection)
            if entry.connections:
                return False
            event = self._remove_entry_locked(scope, roster, user_id)
            typing_event = self._clear_typing_locked(scope, user_id)

        await self._emit_presence(event, exclude_user=user_id)
        if typing_event is not None:
            await self._emit_typing(typing_event, exclude_user=None)
        return True

    async def evict(self, scope: str, user_id: int) -> bool:
        """Remove *user_id* from *scope* whatever connections they still hold.

        Used when the user loses access to the scope, e.g. after leaving the
        channel. Returns whether the user was present.
        """

        async with self._lock:
            roster = self._rosters.get(scope)
            if roster is None or user_id not in roster.entries:
                return False
            event = self._remove_entry_locked(scope, roster, user_id)
            typing_event = self._clear_typing_locked(scope, user_id)

        await self._emit_presence(event, exclude_user=user_id)
        if typing_event is not None:
            await self._emit_typing(typing_event, exclude_user=None)
        return True

    async def forget_scope(self, scope: str) -> None:
        """Drop a scope whose channel no longer exists, without emitting events."""

        async with self._lock:
            roster = self._rosters.pop(scope, None)
            tasks = [entry.timer for entry in roster.entries.values()] if roster else []
            if scope.startswith("channel:"):
                bucket = self._typing.pop(int(scope.split(":", 1)[1]), None) or {}
                tasks.extend(entry.timer for entry in bucket.values())
        for task in tasks:
            _cancel(task)

    async def _expire_presence(self, scope: str, user_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._lock:
            roster = self._rosters.get(scope)
            entry = roster.entries.get(user_id) if roster else None
            if entry is None or entry.timer is not asyncio.current_task():
                return
            event = self._remove_entry_locked(scope, roster, user_id)
            typing_event = self._clear_typing_locked(scope, user_id)
        logger.debug("Presence expired", extra={"scope": scope, "user_id": user_id})
        await self._emit_presence(event, exclude_user=None)
        if typing_event is not None:
            await self._emit_typing(typing_event, exclude_user=None)

    def _remove_entry_locked(self, scope: str, roster: _Roster, user_id: int) -> PresenceLeft:
        entry = roster.entries.pop(user_id)
        _cancel(entry.timer)
        roster.sequence += 1
        return PresenceLeft(scope=scope, sequence=roster.sequence, member=entry.member)

    async def snapshot(self, scope: str) -> PresenceSnapshot:
        async with self._lock:
            roster = self._rosters.get(scope) or _Roster()
            return PresenceSnapshot(scope=scope, sequence=roster.sequence, members=roster.members())

    def is_present(self, scope: str, user_id: int) -> bool:
        roster = self._rosters.get(scope)
        return roster is not None and user_id in roster.entries

    def online_user_ids(self) -> set[int]:
        roster = self._rosters.get(GLOBAL_SCOPE)
        return set(roster.entries) if roster else set()

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------
    async def set_typing(self, channel_id: int, member: EventUser) -> TypingUpdated:
        """Mark *member* as typing in *channel_id* for the next ``typing_ttl`` seconds."""

        scope = channel_scope(channel_id)
        async with self._lock:
            if not self.is_present(scope, member.id):
                raise NotPresentError(f"User {member.id} is not present in {scope}")
            bucket = self._typing.setdefault(channel_id, {})
            entry = bucket.get(member.id)
            started = entry is None
            if entry is None:
                entry = _TypingEntry(member=member)
                bucket[member.id] = entry
            _cancel(entry.timer)
            entry.timer = asyncio.create_task(
                self._expire_typing(channel_id, member.id, self._typing_ttl),
                name=f"typing-expiry-{channel_id}-{member.id}",
            )
            update = self._typing_update_locked(channel_id)

        if started:
            await self._emit_typing(update, exclude_user=member.id)
        return update

    async def typing_snapshot(self, channel_id: int) -> TypingUpdated:
        async with self._lock:
            return self._typing_update_locked(channel_id)

    async def _expire_typing(self, channel_id: int, user_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._lock:
            bucket = self._typing.get(channel_id)
            entry = bucket.get(user_id) if bucket else None
            if entry is None or entry.timer is not asyncio.current_task():
                return
            bucket.pop(user_id, None)
            if not bucket:
                self._typing.pop(channel_id, None)
            update = self._typing_update_locked(channel_id)
        await self._emit_typing(update, exclude_user=None)

    def _clear_typing_locked(self, scope: str, user_id: int) -> TypingUpdated | None:
        if not scope.startswith("channel:"):
            return None
        channel_id = int(scope.split(":", 1)[1])
        bucket = self._typing.get(channel_id)
        if not bucket or user_id not in bucket:
            return None
        _cancel(bucket.pop(user_id).timer)
        if not bucket:
            self._typing.pop(channel_id, None)
        return self._typing_update_locked(channel_id)

    def _typing_update_locked(self, channel_id: int) -> TypingUpdated:
        users = [entry.member for entry in self._typing.get(channel_id, {}).values()]
        users.sort(key=lambda member: (member.name.lower(), member.id))
        return TypingUpdated(channel_id=channel_id, users=users, expires_in=self._typing_ttl)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    async def _emit_presence(self, event: PresenceEvent, *, exclude_user: int | None) -> None:
        if self._on_presence is None:
            return
        try:
            await self._on_presence(event, exclude_user)
        except Exception:
            logger.exception("Failed to dispatch %s for scope %s", event.event, event.scope)

    async def _emit_typing(self, event: TypingUpdated, *, exclude_user: int | None) -> None:
        if self._on_typing is None:
            return
        try:
            await self._on_typing(event, exclude_user)
        except Exception:
            logger.exception("Failed to dispatch typing update for channel %s", event.channel_id)

    async def close(self) -> None:
        """Cancel all pending expiry timers and forget the state."""

        async with self._lock:
            tasks = [
                entry.timer
                for roster in self._rosters.values()
                for entry in roster.entries.values()
                if entry.timer is not None
            ]
            tasks.extend(
                entry.timer
                for bucket in self._typing.values()
                for entry in bucket.values()
                if entry.timer is not None
            )
            self._rosters.clear()
            self._typing.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task


class RosterReplica:
    """Client-side roster that merges a snapshot with racing join/leave events.

    Events received before the snapshot are buffered. Once the snapshot is
    applied, events at or below its sequence are already reflected and are
    dropped; later events are applied in sequence order. A gap in the
    sequence means an event was missed and ``needs_resync`` is set so the
    caller can request a fresh snapshot.
    """

    def __init__(self) -> None:
        self.sequence: int | None = None
        self.members: dict[int, EventUser] = {}
        self.needs_resync = False
        self._pending: list[PresenceEvent] = []

    def apply_snapshot(self, snapshot: PresenceSnapshot) -> None:
        self.sequence = snapshot.sequence
        self.members = {member.id: member for member in snapshot.members}
        self.needs_resync = False
        pending = sorted(self._pending, key=lambda event: event.sequence)
        self._pending.clear()
        for event in pending:
            self.apply(event)

    def apply(self, event: PresenceEvent) -> bool:
        """Apply *event*; returns whether the roster changed."""

        if self.sequence is None:
            self._pending.append(event)
            return False
        if event.sequence <= self.sequence:
            return False
        if event.sequence > self.sequence + 1:
            self.needs_resync = True
        self.sequence = event.sequence
        if isinstance(event, PresenceJoined):
            self.members[event.member.id] = event.member
        else:
            self.members.pop(event.member.id, None)
        return True

    def roster(self) -> list[EventUser]:
        return sorted(self.members.values(), key=lambda member: (member.name.lower(), member.id))


__all__ = ["NotPresentError", "PresenceCoordinator", "RosterReplica"]
